"""
DRF serializers for API request/response validation.
Separates API contract from DB models.
"""
from rest_framework import serializers

from triage.models import Event, LearningProposal, Message, Observation, Thread
from triage.models.thread import ThreadState
from triage.services.ingest_pipeline import CHANNELS
from triage.services.observation import RESOLUTION_STATES
from triage.services.pending_actions import PENDING_ACTION_TYPES
from triage.services.policy_gate import BLOCKING_PROMISE_CATEGORIES


# ─── Ingest Serializers ──────────────────────────────────────────────────────

class IngestRequestSerializer(serializers.Serializer):
    """Payload for one inbound customer message."""
    channel = serializers.ChoiceField(choices=list(CHANNELS))
    external_id = serializers.CharField(required=False, allow_null=True, allow_blank=True, max_length=255)
    subject = serializers.CharField(required=False, allow_blank=True, default='', max_length=500)
    body_text = serializers.CharField(allow_blank=True)
    from_identifier = serializers.CharField(required=False, allow_null=True, allow_blank=True, max_length=255)
    to_identifier = serializers.CharField(required=False, allow_null=True, allow_blank=True, max_length=255)
    message_date = serializers.DateTimeField(required=False, allow_null=True)
    external_message_id = serializers.CharField(required=False, allow_null=True, allow_blank=True, max_length=255)
    metadata = serializers.DictField(required=False, default=dict)


# ─── Thread Serializers ──────────────────────────────────────────────────────

class ThreadSerializer(serializers.ModelSerializer):
    class Meta:
        model = Thread
        exclude = ['processing_started_at']


class ThreadSummarySerializer(serializers.ModelSerializer):
    """Lightweight thread listing for the inbox."""
    class Meta:
        model = Thread
        fields = [
            'id', 'external_id', 'subject', 'channel', 'customer_identifier',
            'state', 'status_reason', 'last_intent', 'last_confidence',
            'pending_action', 'human_handling', 'human_handler',
            'is_archived', 'created_at', 'updated_at',
        ]


class ThreadUpdateSerializer(serializers.Serializer):
    state = serializers.ChoiceField(choices=ThreadState.choices)
    actor = serializers.CharField(max_length=255)
    reason = serializers.CharField(required=False, allow_null=True, allow_blank=True)


class ArchiveSerializer(serializers.Serializer):
    actor = serializers.CharField(max_length=255)


# ─── Message / Event Serializers ─────────────────────────────────────────────

class MessageSerializer(serializers.ModelSerializer):
    class Meta:
        model = Message
        fields = [
            'id', 'thread_id', 'direction', 'role', 'from_identifier',
            'to_identifier', 'body', 'external_message_id', 'message_date',
            'sent_at', 'sent_by_agent', 'created_at',
        ]


class EventSerializer(serializers.ModelSerializer):
    class Meta:
        model = Event
        fields = [
            'id', 'thread_id', 'event_type', 'source', 'source_id',
            'payload', 'description', 'created_at',
        ]


# ─── Admin Action Serializers ────────────────────────────────────────────────

class PendingActionSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=list(PENDING_ACTION_TYPES))
    description = serializers.CharField()
    metadata = serializers.DictField(required=False, default=dict)
    actor = serializers.CharField(required=False, default='admin', max_length=255)


class DraftUpdateSerializer(serializers.Serializer):
    body = serializers.CharField()
    author = serializers.CharField(max_length=255)


class SendDraftSerializer(serializers.Serializer):
    sent_by = serializers.CharField(max_length=255)
    idempotency_key = serializers.CharField(required=False, allow_null=True, max_length=255)


class ApproveCommitmentSerializer(serializers.Serializer):
    category = serializers.ChoiceField(choices=sorted(BLOCKING_PROMISE_CATEGORIES))
    actor = serializers.CharField(max_length=255)


class TakeoverSerializer(serializers.Serializer):
    handler = serializers.CharField(max_length=255)


class ReturnSerializer(serializers.Serializer):
    """Resolution notes a human leaves when handing the thread back."""
    resolution_type = serializers.ChoiceField(choices=list(RESOLUTION_STATES))
    resolution_summary = serializers.CharField(required=False, allow_blank=True, default='')
    questions_asked = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    troubleshooting_steps = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    new_information = serializers.ListField(child=serializers.CharField(), required=False, default=list)


class OutboundMessageSerializer(serializers.Serializer):
    """An outbound message seen in the mailbox or ticket system."""
    from_identifier = serializers.CharField(max_length=255)
    body = serializers.CharField()
    to_identifier = serializers.CharField(required=False, allow_null=True, max_length=255)
    external_message_id = serializers.CharField(required=False, allow_null=True, max_length=255)
    cc = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    source = serializers.ChoiceField(choices=['email', 'ticket_system'], required=False, default='email')


# ─── Observation / Learning Serializers ──────────────────────────────────────

class ObservationSerializer(serializers.ModelSerializer):
    is_active = serializers.BooleanField(read_only=True)

    class Meta:
        model = Observation
        fields = [
            'id', 'thread_id', 'intervention_start', 'intervention_end',
            'handler', 'channel', 'signal_type', 'observed_messages',
            'resolution_type', 'resolution_summary', 'questions_asked',
            'troubleshooting_steps', 'new_information', 'is_active',
            'learning_triggered_at', 'learning_generated_at', 'learning_summary',
            'created_at',
        ]


class LearningProposalSerializer(serializers.ModelSerializer):
    class Meta:
        model = LearningProposal
        fields = [
            'id', 'observation_id', 'thread_id', 'proposal_type', 'title',
            'summary', 'proposed_content', 'source_context', 'status',
            'reviewed_by', 'reviewed_at', 'review_notes',
            'published_article_id', 'published_instruction_id', 'created_at',
        ]


class ProposalApproveSerializer(serializers.Serializer):
    reviewer = serializers.CharField(max_length=255)
    notes = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    edited_content = serializers.CharField(required=False, allow_null=True)


class ProposalRejectSerializer(serializers.Serializer):
    reviewer = serializers.CharField(max_length=255)
    reason = serializers.CharField()


# ─── Settings Serializers ────────────────────────────────────────────────────

class AgentSettingsUpdateSerializer(serializers.Serializer):
    auto_send_enabled = serializers.BooleanField(required=False)
    auto_send_confidence_threshold = serializers.FloatField(required=False, min_value=0.0, max_value=1.0)
    auto_send_order_confidence_threshold = serializers.FloatField(required=False, min_value=0.0, max_value=1.0)
    auto_send_intent_thresholds = serializers.DictField(
        child=serializers.FloatField(min_value=0.0, max_value=1.0), required=False,
    )
    updated_by = serializers.CharField(required=False, allow_null=True, max_length=255)
