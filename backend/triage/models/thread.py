import uuid
from django.db import models


class ThreadState(models.TextChoices):
    NEW = "NEW"
    AWAITING_INFO = "AWAITING_INFO"
    IN_PROGRESS = "IN_PROGRESS"
    ESCALATED = "ESCALATED"
    HUMAN_HANDLING = "HUMAN_HANDLING"
    RESOLVED = "RESOLVED"


class Thread(models.Model):
    """
    A Thread is one customer conversation. It is the central entity:
    messages, events, observations and pending actions all hang off it.

    `state` is materialized for fast reads; the event log is the audit trail
    of how it got there. Archival is an orthogonal flag, never a state.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Upstream conversation id (Gmail thread id, chat session id, form id...)
    external_id = models.CharField(max_length=255, unique=True, null=True, blank=True)
    subject = models.CharField(max_length=500, blank=True, default="")
    channel = models.CharField(max_length=20, default="email")  # email, web_form, chat, voice
    customer_identifier = models.CharField(max_length=255, null=True, blank=True)

    state = models.CharField(max_length=20, choices=ThreadState.choices, default=ThreadState.NEW)
    status_reason = models.TextField(blank=True, default="")
    last_intent = models.CharField(max_length=50, null=True, blank=True)
    last_confidence = models.FloatField(null=True, blank=True)

    # Tagged-union payload, see services.pending_actions
    pending_action = models.JSONField(null=True, blank=True)

    # Promise categories (refund, replacement, timeline) an admin signed off on
    approved_commitments = models.JSONField(default=list, blank=True)

    # Human takeover overlay: human_handling <=> state == HUMAN_HANDLING
    human_handling = models.BooleanField(default=False)
    human_handler = models.CharField(max_length=255, null=True, blank=True)
    human_handling_started_at = models.DateTimeField(null=True, blank=True)

    # Duplicate-run check; only ever written via conditional UPDATE
    processing_started_at = models.DateTimeField(null=True, blank=True)

    is_archived = models.BooleanField(default=False, db_index=True)
    archived_at = models.DateTimeField(null=True, blank=True)
    archived_by = models.CharField(max_length=255, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "threads"
        ordering = ["-updated_at"]
        indexes = [
            models.Index(fields=["state", "-updated_at"], name="idx_thread_state_date"),
        ]

    def __str__(self):
        return f"{self.subject or '(no subject)'} ({self.state})"
