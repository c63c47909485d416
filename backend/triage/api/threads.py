"""
Thread API: inbox listing, detail and every admin action on a thread.

Inbox categories (?category=):
- "inbox"      → non-archived threads waiting on an admin (ESCALATED or an
                 awaiting_admin_decision pending action)
- "waiting"    → non-archived threads waiting on the customer or a vendor
- "human"      → threads a human currently owns
- "archive"    → manually archived threads
"""
import logging

from django.db.models import Q

from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status

from triage.exceptions import InvalidPendingAction, InvalidStateTransition, ThreadNotFound
from triage.models.event import Event
from triage.models.message import Message
from triage.models.thread import Thread, ThreadState
from triage.providers import build_collaborators
from triage.serializers import (
    ApproveCommitmentSerializer, ArchiveSerializer, DraftUpdateSerializer,
    EventSerializer, MessageSerializer, ObservationSerializer,
    OutboundMessageSerializer, PendingActionSerializer, ReturnSerializer,
    SendDraftSerializer, TakeoverSerializer, ThreadSerializer,
    ThreadSummarySerializer, ThreadUpdateSerializer,
)
from triage.services.archive import archive_thread, unarchive_thread
from triage.services.drafts import get_active_draft, save_draft, send_draft
from triage.services.intervention import admin_takeover_signal, handle_outbound_message, handle_ticket_update
from triage.services.observation import (
    ObservationResolution,
    enter_observation_mode,
    exit_observation_mode,
    get_active_observation,
)
from triage.services.pending_actions import (
    PENDING_ACTION_TYPES,
    PendingAction,
    clear_pending_action,
    get_pending_action,
    set_pending_action,
)
from triage.services.thread_admin import approve_commitment, change_thread_state

logger = logging.getLogger(__name__)


def _not_found(thread_id):
    return Response({"detail": f"Thread {thread_id} not found"}, status=status.HTTP_404_NOT_FOUND)


def _conflict(e):
    return Response({"detail": str(e)}, status=status.HTTP_409_CONFLICT)


class ThreadListView(APIView):
    """List/search threads for the inbox."""

    def get(self, request):
        queryset = Thread.objects.all()

        # ─── Category filter (admin-facing buckets) ───────────────────
        category = request.query_params.get("category")
        if category == "archive":
            queryset = queryset.filter(is_archived=True)
        elif category == "human":
            queryset = queryset.filter(human_handling=True, is_archived=False)
        elif category == "inbox":
            queryset = queryset.filter(is_archived=False).filter(
                Q(state=ThreadState.ESCALATED) |
                Q(pending_action__type="awaiting_admin_decision")
            )
        elif category == "waiting":
            queryset = queryset.filter(is_archived=False).filter(
                Q(state=ThreadState.AWAITING_INFO) |
                Q(pending_action__waiting_for__in=["customer", "vendor"])
            )
        elif request.query_params.get("include_archived") != "true":
            queryset = queryset.filter(is_archived=False)

        state_filter = request.query_params.get("state")
        if state_filter:
            queryset = queryset.filter(state=state_filter)

        intent = request.query_params.get("intent")
        if intent:
            queryset = queryset.filter(last_intent=intent)

        search = request.query_params.get("search")
        if search:
            queryset = queryset.filter(
                Q(subject__icontains=search) |
                Q(customer_identifier__icontains=search) |
                Q(external_id__icontains=search)
            )

        # ─── Pagination ──────────────────────────────────────────────
        limit = min(int(request.query_params.get("limit", 50)), 200)
        offset = int(request.query_params.get("offset", 0))
        queryset = queryset.order_by("-updated_at")[offset:offset + limit]

        return Response(ThreadSummarySerializer(queryset, many=True).data)


class ThreadDetailView(APIView):
    """Full thread detail and manual state changes."""

    def get(self, request, thread_id):
        try:
            thread = Thread.objects.get(id=thread_id)
        except Thread.DoesNotExist:
            return _not_found(thread_id)

        messages = Message.objects.filter(thread_id=thread_id, role="message").order_by("created_at")
        events = Event.objects.filter(thread_id=thread_id).order_by("-created_at")
        draft = get_active_draft(thread_id)
        observation = get_active_observation(thread_id)

        try:
            pending = get_pending_action(thread_id)
        except InvalidPendingAction:
            logger.warning("Thread %s holds an invalid pending action payload", thread_id)
            pending = None

        data = {
            "thread": ThreadSerializer(thread).data,
            "messages": MessageSerializer(messages, many=True).data,
            "draft": MessageSerializer(draft).data if draft else None,
            "events": EventSerializer(events, many=True).data,
            "pending_action": pending.to_dict() if pending else None,
            "active_observation": ObservationSerializer(observation).data if observation else None,
        }
        return Response(data)

    def patch(self, request, thread_id):
        """Manually move a thread between states (HUMAN_HANDLING excluded)."""
        try:
            thread = Thread.objects.get(id=thread_id)
        except Thread.DoesNotExist:
            return _not_found(thread_id)

        serializer = ThreadUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            thread = change_thread_state(thread, data["state"], data["actor"], data.get("reason"))
        except InvalidStateTransition as e:
            return _conflict(e)
        return Response(ThreadSerializer(thread).data)


class ThreadArchiveView(APIView):
    def post(self, request, thread_id):
        try:
            thread = Thread.objects.get(id=thread_id)
        except Thread.DoesNotExist:
            return _not_found(thread_id)

        serializer = ArchiveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        thread = archive_thread(thread, serializer.validated_data["actor"])
        return Response(ThreadSerializer(thread).data)


class ThreadUnarchiveView(APIView):
    def post(self, request, thread_id):
        try:
            thread = Thread.objects.get(id=thread_id)
        except Thread.DoesNotExist:
            return _not_found(thread_id)

        serializer = ArchiveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        thread = unarchive_thread(thread, reason="manual", actor=serializer.validated_data["actor"])
        return Response(ThreadSerializer(thread).data)


class PendingActionView(APIView):
    """What the thread is waiting on. At most one at a time."""

    def get(self, request, thread_id):
        if not Thread.objects.filter(id=thread_id).exists():
            return _not_found(thread_id)
        try:
            pending = get_pending_action(thread_id)
        except InvalidPendingAction as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        return Response({"pending_action": pending.to_dict() if pending else None})

    def put(self, request, thread_id):
        serializer = PendingActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        action = PendingAction(
            type=data["type"],
            description=data["description"],
            waiting_for=PENDING_ACTION_TYPES[data["type"]][0],
            metadata=data["metadata"],
        )
        try:
            set_pending_action(thread_id, action, source="admin")
        except ThreadNotFound:
            return _not_found(thread_id)
        except InvalidPendingAction as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        return Response({"pending_action": action.to_dict()})

    def delete(self, request, thread_id):
        if not Thread.objects.filter(id=thread_id).exists():
            return _not_found(thread_id)
        cleared = clear_pending_action(thread_id, source="admin")
        return Response({"detail": "Cleared" if cleared else "Nothing pending", "cleared": cleared})


class DraftView(APIView):
    """Admin edits the reply draft. The policy gate runs on it."""

    def put(self, request, thread_id):
        try:
            thread = Thread.objects.get(id=thread_id)
        except Thread.DoesNotExist:
            return _not_found(thread_id)

        serializer = DraftUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        draft, policy = save_draft(thread, data["body"], data["author"])
        if draft is None:
            return Response(
                {"detail": "Draft could not be stored"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return Response({"draft": MessageSerializer(draft).data, "policy": policy.to_dict()})


class SendDraftView(APIView):
    """Send the current draft through the messaging provider."""

    def post(self, request, thread_id):
        try:
            thread = Thread.objects.get(id=thread_id)
        except Thread.DoesNotExist:
            return _not_found(thread_id)

        serializer = SendDraftSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        outcome = send_draft(
            thread,
            build_collaborators().messaging,
            idempotency_key=data.get("idempotency_key"),
            sent_by=data["sent_by"],
        )
        if outcome.sent:
            return Response(outcome.to_dict())
        if outcome.policy is not None and not outcome.policy.ok:
            return Response({"detail": outcome.error, **outcome.to_dict()}, status=status.HTTP_409_CONFLICT)
        if outcome.policy is None:
            return Response({"detail": outcome.error}, status=status.HTTP_400_BAD_REQUEST)
        return Response({"detail": outcome.error, **outcome.to_dict()}, status=status.HTTP_502_BAD_GATEWAY)


class ApproveCommitmentView(APIView):
    """Sign off on a refund/replacement/timeline promise for this thread."""

    def post(self, request, thread_id):
        try:
            thread = Thread.objects.get(id=thread_id)
        except Thread.DoesNotExist:
            return _not_found(thread_id)

        serializer = ApproveCommitmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        thread = approve_commitment(thread, data["category"], data["actor"])
        return Response({"thread_id": str(thread.id), "approved_commitments": thread.approved_commitments})


class TakeoverView(APIView):
    """A human takes the thread from the agent."""

    def post(self, request, thread_id):
        serializer = TakeoverSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            observation = enter_observation_mode(
                admin_takeover_signal(thread_id, serializer.validated_data["handler"])
            )
        except ThreadNotFound:
            return _not_found(thread_id)
        except InvalidStateTransition as e:
            return _conflict(e)
        return Response(ObservationSerializer(observation).data, status=status.HTTP_201_CREATED)


class ReturnView(APIView):
    """The human hands the thread back with resolution notes."""

    def post(self, request, thread_id):
        serializer = ReturnSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            observation = exit_observation_mode(
                thread_id, ObservationResolution(**serializer.validated_data), source="admin",
            )
        except ThreadNotFound:
            return _not_found(thread_id)
        except InvalidStateTransition as e:
            return _conflict(e)

        thread = Thread.objects.get(id=thread_id)
        return Response({
            "observation": ObservationSerializer(observation).data,
            "thread": ThreadSerializer(thread).data,
        })


class OutboundMessageView(APIView):
    """
    Outbound activity seen outside the agent (mailbox sync, ticket system).
    Anything the agent didn't send itself is a human intervention.
    """

    def post(self, request, thread_id):
        try:
            thread = Thread.objects.get(id=thread_id)
        except Thread.DoesNotExist:
            return _not_found(thread_id)

        serializer = OutboundMessageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            if data["source"] == "ticket_system":
                result = handle_ticket_update(thread, data["from_identifier"], data["body"])
            else:
                result = handle_outbound_message(
                    thread,
                    data["from_identifier"],
                    data["body"],
                    to_identifier=data.get("to_identifier"),
                    external_message_id=data.get("external_message_id") or None,
                    cc=data["cc"],
                )
        except InvalidStateTransition as e:
            return _conflict(e)
        return Response(result)
