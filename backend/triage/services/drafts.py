"""
Draft handling: one active draft per thread, gated before it is stored or sent.

- replace_draft()  - delete the thread's draft and insert the new one
- clear_drafts()   - drop the draft when a run decides not to reply
- save_draft()     - admin-composed draft; gated, escalates the thread if blocked
- send_draft()     - re-gate, hand to the messaging provider, turn the draft
                     into the outbound message
"""
import logging
from dataclasses import dataclass

from django.db import transaction

from triage.models.message import Message
from triage.models.thread import Thread, ThreadState
from triage.services.audit import record_event
from triage.services.pending_actions import admin_decision_action, set_pending_action
from triage.services.policy_gate import PolicyResult, policy_gate
from triage.utils import truncate, utcnow

logger = logging.getLogger(__name__)


def get_active_draft(thread_id) -> Message | None:
    return (
        Message.objects.filter(thread_id=thread_id, role="draft")
        .order_by("-created_at")
        .first()
    )


def replace_draft(thread: Thread, body: str, from_identifier: str | None = None) -> Message | None:
    """
    Swap in a new draft. This is a secondary write: failures are logged and
    return None instead of aborting the caller's primary transition.
    """
    try:
        with transaction.atomic():
            Message.objects.filter(thread_id=thread.id, role="draft").delete()
            return Message.objects.create(
                thread=thread,
                direction="outbound",
                role="draft",
                from_identifier=from_identifier,
                to_identifier=thread.customer_identifier,
                body=body,
            )
    except Exception:
        logger.exception("Failed to store draft for thread %s", thread.id)
        return None


def clear_drafts(thread: Thread) -> int:
    """Drop any stale draft when the latest run produced none."""
    try:
        deleted, _ = Message.objects.filter(thread_id=thread.id, role="draft").delete()
    except Exception:
        logger.exception("Failed to clear drafts for thread %s", thread.id)
        return 0
    return deleted


def record_promises(thread_id, policy: PolicyResult, source_id=None, source: str = "agent"):
    """One promise_detected event per commitment in a draft."""
    for promise in policy.promises:
        record_event(
            thread_id,
            "promise_detected",
            f"Draft promises: {promise.description} ('{promise.matched_text}')",
            payload=promise.to_dict(),
            source=source,
            source_id=source_id,
        )


def escalate_for_policy(thread: Thread, policy: PolicyResult, source: str = "system"):
    """Move a thread to ESCALATED with the gate's reasons as the pending admin decision."""
    reason = "; ".join(policy.reasons)
    thread.state = ThreadState.ESCALATED
    thread.status_reason = f"Draft blocked by policy gate: {reason}"
    thread.save(update_fields=["state", "status_reason", "updated_at"])
    try:
        set_pending_action(
            thread.id,
            admin_decision_action(reason, description="Review blocked draft", reasons=policy.reasons),
            source=source,
        )
    except Exception:
        logger.exception("Failed to set admin decision for thread %s", thread.id)


def save_draft(thread: Thread, body: str, author: str) -> tuple[Message | None, PolicyResult]:
    """Store an admin-composed draft. The gate runs on it like any other."""
    policy = policy_gate(body, thread.approved_commitments)
    draft = replace_draft(thread, body)

    record_event(
        thread.id,
        "draft_saved" if policy.ok else "policy_blocked",
        f"Draft by {author}: {truncate(body, 80)}" if policy.ok
        else f"Draft by {author} blocked: {'; '.join(policy.reasons)}",
        payload={"author": author, "policy": policy.to_dict()},
        source="admin",
        source_id=draft.id if draft else None,
    )

    if policy.ok:
        record_promises(thread.id, policy, source_id=draft.id if draft else None, source="admin")
    elif not thread.human_handling:
        escalate_for_policy(thread, policy, source="admin")
    return draft, policy


@dataclass
class DraftSendOutcome:
    sent: bool
    message: Message | None = None
    policy: PolicyResult | None = None
    duplicate: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "sent": self.sent,
            "message_id": str(self.message.id) if self.message else None,
            "policy": self.policy.to_dict() if self.policy else None,
            "duplicate": self.duplicate,
            "error": self.error,
        }


def send_draft(
    thread: Thread,
    messaging,
    idempotency_key: str | None = None,
    sent_by: str = "agent",
) -> DraftSendOutcome:
    draft = get_active_draft(thread.id)
    if draft is None:
        return DraftSendOutcome(sent=False, error="Thread has no draft")

    policy = policy_gate(draft.body, thread.approved_commitments)
    if not policy.ok:
        record_event(
            thread.id,
            "policy_blocked",
            f"Send blocked: {'; '.join(policy.reasons)}",
            payload={"policy": policy.to_dict(), "sent_by": sent_by},
            source_id=draft.id,
        )
        return DraftSendOutcome(sent=False, policy=policy, error="Draft blocked by policy gate")

    key = idempotency_key or f"draft:{draft.id}"
    result = messaging.send(
        thread,
        to=thread.customer_identifier,
        subject=f"Re: {thread.subject}" if thread.subject else "",
        body=draft.body,
        idempotency_key=key,
    )
    if not result.ok:
        logger.warning("Send failed for thread %s: %s", thread.id, result.error)
        record_event(
            thread.id, "send_failed", f"Send failed: {result.error}",
            payload=result.to_dict(), source_id=draft.id,
        )
        return DraftSendOutcome(sent=False, policy=policy, error=result.error)

    if result.duplicate:
        existing = Message.objects.filter(external_message_id=result.external_message_id).first()
        draft.delete()
        return DraftSendOutcome(sent=True, message=existing, policy=policy, duplicate=True)

    draft.role = "message"
    draft.from_identifier = getattr(messaging, "sender", None)
    draft.to_identifier = thread.customer_identifier
    draft.external_message_id = result.external_message_id
    draft.sent_at = utcnow()
    draft.sent_by_agent = True
    draft.save(update_fields=[
        "role", "from_identifier", "to_identifier", "external_message_id", "sent_at", "sent_by_agent",
    ])

    record_event(
        thread.id,
        "draft_sent",
        f"Reply sent by {sent_by}: {truncate(draft.body, 80)}",
        payload={"external_message_id": result.external_message_id, "sent_by": sent_by},
        source="agent" if sent_by == "agent" else "admin",
        source_id=draft.id,
    )
    return DraftSendOutcome(sent=True, message=draft, policy=policy)
