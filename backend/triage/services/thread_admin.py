"""
Admin-initiated thread changes that aren't covered elsewhere: manual state
moves and commitment approvals.
"""
import logging

from triage.exceptions import InvalidStateTransition
from triage.models.thread import Thread, ThreadState
from triage.services.audit import record_event
from triage.services.policy_gate import BLOCKING_PROMISE_CATEGORIES
from triage.services.state_machine import is_valid_transition

logger = logging.getLogger(__name__)


def change_thread_state(thread: Thread, to_state: str, actor: str, reason: str | None = None) -> Thread:
    if to_state not in ThreadState.values:
        raise InvalidStateTransition(f"Unknown state: {to_state!r}")
    if to_state == ThreadState.HUMAN_HANDLING:
        raise InvalidStateTransition("Use takeover to hand a thread to a human")
    if not is_valid_transition(thread.state, to_state):
        raise InvalidStateTransition(f"Cannot move thread from {thread.state} to {to_state}")

    previous = thread.state
    if previous == to_state:
        return thread

    thread.state = to_state
    thread.status_reason = reason or f"Set to {to_state} by {actor}"
    thread.save(update_fields=["state", "status_reason", "updated_at"])
    record_event(
        thread.id,
        "state_changed",
        f"{actor}: {previous} -> {to_state}",
        payload={"from": str(previous), "to": str(to_state), "reason": reason},
        source="admin",
    )
    return thread


def approve_commitment(thread: Thread, category: str, actor: str) -> Thread:
    """Allow drafts on this thread to make a refund/replacement/timeline promise."""
    if category not in BLOCKING_PROMISE_CATEGORIES:
        raise ValueError(
            f"Unknown commitment category {category!r}; expected one of "
            f"{', '.join(sorted(BLOCKING_PROMISE_CATEGORIES))}"
        )
    if category in thread.approved_commitments:
        return thread

    thread.approved_commitments = [*thread.approved_commitments, category]
    thread.save(update_fields=["approved_commitments", "updated_at"])
    record_event(
        thread.id,
        "commitment_approved",
        f"{actor} approved {category} commitments",
        payload={"category": category, "approved_commitments": thread.approved_commitments},
        source="admin",
    )
    logger.info("Thread %s: %s approved %s commitments", thread.id, actor, category)
    return thread
