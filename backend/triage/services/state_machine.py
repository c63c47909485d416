"""
Thread state machine.

    NEW ──► AWAITING_INFO ◄──► IN_PROGRESS ──► RESOLVED
      │            │                │              │
      └────────────┴──► ESCALATED ◄─┘              │
                                                   ▼
                  (any) ◄──► HUMAN_HANDLING    re-opened by new inbound

`next_state` is a pure, total function (no I/O, no hidden state) and is
the only place automated transitions are decided. HUMAN_HANDLING is never
produced here: entering and leaving it belongs to the observation service,
and the pipeline doesn't call this function at all while a human is active.

Rules, first match wins:
  1. NO_REPLY on THANK_YOU_CLOSE                           → RESOLVED
     NO_REPLY on vendor spam / automated mail               → RESOLVED
  2. ESCALATE_WITH_DRAFT, or the policy gate blocked        → ESCALATED
  3. required info missing                                  → AWAITING_INFO
  4. SEND_PREAPPROVED_MACRO / ASK_CLARIFYING_QUESTIONS      → IN_PROGRESS
  5. otherwise                                              → unchanged
"""
from dataclasses import dataclass

from triage.models.thread import ThreadState
from triage.services.taxonomy import (
    ASK_CLARIFYING_QUESTIONS,
    ESCALATE_WITH_DRAFT,
    NO_REPLY,
    NON_CUSTOMER_INTENTS,
    SEND_PREAPPROVED_MACRO,
)


@dataclass(frozen=True)
class Transition:
    from_state: str
    to_state: str
    reason: str

    @property
    def changed(self) -> bool:
        return self.from_state != self.to_state

    def to_dict(self) -> dict:
        return {"from": str(self.from_state), "to": str(self.to_state), "reason": self.reason}


def next_state(
    state: str,
    action: str,
    intent: str,
    policy_blocked: bool,
    missing_info: bool,
) -> Transition:
    """Compute the next thread state for one automated decision."""
    if action == NO_REPLY and intent == "THANK_YOU_CLOSE":
        return Transition(state, ThreadState.RESOLVED, "Customer closed the conversation")

    if action == NO_REPLY and intent in NON_CUSTOMER_INTENTS:
        return Transition(state, ThreadState.RESOLVED, f"Auto-closed: {intent} is not a customer conversation")

    if policy_blocked:
        return Transition(state, ThreadState.ESCALATED, "Draft blocked by policy gate")

    if action == ESCALATE_WITH_DRAFT:
        return Transition(state, ThreadState.ESCALATED, f"Escalated: {intent} requires human review")

    if missing_info:
        return Transition(state, ThreadState.AWAITING_INFO, "Waiting for required information from customer")

    if action in (SEND_PREAPPROVED_MACRO, ASK_CLARIFYING_QUESTIONS):
        return Transition(state, ThreadState.IN_PROGRESS, "Draft ready for review")

    return Transition(state, state, "No state change")


# ─── Manual transitions (admin UI) ───────────────────────────────────────────

_ALLOWED_MANUAL = {
    ThreadState.NEW: {ThreadState.AWAITING_INFO, ThreadState.IN_PROGRESS, ThreadState.ESCALATED, ThreadState.RESOLVED},
    ThreadState.AWAITING_INFO: {ThreadState.IN_PROGRESS, ThreadState.ESCALATED, ThreadState.RESOLVED},
    ThreadState.IN_PROGRESS: {ThreadState.AWAITING_INFO, ThreadState.ESCALATED, ThreadState.RESOLVED},
    ThreadState.ESCALATED: {ThreadState.IN_PROGRESS, ThreadState.AWAITING_INFO, ThreadState.RESOLVED},
    ThreadState.RESOLVED: {ThreadState.IN_PROGRESS, ThreadState.ESCALATED},
    # Leaving HUMAN_HANDLING goes through exit_observation_mode only
    ThreadState.HUMAN_HANDLING: set(),
}


def is_valid_transition(from_state: str, to_state: str) -> bool:
    """Whether an admin may move a thread directly between these states."""
    if from_state == to_state:
        return True
    return to_state in _ALLOWED_MANUAL.get(from_state, set())
