"""
Ingest Pipeline

This is the core orchestrator. When an inbound customer message arrives:
1. Resolve or create the thread by external id; remember its state
2. Claim the thread run, then append the inbound message (idempotent on
   external message id)
3. Classify intent (external collaborator; failure falls back to UNKNOWN)
4. Check required info for the intent (+ order verification for order intents)
5. Pick the action from a fixed precedence table
6. Generate a draft if the action needs one (external collaborator)
7. Run the policy gate on whatever draft we have; a block downgrades the
   action to ESCALATE_WITH_DRAFT
8. Compute the next state (pure state machine)
9. Persist: thread state, the draft, the auto_triage event
10. Auto-send if every condition holds

Human handling gates the whole thing: while a human owns the thread the
message is recorded into the active observation and steps 3-10 never run.
Per-thread runs are serialized by a short duplicate-run claim. A delivery
that loses the claim is not stored and comes back with retryable=True.

Failure semantics: the thread and message writes are primary and raise to
the caller. Everything after them (events, drafts, pending actions) is
secondary, logged on failure and never rolled back into the primary write.
Collaborator failures come back as result objects and take the fallback
branch; they never raise out of here.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime

from django.conf import settings
from django.db import IntegrityError, transaction

from triage.models.message import Message
from triage.models.thread import Thread, ThreadState
from triage.providers import Collaborators, build_collaborators
from triage.providers.classifier import ClassificationResult
from triage.providers.drafter import DraftRequest, DraftResult
from triage.services import macros
from triage.services.archive import unarchive_thread
from triage.services.audit import record_event
from triage.services.auto_send import auto_send_blockers
from triage.services.clarification_loop import categories_for_fields, detect_clarification_loop
from triage.services.drafts import clear_drafts, record_promises, replace_draft, send_draft
from triage.services.observation import ObservedMessage, record_observation
from triage.services.pending_actions import admin_decision_action, set_pending_action
from triage.services.policy_gate import policy_gate
from triage.services.required_info import RequiredInfoResult, check_required_info, missing_info_prompt
from triage.services.run_guard import claim_thread_run, release_thread_run
from triage.services.state_machine import next_state
from triage.services.taxonomy import (
    ASK_CLARIFYING_QUESTIONS,
    ESCALATE_WITH_DRAFT,
    NO_REPLY,
    NON_CUSTOMER_INTENTS,
    SEND_PREAPPROVED_MACRO,
    SENDABLE_ACTIONS,
    is_dispute_intent,
    is_order_intent,
    normalize_intent,
)
from triage.utils import truncate

logger = logging.getLogger(__name__)

CHANNELS = ("email", "web_form", "chat", "voice")

# Verification outcomes that mean "ask the customer" rather than "proceed"
VERIFICATION_NEEDS_INFO = ("pending", "not_found")


@dataclass
class IngestRequest:
    channel: str
    body_text: str
    subject: str = ""
    external_id: str | None = None
    from_identifier: str | None = None
    to_identifier: str | None = None
    message_date: datetime | None = None
    external_message_id: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass
class IngestResult:
    thread_id: str
    intent: str | None
    confidence: float | None
    action: str | None
    state: str
    previous_state: str
    draft: str | None = None
    message_id: str | None = None
    duplicate: bool = False
    skipped_reason: str | None = None
    missing_info: list[str] = field(default_factory=list)
    policy_reasons: list[str] = field(default_factory=list)
    auto_sent: bool = False
    # Nothing was stored; the caller should redeliver later
    retryable: bool = False
    steps: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "thread_id": self.thread_id,
            "intent": self.intent,
            "confidence": self.confidence,
            "action": self.action,
            "draft": self.draft,
            "state": str(self.state),
            "previous_state": str(self.previous_state),
            "message_id": self.message_id,
            "duplicate": self.duplicate,
            "skipped_reason": self.skipped_reason,
            "missing_info": self.missing_info,
            "policy_reasons": self.policy_reasons,
            "auto_sent": self.auto_sent,
            "retryable": self.retryable,
            "steps": self.steps,
        }


@dataclass
class ActionDecision:
    action: str
    reason: str
    draft: str | None = None
    needs_generated_draft: bool = False


# ─── Action precedence table ─────────────────────────────────────────────────

def select_action(
    intent: str,
    required: RequiredInfoResult,
    verification=None,
    customer_name: str | None = None,
    loop=None,
) -> ActionDecision:
    """
    First match wins:
      THANK_YOU_CLOSE                 → NO_REPLY
      vendor spam / automated mail    → NO_REPLY
      dispute-class intents           → ESCALATE_WITH_DRAFT (holding reply)
      verification flagged            → ESCALATE_WITH_DRAFT (holding reply)
      same question asked repeatedly  → ESCALATE_WITH_DRAFT (loop apology)
      required info missing           → ASK_CLARIFYING_QUESTIONS (macro or prompt)
      order not found / not given     → ASK_CLARIFYING_QUESTIONS (verification ask)
      macro intents                   → SEND_PREAPPROVED_MACRO
      otherwise                       → ASK_CLARIFYING_QUESTIONS (generated draft)
    """
    if intent == "THANK_YOU_CLOSE":
        return ActionDecision(NO_REPLY, "Customer closed the conversation")

    if intent in NON_CUSTOMER_INTENTS:
        return ActionDecision(NO_REPLY, f"{intent} needs no reply")

    if is_dispute_intent(intent):
        return ActionDecision(
            ESCALATE_WITH_DRAFT, f"{intent} always escalates",
            draft=macros.escalation_holding_reply(customer_name),
        )

    if verification is not None and verification.status == "flagged":
        return ActionDecision(
            ESCALATE_WITH_DRAFT, "Customer verification flagged",
            draft=macros.escalation_holding_reply(customer_name),
        )

    if loop is not None and loop.detected:
        return ActionDecision(
            ESCALATE_WITH_DRAFT, f"Asked for {loop.description} {loop.occurrences} times without an answer",
            draft=macros.clarification_loop_escalation(customer_name),
        )

    if not required.all_present:
        clarify = macros.CLARIFY_MACROS.get(intent)
        draft = clarify(customer_name) if clarify else missing_info_prompt(required.missing, customer_name)
        labels = ", ".join(f.label for f in required.missing)
        return ActionDecision(ASK_CLARIFYING_QUESTIONS, f"Missing required information: {labels}", draft=draft)

    if verification is not None and verification.status in VERIFICATION_NEEDS_INFO:
        return ActionDecision(
            ASK_CLARIFYING_QUESTIONS, f"Order verification {verification.status}",
            draft=macros.order_verification_request(customer_name),
        )

    answer = macros.ANSWER_MACROS.get(intent)
    if answer:
        return ActionDecision(SEND_PREAPPROVED_MACRO, "Pre-approved macro", draft=answer(customer_name))

    return ActionDecision(ASK_CLARIFYING_QUESTIONS, "Generated reply", needs_generated_draft=True)


# ─── Main entry point ────────────────────────────────────────────────────────

def process_ingest_request(request: IngestRequest, collaborators: Collaborators | None = None) -> IngestResult:
    if request.channel not in CHANNELS:
        raise ValueError(f"Unknown channel: {request.channel!r}")
    collaborators = collaborators or build_collaborators()

    # ─── Redelivered message: nothing new to record ──────────────────────
    existing = _find_existing_message(request.external_message_id)
    if existing is not None:
        return _duplicate_result(existing)

    # ─── Step 1: Resolve or create the thread (primary write) ────────────
    thread, created = _resolve_thread(request)
    previous_state = thread.state
    result = IngestResult(
        thread_id=str(thread.id),
        intent=thread.last_intent,
        confidence=thread.last_confidence,
        action=None,
        state=previous_state,
        previous_state=previous_state,
    )
    result.steps.append("thread_created" if created else "thread_resolved")

    if thread.human_handling:
        message, duplicate = _store_inbound(thread, request, result)
        if duplicate is not None:
            return duplicate
        return _record_for_observer(thread, message, result)

    # ─── Per-thread serialization ────────────────────────────────────────
    # Claim before storing the message so a suppressed delivery stays redeliverable
    if not claim_thread_run(thread.id):
        record_event(
            thread.id,
            "run_suppressed",
            "Another run is in progress for this thread; delivery rejected for retry",
            payload={"external_message_id": request.external_message_id},
        )
        result.skipped_reason = "run_in_progress"
        result.retryable = True
        result.steps.append("run_suppressed")
        return result

    try:
        message, duplicate = _store_inbound(thread, request, result)
        if duplicate is not None:
            return duplicate

        # A concurrent run may have finished (or a human taken over) meanwhile
        thread.refresh_from_db()
        if thread.human_handling:
            return _record_for_observer(thread, message, result)
        result.previous_state = thread.state
        return _decide(thread, message, request, collaborators, result)
    finally:
        release_thread_run(thread.id)


def _store_inbound(thread: Thread, request: IngestRequest, result: IngestResult):
    """
    Step 2: append the inbound message (primary write). Returns
    (message, None), or (None, duplicate result) when a concurrent delivery
    of the same message got there first.
    """
    try:
        with transaction.atomic():
            message = Message.objects.create(
                thread=thread,
                direction="inbound",
                role="message",
                from_identifier=request.from_identifier,
                to_identifier=request.to_identifier,
                body=request.body_text,
                external_message_id=request.external_message_id,
                message_date=request.message_date,
            )
    except IntegrityError:
        existing = _find_existing_message(request.external_message_id)
        if existing is None:
            raise
        return None, _duplicate_result(existing)

    result.message_id = str(message.id)
    result.steps.append("message_stored")

    if thread.is_archived:
        unarchive_thread(thread, reason="new_inbound_message")
        result.steps.append("unarchived")
    return message, None


def _decide(
    thread: Thread,
    message: Message,
    request: IngestRequest,
    collaborators: Collaborators,
    result: IngestResult,
) -> IngestResult:
    history = _conversation_history(thread, exclude_id=message.id)
    customer_text = _customer_text(thread)
    customer_name = request.metadata.get("customer_name")

    # ─── Step 3: Classification (external; never raises) ─────────────────
    classification = collaborators.classifier.classify(
        request.subject or thread.subject, request.body_text, history,
    )
    if not classification.ok:
        logger.warning("Classification failed for thread %s: %s", thread.id, classification.error)
        classification = ClassificationResult.failure(classification.error or "unknown error")
    intent = normalize_intent(classification.intent)
    confidence = classification.confidence
    result.steps.append(
        f"classified ({intent}/{confidence:.2f})" if classification.ok else "classification_failed"
    )

    # ─── Step 4: Required info + order verification ──────────────────────
    if is_dispute_intent(intent):
        required = RequiredInfoResult(all_present=True)
    else:
        required = check_required_info(intent, customer_text)

    verification = None
    if is_order_intent(intent):
        verification = collaborators.verifier.verify(thread, request.from_identifier, customer_text)
        result.steps.append(f"verification ({verification.status})")

    # ─── Step 5: Action selection ────────────────────────────────────────
    loop = None
    still_missing = categories_for_fields(required.missing_ids)
    if verification is not None and verification.status in VERIFICATION_NEEDS_INFO:
        still_missing.add("order_number")
    if still_missing:
        loop = detect_clarification_loop(thread.id, still_missing)
        if loop.detected:
            result.steps.append(f"clarification_loop ({loop.category})")

    decision = select_action(intent, required, verification, customer_name, loop)
    action = decision.action
    draft_text = decision.draft

    # ─── Step 6: Draft generation (external; never raises) ───────────────
    draft_result = None
    if decision.needs_generated_draft:
        draft_result = _generate_draft(thread, request, intent, history, verification, collaborators)
        if draft_result.success:
            draft_text = draft_result.draft
            result.steps.append("draft_generated")
        else:
            logger.warning("Drafting failed for thread %s: %s", thread.id, draft_result.error)
            result.steps.append("drafting_failed")

    # ─── Step 7: Policy gate ─────────────────────────────────────────────
    policy = policy_gate(draft_text, thread.approved_commitments) if draft_text else None
    policy_blocked = policy is not None and not policy.ok
    if policy_blocked:
        logger.info("Policy gate blocked draft for thread %s: %s", thread.id, policy.reasons)
        action = ESCALATE_WITH_DRAFT
        result.policy_reasons = list(policy.reasons)
        result.steps.append("policy_blocked")

    missing_info = not required.all_present or (
        verification is not None and verification.status in VERIFICATION_NEEDS_INFO
    )

    # ─── Step 8: State transition (pure) ─────────────────────────────────
    transition = next_state(thread.state, action, intent, policy_blocked, missing_info)

    if policy_blocked:
        status_reason = f"Draft blocked by policy gate: {'; '.join(policy.reasons)}"
    elif action == ESCALATE_WITH_DRAFT:
        status_reason = decision.reason
    elif missing_info:
        status_reason = decision.reason
    else:
        status_reason = transition.reason

    # ─── Step 9: Persist the thread first (primary), then secondary writes ─
    thread.state = transition.to_state
    thread.last_intent = intent
    thread.last_confidence = confidence
    thread.status_reason = status_reason
    thread.save(update_fields=["state", "last_intent", "last_confidence", "status_reason", "updated_at"])

    draft_message = None
    if draft_text:
        draft_message = replace_draft(thread, draft_text, from_identifier=getattr(collaborators.messaging, "sender", None))
        if policy is not None and policy.ok:
            record_promises(thread.id, policy, source_id=draft_message.id if draft_message else None)
    else:
        clear_drafts(thread)

    if transition.to_state == ThreadState.ESCALATED:
        _request_admin_decision(thread, status_reason, policy)

    send_blockers = ["no_sendable_draft"]
    if draft_message is not None and action in SENDABLE_ACTIONS:
        send_blockers = auto_send_blockers(
            intent, confidence, verification.status if verification else None, policy,
        )

    record_event(
        thread.id,
        "auto_triage",
        f"{intent} ({confidence:.2f}) -> {action}; {transition.from_state} -> {transition.to_state}",
        payload={
            "message_id": str(message.id),
            "channel": request.channel,
            "intent": intent,
            "confidence": confidence,
            "classification": classification.to_dict(),
            "action": action,
            "action_reason": decision.reason,
            "draft": draft_text,
            "kb_docs_used": draft_result.kb_docs_used if draft_result else [],
            "drafting_error": draft_result.error if draft_result and not draft_result.success else None,
            "required_info": required.to_dict(),
            "clarification_loop": loop.to_dict() if loop else None,
            "verification": verification.to_dict() if verification else None,
            "policy": policy.to_dict() if policy else None,
            "state_transition": transition.to_dict(),
            "auto_send": {"eligible": not send_blockers, "blockers": send_blockers},
        },
        source="agent",
        source_id=message.id,
    )
    result.steps.append("persisted")

    # ─── Step 10: Auto-send ──────────────────────────────────────────────
    if not send_blockers:
        outcome = send_draft(
            thread,
            collaborators.messaging,
            idempotency_key=f"reply:{request.external_message_id or message.id}",
            sent_by="agent",
        )
        result.auto_sent = outcome.sent
        result.steps.append("auto_sent" if outcome.sent else "auto_send_failed")

    result.intent = intent
    result.confidence = confidence
    result.action = action
    result.draft = draft_text
    result.state = transition.to_state
    result.missing_info = [f.id for f in required.missing]
    if verification is not None and verification.status in VERIFICATION_NEEDS_INFO and "order_number" not in result.missing_info:
        result.missing_info.append("order_number")

    logger.info(
        f"Processed message {message.id} on thread {thread.id}: "
        f"{' -> '.join(result.steps)}"
    )
    return result


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _find_existing_message(external_message_id: str | None) -> Message | None:
    if not external_message_id:
        return None
    return Message.objects.select_related("thread").filter(external_message_id=external_message_id).first()


def _duplicate_result(message: Message) -> IngestResult:
    thread = message.thread
    logger.info("Duplicate delivery of message %s on thread %s ignored", message.external_message_id, thread.id)
    draft = Message.objects.filter(thread_id=thread.id, role="draft").values_list("body", flat=True).first()
    return IngestResult(
        thread_id=str(thread.id),
        intent=thread.last_intent,
        confidence=thread.last_confidence,
        action=None,
        state=thread.state,
        previous_state=thread.state,
        draft=draft,
        message_id=str(message.id),
        duplicate=True,
        steps=["duplicate_message"],
    )


def _resolve_thread(request: IngestRequest) -> tuple[Thread, bool]:
    defaults = {
        "subject": request.subject or "",
        "channel": request.channel,
        "customer_identifier": request.from_identifier,
    }
    if request.external_id:
        thread, created = Thread.objects.get_or_create(external_id=request.external_id, defaults=defaults)
    else:
        thread, created = Thread.objects.create(**defaults), True

    if not created and not thread.customer_identifier and request.from_identifier:
        thread.customer_identifier = request.from_identifier
        thread.save(update_fields=["customer_identifier", "updated_at"])
    return thread, created


def _record_for_observer(thread: Thread, message: Message, result: IngestResult) -> IngestResult:
    record_observation(thread.id, ObservedMessage(
        direction="inbound",
        from_identifier=message.from_identifier,
        to_identifier=message.to_identifier,
        content=message.body,
        timestamp=message.message_date or message.created_at,
        external_message_id=message.external_message_id,
    ))
    record_event(
        thread.id,
        "observation_recorded",
        f"Inbound message recorded for {thread.human_handler or 'human handler'}: {truncate(message.body, 80)}",
        payload={"message_id": str(message.id), "handler": thread.human_handler},
        source_id=message.id,
    )
    result.skipped_reason = "human_handling"
    result.steps.append("observation_recorded")
    return result


def _conversation_history(thread: Thread, exclude_id=None) -> list[dict]:
    messages = Message.objects.filter(thread_id=thread.id, role="message").order_by("created_at")
    if exclude_id:
        messages = messages.exclude(id=exclude_id)
    return [
        {"direction": m.direction, "body": m.body, "created_at": m.created_at.isoformat()}
        for m in messages
    ]


def _customer_text(thread: Thread) -> str:
    """Subject plus everything the customer has written on the thread."""
    bodies = (
        Message.objects.filter(thread_id=thread.id, role="message", direction="inbound")
        .order_by("created_at")
        .values_list("body", flat=True)
    )
    return "\n".join([thread.subject or "", *bodies])


def _generate_draft(thread, request, intent, history, verification, collaborators) -> DraftResult:
    query = f"{request.subject or thread.subject} {request.body_text}"
    try:
        kb_docs = collaborators.knowledge_search.search(query, intent=intent, limit=settings.KB_SEARCH_LIMIT)
        instructions = collaborators.knowledge_search.instructions()
    except Exception:
        logger.exception("Knowledge search failed for thread %s; drafting without KB context", thread.id)
        kb_docs, instructions = [], []

    return collaborators.drafter.generate_draft(DraftRequest(
        thread_id=str(thread.id),
        customer_message=request.body_text,
        intent=intent,
        previous_messages=history,
        customer_info={
            "name": request.metadata.get("customer_name"),
            "identifier": request.from_identifier,
        },
        order_context=verification.to_dict() if verification else None,
        customer_context={"channel": request.channel, "metadata": request.metadata},
        kb_docs=kb_docs,
        instructions=instructions,
    ))


def _request_admin_decision(thread: Thread, reason: str, policy):
    metadata = {"reasons": list(policy.reasons)} if policy is not None and not policy.ok else {}
    try:
        set_pending_action(
            thread.id,
            admin_decision_action(reason, description="Escalated thread needs review", **metadata),
        )
    except Exception:
        logger.exception("Failed to set admin decision for thread %s", thread.id)
