"""
Learning-proposal generation and review.

After a human closes an observation, the transcript and resolution notes are
turned into candidate KB articles / instruction updates. Nothing learned is
applied automatically: every proposal starts `pending` and only
approve_proposal() publishes it into the knowledge base.

Customer data never leaves this module unredacted. redact_pii() runs over
every field before the summarizer sees the context, and again over whatever
the summarizer returns.

generate_learning_proposals() is the django-q task queued by
observation.trigger_learning().
"""
import logging
import re

from django.db import transaction

from triage.exceptions import InvalidStateTransition
from triage.models.knowledge import AgentInstruction, KBArticle
from triage.models.learning_proposal import LearningProposal
from triage.models.observation import Observation
from triage.services.audit import record_event
from triage.utils import utcnow

logger = logging.getLogger(__name__)

PROPOSAL_TYPES = ("kb_article", "instruction_update")


# ─── PII redaction ───────────────────────────────────────────────────────────
# Order matters: emails before phones (digits in local parts), cards before
# phones, specific order references before the generic long-number sweep.

PII_PATTERNS = [
    ("[EMAIL]", re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")),
    ("[CARD]", re.compile(r"\b(?:\d[ -]?){13,16}\b")),
    ("[PHONE]", re.compile(r"(?:\+?1[ .-]?)?\(?\b\d{3}\)?[ .-]?\d{3}[ .-]?\d{4}\b")),
    ("[ADDRESS]", re.compile(
        r"\b\d{1,5}\s+(?:[A-Z][a-z]+\s+){1,3}"
        r"(?:St|Street|Ave|Avenue|Rd|Road|Blvd|Boulevard|Ln|Lane|Dr|Drive|Ct|Court|Way)\b\.?",
    )),
    ("[ORDER]", re.compile(r"(?:order\s*(?:number|no\.?)?\s*#?\s*|#)\d{3,}", re.I)),
    ("[NUMBER]", re.compile(r"\b\d{5,}\b")),
]


def redact_pii(text: str | None) -> str:
    if not text:
        return ""
    for placeholder, pattern in PII_PATTERNS:
        text = pattern.sub(placeholder, text)
    return text


def _redact_list(items) -> list[str]:
    return [redact_pii(str(item)) for item in (items or [])]


def build_learning_context(observation: Observation) -> dict:
    thread = observation.thread
    return {
        "thread_subject": redact_pii(thread.subject),
        "intent": thread.last_intent,
        "channel": observation.channel,
        "signal_type": observation.signal_type,
        "resolution_type": observation.resolution_type,
        "resolution_summary": redact_pii(observation.resolution_summary),
        "questions_asked": _redact_list(observation.questions_asked),
        "troubleshooting_steps": _redact_list(observation.troubleshooting_steps),
        "new_information": _redact_list(observation.new_information),
        "transcript": [
            {"direction": m.get("direction"), "content": redact_pii(m.get("content"))}
            for m in observation.observed_messages
        ],
    }


# ─── Generation ──────────────────────────────────────────────────────────────

def generate_learning_proposals(observation_id, summarizer=None) -> list[LearningProposal]:
    """
    Create pending proposals for a closed observation. Runs once per
    observation; a repeat call returns what the first one created. A
    summarizer failure creates nothing and leaves the observation retryable.
    """
    try:
        observation = Observation.objects.select_related("thread").get(id=observation_id)
    except Observation.DoesNotExist:
        logger.warning("Learning requested for unknown observation %s", observation_id)
        return []

    if observation.is_active:
        raise InvalidStateTransition(f"Observation {observation_id} is still active")

    if observation.learning_generated_at is not None:
        return list(observation.proposals.all())

    if summarizer is None:
        from triage.providers import build_collaborators
        summarizer = build_collaborators().summarizer

    context = build_learning_context(observation)
    result = summarizer.propose(context)
    if not result.ok:
        logger.error(f"Learning generation failed for observation {observation_id}: {result.error}")
        return []

    with transaction.atomic():
        locked = Observation.objects.select_for_update().get(id=observation.id)
        if locked.learning_generated_at is not None:
            return list(locked.proposals.all())

        created = []
        for raw in result.proposals:
            proposal = _build_proposal(observation, raw, context)
            if proposal is not None:
                proposal.save()
                created.append(proposal)

        locked.learning_generated_at = utcnow()
        locked.learning_summary = redact_pii(result.summary)
        locked.save(update_fields=["learning_generated_at", "learning_summary"])

    record_event(
        observation.thread_id,
        "learning_proposals_created",
        f"{len(created)} learning proposal(s) from {observation.handler}'s intervention",
        payload={"observation_id": str(observation.id), "proposal_ids": [str(p.id) for p in created]},
        source_id=observation.id,
    )
    logger.info(f"Created {len(created)} learning proposals for observation {observation.id}")
    return created


def _build_proposal(observation: Observation, raw: dict, context: dict) -> LearningProposal | None:
    proposal_type = raw.get("type")
    title = redact_pii((raw.get("title") or "").strip())
    content = redact_pii((raw.get("proposed_content") or "").strip())
    if proposal_type not in PROPOSAL_TYPES or not title or not content:
        logger.warning("Discarding malformed learning proposal for observation %s: %r", observation.id, raw)
        return None

    return LearningProposal(
        observation=observation,
        thread_id=observation.thread_id,
        proposal_type=proposal_type,
        title=title[:300],
        summary=redact_pii(raw.get("summary") or ""),
        proposed_content=content,
        source_context={
            "resolution_type": context["resolution_type"],
            "intent": context["intent"],
            "relevant_excerpts": _redact_list(raw.get("relevant_excerpts")),
        },
        status="pending",
    )


# ─── Review ──────────────────────────────────────────────────────────────────

def get_pending_proposals():
    return LearningProposal.objects.filter(status="pending").select_related("observation")


def _lock_pending(proposal_id) -> LearningProposal:
    proposal = LearningProposal.objects.select_for_update().get(id=proposal_id)
    if proposal.status != "pending":
        raise InvalidStateTransition(f"Proposal {proposal_id} is already {proposal.status}")
    return proposal


def approve_proposal(
    proposal_id,
    reviewer: str,
    notes: str | None = None,
    edited_content: str | None = None,
) -> LearningProposal:
    """Publish a pending proposal into the knowledge base."""
    with transaction.atomic():
        proposal = _lock_pending(proposal_id)
        content = edited_content or proposal.proposed_content

        if proposal.proposal_type == "kb_article":
            intent = proposal.source_context.get("intent")
            proposal.published_article = KBArticle.objects.create(
                title=proposal.title,
                body=content,
                intent_tags=[intent] if intent else [],
                source="learning",
            )
        else:
            proposal.published_instruction = AgentInstruction.objects.create(
                title=proposal.title,
                body=content,
                source="learning",
            )

        proposal.proposed_content = content
        proposal.status = "published"
        proposal.reviewed_by = reviewer
        proposal.reviewed_at = utcnow()
        proposal.review_notes = notes
        proposal.save(update_fields=[
            "proposed_content", "status", "reviewed_by", "reviewed_at", "review_notes",
            "published_article", "published_instruction",
        ])

    record_event(
        proposal.thread_id,
        "learning_proposal_published",
        f"{reviewer} published {proposal.proposal_type}: {proposal.title}",
        payload={"proposal_id": str(proposal.id), "edited": edited_content is not None},
        source="admin",
        source_id=proposal.id,
    )
    return proposal


def reject_proposal(proposal_id, reviewer: str, reason: str) -> LearningProposal:
    with transaction.atomic():
        proposal = _lock_pending(proposal_id)
        proposal.status = "rejected"
        proposal.reviewed_by = reviewer
        proposal.reviewed_at = utcnow()
        proposal.review_notes = reason
        proposal.save(update_fields=["status", "reviewed_by", "reviewed_at", "review_notes"])

    record_event(
        proposal.thread_id,
        "learning_proposal_rejected",
        f"{reviewer} rejected {proposal.proposal_type}: {proposal.title}",
        payload={"proposal_id": str(proposal.id), "reason": reason},
        source="admin",
        source_id=proposal.id,
    )
    return proposal
