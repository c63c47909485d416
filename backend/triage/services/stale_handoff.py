"""
Stale handoff monitor.

Runs on a django-q schedule (see `setup_stale_sweep`). Any thread a human
took over more than STALE_HANDOFF_HOURS ago without resolving is handed
back to the agent:
1. Close the observation as timeout_return_to_agent (state → IN_PROGRESS,
   learning queued)
2. Draft an apology for the delay, through the drafter when it cooperates
3. Gate the apology like any other draft; a block escalates the thread
4. Audit the timeout

One bad thread never stops the sweep.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from django.conf import settings

from triage.models.observation import Observation
from triage.models.thread import Thread
from triage.providers import Collaborators, build_collaborators
from triage.providers.drafter import DraftRequest
from triage.services import macros
from triage.services.audit import record_event
from triage.services.drafts import escalate_for_policy, record_promises, replace_draft
from triage.services.observation import ObservationResolution, exit_observation_mode
from triage.services.policy_gate import policy_gate
from triage.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class StaleHandlingResult:
    checked: int = 0
    returned: list[str] = field(default_factory=list)
    escalated: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "returned": self.returned,
            "escalated": self.escalated,
            "failed": self.failed,
        }


def check_stale_human_handling(
    now: datetime | None = None,
    timeout_hours: float | None = None,
    collaborators: Collaborators | None = None,
) -> dict:
    now = now or utcnow()
    hours = settings.STALE_HANDOFF_HOURS if timeout_hours is None else timeout_hours
    cutoff = now - timedelta(hours=hours)

    stale = list(
        Observation.objects.select_related("thread")
        .filter(intervention_end__isnull=True, intervention_start__lt=cutoff)
        .order_by("intervention_start")
    )
    result = StaleHandlingResult(checked=len(stale))
    if not stale:
        return result.to_dict()

    collaborators = collaborators or build_collaborators()
    for observation in stale:
        thread_id = str(observation.thread_id)
        try:
            escalated = _return_to_agent(observation, now, hours, collaborators)
            result.returned.append(thread_id)
            if escalated:
                result.escalated.append(thread_id)
        except Exception:
            logger.exception("Stale handoff return failed for thread %s", thread_id)
            result.failed.append(thread_id)

    logger.info(
        f"Stale handoff sweep: {len(result.returned)} returned, "
        f"{len(result.escalated)} escalated, {len(result.failed)} failed"
    )
    return result.to_dict()


def _return_to_agent(observation: Observation, now: datetime, hours: float, collaborators: Collaborators) -> bool:
    """Hand one thread back. Returns True when the apology got escalated."""
    handler = observation.handler
    elapsed = now - observation.intervention_start

    exit_observation_mode(
        observation.thread_id,
        ObservationResolution(
            resolution_type="timeout_return_to_agent",
            resolution_summary=f"No resolution from {handler} within {hours:g} hours",
        ),
        source="monitor",
    )
    thread = Thread.objects.get(id=observation.thread_id)

    apology = _apology_draft(thread, collaborators)
    policy = policy_gate(apology, thread.approved_commitments)
    draft = replace_draft(thread, apology, from_identifier=getattr(collaborators.messaging, "sender", None))
    if policy.ok:
        record_promises(thread.id, policy, source_id=draft.id if draft else None, source="monitor")
    else:
        escalate_for_policy(thread, policy, source="monitor")

    record_event(
        thread.id,
        "human_handling_timeout",
        f"{handler} held the thread for {elapsed} without resolving; returned to agent",
        payload={
            "observation_id": str(observation.id),
            "handler": handler,
            "intervention_start": observation.intervention_start.isoformat(),
            "timeout_hours": hours,
            "apology_draft_id": str(draft.id) if draft else None,
            "policy": policy.to_dict(),
        },
        source="monitor",
        source_id=observation.id,
    )
    return not policy.ok


def _apology_draft(thread: Thread, collaborators: Collaborators) -> str:
    last_inbound = thread.messages.filter(role="message", direction="inbound").order_by("-created_at").first()
    result = collaborators.drafter.generate_draft(DraftRequest(
        thread_id=str(thread.id),
        customer_message=last_inbound.body if last_inbound else "",
        intent=thread.last_intent or "UNKNOWN",
        previous_messages=[],
        customer_info={"identifier": thread.customer_identifier},
        order_context=None,
        customer_context={"channel": thread.channel},
        kb_docs=[],
        instructions=[],
        purpose="handoff_apology",
    ))
    if result.success and result.draft:
        return result.draft
    logger.warning("Apology drafting failed for thread %s: %s; using macro", thread.id, result.error)
    return macros.handoff_timeout_apology()
