"""
Observation mode: the human-takeover overlay on a thread.

Per thread the overlay is INACTIVE or ACTIVE:

  enter_observation_mode(signal)        INACTIVE → ACTIVE
      thread.state = HUMAN_HANDLING, human_handling = True, Observation opened
  record_observation(thread_id, msg)    ACTIVE → ACTIVE
      the exchange is appended to observed_messages; the pipeline's
      automated steps don't run
  exit_observation_mode(thread_id, r)   ACTIVE → INACTIVE
      state from the resolution type, Observation closed, learning queued

Both transitions lock the thread row (select_for_update) and the database
enforces at most one active observation per thread. Signals that don't fit
the current overlay state raise InvalidStateTransition; they point at a
signal-detection bug upstream and must not be swallowed.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime

from django.db import IntegrityError, transaction

from triage.exceptions import InvalidResolution, InvalidStateTransition, ThreadNotFound
from triage.models.observation import Observation
from triage.models.thread import Thread, ThreadState
from triage.services.audit import record_event
from triage.utils import truncate, utcnow

logger = logging.getLogger(__name__)

SIGNAL_TYPES = ("direct_email", "cc_support", "ticket_update", "admin_takeover")
SIGNAL_CHANNELS = ("email", "ticket_system", "admin_ui")

RESOLUTION_STATES = {
    "resolved": ThreadState.RESOLVED,
    "escalated_further": ThreadState.ESCALATED,
    "transferred": ThreadState.ESCALATED,
    "returned_to_agent": ThreadState.IN_PROGRESS,
    "timeout_return_to_agent": ThreadState.IN_PROGRESS,
}


@dataclass
class InterventionSignal:
    type: str
    thread_id: str
    handler: str
    channel: str
    timestamp: datetime = field(default_factory=utcnow)
    content: str | None = None
    external_message_id: str | None = None

    def validate(self):
        if self.type not in SIGNAL_TYPES:
            raise ValueError(f"Unknown intervention signal type: {self.type!r}")
        if self.channel not in SIGNAL_CHANNELS:
            raise ValueError(f"Unknown intervention channel: {self.channel!r}")
        if not self.handler:
            raise ValueError("Intervention signal requires a handler")


@dataclass
class ObservedMessage:
    direction: str
    from_identifier: str | None
    to_identifier: str | None
    content: str
    timestamp: datetime = field(default_factory=utcnow)
    external_message_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "direction": self.direction,
            "from": self.from_identifier,
            "to": self.to_identifier,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "external_message_id": self.external_message_id,
        }


@dataclass
class ObservationResolution:
    resolution_type: str
    resolution_summary: str = ""
    questions_asked: list[str] = field(default_factory=list)
    troubleshooting_steps: list[str] = field(default_factory=list)
    new_information: list[str] = field(default_factory=list)

    def validate(self):
        if self.resolution_type not in RESOLUTION_STATES:
            raise InvalidResolution(f"Unknown resolution type: {self.resolution_type!r}")


# ─── Queries ─────────────────────────────────────────────────────────────────

def get_active_observation(thread_id) -> Observation | None:
    return Observation.objects.filter(thread_id=thread_id, intervention_end__isnull=True).first()


def is_in_observation_mode(thread_id) -> bool:
    return Observation.objects.filter(thread_id=thread_id, intervention_end__isnull=True).exists()


def _lock_thread(thread_id) -> Thread:
    try:
        return Thread.objects.select_for_update().get(id=thread_id)
    except Thread.DoesNotExist:
        raise ThreadNotFound(f"Thread {thread_id} not found")


# ─── Enter ───────────────────────────────────────────────────────────────────

def enter_observation_mode(signal: InterventionSignal) -> Observation:
    signal.validate()

    with transaction.atomic():
        thread = _lock_thread(signal.thread_id)
        if thread.human_handling or is_in_observation_mode(thread.id):
            raise InvalidStateTransition(
                f"Thread {thread.id} is already handled by {thread.human_handler or 'a human'}"
            )

        previous_state = thread.state
        thread.state = ThreadState.HUMAN_HANDLING
        thread.human_handling = True
        thread.human_handler = signal.handler
        thread.human_handling_started_at = signal.timestamp
        thread.status_reason = f"Taken over by {signal.handler} ({signal.type})"
        thread.save(update_fields=[
            "state", "human_handling", "human_handler", "human_handling_started_at",
            "status_reason", "updated_at",
        ])

        observed = []
        if signal.content:
            observed.append(ObservedMessage(
                direction="outbound",
                from_identifier=signal.handler,
                to_identifier=thread.customer_identifier,
                content=signal.content,
                timestamp=signal.timestamp,
                external_message_id=signal.external_message_id,
            ).to_dict())

        try:
            with transaction.atomic():
                observation = Observation.objects.create(
                    thread=thread,
                    intervention_start=signal.timestamp,
                    handler=signal.handler,
                    channel=signal.channel,
                    signal_type=signal.type,
                    observed_messages=observed,
                )
        except IntegrityError:
            raise InvalidStateTransition(f"Thread {thread.id} already has an active observation")

    record_event(
        thread.id,
        "human_intervention_started",
        f"{signal.handler} took over via {signal.type} (was {previous_state})",
        payload={
            "observation_id": str(observation.id),
            "signal_type": signal.type,
            "channel": signal.channel,
            "handler": signal.handler,
            "previous_state": previous_state,
        },
        source="admin" if signal.type == "admin_takeover" else "system",
        source_id=observation.id,
    )
    logger.info("Thread %s entered observation mode (handler=%s)", thread.id, signal.handler)
    return observation


# ─── Record ──────────────────────────────────────────────────────────────────

def record_observation(thread_id, message: ObservedMessage) -> bool:
    """Append a message to the active observation. False if none is active."""
    with transaction.atomic():
        observation = (
            Observation.objects.select_for_update()
            .filter(thread_id=thread_id, intervention_end__isnull=True)
            .first()
        )
        if observation is None:
            logger.warning("No active observation for thread %s; message not recorded", thread_id)
            return False

        if message.external_message_id and any(
            m.get("external_message_id") == message.external_message_id
            for m in observation.observed_messages
        ):
            return True

        observation.observed_messages = [*observation.observed_messages, message.to_dict()]
        observation.save(update_fields=["observed_messages"])
    return True


# ─── Exit ────────────────────────────────────────────────────────────────────

def exit_observation_mode(thread_id, resolution: ObservationResolution, source: str = "admin") -> Observation:
    resolution.validate()
    new_state = RESOLUTION_STATES[resolution.resolution_type]

    with transaction.atomic():
        thread = _lock_thread(thread_id)
        observation = (
            Observation.objects.select_for_update()
            .filter(thread_id=thread.id, intervention_end__isnull=True)
            .first()
        )
        if observation is None:
            raise InvalidStateTransition(f"Thread {thread_id} has no active observation to exit")

        observation.intervention_end = utcnow()
        observation.resolution_type = resolution.resolution_type
        observation.resolution_summary = resolution.resolution_summary
        observation.questions_asked = resolution.questions_asked
        observation.troubleshooting_steps = resolution.troubleshooting_steps
        observation.new_information = resolution.new_information
        observation.save(update_fields=[
            "intervention_end", "resolution_type", "resolution_summary",
            "questions_asked", "troubleshooting_steps", "new_information",
        ])

        previous_state = thread.state
        thread.state = new_state
        thread.human_handling = False
        thread.human_handler = None
        thread.human_handling_started_at = None
        thread.status_reason = f"Human handling ended: {resolution.resolution_type}"
        thread.save(update_fields=[
            "state", "human_handling", "human_handler", "human_handling_started_at",
            "status_reason", "updated_at",
        ])

    record_event(
        thread.id,
        "human_intervention_ended",
        f"{observation.handler} finished: {resolution.resolution_type}"
        + (f" ({truncate(resolution.resolution_summary, 80)})" if resolution.resolution_summary else ""),
        payload={
            "observation_id": str(observation.id),
            "resolution_type": resolution.resolution_type,
            "state_transition": {"from": str(previous_state), "to": str(new_state)},
            "messages_observed": len(observation.observed_messages),
        },
        source=source,
        source_id=observation.id,
    )
    logger.info(
        "Thread %s left observation mode: %s -> %s", thread.id, resolution.resolution_type, new_state,
    )

    trigger_learning(observation.id)
    return observation


def trigger_learning(observation_id) -> bool:
    """
    Queue learning-proposal generation for a closed observation, at most once.
    Best-effort: a queue failure is logged and never undoes the exit.
    """
    claimed = Observation.objects.filter(
        id=observation_id,
        intervention_end__isnull=False,
        learning_triggered_at__isnull=True,
    ).update(learning_triggered_at=utcnow())
    if not claimed:
        return False

    try:
        from django_q.tasks import async_task
        async_task(
            "triage.services.learning.generate_learning_proposals",
            str(observation_id),
            task_name=f"learning_{observation_id}",
            q_options={"timeout": 120},
        )
    except Exception:
        logger.warning(
            "Could not queue learning generation for observation %s", observation_id, exc_info=True,
        )
    return True
