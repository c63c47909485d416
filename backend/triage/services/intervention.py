"""
Intervention signal detection.

Humans take over a thread in three ways, and each is normalized into an
InterventionSignal before it reaches the observation service:
- replying to the customer directly from the support mailbox (direct_email)
  or from their own address with support in CC (cc_support)
- updating the conversation in the ticket system (ticket_update)
- pressing "take over" in the admin UI (admin_takeover)
"""
import logging

from django.conf import settings
from django.db import IntegrityError, transaction

from triage.exceptions import ThreadNotFound
from triage.models.message import Message
from triage.models.thread import Thread
from triage.services.observation import (
    InterventionSignal,
    ObservedMessage,
    enter_observation_mode,
    record_observation,
)
from triage.utils import utcnow

logger = logging.getLogger(__name__)


def admin_takeover_signal(thread_id, handler: str) -> InterventionSignal:
    return InterventionSignal(type="admin_takeover", thread_id=str(thread_id), handler=handler, channel="admin_ui")


def ticket_update_signal(thread_id, handler: str, content: str | None = None) -> InterventionSignal:
    return InterventionSignal(
        type="ticket_update", thread_id=str(thread_id), handler=handler,
        channel="ticket_system", content=content,
    )


def detect_direct_reply(
    thread: Thread,
    from_identifier: str,
    body: str,
    external_message_id: str | None = None,
    cc: list[str] | None = None,
) -> InterventionSignal | None:
    """
    An outbound message counts as a human reply unless we sent it ourselves
    (the provider echoes our own sends back with the id we recorded).
    """
    if external_message_id and Message.objects.filter(
        external_message_id=external_message_id, sent_by_agent=True,
    ).exists():
        return None

    mailbox = settings.SUPPORT_MAILBOX.lower()
    sender = (from_identifier or "").lower()
    signal_type = "direct_email"
    if sender != mailbox and mailbox in [c.lower() for c in (cc or [])]:
        signal_type = "cc_support"

    return InterventionSignal(
        type=signal_type,
        thread_id=str(thread.id),
        handler=from_identifier,
        channel="email",
        content=body,
        external_message_id=external_message_id,
    )


def handle_outbound_message(
    thread: Thread,
    from_identifier: str,
    body: str,
    to_identifier: str | None = None,
    external_message_id: str | None = None,
    cc: list[str] | None = None,
) -> dict:
    """Process an outbound message seen on a thread (mailbox sync, webhook)."""
    signal = detect_direct_reply(thread, from_identifier, body, external_message_id, cc)
    if signal is None:
        return {"thread_id": str(thread.id), "intervention": False, "reason": "sent_by_agent"}

    with transaction.atomic():
        locked = _lock_thread(thread.id)
        try:
            with transaction.atomic():
                Message.objects.create(
                    thread=locked,
                    direction="outbound",
                    role="message",
                    from_identifier=from_identifier,
                    to_identifier=to_identifier or locked.customer_identifier,
                    body=body,
                    external_message_id=external_message_id,
                    sent_at=utcnow(),
                )
        except IntegrityError:
            logger.info("Outbound message %s already stored for thread %s", external_message_id, thread.id)
            return {"thread_id": str(thread.id), "intervention": False, "reason": "duplicate"}

        observation_id = _take_over_or_record(locked, signal, ObservedMessage(
            direction="outbound",
            from_identifier=from_identifier,
            to_identifier=to_identifier or locked.customer_identifier,
            content=body,
            external_message_id=external_message_id,
        ))

    thread.refresh_from_db()
    return {
        "thread_id": str(thread.id),
        "intervention": True,
        "observation_id": observation_id,
        "signal_type": signal.type,
    }


def handle_ticket_update(thread: Thread, handler: str, content: str | None = None) -> dict:
    """A teammate replied or added notes through the ticket system."""
    with transaction.atomic():
        locked = _lock_thread(thread.id)
        observed = None
        if content:
            observed = ObservedMessage(
                direction="outbound",
                from_identifier=handler,
                to_identifier=locked.customer_identifier,
                content=content,
            )
        observation_id = _take_over_or_record(locked, ticket_update_signal(thread.id, handler, content), observed)

    thread.refresh_from_db()
    return {
        "thread_id": str(thread.id),
        "intervention": True,
        "observation_id": observation_id,
        "signal_type": "ticket_update",
    }


def _lock_thread(thread_id) -> Thread:
    try:
        return Thread.objects.select_for_update().get(id=thread_id)
    except Thread.DoesNotExist:
        raise ThreadNotFound(f"Thread {thread_id} not found")


def _take_over_or_record(locked: Thread, signal: InterventionSignal, message: ObservedMessage | None) -> str | None:
    """
    Decide against the locked row: the first signal opens the observation
    (its content becomes the first observed message), later ones append.
    Returns the new observation id, or None when one was already open.
    """
    if not locked.human_handling:
        return str(enter_observation_mode(signal).id)
    if message is not None:
        record_observation(locked.id, message)
    return None
