"""
Audit log writes.

Events are secondary writes: a failed insert is logged and swallowed so it
never rolls back or aborts the primary thread/message write that preceded
it. Losing an inbound message is worse than a gap in the audit trail.
"""
import logging

from django.db import transaction

from triage.models.event import Event

logger = logging.getLogger(__name__)


def record_event(
    thread_id,
    event_type: str,
    description: str,
    payload: dict | None = None,
    source: str = "system",
    source_id=None,
) -> Event | None:
    try:
        # Savepoint keeps an enclosing transaction usable if the insert fails
        with transaction.atomic():
            return Event.objects.create(
                thread_id=thread_id,
                event_type=event_type,
                source=source,
                source_id=str(source_id) if source_id else None,
                payload=payload or {},
                description=description,
            )
    except Exception:
        logger.exception("Failed to record %s event for thread %s", event_type, thread_id)
        return None
