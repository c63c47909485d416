"""
Thread archival. An orthogonal, reversible flag: archiving never touches
`state`, and new inbound activity unarchives the thread automatically.
"""
import logging

from triage.models.thread import Thread
from triage.services.audit import record_event
from triage.utils import utcnow

logger = logging.getLogger(__name__)


def archive_thread(thread: Thread, archived_by: str) -> Thread:
    if thread.is_archived:
        return thread
    thread.is_archived = True
    thread.archived_at = utcnow()
    thread.archived_by = archived_by
    thread.save(update_fields=["is_archived", "archived_at", "archived_by", "updated_at"])
    record_event(thread.id, "thread_archived", f"Archived by {archived_by}", source="admin")
    return thread


def unarchive_thread(thread: Thread, reason: str = "manual", actor: str | None = None) -> Thread:
    if not thread.is_archived:
        return thread
    thread.is_archived = False
    thread.archived_at = None
    thread.archived_by = None
    thread.save(update_fields=["is_archived", "archived_at", "archived_by", "updated_at"])
    record_event(
        thread.id,
        "thread_unarchived",
        f"Unarchived ({reason})" + (f" by {actor}" if actor else ""),
        payload={"reason": reason},
        source="admin" if actor else "system",
    )
    logger.info("Thread %s unarchived (%s)", thread.id, reason)
    return thread
