"""
Duplicate-run check for the ingest pipeline.

Per-thread processing must not interleave. Instead of a lock we claim the
thread with a conditional UPDATE on processing_started_at: the claim wins
only if nobody else claimed it within the window. Stale claims (a crashed
worker) expire on their own. Message uniqueness on
external_message_id covers whatever slips through.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.db.models import Q

from triage.models.thread import Thread
from triage.utils import utcnow

logger = logging.getLogger(__name__)


def claim_thread_run(thread_id, window_seconds: int | None = None) -> bool:
    window = settings.DUPLICATE_RUN_WINDOW_SECONDS if window_seconds is None else window_seconds
    now = utcnow()
    cutoff = now - timedelta(seconds=window)

    claimed = (
        Thread.objects.filter(id=thread_id)
        .filter(Q(processing_started_at__isnull=True) | Q(processing_started_at__lt=cutoff))
        .update(processing_started_at=now)
    )
    if not claimed:
        logger.info("Run already in progress for thread %s; suppressing", thread_id)
    return claimed == 1


def release_thread_run(thread_id):
    Thread.objects.filter(id=thread_id).update(processing_started_at=None)
