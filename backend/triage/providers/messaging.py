"""
Outbound messaging collaborator.

send() must be idempotent on its idempotency key: redelivered webhooks that
slip past the duplicate-run check end up here with the same key, and the
provider answers with the original message id instead of sending twice.
"""
import hashlib
import logging
from dataclasses import dataclass

from django.conf import settings

from triage.models.message import Message

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    ok: bool
    external_message_id: str | None = None
    duplicate: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "external_message_id": self.external_message_id,
            "duplicate": self.duplicate,
            "error": self.error,
        }


class LocalMessagingProvider:
    """
    Records the send without talking to a mail or chat provider. The
    external id is derived from the idempotency key, so the same key always
    maps to the same id.
    """

    sender = None

    def __init__(self, sender: str | None = None):
        self.sender = sender or settings.SUPPORT_MAILBOX

    def send(self, thread, to: str | None, subject: str, body: str, idempotency_key: str) -> SendResult:
        if not body or not body.strip():
            return SendResult(ok=False, error="Empty message body")

        external_id = "local-" + hashlib.sha1(idempotency_key.encode("utf-8")).hexdigest()[:24]
        if Message.objects.filter(external_message_id=external_id).exists():
            logger.info("Send for key %s already recorded as %s", idempotency_key, external_id)
            return SendResult(ok=True, external_message_id=external_id, duplicate=True)

        logger.info(
            "[LOCAL SEND] thread=%s to=%s subject=%r (%d chars)",
            thread.id, to, subject, len(body),
        )
        return SendResult(ok=True, external_message_id=external_id)
