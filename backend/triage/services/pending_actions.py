"""
Pending actions: what a thread is currently waiting on.

A closed tagged union stored in Thread.pending_action. Each tag has its own
required metadata keys; payloads are validated on write *and* on read, and
unknown tags are rejected rather than passed through. At most one pending
action per thread: setting a new one replaces the old.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime

from django.utils.dateparse import parse_datetime

from triage.exceptions import InvalidPendingAction, ThreadNotFound
from triage.models.thread import Thread
from triage.services.audit import record_event
from triage.utils import utcnow

logger = logging.getLogger(__name__)

AWAITING_VENDOR_RESPONSE = "awaiting_vendor_response"
AWAITING_CUSTOMER_PHOTOS = "awaiting_customer_photos"
AWAITING_CUSTOMER_CONFIRMATION = "awaiting_customer_confirmation"
AWAITING_ADMIN_DECISION = "awaiting_admin_decision"

# tag -> (waiting_for, required metadata keys)
PENDING_ACTION_TYPES = {
    AWAITING_VENDOR_RESPONSE: ("vendor", ("vendor_name",)),
    AWAITING_CUSTOMER_PHOTOS: ("customer", ("request_type",)),
    AWAITING_CUSTOMER_CONFIRMATION: ("customer", ("confirmation_type",)),
    AWAITING_ADMIN_DECISION: ("admin", ("escalation_reason",)),
}


@dataclass
class PendingAction:
    type: str
    description: str
    waiting_for: str
    metadata: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def validate(self):
        entry = PENDING_ACTION_TYPES.get(self.type)
        if entry is None:
            raise InvalidPendingAction(f"Unknown pending action type: {self.type!r}")
        waiting_for, required_keys = entry
        if self.waiting_for != waiting_for:
            raise InvalidPendingAction(
                f"{self.type} waits for {waiting_for!r}, got {self.waiting_for!r}"
            )
        missing = [k for k in required_keys if not self.metadata.get(k)]
        if missing:
            raise InvalidPendingAction(f"{self.type} metadata missing: {', '.join(missing)}")
        if not self.description:
            raise InvalidPendingAction(f"{self.type} requires a description")

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "description": self.description,
            "waiting_for": self.waiting_for,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PendingAction":
        if not isinstance(data, dict):
            raise InvalidPendingAction("Pending action payload must be an object")

        created_raw = data.get("created_at")
        created_at = parse_datetime(created_raw) if isinstance(created_raw, str) else None
        if created_at is None:
            raise InvalidPendingAction(f"Invalid created_at: {created_raw!r}")

        action_type = data.get("type")
        waiting_for = data.get("waiting_for")
        if waiting_for is None and action_type in PENDING_ACTION_TYPES:
            waiting_for = PENDING_ACTION_TYPES[action_type][0]

        action = cls(
            type=action_type,
            description=data.get("description") or "",
            waiting_for=waiting_for,
            metadata=dict(data.get("metadata") or {}),
            created_at=created_at,
        )
        action.validate()
        return action


# ─── Factories ───────────────────────────────────────────────────────────────

def vendor_response_action(vendor_name: str, description: str | None = None, **metadata) -> PendingAction:
    return PendingAction(
        type=AWAITING_VENDOR_RESPONSE,
        description=description or f"Waiting on {vendor_name} to respond",
        waiting_for="vendor",
        metadata={"vendor_name": vendor_name, **metadata},
    )


def customer_photos_action(request_type: str, description: str | None = None, **metadata) -> PendingAction:
    return PendingAction(
        type=AWAITING_CUSTOMER_PHOTOS,
        description=description or f"Waiting on customer photos ({request_type})",
        waiting_for="customer",
        metadata={"request_type": request_type, **metadata},
    )


def customer_confirmation_action(confirmation_type: str, description: str | None = None, **metadata) -> PendingAction:
    return PendingAction(
        type=AWAITING_CUSTOMER_CONFIRMATION,
        description=description or f"Waiting on customer to confirm {confirmation_type}",
        waiting_for="customer",
        metadata={"confirmation_type": confirmation_type, **metadata},
    )


def admin_decision_action(escalation_reason: str, description: str | None = None, **metadata) -> PendingAction:
    return PendingAction(
        type=AWAITING_ADMIN_DECISION,
        description=description or "Waiting on an admin decision",
        waiting_for="admin",
        metadata={"escalation_reason": escalation_reason, **metadata},
    )


# ─── Persistence ─────────────────────────────────────────────────────────────

def set_pending_action(thread_id, action: PendingAction, source: str = "system") -> PendingAction:
    action.validate()
    updated = Thread.objects.filter(id=thread_id).update(pending_action=action.to_dict(), updated_at=utcnow())
    if not updated:
        raise ThreadNotFound(f"Thread {thread_id} not found")

    record_event(
        thread_id,
        "pending_action_set",
        f"Pending action: {action.description}",
        payload=action.to_dict(),
        source=source,
    )
    return action


def get_pending_action(thread_id) -> PendingAction | None:
    raw = Thread.objects.filter(id=thread_id).values_list("pending_action", flat=True).first()
    if not raw:
        return None
    return PendingAction.from_dict(raw)


def clear_pending_action(thread_id, source: str = "system") -> bool:
    cleared = (
        Thread.objects.filter(id=thread_id, pending_action__isnull=False)
        .update(pending_action=None, updated_at=utcnow())
    )
    if cleared:
        record_event(thread_id, "pending_action_cleared", "Pending action cleared", source=source)
    return bool(cleared)


def has_pending_action(thread_id) -> bool:
    return get_pending_action(thread_id) is not None
