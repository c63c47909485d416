"""
Order verification collaborator.

Statuses: verified | unverified | pending | not_found | flagged.
- pending: no order reference yet; ask the customer for it
- not_found: reference given but the store has no such order
- flagged: store risk flags; always escalate

Store lookups (Shopify) live outside this service. The local verifier only
knows whether an order reference is present, so it never reports
`verified`: order intents stay on manual review until a store adapter is
plugged in.
"""
import re
from dataclasses import dataclass, field

_ORDER_REF = re.compile(r"(?:order\s*#?\s*|#)(\d{4,})|\b(\d{5,})\b", re.I)


@dataclass
class VerificationResult:
    status: str
    order_number: str | None = None
    flags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"status": self.status, "order_number": self.order_number, "flags": self.flags}


def find_order_reference(text: str) -> str | None:
    match = _ORDER_REF.search(text or "")
    if not match:
        return None
    return match.group(1) or match.group(2)


class OrderReferenceVerifier:
    def verify(self, thread, customer_identifier: str | None, text: str) -> VerificationResult:
        order_number = find_order_reference(text)
        if not order_number:
            return VerificationResult(status="pending")
        return VerificationResult(status="unverified", order_number=order_number)
