"""
Required-info checker: deterministic gating, no LLM involved.

Each intent that needs details before we can give a definitive answer maps
to an ordered field list. A field counts as present when any of its patterns
matches the customer's text. Missing required info always routes to a
clarifying question, whatever the classifier's confidence.
"""
import re
from dataclasses import dataclass, field

from django.conf import settings


@dataclass(frozen=True)
class RequiredField:
    id: str
    label: str
    patterns: tuple
    required: bool = True

    def is_present(self, text: str) -> bool:
        return any(p.search(text) for p in self.patterns)

    def to_dict(self) -> dict:
        return {"id": self.id, "label": self.label, "required": self.required}


def _p(*patterns: str, flags=re.I) -> tuple:
    return tuple(re.compile(p, flags) for p in patterns)


# Order references: "order #1234", bare 4+ digit numbers, or an order-style code
_ORDER_NUMBER = _p(r"order\s*#?\s*\d+", r"#?\b\d{4,}\b") + _p(r"\b[A-Z0-9]{6,}\b", flags=0)
_UNIT_TYPE = _p(r"\bapex\b", r"\bg-?series\b", r"\bcluster\b")


def _order_number(required: bool = True) -> RequiredField:
    return RequiredField("order_number", "Order number", _ORDER_NUMBER, required)


def _order_info() -> RequiredField:
    return RequiredField(
        "order_info", "Order number or email",
        _ORDER_NUMBER + _p(r"@[a-z0-9.-]+\.[a-z]{2,}"), required=False,
    )


INTENT_REQUIREMENTS: dict[str, list[RequiredField]] = {
    "FIRMWARE_UPDATE_REQUEST": [
        RequiredField("unit_type", "Unit type (Apex/G-Series/Cluster)", _UNIT_TYPE),
        _order_info(),
    ],
    "FIRMWARE_ACCESS_ISSUE": [
        RequiredField("unit_type", "Unit type (Apex/G-Series/Cluster)", _UNIT_TYPE),
        RequiredField(
            "error_description", "Error description",
            _p(r"error", r"message", r"says", r"shows", r"screen", r"page"), required=False,
        ),
        _order_info(),
    ],
    "ORDER_STATUS": [
        _order_number(),
    ],
    "ORDER_CHANGE_REQUEST": [
        _order_number(),
        RequiredField("change_details", "What to change", _p(r"change", r"cancel", r"modify", r"address", r"shipping")),
    ],
    "MISSING_DAMAGED_ITEM": [
        _order_number(),
        RequiredField(
            "item_description", "Which item is missing/damaged",
            _p(r"missing", r"damaged", r"broken", r"item", r"part", r"box"),
        ),
    ],
    "WRONG_ITEM_RECEIVED": [
        _order_number(),
        RequiredField("wrong_item", "What was received", _p(r"received", r"got", r"sent", r"wrong")),
        RequiredField(
            "expected_item", "What was expected",
            _p(r"ordered", r"expected", r"supposed", r"should"), required=False,
        ),
    ],
    "PART_IDENTIFICATION": [
        RequiredField(
            "part_number", "Part number or description",
            _p(r"\b\d{3,5}\b", r"part\s*#?\s*\w+", r"labeled", r"says"),
        ),
    ],
    "RETURN_REFUND_REQUEST": [
        _order_number(),
        RequiredField(
            "reason", "Reason for return/refund",
            _p(r"because", r"reason", r"defective", r"doesn'?t work", r"not working", r"changed my mind"),
            required=False,
        ),
    ],
    "COMPATIBILITY_QUESTION": [
        RequiredField("product", "Which product", _UNIT_TYPE + _p(r"\bunit\b", r"\bgauge\b")),
        RequiredField(
            "vehicle", "Vehicle info",
            _p(r"\b\d{4}\b", r"\b(ford|chevy|chevrolet|gmc|dodge|toyota|honda)\b", r"truck", r"\bcar\b"),
            required=False,
        ),
    ],
}


@dataclass
class RequiredInfoResult:
    all_present: bool
    missing: list[RequiredField] = field(default_factory=list)
    present: list[RequiredField] = field(default_factory=list)
    missing_optional: list[RequiredField] = field(default_factory=list)

    @property
    def missing_ids(self) -> list[str]:
        return [f.id for f in self.missing]

    def to_dict(self) -> dict:
        return {
            "all_present": self.all_present,
            "missing": [f.to_dict() for f in self.missing],
            "present": [f.id for f in self.present],
            "missing_optional": [f.id for f in self.missing_optional],
        }


def check_required_info(intent: str, text: str) -> RequiredInfoResult:
    """Scan `text` for the fields `intent` needs. Unlisted intents need nothing."""
    fields = INTENT_REQUIREMENTS.get(intent)
    if not fields:
        return RequiredInfoResult(all_present=True)

    text = text or ""
    result = RequiredInfoResult(all_present=True)
    for f in fields:
        if f.is_present(text):
            result.present.append(f)
        elif f.required:
            result.missing.append(f)
        else:
            result.missing_optional.append(f)

    result.all_present = not result.missing
    return result


def missing_info_prompt(fields: list[RequiredField], customer_name: str | None = None) -> str:
    """Clarifying question listing the missing fields, signed as the agent."""
    if not fields:
        return ""
    items = "\n".join(f"{i}) {f.label}" for i, f in enumerate(fields, start=1))
    greeting = f"Hey {customer_name}," if customer_name else "Hey,"
    return (
        f"{greeting}\n\n"
        "I can help with this, but I need a few details first:\n\n"
        f"{items}\n\n"
        "Once I have that, I can dig into it for you.\n\n"
        f"– {settings.AGENT_SIGNOFF_NAME}"
    )
