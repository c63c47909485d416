"""
Clarification loop detection.

When the agent keeps asking for the same thing (order number, unit type,
...) and the customer never supplies it, another clarifying question only
frustrates them. We count, per category, the outbound messages and the
pending draft on the thread that ask for it; a category asked for
LOOP_THRESHOLD times or more is a loop and the thread goes to a human.
"""
import logging
import re
from dataclasses import dataclass, field

from triage.models.message import Message

logger = logging.getLogger(__name__)

LOOP_THRESHOLD = 2

CATEGORY_DESCRIPTIONS = {
    "order_number": "order number",
    "vehicle_info": "vehicle information",
    "product_unit_type": "product/unit type",
    "photos_screenshots": "photos or screenshots",
    "error_message": "error message details",
}

# Missing required-info fields -> the question category that asks for them
FIELD_CATEGORIES = {
    "order_number": "order_number",
    "order_info": "order_number",
    "unit_type": "product_unit_type",
    "product": "product_unit_type",
    "vehicle": "vehicle_info",
    "error_description": "error_message",
}


def _p(*patterns: str) -> tuple:
    return tuple(re.compile(p, re.I) for p in patterns)


CATEGORY_PATTERNS = {
    "order_number": _p(
        r"order\s*(number|#|info)",
        r"could\s+you\s+(provide|share|send).*order",
        r"what('?s| is)?\s*(your|the)\s*order",
        r"need\s*(your|the|an)?\s*order\s*(number|#)?",
        r"confirm.*order",
        r"which\s*order",
    ),
    "vehicle_info": _p(
        r"what\s*(vehicle|car|truck|year|make|model)",
        r"which\s*(vehicle|car|truck)",
        r"could\s+you\s+(provide|share|tell).*vehicle",
        r"vehicle\s*(info|information|details)",
        r"year,?\s*make,?\s*(and\s*)?model",
    ),
    "product_unit_type": _p(
        r"which\s*(product|unit|apex|g-series|cluster)",
        r"what\s*(product|unit)",
        r"unit\s*(type|model)",
        r"apex\s*(or|vs|versus|/).*g-series",
        r"is\s*it\s*(an?\s*)?(apex|g-series|cluster)",
    ),
    "photos_screenshots": _p(
        r"could\s+you\s+(send|share|provide|attach).*(photo|screenshot|picture|image)",
        r"(photo|screenshot|picture|image)\s*(of|showing)",
        r"(send|attach|share)\s*(me\s*)?(a\s*)?(photo|screenshot|picture)",
    ),
    "error_message": _p(
        r"what\s*(error|message)",
        r"what('?s| is)\s*(the|your)\s*error",
        r"what\s*does\s*(the\s*)?(error|message|screen)\s*say",
        r"error\s*(message|code)",
        r"what\s*are\s*you\s*seeing",
        r"describe.*error",
    ),
}


@dataclass
class ClarificationLoopResult:
    detected: bool = False
    category: str | None = None
    occurrences: int = 0
    counts: dict = field(default_factory=dict)

    @property
    def description(self) -> str:
        return CATEGORY_DESCRIPTIONS.get(self.category, self.category or "")

    def to_dict(self) -> dict:
        return {
            "detected": self.detected,
            "category": self.category,
            "occurrences": self.occurrences,
            "counts": self.counts,
        }


def categories_in(text: str) -> set[str]:
    """Question categories a single outbound message asks about."""
    text = text or ""
    return {
        category for category, patterns in CATEGORY_PATTERNS.items()
        if any(p.search(text) for p in patterns)
    }


def categories_for_fields(field_ids) -> set[str]:
    return {FIELD_CATEGORIES[f] for f in field_ids if f in FIELD_CATEGORIES}


def detect_clarification_loop(thread_id, categories=None) -> ClarificationLoopResult:
    """
    Count earlier asks on the thread. `categories` limits detection to what
    is still missing; a repeated ask the customer already answered is no loop.
    """
    bodies = (
        Message.objects.filter(thread_id=thread_id, direction="outbound", role__in=("message", "draft"))
        .order_by("created_at")
        .values_list("body", flat=True)
    )
    counts = {category: 0 for category in CATEGORY_PATTERNS}
    for body in bodies:
        for category in categories_in(body):
            counts[category] += 1

    result = ClarificationLoopResult(counts=counts)
    watched = counts.keys() if categories is None else [c for c in counts if c in categories]
    for category in watched:
        if counts[category] >= LOOP_THRESHOLD and counts[category] > result.occurrences:
            result.detected = True
            result.category = category
            result.occurrences = counts[category]

    if result.detected:
        logger.info(
            "Clarification loop on thread %s: asked for %s %d times",
            thread_id, result.category, result.occurrences,
        )
    return result
