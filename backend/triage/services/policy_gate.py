"""
Policy Gate: the hard safety backstop for every outgoing draft.

Runs on every draft regardless of origin (pipeline, admin tool, stale-handoff
apology) and again right before a send. Its verdict is never overridden by
classifier confidence: a blocked draft is not sent and not dropped; the
caller downgrades to ESCALATE_WITH_DRAFT so a human sees exactly what was
blocked and why.

Checks:
1. Banned phrases: guarantees, unauthorized discounts, competitor mentions,
   legal-advice phrasing, hard shipping-date commitments
2. Sign-off: drafts must end with the agent's signature; known wrong
   sign-offs are flagged explicitly
3. Promises: refund / replacement / timeline commitments block unless an
   admin approved that category for the thread. Softer promises (follow-up,
   shipping, confirmation) are detected for the audit trail only.
"""
import re
from dataclasses import dataclass, field

from django.conf import settings


# ─── Banned phrases ──────────────────────────────────────────────────────────

BANNED_PATTERNS = [
    # Guarantees
    (re.compile(r"\b(we|i) guarantee\b", re.I), "guarantee"),
    (re.compile(r"\bguaranteed (delivery|refund|fix|replacement)\b", re.I), "guarantee"),
    # Unauthorized discounts
    (re.compile(r"\b\d{1,3}\s*%\s*(off|discount)\b", re.I), "unauthorized_discount"),
    (re.compile(r"\b(discount|promo|coupon)\s+code\b", re.I), "unauthorized_discount"),
    (re.compile(r"\bfree of charge\b", re.I), "unauthorized_discount"),
    # Legal advice
    (re.compile(r"\byou (should|could|can) sue\b", re.I), "legal_advice"),
    (re.compile(r"\blegal advice\b", re.I), "legal_advice"),
    (re.compile(r"\byou are (legally )?entitled to\b", re.I), "legal_advice"),
    (re.compile(r"\bunder (the )?(law|consumer protection)\b", re.I), "legal_advice"),
    # Hard shipping commitments
    (re.compile(r"\bwill ship (today|tomorrow)\b", re.I), "shipping_commitment"),
    (re.compile(r"\byou will receive (it )?by\b", re.I), "shipping_commitment"),
]

DISALLOWED_SIGNOFFS = [
    re.compile(r"[-–—]\s*Rob(ert)?\b", re.I),
    re.compile(r"[-–—]\s*The\s+(Team|Support)\b", re.I),
]


# ─── Promise detection ───────────────────────────────────────────────────────

_WILL = r"(?:will|going to|we'll|i'll)"

PROMISE_PATTERNS = [
    # Refund
    (re.compile(rf"\brefund(?:ed|s)?\s+(?:has been\s+)?approved\b", re.I), "refund", "Refund approved"),
    (re.compile(rf"\b{_WILL}\s+(?:process|issue)\s+(?:your\s+|a\s+)?refund\b", re.I), "refund", "Will process refund"),
    (re.compile(rf"\b{_WILL}\s+refund\b", re.I), "refund", "Will refund"),
    (re.compile(r"\bi(?:'ve|'m|\s+have)\s+(?:issued|processed|approved)\s+(?:a\s+|the\s+|your\s+)?refund\b", re.I), "refund", "Refund issued"),
    # Replacement
    (re.compile(rf"\b{_WILL}\s+(?:send\s+(?:you\s+)?(?:a\s+)?(?:new\s+)?)?replace(?:ment)?\b", re.I), "replacement", "Will send replacement"),
    (re.compile(r"\breplacement\s+(?:has been\s+)?(?:approved|confirmed)\b", re.I), "replacement", "Replacement approved"),
    (re.compile(r"\b(?:sending|shipping)\s+(?:you\s+)?(?:a\s+)?(?:new\s+)?replacement\b", re.I), "replacement", "Sending replacement"),
    # Shipping
    (re.compile(rf"\b{_WILL}\s+ship\b", re.I), "shipping", "Will ship"),
    (re.compile(r"\bexpect\s+(?:delivery|it|your order)\s+(?:by|within|in)\b", re.I), "shipping", "Expected delivery"),
    # Follow-up
    (re.compile(rf"\b{_WILL}\s+(?:follow\s+up|get\s+back\s+to\s+you)\b", re.I), "follow_up", "Will follow up"),
    (re.compile(rf"\b{_WILL}\s+(?:check|look\s+into|investigate)\b", re.I), "follow_up", "Will investigate"),
    (re.compile(rf"\b{_WILL}\s+escalate\b", re.I), "follow_up", "Will escalate"),
    # Confirmation
    (re.compile(r"\byour\s+(?:request|order|return)\s+(?:has been|is)\s+(?:approved|confirmed)\b", re.I), "confirmation", "Request approved"),
    (re.compile(r"\bi(?:'ve|\s+have)\s+(?:processed|completed|updated)\b", re.I), "confirmation", "Action completed"),
    # Timeline
    (re.compile(r"\bwithin\s+(?:\d+|one|two|three)\s+(?:hours?|days?|business\s+days?)\b", re.I), "timeline", "Timeline commitment"),
    (re.compile(r"\bby\s+(?:end\s+of\s+)?(?:today|tomorrow|this\s+week|monday|tuesday|wednesday|thursday|friday)\b", re.I), "timeline", "Deadline commitment"),
]

# Categories that need an admin's prior approval on the thread
BLOCKING_PROMISE_CATEGORIES = frozenset({"refund", "replacement", "timeline"})


@dataclass
class DetectedPromise:
    category: str
    matched_text: str
    description: str

    def to_dict(self) -> dict:
        return {"category": self.category, "matched_text": self.matched_text, "description": self.description}


@dataclass
class PolicyResult:
    ok: bool
    reasons: list[str] = field(default_factory=list)
    promises: list[DetectedPromise] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "reasons": self.reasons,
            "promises": [p.to_dict() for p in self.promises],
        }


def detect_promised_actions(draft: str) -> list[DetectedPromise]:
    """Every commitment in the draft, at most one entry per (category, match)."""
    if not draft or not draft.strip():
        return []

    found = []
    seen = set()
    for pattern, category, description in PROMISE_PATTERNS:
        for match in pattern.finditer(draft):
            key = (category, match.group(0).lower())
            if key in seen:
                continue
            seen.add(key)
            found.append(DetectedPromise(category, match.group(0), description))
    return found


def policy_gate(draft: str, approved_commitments=()) -> PolicyResult:
    """
    Scan a candidate draft. `approved_commitments` lists promise categories
    an admin already approved for this thread (e.g. ["refund"]).
    """
    reasons: list[str] = []
    text = draft or ""

    for pattern, label in BANNED_PATTERNS:
        match = pattern.search(text)
        if match:
            reasons.append(f"Banned phrase ({label}): '{match.group(0)}'")

    for name in settings.POLICY_COMPETITOR_NAMES:
        if re.search(rf"\b{re.escape(name)}\b", text, re.I):
            reasons.append(f"Competitor mention: '{name}'")

    for pattern in DISALLOWED_SIGNOFFS:
        match = pattern.search(text)
        if match:
            reasons.append(f"Disallowed sign-off: '{match.group(0).strip()}'")

    signoff = settings.AGENT_SIGNOFF_NAME
    if signoff and text.strip():
        if not re.search(rf"[-–—]\s*{re.escape(signoff)}\s*$", text.strip(), re.I):
            reasons.append(f"Draft must end with '– {signoff}' signature")

    approved = {c.lower() for c in (approved_commitments or [])}
    promises = detect_promised_actions(text)
    for promise in promises:
        if promise.category in BLOCKING_PROMISE_CATEGORIES and promise.category not in approved:
            reasons.append(f"Unapproved {promise.category} promise: '{promise.matched_text}'")

    return PolicyResult(ok=not reasons, reasons=reasons, promises=promises)
