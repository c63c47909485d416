"""
Intent taxonomy and action vocabulary.

Intents are grouped by how the pipeline treats them:
- ORDER_INTENTS: touch an order; need a verified customer before auto-send
- DISPUTE_INTENTS: chargebacks / legal threats; always escalate
- NON_CUSTOMER_INTENTS: vendor pitches, automated mail; never answered
- MACRO_INTENTS: have a pre-approved canned reply

The keyword classifier at the bottom is the deterministic fallback used when
no LLM is configured. First match wins; real NLU lives in the
external classifier.
"""
import re

# ─── Intents ─────────────────────────────────────────────────────────────────

INTENTS = [
    # Product issues
    "PRODUCT_SUPPORT",
    "FIRMWARE_UPDATE_REQUEST",
    "FIRMWARE_ACCESS_ISSUE",
    "DOCS_VIDEO_MISMATCH",
    "INSTALL_GUIDANCE",
    "FUNCTIONALITY_BUG",
    "COMPATIBILITY_QUESTION",
    "PART_IDENTIFICATION",
    # Orders
    "ORDER_STATUS",
    "ORDER_CHANGE_REQUEST",
    "MISSING_DAMAGED_ITEM",
    "WRONG_ITEM_RECEIVED",
    "RETURN_REFUND_REQUEST",
    # Escalation triggers
    "CHARGEBACK_THREAT",
    "LEGAL_SAFETY_RISK",
    # Low priority
    "THANK_YOU_CLOSE",
    "FOLLOW_UP_NO_NEW_INFO",
    # Non-customer
    "VENDOR_SPAM",
    "AUTOMATED_EMAIL",
    "UNKNOWN",
]

UNKNOWN_INTENT = "UNKNOWN"

ORDER_INTENTS = frozenset({
    "ORDER_STATUS",
    "ORDER_CHANGE_REQUEST",
    "MISSING_DAMAGED_ITEM",
    "WRONG_ITEM_RECEIVED",
    "RETURN_REFUND_REQUEST",
})

DISPUTE_INTENTS = frozenset({"CHARGEBACK_THREAT", "LEGAL_SAFETY_RISK"})

NON_CUSTOMER_INTENTS = frozenset({"VENDOR_SPAM", "AUTOMATED_EMAIL"})

MACRO_INTENTS = frozenset({"DOCS_VIDEO_MISMATCH"})


def is_order_intent(intent: str | None) -> bool:
    return intent in ORDER_INTENTS


def is_dispute_intent(intent: str | None) -> bool:
    return intent in DISPUTE_INTENTS


def normalize_intent(intent: str | None) -> str:
    """Map anything outside the taxonomy (typos from the LLM, None) to UNKNOWN."""
    if not intent:
        return UNKNOWN_INTENT
    candidate = intent.strip().upper().replace(" ", "_").replace("-", "_")
    return candidate if candidate in INTENTS else UNKNOWN_INTENT


# ─── Actions ─────────────────────────────────────────────────────────────────

NO_REPLY = "NO_REPLY"
ASK_CLARIFYING_QUESTIONS = "ASK_CLARIFYING_QUESTIONS"
SEND_PREAPPROVED_MACRO = "SEND_PREAPPROVED_MACRO"
ESCALATE_WITH_DRAFT = "ESCALATE_WITH_DRAFT"

ACTIONS = [NO_REPLY, ASK_CLARIFYING_QUESTIONS, SEND_PREAPPROVED_MACRO, ESCALATE_WITH_DRAFT]

# Actions whose draft is a customer-facing reply that may be auto-sent
SENDABLE_ACTIONS = frozenset({ASK_CLARIFYING_QUESTIONS, SEND_PREAPPROVED_MACRO})


# ─── Keyword fallback classifier ─────────────────────────────────────────────
# First match wins; order matters (disputes before generic order talk).

_KEYWORD_RULES = [
    ("THANK_YOU_CLOSE", 0.9, [r"\bthank you\b", r"\bappreciate (it|you)\b", r"\bthanks!?\s*$", r"\bthat fixed it\b"]),
    ("CHARGEBACK_THREAT", 0.9, [r"\bchargeback\b", r"\bdispute\b", r"\bmy bank\b", r"\bfraud\b", r"\bbbb\b"]),
    ("LEGAL_SAFETY_RISK", 0.9, [r"\blawyer\b", r"\battorney\b", r"\blawsuit\b", r"\bsue\b", r"\bcaught fire\b", r"\bsmok(e|ing)\b"]),
    ("VENDOR_SPAM", 0.8, [r"\bpartnership\b", r"\bseo services\b", r"\bguest post\b", r"\bwholesale inquiry\b"]),
    ("AUTOMATED_EMAIL", 0.8, [r"\bdo not reply\b", r"\bno-?reply\b", r"\bunsubscribe\b"]),
    ("FIRMWARE_ACCESS_ISSUE", 0.8, [r"kicking me off", r"can'?t log ?in", r"login loop", r"\b403\b", r"access denied"]),
    ("FIRMWARE_UPDATE_REQUEST", 0.7, [r"\bfirmware\b", r"update software", r"update file"]),
    ("DOCS_VIDEO_MISMATCH", 0.8, [r"watched the video", r"didn'?t get the email", r"email shown in"]),
    ("RETURN_REFUND_REQUEST", 0.8, [r"\brefund\b", r"\breturn (it|this|my)\b", r"\bsend it back\b"]),
    ("ORDER_CHANGE_REQUEST", 0.8, [r"\bcancel (my|the) order\b", r"\bchange (my|the) (order|address|shipping)\b"]),
    ("MISSING_DAMAGED_ITEM", 0.8, [r"\barrived (damaged|broken)\b", r"\bmissing from (my|the) (box|order|package)\b", r"\bwas damaged\b"]),
    ("WRONG_ITEM_RECEIVED", 0.8, [r"\bwrong (item|part|unit)\b", r"\bnot what i ordered\b"]),
    ("ORDER_STATUS", 0.75, [r"\bwhere is my order\b", r"\btracking\b", r"\bhas(n'?t| not) (shipped|arrived)\b", r"\border status\b"]),
    ("FOLLOW_UP_NO_NEW_INFO", 0.7, [r"\bstill waiting\b", r"\bany update\b", r"\bno response\b"]),
    ("PART_IDENTIFICATION", 0.7, [r"\bwhat is this (part|piece)\b", r"\bpart number\b", r"no idea what that was"]),
    ("COMPATIBILITY_QUESTION", 0.7, [r"\bwill (it|this) (work|fit)\b", r"\bcompatible\b"]),
    ("INSTALL_GUIDANCE", 0.7, [r"\bhow (do|to) i install\b", r"\binstall(ation)? (instructions|guide)\b", r"\bwiring\b"]),
    ("FUNCTIONALITY_BUG", 0.65, [r"\bnot working\b", r"\bstopped working\b", r"\bscreen (is )?(dead|black|blank)\b", r"\bglitch\b"]),
]

_COMPILED_RULES = [
    (intent, confidence, [re.compile(p, re.I | re.M) for p in patterns])
    for intent, confidence, patterns in _KEYWORD_RULES
]

KEYWORD_FALLBACK_CONFIDENCE = 0.3


def classify_by_keywords(text: str) -> tuple[str, float]:
    """Return (intent, confidence) from the first matching keyword rule."""
    for intent, confidence, patterns in _COMPILED_RULES:
        if any(p.search(text) for p in patterns):
            return intent, confidence
    return UNKNOWN_INTENT, KEYWORD_FALLBACK_CONFIDENCE
