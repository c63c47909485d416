"""
Classification adapters.

Contract: classify(subject, body, history) -> ClassificationResult. Adapters
never raise; a timeout or bad response comes back as ok=False and the
pipeline falls back to UNKNOWN at the lowest confidence.
"""
import logging
from dataclasses import dataclass, field

from django.conf import settings

from triage.providers.openai_json import chat_json
from triage.services.taxonomy import INTENTS, UNKNOWN_INTENT, classify_by_keywords, normalize_intent

logger = logging.getLogger(__name__)


@dataclass
class ClassificationResult:
    ok: bool
    intent: str = UNKNOWN_INTENT
    confidence: float = 0.0
    missing_info_hints: list[str] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def failure(cls, error: str) -> "ClassificationResult":
        return cls(ok=False, intent=UNKNOWN_INTENT, confidence=0.0, error=error)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "intent": self.intent,
            "confidence": self.confidence,
            "missing_info_hints": self.missing_info_hints,
            "error": self.error,
        }


class KeywordClassifier:
    """Deterministic regex classifier for development and as a no-LLM mode."""

    def classify(self, subject: str, body: str, history: list[dict] | None = None) -> ClassificationResult:
        intent, confidence = classify_by_keywords(f"{subject or ''}\n{body or ''}")
        return ClassificationResult(ok=True, intent=intent, confidence=confidence)


CLASSIFY_PROMPT = """You classify customer-support emails for an automotive electronics shop.

Choose exactly one intent from this list:
{intents}

SUBJECT: {subject}

CONVERSATION SO FAR (oldest first):
{history}

LATEST CUSTOMER MESSAGE:
{body}

Respond with ONLY valid JSON in this exact format:
{{
  "intent": "ONE_OF_THE_INTENTS",
  "confidence": 0.0-1.0,
  "missing_info": ["short label of info we'd need to answer", ...]
}}"""


class OpenAIClassifier:
    def __init__(self, timeout: float | None = None):
        self.timeout = timeout or settings.CLASSIFIER_TIMEOUT_SECONDS

    def classify(self, subject: str, body: str, history: list[dict] | None = None) -> ClassificationResult:
        prompt = CLASSIFY_PROMPT.format(
            intents=", ".join(INTENTS),
            subject=subject or "(none)",
            history=_format_history(history),
            body=body or "",
        )
        try:
            data = chat_json(prompt, timeout=self.timeout, max_tokens=300)
            confidence = float(data.get("confidence", 0.0))
            return ClassificationResult(
                ok=True,
                intent=normalize_intent(data.get("intent")),
                confidence=min(max(confidence, 0.0), 1.0),
                missing_info_hints=[str(h) for h in data.get("missing_info", [])],
            )
        except Exception as e:
            logger.error(f"OpenAI classification failed: {e}")
            return ClassificationResult.failure(str(e))


def _format_history(history: list[dict] | None) -> str:
    if not history:
        return "(first message)"
    lines = []
    for msg in history[-10:]:
        label = "Customer" if msg.get("direction") == "inbound" else "Support"
        lines.append(f"[{label}] {msg.get('body', '')}")
    return "\n".join(lines)
