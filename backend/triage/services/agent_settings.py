"""
Runtime agent settings.

The admin UI flips the auto-send toggle and thresholds without a deploy, so
they live in the agent_settings table. Anything not stored there falls back
to the Django setting of the same meaning.
"""
import logging
from dataclasses import dataclass, field, asdict

from django.conf import settings

from triage.models.agent_setting import AgentSetting

logger = logging.getLogger(__name__)

AUTO_SEND_ENABLED = "auto_send_enabled"
CONFIDENCE_THRESHOLD = "auto_send_confidence_threshold"
ORDER_CONFIDENCE_THRESHOLD = "auto_send_order_confidence_threshold"
INTENT_THRESHOLDS = "auto_send_intent_thresholds"

KNOWN_KEYS = (AUTO_SEND_ENABLED, CONFIDENCE_THRESHOLD, ORDER_CONFIDENCE_THRESHOLD, INTENT_THRESHOLDS)


@dataclass
class AgentSettings:
    auto_send_enabled: bool
    confidence_threshold: float
    order_confidence_threshold: float
    intent_thresholds: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def get_agent_settings() -> AgentSettings:
    stored = dict(AgentSetting.objects.filter(key__in=KNOWN_KEYS).values_list("key", "value"))
    return AgentSettings(
        auto_send_enabled=bool(stored.get(AUTO_SEND_ENABLED, settings.AUTO_SEND_ENABLED)),
        confidence_threshold=float(stored.get(CONFIDENCE_THRESHOLD, settings.AUTO_SEND_CONFIDENCE_THRESHOLD)),
        order_confidence_threshold=float(
            stored.get(ORDER_CONFIDENCE_THRESHOLD, settings.AUTO_SEND_ORDER_CONFIDENCE_THRESHOLD)
        ),
        intent_thresholds={k: float(v) for k, v in (stored.get(INTENT_THRESHOLDS) or {}).items()},
    )


def update_agent_settings(values: dict, updated_by: str | None = None) -> AgentSettings:
    """Upsert the given keys; unknown keys raise ValueError."""
    unknown = set(values) - set(KNOWN_KEYS)
    if unknown:
        raise ValueError(f"Unknown agent setting(s): {', '.join(sorted(unknown))}")

    for key, value in values.items():
        AgentSetting.objects.update_or_create(
            key=key, defaults={"value": value, "updated_by": updated_by},
        )
        logger.info("Agent setting %s set to %r by %s", key, value, updated_by or "unknown")

    return get_agent_settings()
