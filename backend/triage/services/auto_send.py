"""
Auto-send decision.

Sending without human review needs every condition at once:
  - the master toggle is on
  - confidence >= the intent's threshold (order intents use the stricter one)
  - the policy gate passed
  - for order intents, the customer/order is verified
Any single failure leaves the draft persisted for manual review. There is
no partial send.
"""
from triage.services.agent_settings import AgentSettings, get_agent_settings
from triage.services.taxonomy import is_order_intent


def confidence_threshold(intent: str, agent_settings: AgentSettings) -> float:
    override = agent_settings.intent_thresholds.get(intent)
    if override is not None:
        return override
    if is_order_intent(intent):
        return agent_settings.order_confidence_threshold
    return agent_settings.confidence_threshold


def auto_send_blockers(
    intent: str,
    confidence: float,
    verification_status: str | None,
    policy_result,
    agent_settings: AgentSettings | None = None,
) -> list[str]:
    """Every reason the draft can't go out automatically (empty == send)."""
    agent_settings = agent_settings or get_agent_settings()
    blockers = []

    if not agent_settings.auto_send_enabled:
        blockers.append("auto_send_disabled")

    threshold = confidence_threshold(intent, agent_settings)
    if confidence is None or confidence < threshold:
        blockers.append(f"confidence_below_threshold ({confidence} < {threshold})")

    if policy_result is None or not policy_result.ok:
        blockers.append("policy_gate_failed")

    if is_order_intent(intent) and verification_status != "verified":
        blockers.append(f"order_not_verified ({verification_status or 'none'})")

    return blockers


def should_auto_send(
    intent: str,
    confidence: float,
    verification_status: str | None,
    policy_result,
    agent_settings: AgentSettings | None = None,
) -> bool:
    return not auto_send_blockers(intent, confidence, verification_status, policy_result, agent_settings)
