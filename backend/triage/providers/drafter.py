"""
Draft generation collaborators.

Contract: generate_draft(DraftRequest) -> DraftResult. A drafter never
raises and never sends anything; whatever it returns still goes through the
policy gate in the pipeline.
"""
import logging
from dataclasses import dataclass, field

from django.conf import settings

from triage.providers.openai_json import chat_json
from triage.services import macros

logger = logging.getLogger(__name__)


@dataclass
class DraftRequest:
    thread_id: str
    customer_message: str
    intent: str
    previous_messages: list[dict] = field(default_factory=list)
    customer_info: dict = field(default_factory=dict)
    order_context: dict | None = None
    customer_context: dict | None = None
    kb_docs: list[dict] = field(default_factory=list)
    instructions: list[str] = field(default_factory=list)
    # "reply" for normal drafting, "handoff_apology" when a stale human
    # handoff is returned to the agent
    purpose: str = "reply"


@dataclass
class DraftResult:
    success: bool
    draft: str | None = None
    kb_docs_used: list[str] = field(default_factory=list)
    policy_gate_passed: bool | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "draft": self.draft,
            "kb_docs_used": self.kb_docs_used,
            "policy_gate_passed": self.policy_gate_passed,
            "error": self.error,
        }


class TemplateDraftGenerator:
    """
    Offline drafter: stitches the best KB match into a signed reply.
    Good enough for demos and tests; real drafting uses the LLM.
    """

    def generate_draft(self, request: DraftRequest) -> DraftResult:
        name = request.customer_info.get("name")
        if request.purpose == "handoff_apology":
            return DraftResult(success=True, draft=macros.handoff_timeout_apology(name))

        greeting = f"Hey {name}," if name else "Hey,"
        if request.kb_docs:
            doc = request.kb_docs[0]
            body = (
                "Thanks for the details. Here's what usually sorts this out:\n\n"
                f"{doc['body'].strip()}\n\n"
                "Let me know if that doesn't do it and what you see when you try."
            )
            used = [str(doc["id"])]
        else:
            body = (
                "Thanks for reaching out. So I can point you in the right direction, could "
                "you tell me a bit more about what you're seeing? Photos or the exact error "
                "message help a lot."
            )
            used = []

        draft = f"{greeting}\n\n{body}\n\n– {settings.AGENT_SIGNOFF_NAME}"
        return DraftResult(success=True, draft=draft, kb_docs_used=used)


DRAFT_PROMPT = """You are {agent}, a customer-support agent for an automotive electronics shop.
Write the next reply to the customer.

RULES:
- Never promise refunds, replacements, discounts or delivery dates.
- Never give legal advice or mention competitors.
- Ask for anything you need instead of guessing.
- End the reply with the line "– {agent}".
{purpose_rule}

INTENT: {intent}
CUSTOMER: {customer}
ORDER CONTEXT: {order}

STANDING INSTRUCTIONS:
{instructions}

KNOWLEDGE BASE:
{kb}

CONVERSATION SO FAR (oldest first):
{history}

LATEST CUSTOMER MESSAGE:
{message}

Respond with ONLY valid JSON in this exact format:
{{
  "draft": "the full reply text",
  "kb_docs_used": ["id of each KB article you relied on", ...]
}}"""


class OpenAIDraftGenerator:
    def __init__(self, timeout: float | None = None):
        self.timeout = timeout or settings.DRAFTER_TIMEOUT_SECONDS

    def generate_draft(self, request: DraftRequest) -> DraftResult:
        purpose_rule = ""
        if request.purpose == "handoff_apology":
            purpose_rule = (
                "- A teammate took over this conversation but it went quiet for too long. "
                "Apologize for the delay and ask where things stand."
            )

        prompt = DRAFT_PROMPT.format(
            agent=settings.AGENT_SIGNOFF_NAME,
            purpose_rule=purpose_rule,
            intent=request.intent,
            customer=request.customer_info or "Unknown",
            order=request.order_context or "None",
            instructions="\n".join(f"- {i}" for i in request.instructions) or "(none)",
            kb="\n\n".join(f"[{d['id']}] {d['title']}\n{d['body']}" for d in request.kb_docs) or "(no matches)",
            history="\n".join(
                f"[{'Customer' if m.get('direction') == 'inbound' else 'Support'}] {m.get('body', '')}"
                for m in request.previous_messages[-10:]
            ) or "(first message)",
            message=request.customer_message,
        )
        try:
            data = chat_json(prompt, timeout=self.timeout, max_tokens=700, temperature=0.3)
            draft = (data.get("draft") or "").strip()
            if not draft:
                return DraftResult(success=False, error="Empty draft returned")
            return DraftResult(
                success=True,
                draft=draft,
                kb_docs_used=[str(d) for d in data.get("kb_docs_used", [])],
            )
        except Exception as e:
            logger.error(f"OpenAI drafting failed for thread {request.thread_id}: {e}")
            return DraftResult(success=False, error=str(e))
