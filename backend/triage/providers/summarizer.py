"""
Learning summarization collaborators.

Input is an already-redacted observation context; output is advisory
proposal dicts ({type, title, summary, proposed_content, relevant_excerpts}).
Nothing here writes to the database.
"""
import logging
from dataclasses import dataclass, field

from triage.providers.openai_json import chat_json

logger = logging.getLogger(__name__)


@dataclass
class SummaryResult:
    ok: bool
    proposals: list[dict] = field(default_factory=list)
    summary: str = ""
    error: str | None = None


class HeuristicSummarizer:
    """Turns the structured resolution fields straight into proposals."""

    def propose(self, context: dict) -> SummaryResult:
        topic = context.get("thread_subject") or context.get("intent") or "this issue"
        summary = context.get("resolution_summary") or (
            f"Human handled {len(context.get('transcript', []))} messages."
        )
        proposals = []

        new_info = context.get("new_information") or []
        if new_info:
            bullets = "\n".join(f"- {item}" for item in new_info)
            proposals.append({
                "type": "kb_article",
                "title": f"{topic}: what we learned",
                "summary": f"New information surfaced while a teammate handled '{topic}'.",
                "proposed_content": f"{bullets}\n\nResolution: {summary}",
                "relevant_excerpts": new_info[:3],
            })

        questions = context.get("questions_asked") or []
        steps = context.get("troubleshooting_steps") or []
        if questions or steps:
            parts = []
            if questions:
                parts.append("Ask the customer:\n" + "\n".join(f"- {q}" for q in questions))
            if steps:
                parts.append("Then walk through:\n" + "\n".join(f"{i}. {s}" for i, s in enumerate(steps, 1)))
            proposals.append({
                "type": "instruction_update",
                "title": f"Handling conversations like '{topic}'",
                "summary": "Questions and steps a teammate used to resolve a similar case.",
                "proposed_content": "\n\n".join(parts),
                "relevant_excerpts": (questions + steps)[:3],
            })

        return SummaryResult(ok=True, proposals=proposals, summary=summary)


LEARNING_PROMPT = """A human support teammate just handled a customer conversation that
the automated agent had handed over. Propose improvements so the agent can
handle similar cases itself next time.

SUBJECT: {subject}
INTENT: {intent}
RESOLUTION ({resolution_type}): {resolution_summary}
QUESTIONS ASKED: {questions}
TROUBLESHOOTING STEPS: {steps}
NEW INFORMATION: {new_info}

TRANSCRIPT:
{transcript}

Respond with ONLY valid JSON in this exact format:
{{
  "summary": "one or two sentences on how it was resolved",
  "proposals": [
    {{
      "type": "kb_article or instruction_update",
      "title": "short title",
      "summary": "why this helps",
      "proposed_content": "the article or instruction text",
      "relevant_excerpts": ["short quote", ...]
    }}
  ]
}}"""


class OpenAISummarizer:
    def __init__(self, timeout: float = 60):
        self.timeout = timeout

    def propose(self, context: dict) -> SummaryResult:
        prompt = LEARNING_PROMPT.format(
            subject=context.get("thread_subject") or "(none)",
            intent=context.get("intent") or "UNKNOWN",
            resolution_type=context.get("resolution_type"),
            resolution_summary=context.get("resolution_summary") or "(none)",
            questions="; ".join(context.get("questions_asked") or []) or "(none)",
            steps="; ".join(context.get("troubleshooting_steps") or []) or "(none)",
            new_info="; ".join(context.get("new_information") or []) or "(none)",
            transcript="\n".join(
                f"[{m['direction']}] {m['content']}" for m in context.get("transcript", [])
            ) or "(empty)",
        )
        try:
            data = chat_json(prompt, timeout=self.timeout, max_tokens=1200, temperature=0.2)
            return SummaryResult(
                ok=True,
                proposals=list(data.get("proposals", [])),
                summary=data.get("summary", ""),
            )
        except Exception as e:
            logger.error(f"OpenAI learning summarization failed: {e}")
            return SummaryResult(ok=False, error=str(e))
