"""
Knowledge-base search collaborator.

The production system runs hybrid keyword + vector search elsewhere; this
keyword scorer over KBArticle rows covers local development and tests.
"""
import logging
import re

from django.db.models import Q

from triage.models.knowledge import KBArticle, AgentInstruction

logger = logging.getLogger(__name__)

_STOPWORDS = {
    "the", "and", "for", "with", "that", "this", "have", "from", "your", "you",
    "was", "are", "but", "not", "can", "how", "what", "when", "get", "got",
    "hey", "hi", "hello", "thanks", "please", "just", "about", "there",
}


def _terms(text: str) -> list[str]:
    words = re.findall(r"[a-z0-9][a-z0-9-]{2,}", (text or "").lower())
    return [w for w in dict.fromkeys(words) if w not in _STOPWORDS][:12]


class KeywordKnowledgeSearch:
    def search(self, query: str, intent: str | None = None, limit: int = 3) -> list[dict]:
        terms = _terms(query)
        if not terms:
            return []

        match = Q()
        for term in terms:
            match |= Q(title__icontains=term) | Q(body__icontains=term)

        scored = []
        for article in KBArticle.objects.filter(match):
            haystack = f"{article.title} {article.body}".lower()
            score = sum(1 for t in terms if t in haystack)
            if intent and intent in (article.intent_tags or []):
                score += 2
            scored.append((score, article))

        scored.sort(key=lambda pair: (-pair[0], pair[1].title))
        return [
            {"id": str(a.id), "title": a.title, "body": a.body, "score": s}
            for s, a in scored[:limit]
        ]

    def instructions(self) -> list[str]:
        return list(
            AgentInstruction.objects.filter(is_active=True)
            .order_by("created_at")
            .values_list("body", flat=True)
        )
