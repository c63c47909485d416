"""
Thin wrapper around the OpenAI chat API for prompts that answer in JSON.

Callers own the fallback: this raises on transport errors, timeouts and
unparseable output, and each provider turns that into a failure result.
"""
import json

from django.conf import settings


def chat_json(prompt: str, timeout: float, max_tokens: int = 800, temperature: float = 0.1):
    from openai import OpenAI

    client = OpenAI(api_key=settings.OPENAI_API_KEY, timeout=timeout, max_retries=0)
    response = client.chat.completions.create(
        model=settings.OPENAI_MODEL,
        messages=[{"role": "user", "content": prompt}],
        temperature=temperature,
        max_tokens=max_tokens,
    )

    content = (response.choices[0].message.content or "").strip()
    # Strip markdown code fences if present
    if content.startswith("```"):
        content = content.split("\n", 1)[1]
        content = content.rsplit("```", 1)[0]

    return json.loads(content)
