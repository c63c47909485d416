"""Shared utility helpers used across services."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return timezone-aware UTC now. Replaces deprecated datetime.utcnow()."""
    return datetime.now(timezone.utc)


def truncate(text: str | None, limit: int = 160) -> str:
    """Single-line preview used in event descriptions and log lines."""
    if not text:
        return ""
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."
