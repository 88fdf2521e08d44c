"""Human-readable cache freshness ("Synced 5m ago")."""

from __future__ import annotations

from engine.core.types import now_ms as _now_ms


def format_sync_time(timestamp: int | None, now_ms: int | None = None) -> str:
    """
    Format how long ago a document was synced.

    Buckets: under a minute is "just now", then whole minutes, hours, days
    (each rounded down). Returns "" when there is no timestamp.
    """
    if not timestamp:
        return ""
    now = _now_ms() if now_ms is None else now_ms
    seconds = (now - timestamp) // 1000
    if seconds < 60:
        return "just now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    return f"{days}d ago"
