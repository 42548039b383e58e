"""Provide utility helpers for timestamps and calendar dates."""

from __future__ import annotations

import math
from datetime import date, datetime, timezone
from typing import Any, Optional


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _now_iso() -> str:
    return _now().isoformat()


def _as_utc(value: datetime) -> datetime:
    # Naive datetimes from injected clocks are treated as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: datetime) -> str:
    return _as_utc(value).isoformat()


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        if not isinstance(value, str):
            value = str(value)
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        return _as_utc(datetime.fromisoformat(value))
    except ValueError:
        return None


def _parse_date(value: Any) -> Optional[date]:
    """Coerce ``value`` into a :class:`date`.

    Accepts ``date``/``datetime`` objects and ``YYYY-MM-DD`` strings (a full
    ISO timestamp is truncated to its date part). Raises :class:`ValueError`
    for anything else that is not empty.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if "T" in text:
        text = text.split("T", 1)[0]
    return date.fromisoformat(text)


def _date_iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def round_half_up(value: float) -> int:
    """Round like the dashboard's ``Math.round`` (halves go up)."""
    return int(math.floor(value + 0.5))
