"""
Synthetic journal data pinned to a fixed local clock.

The clock sits at 2026-10-16 10:30 at UTC-05:00 so calendar-day boundaries
differ from UTC.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from reflection_sync.data.models import JournalEntry

LOCAL_TZ = timezone(timedelta(hours=-5))
NOW = datetime(2026, 10, 16, 10, 30, tzinfo=LOCAL_TZ)
TODAY = NOW.date()
USER = "user-1"
OTHER_USER = "user-2"


def at_day(days_ago: int, hour: int = 9, minute: int = 0) -> datetime:
    """Local instant ``days_ago`` calendar days before the pinned today."""
    day = TODAY - timedelta(days=days_ago)
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=LOCAL_TZ)


def days_back(n: int) -> date:
    return TODAY - timedelta(days=n)


def make_entry(
    entry_id: str,
    days_ago: Optional[int] = 0,
    mood: Optional[str] = None,
    hour: int = 9,
) -> JournalEntry:
    created = at_day(days_ago, hour) if days_ago is not None else None
    return JournalEntry(id=entry_id, created_at=created, mood=mood, content=f"reflection {entry_id}")


def entry_doc(days_ago: Optional[int] = 0, mood: Optional[str] = None, hour: int = 9) -> dict[str, Any]:
    return {
        "createdAt": at_day(days_ago, hour) if days_ago is not None else None,
        "mood": mood or "",
        "content": "Today I practiced the dichotomy of control.",
    }
