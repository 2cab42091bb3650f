from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from reflection_sync.data.models import JournalStats, ReflectionWindow, UserPreferences


@dataclass(frozen=True)
class SuggestedAction:
    text: str
    screen: str = "journal"


@dataclass(frozen=True)
class DailyMessage:
    text: str
    suggested_action: SuggestedAction


DEFAULT_MESSAGE = "Ready to reflect and grow?"
DEFAULT_ACTION = SuggestedAction("New Journal Entry")

EVENING_START_HOUR = 17
MORNING_END_HOUR = 12


def compose_daily_message(
    preferences: Optional[UserPreferences],
    stats: JournalStats,
    now: datetime,
) -> DailyMessage:
    """Pick the Today-screen nudge: preferred window, then streak, then top goal."""
    window = preferences.preferred_reflection_window if preferences else ReflectionWindow.UNSET
    goals = preferences.goals if preferences else []

    in_window = (
        (window is ReflectionWindow.MORNING and now.hour < MORNING_END_HOUR)
        or (window is ReflectionWindow.EVENING and now.hour >= EVENING_START_HOUR)
    )
    if in_window:
        return DailyMessage(
            f"It's {window.value} - your preferred time for reflection.",
            SuggestedAction("Evening Review" if window is ReflectionWindow.EVENING else "Morning Intention"),
        )
    if stats.streak_days > 1:
        return DailyMessage(
            f"You're on a {stats.streak_days}-day reflection streak! Keep the momentum.",
            DEFAULT_ACTION,
        )
    if goals:
        return DailyMessage(
            f'Focusing on "{goals[0]}" today? Let\'s explore that.',
            SuggestedAction(f"Reflect on {goals[0]}"),
        )
    if preferences and preferences.name:
        return DailyMessage(f"Welcome back, {preferences.name}. {DEFAULT_MESSAGE}", DEFAULT_ACTION)
    return DailyMessage(DEFAULT_MESSAGE, DEFAULT_ACTION)
