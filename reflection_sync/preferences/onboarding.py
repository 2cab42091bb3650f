from __future__ import annotations

from typing import Optional

from reflection_sync.data.models import FamiliarityLevel, ReflectionWindow, UserPreferences
from reflection_sync.utils.exceptions import OnboardingIncomplete
from reflection_sync.utils.logger import get_logger

logger = get_logger(__name__)


class OnboardingTransitionDetector:
    """One-shot signal for the false -> true edge of ``completed_onboarding``.

    Holds only the last observed value of the flag. A transition already seen
    is not reported again until the flag is observed false once more or the
    consumer calls ``rearm()``.
    """

    def __init__(self) -> None:
        self._last_completed: Optional[bool] = None

    @property
    def last_completed(self) -> Optional[bool]:
        return self._last_completed

    def observe(self, previous: Optional[UserPreferences], current: Optional[UserPreferences]) -> bool:
        if current is None:
            return False

        already_reported = self._last_completed is True
        self._last_completed = current.completed_onboarding

        if previous is None:
            return False
        fired = (
            not previous.completed_onboarding
            and current.completed_onboarding
            and not already_reported
        )
        if fired:
            logger.info("onboarding_completed_transition")
        return fired

    def rearm(self) -> None:
        self._last_completed = None


def build_onboarding_record(
    name: Optional[str],
    goals: list[str],
    familiarity: FamiliarityLevel,
    window: ReflectionWindow,
) -> UserPreferences:
    """Validate onboarding answers and produce the completed preference record."""
    missing = []
    if not (name or "").strip():
        missing.append("name")
    if not [g for g in goals if g and g.strip()]:
        missing.append("goals")
    if FamiliarityLevel(familiarity) is FamiliarityLevel.UNSET:
        missing.append("familiarity_level")
    if ReflectionWindow(window) is ReflectionWindow.UNSET:
        missing.append("preferred_reflection_window")
    if missing:
        raise OnboardingIncomplete(f"Missing onboarding answers: {', '.join(missing)}", missing)

    return UserPreferences(
        name=name.strip(),
        goals=[g for g in goals if g and g.strip()],
        familiarity_level=familiarity,
        preferred_reflection_window=window,
        completed_onboarding=True,
    )
