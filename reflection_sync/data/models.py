"""
Data Models - preferences, journal entries, derived stats
==========================================================

UserPreferences  - one record per user, PreferenceStore is its only writer
JournalEntry     - read-only view of one reflection from the journal stream
JournalStats     - materialized view derived from a journal snapshot
SessionContext   - user id + clock, injected into the stores

Records travel to and from the collaborators as plain mappings with camelCase
keys. Legacy keys and display labels written by earlier app versions are
accepted on read.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from reflection_sync.utils.clock import ClockSource, SystemClock
from reflection_sync.utils.exceptions import MalformedRecord


# ── Enums ────────────────────────────────────────────────────

class FamiliarityLevel(str, Enum):
    UNSET = "unset"
    NEW = "new"
    SOMEWHAT = "somewhat"
    KNOWLEDGEABLE = "knowledgeable"


class ReflectionWindow(str, Enum):
    UNSET = "unset"
    MORNING = "morning"
    EVENING = "evening"
    ANYTIME = "anytime"


# Onboarding display labels stored by earlier versions
_LEGACY_FAMILIARITY = {
    "": FamiliarityLevel.UNSET,
    "new to stoicism": FamiliarityLevel.NEW,
    "somewhat familiar": FamiliarityLevel.SOMEWHAT,
    "quite knowledgeable": FamiliarityLevel.KNOWLEDGEABLE,
}

_LEGACY_WINDOW_PREFIXES = (
    ("morning", ReflectionWindow.MORNING),
    ("evening", ReflectionWindow.EVENING),
    ("anytime", ReflectionWindow.ANYTIME),
)


def _coerce_familiarity(value: Any) -> Any:
    if value is None:
        return FamiliarityLevel.UNSET
    if isinstance(value, str):
        key = value.strip().lower()
        if key in _LEGACY_FAMILIARITY:
            return _LEGACY_FAMILIARITY[key]
        return key
    return value


def _coerce_window(value: Any) -> Any:
    if value is None:
        return ReflectionWindow.UNSET
    if isinstance(value, str):
        key = value.strip().lower()
        if not key:
            return ReflectionWindow.UNSET
        for prefix, window in _LEGACY_WINDOW_PREFIXES:
            if key.startswith(prefix):
                return window
        return key
    return value


def coerce_timestamp(value: Any) -> Optional[datetime]:
    """Best-effort conversion of a stored timestamp to ``datetime``.

    Accepts datetimes, server timestamp objects exposing ``to_datetime()``,
    epoch seconds (or milliseconds) and ISO-8601 strings. Returns None for
    anything unresolvable, e.g. a pending server timestamp.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value
    to_datetime = getattr(value, "to_datetime", None)
    if callable(to_datetime):
        try:
            resolved = to_datetime()
        except (TypeError, ValueError):
            return None
        return resolved if isinstance(resolved, datetime) else None
    if isinstance(value, (int, float)):
        epoch = float(value)
        if epoch > 1_000_000_000_000:
            epoch /= 1000.0
        try:
            return datetime.fromtimestamp(epoch, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# USER PREFERENCES
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class UserPreferences(BaseModel):
    """Personalization record captured by onboarding."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    goals: list[str] = Field(default_factory=list)   # user-chosen priority order
    familiarity_level: FamiliarityLevel = Field(
        default=FamiliarityLevel.UNSET,
        validation_alias=AliasChoices("familiarityLevel", "stoicFamiliarity", "familiarity_level"),
        serialization_alias="familiarityLevel",
    )
    preferred_reflection_window: ReflectionWindow = Field(
        default=ReflectionWindow.UNSET,
        validation_alias=AliasChoices(
            "preferredReflectionWindow", "preferredReflectionTime", "preferred_reflection_window",
        ),
        serialization_alias="preferredReflectionWindow",
    )
    completed_onboarding: bool = Field(
        default=False,
        validation_alias=AliasChoices("completedOnboarding", "completed_onboarding"),
        serialization_alias="completedOnboarding",
    )

    @field_validator("name", mode="before")
    @classmethod
    def _blank_name_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("goals", mode="before")
    @classmethod
    def _goals_default(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("familiarity_level", mode="before")
    @classmethod
    def _familiarity_labels(cls, value: Any) -> Any:
        return _coerce_familiarity(value)

    @field_validator("preferred_reflection_window", mode="before")
    @classmethod
    def _window_labels(cls, value: Any) -> Any:
        return _coerce_window(value)

    @classmethod
    def cleared(cls) -> "UserPreferences":
        """Default record written by a personalization reset."""
        return cls()

    @classmethod
    def from_record(cls, data: Any, path: Optional[str] = None) -> Optional["UserPreferences"]:
        if data is None:
            return None
        if isinstance(data, UserPreferences):
            return data
        if not isinstance(data, Mapping):
            raise MalformedRecord(f"Expected a mapping, got {type(data).__name__}", path)
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            raise MalformedRecord(f"Invalid preference record: {e.error_count()} error(s)", path) from e

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# JOURNAL
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class JournalEntry(BaseModel):
    """One reflection as delivered by the journal stream."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    created_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("createdAt", "created_at"),
        serialization_alias="createdAt",
    )
    mood: Optional[str] = None
    content: str = ""

    @field_validator("created_at", mode="before")
    @classmethod
    def _resolve_timestamp(cls, value: Any) -> Optional[datetime]:
        return coerce_timestamp(value)

    @field_validator("mood", mode="before")
    @classmethod
    def _normalize_mood(cls, value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        value = value.strip()
        return value or None

    @field_validator("content", mode="before")
    @classmethod
    def _content_default(cls, value: Any) -> Any:
        return "" if value is None else value

    @classmethod
    def from_document(cls, doc_id: str, data: Any) -> "JournalEntry":
        if not isinstance(data, Mapping):
            raise MalformedRecord(f"Journal document {doc_id!r} is not a mapping")
        payload = dict(data)
        payload["id"] = doc_id
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise MalformedRecord(f"Invalid journal document {doc_id!r}: {e.error_count()} error(s)") from e


class JournalStats(BaseModel):
    """Aggregates over the current journal snapshot. Never persisted."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    count: int = Field(default=0, ge=0)
    streak_days: int = Field(default=0, ge=0, serialization_alias="streakDays")
    common_moods: list[str] = Field(default_factory=list, serialization_alias="commonMoods")

    @classmethod
    def empty(cls) -> "JournalStats":
        return cls()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SESSION
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass(frozen=True)
class SessionContext:
    user_id: str
    clock: ClockSource = field(default_factory=SystemClock)

    def with_user(self, user_id: str) -> "SessionContext":
        return SessionContext(user_id=user_id, clock=self.clock)
