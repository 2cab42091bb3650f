"""
Personalization & Journal Analytics Synchronization Engine
===========================================================

Keeps a user's preference record in step with a remote store (with a local
offline fallback), derives live statistics from the user's journal stream and
detects onboarding completion.

Architecture:
  data/models.py                  - UserPreferences, JournalEntry, JournalStats, SessionContext
  stores/remote_store.py          - remote document/collection contract + in-memory adapter
  stores/local_cache.py           - synchronous fallback cache (memory, SQLite)
  preferences/preference_store.py - remote-first load/save with optimistic local state
  preferences/onboarding.py       - one-shot onboarding completion detector
  journal/journal_analytics.py    - count / streak / common moods, recomputed per snapshot
  session/user_session.py         - per-user wiring of all of the above
"""

from reflection_sync.data.models import (
    FamiliarityLevel,
    JournalEntry,
    JournalStats,
    ReflectionWindow,
    SessionContext,
    UserPreferences,
)
from reflection_sync.journal.journal_analytics import JournalStatsComputer, recompute
from reflection_sync.preferences.onboarding import OnboardingTransitionDetector
from reflection_sync.preferences.preference_store import (
    PreferenceStore,
    PreferenceStoreMode,
    SaveOutcome,
    SaveTarget,
)
from reflection_sync.session.user_session import SessionState, UserSession
from reflection_sync.stores.local_cache import (
    InMemoryFallbackCache,
    LocalFallbackCache,
    SqliteFallbackCache,
)
from reflection_sync.stores.remote_store import InMemoryRecordStore, RemoteRecordStore
from reflection_sync.utils.clock import ClockSource, FixedClock, SystemClock

__all__ = [
    # Models
    "FamiliarityLevel", "ReflectionWindow", "UserPreferences",
    "JournalEntry", "JournalStats", "SessionContext",
    # Collaborators
    "RemoteRecordStore", "InMemoryRecordStore",
    "LocalFallbackCache", "InMemoryFallbackCache", "SqliteFallbackCache",
    "ClockSource", "SystemClock", "FixedClock",
    # Engines
    "PreferenceStore", "PreferenceStoreMode", "SaveOutcome", "SaveTarget",
    "OnboardingTransitionDetector", "JournalStatsComputer", "recompute",
    "UserSession", "SessionState",
]
