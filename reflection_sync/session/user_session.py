"""
User Session - wires preferences, journal stats and onboarding detection
========================================================================

One session serves one authenticated user at a time. ``start`` tears down
every subscription of the previous user before subscribing for the new one,
so data from two users never interleaves. Consumers observe a single merged
SessionState that is republished after every inbound notification.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Union

from reflection_sync.data.models import (
    FamiliarityLevel,
    JournalStats,
    ReflectionWindow,
    SessionContext,
    UserPreferences,
)
from reflection_sync.journal.journal_analytics import JournalStatsComputer
from reflection_sync.preferences.onboarding import OnboardingTransitionDetector, build_onboarding_record
from reflection_sync.preferences.preference_store import PreferenceStore, PreferenceStoreMode, SaveOutcome
from reflection_sync.session.daily_message import DailyMessage, compose_daily_message
from reflection_sync.stores.local_cache import LocalFallbackCache
from reflection_sync.stores.remote_store import RemoteRecordStore
from reflection_sync.utils.clock import ClockSource, SystemClock, resolve_timezone
from reflection_sync.utils.config import get_settings
from reflection_sync.utils.exceptions import SyncError
from reflection_sync.utils.logger import bind_session_context, get_logger
from reflection_sync.utils.observers import ObserverList, Unsubscribe

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionState:
    user_id: Optional[str] = None
    preferences: Optional[UserPreferences] = None
    stats: JournalStats = field(default_factory=JournalStats.empty)
    is_loading_preferences: bool = False
    just_completed_onboarding: bool = False
    preference_mode: PreferenceStoreMode = PreferenceStoreMode.IDLE
    last_error: Optional[Exception] = None


SessionListener = Callable[[SessionState], None]


class UserSession:
    def __init__(
        self,
        remote: Optional[RemoteRecordStore],
        cache: LocalFallbackCache,
        clock: Optional[ClockSource] = None,
        app_id: str = "",
    ) -> None:
        settings = get_settings()
        clock = clock or SystemClock(resolve_timezone(settings.timezone))
        self._context = SessionContext(user_id="", clock=clock)
        self._preferences = PreferenceStore(self._context, remote, cache, app_id=app_id)
        self._journal = JournalStatsComputer(self._context, remote, app_id=app_id)
        self._detector = OnboardingTransitionDetector()

        self._active_user: Optional[str] = None
        self._last_preferences: Optional[UserPreferences] = None
        self._just_completed = False
        self._last_error: Optional[Exception] = None
        self._observers: ObserverList[SessionState] = ObserverList("user_session")

        self._preferences.subscribe(self._on_preferences, self._on_error)
        self._journal.subscribe(self._on_stats, self._on_error)

    # ─── Views ──────────────────────────────────────────────────

    @property
    def user_id(self) -> Optional[str]:
        return self._active_user

    @property
    def context(self) -> SessionContext:
        return self._context

    @property
    def preference_store(self) -> PreferenceStore:
        return self._preferences

    @property
    def journal_stats(self) -> JournalStatsComputer:
        return self._journal

    @property
    def state(self) -> SessionState:
        return SessionState(
            user_id=self._active_user,
            preferences=self._preferences.current,
            stats=self._journal.latest,
            is_loading_preferences=self._preferences.is_loading,
            just_completed_onboarding=self._just_completed,
            preference_mode=self._preferences.mode,
            last_error=self._last_error,
        )

    def subscribe(self, listener: SessionListener) -> Unsubscribe:
        return self._observers.subscribe(listener)

    # ─── Lifecycle ──────────────────────────────────────────────

    def start(self, user_id: str) -> None:
        if not user_id:
            raise ValueError("user_id is required to start a session")
        self.stop()

        self._active_user = user_id
        self._context = self._context.with_user(user_id)
        self._last_preferences = None
        self._just_completed = False
        self._last_error = None
        self._detector.rearm()
        bind_session_context(user_id)
        logger.info("user_session_started", user_id=user_id)

        self._preferences.load(user_id)
        self._journal.start(user_id)

    def stop(self) -> None:
        if self._active_user is None:
            return
        self._preferences.close()
        self._journal.stop()
        logger.info("user_session_stopped", user_id=self._active_user)
        bind_session_context(None)
        self._active_user = None

    # ─── Preference operations ──────────────────────────────────

    async def save_preferences(self, preferences: Union[UserPreferences, Mapping[str, Any]]) -> SaveOutcome:
        outcome = await self._preferences.save(self._require_user(), preferences)
        if outcome.error is not None:
            logger.warning("preferences_saved_locally", error=str(outcome.error))
        return outcome

    async def reset_preferences(self) -> SaveOutcome:
        return await self._preferences.reset(self._require_user())

    async def complete_onboarding(
        self,
        name: Optional[str],
        goals: list[str],
        familiarity: FamiliarityLevel,
        window: ReflectionWindow,
    ) -> SaveOutcome:
        record = build_onboarding_record(name, goals, familiarity, window)
        return await self.save_preferences(record)

    def acknowledge_onboarding(self) -> None:
        """Called once the welcome transition has been shown."""
        self._just_completed = False
        self._detector.rearm()
        self._publish()

    # ─── Journal ────────────────────────────────────────────────

    def refresh_stats(self) -> JournalStats:
        return self._journal.refresh()

    def daily_message(self) -> DailyMessage:
        return compose_daily_message(
            self._preferences.current, self._journal.latest, self._context.clock.now()
        )

    # ─── Notifications ──────────────────────────────────────────

    def _on_preferences(self, current: Optional[UserPreferences]) -> None:
        if self._detector.observe(self._last_preferences, current):
            self._just_completed = True
        # no record yet means onboarding has not been completed
        self._last_preferences = current if current is not None else UserPreferences.cleared()
        self._publish()

    def _on_stats(self, stats: JournalStats) -> None:
        self._publish()

    def _on_error(self, error: Exception) -> None:
        self._last_error = error
        category = error.category.value if isinstance(error, SyncError) else "unknown"
        logger.warning("user_session_stream_error", category=category, error=str(error))
        self._publish()

    def _publish(self) -> None:
        self._observers.emit(self.state)

    def _require_user(self) -> str:
        if self._active_user is None:
            raise RuntimeError("No active user session")
        return self._active_user
