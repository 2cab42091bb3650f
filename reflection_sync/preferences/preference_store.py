"""
Preference Store - remote-first preference record with local fallback
=====================================================================

Owns one user's UserPreferences at a time.

  load   - subscribe to the remote document; on StoreUnavailable (or with no
           remote store configured) read the local cache once instead
  save   - optimistic local update first, then merge-write remotely; a failed
           write lands in the local cache and is reported as recoverable
  reset  - save of the cleared default record

State is two-stage: ``pending_local`` holds the optimistic write and is
discarded as soon as any remote snapshot is observed (last-observed-wins).
Consumers only ever see the merged ``current`` view.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

from reflection_sync.data.models import SessionContext, UserPreferences
from reflection_sync.stores.local_cache import LocalFallbackCache, preferences_key
from reflection_sync.stores.remote_store import RemoteRecordStore, preference_document_path
from reflection_sync.utils.config import get_settings
from reflection_sync.utils.exceptions import (
    MalformedRecord,
    StoreUnavailable,
    SubscriptionError,
    SyncError,
    WriteRejected,
)
from reflection_sync.utils.logger import get_logger
from reflection_sync.utils.observers import ErrorCallback, ObserverList, Unsubscribe

logger = get_logger(__name__)

PreferenceListener = Callable[[Optional[UserPreferences]], None]


class PreferenceStoreMode(str, Enum):
    IDLE = "idle"
    LIVE = "live"            # remote subscription active
    FALLBACK = "fallback"    # local cache only, no live updates
    STOPPED = "stopped"      # subscription faulted, awaiting load()


class SaveTarget(str, Enum):
    REMOTE = "remote"
    LOCAL = "local"


@dataclass
class SaveOutcome:
    success: bool
    target: SaveTarget
    preferences: UserPreferences
    error: Optional[SyncError] = None   # recoverable, for logging by the caller

    @property
    def recovered(self) -> bool:
        return self.error is not None


class PreferenceStore:
    def __init__(
        self,
        context: SessionContext,
        remote: Optional[RemoteRecordStore],
        cache: LocalFallbackCache,
        app_id: str = "",
    ) -> None:
        self._context = context
        self._remote = remote
        self._cache = cache
        self._app_id = app_id or get_settings().app_instance_id

        self._mode = PreferenceStoreMode.IDLE
        self._degraded = remote is None
        self._degraded_user: Optional[str] = None
        self._loaded_user: Optional[str] = None
        self._unsubscribe: Optional[Unsubscribe] = None
        self._generation = 0
        self._is_loading = False
        self._has_emitted = False

        self._pending_local: Optional[UserPreferences] = None
        self._confirmed: Optional[UserPreferences] = None

        self._observers: ObserverList[Optional[UserPreferences]] = ObserverList("preference_store")

    # ─── Views ──────────────────────────────────────────────────

    @property
    def user_id(self) -> str:
        return self._context.user_id

    @property
    def mode(self) -> PreferenceStoreMode:
        return self._mode

    @property
    def is_degraded(self) -> bool:
        return self._degraded

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def pending_local(self) -> Optional[UserPreferences]:
        return self._pending_local

    @property
    def confirmed(self) -> Optional[UserPreferences]:
        """Last record observed from the source of record (remote, or the cache in fallback mode)."""
        return self._confirmed

    @property
    def current(self) -> Optional[UserPreferences]:
        if self._pending_local is not None:
            return self._pending_local
        return self._confirmed

    def subscribe(self, listener: PreferenceListener, on_error: Optional[ErrorCallback] = None) -> Unsubscribe:
        unsubscribe = self._observers.subscribe(listener, on_error)
        if self._has_emitted:
            listener(self.current)
        return unsubscribe

    # ─── Load ───────────────────────────────────────────────────

    def load(self, user_id: Optional[str] = None) -> None:
        user_id = user_id or self._context.user_id
        self._detach()
        if user_id != self._context.user_id:
            self._context = self._context.with_user(user_id)
        # fallback mode is scoped to the user session that hit the outage
        if self._degraded and self._remote is not None and user_id != self._degraded_user:
            logger.info("preference_remote_retry_for_new_user", user_id=user_id)
            self._degraded = False
            self._degraded_user = None

        self._loaded_user = user_id
        self._pending_local = None
        self._confirmed = None
        self._has_emitted = False
        self._is_loading = True
        self._generation += 1
        generation = self._generation

        if self._remote is None or self._degraded:
            self._load_from_cache(user_id)
            return

        path = preference_document_path(self._app_id, user_id)
        self._mode = PreferenceStoreMode.LIVE
        try:
            unsubscribe = self._remote.subscribe_document(
                path,
                on_next=lambda data: self._on_remote_snapshot(generation, path, data),
                on_error=lambda exc: self._on_remote_error(generation, path, exc),
            )
        except StoreUnavailable as e:
            logger.warning("preference_remote_unavailable_using_cache", user_id=user_id, error=str(e))
            self._degraded = True
            self._degraded_user = user_id
            self._load_from_cache(user_id)
            return
        except Exception as e:
            self._on_remote_error(generation, path, e)
            return

        if generation == self._generation:
            self._unsubscribe = unsubscribe
        else:
            # superseded while the initial snapshot was being delivered
            unsubscribe()
        logger.info("preference_subscription_started", user_id=user_id)

    def _load_from_cache(self, user_id: str) -> None:
        self._mode = PreferenceStoreMode.FALLBACK
        self._confirmed = self._read_local(user_id)
        logger.info("preferences_loaded_from_cache", user_id=user_id, found=self._confirmed is not None)
        self._emit()

    def _on_remote_snapshot(self, generation: int, path: str, data: Optional[dict[str, Any]]) -> None:
        if generation != self._generation:
            logger.debug("stale_preference_snapshot_ignored", path=path)
            return
        try:
            prefs = UserPreferences.from_record(data, path)
        except MalformedRecord as e:
            logger.warning("malformed_preference_snapshot", path=path, error=str(e))
            prefs = None
        self._confirmed = prefs
        self._pending_local = None
        self._emit()

    def _on_remote_error(self, generation: int, path: str, exc: Exception) -> None:
        if generation != self._generation:
            return
        error = exc if isinstance(exc, SubscriptionError) else SubscriptionError(str(exc), path)
        logger.error("preference_subscription_failed", path=path, error=str(exc))
        self._detach()
        self._generation += 1
        self._mode = PreferenceStoreMode.STOPPED
        self._is_loading = False
        self._observers.fail(error)

    # ─── Save ───────────────────────────────────────────────────

    async def save(
        self,
        user_id: str,
        preferences: Union[UserPreferences, Mapping[str, Any]],
    ) -> SaveOutcome:
        prefs = UserPreferences.from_record(preferences)
        if prefs is None:
            raise MalformedRecord("Cannot save an empty preference record")

        if self._loaded_user in (None, user_id):
            self._pending_local = prefs
            self._emit()

        record = prefs.to_record()
        if self._remote is None or self._degraded:
            self._write_local(user_id, record)
            return SaveOutcome(success=True, target=SaveTarget.LOCAL, preferences=prefs)

        path = preference_document_path(self._app_id, user_id)
        try:
            await self._remote.set_document(path, record, merge=True)
        except StoreUnavailable as e:
            logger.warning("preference_remote_unavailable_on_save", user_id=user_id, error=str(e))
            self._degrade(user_id)
            self._write_local(user_id, record)
            return SaveOutcome(success=True, target=SaveTarget.LOCAL, preferences=prefs, error=e)
        except Exception as e:
            error = e if isinstance(e, WriteRejected) else WriteRejected(str(e), path)
            logger.error("preference_remote_write_failed", user_id=user_id, error=str(e))
            self._write_local(user_id, record)
            return SaveOutcome(success=True, target=SaveTarget.LOCAL, preferences=prefs, error=error)

        logger.info(
            "preferences_saved",
            user_id=user_id,
            completed_onboarding=prefs.completed_onboarding,
            goals=len(prefs.goals),
        )
        return SaveOutcome(success=True, target=SaveTarget.REMOTE, preferences=prefs)

    async def reset(self, user_id: str) -> SaveOutcome:
        logger.info("preferences_reset", user_id=user_id)
        return await self.save(user_id, UserPreferences.cleared())

    # ─── Teardown ───────────────────────────────────────────────

    def close(self) -> None:
        self._detach()
        self._generation += 1
        self._is_loading = False
        self._mode = PreferenceStoreMode.IDLE
        self._loaded_user = None

    def _detach(self) -> None:
        if self._unsubscribe is not None:
            unsubscribe, self._unsubscribe = self._unsubscribe, None
            unsubscribe()
            logger.info("preference_subscription_stopped", user_id=self._loaded_user)

    def _degrade(self, user_id: str) -> None:
        self._degraded = True
        self._degraded_user = user_id
        self._detach()
        self._generation += 1
        self._mode = PreferenceStoreMode.FALLBACK

    # ─── Local cache ────────────────────────────────────────────

    def _write_local(self, user_id: str, record: dict[str, Any]) -> None:
        self._cache.set(preferences_key(self._app_id, user_id), json.dumps(record))
        logger.info("preferences_saved", user_id=user_id, target=SaveTarget.LOCAL.value)

    def _read_local(self, user_id: str) -> Optional[UserPreferences]:
        raw = self._cache.get(preferences_key(self._app_id, user_id))
        if not raw:
            return None
        try:
            return UserPreferences.from_record(json.loads(raw))
        except (ValueError, MalformedRecord) as e:
            logger.warning("malformed_cached_preferences", user_id=user_id, error=str(e))
            return None

    def _emit(self) -> None:
        self._is_loading = False
        self._has_emitted = True
        self._observers.emit(self.current)
