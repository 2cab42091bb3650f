"""Shared fixtures: pinned clock, in-memory collaborators, session context."""

from __future__ import annotations

import pytest

from reflection_sync.data.models import SessionContext
from reflection_sync.stores.local_cache import InMemoryFallbackCache
from reflection_sync.stores.remote_store import InMemoryRecordStore, journal_collection_path
from reflection_sync.utils.clock import FixedClock
from reflection_sync.utils.config import get_settings

from tests.factories import NOW, USER


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def context(clock) -> SessionContext:
    return SessionContext(user_id=USER, clock=clock)


@pytest.fixture
def remote() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def cache() -> InMemoryFallbackCache:
    return InMemoryFallbackCache()


@pytest.fixture
def app_id() -> str:
    return get_settings().app_instance_id


@pytest.fixture
def journal_path(app_id) -> str:
    return journal_collection_path(app_id, USER)
