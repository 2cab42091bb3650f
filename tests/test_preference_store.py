"""
PreferenceStore: remote-first load/save, optimistic state, local fallback.
"""

import asyncio
import json

import pytest

from reflection_sync.data.models import FamiliarityLevel, ReflectionWindow, UserPreferences
from reflection_sync.preferences.preference_store import PreferenceStore, PreferenceStoreMode, SaveTarget
from reflection_sync.stores.local_cache import preferences_key
from reflection_sync.stores.remote_store import InMemoryRecordStore, preference_document_path
from reflection_sync.utils.exceptions import (
    MalformedRecord,
    StoreUnavailable,
    SubscriptionError,
    WriteRejected,
)

from tests.factories import OTHER_USER, USER


def onboarded(**overrides) -> UserPreferences:
    fields = dict(
        name="Marcus",
        goals=["Build Resilience", "Improve Focus"],
        familiarity_level=FamiliarityLevel.SOMEWHAT,
        preferred_reflection_window=ReflectionWindow.EVENING,
        completed_onboarding=True,
    )
    fields.update(overrides)
    return UserPreferences(**fields)


class GatedRecordStore(InMemoryRecordStore):
    """Holds every remote write until the gate opens."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def set_document(self, path, data, merge=True):
        await self.gate.wait()
        await super().set_document(path, data, merge)


@pytest.fixture
def store(context, remote, cache):
    return PreferenceStore(context, remote, cache)


@pytest.fixture
def pref_path(app_id):
    return preference_document_path(app_id, USER)


# ============================================================================
# Load
# ============================================================================

class TestLoad:
    def test_missing_record_emits_none_once(self, store):
        received = []
        store.subscribe(received.append)
        assert not store.is_loading

        store.load(USER)

        assert received == [None]
        assert store.mode == PreferenceStoreMode.LIVE
        assert not store.is_loading

    @pytest.mark.asyncio
    async def test_emits_on_every_remote_change(self, store, remote, pref_path):
        received = []
        store.subscribe(received.append)
        store.load(USER)

        await remote.set_document(pref_path, {"name": "Seneca", "completedOnboarding": False})
        await remote.set_document(pref_path, {"completedOnboarding": True})

        assert received[0] is None
        assert received[1].name == "Seneca"
        assert received[2].name == "Seneca"   # merge keeps untouched fields
        assert received[2].completed_onboarding is True

    def test_deleted_document_emits_none(self, store, remote, pref_path):
        remote.add_document(pref_path.rsplit("/", 1)[0], {"name": "Zeno"}, doc_id="main")
        received = []
        store.subscribe(received.append)
        store.load(USER)
        remote.delete_document(pref_path)
        assert received[0].name == "Zeno"
        assert received[-1] is None
        assert store.current is None

    def test_malformed_snapshot_is_treated_as_none(self, store, remote, pref_path):
        remote.add_document(pref_path.rsplit("/", 1)[0], {"goals": "not a list"}, doc_id="main")
        received = []
        store.subscribe(received.append)
        store.load(USER)
        assert received == [None]
        assert store.mode == PreferenceStoreMode.LIVE

    def test_late_subscriber_receives_current_value(self, store):
        store.load(USER)
        received = []
        store.subscribe(received.append)
        assert received == [None]

    def test_unreachable_remote_falls_back_to_cache_once(self, store, remote, cache, app_id):
        cached = onboarded(name="Epictetus")
        cache.set(preferences_key(app_id, USER), json.dumps(cached.to_record()))
        remote.set_available(False)
        received = []
        store.subscribe(received.append)

        store.load(USER)

        assert received == [cached]
        assert store.mode == PreferenceStoreMode.FALLBACK
        assert store.is_degraded
        assert remote.listener_count() == 0

    def test_no_remote_store_reads_cache(self, context, cache, app_id):
        cache.set(
            preferences_key(app_id, USER),
            json.dumps({
                "name": "Musonius",
                "goals": ["Emotional Regulation"],
                "stoicFamiliarity": "Quite Knowledgeable",
                "preferredReflectionTime": "Morning (for intention setting)",
                "completedOnboarding": True,
            }),
        )
        store = PreferenceStore(context, None, cache)
        store.load()
        assert store.current.familiarity_level == FamiliarityLevel.KNOWLEDGEABLE
        assert store.current.preferred_reflection_window == ReflectionWindow.MORNING
        assert store.mode == PreferenceStoreMode.FALLBACK

    def test_corrupt_cache_entry_reads_as_none(self, context, cache, app_id):
        cache.set(preferences_key(app_id, USER), "{not json")
        store = PreferenceStore(context, None, cache)
        received = []
        store.subscribe(received.append)
        store.load()
        assert received == [None]


# ============================================================================
# Save
# ============================================================================

class TestSave:
    @pytest.mark.asyncio
    async def test_round_trip(self, store, remote, pref_path):
        received = []
        store.subscribe(received.append)
        store.load(USER)
        prefs = onboarded()

        outcome = await store.save(USER, prefs)

        assert outcome.success
        assert outcome.target == SaveTarget.REMOTE
        assert outcome.error is None
        assert received[-1] == prefs
        assert store.confirmed == prefs
        assert store.pending_local is None
        assert await remote.get_document(pref_path) == prefs.to_record()

    @pytest.mark.asyncio
    async def test_local_state_updates_before_remote_confirms(self, context, cache):
        remote = GatedRecordStore()
        store = PreferenceStore(context, remote, cache)
        received = []
        store.subscribe(received.append)
        store.load(USER)
        prefs = onboarded()

        task = asyncio.create_task(store.save(USER, prefs))
        await asyncio.sleep(0)

        assert store.pending_local == prefs
        assert store.confirmed is None
        assert store.current == prefs
        assert received == [None, prefs]

        remote.gate.set()
        outcome = await task
        assert outcome.target == SaveTarget.REMOTE
        assert store.pending_local is None
        assert store.confirmed == prefs

    @pytest.mark.asyncio
    async def test_rejected_write_lands_in_cache(self, store, remote, cache, app_id):
        store.load(USER)
        remote.fail_next_write()
        prefs = onboarded()

        outcome = await store.save(USER, prefs)

        assert outcome.success
        assert outcome.target == SaveTarget.LOCAL
        assert isinstance(outcome.error, WriteRejected)
        assert outcome.recovered
        assert json.loads(cache.get(preferences_key(app_id, USER))) == prefs.to_record()
        assert store.current == prefs
        assert store.mode == PreferenceStoreMode.LIVE   # single failed write, not an outage

    @pytest.mark.asyncio
    async def test_unexpected_write_error_is_wrapped(self, store, remote):
        store.load(USER)
        remote.fail_next_write(ConnectionResetError("socket closed"))
        outcome = await store.save(USER, onboarded())
        assert isinstance(outcome.error, WriteRejected)
        assert "socket closed" in outcome.error.message

    @pytest.mark.asyncio
    async def test_permanently_unreachable_remote(self, store, remote, cache, app_id):
        remote.set_available(False)
        store.load(USER)
        prefs = onboarded(goals=["Reduce Anxiety/Stress"])

        outcome = await store.save(USER, prefs)

        assert outcome.success
        assert outcome.target == SaveTarget.LOCAL
        assert json.loads(cache.get(preferences_key(app_id, USER))) == prefs.to_record()
        assert remote.write_count == 0

    @pytest.mark.asyncio
    async def test_outage_during_save_degrades_for_the_session(self, store, remote, cache, app_id, pref_path):
        store.load(USER)
        remote.set_available(False)

        outcome = await store.save(USER, onboarded())

        assert isinstance(outcome.error, StoreUnavailable)
        assert store.mode == PreferenceStoreMode.FALLBACK
        assert remote.listener_count(pref_path) == 0

        remote.set_available(True)
        second = await store.save(USER, onboarded(name="Cato"))
        assert second.target == SaveTarget.LOCAL
        assert remote.write_count == 0
        assert json.loads(cache.get(preferences_key(app_id, USER)))["name"] == "Cato"

    @pytest.mark.asyncio
    async def test_accepts_plain_mapping(self, store, remote, pref_path):
        store.load(USER)
        await store.save(USER, {"name": "Marcus", "goals": ["Personal Growth"], "completedOnboarding": True})
        stored = await remote.get_document(pref_path)
        assert stored["familiarityLevel"] == "unset"
        assert stored["goals"] == ["Personal Growth"]

    @pytest.mark.asyncio
    async def test_malformed_record_rejected_before_any_change(self, store, remote):
        received = []
        store.subscribe(received.append)
        store.load(USER)
        with pytest.raises(MalformedRecord):
            await store.save(USER, {"goals": 7})
        assert received == [None]
        assert remote.write_count == 0

    @pytest.mark.asyncio
    async def test_reset_writes_cleared_default(self, store, remote, pref_path):
        store.load(USER)
        await store.save(USER, onboarded())

        outcome = await store.reset(USER)

        assert outcome.preferences == UserPreferences.cleared()
        assert await remote.get_document(pref_path) == {
            "name": None,
            "goals": [],
            "familiarityLevel": "unset",
            "preferredReflectionWindow": "unset",
            "completedOnboarding": False,
        }
        assert store.current.completed_onboarding is False

    @pytest.mark.asyncio
    async def test_save_without_remote_store(self, context, cache, app_id):
        store = PreferenceStore(context, None, cache)
        store.load()
        outcome = await store.save(USER, onboarded())
        assert outcome.target == SaveTarget.LOCAL
        assert outcome.error is None
        assert store.current == onboarded()


# ============================================================================
# Reconciliation & lifecycle
# ============================================================================

class TestReconciliation:
    @pytest.mark.asyncio
    async def test_last_observed_remote_snapshot_wins(self, store, remote, pref_path):
        store.load(USER)
        remote.fail_next_write()
        await store.save(USER, onboarded(name="Local"))
        assert store.current.name == "Local"

        await remote.set_document(pref_path, {"name": "Remote", "completedOnboarding": False})

        assert store.pending_local is None
        assert store.current.name == "Remote"
        assert store.current.completed_onboarding is False

    @pytest.mark.asyncio
    async def test_switching_user_terminates_previous_subscription(self, store, remote, app_id, pref_path):
        store.load(USER)
        store.load(OTHER_USER)
        received = []
        store.subscribe(received.append)
        received.clear()

        await remote.set_document(pref_path, {"name": "Stale"})

        assert received == []
        assert remote.listener_count(pref_path) == 0
        assert remote.listener_count(preference_document_path(app_id, OTHER_USER)) == 1
        assert store.user_id == OTHER_USER

    @pytest.mark.asyncio
    async def test_subscription_fault_stops_emission_until_reloaded(self, store, remote, pref_path):
        received, errors = [], []
        store.subscribe(received.append, errors.append)
        store.load(USER)

        remote.fail_subscriptions(pref_path)
        await remote.set_document(pref_path, {"name": "Ignored"})

        assert len(errors) == 1 and isinstance(errors[0], SubscriptionError)
        assert store.mode == PreferenceStoreMode.STOPPED
        assert received == [None]

        store.load(USER)
        assert received[-1].name == "Ignored"
        assert store.mode == PreferenceStoreMode.LIVE

    def test_close_releases_listener(self, store, remote, pref_path):
        store.load(USER)
        store.close()
        assert remote.listener_count(pref_path) == 0
        assert store.mode == PreferenceStoreMode.IDLE

    def test_fallback_is_scoped_to_the_user_that_hit_the_outage(self, store, remote, app_id):
        remote.set_available(False)
        store.load(USER)
        assert store.mode == PreferenceStoreMode.FALLBACK

        remote.set_available(True)
        store.load(USER)
        assert store.mode == PreferenceStoreMode.FALLBACK

        store.load(OTHER_USER)
        assert store.mode == PreferenceStoreMode.LIVE
        assert not store.is_degraded
        assert remote.listener_count(preference_document_path(app_id, OTHER_USER)) == 1

    def test_no_remote_store_stays_local_for_every_user(self, context, cache):
        store = PreferenceStore(context, None, cache)
        store.load(USER)
        store.load(OTHER_USER)
        assert store.mode == PreferenceStoreMode.FALLBACK
        assert store.is_degraded
