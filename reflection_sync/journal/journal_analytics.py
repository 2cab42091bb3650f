"""
Journal Analytics - live reflection statistics
==============================================

Derives JournalStats from the user's journal stream:
  - count        - entries in the snapshot
  - streak_days  - consecutive calendar days with at least one entry,
                   ending today or yesterday
  - common_moods - most frequent mood labels, ties by first appearance

Stats are recomputed in full from every snapshot. Entries may be edited,
deleted or confirmed out of order, so nothing is patched incrementally.
"""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Optional, Sequence

from reflection_sync.data.models import JournalEntry, JournalStats, SessionContext
from reflection_sync.stores.remote_store import (
    DocumentSnapshot,
    RemoteRecordStore,
    journal_collection_path,
)
from reflection_sync.utils.config import get_settings
from reflection_sync.utils.exceptions import MalformedRecord, StoreUnavailable, SubscriptionError
from reflection_sync.utils.logger import get_logger
from reflection_sync.utils.observers import ErrorCallback, ObserverList, Unsubscribe

logger = get_logger(__name__)

StatsListener = Callable[[JournalStats], None]
DayResolver = Callable[[datetime], date]


def _system_local_day(ts: datetime) -> date:
    if ts.tzinfo is None:
        return ts.date()
    return ts.astimezone().date()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# PURE COMPUTATION
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def rank_moods(entries: Iterable[JournalEntry], limit: int = 2) -> list[str]:
    """Top ``limit`` moods by frequency. Counter keeps first-seen order, and sorted() is stable."""
    counts = Counter(e.mood for e in entries if e.mood)
    ranked = sorted(counts.items(), key=lambda item: -item[1])
    return [mood for mood, _ in ranked[:max(limit, 0)]]


def distinct_days(entries: Iterable[JournalEntry], day_of: DayResolver = _system_local_day) -> list[date]:
    """Ascending distinct calendar days of the confirmed entries."""
    return sorted({day_of(e.created_at) for e in entries if e.created_at is not None})


def compute_streak(days: Sequence[date], today: date) -> int:
    """
    Length of the run of consecutive days ending at the most recent day.
    The run only counts while it is still open: its last day must be today
    or yesterday, so a most recent day after ``today`` also yields 0.
    ``days`` must be ascending and distinct.
    """
    if not days:
        return 0

    anchor = days[-1]
    if anchor != today and anchor != today - timedelta(days=1):
        return 0

    streak = 1
    for day in reversed(days[:-1]):
        if day != anchor - timedelta(days=1):
            break
        streak += 1
        anchor = day
    return streak


def recompute(
    entries: Optional[Sequence[JournalEntry]],
    today: date,
    day_of: DayResolver = _system_local_day,
    mood_limit: int = 2,
) -> JournalStats:
    entries = list(entries or [])
    return JournalStats(
        count=len(entries),
        streak_days=compute_streak(distinct_days(entries, day_of), today),
        common_moods=rank_moods(entries, mood_limit),
    )


def parse_snapshot(docs: Optional[Iterable[DocumentSnapshot]], path: str = "") -> list[JournalEntry]:
    """Convert a collection snapshot to entries, dropping documents that do not parse."""
    entries: list[JournalEntry] = []
    for doc in docs or []:
        try:
            entries.append(JournalEntry.from_document(doc.id, doc.data))
        except MalformedRecord as e:
            logger.warning("malformed_journal_document_skipped", path=path, doc_id=doc.id, error=str(e))
    return entries


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# LIVE FEED
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class JournalStatsComputer:
    """
    Subscribes to one user's journal collection (newest first) and publishes
    fresh JournalStats for every snapshot.
    """

    def __init__(
        self,
        context: SessionContext,
        remote: Optional[RemoteRecordStore],
        app_id: str = "",
        mood_limit: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._context = context
        self._remote = remote
        self._app_id = app_id or settings.app_instance_id
        self._mood_limit = settings.common_moods_limit if mood_limit is None else mood_limit

        self._unsubscribe: Optional[Unsubscribe] = None
        self._generation = 0
        self._running = False
        self._entries: tuple[JournalEntry, ...] = ()
        self._latest = JournalStats.empty()
        self._observers: ObserverList[JournalStats] = ObserverList("journal_stats")

    @property
    def user_id(self) -> str:
        return self._context.user_id

    @property
    def latest(self) -> JournalStats:
        return self._latest

    @property
    def entries(self) -> tuple[JournalEntry, ...]:
        return self._entries

    @property
    def is_running(self) -> bool:
        return self._running

    def subscribe(self, listener: StatsListener, on_error: Optional[ErrorCallback] = None) -> Unsubscribe:
        return self._observers.subscribe(listener, on_error)

    def recompute(self, entries: Optional[Sequence[JournalEntry]], today: Optional[date] = None) -> JournalStats:
        clock = self._context.clock
        return recompute(
            entries,
            today if today is not None else clock.today(),
            day_of=clock.local_day,
            mood_limit=self._mood_limit,
        )

    def refresh(self) -> JournalStats:
        """Re-evaluate the last snapshot against the clock's current day."""
        stats = self.recompute(self._entries)
        if stats != self._latest:
            self._latest = stats
            self._observers.emit(stats)
        return stats

    # ─── Subscription ───────────────────────────────────────────

    def start(self, user_id: Optional[str] = None) -> None:
        user_id = user_id or self._context.user_id
        self.stop()
        if user_id != self._context.user_id:
            self._context = self._context.with_user(user_id)

        self._generation += 1
        generation = self._generation
        self._entries = ()
        self._latest = JournalStats.empty()

        if self._remote is None:
            logger.info("journal_stats_no_remote_store", user_id=user_id)
            self._observers.emit(self._latest)
            return

        path = journal_collection_path(self._app_id, user_id)
        self._running = True
        try:
            unsubscribe = self._remote.subscribe_collection(
                path,
                on_next=lambda docs: self._on_snapshot(generation, path, docs),
                on_error=lambda exc: self._on_error(generation, path, exc),
                order_by="createdAt",
                descending=True,
            )
        except StoreUnavailable as e:
            logger.warning("journal_stream_unavailable", user_id=user_id, error=str(e))
            self._running = False
            self._observers.emit(self._latest)
            self._observers.fail(e)
            return
        except Exception as e:
            self._on_error(generation, path, e)
            return

        if generation == self._generation:
            self._unsubscribe = unsubscribe
        else:
            unsubscribe()
        logger.info("journal_subscription_started", user_id=user_id)

    def stop(self) -> None:
        self._generation += 1
        self._running = False
        if self._unsubscribe is not None:
            unsubscribe, self._unsubscribe = self._unsubscribe, None
            unsubscribe()
            logger.info("journal_subscription_stopped", user_id=self._context.user_id)

    def _on_snapshot(self, generation: int, path: str, docs: Optional[list[DocumentSnapshot]]) -> None:
        if generation != self._generation:
            logger.debug("stale_journal_snapshot_ignored", path=path)
            return
        self._entries = tuple(parse_snapshot(docs, path))
        self._latest = self.recompute(self._entries)
        logger.debug(
            "journal_stats_recomputed",
            count=self._latest.count,
            streak_days=self._latest.streak_days,
        )
        self._observers.emit(self._latest)

    def _on_error(self, generation: int, path: str, exc: Exception) -> None:
        if generation != self._generation:
            return
        error = exc if isinstance(exc, SubscriptionError) else SubscriptionError(str(exc), path)
        logger.error("journal_subscription_failed", path=path, error=str(exc))
        self.stop()
        self._observers.fail(error)
