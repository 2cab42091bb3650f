from __future__ import annotations

import abc
from datetime import date, datetime, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from reflection_sync.utils.logger import get_logger

logger = get_logger(__name__)


def resolve_timezone(name: str) -> Optional[tzinfo]:
    """Resolve an IANA name; empty or unknown names mean system local time."""
    raw = (name or "").strip()
    if not raw:
        return None
    try:
        return ZoneInfo(raw)
    except ZoneInfoNotFoundError:
        logger.warning("unknown_timezone_using_local", timezone=raw)
        return None


class ClockSource(abc.ABC):
    """Current instant and calendar-day boundary for day-based analytics."""

    @abc.abstractmethod
    def now(self) -> datetime:
        """Timezone-aware current instant in the clock's zone."""

    @property
    def zone(self) -> Optional[tzinfo]:
        """Zone for calendar days; None follows the system zone's DST rules."""
        return None

    def today(self) -> date:
        return self.now().date()

    def local_day(self, ts: datetime) -> date:
        """Calendar day of ``ts`` in the clock's zone. Naive values are taken as already local."""
        if ts.tzinfo is None:
            return ts.date()
        # each instant gets the offset in force at that instant, not today's
        return ts.astimezone(self.zone).date()


class SystemClock(ClockSource):
    def __init__(self, tz: Optional[tzinfo] = None) -> None:
        self._tz = tz

    @property
    def zone(self) -> Optional[tzinfo]:
        return self._tz

    def now(self) -> datetime:
        if self._tz is None:
            return datetime.now().astimezone()
        return datetime.now(self._tz)


class FixedClock(ClockSource):
    """Clock pinned to an instant; ``advance`` moves it forward.

    An aware instant without ``tz`` pins the zone to the instant's own tzinfo.
    A naive instant without ``tz`` follows system local time.
    """

    def __init__(self, instant: datetime, tz: Optional[tzinfo] = None) -> None:
        if tz is None and instant.tzinfo is not None:
            tz = instant.tzinfo
        self._tz = tz
        self._instant = self._localize(instant)

    @property
    def zone(self) -> Optional[tzinfo]:
        return self._tz

    def _localize(self, instant: datetime) -> datetime:
        if instant.tzinfo is None:
            return instant.replace(tzinfo=self._tz) if self._tz else instant.astimezone()
        return instant.astimezone(self._tz)

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = self._localize(instant)

    def advance(self, **delta: float) -> datetime:
        self._instant = self._localize(self._instant + timedelta(**delta))
        return self._instant
