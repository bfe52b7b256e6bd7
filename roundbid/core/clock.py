"""
Clock - Single authoritative time for the engine.

All deadline arithmetic reads time through Clock.now(). The clock keeps an
offset against a trusted TimeSource, refreshed by sync() on a fixed interval:

    now() = local wall time + offset

If a refresh fails the last known offset stays in use and the clock is
flagged stale. Stale time is still served; deadline-sensitive callers may
widen their safety margins instead of failing.
"""

import threading
import time
from typing import Callable, Optional, Protocol, runtime_checkable

import requests

from roundbid.core.errors import TimeSourceError
from roundbid.utils.logger import get_logger

logger = get_logger("clock")


# =============================================================================
# Time Sources
# =============================================================================


@runtime_checkable
class TimeSource(Protocol):
    """Anything that can report the authoritative time in epoch seconds."""

    def fetch(self) -> float:
        ...


class SystemTimeSource:
    """Local system clock treated as authoritative."""

    def fetch(self) -> float:
        return time.time()


class HttpTimeSource:
    """
    Server-time endpoint over HTTP.

    Expects a JSON body of the form {"timestamp": <epoch milliseconds>}.
    """

    def __init__(self, url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self) -> float:
        try:
            response = self.session.get(self.url, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise TimeSourceError(f"time source {self.url} unavailable: {e}") from e

        if not isinstance(payload, dict) or "timestamp" not in payload:
            raise TimeSourceError(f"time source {self.url} returned no timestamp")

        try:
            return float(payload["timestamp"]) / 1000.0
        except (TypeError, ValueError) as e:
            raise TimeSourceError(f"time source {self.url} returned bad timestamp") from e


# =============================================================================
# Clock
# =============================================================================


class Clock:
    """
    Offset-corrected clock synchronized against a TimeSource.

    Without a source the local wall clock is authoritative and the clock
    is never stale.
    """

    def __init__(
        self,
        source: Optional[TimeSource] = None,
        sync_interval: float = 60.0,
        wall: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.sync_interval = sync_interval
        self._wall = wall
        self._monotonic = monotonic
        self._offset = 0.0
        self._stale = source is not None
        self._last_attempt: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def offset(self) -> float:
        return self._offset

    @property
    def stale(self) -> bool:
        """True when the last synchronization attempt failed (or none succeeded yet)."""
        return self._stale

    def sync(self) -> bool:
        """
        Refresh the offset from the time source.

        Returns:
            True if the source answered, False if the clock is now stale
        """
        if self.source is None:
            return True

        with self._lock:
            self._last_attempt = self._monotonic()
            try:
                remote = self.source.fetch()
            except TimeSourceError as e:
                if not self._stale:
                    logger.warning(f"Clock resync failed, serving stale offset {self._offset:+.3f}s: {e}")
                self._stale = True
                return False

            self._offset = remote - self._wall()
            if self._stale:
                logger.info(f"Clock synchronized, offset {self._offset:+.3f}s")
            self._stale = False
            return True

    def sync_due(self) -> bool:
        if self.source is None:
            return False
        if self._last_attempt is None:
            return True
        return self._monotonic() - self._last_attempt >= self.sync_interval

    def sync_if_due(self) -> bool:
        """Resync once the interval has passed. False only after a failed attempt."""
        if not self.sync_due():
            return True
        return self.sync()

    def now(self) -> float:
        """
        Current authoritative time in epoch seconds.

        Pure arithmetic on the stored offset; the time source is only
        contacted by `sync()`, which runs off the read path (ClaimSweeper,
        or once at CLI start-up).
        """
        return self._wall() + self._offset


class ManualClock(Clock):
    """
    Clock whose time is set explicitly.

    Used for replaying history, admin overrides and tests.
    """

    def __init__(self, start: float = 0.0, stale: bool = False):
        super().__init__(source=None)
        self._now = float(start)
        self._stale = stale

    def now(self) -> float:
        return self._now

    def set(self, timestamp: float) -> None:
        self._now = float(timestamp)

    def advance(self, seconds: float) -> float:
        self._now += seconds
        return self._now

    def mark_stale(self, stale: bool = True) -> None:
        self._stale = stale


def build_clock(time_source_url: Optional[str], sync_interval: float, timeout: float = 5.0) -> Clock:
    """Create a clock synchronized against a URL, or the local clock if none."""
    if time_source_url:
        return Clock(HttpTimeSource(time_source_url, timeout=timeout), sync_interval=sync_interval)
    return Clock(SystemTimeSource(), sync_interval=sync_interval)
