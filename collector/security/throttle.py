"""In-memory throttle store for public form submissions.

Entries are keyed by ``"{client_ip}:{form_id}"`` and hold two fixed windows
(a configurable short window and an hourly window) plus the time of the last
accepted submission. Keys are spread over independently locked shards, so
every read-modify-write on one key is atomic and different keys rarely
contend. A background sweep drops entries whose hourly window was anchored
more than ``max_age_seconds`` ago.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000


@dataclass
class ThrottleEntry:
    count: int = 0
    window_start: int = 0
    hourly_count: int = 0
    hourly_window_start: int = 0
    last_submission_time: int = 0


@dataclass(frozen=True)
class SpacingDecision:
    allowed: bool
    wait_seconds: int = 0


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: int  # epoch milliseconds


class _Shard:
    __slots__ = ("lock", "entries")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: dict[str, ThrottleEntry] = {}


class ThrottleStore:
    """Per-(ip, form) submission throttling with fixed-window counters."""

    def __init__(
        self,
        *,
        shards: int = 64,
        max_age_seconds: int = 2 * 60 * 60,
        sweep_interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._shards = [_Shard() for _ in range(max(1, shards))]
        self._max_age_ms = max_age_seconds * 1000
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @staticmethod
    def key(ip: str, form_id) -> str:
        return f"{ip}:{form_id}"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _shard(self, key: str) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total

    def snapshot(self, ip: str, form_id) -> ThrottleEntry | None:
        """Return a copy of the entry for inspection."""
        key = self.key(ip, form_id)
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.get(key)
            return replace(entry) if entry is not None else None

    def check_spacing(self, ip: str, form_id, min_seconds: int) -> SpacingDecision:
        """Check the minimum time since the last accepted submission. Read-only."""
        key = self.key(ip, form_id)
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.get(key)
            last = entry.last_submission_time if entry is not None else 0
            if not last:
                return SpacingDecision(allowed=True)
            elapsed = (self._now_ms() - last) / 1000

        if elapsed >= min_seconds:
            return SpacingDecision(allowed=True)
        return SpacingDecision(allowed=False, wait_seconds=math.ceil(min_seconds - elapsed))

    def record_submission(self, ip: str, form_id) -> None:
        """Stamp the last accepted submission time for the key."""
        key = self.key(ip, form_id)
        shard = self._shard(key)
        now = self._now_ms()
        with shard.lock:
            entry = shard.entries.get(key)
            if entry is None:
                entry = ThrottleEntry(window_start=now, hourly_window_start=now)
                shard.entries[key] = entry
            entry.last_submission_time = now

    def check_rate_limit(
        self,
        ip: str,
        form_id,
        max_per_window: int,
        window_seconds: int,
        max_per_hour: int,
    ) -> RateLimitDecision:
        """Count one request against both windows if neither is exhausted.

        Windows are fixed, not sliding: a window restarts at the first request
        after it elapses, so a burst straddling a boundary may see up to twice
        ``max_per_window`` requests admitted.
        """
        key = self.key(ip, form_id)
        shard = self._shard(key)
        window_ms = window_seconds * 1000
        now = self._now_ms()

        with shard.lock:
            entry = shard.entries.get(key)
            if entry is None:
                shard.entries[key] = ThrottleEntry(
                    count=1,
                    window_start=now,
                    hourly_count=1,
                    hourly_window_start=now,
                )
                return RateLimitDecision(
                    allowed=True, remaining=max_per_window - 1, reset_at=now + window_ms
                )

            if now - entry.window_start > window_ms:
                entry.count = 0
                entry.window_start = now
            if now - entry.hourly_window_start > HOUR_MS:
                entry.hourly_count = 0
                entry.hourly_window_start = now

            if entry.count >= max_per_window:
                return RateLimitDecision(
                    allowed=False, remaining=0, reset_at=entry.window_start + window_ms
                )
            if entry.hourly_count >= max_per_hour:
                return RateLimitDecision(
                    allowed=False, remaining=0, reset_at=entry.hourly_window_start + HOUR_MS
                )

            entry.count += 1
            entry.hourly_count += 1
            return RateLimitDecision(
                allowed=True,
                remaining=max_per_window - entry.count,
                reset_at=entry.window_start + window_ms,
            )

    def sweep(self) -> int:
        """Delete stale entries; returns how many were removed."""
        now = self._now_ms()
        removed = 0
        for shard in self._shards:
            with shard.lock:
                keys = list(shard.entries)
            for key in keys:
                with shard.lock:
                    entry = shard.entries.get(key)
                    if entry is not None and now - entry.hourly_window_start > self._max_age_ms:
                        del shard.entries[key]
                        removed += 1
        return removed

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="throttle-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            await asyncio.sleep(self._sweep_interval)
            removed = self.sweep()
            if removed:
                logger.debug("Throttle sweep removed %s stale entries", removed)
