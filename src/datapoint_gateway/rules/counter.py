"""WindowCounter: shared, concurrency-safe request counters per aggregate key."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Literal

from datapoint_gateway._internal.clock import Clock, SystemClock

WindowMode = Literal["sliding", "fixed"]

# Shard sweep runs after this many writes to the shard.
_SWEEP_EVERY = 256


@dataclass
class _Shard:
    lock: threading.Lock = field(default_factory=threading.Lock)
    sliding: dict[str, deque[float]] = field(default_factory=dict)
    fixed: dict[str, tuple[int, int]] = field(default_factory=dict)
    writes: int = 0


class WindowCounter:
    """Counts requests per aggregate key over a trailing time window.

    ``sliding`` mode keeps a timestamp log per key and counts the entries
    newer than ``now - window``.  ``fixed`` mode keeps one bucket per key
    aligned to multiples of the window.

    Keys are spread over independently locked shards so that concurrent
    requests for different keys rarely contend.  :meth:`record` is an atomic
    increment-and-read.  Entries whose window has elapsed are evicted lazily
    when their shard is written to, or eagerly with :meth:`purge`.

    Parameters:
        window_seconds: Length of the window.
        mode:           ``"sliding"`` (default) or ``"fixed"``.
        capacity:       Upper bound on timestamps retained per key in sliding
                        mode.  Counts saturate at this value, which keeps
                        memory bounded under a flood.  ``None`` = unbounded.
        shards:         Number of lock shards.
        clock:          Injectable clock for testing.
    """

    def __init__(
        self,
        *,
        window_seconds: float = 300,
        mode: WindowMode = "sliding",
        capacity: int | None = None,
        shards: int = 16,
        clock: Clock | None = None,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if mode not in ("sliding", "fixed"):
            raise ValueError(f"Unknown window mode: {mode!r}")
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self.window_seconds = window_seconds
        self.mode: WindowMode = mode
        self.capacity = capacity
        self._clock = clock or SystemClock()
        self._shards = [_Shard() for _ in range(shards)]

    def _shard(self, key: str) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def _bucket(self, ts: float) -> int:
        return int(ts // self.window_seconds)

    # ── counting ─────────────────────────────────────────────

    def record(self, key: str) -> int:
        """Count one request for *key* and return the count inside the window."""
        now = self._clock.now().timestamp()
        shard = self._shard(key)
        with shard.lock:
            shard.writes += 1
            if shard.writes % _SWEEP_EVERY == 0:
                self._sweep(shard, now)

            if self.mode == "fixed":
                bucket = self._bucket(now)
                start, count = shard.fixed.get(key, (bucket, 0))
                count = count + 1 if start == bucket else 1
                shard.fixed[key] = (bucket, count)
                return count

            log = shard.sliding.get(key)
            if log is None:
                log = shard.sliding[key] = deque(maxlen=self.capacity)
            self._prune(log, now - self.window_seconds)
            log.append(now)
            return len(log)

    def count(self, key: str) -> int:
        """Current count for *key* without recording a request."""
        now = self._clock.now().timestamp()
        shard = self._shard(key)
        with shard.lock:
            if self.mode == "fixed":
                start, count = shard.fixed.get(key, (None, 0))
                return count if start == self._bucket(now) else 0
            log = shard.sliding.get(key)
            if not log:
                return 0
            self._prune(log, now - self.window_seconds)
            return len(log)

    # ── eviction ─────────────────────────────────────────────

    @staticmethod
    def _prune(log: deque[float], cutoff: float) -> None:
        while log and log[0] <= cutoff:
            log.popleft()

    def _sweep(self, shard: _Shard, now: float) -> int:
        """Drop every key in *shard* whose window has fully elapsed.  Caller holds the lock."""
        if self.mode == "fixed":
            bucket = self._bucket(now)
            stale = [k for k, (start, _) in shard.fixed.items() if start != bucket]
            for k in stale:
                del shard.fixed[k]
            return len(stale)

        cutoff = now - self.window_seconds
        stale = [k for k, log in shard.sliding.items() if not log or log[-1] <= cutoff]
        for k in stale:
            del shard.sliding[k]
        return len(stale)

    def purge(self) -> int:
        """Evict all expired keys now.  Returns how many were dropped."""
        now = self._clock.now().timestamp()
        dropped = 0
        for shard in self._shards:
            with shard.lock:
                dropped += self._sweep(shard, now)
        return dropped

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.fixed) + len(shard.sliding)
        return total
