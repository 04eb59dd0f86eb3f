"""In-memory hit counter stores.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- A daemon thread performs the window rollover so idle keys are released even
  when no request arrives; the clock is also checked on every operation so an
  injected clock drives rollovers deterministically.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from windowguard.adapters.stores.base import ClientRateLimitInfo, Store

if TYPE_CHECKING:
    from windowguard.core.validations import Validations


class MemoryStore(Store):
    """Fixed-window store: every count is cleared when the window elapses.

    All keys share one window, so a client can send up to twice the limit
    across a window boundary. Use ``BucketedMemoryStore`` when that burst is
    not acceptable.
    """

    local_keys = True

    def __init__(
        self,
        validations: Validations | None = None,
        *,
        window_ms: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            validations: Diagnostics of the owning limiter, if any.
            window_ms: Window length; when given the store is initialized
                immediately, otherwise the limiter calls ``init``.
            clock: Time source function returning UNIX time in seconds.
        """
        self._validations = validations
        self._clock = clock
        self._lock = threading.RLock()
        self._window_ms: int | None = None
        self._stop = threading.Event()
        self._timer: threading.Thread | None = None
        self._hits: dict[str, int] = {}
        self._reset_at = 0.0

        if window_ms is not None:
            self.init(window_ms)

    @property
    def window_ms(self) -> int | None:
        return self._window_ms

    def init(self, window_ms: int) -> None:
        """Bind the window length and (re)start the rollover timer.

        Raises:
            ValueError: If window_ms is not a positive number.
        """
        if self._validations is not None:
            self._validations.window_ms(window_ms)
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")

        # A second call means the store is shared between limiters.
        self._stop_timer()
        with self._lock:
            self._window_ms = window_ms
            self._reset_locked(self._clock())
        self._start_timer()

    async def get(self, key: str) -> ClientRateLimitInfo | None:
        """Return the record for ``key`` without modifying it, or None."""

        with self._lock:
            self._rollover_locked(self._require_window())
            if not self._has_key_locked(key):
                return None
            return self._info_locked(key)

    async def increment(self, key: str) -> ClientRateLimitInfo:
        with self._lock:
            self._rollover_locked(self._require_window())
            self._add_locked(key)
            return self._info_locked(key)

    async def decrement(self, key: str) -> None:
        with self._lock:
            self._rollover_locked(self._require_window())
            self._subtract_locked(key)

    async def reset_key(self, key: str) -> None:
        with self._lock:
            self._remove_locked(key)

    async def reset_all(self) -> None:
        with self._lock:
            if self._window_ms is None:
                self._clear_locked()
            else:
                self._reset_locked(self._clock())

    def shutdown(self) -> None:
        """Stop the rollover timer and drop every record."""

        self._stop_timer()
        with self._lock:
            self._clear_locked()

    def _require_window(self) -> float:
        if self._window_ms is None:
            raise RuntimeError(f"{type(self).__name__}.init() must be called before use")
        return self._clock()

    def _start_timer(self) -> None:
        stop = threading.Event()
        self._stop = stop
        self._timer = threading.Thread(
            target=self._run_timer,
            args=(stop,),
            name=f"windowguard-{type(self).__name__}",
            daemon=True,
        )
        self._timer.start()

    def _stop_timer(self) -> None:
        self._stop.set()
        timer, self._timer = self._timer, None
        if timer is not None and timer is not threading.current_thread():
            timer.join(timeout=1.0)

    def _run_timer(self, stop: threading.Event) -> None:
        while not stop.wait(self._seconds_until_rollover()):
            with self._lock:
                self._rollover_locked(self._clock())

    def _seconds_until_rollover(self) -> float:
        with self._lock:
            delay = self._next_rollover_locked() - self._clock()
        return min(max(delay, 0.001), threading.TIMEOUT_MAX)

    # Window bookkeeping; overridden by BucketedMemoryStore.

    def _reset_locked(self, now: float) -> None:
        self._hits = {}
        self._reset_at = now + self._window_ms / 1000

    def _clear_locked(self) -> None:
        self._hits = {}

    def _rollover_locked(self, now: float) -> None:
        if now >= self._reset_at:
            self._reset_locked(now)

    def _next_rollover_locked(self) -> float:
        return self._reset_at

    def _has_key_locked(self, key: str) -> bool:
        return key in self._hits

    def _add_locked(self, key: str) -> None:
        self._hits[key] = self._hits.get(key, 0) + 1

    def _subtract_locked(self, key: str) -> None:
        if self._hits.get(key, 0) > 0:
            self._hits[key] -= 1

    def _remove_locked(self, key: str) -> None:
        self._hits.pop(key, None)

    def _info_locked(self, key: str) -> ClientRateLimitInfo:
        return ClientRateLimitInfo(
            total_hits=self._hits.get(key, 0),
            reset_time=datetime.fromtimestamp(self._reset_at, tz=timezone.utc),
        )


class BucketedMemoryStore(MemoryStore):
    """Store that splits the window into ``buckets`` sub-windows.

    Sub-windows form a circular buffer with one extra slot for the sub-window
    in progress. Each tick advances the head and clears the oldest slot, and a
    client's count is the sum over all of them. A hit is therefore forgotten
    between one window and one window plus a sub-window after it was counted,
    so no span of one window admits more than ``limit * (1 + 1 / buckets)``
    hits, where the fixed window admits twice the limit. Memory grows with the
    number of buckets.
    """

    def __init__(
        self,
        validations: Validations | None = None,
        *,
        buckets: int = 10,
        window_ms: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if buckets < 1:
            raise ValueError("buckets must be >= 1")

        self._bucket_count = buckets
        self._buckets: list[dict[str, int]] = [{} for _ in range(buckets + 1)]
        self._head = 0
        self._bucket_start = 0.0
        super().__init__(validations, window_ms=window_ms, clock=clock)

    @property
    def buckets(self) -> int:
        return self._bucket_count

    @property
    def _slot_seconds(self) -> float:
        return self._window_ms / 1000 / self._bucket_count

    def _reset_locked(self, now: float) -> None:
        self._clear_locked()
        self._head = 0
        self._bucket_start = now

    def _clear_locked(self) -> None:
        self._buckets = [{} for _ in range(self._bucket_count + 1)]

    def _rollover_locked(self, now: float) -> None:
        elapsed = int((now - self._bucket_start) // self._slot_seconds)
        if elapsed <= 0:
            return
        for _ in range(min(elapsed, len(self._buckets))):
            self._head = (self._head + 1) % len(self._buckets)
            self._buckets[self._head] = {}
        self._bucket_start += elapsed * self._slot_seconds

    def _next_rollover_locked(self) -> float:
        return self._bucket_start + self._slot_seconds

    def _has_key_locked(self, key: str) -> bool:
        return any(key in bucket for bucket in self._buckets)

    def _add_locked(self, key: str) -> None:
        current = self._buckets[self._head]
        current[key] = current.get(key, 0) + 1

    def _subtract_locked(self, key: str) -> None:
        # Newest hits are undone first.
        slots = len(self._buckets)
        for offset in range(slots):
            bucket = self._buckets[(self._head - offset) % slots]
            if bucket.get(key, 0) > 0:
                bucket[key] -= 1
                if not bucket[key]:
                    del bucket[key]
                return

    def _remove_locked(self, key: str) -> None:
        for bucket in self._buckets:
            bucket.pop(key, None)

    def _info_locked(self, key: str) -> ClientRateLimitInfo:
        # Hits in the current sub-window are the last to be cleared.
        reset_at = self._bucket_start + self._slot_seconds + self._window_ms / 1000
        return ClientRateLimitInfo(
            total_hits=sum(bucket.get(key, 0) for bucket in self._buckets),
            reset_time=datetime.fromtimestamp(reset_at, tz=timezone.utc),
        )
