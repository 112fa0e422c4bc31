from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

FrameCallback = Callable[[float], None]


@dataclass(frozen=True)
class FrameHandle:
    """Cancellation token for one scheduled frame callback."""

    id: int


class FrameScheduler:
    """
    Single-slot frame scheduler.

    At most one callback is pending; the next one is only requested by the
    callback itself, so ticks never overlap. Callbacks receive a monotonic,
    non-decreasing timestamp in milliseconds. This base class runs ticks back
    to back, which suits offline video and tests.
    """

    def __init__(self, clock: Callable[[], float] = time.perf_counter) -> None:
        self._clock = clock
        self._pending: Optional[tuple[FrameHandle, FrameCallback]] = None
        self._next_id = 1
        self._last_ms = 0.0

    def request_frame(self, callback: FrameCallback) -> FrameHandle:
        handle = FrameHandle(self._next_id)
        self._next_id += 1
        self._pending = (handle, callback)
        return handle

    def cancel(self, handle: Optional[FrameHandle]) -> None:
        if self._pending is not None and self._pending[0] == handle:
            self._pending = None

    def has_pending(self) -> bool:
        return self._pending is not None

    def now_ms(self) -> float:
        self._last_ms = max(self._clock() * 1000.0, self._last_ms)
        return self._last_ms

    def wait_for_refresh(self) -> None:
        return None

    def run_once(self) -> bool:
        if self._pending is None:
            return False
        self.wait_for_refresh()
        if self._pending is None:
            return False
        _, callback = self._pending
        self._pending = None
        callback(self.now_ms())
        return True

    def run(self) -> None:
        """Pump callbacks until nothing is scheduled."""
        while self.run_once():
            pass


class DisplayScheduler(FrameScheduler):
    """Paces callbacks to a fixed display refresh rate."""

    def __init__(
        self,
        refresh_hz: float = 60.0,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(clock)
        if refresh_hz <= 0:
            raise ValueError(f"refresh_hz must be positive, got {refresh_hz}")
        self.interval_s = 1.0 / refresh_hz
        self._sleep = sleep
        self._next_refresh: Optional[float] = None

    def wait_for_refresh(self) -> None:
        now = self._clock()
        if self._next_refresh is not None and now < self._next_refresh:
            self._sleep(self._next_refresh - now)
            now = self._next_refresh
        # A slow tick skips missed refreshes instead of bursting to catch up.
        self._next_refresh = now + self.interval_s
