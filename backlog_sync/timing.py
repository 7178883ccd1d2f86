"""
Clocks and deferred execution.

Everything in the consistency layer that depends on time (cache expiry,
the coalescing window, the online debounce) asks a Clock for the current
time and for delayed callbacks, so tests can drive time explicitly.
"""
import asyncio
import heapq
import itertools
import math
import time
from typing import Any, Callable, List, Protocol, Tuple

from backlog_sync.errors import ConfigurationError


def validate_duration(name: str, value: Any, allow_zero: bool = True) -> float:
    """
    Check a duration in seconds.

    Raises:
        ConfigurationError: If value is not a number, is NaN or negative, or is
            zero when allow_zero is False
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{name} must be a number of seconds, got {value!r}")
    if math.isnan(value) or value < 0 or (value == 0 and not allow_zero):
        bound = ">= 0" if allow_zero else "> 0"
        raise ConfigurationError(f"{name} must be {bound}, got {value!r}")
    return float(value)


class Cancellable(Protocol):
    """Handle for a deferred call that has not necessarily run yet."""

    def cancel(self) -> None:
        ...


class Clock(Protocol):
    """
    Interface for time sources.

    Implementations:
    - SystemClock: monotonic time + the running asyncio loop (production)
    - ManualClock: time only moves when advance() is called (tests)
    """

    def now(self) -> float:
        """Current time in seconds. Only differences are meaningful."""
        ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        """Run callback after delay seconds unless cancelled first."""
        ...


class SystemClock:
    """Monotonic clock backed by the running event loop's timers."""

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        loop = asyncio.get_running_loop()
        if delay <= 0:
            return loop.call_soon(callback)
        return loop.call_later(delay, callback)


class _ScheduledCall:
    """A callback queued on a ManualClock."""

    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """
    Deterministic clock for tests and simulations.

    Deferred calls fire in due-time order (ties in scheduling order) when
    advance() moves time past them. A delay of zero still waits for the
    next advance(), even advance(0).
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._seq = itertools.count()
        self._queue: List[Tuple[float, int, _ScheduledCall]] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        call = _ScheduledCall(self._now + max(delay, 0.0), callback)
        heapq.heappush(self._queue, (call.due, next(self._seq), call))
        return call

    @property
    def pending_calls(self) -> int:
        """Number of scheduled calls that are neither run nor cancelled."""
        return sum(1 for _, _, call in self._queue if not call.cancelled)

    def advance(self, seconds: float) -> int:
        """
        Move time forward and run every call that became due.

        Returns:
            Number of callbacks executed
        """
        target = self._now + seconds
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, call = heapq.heappop(self._queue)
            self._now = max(self._now, due)
            if call.cancelled:
                continue
            call.callback()
            ran += 1
        self._now = target
        return ran
