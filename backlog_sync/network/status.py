"""
Connectivity sources.

The source pattern lets the monitor consume connectivity the same way
whether it comes from an active health probe (production) or from
synthetic transitions (tests, manual override).
"""
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Protocol

from backlog_sync.timing import validate_duration

logger = logging.getLogger("network.status")


class NetworkStatus(Enum):
    """Connectivity as seen by this process."""
    ONLINE = "online"
    OFFLINE = "offline"

    @property
    def is_offline(self) -> bool:
        return self is NetworkStatus.OFFLINE


StatusCallback = Callable[[NetworkStatus], None]


class NetworkStatusSource(Protocol):
    """
    Interface for connectivity sources.

    Implementations:
    - ManualNetworkStatusSource: synthetic transitions
    - ProbeNetworkStatusSource: polls the backend health endpoint
    """

    def get_current_status(self) -> NetworkStatus:
        """Last known status, answered synchronously."""
        ...

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """
        Register for transitions.

        The callback fires once per actual change, with the new status.

        Returns:
            A function that removes the callback
        """
        ...


class _ListenerMixin:
    """Shared subscribe/notify bookkeeping for sources."""

    def __init__(self, initial: NetworkStatus):
        self._status = initial
        self._listeners: List[StatusCallback] = []

    def get_current_status(self) -> NetworkStatus:
        return self._status

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def _transition(self, status: NetworkStatus) -> bool:
        """Record a status; notify listeners only if it changed."""
        if status is self._status:
            return False
        previous = self._status
        self._status = status
        logger.info(f"Connectivity {previous.value} -> {status.value}")
        for callback in list(self._listeners):
            try:
                callback(status)
            except Exception as e:
                logger.error(f"Connectivity listener error: {e}", exc_info=True)
        return True


class ManualNetworkStatusSource(_ListenerMixin):
    """Source driven by explicit calls."""

    def __init__(self, initial: NetworkStatus = NetworkStatus.ONLINE):
        super().__init__(initial)

    def set_status(self, status: NetworkStatus) -> bool:
        """
        Announce a status.

        Returns:
            True if this was a transition
        """
        return self._transition(status)

    def go_online(self) -> bool:
        return self._transition(NetworkStatus.ONLINE)

    def go_offline(self) -> bool:
        return self._transition(NetworkStatus.OFFLINE)


class ProbeNetworkStatusSource(_ListenerMixin):
    """
    Source backed by an async connectivity probe.

    start() launches a background task calling probe() every `interval`
    seconds; a probe that returns False or raises counts as offline.
    """

    def __init__(
        self,
        probe: Callable[[], Awaitable[bool]],
        interval: float = 5.0,
        initial: NetworkStatus = NetworkStatus.ONLINE,
    ):
        super().__init__(initial)
        self._probe = probe
        self._interval = validate_duration("interval", interval, allow_zero=False)
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_now(self) -> NetworkStatus:
        """Run one probe and apply its result."""
        try:
            reachable = await self._probe()
        except Exception as e:
            logger.debug(f"Connectivity probe failed: {e}")
            reachable = False
        status = NetworkStatus.ONLINE if reachable else NetworkStatus.OFFLINE
        self._transition(status)
        return status

    def start(self) -> None:
        """Start polling on the running loop. No-op if already started."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._poll())
        logger.info(f"Connectivity probe started (every {self._interval}s)")

    async def stop(self) -> None:
        """Stop polling and wait for the task to finish."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Connectivity probe stopped")

    async def _poll(self) -> None:
        while True:
            await self.check_now()
            await asyncio.sleep(self._interval)
