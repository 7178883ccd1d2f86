"""
Connectivity monitor: single point that turns source transitions into
offline-flag updates on the mutation queue.
"""
import logging
from typing import Callable, Optional

from backlog_sync.offline.queue import OfflineMutationQueue
from backlog_sync.timing import Cancellable, Clock, SystemClock, validate_duration

from .status import NetworkStatus, NetworkStatusSource

logger = logging.getLogger("network.monitor")


class NetworkMonitor:
    """
    Announces connectivity to the offline queue at most once per transition.

    - activate() checks the source once, guarded so repeated activation does
      not re-announce, then subscribes to transitions
    - offline transitions apply immediately
    - online transitions apply after `online_debounce` seconds and are
      cancelled if the connection drops again within that window
    - applying online calls queue.set_offline_mode(False), which replays any
      buffered changes
    """

    def __init__(
        self,
        source: NetworkStatusSource,
        queue: OfflineMutationQueue,
        online_debounce: float = 0.0,
        clock: Optional[Clock] = None,
    ):
        self._source = source
        self._queue = queue
        self._online_debounce = validate_duration("online_debounce", online_debounce)
        self._clock = clock or SystemClock()
        self._checked = False
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._pending_online: Optional[Cancellable] = None

    @property
    def is_active(self) -> bool:
        return self._unsubscribe is not None

    @property
    def is_offline(self) -> bool:
        return self._queue.is_offline_mode

    def activate(self) -> None:
        """Check connectivity once and start listening for transitions."""
        if not self._checked:
            self._checked = True
            status = self._source.get_current_status()
            logger.info(f"Initial connectivity: {status.value}")
            self._queue.set_offline_mode(status.is_offline)

        if self._unsubscribe is None:
            self._unsubscribe = self._source.subscribe(self._on_transition)

    def deactivate(self) -> None:
        """Stop listening. The checked guard stays set."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._cancel_pending_online()

    def _on_transition(self, status: NetworkStatus) -> None:
        if status.is_offline:
            self._cancel_pending_online()
            self._queue.set_offline_mode(True)
            return

        if self._online_debounce <= 0:
            self._apply_online()
            return

        self._cancel_pending_online()
        logger.debug(f"Online transition held for {self._online_debounce}s")
        self._pending_online = self._clock.call_later(self._online_debounce, self._apply_online)

    def _apply_online(self) -> None:
        self._pending_online = None
        pending = len(self._queue.pending_changes)
        task = self._queue.set_offline_mode(False)
        if task is not None:
            logger.info(f"Back online; replaying {pending} pending changes")

    def _cancel_pending_online(self) -> None:
        if self._pending_online is not None:
            self._pending_online.cancel()
            self._pending_online = None
