"""
Shared state container.

Holds one immutable snapshot at a time. Writers replace the whole snapshot,
so readers never observe a partially-updated state. Listeners are notified
synchronously after each replacement.
"""
import logging
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger("state.store")

S = TypeVar("S")

Listener = Callable[[S, S], None]


class StateStore(Generic[S]):
    """
    Minimal get/set/subscribe container for frozen dataclass snapshots.

    Usage:
        store = StateStore(OfflineState())
        store.update(lambda s: replace(s, is_offline_mode=True))
    """

    def __init__(self, initial: S):
        self._state = initial
        self._listeners: List[Listener] = []

    def get(self) -> S:
        """Current snapshot."""
        return self._state

    def set(self, new_state: S) -> None:
        """Replace the snapshot and notify listeners if it changed."""
        old_state = self._state
        if new_state == old_state:
            return
        self._state = new_state
        self._notify(new_state, old_state)

    def update(self, fn: Callable[[S], S]) -> S:
        """Derive a new snapshot from the current one and store it."""
        new_state = fn(self._state)
        self.set(new_state)
        return new_state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a change listener.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, new_state: S, old_state: S) -> None:
        for listener in list(self._listeners):
            try:
                listener(new_state, old_state)
            except Exception as e:
                logger.error(f"State listener failed: {e}", exc_info=True)
