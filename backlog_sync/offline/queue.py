"""
Offline mutation queue.

While offline, writes are buffered in the shared state container instead of
reaching the backend. On reconnect the buffer is replayed sequentially in
timestamp order, since a later change may depend on an earlier one against
the same group.
"""
import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from backlog_sync.errors import ConfigurationError, ReplayError
from backlog_sync.state import StateStore
from backlog_sync.timing import Clock, SystemClock

from .models import (
    ChangeType,
    MutationBackend,
    MutationOutcome,
    OfflineState,
    PendingChange,
    ReplayReport,
)

logger = logging.getLogger("offline.queue")


class OfflineMutationQueue:
    """
    Buffers writes while offline and replays them on reconnect.

    All changes to OfflineState go through this class. A failed replay item
    is logged and kept for the next replay until it has been attempted
    max_replay_attempts times; after that it moves to dropped_changes.
    """

    def __init__(
        self,
        store: StateStore[OfflineState],
        backend: MutationBackend,
        max_replay_attempts: int = 3,
        clock: Optional[Clock] = None,
    ):
        if (
            isinstance(max_replay_attempts, bool)
            or not isinstance(max_replay_attempts, int)
            or max_replay_attempts < 1
        ):
            raise ConfigurationError(
                f"max_replay_attempts must be a positive integer, got {max_replay_attempts!r}"
            )
        self._store = store
        self._backend = backend
        self._max_replay_attempts = max_replay_attempts
        self._clock = clock or SystemClock()
        self._replay_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> OfflineState:
        return self._store.get()

    @property
    def is_offline_mode(self) -> bool:
        return self._store.get().is_offline_mode

    @property
    def pending_changes(self):
        return self._store.get().pending_changes

    @property
    def is_replaying(self) -> bool:
        return self._replay_task is not None and not self._replay_task.done()

    # ========================================================================
    # Actions
    # ========================================================================

    def set_offline_mode(self, is_offline: bool) -> Optional[asyncio.Task]:
        """
        Update the offline flag.

        No-op if the value is unchanged. Going online with buffered changes
        schedules a replay on the running loop.

        Returns:
            The replay task if one was scheduled, else None
        """
        state = self._store.get()
        if state.is_offline_mode == is_offline:
            return None

        self._store.set(replace(state, is_offline_mode=is_offline))
        logger.info(f"Offline mode {'enabled' if is_offline else 'disabled'}")

        if is_offline or not state.pending_changes:
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                f"No running event loop; {len(state.pending_changes)} pending changes "
                f"wait for the next sync"
            )
            return None
        return loop.create_task(self.process_pending_changes())

    def enqueue(
        self,
        change_type: Union[ChangeType, str],
        group_id: str,
        item_id: Optional[str] = None,
        item: Optional[Dict[str, Any]] = None,
    ) -> PendingChange:
        """Buffer a change stamped with the clock time and the wall-clock time."""
        change = PendingChange(
            type=ChangeType(change_type),
            group_id=group_id,
            item_id=item_id,
            item=item,
            timestamp=self._clock.now(),
            queued_at=datetime.now(timezone.utc),
        )
        self._store.update(
            lambda s: replace(s, pending_changes=s.pending_changes + (change,))
        )
        logger.info(f"Queued {change.describe()} ({len(self.pending_changes)} pending)")
        return change

    def clear_pending_changes(self) -> int:
        """Discard every buffered change. Returns how many were discarded."""
        count = len(self.pending_changes)
        self._store.update(lambda s: replace(s, pending_changes=()))
        if count:
            logger.warning(f"Discarded {count} pending changes")
        return count

    def clear_dropped_changes(self) -> int:
        count = len(self._store.get().dropped_changes)
        self._store.update(lambda s: replace(s, dropped_changes=()))
        return count

    # ========================================================================
    # Writes
    # ========================================================================

    async def add_item(self, group_id: str, item: Dict[str, Any]) -> MutationOutcome:
        """Add an item to a group, or buffer the add while offline."""
        if self.is_offline_mode:
            item_id = item.get("id")
            change = self.enqueue(
                ChangeType.ADD,
                group_id,
                item_id=str(item_id) if item_id is not None else None,
                item=item,
            )
            return MutationOutcome(queued=True, change=change)
        result = await self._backend.add_item_to_group(group_id, item)
        return MutationOutcome(queued=False, result=result)

    async def remove_item(self, group_id: str, item_id: str) -> MutationOutcome:
        """Remove an item from a group, or buffer the removal while offline."""
        if self.is_offline_mode:
            change = self.enqueue(ChangeType.REMOVE, group_id, item_id=item_id)
            return MutationOutcome(queued=True, change=change)
        result = await self._backend.remove_item_from_group(group_id, item_id)
        return MutationOutcome(queued=False, result=result)

    async def update_item(
        self, group_id: str, item_id: str, updates: Dict[str, Any]
    ) -> MutationOutcome:
        """Update item fields, or buffer the update while offline."""
        if self.is_offline_mode:
            change = self.enqueue(ChangeType.UPDATE, group_id, item_id=item_id, item=updates)
            return MutationOutcome(queued=True, change=change)
        result = await self._backend.update_item_in_group(group_id, item_id, updates)
        return MutationOutcome(queued=False, result=result)

    # ========================================================================
    # Replay
    # ========================================================================

    async def process_pending_changes(self) -> ReplayReport:
        """
        Replay buffered changes oldest first.

        Returns immediately while offline or when nothing is buffered.
        Concurrent callers share the pass already running.
        """
        state = self._store.get()
        if state.is_offline_mode or not state.pending_changes:
            return ReplayReport()

        if not self.is_replaying:
            self._replay_task = asyncio.get_running_loop().create_task(self._replay())
        return await asyncio.shield(self._replay_task)

    async def retry_dropped_changes(self) -> ReplayReport:
        """
        Move dropped changes back to the buffer with a fresh attempt budget.

        Replays them at once when online; otherwise they wait for reconnect.
        """
        dropped = self._store.get().dropped_changes
        if not dropped:
            return ReplayReport()

        moved = {id(c) for c in dropped}
        revived = tuple(replace(c, attempts=0, last_error=None) for c in dropped)
        self._store.update(
            lambda s: replace(
                s,
                pending_changes=s.pending_changes + revived,
                dropped_changes=tuple(c for c in s.dropped_changes if id(c) not in moved),
            )
        )
        logger.info(f"Requeued {len(revived)} dropped changes")

        if self.is_offline_mode:
            return ReplayReport()
        return await self.process_pending_changes()

    async def sync_with_backend(self) -> Optional[ReplayReport]:
        """
        Flush pending changes and stamp the sync time.

        Returns:
            The replay report, or None when skipped because offline
        """
        if self.is_offline_mode:
            logger.info("Skipping sync while offline")
            return None

        report = await self.process_pending_changes()
        synced_at = datetime.now(timezone.utc)
        self._store.update(lambda s: replace(s, last_sync_at=synced_at))
        logger.info(f"Sync completed at {synced_at.isoformat()}")
        return report

    async def _replay(self) -> ReplayReport:
        """
        Run passes until nothing new is left to try.

        Changes queued while a pass runs are picked up by the next pass.
        A change that failed in this run is not retried until the next run.
        """
        report = ReplayReport(ran=True)
        tried: Dict[int, PendingChange] = {}

        while True:
            state = self._store.get()
            if state.is_offline_mode:
                break
            batch = sorted(
                (c for c in state.pending_changes if id(c) not in tried),
                key=lambda c: c.timestamp,
            )
            if not batch:
                break
            report.interrupted = False
            for change in await self._replay_pass(batch, report):
                tried[id(change)] = change

        logger.info(
            f"Replay finished: {report.succeeded} ok, {report.failed} failed, "
            f"{len(self.pending_changes)} still pending"
        )
        return report

    async def _replay_pass(
        self, batch: List[PendingChange], report: ReplayReport
    ) -> List[PendingChange]:
        """Replay one batch in order. Returns the failed changes kept for retry."""
        attempted: List[PendingChange] = []
        retained: List[PendingChange] = []
        dropped: List[PendingChange] = []

        logger.info(f"Replaying {len(batch)} pending changes")

        for change in batch:
            if self._store.get().is_offline_mode:
                report.interrupted = True
                logger.warning(
                    f"Went offline during replay; {len(batch) - len(attempted)} "
                    f"changes stay queued"
                )
                break

            attempted.append(change)
            try:
                await self._dispatch(change)
                report.succeeded += 1
                logger.debug(f"Replayed {change.describe()}")
            except Exception as e:
                error = ReplayError(change, e)
                report.errors.append(error)
                failed = replace(change, attempts=change.attempts + 1, last_error=str(e))
                if failed.attempts < self._max_replay_attempts:
                    retained.append(failed)
                    logger.error(f"{error} (attempt {failed.attempts}, will retry)")
                else:
                    dropped.append(failed)
                    logger.error(f"{error} (attempt {failed.attempts}, dropping)")

        report.attempted += len(attempted)
        report.retained += len(retained)
        report.dropped += len(dropped)

        # Only the attempted changes leave the buffer
        done = {id(change) for change in attempted}

        def settle(state: OfflineState) -> OfflineState:
            remaining = tuple(c for c in state.pending_changes if id(c) not in done)
            return replace(
                state,
                pending_changes=remaining + tuple(retained),
                dropped_changes=state.dropped_changes + tuple(dropped),
            )

        self._store.update(settle)
        return retained

    async def _dispatch(self, change: PendingChange) -> Any:
        if change.type is ChangeType.ADD:
            return await self._backend.add_item_to_group(change.group_id, change.item or {})
        if change.type is ChangeType.REMOVE:
            return await self._backend.remove_item_from_group(change.group_id, change.item_id)
        return await self._backend.update_item_in_group(
            change.group_id, change.item_id, change.item or {}
        )
