"""
Unit tests for the offline mutation queue.

Tests buffering while offline, timestamp-ordered replay on reconnect,
bounded retention of failures and the explicit sync action.
"""
import asyncio
from datetime import datetime, timezone

import pytest

from backlog_sync.errors import ConfigurationError, ReplayError
from backlog_sync.offline import (
    ChangeType,
    OfflineMutationQueue,
    OfflineState,
    PendingChange,
)
from backlog_sync.state import StateStore

from .conftest import FakeBackend


def change(item_id, ts, change_type=ChangeType.ADD, group_id="g1"):
    item = {"id": item_id} if change_type is not ChangeType.REMOVE else None
    return PendingChange(
        type=change_type, group_id=group_id, item_id=item_id, item=item, timestamp=ts
    )


def offline_store(*changes):
    return StateStore(OfflineState(is_offline_mode=True, pending_changes=tuple(changes)))


# =============================================================================
# Buffering
# =============================================================================

class TestBuffering:

    @pytest.mark.asyncio
    async def test_writes_queued_while_offline(self, clock, backend):
        """Test that offline writes are buffered and not sent"""
        queue = OfflineMutationQueue(offline_store(), backend, clock=clock)

        outcome = await queue.add_item("g1", {"id": "i1", "name": "First"})
        clock.advance(1)
        await queue.update_item("g1", "i1", {"name": "Renamed"})
        clock.advance(1)
        await queue.remove_item("g1", "i1")

        assert outcome.queued
        assert outcome.change.type is ChangeType.ADD
        assert backend.calls == []
        assert [c.type for c in queue.pending_changes] == [
            ChangeType.ADD,
            ChangeType.UPDATE,
            ChangeType.REMOVE,
        ]
        assert [c.timestamp for c in queue.pending_changes] == [0.0, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_queued_change_records_wall_clock_time(self, clock, backend):
        """Test that a queued change carries a UTC wall-clock time beside its clock stamp"""
        queue = OfflineMutationQueue(offline_store(), backend, clock=clock)
        before = datetime.now(timezone.utc)

        outcome = await queue.add_item("g1", {"id": "i1"})
        data = outcome.change.to_dict()

        assert outcome.change.queued_at >= before
        assert outcome.change.queued_at.tzinfo is not None
        assert data["queuedAt"] == outcome.change.queued_at.isoformat()
        assert data["timestamp"] == 0.0
        assert change("x", 1.0).to_dict()["queuedAt"] is None

    @pytest.mark.asyncio
    async def test_writes_go_direct_while_online(self, store, backend):
        """Test that online writes reach the backend immediately"""
        queue = OfflineMutationQueue(store, backend)

        outcome = await queue.add_item("g1", {"id": "i1"})

        assert not outcome.queued
        assert outcome.result["ok"] is True
        assert backend.calls == [("add", "g1", "i1")]
        assert queue.pending_changes == ()

    def test_clear_pending_changes(self, backend):
        """Test that clear_pending_changes discards the buffer"""
        queue = OfflineMutationQueue(offline_store(change("1", 1.0)), backend)

        assert queue.clear_pending_changes() == 1
        assert queue.pending_changes == ()

    def test_state_listeners_see_each_snapshot(self, backend):
        """Test that every queue action replaces the shared snapshot"""
        store = offline_store()
        seen = []
        store.subscribe(lambda new, old: seen.append(len(new.pending_changes)))
        queue = OfflineMutationQueue(store, backend)

        queue.enqueue(ChangeType.REMOVE, "g1", item_id="i1")
        queue.enqueue("update", "g1", item_id="i1", item={"name": "x"})

        assert seen == [1, 2]

    def test_invalid_attempt_limit(self, store, backend):
        """Test that max_replay_attempts must be positive"""
        with pytest.raises(ConfigurationError):
            OfflineMutationQueue(store, backend, max_replay_attempts=0)


# =============================================================================
# Replay on reconnect
# =============================================================================

class TestReplay:

    @pytest.mark.asyncio
    async def test_replay_in_timestamp_order(self, backend):
        """Test that changes buffered as ts 3, 1, 2 are sent as 1, 2, 3"""
        queue = OfflineMutationQueue(
            offline_store(change("3", 3.0), change("1", 1.0), change("2", 2.0)), backend
        )

        task = queue.set_offline_mode(False)
        report = await task

        assert backend.item_ids == ["1", "2", "3"]
        assert report.succeeded == 3
        assert queue.pending_changes == ()

    @pytest.mark.asyncio
    async def test_going_online_triggers_once(self, backend):
        """Test that repeated online announcements do not replay again"""
        queue = OfflineMutationQueue(offline_store(change("1", 1.0)), backend)

        first = queue.set_offline_mode(False)
        second = queue.set_offline_mode(False)
        await first

        assert second is None
        assert backend.item_ids == ["1"]

    @pytest.mark.asyncio
    async def test_going_online_with_empty_buffer(self, backend):
        """Test that no replay is scheduled when nothing is buffered"""
        queue = OfflineMutationQueue(offline_store(), backend)

        assert queue.set_offline_mode(False) is None
        assert not queue.is_offline_mode

    @pytest.mark.asyncio
    async def test_processing_while_offline_is_noop(self, backend):
        """Test that process_pending_changes does nothing while offline"""
        queue = OfflineMutationQueue(offline_store(change("1", 1.0)), backend)

        report = await queue.process_pending_changes()

        assert not report.ran
        assert backend.calls == []
        assert len(queue.pending_changes) == 1

    def test_going_online_without_loop(self, backend):
        """Test that the flag flips even when no loop can run the replay"""
        queue = OfflineMutationQueue(offline_store(change("1", 1.0)), backend)

        assert queue.set_offline_mode(False) is None
        assert not queue.is_offline_mode
        assert len(queue.pending_changes) == 1

    @pytest.mark.asyncio
    async def test_concurrent_processing_shares_one_pass(self):
        """Test that overlapping process calls send each change once"""
        backend = FakeBackend(delay=0.01)
        queue = OfflineMutationQueue(
            offline_store(change("1", 1.0), change("2", 2.0)), backend
        )
        queue.set_offline_mode(False)

        await asyncio.gather(queue.process_pending_changes(), queue.process_pending_changes())

        assert backend.item_ids == ["1", "2"]

    @pytest.mark.asyncio
    async def test_changes_queued_during_pass_are_drained(self, clock):
        """Test that a change enqueued mid-replay is sent before the replay ends"""
        queue = None

        class EnqueueingBackend(FakeBackend):
            async def add_item_to_group(self, group_id, item):
                if item["id"] == "1":
                    queue.enqueue(ChangeType.REMOVE, "g2", item_id="late")
                return await super().add_item_to_group(group_id, item)

        backend = EnqueueingBackend()
        queue = OfflineMutationQueue(
            offline_store(change("1", 1.0), change("2", 2.0)), backend, clock=clock
        )

        report = await queue.set_offline_mode(False)

        assert backend.item_ids == ["1", "2", "late"]
        assert report.attempted == 3
        assert queue.pending_changes == ()

    @pytest.mark.asyncio
    async def test_reconnect_during_replay_sends_new_changes(self):
        """Test that a write buffered during a brief drop is replayed by the running pass"""
        backend = FakeBackend(delay=0.05)
        queue = OfflineMutationQueue(offline_store(change("A", 1.0)), backend)

        first = queue.set_offline_mode(False)
        await asyncio.sleep(0.01)
        queue.set_offline_mode(True)
        await queue.add_item("g1", {"id": "B"})
        second = queue.set_offline_mode(False)
        reports = await asyncio.gather(first, second)

        await queue.add_item("g1", {"id": "C"})

        assert backend.item_ids == ["A", "B", "C"]
        assert queue.pending_changes == ()
        assert reports[0].succeeded == 2
        assert not reports[0].interrupted

    @pytest.mark.asyncio
    async def test_going_offline_mid_pass_stops_replay(self):
        """Test that the rest of the buffer stays queued if connectivity drops"""
        queue = None

        class FlakyBackend(FakeBackend):
            async def add_item_to_group(self, group_id, item):
                result = await super().add_item_to_group(group_id, item)
                queue.set_offline_mode(True)
                return result

        backend = FlakyBackend()
        queue = OfflineMutationQueue(
            offline_store(change("1", 1.0), change("2", 2.0), change("3", 3.0)), backend
        )

        report = await queue.set_offline_mode(False)

        assert report.interrupted
        assert report.attempted == 1
        assert backend.item_ids == ["1"]
        assert [c.item_id for c in queue.pending_changes] == ["2", "3"]


# =============================================================================
# Failures
# =============================================================================

class TestReplayFailures:

    @pytest.mark.asyncio
    async def test_failure_does_not_halt_queue(self):
        """Test that one failing change is logged and the rest still replay"""
        backend = FakeBackend(fail_items={"2"})
        queue = OfflineMutationQueue(
            offline_store(change("1", 1.0), change("2", 2.0), change("3", 3.0)), backend
        )

        report = await queue.set_offline_mode(False)

        assert backend.item_ids == ["1", "2", "3"]
        assert report.succeeded == 2
        assert report.failed == 1
        assert isinstance(report.errors[0], ReplayError)
        assert report.errors[0].change.item_id == "2"

    @pytest.mark.asyncio
    async def test_failed_change_retained_until_attempts_exhausted(self):
        """Test bounded retention: kept for retry, then moved to dropped_changes"""
        backend = FakeBackend(fail_items={"2"})
        queue = OfflineMutationQueue(
            offline_store(change("1", 1.0), change("2", 2.0)),
            backend,
            max_replay_attempts=3,
        )

        await queue.set_offline_mode(False)
        assert [(c.item_id, c.attempts) for c in queue.pending_changes] == [("2", 1)]
        assert "rejected" in queue.pending_changes[0].last_error

        await queue.process_pending_changes()
        assert queue.pending_changes[0].attempts == 2

        report = await queue.process_pending_changes()
        assert report.dropped == 1
        assert queue.pending_changes == ()
        assert [(c.item_id, c.attempts) for c in queue.state.dropped_changes] == [("2", 3)]

        assert queue.clear_dropped_changes() == 1
        assert queue.state.dropped_changes == ()

    @pytest.mark.asyncio
    async def test_single_attempt_clears_buffer(self):
        """Test that with one attempt every replayed change leaves the buffer"""
        backend = FakeBackend(fail_items={"1"})
        queue = OfflineMutationQueue(
            offline_store(change("1", 1.0), change("2", 2.0)),
            backend,
            max_replay_attempts=1,
        )

        await queue.set_offline_mode(False)

        assert queue.pending_changes == ()
        assert len(queue.state.dropped_changes) == 1

    @pytest.mark.asyncio
    async def test_retained_change_succeeds_later(self):
        """Test that a change that failed once replays once the backend recovers"""
        backend = FakeBackend(fail_items={"1"})
        queue = OfflineMutationQueue(offline_store(change("1", 1.0)), backend)
        await queue.set_offline_mode(False)

        backend.fail_items.clear()
        report = await queue.process_pending_changes()

        assert report.succeeded == 1
        assert queue.pending_changes == ()
        assert queue.state.dropped_changes == ()

    @pytest.mark.asyncio
    async def test_retry_dropped_changes_replays_when_online(self):
        """Test that dropped changes get a fresh budget and replay at once"""
        backend = FakeBackend(fail_items={"1"})
        queue = OfflineMutationQueue(
            offline_store(change("1", 1.0), change("2", 2.0)),
            backend,
            max_replay_attempts=1,
        )
        await queue.set_offline_mode(False)
        assert [c.item_id for c in queue.state.dropped_changes] == ["1"]

        backend.fail_items.clear()
        report = await queue.retry_dropped_changes()

        assert report.succeeded == 1
        assert backend.item_ids == ["1", "2", "1"]
        assert queue.pending_changes == ()
        assert queue.state.dropped_changes == ()

    @pytest.mark.asyncio
    async def test_retry_dropped_changes_while_offline_waits(self):
        """Test that requeued changes wait for reconnect with attempts reset"""
        backend = FakeBackend(fail_items={"1"})
        queue = OfflineMutationQueue(
            offline_store(change("1", 1.0)), backend, max_replay_attempts=1
        )
        await queue.set_offline_mode(False)
        queue.set_offline_mode(True)

        report = await queue.retry_dropped_changes()

        assert not report.ran
        assert [(c.item_id, c.attempts, c.last_error) for c in queue.pending_changes] == [
            ("1", 0, None)
        ]
        assert queue.state.dropped_changes == ()

        backend.fail_items.clear()
        await queue.set_offline_mode(False)
        assert backend.item_ids == ["1", "1"]
        assert queue.pending_changes == ()

    @pytest.mark.asyncio
    async def test_retry_with_nothing_dropped(self, backend):
        """Test that retrying an empty dropped list does nothing"""
        queue = OfflineMutationQueue(offline_store(), backend)

        report = await queue.retry_dropped_changes()

        assert not report.ran
        assert queue.pending_changes == ()


# =============================================================================
# Sync
# =============================================================================

class TestSync:

    @pytest.mark.asyncio
    async def test_sync_skipped_offline(self, backend):
        """Test that sync_with_backend does nothing while offline"""
        queue = OfflineMutationQueue(offline_store(change("1", 1.0)), backend)

        assert await queue.sync_with_backend() is None
        assert queue.state.last_sync_at is None
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_sync_flushes_and_stamps_time(self, backend):
        """Test that an online sync replays and records last_sync_at"""
        store = StateStore(OfflineState(pending_changes=(change("1", 1.0),)))
        queue = OfflineMutationQueue(store, backend)

        report = await queue.sync_with_backend()

        assert report.succeeded == 1
        assert queue.state.last_sync_at is not None
        assert queue.state.to_dict()["lastSyncAt"] is not None
        assert backend.item_ids == ["1"]
