"""Tests for the background sync scheduler."""

import threading
import time
from unittest.mock import patch

import pytest

from drivesync.exceptions import NetworkError, StoreCorruptionError
from drivesync.sync import (
    ChangeDetector,
    ChangeStatus,
    FingerprintStore,
    SchedulerState,
    SyncDirection,
    SyncScheduler,
    TrackedFile,
    TransferEngine,
)


def _wait_for(condition, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


@pytest.fixture
def stop_event():
    return threading.Event()


@pytest.fixture
def scheduler(remote, store, stop_event):
    """Provide a scheduler wired to the fake remote."""
    transfers = TransferEngine(remote, store, cancel_event=stop_event)
    scheduler = SyncScheduler(
        store,
        ChangeDetector(),
        transfers,
        poll_interval=0.05,
        stop_event=stop_event,
    )
    yield scheduler
    scheduler.stop(timeout=5)


class TestRunCycle:
    """Tests for a single scan and transfer pass."""

    def test_empty_store(self, scheduler):
        result = scheduler.run_cycle()
        assert result.decisions == []
        assert result.pushed == {}
        assert scheduler.cycles == 1
        assert scheduler.state == SchedulerState.STOPPED

    def test_pushes_dirty_files(self, scheduler, remote, store, files_dir):
        path = files_dir / "a.txt"
        path.write_bytes(b"hello")
        store.upsert(TrackedFile(local_path=str(path)))

        result = scheduler.run_cycle()

        assert result.dirty == [str(path)]
        assert result.pushed == {str(path): "R1"}
        assert store.get(str(path)).remote_id == "R1"

        second = scheduler.run_cycle()
        assert second.pushed == {}
        assert second.count(ChangeStatus.UNCHANGED) == 1
        assert remote.mutations == [("create", "R1")]

    def test_failure_is_isolated_and_retried(
        self, scheduler, remote, store, files_dir
    ):
        good = files_dir / "good.txt"
        bad = files_dir / "bad.txt"
        good.write_bytes(b"good")
        bad.write_bytes(b"bad")
        store.upsert(TrackedFile(local_path=str(good)))
        store.upsert(TrackedFile(local_path=str(bad), remote_id="GONE"))

        result = scheduler.run_cycle()

        assert list(result.pushed) == [str(good)]
        assert str(bad) in result.failed
        assert str(bad) in scheduler.failures
        assert store.get(str(bad)).fingerprint is None

        # Remote object restored; the next cycle retries the dirty file
        remote.add_object("GONE", b"", "bad.txt")
        result = scheduler.run_cycle()
        assert result.pushed == {str(bad): "GONE"}
        assert scheduler.failures == {}

    def test_network_failure_keeps_file_dirty(self, scheduler, remote, store, files_dir):
        path = files_dir / "a.txt"
        path.write_bytes(b"hello")
        store.upsert(TrackedFile(local_path=str(path)))
        remote.fail_with = NetworkError("offline")

        result = scheduler.run_cycle()

        assert result.failed == {str(path): "offline"}
        assert result.dirty == [str(path)]
        remote.fail_with = None
        assert scheduler.run_cycle().pushed == {str(path): "R1"}

    def test_untracked_during_scan_is_dropped(
        self, scheduler, remote, store, files_dir
    ):
        """A file untracked between scan and push is neither pushed nor re-added."""
        path = files_dir / "a.txt"
        path.write_bytes(b"hello")
        store.upsert(TrackedFile(local_path=str(path)))
        detect = scheduler.detector.detect

        def detect_then_untrack(records):
            decisions = detect(records)
            store.remove(str(path))
            return decisions

        with patch.object(
            scheduler.detector, "detect", side_effect=detect_then_untrack
        ):
            result = scheduler.run_cycle()

        assert result.pushed == {}
        assert result.failed == {}
        assert result.deferred == []
        assert store.get(str(path)) is None
        assert remote.mutations == []

    def test_relinked_during_scan_is_dropped(
        self, scheduler, remote, store, files_dir
    ):
        path = files_dir / "a.txt"
        path.write_bytes(b"hello")
        store.upsert(TrackedFile(local_path=str(path)))
        detect = scheduler.detector.detect

        def detect_then_relink(records):
            decisions = detect(records)
            store.remove(str(path))
            store.upsert(
                TrackedFile(
                    local_path=str(path), remote_id="R9", direction=SyncDirection.PULL
                )
            )
            return decisions

        with patch.object(
            scheduler.detector, "detect", side_effect=detect_then_relink
        ):
            result = scheduler.run_cycle()

        assert result.pushed == {}
        assert store.get(str(path)).remote_id == "R9"
        assert store.get(str(path)).fingerprint is None
        assert remote.mutations == []

    def test_failure_saved_on_record(
        self, scheduler, remote, store, state_dir, files_dir
    ):
        """Background errors are visible to other processes reading the store."""
        path = files_dir / "a.txt"
        path.write_bytes(b"hello")
        store.upsert(TrackedFile(local_path=str(path)))
        remote.fail_with = NetworkError("offline")

        scheduler.run_cycle()

        with FingerprintStore(state_dir) as other:
            assert other.get(str(path)).last_error == "offline"

        remote.fail_with = None
        scheduler.run_cycle()

        with FingerprintStore(state_dir) as other:
            assert other.get(str(path)).last_error is None

    def test_busy_file_is_deferred(self, scheduler, store, files_dir):
        path = files_dir / "a.txt"
        path.write_bytes(b"hello")
        store.upsert(TrackedFile(local_path=str(path)))

        with scheduler.transfers.locks.hold(str(path)):
            result = scheduler.run_cycle()

        assert result.deferred == [str(path)]
        assert result.failed == {}
        assert store.get(str(path)).remote_id is None

    def test_pull_direction_not_pushed(self, scheduler, remote, store, files_dir):
        path = files_dir / "a.txt"
        path.write_bytes(b"local edit")
        store.upsert(
            TrackedFile(
                local_path=str(path), remote_id="R9", direction=SyncDirection.PULL
            )
        )

        result = scheduler.run_cycle()

        assert result.dirty == [str(path)]
        assert result.pushed == {}
        assert remote.calls == []

    def test_deleted_file_does_not_touch_remote(
        self, scheduler, remote, store, files_dir
    ):
        path = files_dir / "a.txt"
        path.write_bytes(b"hello")
        scheduler.transfers.push(str(path))
        path.unlink()

        result = scheduler.run_cycle()

        assert result.count(ChangeStatus.DELETED) == 1
        assert remote.mutations == [("create", "R1")]
        assert store.get(str(path)) is not None
        assert scheduler.last_statuses[str(path)] == ChangeStatus.DELETED

    def test_corruption_propagates(self, scheduler, store):
        with patch.object(
            store, "all", side_effect=StoreCorruptionError("bad state")
        ):
            with pytest.raises(StoreCorruptionError):
                scheduler.run_cycle()
        assert scheduler.state == SchedulerState.STOPPED

    def test_parallel_workers(self, remote, store, files_dir):
        for name in ("a", "b", "c", "d"):
            (files_dir / name).write_bytes(name.encode())
            store.upsert(TrackedFile(local_path=str(files_dir / name)))
        scheduler = SyncScheduler(
            store, ChangeDetector(), TransferEngine(remote, store), max_workers=4
        )

        result = scheduler.run_cycle()

        assert len(result.pushed) == 4
        assert len(set(result.pushed.values())) == 4


class TestSchedulerLoop:
    """Tests for the background thread."""

    def test_start_and_stop(self, scheduler):
        scheduler.start()
        assert scheduler.is_running
        assert _wait_for(lambda: scheduler.cycles >= 2)

        scheduler.stop(timeout=5)

        assert not scheduler.is_running
        assert scheduler.state == SchedulerState.STOPPED

    def test_start_twice_is_noop(self, scheduler):
        scheduler.start()
        thread = scheduler._thread
        scheduler.start()
        assert scheduler._thread is thread

    def test_background_push(self, scheduler, remote, store, files_dir):
        path = files_dir / "a.txt"
        path.write_bytes(b"hello")
        scheduler.start()

        store.upsert(TrackedFile(local_path=str(path)))
        scheduler.wake()

        assert _wait_for(lambda: store.get(str(path)).remote_id == "R1")

    def test_wake_runs_cycle_early(self, remote, store, stop_event):
        scheduler = SyncScheduler(
            store,
            ChangeDetector(),
            TransferEngine(remote, store, cancel_event=stop_event),
            poll_interval=60,
            stop_event=stop_event,
        )
        scheduler.start()
        try:
            assert _wait_for(lambda: scheduler.cycles == 1)
            scheduler.wake()
            assert _wait_for(lambda: scheduler.cycles == 2)
        finally:
            scheduler.stop(timeout=5)

    def test_corruption_is_fatal(self, scheduler, store):
        with patch.object(
            store, "all", side_effect=StoreCorruptionError("bad state")
        ):
            scheduler.start()
            assert _wait_for(lambda: not scheduler.is_running)

        assert isinstance(scheduler.fatal_error, StoreCorruptionError)
        assert scheduler.state == SchedulerState.STOPPED
        with pytest.raises(StoreCorruptionError):
            scheduler.start()

    def test_unexpected_error_does_not_stop_loop(self, scheduler, store):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("transient bug")
            return []

        with patch.object(store, "all", side_effect=flaky):
            scheduler.start()
            assert _wait_for(lambda: len(calls) >= 2)
            assert scheduler.is_running

    def test_stop_clears_cancellation(self, scheduler, stop_event):
        scheduler.start()
        scheduler.stop(timeout=5)
        assert not stop_event.is_set()
