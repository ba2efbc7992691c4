"""Background loop that keeps tracked files in sync."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..exceptions import (
    DriveSyncError,
    NotTrackedError,
    StoreCorruptionError,
    TransferCancelledError,
    TransferInProgressError,
)
from ..utils import DEFAULT_POLL_INTERVAL
from .comparator import ChangeDecision, ChangeDetector, ChangeStatus
from .operations import TransferEngine
from .state import FingerprintStore

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    """States of the sync loop."""

    IDLE = "idle"
    SCANNING = "scanning"
    TRANSFERRING = "transferring"
    STOPPED = "stopped"


@dataclass
class CycleResult:
    """Outcome of one scan and transfer pass."""

    decisions: list[ChangeDecision] = field(default_factory=list)
    pushed: dict[str, str] = field(default_factory=dict)
    """local path -> remote id for every successful push"""

    failed: dict[str, str] = field(default_factory=dict)
    """local path -> error message"""

    deferred: list[str] = field(default_factory=list)
    """Paths skipped because a transfer was already running"""

    @property
    def dirty(self) -> list[str]:
        return [d.local_path for d in self.decisions if d.is_dirty]

    def count(self, status: ChangeStatus) -> int:
        return sum(1 for d in self.decisions if d.status == status)


class SyncScheduler:
    """Periodically detects changed files and pushes them.

    The loop runs ``idle -> scanning -> transferring -> idle`` until
    :meth:`stop` is called. A failed transfer only affects its own file,
    which stays dirty and is retried on the next cycle. A corrupted store
    stops the loop for good.

    Examples:
        >>> scheduler = SyncScheduler(store, detector, transfers, poll_interval=10)
        >>> scheduler.start()
        >>> scheduler.wake()  # scan now instead of waiting
        >>> scheduler.stop()
    """

    def __init__(
        self,
        store: FingerprintStore,
        detector: ChangeDetector,
        transfers: TransferEngine,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_workers: int = 1,
        stop_event: Optional[threading.Event] = None,
    ):
        """Initialize scheduler.

        Args:
            store: Fingerprint store to scan
            detector: Change detector
            transfers: Transfer engine used for pushes
            poll_interval: Seconds to wait between cycles
            max_workers: Number of parallel pushes per cycle
            stop_event: Event signalling shutdown; shared with the transfer
                engine so pending transfers are cancelled on stop
        """
        self.store = store
        self.detector = detector
        self.transfers = transfers
        self.poll_interval = poll_interval
        self.max_workers = max(1, max_workers)

        self._stop_event = stop_event or threading.Event()
        self._wake_event = threading.Event()
        self._state_lock = threading.Lock()
        self._state = SchedulerState.STOPPED
        self._thread: Optional[threading.Thread] = None

        self.failures: dict[str, str] = {}
        """local path -> last background error, cleared on success"""

        self.last_statuses: dict[str, ChangeStatus] = {}
        self.last_cycle: Optional[CycleResult] = None
        self.fatal_error: Optional[StoreCorruptionError] = None
        self.cycles = 0

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: SchedulerState) -> None:
        with self._state_lock:
            if self._state != state:
                logger.debug(f"Scheduler {self._state.value} -> {state.value}")
            self._state = state

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the background loop (no-op if already running)."""
        if self.is_running:
            logger.debug("Scheduler already running")
            return
        if self.fatal_error is not None:
            raise self.fatal_error

        self._stop_event.clear()
        self._set_state(SchedulerState.IDLE)
        self._thread = threading.Thread(
            target=self._run, name="drivesync-scheduler", daemon=True
        )
        self._thread.start()
        logger.info(f"Scheduler started (poll interval {self.poll_interval}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the loop and wait for the running cycle to finish.

        Transfers that already reached the remote service complete and are
        recorded; transfers that have not started are cancelled.
        """
        self._stop_event.set()
        self._wake_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Scheduler did not stop within the timeout")
                return
        self._thread = None
        # The loop has exited; foreground transfers must not stay cancelled
        self._stop_event.clear()
        self._set_state(SchedulerState.STOPPED)
        logger.info("Scheduler stopped")

    def wake(self) -> None:
        """Start the next cycle now instead of waiting for the interval."""
        self._wake_event.set()

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_cycle()
            except StoreCorruptionError as e:
                self.fatal_error = e
                logger.critical(f"Sync state is corrupted, scheduler aborted: {e}")
                break
            except Exception:
                logger.exception("Unexpected error during sync cycle")

            if self._stop_event.is_set():
                break
            self._set_state(SchedulerState.IDLE)
            self._wake_event.wait(self.poll_interval)
            self._wake_event.clear()

        self._set_state(SchedulerState.STOPPED)

    # -------------------------------------------------------------------------
    # Cycle
    # -------------------------------------------------------------------------

    def run_cycle(self) -> CycleResult:
        """Scan all tracked files once and push the dirty ones.

        Returns:
            CycleResult describing what happened

        Raises:
            StoreCorruptionError: If the store cannot be read
        """
        result = CycleResult()

        try:
            self._set_state(SchedulerState.SCANNING)
            records = self.store.all()
            result.decisions = self.detector.detect(records)
            self._log_transitions(result.decisions)

            work = [
                d
                for d in result.decisions
                if d.is_dirty and d.tracked.direction.allows_upload
            ]
            logger.debug(f"Scanned {len(records)} file(s), {len(work)} to push")

            if work and not self._stop_event.is_set():
                self._set_state(SchedulerState.TRANSFERRING)
                self._transfer(work, result)
        finally:
            self._set_state(
                SchedulerState.IDLE if self.is_running else SchedulerState.STOPPED
            )

        self.cycles += 1
        self.last_cycle = result
        return result

    def _transfer(self, work: list[ChangeDecision], result: CycleResult) -> None:
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._push_one, decision): decision
                for decision in work
            }
            for future in as_completed(futures):
                path = futures[future].local_path
                try:
                    result.pushed[path] = future.result()
                    self.failures.pop(path, None)
                except TransferInProgressError:
                    logger.debug(f"{path} is already being transferred, deferring")
                    result.deferred.append(path)
                except TransferCancelledError:
                    logger.debug(f"Push of {path} cancelled by shutdown")
                    result.deferred.append(path)
                except NotTrackedError:
                    logger.debug(f"{path} was untracked or relinked during the scan")
                    self.failures.pop(path, None)
                except StoreCorruptionError:
                    raise
                except DriveSyncError as e:
                    logger.warning(f"Push of {path} failed, will retry: {e}")
                    result.failed[path] = str(e)
                    self.failures[path] = str(e)

    def _push_one(self, decision: ChangeDecision) -> str:
        return self.transfers.push(
            decision.local_path, blocking=False, expected=decision.tracked
        )

    def _log_transitions(self, decisions: list[ChangeDecision]) -> None:
        """Log deleted/unreadable files once, when their status changes."""
        current: dict[str, ChangeStatus] = {}
        for decision in decisions:
            path = decision.local_path
            current[path] = decision.status
            if self.last_statuses.get(path) == decision.status:
                continue
            if decision.status == ChangeStatus.DELETED:
                logger.warning(
                    f"{path} was deleted locally; remote object "
                    f"{decision.tracked.remote_id} is kept"
                )
            elif decision.status == ChangeStatus.UNREADABLE:
                logger.warning(f"{path} is unreadable: {decision.reason}")
            elif decision.is_dirty:
                logger.debug(f"{path} is dirty: {decision.reason}")
        self.last_statuses = current
