# bouncer/core/sync/loop.py
import queue
import threading
import time
import logging
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence

from schemas.decision import AddressFamily, Decision
from schemas.firewall import ReconcileReport
from .processor import DecisionProcessor
from .reconciler import FirewallReconciler
from .state import BlocklistState

logger = logging.getLogger(f"bouncer.{__name__}")


class LoopState(str, Enum):
    IDLE = "idle"
    DRAINING = "draining"
    FLUSHING = "flushing"
    TERMINATED = "terminated"


class SyncLoop:
    """
    Single owner of the blocklist state.
    Other threads only hand batches in through submit(); the loop applies them,
    and once no batch has arrived for the inactivity interval it reconciles
    every enabled family. The first flush waits for the startup delay instead,
    giving the initial decision dump time to arrive.
    """
    def __init__(self,
                 state: BlocklistState,
                 processor: DecisionProcessor,
                 reconciler: FirewallReconciler,
                 families: Iterable[AddressFamily] = (AddressFamily.IPV4,),
                 inactivity_interval: float = 1.0,
                 startup_delay: float = 10.0,
                 poll_interval: float = 0.5,
                 cancel_event: Optional[threading.Event] = None,
                 clock: Callable[[], float] = time.monotonic):
        self._state = state
        self._processor = processor
        self._reconciler = reconciler
        self.families: List[AddressFamily] = [f for f in AddressFamily if f in set(families)]
        self.inactivity_interval = inactivity_interval
        self.startup_delay = startup_delay
        self.poll_interval = poll_interval
        self.cancel_event = cancel_event or threading.Event()
        self._clock = clock

        self._queue: "queue.Queue[List[Decision]]" = queue.Queue()
        self._deadline: Optional[float] = None
        self.state = LoopState.IDLE

    # --- entry points for other threads ---
    def submit(self, decisions: Sequence[Decision]) -> None:
        """Queues a decision batch; safe to call from any thread."""
        self._queue.put(list(decisions))

    def cancel(self) -> None:
        self.cancel_event.set()

    def arm(self, delay: float) -> None:
        """Restarts the flush timer to fire `delay` seconds from now."""
        self._deadline = self._clock() + delay

    # --- loop ---
    def run(self) -> None:
        """
        Runs until cancelled.
        Raises:
            BootstrapError: If zone or rule wiring fails during a flush.
        """
        self.arm(self.startup_delay)
        logger.info("Processing new and deleted decisions . . .")
        try:
            while not self.cancel_event.is_set():
                self.step()
        finally:
            self.state = LoopState.TERMINATED
            logger.info("Synchronization loop terminated.")

    def step(self) -> None:
        """Waits for the next event (batch, deadline or poll timeout) and handles it."""
        try:
            batch = self._queue.get(timeout=self._wait_time())
        except queue.Empty:
            if self.cancel_event.is_set():
                return
            if self._deadline is not None and self._clock() >= self._deadline:
                self.flush()
            return

        if self.cancel_event.is_set():
            return
        self.state = LoopState.DRAINING
        try:
            self._processor.process(batch)
        finally:
            self.state = LoopState.IDLE
        self.arm(self.inactivity_interval)

    def _wait_time(self) -> float:
        if self._deadline is None:
            return self.poll_interval
        return max(0.0, min(self.poll_interval, self._deadline - self._clock()))

    def flush(self) -> List[ReconcileReport]:
        """Reconciles every enabled family; the timer stays disarmed until the next batch."""
        self.state = LoopState.FLUSHING
        reports: List[ReconcileReport] = []
        try:
            for family in self.families:
                if self.cancel_event.is_set():
                    logger.warning("Cancellation requested; skipping remaining reconciliation.")
                    break
                reports.append(self._reconciler.reconcile(family))
            self._processor.clear_modified()
            self._deadline = None
        finally:
            self.state = LoopState.IDLE

        if any(report.calls_made for report in reports):
            for family in self.families:
                status = self._state.status(family)
                logger.info(f"Status {family.value}: {status.addresses} address(es) in {status.groups} group(s), "
                            f"{status.dirty_groups} dirty")
        return reports

    @property
    def pending_batches(self) -> int:
        return self._queue.qsize()

    @property
    def armed(self) -> bool:
        return self._deadline is not None
