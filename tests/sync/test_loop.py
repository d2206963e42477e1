import threading
import time

import pytest

from core.controller.dummy import DummyController
from core.sync.loop import LoopState, SyncLoop
from core.sync.processor import DecisionProcessor
from core.sync.reconciler import FirewallReconciler
from core.sync.state import BlocklistState
from schemas.decision import AddressFamily
from schemas.firewall import ReconcileReport
from tests.helpers import ban, members

V4 = AddressFamily.IPV4


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def loop(state: BlocklistState, processor: DecisionProcessor, reconciler: FirewallReconciler,
         clock: FakeClock) -> SyncLoop:
    return SyncLoop(state, processor, reconciler, families=[V4], inactivity_interval=1.0,
                    startup_delay=10.0, poll_interval=0.01, clock=clock)


def test_flush_waits_for_inactivity(loop: SyncLoop, controller: DummyController, clock: FakeClock):
    loop.arm(loop.startup_delay)
    loop.submit([ban("1.2.3.4")])

    loop.step()  # drains the batch and re-arms for the inactivity interval
    assert loop.pending_batches == 0
    clock.advance(0.5)
    loop.step()
    assert controller.write_calls() == []

    clock.advance(0.5)
    loop.step()
    assert members(controller, "cs-test-ipv4-0") == ["1.2.3.4"]
    assert not loop.armed


def test_each_batch_postpones_flush(loop: SyncLoop, controller: DummyController, clock: FakeClock):
    loop.arm(loop.startup_delay)
    for address in ("1.2.3.4", "5.6.7.8"):
        loop.submit([ban(address)])
        loop.step()
        clock.advance(0.75)
        loop.step()
    assert controller.write_calls() == []

    clock.advance(0.25)
    loop.step()
    assert members(controller, "cs-test-ipv4-0") == ["1.2.3.4", "5.6.7.8"]


def test_no_flush_before_startup_delay(loop: SyncLoop, reconciler: FirewallReconciler,
                                       clock: FakeClock, monkeypatch):
    calls = []

    def fake_reconcile(family):
        calls.append(family)
        return ReconcileReport(family=family)

    monkeypatch.setattr(reconciler, "reconcile", fake_reconcile)
    loop.arm(loop.startup_delay)

    clock.advance(9.0)
    loop.step()
    assert calls == []

    clock.advance(1.0)
    loop.step()
    assert calls == [V4]


def test_idle_loop_stays_disarmed(loop: SyncLoop, controller: DummyController, clock: FakeClock):
    loop.flush()
    clock.advance(100.0)
    loop.step()
    assert not loop.armed
    assert controller.calls == []


def test_flush_clears_modified(loop: SyncLoop, processor: DecisionProcessor):
    processor.process([ban("1.2.3.4")])
    reports = loop.flush()

    assert [r.pushed for r in reports] == [["cs-test-ipv4-0"]]
    assert not processor.modified
    assert loop.state == LoopState.IDLE


def test_cancelled_flush_skips_reconciliation(loop: SyncLoop, processor: DecisionProcessor,
                                              controller: DummyController):
    processor.process([ban("1.2.3.4")])
    loop.cancel()

    assert loop.flush() == []
    assert controller.write_calls() == []


def test_run_returns_when_cancelled(state: BlocklistState, processor: DecisionProcessor,
                                    reconciler: FirewallReconciler, controller: DummyController):
    """Runs with the real clock: the startup delay flush happens, then cancel ends the loop."""
    loop = SyncLoop(state, processor, reconciler, families=[V4], inactivity_interval=0.01,
                    startup_delay=0.05, poll_interval=0.01)
    loop.submit([ban("1.2.3.4")])
    worker = threading.Thread(target=loop.run, daemon=True)
    worker.start()

    deadline = time.monotonic() + 5.0
    while not list(controller.groups.values()) and time.monotonic() < deadline:
        time.sleep(0.01)
    loop.cancel()
    worker.join(timeout=5.0)

    assert not worker.is_alive()
    assert loop.state == LoopState.TERMINATED
    assert members(controller, "cs-test-ipv4-0") == ["1.2.3.4"]
