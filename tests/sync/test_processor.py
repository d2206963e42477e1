from core.sync.processor import DecisionProcessor
from core.sync.state import BlocklistState
from schemas.decision import AddressFamily
from tests.helpers import ban, unban

V4 = AddressFamily.IPV4
V6 = AddressFamily.IPV6


def test_batch_order_matters(processor: DecisionProcessor, state: BlocklistState):
    processor.process([ban("1.2.3.4"), unban("1.2.3.4")])
    assert not state.cache.contains(V4, "1.2.3.4")

    processor.process([unban("5.6.7.8"), ban("5.6.7.8")])
    assert state.cache.contains(V4, "5.6.7.8")


def test_disabled_family_is_dropped(state: BlocklistState):
    processor = DecisionProcessor(state, families=(V4,))
    processor.process([ban("2001:db8::1")])

    assert state.cache.count(V6) == 0
    assert not processor.modified


def test_modified_flag(processor: DecisionProcessor):
    assert not processor.modified
    processor.process([])
    assert not processor.modified

    processor.process([ban("1.2.3.4")])
    assert processor.modified
    assert processor.clear_modified() is True
    assert processor.clear_modified() is False


def test_zone_wiring_scheduled_on_first_decision(state: BlocklistState):
    processor = DecisionProcessor(state, families=(V4, V6), zone_based=True)
    processor.process([ban("1.2.3.4")])
    assert state.wiring_pending == {V4}

    processor.process([unban("2001:db8::1")])
    assert state.wiring_pending == {V4, V6}


def test_zone_wiring_not_rescheduled_once_done(state: BlocklistState):
    state.wiring_done[V4] = True
    processor = DecisionProcessor(state, families=(V4,), zone_based=True)
    processor.process([ban("1.2.3.4")])
    assert state.wiring_pending == set()


def test_legacy_firewall_never_schedules_wiring(processor: DecisionProcessor, state: BlocklistState):
    processor.process([ban("1.2.3.4"), ban("2001:db8::1")])
    assert state.wiring_pending == set()
