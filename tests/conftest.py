import pytest

from core.config import ConfigManager
from core.controller.dummy import DummyController
from core.sync.processor import DecisionProcessor
from core.sync.reconciler import FirewallReconciler
from core.sync.state import BlocklistState
from core.sync.strategy import LeastLoadedStrategy
from schemas.decision import AddressFamily


@pytest.fixture(autouse=True)
def reset_config_manager():
    ConfigManager.reset()
    yield
    ConfigManager.reset()


@pytest.fixture
def state() -> BlocklistState:
    # Small capacity so bin-packing is easy to observe
    return BlocklistState(group_prefix="cs-test", max_group_size=3, strategy=LeastLoadedStrategy())


@pytest.fixture
def controller() -> DummyController:
    return DummyController()


@pytest.fixture
def zone_controller() -> DummyController:
    return DummyController(zone_based=True, zones=("External", "Internal", "Dmz"))


@pytest.fixture
def processor(state: BlocklistState) -> DecisionProcessor:
    return DecisionProcessor(state, families=(AddressFamily.IPV4, AddressFamily.IPV6))


@pytest.fixture
def reconciler(state: BlocklistState, controller: DummyController) -> FirewallReconciler:
    rec = FirewallReconciler(state, controller)
    rec.bootstrap([AddressFamily.IPV4, AddressFamily.IPV6])
    controller.calls.clear()
    return rec
