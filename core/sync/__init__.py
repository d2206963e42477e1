# bouncer/core/sync/__init__.py
from .state import AddressCache, BlocklistState, FirewallGroupState, GroupTracker
from .strategy import FirstFitStrategy, GroupSelectionStrategy, LeastLoadedStrategy, get_strategy
from .processor import DecisionProcessor
from .reconciler import FirewallReconciler
from .loop import LoopState, SyncLoop

__all__ = [
    "AddressCache",
    "BlocklistState",
    "FirewallGroupState",
    "GroupTracker",
    "GroupSelectionStrategy",
    "LeastLoadedStrategy",
    "FirstFitStrategy",
    "get_strategy",
    "DecisionProcessor",
    "FirewallReconciler",
    "LoopState",
    "SyncLoop",
]
