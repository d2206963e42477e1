# bouncer/core/sync/strategy.py
from abc import ABC, abstractmethod
from typing import Dict, Optional, Sequence, Type, TYPE_CHECKING

if TYPE_CHECKING:
    from .state import FirewallGroupState


class GroupSelectionStrategy(ABC):
    """
    Picks the group a newly blocked address goes into.
    Returning None asks the tracker to open a new group.
    """
    name: str = ""

    @abstractmethod
    def select(self, groups: Sequence["FirewallGroupState"], capacity: int) -> Optional[int]:
        raise NotImplementedError


class LeastLoadedStrategy(GroupSelectionStrategy):
    """Fewest members first; ties go to the lowest index."""
    name = "least_loaded"

    def select(self, groups, capacity):
        candidates = [g for g in groups if len(g.members) < capacity]
        if not candidates:
            return None
        return min(candidates, key=lambda g: (len(g.members), g.index)).index


class FirstFitStrategy(GroupSelectionStrategy):
    """Lowest index with room, keeping the tail groups as empty as possible."""
    name = "first_fit"

    def select(self, groups, capacity):
        for group in sorted(groups, key=lambda g: g.index):
            if len(group.members) < capacity:
                return group.index
        return None


_STRATEGIES: Dict[str, Type[GroupSelectionStrategy]] = {
    LeastLoadedStrategy.name: LeastLoadedStrategy,
    FirstFitStrategy.name: FirstFitStrategy,
}


def get_strategy(name: str) -> GroupSelectionStrategy:
    """
    Creates a strategy instance by its configured name.
    Raises:
        ValueError: If no strategy is registered under that name.
    """
    strategy_class = _STRATEGIES.get(name)
    if strategy_class is None:
        raise ValueError(f"Unknown group selection strategy '{name}'. Available: {sorted(_STRATEGIES)}")
    return strategy_class()
