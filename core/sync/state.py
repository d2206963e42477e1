# bouncer/core/sync/state.py
import re
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from schemas.decision import AddressFamily, Decision, DecisionAction, parse_address
from schemas.firewall import FamilyStatus
from .strategy import GroupSelectionStrategy, LeastLoadedStrategy

logger = logging.getLogger(f"bouncer.{__name__}")


@dataclass
class FirewallGroupState:
    """
    In-memory view of one controller address group.
    `pushed` is the member set the controller last acknowledged; None means
    the group does not exist on the controller yet.
    """
    index: int
    family: AddressFamily
    name: str
    members: Set[str] = field(default_factory=set)
    controller_id: Optional[str] = None
    pushed: Optional[FrozenSet[str]] = None

    @property
    def dirty(self) -> bool:
        return self.members != (self.pushed or frozenset())

    def snapshot(self) -> FrozenSet[str]:
        return frozenset(self.members)


class AddressCache:
    """Blocked addresses per family, each mapped to the index of its group."""

    def __init__(self):
        self._entries: Dict[AddressFamily, Dict[str, int]] = {family: {} for family in AddressFamily}

    def contains(self, family: AddressFamily, address: str) -> bool:
        return address in self._entries[family]

    def group_of(self, family: AddressFamily, address: str) -> Optional[int]:
        return self._entries[family].get(address)

    def assign(self, family: AddressFamily, address: str, index: int) -> None:
        self._entries[family][address] = index

    def discard(self, family: AddressFamily, address: str) -> Optional[int]:
        """Removes an address; returns the group index it was in, or None if absent."""
        return self._entries[family].pop(address, None)

    def addresses(self, family: AddressFamily) -> Set[str]:
        return set(self._entries[family])

    def count(self, family: AddressFamily) -> int:
        return len(self._entries[family])

    def snapshot(self) -> Dict[AddressFamily, Dict[str, int]]:
        return {family: dict(entries) for family, entries in self._entries.items()}


class GroupTracker:
    """
    Firewall groups per family plus the set of group indexes touched since
    their last push. Only touched groups are ever examined for dirtiness.
    """

    def __init__(self, prefix: str, capacity: int, strategy: Optional[GroupSelectionStrategy] = None):
        if capacity <= 0:
            raise ValueError(f"Group capacity must be positive, got {capacity}")
        self.prefix = prefix
        self.capacity = capacity
        self.strategy = strategy or LeastLoadedStrategy()
        self._groups: Dict[AddressFamily, Dict[int, FirewallGroupState]] = {family: {} for family in AddressFamily}
        self._touched: Dict[AddressFamily, Set[int]] = {family: set() for family in AddressFamily}
        self._name_pattern = re.compile(rf"^{re.escape(prefix)}-(ipv4|ipv6)-(\d+)$")

    # --- naming ---
    def group_name(self, family: AddressFamily, index: int) -> str:
        return f"{self.prefix}-{family.value}-{index}"

    def parse_group_name(self, name: str) -> Optional[Tuple[AddressFamily, int]]:
        """Returns (family, index) for names this bouncer owns, None for anything else."""
        match = self._name_pattern.match(name or "")
        if not match:
            return None
        return AddressFamily(match.group(1)), int(match.group(2))

    # --- lookup ---
    def get(self, family: AddressFamily, index: int) -> Optional[FirewallGroupState]:
        return self._groups[family].get(index)

    def groups(self, family: AddressFamily) -> List[FirewallGroupState]:
        return [self._groups[family][index] for index in sorted(self._groups[family])]

    def dirty_groups(self, family: AddressFamily) -> List[FirewallGroupState]:
        dirty = []
        for index in sorted(self._touched[family]):
            group = self._groups[family].get(index)
            if group is not None and group.dirty:
                dirty.append(group)
        return dirty

    # --- mutation ---
    def open_group(self, family: AddressFamily) -> FirewallGroupState:
        """Creates an empty group at the lowest free index."""
        index = 0
        while index in self._groups[family]:
            index += 1
        group = FirewallGroupState(index=index, family=family, name=self.group_name(family, index))
        self._groups[family][index] = group
        logger.debug(f"Opened group {group.name}")
        return group

    def select_group(self, family: AddressFamily) -> FirewallGroupState:
        index = self.strategy.select(self.groups(family), self.capacity)
        if index is None:
            return self.open_group(family)
        return self._groups[family][index]

    def add_member(self, family: AddressFamily, index: int, address: str) -> None:
        self._groups[family][index].members.add(address)
        self._touched[family].add(index)

    def remove_member(self, family: AddressFamily, index: int, address: str) -> None:
        group = self._groups[family].get(index)
        if group is None:
            return
        group.members.discard(address)
        self._touched[family].add(index)

    def discard_if_unused(self, family: AddressFamily, index: int) -> None:
        """Forgets an empty group that was never created on the controller."""
        group = self._groups[family].get(index)
        if group is not None and not group.members and group.controller_id is None:
            del self._groups[family][index]
            self._touched[family].discard(index)

    def mark_pushed(self, family: AddressFamily, index: int, snapshot: FrozenSet[str],
                    controller_id: Optional[str] = None) -> None:
        group = self._groups[family][index]
        group.pushed = snapshot
        if controller_id is not None:
            group.controller_id = controller_id
        if not group.dirty:
            self._touched[family].discard(index)

    def adopt(self, family: AddressFamily, index: int, controller_id: str,
              pushed: FrozenSet[str], members: Set[str]) -> FirewallGroupState:
        """Registers a group that already exists on the controller."""
        group = FirewallGroupState(
            index=index,
            family=family,
            name=self.group_name(family, index),
            members=set(members),
            controller_id=controller_id,
            pushed=pushed,
        )
        self._groups[family][index] = group
        if group.dirty:
            self._touched[family].add(index)
        return group


class BlocklistState:
    """
    Address cache and group tracker together, plus the per-family wiring latches.
    Owned by the synchronization loop; nothing else holds a reference across calls.
    """

    def __init__(self, group_prefix: str = "cs-unifi-bouncer", max_group_size: int = 10000,
                 strategy: Optional[GroupSelectionStrategy] = None):
        self.cache = AddressCache()
        self.groups = GroupTracker(prefix=group_prefix, capacity=max_group_size, strategy=strategy)
        self.wiring_pending: Set[AddressFamily] = set()
        self.wiring_done: Dict[AddressFamily, bool] = {family: False for family in AddressFamily}

    def apply_decision(self, decision: Decision) -> None:
        parsed = parse_address(decision.address)
        if parsed is None or parsed[1] != decision.family:
            logger.warning(f"Ignoring malformed decision: address={decision.address!r} family={decision.family.value} "
                           f"origin={decision.origin!r} scenario={decision.scenario!r}")
            return
        address, family = parsed
        if decision.action == DecisionAction.ADD:
            self._add(family, address)
        else:
            self._remove(family, address)

    def _add(self, family: AddressFamily, address: str) -> None:
        current = self.cache.group_of(family, address)
        if current is not None:
            group = self.groups.get(family, current)
            if group is not None and address in group.members and len(group.members) <= self.groups.capacity:
                return
            # Group over capacity: move the address on
            self.groups.remove_member(family, current, address)
            logger.debug(f"Rebalancing {address} out of over-capacity group index {current}")

        target = self.groups.select_group(family)
        self.groups.add_member(family, target.index, address)
        self.cache.assign(family, address, target.index)

    def _remove(self, family: AddressFamily, address: str) -> None:
        index = self.cache.discard(family, address)
        if index is None:
            return
        self.groups.remove_member(family, index, address)
        self.groups.discard_if_unused(family, index)

    def adopt_group(self, family: AddressFamily, index: int, controller_id: str, members: Iterable[str]) -> FirewallGroupState:
        """
        Loads a controller group at startup. Members that are malformed, belong
        to the other family or already sit in another group are dropped, which
        leaves the group dirty so the next reconciliation corrects the controller.
        Kept members are compared in normalized form, so "1.2.3.4/32" on the
        controller matches "1.2.3.4" in memory.
        """
        kept: Set[str] = set()
        on_controller: Set[str] = set()
        for member in members:
            parsed = parse_address(member)
            if parsed is None or parsed[1] != family:
                logger.warning(f"Dropping invalid member {member!r} from group {self.groups.group_name(family, index)}")
                on_controller.add(str(member))
                continue
            address = parsed[0]
            if self.cache.contains(family, address):
                on_controller.add(address)
                continue
            kept.add(address)
            on_controller.add(address)
            self.cache.assign(family, address, index)
        return self.groups.adopt(family, index, controller_id, pushed=frozenset(on_controller), members=kept)

    def status(self, family: AddressFamily) -> FamilyStatus:
        return FamilyStatus(
            family=family,
            addresses=self.cache.count(family),
            groups=len(self.groups.groups(family)),
            dirty_groups=len(self.groups.dirty_groups(family)),
        )
