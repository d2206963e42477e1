# bouncer/core/sync/processor.py
import logging
from typing import Iterable, Sequence, Set

from schemas.decision import AddressFamily, Decision, DecisionAction
from .state import BlocklistState

logger = logging.getLogger(f"bouncer.{__name__}")


class DecisionProcessor:
    """
    Applies decision batches to the blocklist state in arrival order.
    Decisions for a disabled family are dropped here so they never reach the cache.
    """
    def __init__(self,
                 state: BlocklistState,
                 families: Iterable[AddressFamily] = (AddressFamily.IPV4,),
                 zone_based: bool = False):
        self._state = state
        self.families: Set[AddressFamily] = set(families)
        self.zone_based = zone_based
        self.modified = False
        self._seen_families: Set[AddressFamily] = set()

    def process(self, decisions: Sequence[Decision]) -> None:
        added = removed = ignored = 0
        for decision in decisions:
            if decision.family not in self.families:
                ignored += 1
                continue
            self._schedule_wiring(decision.family)
            self._state.apply_decision(decision)
            if decision.action == DecisionAction.ADD:
                added += 1
            else:
                removed += 1

        if added or removed:
            self.modified = True
        logger.info(f"Processed {added + removed} decision(s): {added} add, {removed} remove"
                    + (f", {ignored} ignored (family disabled)" if ignored else ""))

    def _schedule_wiring(self, family: AddressFamily) -> None:
        """First decision of a family on a zone-based firewall queues the one-time policy wiring."""
        if family in self._seen_families:
            return
        self._seen_families.add(family)
        if self.zone_based and not self._state.wiring_done[family]:
            self._state.wiring_pending.add(family)
            logger.debug(f"Initial zone policy wiring scheduled for {family.value}")

    def clear_modified(self) -> bool:
        was_modified = self.modified
        self.modified = False
        return was_modified
