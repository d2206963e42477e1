# bouncer/core/sync/reconciler.py
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from core.controller.base import IFirewallController
from schemas.decision import AddressFamily
from schemas.firewall import FirewallPolicyInfo, FirewallRuleInfo, ReconcileReport
from utils.errors import ErrorCode
from utils.exceptions import BootstrapError, ControllerError
from .state import BlocklistState, FirewallGroupState

logger = logging.getLogger(f"bouncer.{__name__}")

DEFAULT_RULESETS: Dict[AddressFamily, List[str]] = {
    AddressFamily.IPV4: ["WAN_IN"],
    AddressFamily.IPV6: ["WANv6_IN"],
}
DEFAULT_START_RULE_INDEX: Dict[AddressFamily, int] = {
    AddressFamily.IPV4: 22000,
    AddressFamily.IPV6: 27000,
}


class FirewallReconciler:
    """
    Pushes dirty group membership to the firewall controller and keeps the
    groups wired into the rule chain.

    Legacy firewalls get one drop rule per group and ruleset. Zone-based
    firewalls get one BLOCK policy per group and destination zone; the first
    reconciliation of a family after a decision arrives also moves the
    bouncer's policies ahead of the predefined ones, once per process.
    """
    def __init__(self,
                 state: BlocklistState,
                 controller: IFirewallController,
                 zone_based: bool = False,
                 zone_src: str = "External",
                 zone_dst: Sequence[str] = ("Internal",),
                 policy_reordering: bool = True,
                 rulesets: Optional[Mapping[AddressFamily, Sequence[str]]] = None,
                 start_rule_index: Optional[Mapping[AddressFamily, int]] = None,
                 log_matches: bool = False):
        self._state = state
        self._controller = controller
        self.zone_based = zone_based
        self.zone_src = zone_src
        self.zone_dst = list(zone_dst)
        self.policy_reordering = policy_reordering
        self.rulesets = {family: list((rulesets or DEFAULT_RULESETS).get(family, [])) for family in AddressFamily}
        self.start_rule_index = dict(start_rule_index or DEFAULT_START_RULE_INDEX)
        self.log_matches = log_matches

        # (group controller id, ruleset) -> rule
        self._rules: Dict[AddressFamily, Dict[Tuple[str, str], FirewallRuleInfo]] = {f: {} for f in AddressFamily}
        # (group controller id, destination zone id) -> policy
        self._policies: Dict[AddressFamily, Dict[Tuple[str, str], FirewallPolicyInfo]] = {f: {} for f in AddressFamily}
        self._src_zone_id: Optional[str] = None
        self._dst_zones: Dict[str, str] = {} # zone id -> zone name

    # --- bootstrap ---
    def bootstrap(self, families: Iterable[AddressFamily]) -> None:
        """
        Loads the bouncer's existing groups, rules, zones and policies from the controller.
        Raises:
            BootstrapError: If any part of the existing state cannot be read or wired.
        """
        families = list(families)
        try:
            if self.zone_based:
                self._resolve_zones()
            for family in families:
                self._load_groups(family)
            if self.zone_based:
                self._load_policies(families)
            else:
                for family in families:
                    self._load_rules(family)
        except ControllerError as e:
            logger.error(f"Failed to load existing firewall state: {e}")
            raise BootstrapError(ErrorCode.BOOTSTRAP_STATE_LOAD_FAILED, details=e.details,
                                 override_message=f"Failed to load existing firewall state: {e.message}") from e

        if not self.zone_based:
            # Adopted groups missing their drop rules get them now
            for family in families:
                for group in self._state.groups.groups(family):
                    if group.controller_id is not None:
                        self._wire_group(family, group)

        for family in families:
            status = self._state.status(family)
            logger.info(f"Bootstrap {family.value}: {status.groups} group(s), {status.addresses} address(es), "
                        f"{status.dirty_groups} group(s) pending correction "
                        f"({'zone-based' if self.zone_based else 'legacy'} firewall)")

    def _resolve_zones(self) -> None:
        zones = self._controller.list_zones()

        def find(name: str) -> str:
            for zone in zones:
                if zone.name == name or (zone.zone_key or "").lower() == name.lower():
                    return zone.id
            raise BootstrapError(ErrorCode.BOOTSTRAP_ZONE_NOT_FOUND,
                                 details={"zone": name, "available": [z.name for z in zones]},
                                 override_message=f"Firewall zone '{name}' not found")

        self._src_zone_id = find(self.zone_src)
        self._dst_zones = {find(name): name for name in self.zone_dst}
        logger.info(f"Resolved zones: source {self.zone_src} -> destinations {self.zone_dst}")

    def _load_groups(self, family: AddressFamily) -> None:
        for info in self._controller.list_groups(family):
            parsed = self._state.groups.parse_group_name(info.name)
            if parsed is None or parsed[0] != family:
                continue
            index = parsed[1]
            if self._state.groups.get(family, index) is not None:
                logger.warning(f"Duplicate firewall group name '{info.name}' (id {info.id}); ignoring it")
                continue
            self._state.adopt_group(family, index, info.id, info.members)

    def _load_rules(self, family: AddressFamily) -> None:
        group_ids = self._group_ids(family)
        for rule in self._controller.list_rules(family):
            for group_id in rule.group_ids:
                if group_id in group_ids:
                    self._rules[family][(group_id, rule.ruleset)] = rule

    def _load_policies(self, families: Sequence[AddressFamily]) -> None:
        policies = self._controller.list_policies()
        for family in families:
            group_ids = self._group_ids(family)
            for policy in policies:
                if policy.group_id in group_ids and policy.source_zone_id == self._src_zone_id:
                    self._policies[family][(policy.group_id, policy.destination_zone_id)] = policy

    def _group_ids(self, family: AddressFamily) -> Dict[str, int]:
        return {g.controller_id: g.index for g in self._state.groups.groups(family) if g.controller_id}

    # --- reconciliation ---
    def reconcile(self, family: AddressFamily) -> ReconcileReport:
        """
        Pushes every dirty group of one family with replace semantics.
        A failing group stays dirty for the next pass and does not stop the others.
        Raises:
            BootstrapError: If rule or policy wiring fails.
        """
        report = ReconcileReport(family=family)
        dirty = self._state.groups.dirty_groups(family)
        wiring = family in self._state.wiring_pending and not self._state.wiring_done[family]
        if not dirty and not wiring:
            logger.debug(f"No dirty {family.value} groups; nothing to reconcile")
            return report

        for group in dirty:
            snapshot = group.snapshot()
            members = sorted(snapshot)
            try:
                if group.controller_id is None:
                    info = self._controller.create_group(group.name, family, members)
                    self._state.groups.mark_pushed(family, group.index, snapshot, controller_id=info.id)
                else:
                    self._controller.update_group(group.controller_id, group.name, family, members)
                    self._state.groups.mark_pushed(family, group.index, snapshot)
            except ControllerError as e:
                logger.error(f"Failed to push firewall group {group.name} ({len(members)} member(s)); "
                             f"will retry on next flush: {e}")
                report.failed[group.name] = e.message
                continue
            report.pushed.append(group.name)
            self._wire_group(family, group)

        if wiring:
            self._initial_wiring(family)
            report.wired = True

        if report.pushed or report.failed:
            logger.info(f"Reconciled {family.value}: {len(report.pushed)} group(s) pushed, "
                        f"{len(report.failed)} failed")
        return report

    def _wire_group(self, family: AddressFamily, group: FirewallGroupState) -> None:
        """Creates the missing rules or policies that reference one group."""
        try:
            if self.zone_based:
                for zone_id, zone_name in self._dst_zones.items():
                    key = (group.controller_id, zone_id)
                    if key in self._policies[family]:
                        continue
                    self._policies[family][key] = self._controller.create_policy(
                        name=f"{group.name}-{zone_name}",
                        family=family,
                        group_id=group.controller_id,
                        source_zone_id=self._src_zone_id,
                        destination_zone_id=zone_id,
                        logging=self.log_matches,
                    )
            else:
                for ruleset in self.rulesets[family]:
                    key = (group.controller_id, ruleset)
                    if key in self._rules[family]:
                        continue
                    self._rules[family][key] = self._controller.create_rule(
                        name=group.name,
                        family=family,
                        ruleset=ruleset,
                        rule_index=self.start_rule_index[family] + group.index,
                        group_id=group.controller_id,
                        logging=self.log_matches,
                    )
        except ControllerError as e:
            logger.error(f"Failed to wire firewall group {group.name} into the rule chain: {e}")
            raise BootstrapError(ErrorCode.BOOTSTRAP_WIRING_FAILED, details={"group": group.name},
                                 override_message=f"Failed to wire group {group.name}: {e.message}") from e

    def _initial_wiring(self, family: AddressFamily) -> None:
        """Verifies every group's policies and moves them ahead of the predefined ones. Runs once per family."""
        for group in self._state.groups.groups(family):
            if group.controller_id is not None:
                self._wire_group(family, group)

        if self.policy_reordering:
            groups_by_id = {gid: (f, idx) for f in AddressFamily for gid, idx in self._group_ids(f).items()}
            for zone_id, zone_name in self._dst_zones.items():
                # Both families share the zone pair, so reorder them together
                policies = [
                    policy for f in AddressFamily
                    for (group_id, dst_id), policy in self._policies[f].items()
                    if dst_id == zone_id and group_id in groups_by_id
                ]
                if not policies:
                    continue
                policies.sort(key=lambda p: (groups_by_id[p.group_id][0].value, groups_by_id[p.group_id][1]))
                try:
                    self._controller.reorder_policies(self._src_zone_id, zone_id, [p.id for p in policies])
                except ControllerError as e:
                    logger.error(f"Initial policy reordering failed for {self.zone_src} -> {zone_name}: {e}")
                    raise BootstrapError(ErrorCode.BOOTSTRAP_REORDER_FAILED, details={"zone": zone_name},
                                         override_message=f"Policy reordering failed: {e.message}") from e

        self._state.wiring_done[family] = True
        self._state.wiring_pending.discard(family)
        logger.info(f"Initial zone policy wiring done for {family.value}")

    # --- introspection ---
    def rules(self, family: AddressFamily) -> List[FirewallRuleInfo]:
        return list(self._rules[family].values())

    def policies(self, family: AddressFamily) -> List[FirewallPolicyInfo]:
        return list(self._policies[family].values())
