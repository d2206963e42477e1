# bouncer/core/controller/dummy.py
import itertools
import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

from schemas.decision import AddressFamily
from schemas.firewall import FirewallGroupInfo, FirewallPolicyInfo, FirewallRuleInfo, ZoneInfo
from utils.errors import ErrorCode
from utils.exceptions import ControllerError
from .base import IFirewallController

logger = logging.getLogger(f"bouncer.{__name__}")


class DummyController(IFirewallController):
    """
    In-memory firewall controller.
    Used for dry runs (bouncer.controller: dummy) and as the test double for the engine.
    Every call is appended to `calls` as (method, argument) so tests can assert on traffic.
    """
    CONTROLLER_NAME = "dummy"

    def __init__(self, zone_based: bool = False, zones: Optional[Sequence[str]] = ("External", "Internal")):
        self.zone_based = zone_based
        self.groups: Dict[str, FirewallGroupInfo] = {}
        self.rules: Dict[str, FirewallRuleInfo] = {}
        self.zones: Dict[str, ZoneInfo] = {}
        self.policies: Dict[str, FirewallPolicyInfo] = {}
        self.policy_order: Dict[Tuple[str, str], List[str]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.connected = False

        # Failure injection
        self.fail_groups: Set[str] = set() # group names whose create/update fails
        self.fail_methods: Set[str] = set() # method names that always fail

        self._ids = itertools.count(1)
        for zone_name in zones or ():
            zone_id = self._next_id("zone")
            self.zones[zone_id] = ZoneInfo(id=zone_id, name=zone_name, zone_key=zone_name.lower())

    def _next_id(self, kind: str) -> str:
        return f"{kind}-{next(self._ids)}"

    def _record(self, method: str, argument: str = "") -> None:
        self.calls.append((method, argument))
        if method in self.fail_methods:
            raise ControllerError(ErrorCode.CONTROLLER_REQUEST_FAILED, override_message=f"injected failure in {method}")

    def write_calls(self) -> List[Tuple[str, str]]:
        """Calls that would have changed controller state."""
        return [call for call in self.calls if not call[0].startswith(("list_", "is_", "connect"))]

    def connect(self) -> None:
        self._record("connect")
        self.connected = True
        logger.info("DummyController connected (no network calls are made).")

    def is_zone_based(self) -> bool:
        self._record("is_zone_based")
        return self.zone_based

    # --- address groups ---
    def list_groups(self, family: AddressFamily) -> List[FirewallGroupInfo]:
        self._record("list_groups", family.value)
        return [g.model_copy(deep=True) for g in self.groups.values() if g.family == family]

    def create_group(self, name, family, members):
        self._record("create_group", name)
        if name in self.fail_groups:
            raise ControllerError(ErrorCode.CONTROLLER_GROUP_PUSH_FAILED, override_message=f"injected failure for {name}")
        group_id = self._next_id("group")
        self.groups[group_id] = FirewallGroupInfo(id=group_id, name=name, family=family, members=list(members))
        return self.groups[group_id].model_copy(deep=True)

    def update_group(self, group_id, name, family, members):
        self._record("update_group", name)
        if name in self.fail_groups:
            raise ControllerError(ErrorCode.CONTROLLER_GROUP_PUSH_FAILED, override_message=f"injected failure for {name}")
        if group_id not in self.groups:
            raise ControllerError(ErrorCode.CONTROLLER_REQUEST_FAILED, override_message=f"group {group_id} not found",
                                  status_code=404)
        self.groups[group_id] = FirewallGroupInfo(id=group_id, name=name, family=family, members=list(members))

    # --- legacy rules ---
    def list_rules(self, family):
        self._record("list_rules", family.value)
        group_ids = {g.id for g in self.groups.values() if g.family == family}
        return [r.model_copy(deep=True) for r in self.rules.values() if set(r.group_ids) & group_ids]

    def create_rule(self, name, family, ruleset, rule_index, group_id, logging=False):
        self._record("create_rule", name)
        rule_id = self._next_id("rule")
        self.rules[rule_id] = FirewallRuleInfo(id=rule_id, name=name, ruleset=ruleset,
                                               rule_index=rule_index, group_ids=[group_id])
        return self.rules[rule_id].model_copy(deep=True)

    # --- zone-based policies ---
    def list_zones(self):
        self._record("list_zones")
        return [z.model_copy() for z in self.zones.values()]

    def list_policies(self):
        self._record("list_policies")
        return [p.model_copy() for p in self.policies.values()]

    def create_policy(self, name, family, group_id, source_zone_id, destination_zone_id, logging=False):
        self._record("create_policy", name)
        policy_id = self._next_id("policy")
        self.policies[policy_id] = FirewallPolicyInfo(
            id=policy_id, name=name, family=family, source_zone_id=source_zone_id,
            destination_zone_id=destination_zone_id, group_id=group_id,
        )
        return self.policies[policy_id].model_copy()

    def reorder_policies(self, source_zone_id, destination_zone_id, policy_ids):
        self._record("reorder_policies", f"{source_zone_id}->{destination_zone_id}")
        self.policy_order[(source_zone_id, destination_zone_id)] = list(policy_ids)

    # --- helpers for tests and dry runs ---
    def zone_id(self, name: str) -> Optional[str]:
        for zone in self.zones.values():
            if zone.name == name:
                return zone.id
        return None

    def group_by_name(self, name: str) -> Optional[FirewallGroupInfo]:
        for group in self.groups.values():
            if group.name == name:
                return group
        return None
