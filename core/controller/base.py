# bouncer/core/controller/base.py
from abc import ABC, abstractmethod
from typing import List, Sequence

from schemas.decision import AddressFamily
from schemas.firewall import FirewallGroupInfo, FirewallPolicyInfo, FirewallRuleInfo, ZoneInfo


class IFirewallController(ABC):
    """
    Interface for firewall controllers.
    Every write is idempotent: pushing the same full member set twice is safe.
    Implementations raise ControllerError for failures of a single call.
    """

    @abstractmethod
    def connect(self) -> None:
        """
        Authenticates against the controller.
        Raises:
            ControllerError: If the controller cannot be reached or rejects the credentials.
        """
        raise NotImplementedError

    @abstractmethod
    def is_zone_based(self) -> bool:
        """Reports whether the controller uses zone-based firewall policies."""
        raise NotImplementedError

    # --- address groups ---
    @abstractmethod
    def list_groups(self, family: AddressFamily) -> List[FirewallGroupInfo]:
        raise NotImplementedError

    @abstractmethod
    def create_group(self, name: str, family: AddressFamily, members: Sequence[str]) -> FirewallGroupInfo:
        raise NotImplementedError

    @abstractmethod
    def update_group(self, group_id: str, name: str, family: AddressFamily, members: Sequence[str]) -> None:
        """
        Replaces the full membership of an existing group.
        Args:
            group_id (str): Controller identifier of the group.
            name (str): Group name, resent because the controller expects the whole object.
            family (AddressFamily): Family of the group.
            members (Sequence[str]): The complete desired member list.
        """
        raise NotImplementedError

    # --- legacy rules ---
    @abstractmethod
    def list_rules(self, family: AddressFamily) -> List[FirewallRuleInfo]:
        raise NotImplementedError

    @abstractmethod
    def create_rule(self, name: str, family: AddressFamily, ruleset: str, rule_index: int,
                    group_id: str, logging: bool = False) -> FirewallRuleInfo:
        raise NotImplementedError

    # --- zone-based policies ---
    @abstractmethod
    def list_zones(self) -> List[ZoneInfo]:
        raise NotImplementedError

    @abstractmethod
    def list_policies(self) -> List[FirewallPolicyInfo]:
        raise NotImplementedError

    @abstractmethod
    def create_policy(self, name: str, family: AddressFamily, group_id: str, source_zone_id: str,
                      destination_zone_id: str, logging: bool = False) -> FirewallPolicyInfo:
        raise NotImplementedError

    @abstractmethod
    def reorder_policies(self, source_zone_id: str, destination_zone_id: str, policy_ids: Sequence[str]) -> None:
        """Moves the given policies ahead of the predefined ones for a zone pair."""
        raise NotImplementedError
