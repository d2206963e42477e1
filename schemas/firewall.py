# bouncer/schemas/firewall.py
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from schemas.decision import AddressFamily


# --- Controller objects ---
class FirewallGroupInfo(BaseModel):
    """An address group as known by the firewall controller."""
    id: str = Field(..., description="Controller identifier of the group")
    name: str = Field(..., description="Group name")
    family: AddressFamily = Field(..., description="Address family of the group members")
    members: List[str] = Field(default_factory=list, description="Current group members")


class FirewallRuleInfo(BaseModel):
    """A legacy (ruleset based) firewall rule."""
    id: str
    name: str
    ruleset: str = Field(..., description="Ruleset the rule lives in (e.g. WAN_IN, WANv6_IN)")
    rule_index: int
    group_ids: List[str] = Field(default_factory=list, description="Source firewall group ids")


class ZoneInfo(BaseModel):
    id: str
    name: str
    zone_key: Optional[str] = None


class FirewallPolicyInfo(BaseModel):
    """A zone-based firewall policy."""
    id: str
    name: str
    family: Optional[AddressFamily] = None
    source_zone_id: str
    destination_zone_id: str
    group_id: Optional[str] = Field(None, description="Source IP group the policy matches on")
    index: Optional[int] = None
    predefined: bool = False


# --- Reporting ---
class ReconcileReport(BaseModel):
    """Outcome of one reconciliation pass for a single family."""
    family: AddressFamily
    pushed: List[str] = Field(default_factory=list, description="Names of groups pushed successfully")
    failed: Dict[str, str] = Field(default_factory=dict, description="Group name -> error message")
    wired: bool = Field(False, description="True if the initial zone/policy wiring ran in this pass")

    @property
    def calls_made(self) -> bool:
        return bool(self.pushed or self.failed or self.wired)


class FamilyStatus(BaseModel):
    family: AddressFamily
    addresses: int = 0
    groups: int = 0
    dirty_groups: int = 0
