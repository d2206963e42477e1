from .decision import (
    AddressFamily,
    Decision,
    DecisionAction,
    DecisionStreamResponse,
    LapiDecision,
    parse_address,
)
from .firewall import (
    FamilyStatus,
    FirewallGroupInfo,
    FirewallPolicyInfo,
    FirewallRuleInfo,
    ReconcileReport,
    ZoneInfo,
)

__all__ = [
    # Decisions
    "AddressFamily",
    "Decision",
    "DecisionAction",
    "DecisionStreamResponse",
    "LapiDecision",
    "parse_address",
    # Firewall objects
    "FirewallGroupInfo",
    "FirewallRuleInfo",
    "ZoneInfo",
    "FirewallPolicyInfo",
    # Reporting
    "ReconcileReport",
    "FamilyStatus",
]
