# bouncer/schemas/decision.py
import ipaddress
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class AddressFamily(str, Enum):
    """The two independent address partitions."""

    IPV4 = "ipv4"
    IPV6 = "ipv6"


class DecisionAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"


def parse_address(value: Any) -> Optional[Tuple[str, AddressFamily]]:
    """
    Normalizes an IP or CIDR string and detects its family.
    Single-host networks (/32, /128) collapse to the bare address.
    Returns:
        Optional[Tuple[str, AddressFamily]]: (normalized address, family), or None if malformed.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        network = ipaddress.ip_network(value.strip(), strict=False)
    except ValueError:
        return None
    family = AddressFamily.IPV4 if network.version == 4 else AddressFamily.IPV6
    if network.num_addresses == 1:
        return str(network.network_address), family
    return str(network), family


class Decision(BaseModel):
    """
    A single block/unblock verdict for an address.
    Consumed once by the decision processor.
    """
    model_config = ConfigDict(frozen=True)

    address: str = Field(..., description="IP address or CIDR range")
    family: AddressFamily = Field(..., description="Address family of the address")
    action: DecisionAction = Field(..., description="add blocks the address, remove unblocks it")
    origin: str = Field("", description="Feed origin (e.g. crowdsec, CAPI, lists)")
    scenario: Optional[str] = Field(None, description="Scenario that produced the decision")
    scope: Optional[str] = Field(None, description="Feed scope, Ip or Range")
    duration: Optional[str] = Field(None, description="Remaining duration as reported by the feed")

    @classmethod
    def from_value(cls, value: str, action: DecisionAction, origin: str = "", **extra: Any) -> Optional["Decision"]:
        """Builds a decision from a raw address string, or None if the address is malformed."""
        parsed = parse_address(value)
        if parsed is None:
            return None
        address, family = parsed
        return cls(address=address, family=family, action=action, origin=origin, **extra)


class LapiDecision(BaseModel):
    """A decision item as returned by the CrowdSec LAPI stream endpoint."""
    id: Optional[int] = None
    origin: str = ""
    type: str = "ban"
    scope: str = "Ip"
    value: str
    duration: Optional[str] = None
    scenario: Optional[str] = None
    uuid: Optional[str] = None


class DecisionStreamResponse(BaseModel):
    """
    Body of GET /v1/decisions/stream.
    LAPI sends null instead of an empty list, and items are validated
    one at a time so a single bad entry cannot discard a whole batch.
    """
    new: Optional[List[Any]] = None
    deleted: Optional[List[Any]] = None

    def is_empty(self) -> bool:
        return not self.new and not self.deleted
