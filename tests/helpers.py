from typing import List

from core.controller.dummy import DummyController
from schemas.decision import Decision, DecisionAction


def ban(address: str, origin: str = "crowdsec") -> Decision:
    decision = Decision.from_value(address, DecisionAction.ADD, origin=origin)
    assert decision is not None, f"test address {address!r} should be valid"
    return decision


def unban(address: str, origin: str = "crowdsec") -> Decision:
    decision = Decision.from_value(address, DecisionAction.REMOVE, origin=origin)
    assert decision is not None, f"test address {address!r} should be valid"
    return decision


def members(controller: DummyController, name: str) -> List[str]:
    group = controller.group_by_name(name)
    assert group is not None, f"group {name} not found on controller"
    return sorted(group.members)
