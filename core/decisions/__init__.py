# bouncer/core/decisions/__init__.py
from .lapi import LapiClient, to_decisions
from .stream import DecisionStream

__all__ = [
    "LapiClient",
    "to_decisions",
    "DecisionStream",
]
