# bouncer/core/controller/__init__.py
from .base import IFirewallController
from .unifi import UnifiController
from .dummy import DummyController
from .factory import ControllerRegistry, controller_registry

__all__ = [
    "IFirewallController",
    "UnifiController",
    "DummyController",
    "ControllerRegistry",
    "controller_registry",
]
