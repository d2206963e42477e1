# bouncer/core/controller/factory.py
from typing import Dict, Type, Optional, List, Any

from .base import IFirewallController
from .unifi import UnifiController
from .dummy import DummyController
from utils.errors import ErrorCode
from utils.exceptions import ConfigurationError, BouncerError
import logging

logger = logging.getLogger(f"bouncer.{__name__}")


class ControllerRegistry:
    """
    Manages the registration and creation of firewall controller instances.
    Implements a factory pattern for controllers.
    """
    def __init__(self):
        self._controllers: Dict[str, Type[IFirewallController]] = {}

        # Auto-register known controllers
        self.register_controller(UnifiController.CONTROLLER_NAME, UnifiController)
        self.register_controller(DummyController.CONTROLLER_NAME, DummyController)

    def register_controller(self, name: str, controller_class: Type[IFirewallController]) -> None:
        """
        Registers a controller class with a given name.
        Args:
            name (str): The unique name for the controller type (e.g., "unifi").
            controller_class (Type[IFirewallController]): The class of the controller to register.
        """
        if not issubclass(controller_class, IFirewallController):
            raise TypeError(f"Controller class {controller_class.__name__} must inherit from IFirewallController.")
        if name in self._controllers:
            logger.warning(f"Warning: Controller with name '{name}' already registered. Overwriting.")
        self._controllers[name] = controller_class
        logger.debug(f"Controller '{name}' (class: {controller_class.__name__}) registered.")

    def get_controller_class(self, name: str) -> Optional[Type[IFirewallController]]:
        return self._controllers.get(name)

    def get_all_controllers(self) -> List[str]:
        return list(self._controllers.keys())

    def create_controller(self, name: str, controller_config: Optional[Dict[str, Any]] = None) -> IFirewallController:
        """
        Creates an instance of the named controller.
        Args:
            name (str): The name of the controller to create.
            controller_config (Optional[Dict[str, Any]]): Keyword arguments for the controller constructor.
        Raises:
            BouncerError: If the name is unknown.
            ConfigurationError: If the configuration does not fit the controller.
        """
        controller_class = self._controllers.get(name)
        if controller_class is None:
            raise BouncerError(ErrorCode.CONTROLLER_UNKNOWN_TYPE,
                               override_message=f"Unknown controller '{name}'. Available: {self.get_all_controllers()}")
        try:
            instance = controller_class(**(controller_config or {}))
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration for controller '{name}': {e}") from e
        logger.info(f"Controller '{name}' created.")
        return instance


# Global registry instance
controller_registry = ControllerRegistry()
