# bouncer/core/service.py
import threading
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional

from core import __version__
from core.config import ConfigManager
from core.controller.base import IFirewallController
from core.controller.factory import controller_registry
from core.decisions.lapi import LapiClient
from core.decisions.stream import DecisionStream
from core.sync.loop import SyncLoop
from core.sync.processor import DecisionProcessor
from core.sync.reconciler import FirewallReconciler
from core.sync.state import BlocklistState
from core.sync.strategy import get_strategy
from schemas.decision import AddressFamily
from utils.errors import ErrorCode
from utils.exceptions import BootstrapError, BouncerError, ControllerError, DecisionStreamError

logger = logging.getLogger(f"bouncer.{__name__}")


class BouncerService:
    """
    Wires the decision stream, the firewall controller and the synchronization loop.
    The stream runs on a worker thread, the loop on the calling thread; both share
    one cancellation event, and whichever stops first stops the other.
    """
    def __init__(self,
                 config: ConfigManager,
                 controller: Optional[IFirewallController] = None,
                 lapi_client: Optional[LapiClient] = None):
        self._config = config
        self.user_agent = f"cs-unifi-bouncer/{__version__}"
        self.cancel_event = threading.Event()
        self._stopping = False
        self._stream_error: Optional[BouncerError] = None

        self.families: List[AddressFamily] = [AddressFamily.IPV4]
        if config.get_config("bouncer.ipv6", False):
            self.families.append(AddressFamily.IPV6)

        self.controller = controller or self._create_controller()
        self.lapi_client = lapi_client or LapiClient(
            url=config.get_config("crowdsec.url"),
            api_key=config.get_config("crowdsec.api_key"),
            origins=config.get_config("crowdsec.origins", []),
            timeout=config.get_config("crowdsec.timeout", 30.0),
            user_agent=self.user_agent,
        )
        self.stream = DecisionStream(
            client=self.lapi_client,
            interval=config.get_config("crowdsec.update_interval", 5.0),
            max_consecutive_failures=config.get_config("crowdsec.max_consecutive_failures", 0),
            cancel_event=self.cancel_event,
        )
        self.state = BlocklistState(
            group_prefix=config.get_config("bouncer.group_prefix", "cs-unifi-bouncer"),
            max_group_size=config.get_config("bouncer.max_group_size", 10000),
            strategy=get_strategy(config.get_config("bouncer.group_strategy", "least_loaded")),
        )
        self.loop: Optional[SyncLoop] = None

    def _create_controller(self) -> IFirewallController:
        name = self._config.get_config("bouncer.controller", "unifi")
        if name == "unifi":
            controller_config = {
                "host": self._config.get_config("unifi.host"),
                "site": self._config.get_config("unifi.site", "default"),
                "api_key": self._config.get_config("unifi.api_key", ""),
                "username": self._config.get_config("unifi.username", ""),
                "password": self._config.get_config("unifi.password", ""),
                "verify_ssl": not self._config.get_config("unifi.skip_tls_verify", False),
                "timeout": self._config.get_config("unifi.timeout", 30.0),
                "max_retries": self._config.get_config("unifi.max_retries", 3),
                "initial_backoff": self._config.get_config("unifi.initial_backoff", 1.0),
                "max_backoff": self._config.get_config("unifi.max_backoff", 30.0),
                "user_agent": self.user_agent,
            }
        else:
            zone_based = self._config.get_config("bouncer.zone_based", "auto")
            controller_config = {"zone_based": zone_based is True}
        return controller_registry.create_controller(name, controller_config)

    def _resolve_zone_based(self) -> bool:
        setting = self._config.get_config("bouncer.zone_based", "auto")
        if setting != "auto":
            return bool(setting)
        try:
            zone_based = self.controller.is_zone_based()
        except ControllerError as e:
            raise BootstrapError(ErrorCode.BOOTSTRAP_STATE_LOAD_FAILED,
                                 override_message=f"Could not detect firewall mode: {e.message}") from e
        logger.info(f"Detected {'zone-based' if zone_based else 'legacy'} firewall")
        return zone_based

    def prepare(self) -> SyncLoop:
        """
        Connects to the controller, loads its current state and builds the loop.
        Raises:
            BootstrapError: If the controller cannot be reached or its state cannot be loaded.
        """
        try:
            self.controller.connect()
        except ControllerError as e:
            raise BootstrapError(ErrorCode.BOOTSTRAP_STATE_LOAD_FAILED,
                                 override_message=f"Cannot connect to firewall controller: {e.message}") from e
        logger.info("Firewall controller connection initialized")

        zone_based = self._resolve_zone_based()
        processor = DecisionProcessor(self.state, families=self.families, zone_based=zone_based)
        reconciler = FirewallReconciler(
            state=self.state,
            controller=self.controller,
            zone_based=zone_based,
            zone_src=self._config.get_config("bouncer.zone_src", "External"),
            zone_dst=self._config.get_config("bouncer.zone_dst", ["Internal"]),
            policy_reordering=self._config.get_config("bouncer.policy_reordering", True),
            rulesets={
                AddressFamily.IPV4: self._config.get_config("bouncer.ipv4_rulesets", ["WAN_IN"]),
                AddressFamily.IPV6: self._config.get_config("bouncer.ipv6_rulesets", ["WANv6_IN"]),
            },
            start_rule_index={
                AddressFamily.IPV4: self._config.get_config("bouncer.ipv4_start_rule_index", 22000),
                AddressFamily.IPV6: self._config.get_config("bouncer.ipv6_start_rule_index", 27000),
            },
            log_matches=self._config.get_config("bouncer.logging", False),
        )
        reconciler.bootstrap(self.families)

        self.loop = SyncLoop(
            state=self.state,
            processor=processor,
            reconciler=reconciler,
            families=self.families,
            inactivity_interval=self._config.get_config("bouncer.inactivity_interval", 1.0),
            startup_delay=self._config.get_config("bouncer.startup_delay", 10.0),
            cancel_event=self.cancel_event,
        )
        return self.loop

    def run(self) -> None:
        """
        Runs until stop() is called or either side fails.
        Raises:
            BootstrapError: On controller bootstrap or wiring failure.
            DecisionStreamError: If the decision stream halts.
        """
        loop = self.loop or self.prepare()
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="BouncerStream") as executor:
            future = executor.submit(self.stream.run, loop.submit)
            future.add_done_callback(self._on_stream_done)
            try:
                loop.run()
            except BouncerError as e:
                logger.error(f"Synchronization loop failed: {e}")
                raise
            finally:
                self.cancel_event.set()

        if self._stream_error is not None:
            raise self._stream_error

    def _on_stream_done(self, future: Future) -> None:
        error = future.exception()
        if error is not None:
            logger.error(f"Decision stream failed: {error}")
            if isinstance(error, BouncerError):
                self._stream_error = error
            else:
                self._stream_error = DecisionStreamError(override_message=f"Decision stream crashed: {error}")
        elif not self._stopping and not self.cancel_event.is_set():
            self._stream_error = DecisionStreamError(override_message="bouncer stream halted")
        self.cancel_event.set()

    def stop(self) -> None:
        logger.info("Stop requested; terminating bouncer process")
        self._stopping = True
        self.cancel_event.set()
