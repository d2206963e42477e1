# bouncer/core/config.py

import copy
import json
import os
import re
from typing import Any, Dict, List, Optional

import yaml
import logging
logger = logging.getLogger(f"bouncer.{__name__}")


DEFAULT_CONFIG: Dict[str, Any] = {
    "crowdsec": {
        "url": "http://localhost:8080/",
        "api_key": "",
        "origins": [],
        "update_interval": 5.0,
        "timeout": 30.0,
        "max_consecutive_failures": 0,
    },
    "unifi": {
        "host": "https://192.168.1.1",
        "api_key": "",
        "username": "",
        "password": "",
        "site": "default",
        "skip_tls_verify": False,
        "timeout": 30.0,
        "max_retries": 3,
        "initial_backoff": 1.0,
        "max_backoff": 30.0,
    },
    "bouncer": {
        "controller": "unifi",
        "ipv6": False,
        "max_group_size": 10000,
        "group_prefix": "cs-unifi-bouncer",
        "group_strategy": "least_loaded",
        "startup_delay": 10.0,
        "inactivity_interval": 1.0,
        "zone_based": "auto",
        "zone_src": "External",
        "zone_dst": ["Internal"],
        "policy_reordering": True,
        "ipv4_start_rule_index": 22000,
        "ipv6_start_rule_index": 27000,
        "ipv4_rulesets": ["WAN_IN"],
        "ipv6_rulesets": ["WANv6_IN"],
        "logging": False,
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        "date_format": "%Y-%m-%d %H:%M:%S",
        "file": {"path": None, "max_bytes": 1024 * 1024 * 5, "backup_count": 5},
    },
}

# Environment variable -> dotted config path
ENV_OVERRIDES: Dict[str, str] = {
    "CROWDSEC_BOUNCER_API_KEY": "crowdsec.api_key",
    "CROWDSEC_URL": "crowdsec.url",
    "CROWDSEC_ORIGINS": "crowdsec.origins",
    "CROWDSEC_UPDATE_INTERVAL": "crowdsec.update_interval",
    "UNIFI_HOST": "unifi.host",
    "UNIFI_API_KEY": "unifi.api_key",
    "UNIFI_USER": "unifi.username",
    "UNIFI_PASS": "unifi.password",
    "UNIFI_SITE": "unifi.site",
    "UNIFI_SKIP_TLS_VERIFY": "unifi.skip_tls_verify",
    "UNIFI_IPV6": "bouncer.ipv6",
    "UNIFI_MAX_GROUP_SIZE": "bouncer.max_group_size",
    "UNIFI_GROUP_PREFIX": "bouncer.group_prefix",
    "UNIFI_ZONE_BASED": "bouncer.zone_based",
    "UNIFI_ZONE_SRC": "bouncer.zone_src",
    "UNIFI_ZONE_DST": "bouncer.zone_dst",
    "UNIFI_POLICY_REORDERING": "bouncer.policy_reordering",
    "UNIFI_IPV4_START_RULE_INDEX": "bouncer.ipv4_start_rule_index",
    "UNIFI_IPV6_START_RULE_INDEX": "bouncer.ipv6_start_rule_index",
    "UNIFI_LOGGING": "bouncer.logging",
    "BOUNCER_CONTROLLER": "bouncer.controller",
    "LOG_LEVEL": "logging.level",
}

GROUP_STRATEGIES = ("least_loaded", "first_fit")


def _deep_merge(base: Dict, override: Dict) -> Dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _lookup(data: Dict, path: str, default: Any = None) -> Any:
    value: Any = data
    for key in path.split('.'):
        if not isinstance(value, dict) or key not in value:
            return default
        value = value[key]
    return value


def _set_path(data: Dict, path: str, value: Any) -> None:
    keys = path.split('.')
    data_ref = data
    for key in keys[:-1]:
        if key not in data_ref or not isinstance(data_ref[key], dict):
            data_ref[key] = {}
        data_ref = data_ref[key]
    data_ref[keys[-1]] = value


_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_NUMBER = re.compile(r"\d+(?:\.\d+)?")
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")

# Settings in seconds; files may spell them as durations ("30s", "1m30s")
DURATION_KEYS = (
    "crowdsec.update_interval",
    "crowdsec.timeout",
    "unifi.timeout",
    "unifi.initial_backoff",
    "unifi.max_backoff",
    "bouncer.startup_delay",
    "bouncer.inactivity_interval",
)


def parse_duration(raw: str) -> float:
    """
    Parses seconds from a bare number ("2.5") or a duration string
    ("500ms", "30s", "1m30s", "2h").
    Raises:
        ValueError: If the string is neither.
    """
    text = raw.strip().lower()
    if _NUMBER.fullmatch(text):
        return float(text)
    position = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position == 0 or position != len(text):
        raise ValueError(f"invalid duration {raw!r}")
    return total


def coerce_value(raw: str, template: Any) -> Any:
    """
    Converts an environment string to the type of the default value it replaces.
    Lists accept comma or whitespace separators.
    """
    if isinstance(template, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(template, int):
        return int(raw)
    if isinstance(template, float):
        return parse_duration(raw)
    if isinstance(template, list):
        return [item for item in raw.replace(",", " ").split() if item]
    return raw


class ValidationResult:
    def __init__(self, valid: bool, errors: List[str] = None):
        self.valid = valid
        self.errors = errors or []

    def __bool__(self):
        return self.valid


class ConfigValidator:
    """
    Validate the configuration.
    Checks section presence and the handful of values the bouncer cannot run without.
    """
    def __init__(self):
        self._schemas: Dict[str, Any] = {
            "crowdsec": dict,
            "unifi": dict,
            "bouncer": dict,
        }

    def validate(self, config: Dict) -> ValidationResult:
        errors = []
        if not isinstance(config, dict):
            return ValidationResult(False, ["Configuration root must be a mapping"])

        for key, expected_type in self._schemas.items():
            if key not in config:
                errors.append(f"Configuration is missing the key: '{key}'")
            elif not isinstance(config[key], expected_type):
                errors.append(f"Configuration part '{key}' has the wrong type, expected {expected_type}, got {type(config[key])}")
        if errors:
            return ValidationResult(False, errors)

        if not _lookup(config, "crowdsec.api_key"):
            errors.append("'crowdsec.api_key' is required (CROWDSEC_BOUNCER_API_KEY)")
        if not _lookup(config, "crowdsec.url"):
            errors.append("'crowdsec.url' is required (CROWDSEC_URL)")

        if _lookup(config, "bouncer.controller", "unifi") == "unifi":
            if not _lookup(config, "unifi.host"):
                errors.append("'unifi.host' is required (UNIFI_HOST)")
            has_key = bool(_lookup(config, "unifi.api_key"))
            has_login = bool(_lookup(config, "unifi.username")) and bool(_lookup(config, "unifi.password"))
            if not has_key and not has_login:
                errors.append("either 'unifi.api_key' or 'unifi.username' and 'unifi.password' must be set")

        max_group_size = _lookup(config, "bouncer.max_group_size")
        if not isinstance(max_group_size, int) or max_group_size <= 0:
            errors.append(f"'bouncer.max_group_size' must be a positive integer, got {max_group_size!r}")

        strategy = _lookup(config, "bouncer.group_strategy", "least_loaded")
        if strategy not in GROUP_STRATEGIES:
            errors.append(f"'bouncer.group_strategy' must be one of {GROUP_STRATEGIES}, got {strategy!r}")

        zone_based = _lookup(config, "bouncer.zone_based", "auto")
        if zone_based not in ("auto", True, False):
            errors.append(f"'bouncer.zone_based' must be auto, true or false, got {zone_based!r}")

        for interval_key in ("crowdsec.update_interval", "bouncer.inactivity_interval", "bouncer.startup_delay"):
            value = _lookup(config, interval_key)
            if not isinstance(value, (int, float)) or value < 0:
                errors.append(f"'{interval_key}' must be a non-negative number, got {value!r}")

        if errors:
            return ValidationResult(False, errors)
        return ValidationResult(True)


class ConfigLoader:
    """
    Configuration loading interface.
    """
    def load(self) -> Dict:
        raise NotImplementedError


class DefaultConfigLoader(ConfigLoader):
    """Built-in defaults, used when no configuration file exists."""
    def load(self) -> Dict:
        return copy.deepcopy(DEFAULT_CONFIG)


class FileConfigLoader(ConfigLoader):
    """
    Load configuration from a configuration file (YAML/JSON).
    Values from the file are merged over the built-in defaults.
    """
    def __init__(self, file_path: str, file_format: Optional[str] = None):
        self._file_path = file_path
        if file_format is None:
            file_format = "json" if file_path.lower().endswith(".json") else "yaml"
        self._format = file_format.lower()
        if not os.path.exists(self._file_path):
            raise FileNotFoundError(f"Configuration file not found: {self._file_path}")

    def load(self) -> Dict:
        """Load configuration from a file"""
        try:
            with open(self._file_path, 'r', encoding='utf-8') as f:
                if self._format == "yaml":
                    data = yaml.safe_load(f)
                elif self._format == "json":
                    data = json.load(f)
                else:
                    raise ValueError(f"Unsupported configuration file format: {self._format}")
        except Exception as e:
            logger.error(f"Failed to load configuration file '{self._file_path}': {e}")
            raise
        config = _deep_merge(DEFAULT_CONFIG, data or {})
        for path in DURATION_KEYS:
            value = _lookup(config, path)
            if isinstance(value, str):
                _set_path(config, path, parse_duration(value))
        return config


class EnvConfigLoader(ConfigLoader):
    """
    Overlays environment variables (see ENV_OVERRIDES) on top of another loader.
    """
    def __init__(self, base: ConfigLoader, environ: Optional[Dict[str, str]] = None):
        self._base = base
        self._environ = environ if environ is not None else os.environ

    def load(self) -> Dict:
        config = self._base.load()
        for env_name, path in ENV_OVERRIDES.items():
            raw = self._environ.get(env_name)
            if raw is None or raw == "":
                continue
            template = _lookup(DEFAULT_CONFIG, path)
            try:
                value = coerce_value(raw, template)
            except ValueError:
                logger.error(f"Ignoring environment variable {env_name}={raw!r}: expected {type(template).__name__}")
                continue
            # zone_based is tri-state: auto | true | false
            if path == "bouncer.zone_based" and raw.strip().lower() in ("true", "false"):
                value = raw.strip().lower() == "true"
            _set_path(config, path, value)
            logger.debug(f"Configuration '{path}' overridden by {env_name}")
        return config


class ConfigManager:
    """
    Central coordinator for the configuration management module.
    Responsible for loading, validating, and accessing bouncer configuration.
    """
    _instance = None

    def __new__(cls, *args, **kwargs):
        if not cls._instance:
            cls._instance = super(ConfigManager, cls).__new__(cls)
        return cls._instance

    def __init__(self, loader: ConfigLoader = None, validator: ConfigValidator = None):
        # Prevent duplicate initialization
        if hasattr(self, '_initialized') and self._initialized:
            return

        self._config_data: Dict = {}
        self._loader = loader
        self._validator = validator or ConfigValidator()
        self._errors: List[str] = []
        self._initialized = False

        if self._loader:
            self._initialized = self.load_config()

    @classmethod
    def reset(cls) -> None:
        """Drops the singleton so the next get_config_manager() call builds a fresh one."""
        cls._instance = None

    @property
    def errors(self) -> List[str]:
        return list(self._errors)

    def is_loaded(self) -> bool:
        return bool(self._config_data)

    def load_config(self) -> bool:
        """Load configuration, if a loader is provided."""
        if not self._loader:
            logger.error("Error: No configuration loader (ConfigLoader) provided.")
            return False
        try:
            new_config = self._loader.load()
        except Exception as e:
            self._errors = [str(e)]
            logger.error(f"Error loading configuration: {e}")
            return False

        validation_result = self._validator.validate(new_config)
        if not validation_result:
            self._errors = validation_result.errors
            logger.error(f"Configuration validation failed: {validation_result.errors}")
            return False
        self._errors = []
        self._config_data = new_config
        logger.info("Configuration loaded and validated successfully.")
        return True

    def get_config(self, path: str, default: Any = None) -> Any:
        """
        Get a configuration item by path, e.g. "bouncer.max_group_size".
        """
        if not self._config_data:
            logger.warning("Warning: Configuration data is empty. Possibly not loaded or loading failed.")
            return default
        return _lookup(self._config_data, path, default)


def get_config_manager(config_file_path: str = None) -> ConfigManager:
    """
    Get the singleton instance of ConfigManager.
    If first call, the configuration file path is taken from the argument,
    then BOUNCER_CONFIG_PATH, then config/config.yaml. A missing file falls
    back to the built-in defaults; environment variables apply on top of either.
    """
    if ConfigManager._instance is None or not ConfigManager._instance._initialized:
        if config_file_path is None:
            config_file_path = os.getenv("BOUNCER_CONFIG_PATH", "config/config.yaml")

        if os.path.exists(config_file_path):
            base_loader: ConfigLoader = FileConfigLoader(file_path=config_file_path)
        else:
            logger.warning(f"Configuration file '{config_file_path}' not found. Using built-in defaults and environment.")
            base_loader = DefaultConfigLoader()

        ConfigManager.reset()
        ConfigManager(loader=EnvConfigLoader(base_loader))

    return ConfigManager._instance
