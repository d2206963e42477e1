from typing import Optional


class ErrorDetail:
    def __init__(self, code: str, message: str, fatal: bool = False):
        self.code = code
        self.message = message
        self.fatal = fatal

    def __repr__(self) -> str:
        return f"ErrorDetail(code={self.code!r}, fatal={self.fatal})"


class ErrorCode:
    """System error code and message definitions"""

    # Configuration errors
    CONFIG_NOT_LOADED = ErrorDetail("CONFIG_NOT_LOADED", "Configuration could not be loaded", fatal=True)
    CONFIG_INVALID = ErrorDetail("CONFIG_INVALID", "Configuration validation failed", fatal=True)

    # Firewall controller errors
    CONTROLLER_UNREACHABLE = ErrorDetail("CONTROLLER_UNREACHABLE", "Firewall controller is unreachable")
    CONTROLLER_AUTH_FAILED = ErrorDetail("CONTROLLER_AUTH_FAILED", "Firewall controller authentication failed", fatal=True)
    CONTROLLER_REQUEST_FAILED = ErrorDetail("CONTROLLER_REQUEST_FAILED", "Firewall controller rejected the request")
    CONTROLLER_GROUP_PUSH_FAILED = ErrorDetail("CONTROLLER_GROUP_PUSH_FAILED", "Failed to push firewall group membership")
    CONTROLLER_UNKNOWN_TYPE = ErrorDetail("CONTROLLER_UNKNOWN_TYPE", "Unknown firewall controller type", fatal=True)

    # Bootstrap errors
    BOOTSTRAP_STATE_LOAD_FAILED = ErrorDetail("BOOTSTRAP_STATE_LOAD_FAILED", "Failed to load existing firewall state", fatal=True)
    BOOTSTRAP_ZONE_NOT_FOUND = ErrorDetail("BOOTSTRAP_ZONE_NOT_FOUND", "Firewall zone not found", fatal=True)
    BOOTSTRAP_WIRING_FAILED = ErrorDetail("BOOTSTRAP_WIRING_FAILED", "Failed to wire firewall groups into the rule chain", fatal=True)
    BOOTSTRAP_REORDER_FAILED = ErrorDetail("BOOTSTRAP_REORDER_FAILED", "Initial firewall policy reordering failed", fatal=True)

    # Decision stream errors
    STREAM_HALTED = ErrorDetail("STREAM_HALTED", "Decision stream halted", fatal=True)
    STREAM_REQUEST_FAILED = ErrorDetail("STREAM_REQUEST_FAILED", "Failed to fetch decisions from the decision stream")


def describe(error: ErrorDetail, override_message: Optional[str] = None) -> str:
    """Formats an error detail as 'CODE: message' for log lines."""
    return f"{error.code}: {override_message or error.message}"
