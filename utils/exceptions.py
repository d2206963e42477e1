from typing import Optional, Dict, Any

from .errors import ErrorDetail, ErrorCode, describe


class BouncerError(Exception):
    def __init__(
        self,
        error: ErrorDetail,
        details: Optional[Dict[str, Any]] = None,
        override_message: Optional[str] = None,
    ):
        self.error_code = error.code
        self.fatal = error.fatal
        self.details = details or {}
        #override message if provided
        self.message = override_message or error.message
        super().__init__(describe(error, override_message))


class ConfigurationError(BouncerError):
    def __init__(self, override_message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.CONFIG_INVALID, details=details, override_message=override_message)


class ControllerError(BouncerError):
    """Raised by firewall controllers when a single call fails."""

    def __init__(
        self,
        error: ErrorDetail = ErrorCode.CONTROLLER_REQUEST_FAILED,
        details: Optional[Dict[str, Any]] = None,
        override_message: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.status_code = status_code
        super().__init__(error, details=details, override_message=override_message)


class BootstrapError(BouncerError):
    """Unrecoverable failure while preparing firewall scaffolding."""


class DecisionStreamError(BouncerError):
    def __init__(self, override_message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.STREAM_HALTED, details=details, override_message=override_message)
