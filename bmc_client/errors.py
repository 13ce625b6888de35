"""
BMC Client Error Taxonomy

Every failure raised by the client derives from BMCError, which carries the
message, an optional short error code and an optional HTTP status code.
Redfish error bodies are reduced to a readable message with redfish_error_message().
"""

from typing import Dict, List, Optional


class BMCError(Exception):
    """Base exception for BMC operations"""

    def __init__(self, message: str, error_code: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(self.message)


class ConfigValidationError(BMCError):
    """A required configuration field is missing or invalid. Never sent over the wire."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, error_code="VALIDATION")
        self.field = field


class TransportError(BMCError):
    """Connection, process or socket level failure."""


class ProtocolError(BMCError):
    """Unexpected status code or malformed response.

    ``step`` names the call in a multi-step protocol that failed.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, step: Optional[str] = None,
                 error_code: Optional[str] = None):
        super().__init__(message, error_code=error_code or "PROTOCOL", status_code=status_code)
        self.step = step


class ParseError(BMCError):
    """An expected text pattern was absent from tool or API output."""

    def __init__(self, message: str):
        super().__init__(message, error_code="PARSE")


class JobTimeoutError(BMCError):
    """The hard ceiling for a long-running job elapsed."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message, error_code="TIMEOUT")
        self.job_id = job_id


class JobFailedError(BMCError):
    """A job failed, either reported by the BMC or after too many consecutive poll errors."""

    def __init__(self, message: str, job_id: Optional[str] = None, errors: Optional[List[Exception]] = None):
        super().__init__(message, error_code="JOB_FAILED")
        self.job_id = job_id
        self.errors = list(errors or [])


class InsufficientDeadlineError(BMCError):
    """Remaining context time is too short to observe a job to completion."""

    def __init__(self, message: str):
        super().__init__(message, error_code="INSUFFICIENT_DEADLINE")


class ContextError(BMCError):
    """Base for context cancellation and deadline expiry."""


class CancelledError(ContextError):
    def __init__(self, message: str = "context canceled"):
        super().__init__(message, error_code="CANCELLED")


class DeadlineExceededError(ContextError):
    def __init__(self, message: str = "context deadline exceeded"):
        super().__init__(message, error_code="DEADLINE_EXCEEDED")


class RegistrationError(BMCError):
    """A driver advertises a capability its handle does not implement."""


class NoCompatibleDriverError(BMCError):
    """No registered driver advertises the requested capability."""

    def __init__(self, capability):
        super().__init__(f"no compatible driver implements {capability}", error_code="NO_COMPATIBLE_DRIVER")
        self.capability = capability


class NoActiveDriversError(BMCError):
    """Open left zero drivers usable."""

    def __init__(self, errors: Optional[Dict[str, Exception]] = None):
        self.errors = dict(errors or {})
        detail = "; ".join(f"{name}: {err}" for name, err in self.errors.items())
        message = "no BMC driver could be opened"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, error_code="NO_ACTIVE_DRIVERS")


class DispatchError(BMCError):
    """Every candidate driver failed. ``errors`` maps provider name to its error, in attempt order."""

    def __init__(self, capability, errors: Dict[str, Exception]):
        self.capability = capability
        self.errors = dict(errors)
        detail = "; ".join(f"{name}: {err}" for name, err in self.errors.items())
        super().__init__(f"all providers failed for {capability}: {detail}", error_code="DISPATCH_FAILED")


class PartialFailureError(BMCError):
    """A bulk operation finished but some entries failed."""

    def __init__(self, message: str, failures: Dict[str, Exception]):
        super().__init__(message, error_code="PARTIAL_FAILURE")
        self.failures = dict(failures)


def redfish_error_message(error_response: dict) -> str:
    """
    Readable message from a Redfish error body.

    The first @Message.ExtendedInfo entry wins; otherwise the plain
    error.message. Returns "" when the body carries neither.
    """
    if not isinstance(error_response, dict):
        return ""

    error_obj = error_response.get("error", {})
    if isinstance(error_obj, str):
        return error_obj
    if not isinstance(error_obj, dict):
        return ""

    extended_info = error_obj.get("@Message.ExtendedInfo", [])
    if extended_info and isinstance(extended_info, list) and isinstance(extended_info[0], dict):
        message = extended_info[0].get("Message", "")
        if message:
            return message

    return error_obj.get("message", "")
