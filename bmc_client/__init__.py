"""
BMC Client - out-of-band server management over several BMC protocols.

Provides:
- Driver registry with ordered, capability-based fallback dispatch
- Job polling for long-running vendor jobs (racadm JID_ jobs, Redfish tasks)
- Drivers for ipmitool, racadm, Redfish and the Dell iDRAC8 web API
"""

__version__ = "1.0.0"

from .capabilities import Capability
from .client import Client, configure_logging
from .config import ClientConfig
from .context import Context, background, with_timeout
from .dispatcher import ExecutionMetadata, dispatch
from .errors import (
    BMCError,
    CancelledError,
    ConfigValidationError,
    ContextError,
    DeadlineExceededError,
    DispatchError,
    InsufficientDeadlineError,
    JobFailedError,
    JobTimeoutError,
    NoActiveDriversError,
    NoCompatibleDriverError,
    ParseError,
    PartialFailureError,
    ProtocolError,
    RegistrationError,
    TransportError,
)
from .jobs import Job, JobPoller, JobStatus
from .registry import DriverDescriptor, Registry

__all__ = [
    "Capability",
    "Client",
    "ClientConfig",
    "configure_logging",
    "Context",
    "background",
    "with_timeout",
    "ExecutionMetadata",
    "dispatch",
    "DriverDescriptor",
    "Registry",
    "Job",
    "JobPoller",
    "JobStatus",
    "BMCError",
    "CancelledError",
    "ConfigValidationError",
    "ContextError",
    "DeadlineExceededError",
    "DispatchError",
    "InsufficientDeadlineError",
    "JobFailedError",
    "JobTimeoutError",
    "NoActiveDriversError",
    "NoCompatibleDriverError",
    "ParseError",
    "PartialFailureError",
    "ProtocolError",
    "RegistrationError",
    "TransportError",
]
