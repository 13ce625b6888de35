"""
Ordered capability-based fallback dispatch.

dispatch() is the one place that decides which driver serves an operation:
capable drivers are tried strictly in registration order, one at a time,
until one succeeds. Concurrent attempts against the same BMC are never
issued.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .capabilities import Capability
from .context import Context
from .errors import ContextError, DispatchError, JobTimeoutError, NoCompatibleDriverError

logger = logging.getLogger(__name__)

# Errors that end the whole fallback chain instead of moving to the next driver.
FATAL_ERRORS = (ContextError, JobTimeoutError)


@dataclass
class ExecutionMetadata:
    """Provenance for a single top-level operation."""

    successful_provider: Optional[str] = None
    providers_attempted: List[str] = field(default_factory=list)
    failed_providers: Dict[str, Exception] = field(default_factory=dict)

    def record_attempt(self, name: str) -> str:
        """Register an attempt and return the key it is recorded under."""
        key = name
        if key in self.providers_attempted:
            n = 2
            while f"{name}#{n}" in self.providers_attempted:
                n += 1
            key = f"{name}#{n}"
        self.providers_attempted.append(key)
        return key

    def record_failure(self, key: str, error: Exception):
        self.failed_providers[key] = error

    def reset(self):
        self.successful_provider = None
        self.providers_attempted.clear()
        self.failed_providers.clear()


def candidates_for(descriptors: Sequence, capability: Capability) -> List:
    return [d for d in descriptors if capability in d.capabilities]


def dispatch(
    ctx: Context,
    descriptors: Sequence,
    capability: Capability,
    *args,
    metadata: Optional[ExecutionMetadata] = None,
    **kwargs
) -> Any:
    """
    Perform ``capability`` with the first capable driver that succeeds.

    Args:
        ctx: Operation context, checked before every candidate
        descriptors: Ordered DriverDescriptors (registration order = priority)
        capability: Capability to invoke
        *args, **kwargs: Passed to the driver method after ctx
        metadata: Optional ExecutionMetadata filled with provenance

    Returns:
        The successful driver's result

    Raises:
        NoCompatibleDriverError: No descriptor advertises the capability
        ContextError: ctx was done before or during an attempt
        JobTimeoutError: A driver's job hit its hard ceiling
        DispatchError: Every candidate failed
    """
    if metadata is None:
        metadata = ExecutionMetadata()
    else:
        metadata.reset()

    candidates = candidates_for(descriptors, capability)
    if not candidates:
        raise NoCompatibleDriverError(capability)

    for descriptor in candidates:
        err = ctx.err()
        if err is not None:
            logger.debug(f"{capability}: context done before trying {descriptor.name}: {err}")
            raise err

        key = metadata.record_attempt(descriptor.name)
        method = getattr(descriptor.handle, capability.method_name)

        try:
            result = method(ctx, *args, **kwargs)
        except FATAL_ERRORS as e:
            metadata.record_failure(key, e)
            logger.warning(f"{capability} aborted on provider {key}: {e}")
            raise
        except Exception as e:
            metadata.record_failure(key, e)
            logger.debug(f"{capability} failed on provider {key}: {e}")
            continue

        metadata.successful_provider = descriptor.name
        logger.debug(f"{capability} served by provider {descriptor.name}")
        return result

    raise DispatchError(capability, metadata.failed_providers)
