"""
Driver registry.

Holds the ordered list of driver descriptors. Insertion order is fallback
priority. Registration is expected at startup; reads take a snapshot under
the registry lock so a concurrent register() can never be observed half-way.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, FrozenSet, Iterable, List, Optional, Sequence

from .capabilities import Capability
from .context import Context
from .dispatcher import ExecutionMetadata, candidates_for
from .errors import ContextError, RegistrationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DriverDescriptor:
    """A registered driver: name, protocol family, advertised capabilities and the driver instance."""

    name: str
    protocol: str
    capabilities: FrozenSet[Capability]
    handle: Any

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities


def validate_descriptor(descriptor: DriverDescriptor):
    """Every advertised capability must be backed by a callable on the handle."""
    missing = [
        cap.value for cap in descriptor.capabilities
        if not callable(getattr(descriptor.handle, cap.method_name, None))
    ]
    if missing:
        raise RegistrationError(
            f"driver {descriptor.name} advertises capabilities it does not implement: {', '.join(sorted(missing))}",
            error_code="CAPABILITY_MISMATCH",
        )


class Registry:
    """Ordered collection of DriverDescriptors."""

    def __init__(self, descriptors: Optional[Iterable[DriverDescriptor]] = None):
        self._lock = threading.RLock()
        self._drivers: List[DriverDescriptor] = []
        for descriptor in descriptors or ():
            self.register(descriptor)

    @property
    def drivers(self) -> List[DriverDescriptor]:
        """Snapshot of every registered descriptor, in priority order."""
        with self._lock:
            return list(self._drivers)

    def __len__(self):
        with self._lock:
            return len(self._drivers)

    def __iter__(self):
        return iter(self.drivers)

    def register(self, descriptor: DriverDescriptor) -> DriverDescriptor:
        validate_descriptor(descriptor)
        with self._lock:
            self._drivers.append(descriptor)
        logger.debug(
            f"Registered driver {descriptor.name} ({descriptor.protocol}) "
            f"with {len(descriptor.capabilities)} capabilities"
        )
        return descriptor

    def register_driver(self, name: str, protocol: str, capabilities: Iterable[Capability], handle: Any) -> DriverDescriptor:
        return self.register(DriverDescriptor(
            name=name,
            protocol=protocol,
            capabilities=frozenset(Capability(c) for c in capabilities),
            handle=handle,
        ))

    def drivers_for(self, capability: Capability) -> List[DriverDescriptor]:
        return candidates_for(self.drivers, capability)

    # Filtering helpers - each returns a new Registry and leaves this one untouched.

    def using(self, name_or_protocol: str) -> "Registry":
        """Drivers whose name or protocol matches."""
        return Registry(
            d for d in self.drivers
            if name_or_protocol in (d.name, d.protocol)
        )

    def supports(self, *capabilities: Capability) -> "Registry":
        """Drivers advertising every given capability."""
        wanted = set(capabilities)
        return Registry(d for d in self.drivers if wanted.issubset(d.capabilities))

    def prefer(self, *names: str) -> "Registry":
        """Same drivers, with the named ones moved to the front in the given order."""
        drivers = self.drivers
        preferred = []
        for name in names:
            preferred.extend(d for d in drivers if d.name == name and d not in preferred)
        rest = [d for d in drivers if d not in preferred]
        return Registry(preferred + rest)

    def open(
        self,
        ctx: Context,
        descriptors: Optional[Sequence[DriverDescriptor]] = None,
        metadata: Optional[ExecutionMetadata] = None
    ) -> List[DriverDescriptor]:
        """
        Open every driver and return the ones that are usable.

        Drivers without the OPEN capability need no connection and are kept.
        A driver that fails to open is left out of the returned list; the
        registry itself is not modified.

        Args:
            ctx: Operation context
            descriptors: Descriptors to open (default: every registered driver)
            metadata: Optional ExecutionMetadata receiving per-driver failures

        Returns:
            list: Active descriptors in priority order (possibly empty)

        Raises:
            ContextError: ctx was cancelled or expired; drivers already
                opened are closed again before this is raised
        """
        if metadata is None:
            metadata = ExecutionMetadata()
        else:
            metadata.reset()
        if descriptors is None:
            descriptors = self.drivers

        active: List[DriverDescriptor] = []
        for descriptor in descriptors:
            if Capability.OPEN not in descriptor.capabilities:
                active.append(descriptor)
                continue

            err = ctx.err()
            if err is not None:
                self._abandon(active)
                raise err

            key = metadata.record_attempt(descriptor.name)
            try:
                descriptor.handle.open(ctx)
            except ContextError:
                self._abandon(active)
                raise
            except Exception as e:
                metadata.record_failure(key, e)
                logger.warning(f"Failed to open driver {descriptor.name}: {e}")
                continue

            active.append(descriptor)

        logger.info(f"Opened {len(active)} of {len(descriptors)} drivers")
        return active

    def _abandon(self, opened: List[DriverDescriptor]):
        try:
            self.close(Context(timeout=10), opened)
        except Exception as e:
            logger.warning(f"Error closing drivers after aborted open: {e}")

    def close(
        self,
        ctx: Context,
        descriptors: Optional[Sequence[DriverDescriptor]] = None,
        metadata: Optional[ExecutionMetadata] = None
    ):
        """
        Close every driver, continuing past failures.

        Raises:
            Exception: The first close error, after every driver was attempted
        """
        if metadata is None:
            metadata = ExecutionMetadata()
        else:
            metadata.reset()
        if descriptors is None:
            descriptors = self.drivers

        first_error = None
        for descriptor in descriptors:
            if Capability.CLOSE not in descriptor.capabilities:
                continue
            key = metadata.record_attempt(descriptor.name)
            try:
                descriptor.handle.close(ctx)
            except Exception as e:
                metadata.record_failure(key, e)
                logger.warning(f"Failed to close driver {descriptor.name}: {e}")
                if first_error is None:
                    first_error = e

        if first_error is not None:
            raise first_error
