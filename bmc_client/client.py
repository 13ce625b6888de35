"""
BMC Client

The public entry point. A Client owns a Registry of driver descriptors and
routes every operation through dispatch(): the capable drivers are tried in
registration order until one succeeds.

    cfg = ClientConfig(host="10.0.0.5", user="root", password="calvin")
    client = Client(cfg)
    with with_timeout(60) as ctx:
        client.open(ctx)
        try:
            state = client.get_power_state(ctx)
        finally:
            client.close(ctx)
"""

import logging
from typing import Any, BinaryIO, Callable, Dict, Iterable, List, Optional, Sequence

from .capabilities import Capability
from .config import ClientConfig
from .context import Context
from .dispatcher import ExecutionMetadata, dispatch
from .errors import NoActiveDriversError
from .registry import DriverDescriptor, Registry
from .session_manager import SessionManager

logger = logging.getLogger(__name__)

DriverFactory = Callable[[ClientConfig, SessionManager, Optional[logging.Logger]], DriverDescriptor]


def configure_logging(cfg: ClientConfig):
    """Root logging setup for scripts embedding the client."""
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


class Client:
    """
    Capability-oriented access to one BMC.

    Args:
        cfg: Connection settings (default: read from BMC_* environment variables)
        driver_factories: Callables building one DriverDescriptor each; their
            order is the fallback order. Default: ipmitool, racadm, idrac8, redfish
        registry: Pre-built registry; driver_factories is ignored when given
        session_manager: Shared HTTP session manager for the HTTP drivers
        logger: Passed to the drivers built here
    """

    def __init__(
        self,
        cfg: Optional[ClientConfig] = None,
        driver_factories: Optional[Iterable[DriverFactory]] = None,
        registry: Optional[Registry] = None,
        session_manager: Optional[SessionManager] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.config = cfg or ClientConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.session_manager = session_manager or SessionManager(verify_ssl=self.config.verify_ssl)
        self.active: Optional[List[DriverDescriptor]] = None

        if registry is not None:
            self.registry = registry
            return

        if driver_factories is None:
            from .drivers import DEFAULT_DRIVER_FACTORIES
            driver_factories = DEFAULT_DRIVER_FACTORIES

        self.registry = Registry()
        for factory in driver_factories:
            try:
                descriptor = factory(self.config, self.session_manager, logger)
            except Exception as e:
                # A missing CLI tool only removes that driver
                self.logger.warning(f"Skipping driver {getattr(factory, '__module__', factory)}: {e}")
                continue
            self.registry.register(descriptor)

    @property
    def drivers(self) -> Sequence[DriverDescriptor]:
        """Drivers operations dispatch over: the opened set after open(), else the whole registry."""
        if self.active is not None:
            return self.active
        return self.registry.drivers

    def _dispatch(self, ctx: Context, capability: Capability, *args,
                  metadata: Optional[ExecutionMetadata] = None, **kwargs) -> Any:
        return dispatch(ctx, self.drivers, capability, *args, metadata=metadata, **kwargs)

    # Connection

    def open(self, ctx: Context, metadata: Optional[ExecutionMetadata] = None) -> List[DriverDescriptor]:
        """
        Open every registered driver.

        Returns:
            list: The drivers that opened, in priority order

        Raises:
            NoActiveDriversError: Not a single driver is usable
            ContextError: ctx ended during open
        """
        if metadata is None:
            metadata = ExecutionMetadata()
        active = self.registry.open(ctx, metadata=metadata)
        if not active:
            raise NoActiveDriversError(metadata.failed_providers)
        self.active = active
        self.logger.info(f"Opened {self.config.host} with drivers: {', '.join(d.name for d in active)}")
        return list(active)

    def close(self, ctx: Context, metadata: Optional[ExecutionMetadata] = None):
        """Close the opened drivers; raises the first close error after trying all of them."""
        descriptors = self.drivers
        self.active = None
        self.registry.close(ctx, descriptors, metadata=metadata)

    # Power

    def get_power_state(self, ctx: Context, metadata: Optional[ExecutionMetadata] = None) -> str:
        return self._dispatch(ctx, Capability.GET_POWER_STATE, metadata=metadata)

    def set_power_state(self, ctx: Context, state: str, metadata: Optional[ExecutionMetadata] = None) -> bool:
        return self._dispatch(ctx, Capability.SET_POWER_STATE, state, metadata=metadata)

    # Users

    def create_user(self, ctx: Context, user: str, password: str, role: str,
                    metadata: Optional[ExecutionMetadata] = None) -> bool:
        return self._dispatch(ctx, Capability.CREATE_USER, user, password, role, metadata=metadata)

    def update_user(self, ctx: Context, user: str, password: str, role: str,
                    metadata: Optional[ExecutionMetadata] = None) -> bool:
        return self._dispatch(ctx, Capability.UPDATE_USER, user, password, role, metadata=metadata)

    def delete_user(self, ctx: Context, user: str, metadata: Optional[ExecutionMetadata] = None) -> bool:
        return self._dispatch(ctx, Capability.DELETE_USER, user, metadata=metadata)

    def read_users(self, ctx: Context, metadata: Optional[ExecutionMetadata] = None) -> List[Dict[str, Any]]:
        return self._dispatch(ctx, Capability.READ_USERS, metadata=metadata)

    # Boot / BMC

    def set_boot_device(self, ctx: Context, device: str, persistent: bool = False, efi_boot: bool = False,
                        metadata: Optional[ExecutionMetadata] = None) -> bool:
        return self._dispatch(ctx, Capability.SET_BOOT_DEVICE, device, persistent, efi_boot, metadata=metadata)

    def reset_bmc(self, ctx: Context, reset_type: str, metadata: Optional[ExecutionMetadata] = None) -> bool:
        return self._dispatch(ctx, Capability.RESET_BMC, reset_type, metadata=metadata)

    # Firmware

    def get_bmc_version(self, ctx: Context, metadata: Optional[ExecutionMetadata] = None) -> str:
        return self._dispatch(ctx, Capability.GET_BMC_VERSION, metadata=metadata)

    def get_bios_version(self, ctx: Context, metadata: Optional[ExecutionMetadata] = None) -> str:
        return self._dispatch(ctx, Capability.GET_BIOS_VERSION, metadata=metadata)

    def update_bmc_firmware(self, ctx: Context, stream: BinaryIO, size: int,
                            metadata: Optional[ExecutionMetadata] = None) -> bool:
        return self._dispatch(ctx, Capability.UPDATE_BMC_FIRMWARE, stream, size, metadata=metadata)

    def update_bios_firmware(self, ctx: Context, stream: BinaryIO, size: int,
                             metadata: Optional[ExecutionMetadata] = None) -> bool:
        return self._dispatch(ctx, Capability.UPDATE_BIOS_FIRMWARE, stream, size, metadata=metadata)

    def set_bios_configuration(self, ctx: Context, cfg: str, metadata: Optional[ExecutionMetadata] = None) -> bool:
        return self._dispatch(ctx, Capability.SET_BIOS_CONFIGURATION, cfg, metadata=metadata)

    # Configuration

    def apply_users(self, ctx: Context, users, metadata: Optional[ExecutionMetadata] = None):
        """Returns a ReconcileResult; call raise_for_failures() on it to turn partial failure into an error."""
        return self._dispatch(ctx, Capability.APPLY_USERS, users, metadata=metadata)

    def apply_syslog(self, ctx: Context, cfg, metadata: Optional[ExecutionMetadata] = None) -> bool:
        return self._dispatch(ctx, Capability.APPLY_SYSLOG, cfg, metadata=metadata)

    def apply_ntp(self, ctx: Context, cfg, metadata: Optional[ExecutionMetadata] = None) -> bool:
        return self._dispatch(ctx, Capability.APPLY_NTP, cfg, metadata=metadata)

    def apply_ldap(self, ctx: Context, cfg, metadata: Optional[ExecutionMetadata] = None) -> bool:
        return self._dispatch(ctx, Capability.APPLY_LDAP, cfg, metadata=metadata)

    def apply_ldap_groups(self, ctx: Context, groups, ldap, metadata: Optional[ExecutionMetadata] = None) -> bool:
        return self._dispatch(ctx, Capability.APPLY_LDAP_GROUPS, groups, ldap, metadata=metadata)

    def apply_network(self, ctx: Context, cfg, metadata: Optional[ExecutionMetadata] = None) -> bool:
        return self._dispatch(ctx, Capability.APPLY_NETWORK, cfg, metadata=metadata)

    def upload_https_cert(self, ctx: Context, cert: bytes, cert_file_name: str, key: Optional[bytes] = None,
                          key_file_name: Optional[str] = None, metadata: Optional[ExecutionMetadata] = None) -> bool:
        return self._dispatch(
            ctx, Capability.UPLOAD_HTTPS_CERT, cert, cert_file_name, key, key_file_name, metadata=metadata
        )

    def generate_csr(self, ctx: Context, cert, metadata: Optional[ExecutionMetadata] = None) -> bytes:
        return self._dispatch(ctx, Capability.GENERATE_CSR, cert, metadata=metadata)
