"""ipmitool driver: power, boot device, BMC reset and users over IPMI lanplus."""

import logging
import re
from typing import Dict, List, Optional, Tuple

from ..capabilities import Capability
from ..config import ClientConfig
from ..context import Context
from ..errors import ConfigValidationError, ParseError, ProtocolError
from ..executor import Executor, find_binary
from ..models import BootDevice, PowerState, ResetType, UserRecord
from ..registry import DriverDescriptor

PROVIDER_NAME = "ipmitool"
PROVIDER_PROTOCOL = "ipmi"

FEATURES = frozenset({
    Capability.GET_POWER_STATE,
    Capability.SET_POWER_STATE,
    Capability.SET_BOOT_DEVICE,
    Capability.RESET_BMC,
    Capability.READ_USERS,
    Capability.CREATE_USER,
    Capability.UPDATE_USER,
    Capability.DELETE_USER,
    Capability.GET_BMC_VERSION,
})

POWER_COMMANDS = {
    PowerState.ON: "on",
    PowerState.OFF: "off",
    PowerState.SOFT: "soft",
    PowerState.RESET: "reset",
    PowerState.CYCLE: "cycle",
}

# ipmitool channel privilege levels
ROLE_PRIVILEGES = {
    "admin": "4",  # ADMINISTRATOR
    "user": "2",
}
NO_ACCESS_PRIVILEGE = "15"

LAN_CHANNEL = "1"
MAX_USER_SLOTS = 16

POWER_STATUS_RE = re.compile(r"Chassis Power is (\w+)", re.IGNORECASE)
FIRMWARE_REVISION_RE = re.compile(r"^Firmware Revision\s*:\s*(\S+)", re.MULTILINE)


def parse_user_list(output: str) -> List[UserRecord]:
    """
    Parse ``ipmitool user list`` output.

        ID  Name             Callin  Link Auth  IPMI Msg   Channel Priv Limit
        1                    true    false      false      Unknown (0x00)
        2   ADMIN            false   false      true       ADMINISTRATOR
    """
    users = []
    for line in output.splitlines():
        parts = line.split()
        if not parts or not parts[0].isdigit():
            continue
        if len(parts) > 1 and parts[1] not in ("true", "false"):
            name, flags = parts[1], parts[2:]
        else:
            name, flags = "", parts[1:]
        privilege = " ".join(flags[3:]) if len(flags) > 3 else ""
        users.append(UserRecord(
            id=parts[0],
            name=name,
            role=privilege,
            enabled=bool(name) and "NO ACCESS" not in privilege.upper(),
        ))
    return users


class IpmitoolDriver:
    """
    Wraps the ipmitool CLI.

    IPMI over LAN is connectionless, so this driver has nothing to open or close.
    """

    name = PROVIDER_NAME
    protocol = PROVIDER_PROTOCOL
    features = FEATURES

    def __init__(self, host: str, user: str, password: str, port: str = "623",
                 interface: str = "lanplus", executor: Optional[Executor] = None,
                 logger: Optional[logging.Logger] = None):
        self.host = host
        self.user = user
        self.password = password
        self.port = port
        self.interface = interface
        self.logger = logger or logging.getLogger(__name__)
        self.executor = executor

    @classmethod
    def from_config(cls, cfg: ClientConfig, logger: Optional[logging.Logger] = None) -> "IpmitoolDriver":
        binary = find_binary("ipmitool", cfg.ipmitool_path)
        return cls(
            host=cfg.host,
            user=cfg.user,
            password=cfg.password,
            port=cfg.ipmi_port,
            interface=cfg.ipmi_interface,
            executor=Executor(binary, secrets=[cfg.password]),
            logger=logger,
        )

    def _base_args(self) -> List[str]:
        args = ["-I", self.interface, "-H", self.host]
        if self.port:
            args += ["-p", self.port]
        return args + ["-U", self.user, "-P", self.password]

    def run(self, ctx: Context, *command: str) -> str:
        result = self.executor.exec(ctx, self._base_args() + list(command))
        return result.stdout

    # Power

    def get_power_state(self, ctx: Context) -> str:
        output = self.run(ctx, "chassis", "power", "status")
        match = POWER_STATUS_RE.search(output)
        if not match:
            raise ParseError(f"unexpected chassis power status output: {output.strip()}")
        return match.group(1).lower()

    def set_power_state(self, ctx: Context, state: str) -> bool:
        try:
            command = POWER_COMMANDS[PowerState(state.lower())]
        except ValueError:
            raise ConfigValidationError(f"unsupported power state: {state}", field="state")
        self.run(ctx, "chassis", "power", command)
        self.logger.info(f"Power {command} issued to {self.host}")
        return True

    # Boot device

    def set_boot_device(self, ctx: Context, device: str, persistent: bool = False, efi_boot: bool = False) -> bool:
        try:
            device = BootDevice(device.lower()).value
        except ValueError:
            raise ConfigValidationError(f"unsupported boot device: {device}", field="device")

        options = []
        if persistent:
            options.append("persistent")
        if efi_boot:
            options.append("efiboot")

        command = ["chassis", "bootdev", device]
        if options:
            command.append("options=" + ",".join(options))
        self.run(ctx, *command)
        return True

    # BMC

    def reset_bmc(self, ctx: Context, reset_type: str) -> bool:
        try:
            reset_type = ResetType(reset_type.lower()).value
        except ValueError:
            raise ConfigValidationError(f"unsupported BMC reset type: {reset_type}", field="reset_type")
        self.run(ctx, "mc", "reset", reset_type)
        return True

    def get_bmc_version(self, ctx: Context) -> str:
        output = self.run(ctx, "mc", "info")
        match = FIRMWARE_REVISION_RE.search(output)
        if not match:
            raise ParseError("failed to find Firmware Revision in mc info output")
        return match.group(1)

    # Users

    def read_users(self, ctx: Context) -> List[Dict[str, str]]:
        users = parse_user_list(self.run(ctx, "user", "list", LAN_CHANNEL))
        return [u.model_dump() for u in users if u.enabled]

    def _find_user(self, ctx: Context, name: str) -> Tuple[Optional[UserRecord], List[UserRecord]]:
        users = parse_user_list(self.run(ctx, "user", "list", LAN_CHANNEL))
        for user in users:
            if user.enabled and user.name == name:
                return user, users
        return None, users

    def _set_privilege(self, ctx: Context, user_id: str, privilege: str):
        self.run(
            ctx, "channel", "setaccess", LAN_CHANNEL, user_id,
            "callin=on", "ipmi=on", "link=on", f"privilege={privilege}",
        )

    def create_user(self, ctx: Context, user: str, password: str, role: str) -> bool:
        privilege = self._privilege_for(role)
        existing, users = self._find_user(ctx, user)
        if existing is not None:
            raise ProtocolError(f"user {user} already exists in slot {existing.id}", step="create_user")

        # Deleted users keep their name with NO ACCESS; reuse such a slot before a fresh one
        slot = next((u.id for u in users if u.name == user and not u.enabled), None)
        if slot is None:
            # Slot 1 is the reserved anonymous user
            taken = {u.id for u in users if u.enabled}
            slot = next((str(i) for i in range(2, MAX_USER_SLOTS + 1) if str(i) not in taken), None)
        if slot is None:
            raise ProtocolError("no empty user slot available", step="create_user")

        self.run(ctx, "user", "set", "name", slot, user)
        self.run(ctx, "user", "set", "password", slot, password)
        self._set_privilege(ctx, slot, privilege)
        self.run(ctx, "user", "enable", slot)
        self.logger.info(f"Created user {user} in slot {slot} on {self.host}")
        return True

    def update_user(self, ctx: Context, user: str, password: str, role: str) -> bool:
        privilege = self._privilege_for(role)
        existing, _ = self._find_user(ctx, user)
        if existing is None:
            raise ProtocolError(f"user {user} not found", step="update_user")

        if password:
            self.run(ctx, "user", "set", "password", existing.id, password)
        self._set_privilege(ctx, existing.id, privilege)
        self.run(ctx, "user", "enable", existing.id)
        return True

    def delete_user(self, ctx: Context, user: str) -> bool:
        existing, _ = self._find_user(ctx, user)
        if existing is None:
            raise ProtocolError(f"user {user} not found", step="delete_user")

        self.run(ctx, "user", "disable", existing.id)
        self._set_privilege(ctx, existing.id, NO_ACCESS_PRIVILEGE)
        return True

    @staticmethod
    def _privilege_for(role: str) -> str:
        if role not in ROLE_PRIVILEGES:
            raise ConfigValidationError(f"unsupported role: {role}", field="role")
        return ROLE_PRIVILEGES[role]


def new_driver(cfg: ClientConfig, session_manager=None, logger: Optional[logging.Logger] = None) -> DriverDescriptor:
    driver = IpmitoolDriver.from_config(cfg, logger=logger)
    return DriverDescriptor(PROVIDER_NAME, PROVIDER_PROTOCOL, FEATURES, driver)
