"""
Pydantic models for configuration records and BMC state.
"""

from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, Field

from .errors import ConfigValidationError, PartialFailureError


class PowerState(str, Enum):
    ON = "on"
    OFF = "off"
    SOFT = "soft"  # Graceful shutdown
    RESET = "reset"
    CYCLE = "cycle"


class BootDevice(str, Enum):
    NONE = "none"
    PXE = "pxe"
    DISK = "disk"
    CDROM = "cdrom"
    BIOS = "bios"
    SAFE = "safe"
    DIAG = "diag"
    FLOPPY = "floppy"


class ResetType(str, Enum):
    WARM = "warm"
    COLD = "cold"


VALID_ROLES = ("admin", "user")


def is_role_valid(role: str) -> bool:
    return role in VALID_ROLES


class UserRecord(BaseModel):
    """A user account as read from a BMC."""
    id: str
    name: str
    role: str = ""
    enabled: bool = False


class UserConfig(BaseModel):
    """Desired state of a BMC user account."""
    name: str = ""
    password: str = ""
    role: str = "user"  # admin, user
    enable: bool = True


class SyslogConfig(BaseModel):
    server: str = ""
    port: int = 0  # 0 = default 514
    enable: bool = True


class NtpConfig(BaseModel):
    enable: bool = True
    server1: str = ""
    server2: str = ""
    server3: str = ""
    timezone: str = ""


class LdapConfig(BaseModel):
    enable: bool = True
    server: str = ""
    port: int = 0
    base_dn: str = ""
    bind_dn: str = ""
    user_attribute: str = ""
    group_attribute: str = ""
    search_filter: str = ""


class LdapGroupConfig(BaseModel):
    role: str = ""
    group: str = ""
    group_base_dn: str = ""
    enable: bool = True


class NetworkConfig(BaseModel):
    dns_from_dhcp: bool = True
    ipmi_enable: bool = True
    sol_enable: bool = True


class HTTPSCertAttributes(BaseModel):
    common_name: str = ""
    organization_name: str = ""
    organization_unit: str = ""
    locality: str = ""
    state_name: str = ""
    country_code: str = ""
    email: str = ""
    subject_alt_name: str = ""


class ReconcileResult(BaseModel):
    """Outcome of a bulk user apply: names applied and per-name failures."""

    model_config = {"arbitrary_types_allowed": True}

    applied: List[str] = Field(default_factory=list)
    failed: Dict[str, Exception] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self):
        if self.failed:
            names = ", ".join(self.failed)
            raise PartialFailureError(f"failed to apply users: {names}", self.failed)


def validate_user_config(users: List[UserConfig]):
    """
    Check every desired user before anything is sent to the BMC.

    Raises:
        ConfigValidationError: First invalid entry
    """
    if not users:
        raise ConfigValidationError("no users declared", field="users")

    for user in users:
        if not user.name:
            raise ConfigValidationError("user resource expects parameter: name", field="name")
        if user.enable and not user.password:
            raise ConfigValidationError(f"user {user.name}: password required for enabled user", field="password")
        if not is_role_valid(user.role):
            raise ConfigValidationError(
                f"user {user.name}: role must be one of {', '.join(VALID_ROLES)}, got {user.role!r}",
                field="role",
            )
