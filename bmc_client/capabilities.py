"""Capability tags drivers advertise at registration.

Each tag's value is the name of the driver method that implements it. Every
driver method takes the operation Context as its first argument.
"""

from enum import Enum


class Capability(str, Enum):
    # Connection lifecycle
    OPEN = "open"
    CLOSE = "close"

    # Power
    GET_POWER_STATE = "get_power_state"
    SET_POWER_STATE = "set_power_state"

    # Users
    CREATE_USER = "create_user"
    UPDATE_USER = "update_user"
    DELETE_USER = "delete_user"
    READ_USERS = "read_users"

    # Boot / BMC
    SET_BOOT_DEVICE = "set_boot_device"
    RESET_BMC = "reset_bmc"

    # Firmware
    GET_BMC_VERSION = "get_bmc_version"
    GET_BIOS_VERSION = "get_bios_version"
    UPDATE_BMC_FIRMWARE = "update_bmc_firmware"
    UPDATE_BIOS_FIRMWARE = "update_bios_firmware"

    # Configuration apply
    SET_BIOS_CONFIGURATION = "set_bios_configuration"
    APPLY_USERS = "apply_users"
    APPLY_SYSLOG = "apply_syslog"
    APPLY_NTP = "apply_ntp"
    APPLY_LDAP = "apply_ldap"
    APPLY_LDAP_GROUPS = "apply_ldap_groups"
    APPLY_NETWORK = "apply_network"
    UPLOAD_HTTPS_CERT = "upload_https_cert"
    GENERATE_CSR = "generate_csr"

    @property
    def method_name(self) -> str:
        return self.value

    def __str__(self):
        return self.value


POWER_CAPABILITIES = frozenset({Capability.GET_POWER_STATE, Capability.SET_POWER_STATE})

USER_CAPABILITIES = frozenset({
    Capability.CREATE_USER,
    Capability.UPDATE_USER,
    Capability.DELETE_USER,
    Capability.READ_USERS,
})

CONNECTION_CAPABILITIES = frozenset({Capability.OPEN, Capability.CLOSE})
