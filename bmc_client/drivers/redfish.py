"""
Redfish driver.

Power, boot override, manager reset, accounts, versions and firmware push
over the DMTF Redfish API. Member paths for the system and manager are
discovered in open(); Dell iDRACs expose System.Embedded.1 and
iDRAC.Embedded.1 but nothing here depends on those names.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from .. import config
from ..capabilities import Capability
from ..config import ClientConfig
from ..context import Context
from ..endpoints import (
    REDFISH_ACCOUNTS,
    REDFISH_MANAGER_RESET_ACTION,
    REDFISH_MANAGERS,
    REDFISH_MULTIPART_UPLOAD,
    REDFISH_SYSTEM_RESET_ACTION,
    REDFISH_SYSTEMS,
    REDFISH_UPDATE_SERVICE,
)
from ..errors import ConfigValidationError, JobFailedError, ParseError, ProtocolError
from ..http_adapter import BMCHTTPAdapter
from ..jobs import JobPoller
from ..models import BootDevice, PowerState, ResetType, UserRecord, is_role_valid
from ..registry import DriverDescriptor
from ..session_manager import SessionManager

PROVIDER_NAME = "redfish"
PROVIDER_PROTOCOL = "redfish"

FEATURES = frozenset({
    Capability.OPEN,
    Capability.CLOSE,
    Capability.GET_POWER_STATE,
    Capability.SET_POWER_STATE,
    Capability.SET_BOOT_DEVICE,
    Capability.RESET_BMC,
    Capability.READ_USERS,
    Capability.CREATE_USER,
    Capability.UPDATE_USER,
    Capability.DELETE_USER,
    Capability.GET_BMC_VERSION,
    Capability.GET_BIOS_VERSION,
    Capability.UPDATE_BMC_FIRMWARE,
    Capability.UPDATE_BIOS_FIRMWARE,
})

RESET_TYPES = {
    PowerState.ON: "On",
    PowerState.OFF: "ForceOff",
    PowerState.SOFT: "GracefulShutdown",
    PowerState.RESET: "ForceRestart",
    PowerState.CYCLE: "PowerCycle",
}

MANAGER_RESET_TYPES = {
    ResetType.WARM: "GracefulRestart",
    ResetType.COLD: "ForceRestart",
}

# BootSourceOverrideTarget values; "safe" has no Redfish equivalent
BOOT_TARGETS = {
    BootDevice.NONE: "None",
    BootDevice.PXE: "Pxe",
    BootDevice.DISK: "Hdd",
    BootDevice.CDROM: "Cd",
    BootDevice.BIOS: "BiosSetup",
    BootDevice.DIAG: "Diags",
    BootDevice.FLOPPY: "Floppy",
}

ROLE_IDS = {
    "admin": "Administrator",
    "user": "Operator",
}

TASK_FAILED_STATES = ("Exception", "Killed", "Cancelled")

# PATCH and actions answer 200, 202 or 204 depending on the vendor
MODIFY_STATUS = (200, 202, 204)


def parse_task_state(task: Dict[str, Any]) -> int:
    """
    Percent complete of a Redfish Task resource.

    Raises:
        JobFailedError: Task ended in Exception, Killed or Cancelled
        ParseError: Response is not a task
    """
    state = task.get("TaskState")
    if not state:
        raise ParseError("task response has no TaskState")

    if state in TASK_FAILED_STATES:
        messages = [m.get("Message", "") for m in (task.get("Messages") or []) if isinstance(m, dict)]
        detail = "; ".join(m for m in messages if m) or state
        raise JobFailedError(f"firmware task {task.get('Id', '')} {state.lower()}: {detail}")

    if state == "Completed":
        return 100

    # Some BMCs report 100 a little before the task state flips
    try:
        return min(int(task.get("PercentComplete") or 0), 99)
    except (TypeError, ValueError):
        raise ParseError(f"invalid PercentComplete: {task.get('PercentComplete')!r}")


def first_member(collection: Dict[str, Any], name: str) -> str:
    members = collection.get("Members") or []
    if not members or "@odata.id" not in members[0]:
        raise ProtocolError(f"{name} collection has no members")
    return members[0]["@odata.id"]


class RedfishDriver:
    """
    Args:
        http: BMCHTTPAdapter bound to the BMC's HTTPS endpoint (basic auth)
        firmware_timeout: Hard ceiling for a firmware task
    """

    name = PROVIDER_NAME
    protocol = PROVIDER_PROTOCOL
    features = FEATURES

    def __init__(self, http: BMCHTTPAdapter, job_poll_interval: float = config.JOB_POLL_INTERVAL,
                 firmware_timeout: float = config.FIRMWARE_UPDATE_TIMEOUT,
                 logger: Optional[logging.Logger] = None):
        self.http = http
        self.logger = logger or logging.getLogger(__name__)
        self.system_uri: Optional[str] = None
        self.manager_uri: Optional[str] = None
        self.task_poller = JobPoller(
            self._get_task,
            poll_interval=job_poll_interval,
            timeout=firmware_timeout,
            parse_status=parse_task_state,
            operation_name="Firmware update",
            logger=self.logger,
        )

    @classmethod
    def from_config(cls, cfg: ClientConfig, session_manager: SessionManager,
                    logger: Optional[logging.Logger] = None) -> "RedfishDriver":
        http = BMCHTTPAdapter(
            cfg.host,
            cfg.https_base_url(),
            session_manager,
            auth=(cfg.user, cfg.password),
            logger=logger,
            connect_timeout=cfg.http_connect_timeout,
            read_timeout=cfg.http_read_timeout,
            session_key=f"{PROVIDER_NAME}@{cfg.host}",
        )
        return cls(
            http,
            job_poll_interval=cfg.job_poll_interval,
            firmware_timeout=cfg.firmware_update_timeout,
            logger=logger,
        )

    # Connection

    def open(self, ctx: Context):
        systems = self.http.get_json(ctx, REDFISH_SYSTEMS, "List systems")
        managers = self.http.get_json(ctx, REDFISH_MANAGERS, "List managers")
        self.system_uri = first_member(systems, "Systems")
        self.manager_uri = first_member(managers, "Managers")
        self.logger.debug(f"Redfish system {self.system_uri}, manager {self.manager_uri}")

    def close(self, ctx: Context):
        self.http.close()
        self.system_uri = None
        self.manager_uri = None

    def _system(self) -> str:
        if not self.system_uri:
            raise ProtocolError("redfish driver is not open", step="open")
        return self.system_uri

    def _manager(self) -> str:
        if not self.manager_uri:
            raise ProtocolError("redfish driver is not open", step="open")
        return self.manager_uri

    # Power

    def get_power_state(self, ctx: Context) -> str:
        system = self.http.get_json(ctx, self._system(), "Get power state")
        state = system.get("PowerState")
        if not state:
            raise ParseError("system resource has no PowerState")
        return state.lower()

    def set_power_state(self, ctx: Context, state: str) -> bool:
        try:
            reset_type = RESET_TYPES[PowerState(state.lower())]
        except ValueError:
            raise ConfigValidationError(f"unsupported power state: {state}", field="state")

        self.http.make_request(
            ctx, "POST", f"{self._system()}/{REDFISH_SYSTEM_RESET_ACTION}",
            expected_status=MODIFY_STATUS,
            operation_name="System reset",
            json={"ResetType": reset_type},
        )
        self.logger.info(f"Power {reset_type} issued to {self.http.host}")
        return True

    # Boot / BMC

    def set_boot_device(self, ctx: Context, device: str, persistent: bool = False, efi_boot: bool = False) -> bool:
        try:
            target = BOOT_TARGETS[BootDevice(device.lower())]
        except (ValueError, KeyError):
            raise ConfigValidationError(f"unsupported boot device: {device}", field="device")

        boot = {
            "BootSourceOverrideTarget": target,
            "BootSourceOverrideEnabled": "Continuous" if persistent else "Once",
            "BootSourceOverrideMode": "UEFI" if efi_boot else "Legacy",
        }
        self.http.make_request(
            ctx, "PATCH", self._system(),
            expected_status=MODIFY_STATUS,
            operation_name="Set boot override",
            json={"Boot": boot},
        )
        return True

    def reset_bmc(self, ctx: Context, reset_type: str) -> bool:
        try:
            manager_reset = MANAGER_RESET_TYPES[ResetType(reset_type.lower())]
        except ValueError:
            raise ConfigValidationError(f"unsupported BMC reset type: {reset_type}", field="reset_type")

        self.http.make_request(
            ctx, "POST", f"{self._manager()}/{REDFISH_MANAGER_RESET_ACTION}",
            expected_status=MODIFY_STATUS,
            operation_name="Manager reset",
            json={"ResetType": manager_reset},
        )
        return True

    # Versions

    def get_bmc_version(self, ctx: Context) -> str:
        manager = self.http.get_json(ctx, self._manager(), "Get manager")
        version = manager.get("FirmwareVersion")
        if not version:
            raise ParseError("manager resource has no FirmwareVersion")
        return version

    def get_bios_version(self, ctx: Context) -> str:
        system = self.http.get_json(ctx, self._system(), "Get system")
        version = system.get("BiosVersion")
        if not version:
            raise ParseError("system resource has no BiosVersion")
        return version

    # Accounts

    def _accounts(self, ctx: Context) -> List[Dict[str, Any]]:
        collection = self.http.get_json(ctx, REDFISH_ACCOUNTS, "List accounts")
        accounts = []
        for member in collection.get("Members", []):
            uri = member.get("@odata.id")
            if uri:
                accounts.append(self.http.get_json(ctx, uri, "Get account"))
        return accounts

    def read_users(self, ctx: Context) -> List[Dict[str, Any]]:
        users = []
        for account in self._accounts(ctx):
            if not account.get("UserName"):
                continue
            users.append(UserRecord(
                id=str(account.get("Id", "")),
                name=account["UserName"],
                role=account.get("RoleId", ""),
                enabled=bool(account.get("Enabled", False)),
            ).model_dump())
        return users

    def _find_account(self, accounts: List[Dict[str, Any]], user: str) -> Optional[Dict[str, Any]]:
        for account in accounts:
            if account.get("UserName") == user:
                return account
        return None

    @staticmethod
    def _role_id(role: str) -> str:
        if not is_role_valid(role):
            raise ConfigValidationError(f"unsupported role: {role}", field="role")
        return ROLE_IDS[role]

    def create_user(self, ctx: Context, user: str, password: str, role: str) -> bool:
        payload = {
            "UserName": user,
            "Password": password,
            "RoleId": self._role_id(role),
            "Enabled": True,
        }
        accounts = self._accounts(ctx)
        if self._find_account(accounts, user) is not None:
            raise ProtocolError(f"user {user} already exists", step="create_user")

        # Fixed-slot implementations (iDRAC) list every slot; slot 1 is reserved
        empty = [a for a in accounts if not a.get("UserName") and str(a.get("Id")) != "1"]
        if empty:
            self.http.make_request(
                ctx, "PATCH", empty[0]["@odata.id"],
                expected_status=MODIFY_STATUS,
                operation_name="Create account",
                json=payload,
            )
        else:
            self.http.make_request(
                ctx, "POST", REDFISH_ACCOUNTS,
                expected_status=(201,),
                operation_name="Create account",
                json=payload,
            )
        return True

    def update_user(self, ctx: Context, user: str, password: str, role: str) -> bool:
        payload = {"RoleId": self._role_id(role), "Enabled": True}
        if password:
            payload["Password"] = password

        account = self._find_account(self._accounts(ctx), user)
        if account is None:
            raise ProtocolError(f"user {user} not found", step="update_user")

        self.http.make_request(
            ctx, "PATCH", account["@odata.id"],
            expected_status=MODIFY_STATUS,
            operation_name="Update account",
            json=payload,
        )
        return True

    def delete_user(self, ctx: Context, user: str) -> bool:
        account = self._find_account(self._accounts(ctx), user)
        if account is None:
            raise ProtocolError(f"user {user} not found", step="delete_user")

        # Fixed slots cannot be deleted, only emptied
        self.http.make_request(
            ctx, "PATCH", account["@odata.id"],
            expected_status=MODIFY_STATUS,
            operation_name="Delete account",
            json={"Enabled": False, "UserName": ""},
        )
        return True

    # Firmware

    def _get_task(self, ctx: Context, task_uri: str) -> Dict[str, Any]:
        return self.http.get_json(ctx, task_uri, "Get firmware task")

    def _push_uri(self, ctx: Context) -> str:
        service = self.http.get_json(ctx, REDFISH_UPDATE_SERVICE, "Get update service")
        return service.get("MultipartHttpPushUri") or REDFISH_MULTIPART_UPLOAD

    def _upload_firmware(self, ctx: Context, upload: Dict[str, Any]) -> str:
        push_uri = self._push_uri(ctx)
        parameters = {"Targets": [], "@Redfish.OperationApplyTime": "Immediate"}
        files = {
            "UpdateParameters": (None, json.dumps(parameters), "application/json"),
            "UpdateFile": (upload["filename"], upload["stream"], "application/octet-stream"),
        }
        response = self.http.make_request(
            ctx, "POST", push_uri,
            expected_status=(202,),
            operation_name="Multipart firmware upload",
            files=files,
        )
        task_uri = response.headers.get("Location", "")
        if not task_uri:
            raise ProtocolError("firmware upload accepted without a task Location", status_code=202)
        return task_uri

    def _update_firmware(self, ctx: Context, stream, size: int, component: str) -> bool:
        if size <= 0:
            raise ConfigValidationError(f"{component} firmware image is empty", field="size")

        self.logger.info(f"Uploading {component} firmware ({size} bytes) to {self.http.host}")
        upload = {"stream": stream, "filename": f"{component}-firmware.bin"}
        job = self.task_poller.run(ctx, self._upload_firmware, upload, parse_id=str)
        self.logger.info(f"{component} firmware task {job.id} completed on {self.http.host}")
        return True

    def update_bmc_firmware(self, ctx: Context, stream, size: int) -> bool:
        return self._update_firmware(ctx, stream, size, "bmc")

    def update_bios_firmware(self, ctx: Context, stream, size: int) -> bool:
        return self._update_firmware(ctx, stream, size, "bios")


def new_driver(cfg: ClientConfig, session_manager: Optional[SessionManager] = None,
               logger: Optional[logging.Logger] = None) -> DriverDescriptor:
    if session_manager is None:
        session_manager = SessionManager(verify_ssl=cfg.verify_ssl)
    driver = RedfishDriver.from_config(cfg, session_manager, logger=logger)
    return DriverDescriptor(PROVIDER_NAME, PROVIDER_PROTOCOL, FEATURES, driver)
