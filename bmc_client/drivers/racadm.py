"""
Dell racadm CLI driver.

Power, BMC reset, versions, boot device and BIOS configuration import. The
BIOS import is asynchronous on the iDRAC: ``racadm set -t xml`` returns a
JID_ job that is then followed with ``racadm jobqueue view -i <JID>``.
"""

import logging
import os
import re
import tempfile
from typing import List, Optional

from .. import config
from ..capabilities import Capability
from ..config import ClientConfig
from ..context import Context
from ..errors import ConfigValidationError, JobFailedError, ParseError
from ..executor import Executor, find_binary
from ..jobs import JobPoller, parse_percent_complete
from ..models import BootDevice, PowerState, ResetType
from ..registry import DriverDescriptor

PROVIDER_NAME = "racadm"
PROVIDER_PROTOCOL = "racadm"

FEATURES = frozenset({
    Capability.OPEN,
    Capability.CLOSE,
    Capability.GET_POWER_STATE,
    Capability.SET_POWER_STATE,
    Capability.RESET_BMC,
    Capability.GET_BMC_VERSION,
    Capability.GET_BIOS_VERSION,
    Capability.SET_BOOT_DEVICE,
    Capability.SET_BIOS_CONFIGURATION,
})

SERVER_ACTIONS = {
    PowerState.ON: "powerup",
    PowerState.OFF: "powerdown",
    PowerState.SOFT: "graceshutdown",
    PowerState.RESET: "hardreset",
    PowerState.CYCLE: "powercycle",
}

RESET_TYPES = {
    ResetType.WARM: "soft",
    ResetType.COLD: "hard",
}

# iDRAC.ServerBoot.FirstBootDevice values
BOOT_DEVICES = {
    BootDevice.NONE: "Normal",
    BootDevice.PXE: "PXE",
    BootDevice.DISK: "HDD",
    BootDevice.CDROM: "VCD-DVD",
    BootDevice.BIOS: "BIOS",
    BootDevice.SAFE: "Normal",
    BootDevice.DIAG: "Utilities",
    BootDevice.FLOPPY: "vFDD",
}

POWER_STATUS_RE = re.compile(r"Server power status:\s*(\w+)", re.IGNORECASE)
JOB_STATUS_RE = re.compile(r"^Status=(.+)$", re.MULTILINE)
JOB_MESSAGE_RE = re.compile(r"^Message=\[(.*)\]$", re.MULTILINE)

BIOS_VERSION_KEY = "Bios Version"
IDRAC_VERSION_KEY = "iDRAC Version"


def parse_job_status(output: str) -> int:
    """
    Percent complete of a ``jobqueue view`` result.

    Raises:
        JobFailedError: The job reports Status=Failed
        ParseError: No Percent Complete line
    """
    status = JOB_STATUS_RE.search(output)
    if status and status.group(1).strip().lower() == "failed":
        message = JOB_MESSAGE_RE.search(output)
        detail = message.group(1) if message else "no message"
        raise JobFailedError(f"job reported failure: {detail}")
    return parse_percent_complete(output)


def parse_version(output: str, key: str) -> str:
    """Value of ``<key> = <value>`` in ``racadm getversion`` output."""
    for line in output.splitlines():
        name, sep, value = line.partition("=")
        if sep and name.strip() == key:
            return value.strip()
    raise ParseError(f"failed to find {key} in getversion output")


class RacadmDriver:
    """Runs racadm against a remote iDRAC."""

    name = PROVIDER_NAME
    protocol = PROVIDER_PROTOCOL
    features = FEATURES

    def __init__(self, host: str, user: str, password: str, executor: Optional[Executor] = None,
                 job_poll_interval: float = config.JOB_POLL_INTERVAL,
                 job_timeout: float = config.JOB_TIMEOUT,
                 logger: Optional[logging.Logger] = None):
        self.host = host
        self.user = user
        self.password = password
        self.executor = executor
        self.logger = logger or logging.getLogger(__name__)
        self.poller = JobPoller(
            self.get_job_queue,
            poll_interval=job_poll_interval,
            timeout=job_timeout,
            parse_status=parse_job_status,
            operation_name="BIOS configuration import",
            logger=self.logger,
        )

    @classmethod
    def from_config(cls, cfg: ClientConfig, logger: Optional[logging.Logger] = None) -> "RacadmDriver":
        binary = find_binary("racadm", cfg.racadm_path)
        return cls(
            host=cfg.host,
            user=cfg.user,
            password=cfg.password,
            executor=Executor(binary, secrets=[cfg.password]),
            job_poll_interval=cfg.job_poll_interval,
            job_timeout=cfg.job_timeout,
            logger=logger,
        )

    def open(self, ctx: Context):
        # racadm authenticates per invocation
        pass

    def close(self, ctx: Context):
        pass

    def run(self, ctx: Context, command: str, *args: str) -> str:
        racadm_args: List[str] = [
            "-r", self.host, "-u", self.user, "-p", self.password, "--nocertwarn", command,
        ]
        racadm_args.extend(args)
        return self.executor.exec(ctx, racadm_args).stdout

    # Power

    def get_power_state(self, ctx: Context) -> str:
        output = self.run(ctx, "serveraction", "powerstatus")
        match = POWER_STATUS_RE.search(output)
        if not match:
            raise ParseError(f"unexpected powerstatus output: {output.strip()}")
        return match.group(1).lower()

    def set_power_state(self, ctx: Context, state: str) -> bool:
        try:
            action = SERVER_ACTIONS[PowerState(state.lower())]
        except ValueError:
            raise ConfigValidationError(f"unsupported power state: {state}", field="state")
        self.run(ctx, "serveraction", action)
        return True

    # BMC

    def reset_bmc(self, ctx: Context, reset_type: str) -> bool:
        try:
            mode = RESET_TYPES[ResetType(reset_type.lower())]
        except ValueError:
            raise ConfigValidationError(f"unsupported BMC reset type: {reset_type}", field="reset_type")
        self.run(ctx, "racreset", mode)
        return True

    def get_bmc_version(self, ctx: Context) -> str:
        return parse_version(self.run(ctx, "getversion"), IDRAC_VERSION_KEY)

    def get_bios_version(self, ctx: Context) -> str:
        return parse_version(self.run(ctx, "getversion"), BIOS_VERSION_KEY)

    def set_boot_device(self, ctx: Context, device: str, persistent: bool = False, efi_boot: bool = False) -> bool:
        try:
            first_boot = BOOT_DEVICES[BootDevice(device.lower())]
        except ValueError:
            raise ConfigValidationError(f"unsupported boot device: {device}", field="device")

        self.run(ctx, "set", "iDRAC.ServerBoot.FirstBootDevice", first_boot)
        self.run(ctx, "set", "iDRAC.ServerBoot.BootOnce", "Disabled" if persistent else "Enabled")
        return True

    # BIOS configuration

    def get_job_queue(self, ctx: Context, job_id: str) -> str:
        return self.run(ctx, "jobqueue", "view", "-i", job_id)

    def _import_config(self, ctx: Context, path: str) -> str:
        return self.run(ctx, "set", "-t", "xml", "-f", path)

    def set_bios_configuration(self, ctx: Context, cfg: str) -> bool:
        """
        Import a BIOS configuration XML and wait for the resulting job.

        The deadline check runs before the scratch file is written so a
        context that is too short never touches the BMC.

        Raises:
            InsufficientDeadlineError: ctx expires before the job could finish
            JobTimeoutError, JobFailedError, ContextError: from the job poller
        """
        self.poller.check_deadline(ctx)

        fd, path = tempfile.mkstemp(prefix="bmc_client")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(cfg)
            job = self.poller.run(ctx, self._import_config, path)
        finally:
            os.remove(path)

        self.logger.info(f"BIOS configuration job {job.id} completed on {self.host}")
        return True


def new_driver(cfg: ClientConfig, session_manager=None, logger: Optional[logging.Logger] = None) -> DriverDescriptor:
    driver = RacadmDriver.from_config(cfg, logger=logger)
    return DriverDescriptor(PROVIDER_NAME, PROVIDER_PROTOCOL, FEATURES, driver)
