"""
Configuration for the BMC client.

ClientConfig is read from BMC_* environment variables with sensible
defaults, and may also be built explicitly in code:

    ClientConfig(host="10.0.0.5", user="root", password="calvin")
"""

import os
from pydantic_settings import BaseSettings

# Job polling (racadm job queue, Redfish tasks)
JOB_POLL_INTERVAL = 30  # Seconds between job status queries
JOB_TIMEOUT = (14 * 60) + 30  # 14.5 minutes hard ceiling per job
JOB_MAX_CONSECUTIVE_ERRORS = 3

# Firmware push tasks run longer than configuration imports
FIRMWARE_UPDATE_TIMEOUT = 1800  # 30 minutes max for firmware upload/apply

# CLI tools
CLI_COMMAND_TIMEOUT = 60  # Default per-invocation ceiling when ctx has no deadline
CLI_ENV = {"LC_ALL": "C.UTF-8"}

# HTTP
HTTP_CONNECT_TIMEOUT = 5
HTTP_READ_TIMEOUT = 30


class ClientConfig(BaseSettings):
    """Connection and driver settings for one BMC."""

    # BMC address and credentials
    host: str = ""
    ipmi_port: str = "623"
    https_port: str = "443"
    user: str = ""
    password: str = ""

    # HTTPS drivers
    verify_ssl: bool = False
    http_connect_timeout: int = HTTP_CONNECT_TIMEOUT
    http_read_timeout: int = HTTP_READ_TIMEOUT

    # CLI drivers; empty = look the binary up on PATH
    ipmitool_path: str = ""
    racadm_path: str = ""
    ipmi_interface: str = "lanplus"

    # Job polling
    job_poll_interval: float = JOB_POLL_INTERVAL
    job_timeout: float = JOB_TIMEOUT
    firmware_update_timeout: float = FIRMWARE_UPDATE_TIMEOUT

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    class Config:
        env_prefix = "BMC_"

    def https_base_url(self) -> str:
        if self.https_port and self.https_port != "443":
            return f"https://{self.host}:{self.https_port}"
        return f"https://{self.host}"
