"""
Context-aware subprocess execution for CLI drivers (ipmitool, racadm).
"""

import logging
import os
import shutil
import signal
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional

from . import config
from .context import Context
from .errors import TransportError

logger = logging.getLogger(__name__)

# How often a running command is checked for context cancellation
CANCEL_CHECK_INTERVAL = 0.25

# Grace period for pipes to drain after the process group is killed
KILL_WAIT_TIMEOUT = 5


@dataclass
class ExecResult:
    stdout: str
    stderr: str
    returncode: int


def find_binary(name: str, path: str = "") -> str:
    """
    Resolve a CLI tool path.

    Raises:
        TransportError: The binary is not installed or not executable
    """
    if path:
        if not (os.path.isfile(path) and os.access(path, os.X_OK)):
            raise TransportError(f"{name} not found at {path}", error_code="BINARY_NOT_FOUND")
        return path

    found = shutil.which(name)
    if not found:
        raise TransportError(f"{name} not found on PATH", error_code="BINARY_NOT_FOUND")
    return found


class Executor:
    """
    Runs one CLI binary with per-call arguments.

    Args:
        binary: Absolute path of the tool
        env: Extra environment variables for the child process
        secrets: Argument values masked in log output
        timeout: Per-call ceiling in seconds when ctx has no deadline
    """

    def __init__(self, binary: str, env: Optional[Dict[str, str]] = None, secrets: Optional[List[str]] = None,
                 timeout: float = config.CLI_COMMAND_TIMEOUT):
        self.binary = binary
        self.env = dict(config.CLI_ENV if env is None else env)
        self.secrets = [s for s in (secrets or []) if s]
        self.timeout = timeout

    def _masked(self, args: List[str]) -> str:
        return " ".join("****" if a in self.secrets else a for a in args)

    def _kill(self, proc: subprocess.Popen):
        """Kill the whole process group; grandchildren may hold the output pipes."""
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        try:
            proc.communicate(timeout=KILL_WAIT_TIMEOUT)
        except subprocess.TimeoutExpired:
            logger.warning(f"{os.path.basename(self.binary)} output pipes still open after kill")

    def exec(self, ctx: Context, args: List[str]) -> ExecResult:
        """
        Run the binary and wait for it, killing it if ctx is done first.

        Raises:
            ContextError: ctx was done before start or while running
            TransportError: The process could not start or exited non-zero
        """
        ctx.raise_if_done()

        cmd = [self.binary] + list(args)
        logger.debug(f"Running command: {self._masked(cmd)}")

        env = dict(os.environ)
        env.update(self.env)

        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                env=env,
                start_new_session=True,
            )
        except OSError as e:
            raise TransportError(f"failed to start {self.binary}: {e}")

        ceiling = ctx.remaining()
        if ceiling is None:
            ceiling = self.timeout
        waited = 0.0

        while True:
            try:
                stdout, stderr = proc.communicate(timeout=CANCEL_CHECK_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                waited += CANCEL_CHECK_INTERVAL
                err = ctx.err()
                if err is None and waited < ceiling:
                    continue
                self._kill(proc)
                if err is not None:
                    logger.warning(f"Killed {os.path.basename(self.binary)}: {err}")
                    raise err
                raise TransportError(
                    f"{os.path.basename(self.binary)} timed out after {ceiling:.0f}s",
                    error_code="TIMEOUT",
                )

        result = ExecResult(stdout=stdout or "", stderr=stderr or "", returncode=proc.returncode)
        if result.returncode != 0:
            logger.error(f"Command failed ({result.returncode}): {result.stderr.strip()}")
            raise TransportError(
                f"{os.path.basename(self.binary)} exited with status {result.returncode}: "
                f"{(result.stderr or result.stdout).strip()}",
                error_code="EXIT_STATUS",
            )
        return result
