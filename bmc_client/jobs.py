"""
Job polling for asynchronous BMC operations.

Some BMC operations (configuration imports, firmware pushes) return a job
identifier straight away and finish minutes later. JobPoller submits the
work, then polls the job status on a fixed interval until the job completes,
fails, times out, or the caller cancels.

    Submitted -> Polling -> Succeeded | Failed | TimedOut | Cancelled
"""

import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from . import config
from .context import Context
from .errors import (
    BMCError,
    ContextError,
    InsufficientDeadlineError,
    JobFailedError,
    JobTimeoutError,
    ParseError,
)

logger = logging.getLogger(__name__)

JOB_ID_MARKER = "JID_"
JOB_ID_LENGTH = 16

PERCENT_COMPLETE_PREFIX = "Percent Complete=["
PERCENT_COMPLETE_RE = re.compile(r"Percent Complete=\[(\d+)\]")


class JobStatus(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.TIMED_OUT, JobStatus.CANCELLED)


@dataclass
class Job:
    """A vendor-side job tracked by one JobPoller run."""

    id: str
    status: JobStatus = JobStatus.SUBMITTED
    percent_complete: int = 0
    consecutive_error_count: int = 0
    errors: List[Exception] = field(default_factory=list)


def parse_job_id(message: str) -> str:
    """
    Extract the job ID from a job creation message.

    Example racadm output:

        RAC977: Import configuration XML file operation initiated.
        Use the "racadm jobqueue view -i JID_000123456789" command to view the status
        of the operation.

    Raises:
        ParseError: No complete JID_ token in the message
    """
    for line in message.splitlines():
        idx = line.find(JOB_ID_MARKER)
        if idx == -1:
            continue
        job_id = line[idx:idx + JOB_ID_LENGTH]
        if len(job_id) != JOB_ID_LENGTH:
            raise ParseError(f"truncated job ID in output: {line.strip()}")
        return job_id
    raise ParseError("failed to find JobID in output")


def parse_percent_complete(message: str) -> int:
    """
    Extract the completion percentage from a job status message.

    Example:
        [Job ID=JID_000123456789]
        Job Name=Configure: Import Server Configuration Profile
        Status=Running
        Message=[SYS058: Applying configuration changes.]
        Percent Complete=[20]

    Raises:
        ParseError: Line missing or value not numeric
    """
    for line in message.splitlines():
        line = line.strip()
        if not line.startswith(PERCENT_COMPLETE_PREFIX):
            continue
        match = PERCENT_COMPLETE_RE.search(line)
        if not match:
            raise ParseError(f"failed to extract Percent Complete: {line}")
        return int(match.group(1))
    raise ParseError("failed to find Percent Complete in output")


class JobPoller:
    """
    Submit/poll state machine for one job at a time.

    A JobPoller instance holds only configuration; each run() owns its Job,
    so one poller can serve several hosts from different threads.

    Args:
        query_status: Callable (ctx, job_id) -> raw status output
        poll_interval: Seconds between status queries
        timeout: Hard ceiling in seconds for the whole poll loop
        max_errors: Consecutive query/parse failures tolerated
        parse_status: Callable (raw output) -> percent complete; may raise
            ParseError, or JobFailedError when the BMC reports a failed job
        operation_name: Name used in log messages
    """

    def __init__(
        self,
        query_status: Callable[[Context, str], Any],
        poll_interval: float = config.JOB_POLL_INTERVAL,
        timeout: float = config.JOB_TIMEOUT,
        max_errors: int = config.JOB_MAX_CONSECUTIVE_ERRORS,
        parse_status: Callable[[Any], int] = parse_percent_complete,
        operation_name: str = "Job",
        logger: Optional[logging.Logger] = None
    ):
        self.query_status = query_status
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.max_errors = max_errors
        self.parse_status = parse_status
        self.operation_name = operation_name
        self.logger = logger or logging.getLogger(__name__)

    def check_deadline(self, ctx: Context, minimum: Optional[float] = None):
        """Fail fast when ctx cannot outlive the job. A ctx without a deadline is unbounded."""
        minimum = self.timeout if minimum is None else minimum
        remaining = ctx.remaining()
        if remaining is not None and remaining < minimum:
            raise InsufficientDeadlineError(
                f"remaining context deadline (minimum: {minimum:.0f}s) insufficient to perform "
                f"{self.operation_name}, remaining: {remaining:.0f}s"
            )

    def submit(
        self,
        ctx: Context,
        submit_fn: Callable[[Context, Any], Any],
        payload: Any = None,
        parse_id: Callable[[Any], str] = parse_job_id
    ) -> Job:
        self.check_deadline(ctx)
        ctx.raise_if_done()

        output = submit_fn(ctx, payload)
        job = Job(id=parse_id(output))
        self.logger.debug(f"{self.operation_name}: job {job.id} created")
        return job

    def wait(self, ctx: Context, job: Job) -> Job:
        """
        Poll ``job`` until it reaches a terminal state.

        Returns:
            Job: The job in state SUCCEEDED

        Raises:
            ContextError: ctx cancelled/expired (job CANCELLED)
            JobTimeoutError: Hard ceiling elapsed (job TIMED_OUT)
            JobFailedError: BMC reported failure or too many consecutive errors (job FAILED)
        """
        job.status = JobStatus.POLLING
        hard_deadline = time.monotonic() + self.timeout

        while True:
            interval = min(self.poll_interval, max(0.0, hard_deadline - time.monotonic()))
            if ctx.wait(interval):
                job.status = JobStatus.CANCELLED
                self.logger.warning(f"{self.operation_name}: context done while waiting for job {job.id}")
                raise ctx.err()

            if time.monotonic() >= hard_deadline:
                job.status = JobStatus.TIMED_OUT
                raise JobTimeoutError(
                    f"timeout exceeded while waiting for job {job.id} to complete",
                    job_id=job.id,
                )

            try:
                percent = self._read_progress(ctx, job)
            except ContextError:
                job.status = JobStatus.CANCELLED
                raise
            except JobFailedError as e:
                job.status = JobStatus.FAILED
                e.job_id = e.job_id or job.id
                job.errors.append(e)
                raise
            except BMCError as e:
                job.consecutive_error_count += 1
                job.errors.append(e)
                self.logger.error(
                    f"{self.operation_name}: failed to read status of job {job.id}, retrying "
                    f"(errorCount={job.consecutive_error_count}): {e}"
                )
                if job.consecutive_error_count >= self.max_errors:
                    job.status = JobStatus.FAILED
                    streak = job.errors[-job.consecutive_error_count:]
                    raise JobFailedError(
                        f"exceeded maximum consecutive errors while waiting for job {job.id}: {e}",
                        job_id=job.id,
                        errors=streak,
                    )
                continue

            job.consecutive_error_count = 0
            job.percent_complete = percent
            self.logger.debug(f"{self.operation_name}: job {job.id} progress {percent}%")

            if percent >= 100:
                job.status = JobStatus.SUCCEEDED
                self.logger.info(f"{self.operation_name}: job {job.id} completed successfully")
                return job

    def _read_progress(self, ctx: Context, job: Job) -> int:
        """Query and parse one status; unexpected exceptions surface as ParseError."""
        try:
            return self.parse_status(self.query_status(ctx, job.id))
        except BMCError:
            raise
        except Exception as e:
            raise ParseError(f"unreadable status for job {job.id}: {e}") from e

    def run(
        self,
        ctx: Context,
        submit_fn: Callable[[Context, Any], Any],
        payload: Any = None,
        parse_id: Callable[[Any], str] = parse_job_id
    ) -> Job:
        job = self.submit(ctx, submit_fn, payload, parse_id=parse_id)
        return self.wait(ctx, job)
