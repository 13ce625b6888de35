import os
import unittest

from bmc_client.context import Context
from bmc_client.drivers.racadm import RacadmDriver, parse_job_status, parse_version
from bmc_client.errors import (
    ConfigValidationError,
    InsufficientDeadlineError,
    JobFailedError,
    ParseError,
    TransportError,
)
from bmc_client.executor import ExecResult

FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures", "racadm")


def fixture(name):
    with open(os.path.join(FIXTURES, name)) as f:
        return f.read()


class FakeExecutor:
    """Answers racadm commands from a {command: output | exception | [outputs]} map."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def exec(self, ctx, args):
        self.calls.append(list(args))
        # -r host -u user -p pass --nocertwarn <command> ...
        command = " ".join(args[7:])
        response = self.responses.get(command)
        if response is None:
            for prefix, value in self.responses.items():
                if command.startswith(prefix):
                    response = value
                    break
        if isinstance(response, list):
            response = response.pop(0)
        if isinstance(response, Exception):
            raise response
        if response is None:
            raise TransportError(f"unexpected racadm command: {command}", error_code="EXIT_STATUS")
        return ExecResult(stdout=response, stderr="", returncode=0)


def driver(responses, **kwargs):
    kwargs.setdefault("job_poll_interval", 0.001)
    kwargs.setdefault("job_timeout", 5)
    return RacadmDriver("10.0.0.5", "root", "calvin", executor=FakeExecutor(responses), **kwargs)


class RacadmCommandTests(unittest.TestCase):
    def test_base_arguments(self):
        d = driver({"serveraction powerstatus": "Server power status: ON\n"})
        self.assertEqual(d.get_power_state(Context()), "on")
        self.assertEqual(
            d.executor.calls[0],
            ["-r", "10.0.0.5", "-u", "root", "-p", "calvin", "--nocertwarn", "serveraction", "powerstatus"],
        )

    def test_set_power_state(self):
        d = driver({"serveraction graceshutdown": "Server power operation successful\n"})
        self.assertTrue(d.set_power_state(Context(), "soft"))

    def test_invalid_power_state_runs_nothing(self):
        d = driver({})
        with self.assertRaises(ConfigValidationError):
            d.set_power_state(Context(), "sideways")
        self.assertEqual(d.executor.calls, [])

    def test_reset_bmc(self):
        d = driver({"racreset hard": "RAC1056: Reset operation initiated successfully.\n"})
        self.assertTrue(d.reset_bmc(Context(), "cold"))

    def test_versions(self):
        output = fixture("getversion")
        d = driver({"getversion": output})
        self.assertEqual(d.get_bios_version(Context()), "2.12.1")
        self.assertEqual(d.get_bmc_version(Context()), "2.83.83.83")

    def test_parse_version_missing(self):
        with self.assertRaises(ParseError):
            parse_version("Lifecycle Controller Version = 2.83.83.83\n", "Bios Version")

    def test_set_boot_device(self):
        d = driver({"set iDRAC.ServerBoot": "Object value modified successfully\n"})
        d.set_boot_device(Context(), "pxe", persistent=True)
        self.assertEqual(d.executor.calls[0][7:], ["set", "iDRAC.ServerBoot.FirstBootDevice", "PXE"])
        self.assertEqual(d.executor.calls[1][7:], ["set", "iDRAC.ServerBoot.BootOnce", "Disabled"])


class BiosConfigurationTests(unittest.TestCase):
    def test_import_and_wait(self):
        d = driver({
            "set -t xml -f": fixture("SetBiosConfigFromFile"),
            "jobqueue view -i JID_000123456789": [
                fixture("JobQueueRunning"),
                fixture("JobQueueCompleted"),
            ],
        })

        self.assertTrue(d.set_bios_configuration(Context(), "<SystemConfiguration/>"))

        import_args = d.executor.calls[0]
        self.assertEqual(import_args[7:11], ["set", "-t", "xml", "-f"])
        # The scratch file is removed once the job is done
        self.assertFalse(os.path.exists(import_args[11]))
        self.assertEqual(len(d.executor.calls), 3)

    def test_scratch_file_removed_on_failure(self):
        d = driver({"set -t xml -f": TransportError("racadm exited with status 1", error_code="EXIT_STATUS")})

        with self.assertRaises(TransportError):
            d.set_bios_configuration(Context(), "<SystemConfiguration/>")
        self.assertFalse(os.path.exists(d.executor.calls[0][11]))

    def test_failed_job(self):
        d = driver({
            "set -t xml -f": fixture("SetBiosConfigFromFile"),
            "jobqueue view -i JID_000123456789": fixture("JobQueueFailed"),
        })
        with self.assertRaises(JobFailedError) as cm:
            d.set_bios_configuration(Context(), "<SystemConfiguration/>")
        self.assertEqual(cm.exception.job_id, "JID_000123456789")

    def test_short_deadline_touches_nothing(self):
        d = driver({}, job_timeout=870)
        with self.assertRaises(InsufficientDeadlineError):
            d.set_bios_configuration(Context(timeout=30), "<SystemConfiguration/>")
        self.assertEqual(d.executor.calls, [])

    def test_parse_job_status(self):
        self.assertEqual(parse_job_status(fixture("JobQueueRunning")), 20)
        self.assertEqual(parse_job_status(fixture("JobQueueCompleted")), 100)
        with self.assertRaises(JobFailedError):
            parse_job_status(fixture("JobQueueFailed"))


if __name__ == "__main__":
    unittest.main()
