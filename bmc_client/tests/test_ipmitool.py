import unittest

from bmc_client.context import Context
from bmc_client.drivers.ipmitool import IpmitoolDriver, parse_user_list
from bmc_client.errors import ConfigValidationError, ParseError, ProtocolError
from bmc_client.executor import ExecResult

USER_LIST = """ID  Name	     Callin  Link Auth	IPMI Msg   Channel Priv Limit
1                    true    false      false      Unknown (0x00)
2   root             false   true       true       ADMINISTRATOR
3   ops              true    true       true       USER
4                    true    false      false      NO ACCESS
"""

MC_INFO = """Device ID                 : 32
Device Revision           : 1
Firmware Revision         : 2.83
IPMI Version              : 2.0
Manufacturer ID           : 674
"""


class FakeExecutor:
    def __init__(self, outputs=None):
        self.outputs = outputs or {}
        self.calls = []

    def exec(self, ctx, args):
        # -I lanplus -H host -p port -U user -P pass <command>
        command = args[10:]
        self.calls.append(command)
        return ExecResult(stdout=self.outputs.get(" ".join(command[:2]), ""), stderr="", returncode=0)


PRIVILEGE_NAMES = {"2": "USER", "4": "ADMINISTRATOR", "15": "NO ACCESS"}


class StatefulIpmitool:
    """Keeps a user table and answers the user/channel commands the driver issues."""

    def __init__(self):
        self.slots = {str(i): {"name": "", "priv": "15"} for i in range(1, 17)}
        self.slots["2"] = {"name": "root", "priv": "4"}

    def exec(self, ctx, args):
        command = args[10:]
        if command[:2] == ["user", "list"]:
            return ExecResult(stdout=self.render(), stderr="", returncode=0)
        if command[:3] == ["user", "set", "name"]:
            self.slots[command[3]]["name"] = command[4]
        elif command[:2] == ["channel", "setaccess"]:
            self.slots[command[3]]["priv"] = command[-1].split("=")[1]
        return ExecResult(stdout="", stderr="", returncode=0)

    def render(self):
        lines = ["ID  Name             Callin  Link Auth  IPMI Msg   Channel Priv Limit"]
        for slot_id, slot in self.slots.items():
            lines.append(f"{slot_id:<4}{slot['name']:<17}true    true       true       {PRIVILEGE_NAMES[slot['priv']]}")
        return "\n".join(lines) + "\n"


def driver(outputs=None):
    return IpmitoolDriver("10.0.0.5", "root", "calvin", executor=FakeExecutor(outputs))


class IpmitoolTests(unittest.TestCase):
    def test_power_status(self):
        d = driver({"chassis power": "Chassis Power is on\n"})
        self.assertEqual(d.get_power_state(Context()), "on")

    def test_power_status_unparseable(self):
        d = driver({"chassis power": "Error: Unable to establish IPMI v2 / RMCP+ session\n"})
        with self.assertRaises(ParseError):
            d.get_power_state(Context())

    def test_set_power_state(self):
        d = driver()
        d.set_power_state(Context(), "cycle")
        self.assertEqual(d.executor.calls, [["chassis", "power", "cycle"]])

    def test_boot_device_options(self):
        d = driver()
        d.set_boot_device(Context(), "pxe", persistent=True, efi_boot=True)
        self.assertEqual(d.executor.calls, [["chassis", "bootdev", "pxe", "options=persistent,efiboot"]])

    def test_boot_device_rejects_unknown(self):
        with self.assertRaises(ConfigValidationError):
            driver().set_boot_device(Context(), "usb-stick")

    def test_reset_bmc(self):
        d = driver()
        d.reset_bmc(Context(), "warm")
        self.assertEqual(d.executor.calls, [["mc", "reset", "warm"]])

    def test_bmc_version(self):
        self.assertEqual(driver({"mc info": MC_INFO}).get_bmc_version(Context()), "2.83")

    def test_parse_user_list(self):
        users = {u.id: u for u in parse_user_list(USER_LIST)}
        self.assertEqual(users["2"].name, "root")
        self.assertEqual(users["2"].role, "ADMINISTRATOR")
        self.assertTrue(users["2"].enabled)
        self.assertEqual(users["4"].name, "")
        self.assertFalse(users["4"].enabled)

    def test_read_users_skips_empty_slots(self):
        users = driver({"user list": USER_LIST}).read_users(Context())
        self.assertEqual([u["name"] for u in users], ["root", "ops"])

    def test_create_user_uses_first_empty_slot(self):
        d = driver({"user list": USER_LIST})
        d.create_user(Context(), "deploy", "s3cret", "admin")

        self.assertIn(["user", "set", "name", "4", "deploy"], d.executor.calls)
        self.assertIn(["user", "set", "password", "4", "s3cret"], d.executor.calls)
        self.assertIn(
            ["channel", "setaccess", "1", "4", "callin=on", "ipmi=on", "link=on", "privilege=4"],
            d.executor.calls,
        )
        self.assertEqual(d.executor.calls[-1], ["user", "enable", "4"])

    def test_create_existing_user_fails(self):
        with self.assertRaises(ProtocolError):
            driver({"user list": USER_LIST}).create_user(Context(), "root", "pw", "admin")

    def test_delete_missing_user_fails(self):
        with self.assertRaises(ProtocolError):
            driver({"user list": USER_LIST}).delete_user(Context(), "nobody")

    def test_deleted_user_is_gone_and_can_be_recreated(self):
        fake = StatefulIpmitool()
        d = IpmitoolDriver("10.0.0.5", "root", "calvin", executor=fake)
        ctx = Context()

        d.create_user(ctx, "ops", "pw1", "user")
        self.assertEqual([u["name"] for u in d.read_users(ctx)], ["root", "ops"])

        d.delete_user(ctx, "ops")
        self.assertEqual([u["name"] for u in d.read_users(ctx)], ["root"])
        with self.assertRaises(ProtocolError):
            d.update_user(ctx, "ops", "pw", "user")

        d.create_user(ctx, "ops", "pw2", "admin")
        self.assertEqual(fake.slots["3"], {"name": "ops", "priv": "4"})
        self.assertEqual([u["name"] for u in d.read_users(ctx)], ["root", "ops"])

    def test_invalid_role_runs_nothing(self):
        d = driver({"user list": USER_LIST})
        with self.assertRaises(ConfigValidationError):
            d.update_user(Context(), "ops", "pw", "superuser")
        self.assertEqual(d.executor.calls, [])


if __name__ == "__main__":
    unittest.main()
