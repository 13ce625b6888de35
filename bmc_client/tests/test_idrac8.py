import json
import unittest
from unittest import mock

import requests

from bmc_client.context import Context
from bmc_client.drivers.idrac8 import (
    CERT_APPLY_STEP,
    CERT_UPLOAD_STEP,
    IDrac8Driver,
    ldap_conf_payload,
    network_payload,
    parse_session_tokens,
)
from bmc_client.errors import ConfigValidationError, PartialFailureError, ProtocolError
from bmc_client.http_adapter import BMCHTTPAdapter
from bmc_client.models import LdapConfig, NetworkConfig, UserConfig
from bmc_client.session_manager import SessionManager
from bmc_client.utils import escape_ldap_string

BASE = "https://10.0.0.6"

LOGIN_OK = (
    "<?xml version=\"1.0\" encoding=\"UTF-8\"?><root><status>ok</status><authResult>0</authResult>"
    "<forwardUrl>index.html?ST1=3ff1c0d2a9e64b7e,ST2=74cd19a83b5f0e26</forwardUrl></root>"
)
LOGIN_REJECTED = (
    "<?xml version=\"1.0\" encoding=\"UTF-8\"?><root><status>ok</status><authResult>1</authResult>"
    "<forwardUrl>index.html</forwardUrl></root>"
)


def make_response(status_code=200, body=None, text=None):
    response = requests.Response()
    response.status_code = status_code
    if body is not None:
        response._content = json.dumps(body).encode()
    else:
        response._content = (text or "").encode()
    return response


class FakeIdrac:
    """Session manager side effect for the iDRAC8 web API.

    ``responses`` maps an endpoint prefix (path and query after the host) to
    a response, or to a list of responses consumed in order.
    """

    def __init__(self, responses=None):
        self.responses = {"data/login": make_response(text=LOGIN_OK)}
        self.responses.update(responses or {})
        self.calls = []

    def __call__(self, method, url, host, **kwargs):
        endpoint = url[len(BASE) + 1:]
        self.calls.append((method, endpoint, kwargs))
        for prefix in sorted(self.responses, key=len, reverse=True):
            if endpoint.startswith(prefix):
                response = self.responses[prefix]
                if isinstance(response, list):
                    return response.pop(0)
                return response
        return make_response(200, text="<status>ok</status>")

    def endpoints(self):
        return [c[1] for c in self.calls]


def driver(fake):
    session_manager = mock.Mock(spec=SessionManager)
    session_manager.make_request.side_effect = fake
    http = BMCHTTPAdapter("10.0.0.6", BASE, session_manager)
    d = IDrac8Driver(http, "root", "calvin")
    d.open(Context())
    fake.calls.clear()
    return d


def user_table(*names):
    table = {}
    for slot in range(1, 17):
        name = names[slot - 2] if 2 <= slot < len(names) + 2 else ""
        table[str(slot)] = {"UserName": name, "Enable": "Enabled" if name else "Disabled"}
    return {"iDRAC.Users": table}


class LdapEscapeTests(unittest.TestCase):
    def test_escape_dn(self):
        self.assertEqual(
            escape_ldap_string("ou=People,dc=example,dc=com"),
            "ou%5C%3DPeople%5C%2Cdc%5C%3Dexample%5C%2Cdc%5C%3Dcom",
        )

    def test_plain_string_unchanged(self):
        self.assertEqual(escape_ldap_string("memberUid"), "memberUid")


class SessionTests(unittest.TestCase):
    def test_login_sets_tokens(self):
        fake = FakeIdrac()
        d = driver(fake)
        self.assertEqual(d.st1, "3ff1c0d2a9e64b7e")
        self.assertEqual(d.http.headers["ST2"], "74cd19a83b5f0e26")

    def test_login_rejected(self):
        with self.assertRaises(ProtocolError) as cm:
            parse_session_tokens(LOGIN_REJECTED)
        self.assertEqual(cm.exception.step, "login")

    def test_close_logs_out(self):
        fake = FakeIdrac()
        d = driver(fake)
        d.close(Context())
        self.assertEqual(fake.endpoints(), ["data/logout"])
        self.assertIsNone(d.st1)
        self.assertNotIn("ST2", d.http.headers)


class CertificateUploadTests(unittest.TestCase):
    def test_two_phase_upload(self):
        stored = {"ResourceURI": "/sysmgmt/2012/server/transient/filestore/cert.pem"}
        fake = FakeIdrac({
            "sysmgmt/2012/server/transient/filestore": make_response(201, {"File": stored}),
            "sysmgmt/2012/server/network/ssl/cert": make_response(201, {}),
        })
        d = driver(fake)

        self.assertTrue(d.upload_https_cert(Context(), b"-----BEGIN CERTIFICATE-----", "server.crt"))

        upload, apply = fake.calls
        self.assertTrue(upload[1].endswith("&ST1=3ff1c0d2a9e64b7e"))
        form = dict(upload[2]["files"])
        self.assertEqual(form["pageId"], (None, "2"))
        self.assertEqual(form["index"], (None, "8"))
        self.assertEqual(form["CertType"], (None, "2"))
        self.assertEqual(form["serverSSLCertificate"][0], "server.crt")
        self.assertEqual(apply[1], "sysmgmt/2012/server/network/ssl/cert")
        self.assertEqual(apply[2]["json"], stored)

    def test_phase_one_failure_skips_phase_two(self):
        fake = FakeIdrac({
            "sysmgmt/2012/server/transient/filestore": make_response(400, text="bad form"),
        })
        d = driver(fake)

        with self.assertRaises(ProtocolError) as cm:
            d.upload_https_cert(Context(), b"cert", "server.crt")

        self.assertEqual(cm.exception.step, CERT_UPLOAD_STEP)
        self.assertIn("step 1", str(cm.exception))
        self.assertEqual(len(fake.calls), 1)

    def test_phase_one_without_resource_uri(self):
        fake = FakeIdrac({"sysmgmt/2012/server/transient/filestore": make_response(201, {"File": {}})})
        d = driver(fake)

        with self.assertRaises(ProtocolError) as cm:
            d.upload_https_cert(Context(), b"cert", "server.crt")
        self.assertEqual(cm.exception.step, CERT_UPLOAD_STEP)
        self.assertEqual(len(fake.calls), 1)

    def test_phase_two_failure_names_apply_step(self):
        stored = {"ResourceURI": "/sysmgmt/2012/server/transient/filestore/cert.pem"}
        fake = FakeIdrac({
            "sysmgmt/2012/server/transient/filestore": make_response(201, {"File": stored}),
            "sysmgmt/2012/server/network/ssl/cert": make_response(400, text="invalid certificate"),
        })
        d = driver(fake)

        with self.assertRaises(ProtocolError) as cm:
            d.upload_https_cert(Context(), b"cert", "server.crt")

        self.assertEqual(cm.exception.step, CERT_APPLY_STEP)
        self.assertEqual(cm.exception.status_code, 400)
        self.assertIn("step 2", str(cm.exception))
        self.assertEqual(len(fake.calls), 2)


class UserReconcileTests(unittest.TestCase):
    def test_creates_updates_and_disables(self):
        fake = FakeIdrac({"sysmgmt/2012/server/configgroup/iDRAC.Users": make_response(200, user_table("root", "old"))})
        d = driver(fake)

        result = d.apply_users(Context(), [
            UserConfig(name="root", password="calvin2", role="admin"),
            UserConfig(name="deploy", password="s3cret", role="user"),
            {"name": "old", "enable": False},
        ])

        self.assertTrue(result.ok)
        self.assertEqual(result.applied, ["root", "deploy", "old"])
        puts = {c[1]: c[2]["json"]["iDRAC.Users"] for c in fake.calls if c[0] == "PUT"}
        self.assertEqual(puts["sysmgmt/2012/server/configgroup/iDRAC.Users.2"]["Privilege"], "511")
        self.assertEqual(puts["sysmgmt/2012/server/configgroup/iDRAC.Users.4"]["UserName"], "deploy")
        self.assertEqual(puts["sysmgmt/2012/server/configgroup/iDRAC.Users.4"]["IpmiLanPrivilege"], "Operator")
        disabled = puts["sysmgmt/2012/server/configgroup/iDRAC.Users.3"]
        self.assertEqual((disabled["Privilege"], disabled["IpmiLanPrivilege"]), ("0", "No Access"))

    def test_partial_failure_continues(self):
        fake = FakeIdrac({
            "sysmgmt/2012/server/configgroup/iDRAC.Users.2": make_response(500, text="internal error"),
            "sysmgmt/2012/server/configgroup/iDRAC.Users": make_response(200, user_table("root")),
        })
        d = driver(fake)

        result = d.apply_users(Context(), [
            UserConfig(name="root", password="calvin2", role="admin"),
            UserConfig(name="deploy", password="s3cret", role="user"),
        ])

        self.assertEqual(result.applied, ["deploy"])
        self.assertIsInstance(result.failed["root"], ProtocolError)
        with self.assertRaises(PartialFailureError) as cm:
            result.raise_for_failures()
        self.assertIn("root", cm.exception.failures)

    def test_invalid_role_sends_nothing(self):
        fake = FakeIdrac()
        d = driver(fake)
        with self.assertRaises(ConfigValidationError):
            d.apply_users(Context(), [UserConfig(name="x", password="y", role="superuser")])
        self.assertEqual(fake.calls, [])


class SettingsTests(unittest.TestCase):
    def test_ntp(self):
        fake = FakeIdrac()
        d = driver(fake)
        d.apply_ntp(Context(), {"server1": "ntp0.example.com", "server2": "ntp1.example.com", "timezone": "CET"})
        self.assertEqual(fake.endpoints(), [
            "data?set=tm_tz_str_zone:CET",
            "data?set=tm_ntp_int_opmode:1,tm_ntp_str_server1:ntp0.example.com,"
            "tm_ntp_str_server2:ntp1.example.com,tm_ntp_str_server3:,",
        ])

    def test_ntp_requires_timezone(self):
        fake = FakeIdrac()
        d = driver(fake)
        with self.assertRaises(ConfigValidationError) as cm:
            d.apply_ntp(Context(), {"server1": "ntp0.example.com"})
        self.assertEqual(cm.exception.field, "timezone")
        self.assertEqual(fake.calls, [])

    def test_syslog_default_port(self):
        fake = FakeIdrac()
        d = driver(fake)
        d.apply_syslog(Context(), {"server": "logs.example.com"})

        method, endpoint, kwargs = fake.calls[0]
        self.assertEqual((method, endpoint), ("PUT", "sysmgmt/2012/server/configgroup/iDRAC.SysLog"))
        self.assertEqual(kwargs["json"]["iDRAC.SysLog"]["Port"], "514")
        self.assertEqual(fake.endpoints()[1], "data?set=alertStatus:1")

    def test_ldap_escapes_search_filter(self):
        fake = FakeIdrac()
        d = driver(fake)
        d.apply_ldap(Context(), {"server": "ldap.example.com", "search_filter": "objectClass=posixAccount"})
        self.assertEqual(fake.endpoints(), [
            "data?set=xGLServer:ldap.example.com",
            "data?set=xGLSearchFilter:objectClass%5C%3DposixAccount",
        ])

    def test_ldap_groups(self):
        fake = FakeIdrac()
        d = driver(fake)
        ldap = LdapConfig(port=636, base_dn="ou=People,dc=example,dc=com",
                          user_attribute="uid", group_attribute="memberUid")

        d.apply_ldap_groups(Context(), [
            {"role": "admin", "group": "cn=bmcadmins", "group_base_dn": "ou=Group,dc=example,dc=com"},
            {"role": "user", "group": "cn=bmcusers", "group_base_dn": "ou=Group,dc=example,dc=com"},
            {"role": "user", "group": "cn=retired", "group_base_dn": "ou=Group,dc=example,dc=com", "enable": False},
        ], ldap)

        endpoints = fake.endpoints()
        self.assertEqual(endpoints[0], "data?set=xGLGroup1Name:cn%5C%3Dbmcadmins%5C%2Cou%5C%3DGroup%5C%2Cdc%5C%3Dexample%5C%2Cdc%5C%3Dcom")
        self.assertTrue(endpoints[1].startswith("data?set=xGLGroup2Name:cn%5C%3Dbmcusers"))
        self.assertEqual(endpoints[2], "postset?ldapconf")
        body = fake.calls[2][2]["data"]
        self.assertIn("xGLGroup1Priv:511,xGLGroup2Priv:497,xGLGroup3Priv:0,xGLGroup4Priv:0,xGLGroup5Priv:0,", body)
        self.assertTrue(body.endswith("xGLServerPort:636"))

    def test_ldap_groups_validation_sends_nothing(self):
        fake = FakeIdrac()
        d = driver(fake)
        with self.assertRaises(ConfigValidationError):
            d.apply_ldap_groups(Context(), [{"role": "admin", "group": "cn=x"}], LdapConfig(
                port=636, base_dn="dc=example", user_attribute="uid", group_attribute="memberUid",
            ))
        self.assertEqual(fake.calls, [])

    def test_ldap_conf_payload(self):
        ldap = LdapConfig(port=389, base_dn="dc=example,dc=com", user_attribute="uid", group_attribute="memberUid")
        self.assertEqual(
            ldap_conf_payload(ldap, "xGLGroup1Priv:0,"),
            "data=LDAPEnableMode:3,xGLNameSearchEnabled:0,xGLBaseDN:dc%5C%3Dexample%5C%2Cdc%5C%3Dcom,"
            "xGLUserLogin:uid,xGLGroupMem:memberUid,xGLBindDN:,xGLCertValidationEnabled:0,"
            "xGLGroup1Priv:0,xGLServerPort:389",
        )

    def test_network(self):
        fake = FakeIdrac()
        d = driver(fake)
        self.assertFalse(d.apply_network(Context(), NetworkConfig(ipmi_enable=False)))
        self.assertEqual(fake.calls[0][2]["data"], network_payload(NetworkConfig(ipmi_enable=False)))
        self.assertEqual(
            network_payload(NetworkConfig(ipmi_enable=False)),
            "dhcpForDNSDomain:1,ipmiLAN:0,serialOverLanEnabled:1,serialOverLanBaud:3,"
            "serialOverLanPriv:0,racRedirectEna:1,racEscKey:^\\\\",
        )

    def test_generate_csr_encodes_email(self):
        fake = FakeIdrac({"bindata": make_response(200, text="-----BEGIN CERTIFICATE REQUEST-----")})
        d = driver(fake)
        csr = d.generate_csr(Context(), {"common_name": "bmc01", "email": "ops@example.com"})
        self.assertEqual(csr, b"-----BEGIN CERTIFICATE REQUEST-----")
        self.assertIn("ops@040example.com", fake.endpoints()[0])


if __name__ == "__main__":
    unittest.main()
