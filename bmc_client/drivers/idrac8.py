"""
Dell iDRAC8 configuration driver.

Talks to the private web API behind the iDRAC8 UI: a form login that
returns ST1/ST2 session tokens, ``data?set=key:value,...`` GET calls for
individual settings, configgroup PUTs for users and syslog, and a two-phase
filestore upload for the HTTPS certificate.

Every apply_* method validates its input completely before the first
request goes out.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
from urllib.parse import quote

from ..capabilities import Capability
from ..config import ClientConfig
from ..context import Context
from ..endpoints import (
    IDRAC8_CERT_FILESTORE,
    IDRAC8_CSR,
    IDRAC8_DATA_SET,
    IDRAC8_LDAP_CONF,
    IDRAC8_LOGIN,
    IDRAC8_LOGOUT,
    IDRAC8_SSL_CERT,
    IDRAC8_SYSLOG,
    IDRAC8_USER,
    IDRAC8_USERS,
)
from ..errors import ConfigValidationError, ContextError, ProtocolError
from ..http_adapter import BMCHTTPAdapter
from ..models import (
    HTTPSCertAttributes,
    LdapConfig,
    LdapGroupConfig,
    NetworkConfig,
    NtpConfig,
    ReconcileResult,
    SyslogConfig,
    UserConfig,
    is_role_valid,
    validate_user_config,
)
from ..registry import DriverDescriptor
from ..session_manager import SessionManager
from ..utils import escape_ldap_string, safe_json_parse

PROVIDER_NAME = "idrac8"
PROVIDER_PROTOCOL = "vendorapi"

FEATURES = frozenset({
    Capability.OPEN,
    Capability.CLOSE,
    Capability.APPLY_USERS,
    Capability.APPLY_SYSLOG,
    Capability.APPLY_NTP,
    Capability.APPLY_LDAP,
    Capability.APPLY_LDAP_GROUPS,
    Capability.APPLY_NETWORK,
    Capability.UPLOAD_HTTPS_CERT,
    Capability.GENERATE_CSR,
})

DEFAULT_SYSLOG_PORT = 514

# Alert delivery must be switched on or the iDRAC sends nothing to syslog
ALERT_ENABLE_PARAM = "alertStatus:1"
ALERT_FILTER_PARAM = (
    "SysLogAlertSystemHealth:1,SysLogAlertStorage:1,SysLogAlertConfiguration:1,"
    "SysLogAlertUpdates:1,SysLogAlertAudit:1,SysLogAlertWorkNotes:1"
)

# iDRAC.Users privilege bitmasks
USER_PRIVILEGES = {
    "admin": ("511", "Administrator"),
    "user": ("499", "Operator"),
}
DISABLED_PRIVILEGE = ("0", "No Access")

# LDAP role group privilege bitmasks
GROUP_PRIVILEGES = {
    "admin": "511",
    "user": "497",
}
MAX_LDAP_GROUPS = 5

# Slot 1 is the reserved anonymous account
USER_SLOTS = range(2, 17)

CERT_UPLOAD_STEP = "step 1 (filestore upload)"
CERT_APPLY_STEP = "step 2 (certificate apply)"

TOKEN_RE = re.compile(r"(ST[12])=([0-9a-fA-F]+)")
AUTH_RESULT_RE = re.compile(r"<authResult>(\d+)</authResult>")


def _coerce(model, value):
    if isinstance(value, model):
        return value
    return model(**value)


def parse_session_tokens(body: str) -> Dict[str, str]:
    """
    Read ST1/ST2 from the login response.

        <root><status>ok</status><authResult>0</authResult>
        <forwardUrl>index.html?ST1=3ff1...,ST2=74cd...</forwardUrl></root>
    """
    auth = AUTH_RESULT_RE.search(body)
    if auth and auth.group(1) != "0":
        raise ProtocolError(f"login rejected (authResult={auth.group(1)})", step="login")

    tokens = dict(TOKEN_RE.findall(body))
    if "ST1" not in tokens or "ST2" not in tokens:
        raise ProtocolError("login response carries no session tokens", step="login")
    return tokens


def find_user(name: str, users: Dict[str, Dict[str, Any]]) -> Tuple[Optional[str], Dict[str, Any]]:
    for user_id, info in users.items():
        if info.get("UserName") == name:
            return user_id, dict(info)
    return None, {}


def find_empty_slot(users: Dict[str, Dict[str, Any]]) -> Tuple[Optional[str], Dict[str, Any]]:
    for slot in USER_SLOTS:
        info = users.get(str(slot))
        if info is not None and not info.get("UserName"):
            return str(slot), dict(info)
    return None, {}


def validate_ldap_groups(groups: List[LdapGroupConfig], ldap: LdapConfig) -> List[LdapGroupConfig]:
    """
    Check the LDAP server settings and every group; return the groups to apply.

    Disabled groups and groups without a role are skipped, not rejected.
    """
    if ldap.port == 0:
        raise ConfigValidationError('LDAP resource parameter "port" is required', field="port")
    if not ldap.base_dn:
        raise ConfigValidationError('LDAP resource parameter "base_dn" is required', field="base_dn")
    if not ldap.user_attribute:
        raise ConfigValidationError('LDAP resource parameter "user_attribute" is required', field="user_attribute")
    if not ldap.group_attribute:
        raise ConfigValidationError('LDAP resource parameter "group_attribute" is required', field="group_attribute")

    selected = []
    for group in groups:
        if not group.enable or not group.role:
            continue
        if not group.group:
            raise ConfigValidationError('LDAP resource parameter "group" is required', field="group")
        if not group.group_base_dn:
            raise ConfigValidationError('LDAP resource parameter "group_base_dn" is required', field="group_base_dn")
        if not is_role_valid(group.role):
            raise ConfigValidationError(
                f'LDAP resource parameter "role" must be "admin" or "user", got {group.role!r}',
                field="role",
            )
        selected.append(group)

    if len(selected) > MAX_LDAP_GROUPS:
        raise ConfigValidationError(
            f"iDRAC8 supports at most {MAX_LDAP_GROUPS} LDAP role groups, got {len(selected)}",
            field="groups",
        )
    return selected


def ldap_conf_payload(ldap: LdapConfig, group_privileges: str) -> str:
    bind_dn = escape_ldap_string(ldap.bind_dn) if ldap.bind_dn else ""
    return (
        "data=LDAPEnableMode:3,"  # Generic LDAP
        "xGLNameSearchEnabled:0,"
        f"xGLBaseDN:{escape_ldap_string(ldap.base_dn)},"
        f"xGLUserLogin:{ldap.user_attribute},"
        f"xGLGroupMem:{ldap.group_attribute},"
        f"xGLBindDN:{bind_dn},"
        "xGLCertValidationEnabled:0,"
        f"{group_privileges}"
        f"xGLServerPort:{ldap.port}"
    )


def network_payload(cfg: NetworkConfig) -> str:
    dns = int(cfg.dns_from_dhcp)
    ipmi = int(cfg.ipmi_enable)
    sol = int(cfg.sol_enable)
    return (
        f"dhcpForDNSDomain:{dns},"
        f"ipmiLAN:{ipmi},"
        f"serialOverLanEnabled:{sol},"
        "serialOverLanBaud:3,"  # 115.2 kbps
        "serialOverLanPriv:0,"  # Administrator
        f"racRedirectEna:{sol},"
        "racEscKey:^\\\\"
    )


class IDrac8Driver:
    """
    Configuration driver for iDRAC8 web API sessions.

    Args:
        http: BMCHTTPAdapter bound to https://<host>; session tokens are
            added to its headers on open()
        user, password: Web UI credentials
    """

    name = PROVIDER_NAME
    protocol = PROVIDER_PROTOCOL
    features = FEATURES

    def __init__(self, http: BMCHTTPAdapter, user: str, password: str, logger: Optional[logging.Logger] = None):
        self.http = http
        self.user = user
        self.password = password
        self.logger = logger or logging.getLogger(__name__)
        self.st1: Optional[str] = None
        self.st2: Optional[str] = None

    @classmethod
    def from_config(cls, cfg: ClientConfig, session_manager: SessionManager,
                    logger: Optional[logging.Logger] = None) -> "IDrac8Driver":
        http = BMCHTTPAdapter(
            cfg.host,
            cfg.https_base_url(),
            session_manager,
            logger=logger,
            connect_timeout=cfg.http_connect_timeout,
            read_timeout=cfg.http_read_timeout,
            session_key=f"{PROVIDER_NAME}@{cfg.host}",
        )
        return cls(http, cfg.user, cfg.password, logger=logger)

    # Session

    def open(self, ctx: Context):
        response = self.http.make_request(
            ctx, "POST", IDRAC8_LOGIN,
            operation_name="iDRAC8 login",
            step="login",
            data={"user": self.user, "password": self.password},
        )
        tokens = parse_session_tokens(response.text)
        self.st1 = tokens["ST1"]
        self.st2 = tokens["ST2"]
        self.http.headers["ST2"] = self.st2
        self.logger.debug(f"iDRAC8 session opened on {self.http.host}")

    def close(self, ctx: Context):
        try:
            if self.st2:
                self.http.make_request(ctx, "GET", IDRAC8_LOGOUT, operation_name="iDRAC8 logout")
        finally:
            self.st1 = None
            self.st2 = None
            self.http.headers.pop("ST2", None)
            self.http.close()

    def _set(self, ctx: Context, params: str, operation_name: str):
        """GET data?set=<params>; the iDRAC answers 200 on success."""
        self.http.make_request(
            ctx, "GET", f"{IDRAC8_DATA_SET}={params}",
            expected_status=(200,),
            operation_name=operation_name,
        )

    # Users

    def _query_users(self, ctx: Context) -> Dict[str, Dict[str, Any]]:
        data = self.http.get_json(ctx, IDRAC8_USERS, "Query iDRAC users")
        users = data.get("iDRAC.Users")
        if not isinstance(users, dict):
            raise ProtocolError("iDRAC.Users missing from user query response", step="query_users")
        return users

    def _put_user(self, ctx: Context, user_id: str, info: Dict[str, Any]):
        self.http.make_request(
            ctx, "PUT", IDRAC8_USER.format(user_id=user_id),
            expected_status=(200,),
            operation_name=f"Update iDRAC user slot {user_id}",
            json={"iDRAC.Users": info},
        )

    def apply_users(self, ctx: Context, users: Iterable[Union[UserConfig, Dict[str, Any]]]) -> ReconcileResult:
        """
        Reconcile the iDRAC user table with the desired users.

        Enabled users are created in the first empty slot or updated in
        place; disabled users that exist lose all privileges. A failure for
        one user is logged and recorded and the remaining users are still
        applied.

        Raises:
            ConfigValidationError: Invalid input (nothing sent)
            BMCError: The user table could not be read
        """
        users = [_coerce(UserConfig, u) for u in users]
        validate_user_config(users)

        table = self._query_users(ctx)
        result = ReconcileResult()

        for user in users:
            user_id, info = find_user(user.name, table)
            try:
                if user.enable:
                    if user_id is None:
                        user_id, info = find_empty_slot(table)
                        if user_id is None:
                            raise ProtocolError(f"no empty user slot for {user.name}", step="apply_users")
                    privilege, ipmi_privilege = USER_PRIVILEGES[user.role]
                    info.update({
                        "Enable": "Enabled",
                        "SolEnable": "Enabled",
                        "UserName": user.name,
                        "Password": user.password,
                        "Privilege": privilege,
                        "IpmiLanPrivilege": ipmi_privilege,
                    })
                elif user_id is not None:
                    privilege, ipmi_privilege = DISABLED_PRIVILEGE
                    info.update({
                        "Enable": "Disabled",
                        "SolEnable": "Disabled",
                        "UserName": user.name,
                        "Privilege": privilege,
                        "IpmiLanPrivilege": ipmi_privilege,
                    })
                else:
                    # Disabled and absent: nothing to do
                    result.applied.append(user.name)
                    continue

                self._put_user(ctx, user_id, info)
                # Keep the local table current so the next new user gets another slot
                table[user_id] = info
            except ContextError:
                raise
            except Exception as e:
                self.logger.error(f"Failed to apply user {user.name} on {self.http.host}: {e}")
                result.failed[user.name] = e
                continue

            result.applied.append(user.name)
            self.logger.info(f"User parameters applied for {user.name} on {self.http.host}")

        return result

    # Syslog / NTP

    def apply_syslog(self, ctx: Context, cfg: Union[SyslogConfig, Dict[str, Any]]) -> bool:
        cfg = _coerce(SyslogConfig, cfg)
        if not cfg.server:
            raise ConfigValidationError("syslog resource expects parameter: server", field="server")

        port = cfg.port or DEFAULT_SYSLOG_PORT
        payload = {
            "iDRAC.SysLog": {
                "Port": str(port),
                "Server1": cfg.server,
                "Server2": "",
                "Server3": "",
                "Enable": "Enabled" if cfg.enable else "Disabled",
            }
        }
        self.http.make_request(
            ctx, "PUT", IDRAC8_SYSLOG,
            expected_status=(200,),
            operation_name="Set syslog configuration",
            json=payload,
        )
        self.http.make_request(
            ctx, "POST", f"{IDRAC8_DATA_SET}={ALERT_ENABLE_PARAM}",
            expected_status=(200,),
            operation_name="Enable alerts",
        )
        self.http.make_request(
            ctx, "POST", f"{IDRAC8_DATA_SET}={ALERT_FILTER_PARAM}",
            expected_status=(200,),
            operation_name="Set alert filters",
        )
        self.logger.info(f"Syslog parameters applied on {self.http.host}")
        return True

    def apply_ntp(self, ctx: Context, cfg: Union[NtpConfig, Dict[str, Any]]) -> bool:
        cfg = _coerce(NtpConfig, cfg)
        if not cfg.server1:
            raise ConfigValidationError("NTP resource expects parameter: server1", field="server1")
        if not cfg.timezone:
            raise ConfigValidationError("NTP resource expects parameter: timezone", field="timezone")

        self._set(ctx, f"tm_tz_str_zone:{cfg.timezone}", "Set timezone")
        self._set(
            ctx,
            f"tm_ntp_int_opmode:{int(cfg.enable)},"
            f"tm_ntp_str_server1:{cfg.server1},"
            f"tm_ntp_str_server2:{cfg.server2},"
            f"tm_ntp_str_server3:{cfg.server3},",
            "Set NTP servers",
        )
        self.logger.info(f"NTP parameters applied on {self.http.host}")
        return True

    # LDAP

    def apply_ldap(self, ctx: Context, cfg: Union[LdapConfig, Dict[str, Any]]) -> bool:
        cfg = _coerce(LdapConfig, cfg)
        if not cfg.server:
            raise ConfigValidationError('LDAP resource parameter "server" required but not declared', field="server")
        if not cfg.search_filter:
            raise ConfigValidationError(
                'LDAP resource parameter "search_filter" required but not declared', field="search_filter"
            )

        self._set(ctx, f"xGLServer:{cfg.server}", "Set LDAP server")
        self._set(ctx, f"xGLSearchFilter:{escape_ldap_string(cfg.search_filter)}", "Set LDAP search filter")
        self.logger.info(f"LDAP server parameters applied on {self.http.host}")
        return True

    def apply_ldap_groups(
        self,
        ctx: Context,
        groups: Iterable[Union[LdapGroupConfig, Dict[str, Any]]],
        ldap: Union[LdapConfig, Dict[str, Any]]
    ) -> bool:
        """
        Configure up to five LDAP role groups, then post the LDAP settings
        with every group privilege in one call. Unused groups get privilege 0.
        """
        ldap = _coerce(LdapConfig, ldap)
        selected = validate_ldap_groups([_coerce(LdapGroupConfig, g) for g in groups], ldap)

        privileges = []
        for group_id, group in enumerate(selected, start=1):
            group_dn = escape_ldap_string(f"{group.group},{group.group_base_dn}")
            self._set(ctx, f"xGLGroup{group_id}Name:{group_dn}", f"Set LDAP group {group_id}")
            privileges.append(f"xGLGroup{group_id}Priv:{GROUP_PRIVILEGES[group.role]},")
            self.logger.debug(f"LDAP group {group_id} ({group.role}) applied on {self.http.host}")

        for group_id in range(len(selected) + 1, MAX_LDAP_GROUPS + 1):
            privileges.append(f"xGLGroup{group_id}Priv:0,")

        self.http.make_request(
            ctx, "POST", IDRAC8_LDAP_CONF,
            expected_status=(200,),
            operation_name="Set LDAP role group privileges",
            data=ldap_conf_payload(ldap, "".join(privileges)),
        )
        self.logger.info(f"LDAP role group privileges applied on {self.http.host}")
        return True

    # Network

    def apply_network(self, ctx: Context, cfg: Union[NetworkConfig, Dict[str, Any]]) -> bool:
        """Returns whether the BMC needs a reset; never the case on iDRAC8."""
        cfg = _coerce(NetworkConfig, cfg)
        self.http.make_request(
            ctx, "POST", IDRAC8_DATA_SET,
            expected_status=(200,),
            operation_name="Set network parameters",
            data=network_payload(cfg),
        )
        self.logger.info(f"Network parameters applied on {self.http.host}")
        return False

    # Certificates

    def generate_csr(self, ctx: Context, cert: Union[HTTPSCertAttributes, Dict[str, Any]]) -> bytes:
        cert = _coerce(HTTPSCertAttributes, cert)
        fields = [
            cert.common_name,
            cert.organization_name,
            cert.organization_unit,
            cert.locality,
            cert.state_name,
            cert.country_code,
            cert.email.replace("@", "@040"),
            cert.subject_alt_name,
        ]
        query = quote(f"serverCSR({','.join(fields)})", safe="(),@")
        response = self.http.make_request(
            ctx, "GET", f"{IDRAC8_CSR}={query}",
            expected_status=(200,),
            operation_name="Generate CSR",
        )
        return response.content

    def upload_https_cert(
        self,
        ctx: Context,
        cert: bytes,
        cert_file_name: str,
        key: Optional[bytes] = None,
        key_file_name: Optional[str] = None
    ) -> bool:
        """
        Upload a signed x509 certificate for the web server.

        1. Multipart POST of the certificate to the transient filestore,
           which answers 201 with ``{"File": {"ResourceURI": ...}}``.
        2. POST of that File object to the SSL cert endpoint, expecting 201.

        iDRAC8 keeps the key it generated the CSR with, so ``key`` is not sent.

        Returns:
            True: the BMC must be reset for the certificate to take effect

        Raises:
            ProtocolError: A step failed; ``step`` names it and later steps
                are not attempted
        """
        if not self.st1:
            raise ProtocolError("iDRAC8 session is not open", step=CERT_UPLOAD_STEP)

        form: List[Tuple[str, Tuple[Optional[str], Any]]] = [
            ("caller", (None, "")),
            ("pageCode", (None, "")),
            ("pageId", (None, "2")),
            ("pageName", (None, "")),
            ("index", (None, "8")),
            ("serverSSLCertificate", (cert_file_name, cert, "application/octet-stream")),
            ("CertType", (None, "2")),
        ]
        response = self.http.make_request(
            ctx, "POST", f"{IDRAC8_CERT_FILESTORE}&ST1={self.st1}",
            expected_status=(201,),
            operation_name="Certificate filestore upload",
            step=CERT_UPLOAD_STEP,
            files=form,
        )

        body = safe_json_parse(response)
        stored = body.get("File")
        if not isinstance(stored, dict) or not stored.get("ResourceURI"):
            raise ProtocolError(
                f"{CERT_UPLOAD_STEP}: filestore response has no File.ResourceURI",
                status_code=response.status_code,
                step=CERT_UPLOAD_STEP,
            )

        self.http.make_request(
            ctx, "POST", IDRAC8_SSL_CERT,
            expected_status=(201,),
            operation_name="Certificate apply",
            step=CERT_APPLY_STEP,
            json=stored,
        )
        self.logger.info(f"HTTPS certificate uploaded to {self.http.host}, BMC reset required")
        return True


def new_driver(cfg: ClientConfig, session_manager: Optional[SessionManager] = None,
               logger: Optional[logging.Logger] = None) -> DriverDescriptor:
    if session_manager is None:
        session_manager = SessionManager(verify_ssl=cfg.verify_ssl)
    driver = IDrac8Driver.from_config(cfg, session_manager, logger=logger)
    return DriverDescriptor(PROVIDER_NAME, PROVIDER_PROTOCOL, FEATURES, driver)
