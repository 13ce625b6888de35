"""Canonical BMC HTTP endpoints used by the drivers.

Redfish paths are relative to the service root; system and manager member
paths are discovered at open time and fall back to the first members listed
here. iDRAC8 paths are relative to https://<host>/ and belong to the web
UI's private API.
"""

# Redfish
REDFISH_ROOT = "/redfish/v1"
REDFISH_SYSTEMS = f"{REDFISH_ROOT}/Systems"
REDFISH_MANAGERS = f"{REDFISH_ROOT}/Managers"
REDFISH_ACCOUNTS = f"{REDFISH_ROOT}/AccountService/Accounts"
REDFISH_UPDATE_SERVICE = f"{REDFISH_ROOT}/UpdateService"
REDFISH_MULTIPART_UPLOAD = f"{REDFISH_UPDATE_SERVICE}/MultipartUpload"
REDFISH_TASKS = f"{REDFISH_ROOT}/TaskService/Tasks"

REDFISH_SYSTEM_RESET_ACTION = "Actions/ComputerSystem.Reset"
REDFISH_MANAGER_RESET_ACTION = "Actions/Manager.Reset"

# iDRAC8 web API
IDRAC8_LOGIN = "data/login"
IDRAC8_LOGOUT = "data/logout"
IDRAC8_DATA_SET = "data?set"
IDRAC8_LDAP_CONF = "postset?ldapconf"
IDRAC8_USERS = "sysmgmt/2012/server/configgroup/iDRAC.Users"
IDRAC8_USER = "sysmgmt/2012/server/configgroup/iDRAC.Users.{user_id}"
IDRAC8_SYSLOG = "sysmgmt/2012/server/configgroup/iDRAC.SysLog"
IDRAC8_CERT_FILESTORE = "sysmgmt/2012/server/transient/filestore?fileupload=true"
IDRAC8_SSL_CERT = "sysmgmt/2012/server/network/ssl/cert"
IDRAC8_CSR = "bindata?set"
