"""Bus names, object paths and OpenVPN 3 code tables."""

# Application info
APP_NAME = "ovpn3-core"
VERSION = "0.1.0"

# D-Bus services and manager objects
CONFIG_SERVICE = "net.openvpn.v3.configuration"
CONFIG_ROOT_PATH = "/net/openvpn/v3/configuration"
CONFIG_INTERFACE = "net.openvpn.v3.configuration"

SESSIONS_SERVICE = "net.openvpn.v3.sessions"
SESSIONS_ROOT_PATH = "/net/openvpn/v3/sessions"
SESSIONS_INTERFACE = "net.openvpn.v3.sessions"

BACKENDS_INTERFACE = "net.openvpn.v3.backends"

LOG_SERVICE = "net.openvpn.v3.log"
LOG_INTERFACE = "net.openvpn.v3.log"

PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"

# Backend signal members
SIGNAL_LOG = "Log"
SIGNAL_STATUS_CHANGE = "StatusChange"
SIGNAL_ATTENTION_REQUIRED = "AttentionRequired"

# StatusChange (major, minor) announcing a web authentication URL
STATUS_SESSION = 3
STATUS_SESS_AUTH_URL = 22
AUTH_URL_STATUS = (STATUS_SESSION, STATUS_SESS_AUTH_URL)

# Log signal groups
LOG_GROUPS = {
    0: "UNDEFINED",
    1: "MASTERPROC",
    2: "CONFIGMGR",
    3: "SESSIONMGR",
    4: "BACKENDSTART",
    5: "LOGGER",
    6: "BACKENDPROC",
    7: "CLIENT",
}

# Log signal levels
LOG_LEVELS = {
    0: "UNDEFINED",
    1: "DEBUG",
    2: "VERB2",
    3: "VERB1",
    4: "INFO",
    5: "WARNING",
    6: "ERROR",
    7: "CRITICAL",
    8: "FATAL",
}

# StatusChange major codes
STATUS_MAJOR = {
    0: "UNSET",
    1: "CONFIG",
    2: "CONNECTION",
    3: "SESSION",
    4: "PKCS11",
    5: "PROCESS",
}

# StatusChange minor codes
STATUS_MINOR = {
    0: "UNSET",
    1: "CFG_ERROR",
    2: "CFG_OK",
    3: "CFG_INLINE_MISSING",
    4: "CFG_REQUIRE_USER",
    5: "CONN_INIT",
    6: "CONN_CONNECTING",
    7: "CONN_CONNECTED",
    8: "CONN_DISCONNECTING",
    9: "CONN_DISCONNECTED",
    10: "CONN_FAILED",
    11: "CONN_AUTH_FAILED",
    12: "CONN_RECONNECTING",
    13: "CONN_PAUSING",
    14: "CONN_PAUSED",
    15: "CONN_RESUMING",
    16: "CONN_DONE",
    17: "SESS_NEW",
    18: "SESS_BACKEND_COMPLETED",
    19: "SESS_REMOVED",
    20: "SESS_AUTH_USERPASS",
    21: "SESS_AUTH_CHALLENGE",
    22: "SESS_AUTH_URL",
    23: "PKCS11_SIGN",
    24: "PKCS11_ENCRYPT",
    25: "PKCS11_DECRYPT",
    26: "PKCS11_VERIFY",
    27: "PROC_STARTED",
    28: "PROC_STOPPED",
    29: "PROC_KILLED",
}

CODE_NAMES = {
    SIGNAL_LOG: (LOG_GROUPS, LOG_LEVELS),
    SIGNAL_STATUS_CHANGE: (STATUS_MAJOR, STATUS_MINOR),
}


def code_names(member: str, first: int, second: int) -> tuple:
    """Translate a signal's two numeric codes into names.

    Args:
        member: Signal member ('Log', 'StatusChange', ...)
        first: Group or major code
        second: Level or minor code

    Returns:
        (first_name, second_name), 'UNKNOWN' where no name is defined
    """
    tables = CODE_NAMES.get(member)
    if not tables:
        return "UNKNOWN", "UNKNOWN"
    first_table, second_table = tables
    return first_table.get(first, "UNKNOWN"), second_table.get(second, "UNKNOWN")
