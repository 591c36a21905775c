"""Constants used across whatsrelay.

Internal values that are not user-configurable.
"""

# Chat id suffixes per bridge engine
WEB_CHAT_SUFFIX = "@c.us"
SOCKET_CHAT_SUFFIX = "@s.whatsapp.net"

# Bridge session states reported by check_connection()
STATE_CONNECTED = "CONNECTED"
STATE_DISCONNECTED = "DISCONNECTED"

# Disconnect reasons that end a backend instance instead of reconnecting
LOGOUT_REASON = "LOGOUT"
NAVIGATION_REASON = "NAVIGATION"

# Upload limits for the report endpoint
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
ALLOWED_UPLOAD_TYPES = ("application/pdf",)
ALLOWED_UPLOAD_PREFIXES = ("image/",)

DEFAULT_LAB_NAME = "MedLab Systems"
DEFAULT_REMEDIATION_HINT = (
    "Start the WhatsApp bridge (or move the service to a host that can run it) "
    "and call POST /api/whatsapp/restart."
)
