# === NAVMAP v1 ===
# {
#   "module": "SLSTransport.network.policy",
#   "purpose": "HTTP policy constants and defaults.",
#   "sections": []
# }
# === /NAVMAP ===

"""HTTP policy constants and defaults.

Protocol header names, timeout budgets, retry classification tables and DNS
cache bounds for the signed HTTP exchange with the log service.  Tunable
values here are only the defaults; clients read the effective values from
:class:`SLSTransport.settings.ClientSettings`.
"""

# ============================================================================
# Protocol Headers
# ============================================================================

#: API version advertised on every request
API_VERSION = "0.6.0"

#: Signature method advertised on every request
SIGNATURE_METHOD = "hmac-sha256"

HEADER_HOST = "Host"
HEADER_USER_AGENT = "User-Agent"
HEADER_CONTENT_TYPE = "Content-Type"
HEADER_CONTENT_MD5 = "Content-MD5"
HEADER_DATE = "Date"
HEADER_API_VERSION = "x-log-apiversion"
HEADER_SIGNATURE_METHOD = "x-log-signaturemethod"
HEADER_BODY_RAW_SIZE = "x-log-bodyrawsize"
HEADER_SECURITY_TOKEN = "x-acs-security-token"

#: Response header carrying the service-side request id
REQUEST_ID_HEADER = "x-log-requestid"


# ============================================================================
# Retry Classification
# ============================================================================

#: Statuses retried for read (GET) calls when retry-on-server-error is on
READ_RETRY_STATUSES = frozenset(range(500, 600))

#: Statuses retried for write calls; writes are not assumed idempotent for every 5xx
WRITE_RETRY_STATUSES = frozenset({500, 502, 503})


# ============================================================================
# DNS Cache
# ============================================================================

#: Freshness window of a cached resolution
DNS_CACHE_TTL_SECONDS = 60.0

#: Sweep thresholds below this fall back to the configured TTL
DNS_CACHE_MIN_SWEEP_SECONDS = 60.0

#: Entry count that triggers an expiry sweep after an insert
DNS_CACHE_MAX_ENTRIES = 10_000


__all__ = [
    "API_VERSION",
    "SIGNATURE_METHOD",
    "HEADER_HOST",
    "HEADER_USER_AGENT",
    "HEADER_CONTENT_TYPE",
    "HEADER_CONTENT_MD5",
    "HEADER_DATE",
    "HEADER_API_VERSION",
    "HEADER_SIGNATURE_METHOD",
    "HEADER_BODY_RAW_SIZE",
    "HEADER_SECURITY_TOKEN",
    "REQUEST_ID_HEADER",
    "READ_RETRY_STATUSES",
    "WRITE_RETRY_STATUSES",
    "DNS_CACHE_TTL_SECONDS",
    "DNS_CACHE_MIN_SWEEP_SECONDS",
    "DNS_CACHE_MAX_ENTRIES",
]
