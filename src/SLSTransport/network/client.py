# === NAVMAP v1 ===
# {
#   "module": "SLSTransport.network.client",
#   "purpose": "httpx client factory and the process-wide shared client",
#   "sections": [
#     {"id": "create-http-client", "name": "create_http_client", "anchor": "function-create-http-client", "kind": "function"},
#     {"id": "get-http-client", "name": "get_http_client", "anchor": "function-get-http-client", "kind": "function"},
#     {"id": "close-http-client", "name": "close_http_client", "anchor": "function-close-http-client", "kind": "function"},
#     {"id": "reset-http-client", "name": "reset_http_client", "anchor": "function-reset-http-client", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""httpx client factory.

:func:`create_http_client` builds a client from one :class:`ClientSettings`
snapshot: connection limits, keep-alive expiry, proxy and optionally the DNS
cached dialer.  Per-attempt timeouts are passed on each ``send`` by the
request executor, so the client-level timeout is only a fallback.

:func:`get_http_client` hands out the process-wide shared client built from
the default settings.  It is created lazily, bound to the config hash and PID
it was built under, and rebuilt in a forked child.  When the default settings
change after binding, a warning is logged once and the bound client is kept.

Example:
    >>> from SLSTransport.network import get_http_client, close_http_client
    >>> client = get_http_client()
    >>> close_http_client()  # at process shutdown or test cleanup
"""

import logging
import os
import threading
from typing import Optional

import httpx

from SLSTransport.network.dns_cache import DnsCachedResolver, get_default_resolver
from SLSTransport.network.transport import build_transport
from SLSTransport.settings import ClientSettings

logger = logging.getLogger(__name__)


# ============================================================================
# Global Client State
# ============================================================================

_client: Optional[httpx.Client] = None
_client_lock = threading.Lock()
_client_bind_hash: Optional[str] = None
_client_bind_pid: Optional[int] = None
_config_hash_mismatch_warned = False


def _resolver_for(settings: ClientSettings) -> Optional[DnsCachedResolver]:
    dns = settings.dns_cache
    if not dns.enabled:
        return None
    shared = get_default_resolver()
    if shared.ttl == dns.ttl_seconds and shared.max_entries == dns.max_entries:
        return shared
    return DnsCachedResolver(ttl=dns.ttl_seconds, max_entries=dns.max_entries)


def create_http_client(
    settings: ClientSettings,
    *,
    transport: Optional[httpx.BaseTransport] = None,
    resolver: Optional[DnsCachedResolver] = None,
) -> httpx.Client:
    """Create an httpx client configured from ``settings``.

    Args:
        settings: Snapshot the client is built from.
        transport: Explicit transport (tests pass :class:`httpx.MockTransport`).
        resolver: DNS cache overriding the one chosen from ``settings``.

    Returns:
        A client that never follows redirects.
    """
    http = settings.http
    transport_is_default = transport is None
    if transport is None:
        if resolver is None:
            resolver = _resolver_for(settings)
        transport = build_transport(http, resolver=resolver)

    client = httpx.Client(
        transport=transport,
        timeout=httpx.Timeout(http.request_timeout, connect=http.connect_timeout),
        follow_redirects=False,
        trust_env=http.trust_env and transport_is_default,
    )
    logger.debug(
        "HTTPX client created",
        extra={
            "max_connections": http.max_connections,
            "keep_alives": not http.disable_keep_alives,
            "dns_cache": resolver is not None,
            "proxy": http.proxy is not None,
        },
    )
    return client


# ============================================================================
# Shared Client
# ============================================================================


def get_http_client() -> httpx.Client:
    """Get or create the shared httpx client.

    Behavior:
        - First call: creates the client, binds to the current config hash and PID.
        - Settings changed after bind: logs a warning once, does not rebuild.
        - Process forked: the child rebuilds on its first call.
    """
    global _client, _client_bind_hash, _client_bind_pid, _config_hash_mismatch_warned

    from SLSTransport.settings import get_default_settings

    if _client is not None and _client_bind_pid == os.getpid():
        current_hash = get_default_settings().config_hash()
        if current_hash != _client_bind_hash and not _config_hash_mismatch_warned:
            logger.warning(
                "Settings config_hash changed after HTTP client was initialized. "
                "Continuing with bound client; reset via reset_http_client() if desired.",
                extra={"bind_hash": _client_bind_hash, "current_hash": current_hash},
            )
            _config_hash_mismatch_warned = True
        return _client

    with _client_lock:
        if _client is not None and _client_bind_pid == os.getpid():
            return _client

        if _client is not None:
            logger.debug("Process forked; closing inherited HTTP client and rebuilding.")
            try:
                _client.close()
            except (OSError, RuntimeError) as exc:
                logger.debug("Error closing inherited client: %s", exc)
            _client = None

        settings = get_default_settings()
        _client = create_http_client(settings)
        _client_bind_hash = settings.config_hash()
        _client_bind_pid = os.getpid()
        _config_hash_mismatch_warned = False
        logger.debug(
            "HTTP client initialized",
            extra={"config_hash": _client_bind_hash, "pid": _client_bind_pid},
        )
        return _client


def close_http_client() -> None:
    """Close the shared client; safe to call repeatedly."""
    global _client

    with _client_lock:
        if _client is not None:
            try:
                _client.close()
                logger.debug("HTTP client closed")
            finally:
                _client = None


def reset_http_client() -> None:
    """Close the shared client and forget its binding (test isolation only)."""
    global _client_bind_hash, _client_bind_pid, _config_hash_mismatch_warned

    close_http_client()
    _client_bind_hash = None
    _client_bind_pid = None
    _config_hash_mismatch_warned = False


__all__ = [
    "close_http_client",
    "create_http_client",
    "get_http_client",
    "reset_http_client",
]
