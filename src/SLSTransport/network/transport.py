# === NAVMAP v1 ===
# {
#   "module": "SLSTransport.network.transport",
#   "purpose": "httpx transport whose dialer resolves hosts through the DNS cache",
#   "sections": [
#     {"id": "dnscachingbackend", "name": "DnsCachingBackend", "anchor": "class-dnscachingbackend", "kind": "class"},
#     {"id": "create-ssl-context", "name": "create_ssl_context", "anchor": "function-create-ssl-context", "kind": "function"},
#     {"id": "build-transport", "name": "build_transport", "anchor": "function-build-transport", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Connection-level transport for the log service client.

The dialer asks :class:`~SLSTransport.network.dns_cache.DnsCachedResolver` for
the host's addresses and tries them in order, falling back to dialing the
hostname itself when the cache is empty or every cached address fails.  TLS
still negotiates against the original hostname, so certificates and SNI are
unaffected by which address was dialed.  Lookups and dials run under the
cancellation token of the attempt in progress (see
:func:`SLSTransport.cancellation.token_scope`); a fired token stops the dialer
before its next blocking step.
"""

from __future__ import annotations

import logging
import ssl
from typing import Iterable, Optional

import certifi
import httpcore
import httpx

from SLSTransport.cancellation import DeadlineExceeded, current_token
from SLSTransport.network.dns_cache import DnsCachedResolver, is_ip_literal
from SLSTransport.settings import HttpSettings

logger = logging.getLogger(__name__)


class DnsCachingBackend(httpcore.SyncBackend):
    """httpcore network backend dialing cached addresses first."""

    def __init__(self, resolver: DnsCachedResolver) -> None:
        self.resolver = resolver

    def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        socket_options: Optional[Iterable[httpcore.SOCKET_OPTION]] = None,
    ) -> httpcore.NetworkStream:
        if is_ip_literal(host):
            return super().connect_tcp(host, port, timeout, local_address, socket_options)

        token = current_token()
        try:
            addresses = self.resolver.get(host, token)
        except DeadlineExceeded:
            raise
        except OSError as exc:
            logger.debug("dns cache lookup failed", extra={"host": host, "error": str(exc)})
            addresses = []

        for address in addresses:
            if token is not None:
                token.raise_if_cancelled()
            try:
                return super().connect_tcp(address, port, timeout, local_address, socket_options)
            except (httpcore.ConnectError, httpcore.ConnectTimeout) as exc:
                logger.debug(
                    "dial cached address failed",
                    extra={"host": host, "address": address, "error": str(exc)},
                )

        if token is not None:
            token.raise_if_cancelled()
        return super().connect_tcp(host, port, timeout, local_address, socket_options)


def create_ssl_context() -> ssl.SSLContext:
    """TLS context verifying against the certifi bundle."""
    ctx = ssl.create_default_context(cafile=certifi.where())
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED
    return ctx


def _limits(http: HttpSettings) -> httpx.Limits:
    keepalive = 0 if http.disable_keep_alives else http.max_keepalive_connections
    return httpx.Limits(
        max_connections=http.max_connections,
        max_keepalive_connections=keepalive,
        keepalive_expiry=http.idle_timeout,
    )


def build_transport(
    http: HttpSettings,
    *,
    resolver: Optional[DnsCachedResolver] = None,
    ssl_context: Optional[ssl.SSLContext] = None,
) -> httpx.HTTPTransport:
    """Create the transport used by one log client.

    Args:
        http: Connection tuning.
        resolver: DNS cache to dial through; plain system resolution when ``None``.
        ssl_context: TLS context; :func:`create_ssl_context` when omitted.

    Returns:
        An :class:`httpx.HTTPTransport` without connect retries (the request
        executor owns retrying).
    """
    ctx = ssl_context or create_ssl_context()
    limits = _limits(http)
    transport = httpx.HTTPTransport(verify=ctx, limits=limits, proxy=http.proxy, retries=0)

    if resolver is not None and http.proxy is None:
        # httpx exposes no network_backend knob; swap the pool for one that dials through the cache.
        transport._pool = httpcore.ConnectionPool(
            ssl_context=ctx,
            max_connections=limits.max_connections,
            max_keepalive_connections=limits.max_keepalive_connections,
            keepalive_expiry=limits.keepalive_expiry,
            http1=True,
            http2=False,
            retries=0,
            network_backend=DnsCachingBackend(resolver),
        )
        logger.debug("transport dialing through dns cache", extra={"ttl": resolver.ttl})

    return transport


__all__ = ["DnsCachingBackend", "build_transport", "create_ssl_context"]
