"""Network layer: httpx client factory, DNS cache, transport and retry policy.

Public API:
    - create_http_client: build a client from one settings snapshot
    - get_http_client / close_http_client / reset_http_client: shared client lifecycle
    - DnsCachedResolver: TTL cache of hostname resolutions
    - create_request_retry_policy: Tenacity policy for one logical request
"""

from SLSTransport.network.client import (
    close_http_client,
    create_http_client,
    get_http_client,
    reset_http_client,
)
from SLSTransport.network.dns_cache import (
    DnsCachedResolver,
    get_default_resolver,
    reset_default_resolver,
)
from SLSTransport.network.retry import (
    create_request_retry_policy,
    retry_read_error_check,
    retry_write_error_check,
    select_error_classifier,
)
from SLSTransport.network.transport import DnsCachingBackend, build_transport

__all__ = [
    "DnsCachedResolver",
    "DnsCachingBackend",
    "build_transport",
    "close_http_client",
    "create_http_client",
    "create_request_retry_policy",
    "get_default_resolver",
    "get_http_client",
    "reset_default_resolver",
    "reset_http_client",
    "retry_read_error_check",
    "retry_write_error_check",
    "select_error_classifier",
]
