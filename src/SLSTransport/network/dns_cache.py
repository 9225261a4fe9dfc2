# === NAVMAP v1 ===
# {
#   "module": "SLSTransport.network.dns_cache",
#   "purpose": "TTL cache of hostname resolutions consulted by the connection dialer",
#   "sections": [
#     {"id": "dnscachedresolver", "name": "DnsCachedResolver", "anchor": "class-dnscachedresolver", "kind": "class"},
#     {"id": "system-lookup", "name": "system_lookup", "anchor": "function-system-lookup", "kind": "function"},
#     {"id": "get-default-resolver", "name": "get_default_resolver", "anchor": "function-get-default-resolver", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Hostname resolution cache.

Maps a hostname to the addresses it resolved to plus the time of that
resolution.  Lookups inside the TTL window are served from memory under the
shared lock; misses resolve outside any lock and insert under the exclusive
lock.  When an insert pushes the map past ``max_entries`` a sweep drops every
entry older than the TTL and, if every entry is still fresh, the oldest
resolutions until the bound holds again.  There is no background timer.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from SLSTransport.cancellation import CancellationToken
from SLSTransport.concurrency import ReadWriteLock
from SLSTransport.network.policy import (
    DNS_CACHE_MAX_ENTRIES,
    DNS_CACHE_MIN_SWEEP_SECONDS,
    DNS_CACHE_TTL_SECONDS,
)

logger = logging.getLogger(__name__)

Lookup = Callable[[str], List[str]]
Clock = Callable[[], float]


def system_lookup(host: str) -> List[str]:
    """Resolve ``host`` with the system resolver, preserving address order."""
    infos = socket.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    addresses: List[str] = []
    for _family, _type, _proto, _canonname, sockaddr in infos:
        address = str(sockaddr[0])
        if address not in addresses:
            addresses.append(address)
    return addresses


def is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return True


@dataclass(frozen=True)
class _IpInfo:
    addresses: Tuple[str, ...]
    refresh_time: float


class DnsCachedResolver:
    """Thread-safe TTL cache in front of a lookup function.

    Args:
        ttl: Seconds a resolution stays fresh.
        max_entries: Size that triggers an expiry sweep after an insert.
        lookup: Resolution function; the system resolver by default.
        clock: Monotonic time source.

    Examples:
        >>> resolver = DnsCachedResolver(lookup=lambda host: ["127.0.0.1"])
        >>> resolver.get("localhost")
        ['127.0.0.1']
        >>> resolver.cache_size()
        1
    """

    def __init__(
        self,
        ttl: float = DNS_CACHE_TTL_SECONDS,
        max_entries: int = DNS_CACHE_MAX_ENTRIES,
        *,
        lookup: Lookup = system_lookup,
        clock: Clock = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self._lookup_fn = lookup
        self._clock = clock
        self._lock = ReadWriteLock()
        self._cache: "OrderedDict[str, _IpInfo]" = OrderedDict()

    def get(self, host: str, token: Optional[CancellationToken] = None) -> List[str]:
        """Return addresses for ``host``, resolving when absent or stale.

        Raises:
            OSError: When the lookup itself fails (``socket.gaierror``).
            DeadlineExceeded: When ``token`` fired before a lookup was needed.
        """
        key = host.lower()
        with self._lock.read_locked():
            info = self._cache.get(key)
        if info is not None and self._clock() - info.refresh_time < self.ttl:
            return list(info.addresses)
        if token is not None:
            token.raise_if_cancelled()
        return self._lookup(key)

    def _lookup(self, host: str) -> List[str]:
        addresses = self._lookup_fn(host)
        if not addresses:
            return []
        info = _IpInfo(tuple(addresses), self._clock())
        with self._lock.write_locked():
            self._cache[host] = info
            self._cache.move_to_end(host)
            size = len(self._cache)
        logger.debug("dns cache refreshed", extra={"host": host, "addresses": len(addresses)})
        if size > self.max_entries:
            self.delete_expired(0)
        return list(addresses)

    def cache_size(self) -> int:
        with self._lock.read_locked():
            return len(self._cache)

    def clear(self) -> None:
        with self._lock.write_locked():
            self._cache.clear()

    def delete_expired(self, expire_seconds: float = 0) -> int:
        """Drop entries older than ``expire_seconds`` (the TTL when below one minute).

        Also evicts the oldest resolutions while the cache exceeds
        ``max_entries``.  Returns the number of entries removed.
        """
        threshold = self.ttl
        if expire_seconds >= DNS_CACHE_MIN_SWEEP_SECONDS:
            threshold = float(expire_seconds)
        now = self._clock()
        with self._lock.write_locked():
            before = len(self._cache)
            stale = [host for host, info in self._cache.items() if now - info.refresh_time >= threshold]
            for host in stale:
                del self._cache[host]
            while len(self._cache) > self.max_entries:
                self._cache.popitem(last=False)
            removed = before - len(self._cache)
        if removed:
            logger.debug("dns cache sweep", extra={"removed": removed, "threshold": threshold})
        return removed


# ============================================================================
# Process-wide default resolver
# ============================================================================

_default_resolver: Optional[DnsCachedResolver] = None
_default_resolver_lock = threading.Lock()


def get_default_resolver() -> DnsCachedResolver:
    """Return the shared resolver configured from the default settings."""
    global _default_resolver

    if _default_resolver is not None:
        return _default_resolver
    with _default_resolver_lock:
        if _default_resolver is None:
            from SLSTransport.settings import get_default_settings

            dns = get_default_settings().dns_cache
            _default_resolver = DnsCachedResolver(ttl=dns.ttl_seconds, max_entries=dns.max_entries)
        return _default_resolver


def reset_default_resolver() -> None:
    """Forget the shared resolver (test isolation only)."""
    global _default_resolver

    with _default_resolver_lock:
        _default_resolver = None


__all__ = [
    "DnsCachedResolver",
    "get_default_resolver",
    "is_ip_literal",
    "reset_default_resolver",
    "system_lookup",
]
