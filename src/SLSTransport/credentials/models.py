"""Credential value types.

:class:`Credentials` is the long-lived access key pair (plus optional STS
token).  :class:`TemporaryCredentials` adds the expiry bookkeeping used by
refreshing providers.  Both are frozen: a refresh replaces the whole value.
"""

from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_EXPIRED_FACTOR = 0.8

#: Refresh unconditionally once a token is this close to its absolute expiry.
REFRESH_BEFORE_EXPIRY_SECONDS = 120.0


@dataclass(frozen=True)
class Credentials:
    """Access key id/secret with an optional security token."""

    access_key_id: str
    access_key_secret: str = field(repr=False)
    security_token: str = field(default="", repr=False)

    def is_valid(self) -> bool:
        return bool(self.access_key_id) and bool(self.access_key_secret)


@dataclass(frozen=True)
class TemporaryCredentials:
    """Credentials that expire.

    ``expiration`` and ``last_updated`` are POSIX timestamps in seconds.
    ``last_updated`` may be ``None`` when the source does not report it, in
    which case only the absolute-expiry rule applies.
    """

    credentials: Credentials
    expiration: float
    last_updated: Optional[float] = None
    expired_factor: float = DEFAULT_EXPIRED_FACTOR

    def __post_init__(self) -> None:
        if self.last_updated is not None and self.expiration <= self.last_updated:
            raise ValueError("expiration must be later than last_updated")

    def with_expired_factor(self, factor: float) -> "TemporaryCredentials":
        """Return a copy using ``factor``; values outside ``(0, 1]`` are ignored.

        The smaller the factor, the earlier in a token's lifetime it is
        refreshed; ``1.0`` refreshes only near absolute expiry.
        """
        if 0.0 < factor <= 1.0:
            return dataclasses.replace(self, expired_factor=factor)
        return self

    def should_refresh(self, now: Optional[float] = None) -> bool:
        """True when expired, about to expire, or past ``expired_factor`` of its lifetime."""
        now = time.time() if now is None else now
        if now + REFRESH_BEFORE_EXPIRY_SECONDS > self.expiration:
            return True
        if self.last_updated is None:
            return False
        budget = max(0.0, (self.expiration - self.last_updated) * self.expired_factor)
        return now - self.last_updated > budget

    def has_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now > self.expiration


__all__ = [
    "DEFAULT_EXPIRED_FACTOR",
    "REFRESH_BEFORE_EXPIRY_SECONDS",
    "Credentials",
    "TemporaryCredentials",
]
