"""Credentials providers.

Every provider offers one capability, :meth:`get_credentials`, returning the
:class:`Credentials` to sign the next request with.  Three variants exist:

- :class:`StaticCredentialsProvider` - fixed long-lived keys.
- :class:`UpdateFuncCredentialsProvider` - wraps a caller-supplied refresh
  callback and refreshes a fixed duration before expiry.
- :class:`EcsRamRoleCredentialsProvider` - fetches STS tokens from the
  instance metadata endpoint and refreshes proportionally to token lifetime.

Refreshing providers keep the cached value behind a :class:`ReadWriteLock`.
Concurrent callers that all decide to refresh each fetch independently; the
last successful fetch wins.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol, Tuple, Union

import httpx

from SLSTransport.concurrency import ReadWriteLock
from SLSTransport.credentials.fetch import (
    DEFAULT_FETCH_ATTEMPTS,
    ECS_RAM_ROLE_RETRY_TIMES,
    ECS_RAM_ROLE_URL_PREFIX,
    CredentialsFetcher,
    ecs_ram_role_parser,
    ecs_ram_role_request_builder,
    fetcher_with_retry,
    new_credentials_fetcher,
)
from SLSTransport.credentials.models import (
    DEFAULT_EXPIRED_FACTOR,
    Credentials,
    TemporaryCredentials,
)
from SLSTransport.errors import CredentialsError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

#: ``(access_key_id, access_key_secret, security_token, expiration)``
UpdateTokenResult = Tuple[str, str, str, Union[datetime, float]]
UpdateTokenFunction = Callable[[], UpdateTokenResult]

UPDATE_FUNC_RETRY_TIMES = DEFAULT_FETCH_ATTEMPTS
UPDATE_FUNC_FETCH_ADVANCED_SECONDS = 10 * 60.0


def _format_ts(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class CredentialsProvider(Protocol):
    """Anything able to hand out credentials for the next request."""

    def get_credentials(self) -> Credentials:
        """Return current credentials or raise :class:`CredentialsError`."""


class StaticCredentialsProvider:
    """Always returns the same long-lived credentials."""

    def __init__(
        self, access_key_id: str, access_key_secret: str, security_token: str = ""
    ) -> None:
        self._credentials = Credentials(access_key_id, access_key_secret, security_token)

    def get_credentials(self) -> Credentials:
        return self._credentials


def _expiration_seconds(expiration: Union[datetime, float, int]) -> float:
    if isinstance(expiration, datetime):
        if expiration.tzinfo is None:
            expiration = expiration.replace(tzinfo=timezone.utc)
        return expiration.timestamp()
    return float(expiration)


def update_func_fetcher(update_func: UpdateTokenFunction) -> CredentialsFetcher:
    """Adapt an :data:`UpdateTokenFunction` into a validating fetcher."""

    def _fetch() -> TemporaryCredentials:
        try:
            access_key_id, access_key_secret, security_token, expiration = update_func()
        except Exception as exc:
            raise CredentialsError(f"updateTokenFunc fetch credentials failed: {exc}") from exc
        expires_at = _expiration_seconds(expiration)
        if not access_key_id or not access_key_secret or expires_at <= 0:
            raise CredentialsError(
                "updateTokenFunc result not valid, "
                f"expirationTime: {_format_ts(max(expires_at, 0.0))}"
            )
        return TemporaryCredentials(
            credentials=Credentials(access_key_id, access_key_secret, security_token or ""),
            expiration=expires_at,
        )

    return _fetch


class UpdateFuncCredentialsProvider:
    """Adapter turning a refresh callback into a :class:`CredentialsProvider`.

    Cached credentials are served without calling ``update_func`` until the
    cache is within ``advance_seconds`` of expiry.  A refresh runs the callback
    up to ``max_attempts`` times; if all fail, the call fails unless the cached
    credentials are still within their absolute expiry.
    """

    def __init__(
        self,
        update_func: UpdateTokenFunction,
        *,
        max_attempts: int = UPDATE_FUNC_RETRY_TIMES,
        advance_seconds: float = UPDATE_FUNC_FETCH_ADVANCED_SECONDS,
        clock: Clock = time.time,
    ) -> None:
        self._fetcher = fetcher_with_retry(update_func_fetcher(update_func), max_attempts)
        self._advance_seconds = advance_seconds
        self._clock = clock
        self._lock = ReadWriteLock()
        self._cached: Optional[TemporaryCredentials] = None

    def _should_refresh(self, cached: Optional[TemporaryCredentials], now: float) -> bool:
        if cached is None:
            return True
        return cached.expiration - now <= self._advance_seconds

    def get_credentials(self) -> Credentials:
        with self._lock.read_locked():
            cached = self._cached
        now = self._clock()
        if not self._should_refresh(cached, now):
            return cached.credentials  # type: ignore[union-attr]

        logger.debug("updateTokenFunc start to fetch new credentials")
        try:
            fresh = self._fetcher()
        except CredentialsError as exc:
            if cached is not None and not cached.has_expired(now):
                logger.warning(
                    "updateTokenFunc fetch credentials failed, cached credentials still valid",
                    extra={"expiration": _format_ts(cached.expiration), "error": str(exc)},
                )
                return cached.credentials
            raise CredentialsError(f"updateTokenFunc fail to fetch credentials: {exc}") from exc

        with self._lock.write_locked():
            self._cached = fresh
        logger.debug(
            "updateTokenFunc fetch new credentials succeed",
            extra={"expiration": _format_ts(fresh.expiration)},
        )
        return fresh.credentials


class EcsRamRoleCredentialsProvider:
    """STS credentials of the RAM role attached to the current ECS instance."""

    def __init__(
        self,
        ram_role: str,
        *,
        url_prefix: str = ECS_RAM_ROLE_URL_PREFIX,
        max_attempts: int = ECS_RAM_ROLE_RETRY_TIMES,
        expired_factor: float = DEFAULT_EXPIRED_FACTOR,
        http_client: Optional[httpx.Client] = None,
        fetcher: Optional[CredentialsFetcher] = None,
        clock: Clock = time.time,
    ) -> None:
        self.ram_role = ram_role
        self.url_prefix = url_prefix
        if fetcher is None:
            fetcher = new_credentials_fetcher(
                ecs_ram_role_request_builder(url_prefix, ram_role),
                ecs_ram_role_parser,
                client=http_client,
            )
        self._fetcher = fetcher_with_retry(fetcher, max_attempts)
        self._expired_factor = expired_factor
        self._clock = clock
        self._lock = ReadWriteLock()
        self._cached: Optional[TemporaryCredentials] = None

    def get_credentials(self) -> Credentials:
        with self._lock.read_locked():
            cached = self._cached
        now = self._clock()
        if cached is not None and not cached.should_refresh(now):
            return cached.credentials

        logger.debug("ecsRamRole start to fetch new credentials", extra={"ram_role": self.ram_role})
        try:
            fresh = self._fetcher().with_expired_factor(self._expired_factor)
        except CredentialsError as exc:
            if cached is not None and not cached.has_expired(now):
                logger.warning(
                    "ecsRamRole fetch credentials failed, credentials still valid, use it",
                    extra={"expiration": _format_ts(cached.expiration), "error": str(exc)},
                )
                return cached.credentials
            raise CredentialsError(f"ecsRamRole fetch credentials: {exc}") from exc

        with self._lock.write_locked():
            self._cached = fresh
        logger.debug(
            "ecsRamRole fetch new credentials succeed",
            extra={
                "expiration": _format_ts(fresh.expiration),
                "last_updated": _format_ts(fresh.last_updated or now),
            },
        )
        return fresh.credentials


__all__ = [
    "UPDATE_FUNC_FETCH_ADVANCED_SECONDS",
    "UPDATE_FUNC_RETRY_TIMES",
    "CredentialsProvider",
    "EcsRamRoleCredentialsProvider",
    "StaticCredentialsProvider",
    "UpdateFuncCredentialsProvider",
    "UpdateTokenFunction",
    "update_func_fetcher",
]
