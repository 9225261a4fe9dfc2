# === NAVMAP v1 ===
# {
#   "module": "SLSTransport.client",
#   "purpose": "LogClient facade tying endpoint, credentials, settings and HTTP client together",
#   "sections": [
#     {"id": "logclient", "name": "LogClient", "anchor": "class-logclient", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Client facade for the log service.

A :class:`LogClient` owns one settings snapshot, one credentials provider and
one httpx client.  Variations (another timeout, other connection tuning,
another signature version) are derived as new clients; an existing client
never changes configuration underneath in-flight calls.  Only the static
credentials can be swapped in place, under the client's lock.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from typing import Any, Callable, Mapping, Optional

import httpx

from SLSTransport.credentials import (
    Credentials,
    CredentialsProvider,
    StaticCredentialsProvider,
)
from SLSTransport.network.client import create_http_client, get_http_client
from SLSTransport.request import Endpoint, RequestExecutor, SignerFactory
from SLSTransport.settings import (
    ClientSettings,
    HttpSettings,
    SignSettings,
    get_default_settings,
)

logger = logging.getLogger(__name__)


class LogClient:
    """Signed, retrying access to one log service endpoint.

    Args:
        endpoint: ``host``, ``http://host`` or ``https://host``.
        access_key_id: Static key id, used when no provider is given.
        access_key_secret: Static key secret.
        security_token: Optional STS token for the static keys.
        credentials_provider: Provider consulted on every attempt.
        settings: Configuration snapshot; the process default when omitted.
        http_client: Client to reuse; not closed by :meth:`close`.
        transport: httpx transport for a client built here (tests use
            :class:`httpx.MockTransport`).

    Examples:
        >>> client = LogClient("cn-hangzhou.log.aliyuncs.com", "id", "secret")
        >>> client.endpoint.host_for("demo")
        'demo.cn-hangzhou.log.aliyuncs.com'
    """

    def __init__(
        self,
        endpoint: str,
        access_key_id: str = "",
        access_key_secret: str = "",
        security_token: str = "",
        *,
        credentials_provider: Optional[CredentialsProvider] = None,
        settings: Optional[ClientSettings] = None,
        http_client: Optional[httpx.Client] = None,
        transport: Optional[httpx.BaseTransport] = None,
        signer_factory: Optional[SignerFactory] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.endpoint = Endpoint.parse(endpoint)
        self.settings = settings if settings is not None else get_default_settings()
        if credentials_provider is None:
            credentials_provider = StaticCredentialsProvider(
                access_key_id, access_key_secret, security_token
            )
        self._provider = credentials_provider
        self._provider_lock = threading.Lock()

        self._transport = transport
        self._owns_http_client = False
        if http_client is None:
            if transport is None and self.settings == get_default_settings():
                http_client = get_http_client()
            else:
                http_client = create_http_client(self.settings, transport=transport)
                self._owns_http_client = True
        self.http_client = http_client

        self._signer_factory = signer_factory
        self._clock = clock
        self._sleep = sleep
        self._rng = rng
        self._executor = RequestExecutor(
            self.endpoint,
            self,
            http_client,
            self.settings,
            signer_factory=signer_factory,
            clock=clock,
            sleep=sleep,
            rng=rng,
        )

    def __repr__(self) -> str:
        return (
            f"LogClient(endpoint={self.endpoint.host!r}, https={self.endpoint.use_https}, "
            f"sign_version={self.settings.sign.sign_version!r})"
        )

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    @property
    def credentials_provider(self) -> CredentialsProvider:
        with self._provider_lock:
            return self._provider

    def get_credentials(self) -> Credentials:
        return self.credentials_provider.get_credentials()

    def reset_access_key_token(
        self, access_key_id: str, access_key_secret: str, security_token: str = ""
    ) -> None:
        """Replace the credentials with new static keys; later attempts sign with them."""
        provider = StaticCredentialsProvider(access_key_id, access_key_secret, security_token)
        with self._provider_lock:
            self._provider = provider
        logger.debug("static credentials replaced", extra={"host": self.endpoint.host})

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def request(
        self,
        project: str,
        method: str,
        uri: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[bytes] = None,
    ) -> httpx.Response:
        """Send one logical request; see :meth:`RequestExecutor.execute`."""
        return self._executor.execute(project, method, uri, headers, body)

    # ------------------------------------------------------------------
    # Derived clients
    # ------------------------------------------------------------------

    def _derive(self, settings: ClientSettings, *, share_http_client: bool) -> "LogClient":
        endpoint = ("https://" if self.endpoint.use_https else "http://") + self.endpoint.host
        return LogClient(
            endpoint,
            credentials_provider=self.credentials_provider,
            settings=settings,
            http_client=self.http_client if share_http_client else None,
            transport=None if share_http_client else self._transport,
            signer_factory=self._signer_factory,
            clock=self._clock,
            sleep=self._sleep,
            rng=self._rng,
        )

    def with_request_timeout(self, timeout: float) -> "LogClient":
        """Return a client whose per-attempt timeout is ``timeout`` seconds."""
        http = HttpSettings.model_validate(
            {**self.settings.http.model_dump(), "request_timeout": timeout}
        )
        return self._derive(self.settings.with_updates(http=http), share_http_client=True)

    def with_http_settings(self, **changes: Any) -> "LogClient":
        """Return a client with its own connection pool built from modified HTTP settings.

        Examples:
            >>> client = LogClient("example.com", "id", "secret")
            >>> client.with_http_settings(idle_timeout=30.0).settings.http.idle_timeout
            30.0
        """
        http = HttpSettings.model_validate({**self.settings.http.model_dump(), **changes})
        return self._derive(self.settings.with_updates(http=http), share_http_client=False)

    def with_sign_version(self, sign_version: str, region: Optional[str] = None) -> "LogClient":
        sign = SignSettings.model_validate(
            {
                "sign_version": sign_version,
                "region": self.settings.sign.region if region is None else region,
            }
        )
        return self._derive(self.settings.with_updates(sign=sign), share_http_client=True)

    def with_region(self, region: str) -> "LogClient":
        return self.with_sign_version(self.settings.sign.sign_version, region)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the HTTP client when this instance created it."""
        if self._owns_http_client:
            self.http_client.close()

    def __enter__(self) -> "LogClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["LogClient"]
