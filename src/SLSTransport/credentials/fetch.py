"""Credential fetch functions and the bounded-retry decorator around them.

A *fetcher* is a zero-argument callable returning :class:`TemporaryCredentials`
or raising.  HTTP-backed fetchers are assembled from a request builder and a
response parser with :func:`new_credentials_fetcher`; every fetcher used by a
provider is wrapped with :func:`fetcher_with_retry`, which performs a fixed
number of immediate attempts and reports every attempt's failure at once.

Fetches run inside the request attempt that needs the credentials.  The
attempt's cancellation token (:func:`SLSTransport.cancellation.current_token`)
is checked before every fetch, clamps the HTTP timeout, and ends the bounded
retry early once it fires.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_none

from SLSTransport.cancellation import DeadlineExceeded, current_token
from SLSTransport.credentials.models import Credentials, TemporaryCredentials
from SLSTransport.errors import CredentialsError

logger = logging.getLogger(__name__)

CredentialsFetcher = Callable[[], TemporaryCredentials]
RequestBuilder = Callable[[], httpx.Request]
ResponseParser = Callable[[httpx.Response], TemporaryCredentials]

#: Attempts made by :func:`fetcher_with_retry` unless told otherwise.
DEFAULT_FETCH_ATTEMPTS = 3

#: Timeout applied to credential HTTP fetches (seconds).
FETCH_TIMEOUT = 10.0


def new_credentials_fetcher(
    builder: RequestBuilder,
    parser: ResponseParser,
    *,
    client: Optional[httpx.Client] = None,
    timeout: float = FETCH_TIMEOUT,
) -> CredentialsFetcher:
    """Combine ``builder`` and ``parser`` into a fetcher issuing one HTTP call.

    Args:
        builder: Produces the request to send.
        parser: Converts the response into temporary credentials.
        client: Client used for the exchange; a short-lived one is created
            per fetch when omitted.
        timeout: Per-fetch timeout, clamped to the active request deadline.
    """

    def _fetch() -> TemporaryCredentials:
        token = current_token()
        limit = timeout
        if token is not None:
            token.raise_if_cancelled()
            limit = token.bound_timeout(timeout)
        try:
            request = builder()
        except Exception as exc:
            raise CredentialsError(f"fail to build http request: {exc}") from exc
        try:
            if client is not None:
                if token is not None:
                    request.extensions = {
                        **request.extensions,
                        "timeout": httpx.Timeout(limit).as_dict(),
                    }
                response = client.send(request)
            else:
                with httpx.Client(timeout=limit, trust_env=False) as ephemeral:
                    response = ephemeral.send(request)
        except httpx.HTTPError as exc:
            raise CredentialsError(f"fail to do http request: {exc}") from exc
        try:
            return parser(response)
        except CredentialsError:
            raise
        except Exception as exc:
            raise CredentialsError(f"fail to parse http response: {exc}") from exc
        finally:
            response.close()

    return _fetch


def fetcher_with_retry(
    fetcher: CredentialsFetcher, max_attempts: int = DEFAULT_FETCH_ATTEMPTS
) -> CredentialsFetcher:
    """Wrap ``fetcher`` so it is tried up to ``max_attempts`` times back to back.

    No further attempt starts once the active request token has fired.

    Raises:
        CredentialsError: When every attempt failed or the deadline cut the
            retries short; ``attempt_errors`` holds each failure in order.
    """
    attempts = max(1, max_attempts)

    def _fetch() -> TemporaryCredentials:
        errors: List[BaseException] = []
        token = current_token()

        def _attempt() -> TemporaryCredentials:
            try:
                if token is not None:
                    token.raise_if_cancelled()
                return fetcher()
            except Exception as exc:
                errors.append(exc)
                raise

        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_none(),
            retry=retry_if_exception(lambda exc: not isinstance(exc, DeadlineExceeded)),
            reraise=True,
        )
        try:
            return retrying(_attempt)
        except Exception as exc:
            raise CredentialsError("exceed max retry times", attempt_errors=errors) from exc

    return _fetch


# ============================================================================
# Instance metadata (ECS RAM role)
# ============================================================================

ECS_RAM_ROLE_URL_PREFIX = "http://100.100.100.200/latest/meta-data/ram/security-credentials/"
ECS_RAM_ROLE_RETRY_TIMES = 3


class EcsRamRoleResponse(BaseModel):
    """JSON document served by the instance metadata endpoint."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    code: str = Field(default="", alias="Code")
    access_key_id: str = Field(default="", alias="AccessKeyId")
    access_key_secret: str = Field(default="", alias="AccessKeySecret")
    security_token: str = Field(default="", alias="SecurityToken")
    expiration: int = Field(default=0, alias="Expiration", description="Unix millis")
    last_updated: int = Field(default=0, alias="LastUpdated", description="Unix millis")

    def is_valid(self) -> bool:
        return (
            self.code.lower() == "success"
            and bool(self.access_key_id)
            and bool(self.access_key_secret)
            and self.expiration > 0
            and self.last_updated > 0
        )

    def to_temporary_credentials(self) -> TemporaryCredentials:
        return TemporaryCredentials(
            credentials=Credentials(
                access_key_id=self.access_key_id,
                access_key_secret=self.access_key_secret,
                security_token=self.security_token,
            ),
            expiration=self.expiration / 1000.0,
            last_updated=self.last_updated / 1000.0,
        )


def ecs_ram_role_request_builder(url_prefix: str, ram_role: str) -> RequestBuilder:
    """Return a builder for ``GET <url_prefix><ram_role>``."""

    def _build() -> httpx.Request:
        return httpx.Request("GET", url_prefix + ram_role)

    return _build


def ecs_ram_role_parser(response: httpx.Response) -> TemporaryCredentials:
    """Convert an instance metadata response into temporary credentials."""
    body = response.read()
    try:
        payload = EcsRamRoleResponse.model_validate_json(body)
    except ValidationError as exc:
        raise CredentialsError(
            f"fail to unmarshal json: {exc.error_count()} error(s), "
            f"status: {response.status_code}, body length: {len(body)}"
        ) from exc
    if not payload.is_valid():
        # The body holds the secret; report the status fields only.
        raise CredentialsError(
            f"invalid fetch result, status: {response.status_code}, code: {payload.code!r}"
        )
    try:
        return payload.to_temporary_credentials()
    except ValueError as exc:
        raise CredentialsError(f"invalid fetch result: {exc}") from exc


__all__ = [
    "DEFAULT_FETCH_ATTEMPTS",
    "ECS_RAM_ROLE_RETRY_TIMES",
    "ECS_RAM_ROLE_URL_PREFIX",
    "CredentialsFetcher",
    "EcsRamRoleResponse",
    "ecs_ram_role_parser",
    "ecs_ram_role_request_builder",
    "fetcher_with_retry",
    "new_credentials_fetcher",
]
