# === NAVMAP v1 ===
# {
#   "module": "SLSTransport.request",
#   "purpose": "Endpoint handling, header preparation and the retrying request executor",
#   "sections": [
#     {"id": "endpoint", "name": "Endpoint", "anchor": "class-endpoint", "kind": "class"},
#     {"id": "validate-preconditions", "name": "validate_preconditions", "anchor": "function-validate-preconditions", "kind": "function"},
#     {"id": "prepare-headers", "name": "prepare_headers", "anchor": "function-prepare-headers", "kind": "function"},
#     {"id": "parse-error-response", "name": "parse_error_response", "anchor": "function-parse-error-response", "kind": "function"},
#     {"id": "retrystate", "name": "RetryState", "anchor": "class-retrystate", "kind": "class"},
#     {"id": "requestexecutor", "name": "RequestExecutor", "anchor": "class-requestexecutor", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Request execution against the log service.

One logical call runs as ``Init -> Attempting -> {Success, Retrying, Failed}``:

1. The caller's headers are checked once for the protocol preconditions
   (``x-log-bodyrawsize`` always, ``Content-Type`` whenever a body is sent).
2. Every attempt starts from a fresh copy of those headers, fetches current
   credentials, adds the pipeline headers, signs, and sends with a timeout
   clamped to what is left of the call deadline.
3. A non-200 answer becomes :class:`RemoteServiceError` when its body is an
   error document and :class:`BadResponseError` otherwise, both tagged with
   the ``x-log-requestid`` header.
4. The Tenacity policy from :mod:`SLSTransport.network.retry` decides whether
   to try again; on a terminal error or deadline exhaustion the last error is
   raised unchanged.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from SLSTransport.cancellation import CancellationToken, DeadlineExceeded, token_scope
from SLSTransport.credentials import Credentials, CredentialsProvider
from SLSTransport.errors import (
    BadResponseError,
    ClientError,
    RemoteServiceError,
    SLSTransportError,
)
from SLSTransport.logging_config import mask_headers
from SLSTransport.network.policy import (
    API_VERSION,
    HEADER_API_VERSION,
    HEADER_BODY_RAW_SIZE,
    HEADER_CONTENT_MD5,
    HEADER_CONTENT_TYPE,
    HEADER_DATE,
    HEADER_HOST,
    HEADER_SECURITY_TOKEN,
    HEADER_SIGNATURE_METHOD,
    HEADER_USER_AGENT,
    REQUEST_ID_HEADER,
    SIGNATURE_METHOD,
)
from SLSTransport.network.retry import create_request_retry_policy
from SLSTransport.settings import ClientSettings
from SLSTransport.signer import Signer, get_signer

logger = logging.getLogger(__name__)

SignerFactory = Callable[[Credentials], Signer]

_HTTPS_PREFIX = "https://"
_HTTP_PREFIX = "http://"


# ============================================================================
# Endpoint
# ============================================================================


@dataclass(frozen=True)
class Endpoint:
    """Service endpoint with its scheme preference split off.

    Examples:
        >>> Endpoint.parse("https://cn-hangzhou.log.aliyuncs.com").host_for("demo")
        'demo.cn-hangzhou.log.aliyuncs.com'
    """

    host: str
    use_https: bool = False

    @classmethod
    def parse(cls, endpoint: str) -> "Endpoint":
        value = endpoint.strip()
        if value.startswith(_HTTPS_PREFIX):
            host, use_https = value[len(_HTTPS_PREFIX) :], True
        elif value.startswith(_HTTP_PREFIX):
            host, use_https = value[len(_HTTP_PREFIX) :], False
        else:
            host, use_https = value, False
        host = host.rstrip("/")
        if not host:
            raise ClientError(f"invalid endpoint {endpoint!r}")
        return cls(host=host, use_https=use_https)

    def host_for(self, project: str) -> str:
        """Host name of ``project``; the bare endpoint when ``project`` is empty."""
        if not project:
            return self.host
        return f"{project}.{self.host}"

    def scheme(self, force_http: bool = False) -> str:
        return "https" if self.use_https and not force_http else "http"

    def url_for(self, project: str, uri: str, *, force_http: bool = False) -> str:
        return f"{self.scheme(force_http)}://{self.host_for(project)}{uri}"


# ============================================================================
# Header Preparation
# ============================================================================


_SIGNED_BY_NAME = (HEADER_CONTENT_TYPE, HEADER_CONTENT_MD5, HEADER_DATE)
_PIPELINE_OWNED = (HEADER_HOST, HEADER_API_VERSION, HEADER_SIGNATURE_METHOD, HEADER_USER_AGENT)


def _has_header(headers: Mapping[str, str], name: str) -> bool:
    lower = name.lower()
    return any(key.lower() == lower for key in headers)


def _pop_header(headers: Dict[str, str], name: str) -> Optional[str]:
    """Remove every spelling of ``name``; return the last value removed."""
    lower = name.lower()
    value = None
    for key in [key for key in headers if key.lower() == lower]:
        value = headers.pop(key)
    return value


def validate_preconditions(headers: Mapping[str, str], body: Optional[bytes]) -> None:
    """Reject requests missing the headers the service requires.

    Raises:
        ClientError: ``x-log-bodyrawsize`` is absent, or a body is given
            without ``Content-Type``.
    """
    if not _has_header(headers, HEADER_BODY_RAW_SIZE):
        raise ClientError(f"Can't find '{HEADER_BODY_RAW_SIZE}' header")
    if body is not None and not _has_header(headers, HEADER_CONTENT_TYPE):
        raise ClientError(f"can't find '{HEADER_CONTENT_TYPE}' header")


def prepare_headers(
    headers: Mapping[str, str],
    *,
    host: str,
    user_agent: str,
    credentials: Credentials,
    common_headers: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Return a new header dict with the pipeline headers set.

    Headers the signers read by name (``Content-Type``, ``Content-MD5``,
    ``Date``) are renamed to that spelling, so the signed value is the one
    sent.  Caller spellings of pipeline-owned headers are dropped.  Common
    headers fill in only names that neither the caller nor the pipeline set.
    """
    prepared = dict(headers)
    for name in _SIGNED_BY_NAME:
        value = _pop_header(prepared, name)
        if value is not None:
            prepared[name] = value
    for name in _PIPELINE_OWNED:
        _pop_header(prepared, name)

    prepared[HEADER_HOST] = host
    prepared[HEADER_API_VERSION] = API_VERSION
    prepared[HEADER_SIGNATURE_METHOD] = SIGNATURE_METHOD
    prepared[HEADER_USER_AGENT] = user_agent
    if credentials.security_token:
        _pop_header(prepared, HEADER_SECURITY_TOKEN)
        prepared[HEADER_SECURITY_TOKEN] = credentials.security_token

    if common_headers:
        taken = {key.lower() for key in prepared}
        for key, value in common_headers.items():
            if key.lower() not in taken:
                prepared[key] = value
    return prepared


# ============================================================================
# Response Handling
# ============================================================================


class ErrorDocument(BaseModel):
    """JSON error body returned with non-200 responses."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    code: str = Field(default="", alias="errorCode")
    message: str = Field(default="", alias="errorMessage")


def get_request_id(response: httpx.Response) -> str:
    return response.headers.get(REQUEST_ID_HEADER, "")


def parse_error_response(response: httpx.Response) -> SLSTransportError:
    """Convert a non-200 response into the matching error; closes ``response``."""
    request_id = get_request_id(response)
    headers = dict(response.headers)
    try:
        body = response.read()
    except httpx.HTTPError as exc:
        return BadResponseError(
            str(exc), http_code=response.status_code, headers=headers, request_id=request_id
        )
    finally:
        response.close()

    try:
        document = ErrorDocument.model_validate_json(body)
    except ValidationError:
        return BadResponseError(
            body.decode("utf-8", errors="replace"),
            http_code=response.status_code,
            headers=headers,
            request_id=request_id,
        )
    return RemoteServiceError(
        document.message,
        http_code=response.status_code,
        code=document.code,
        request_id=request_id,
    )


# ============================================================================
# Executor
# ============================================================================


@dataclass
class RetryState:
    """Progress of one logical call."""

    method: str
    uri: str
    attempts: int = 0
    started: float = 0.0
    last_error: Optional[BaseException] = field(default=None, repr=False)


class RequestExecutor:
    """Runs signed requests against one endpoint with deadline-bounded retries.

    Args:
        endpoint: Parsed service endpoint.
        provider: Source of credentials, consulted once per attempt.
        http_client: Client used for every exchange.
        settings: Snapshot providing timeouts, retry tuning and signing choice.
        signer_factory: Builds the signer for an attempt's credentials.
        clock: Monotonic clock for the call deadline.
        sleep: Backoff sleep function.
        rng: Jitter source.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        provider: CredentialsProvider,
        http_client: httpx.Client,
        settings: ClientSettings,
        *,
        signer_factory: Optional[SignerFactory] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.endpoint = endpoint
        self.provider = provider
        self.http_client = http_client
        self.settings = settings
        self._signer_factory = signer_factory or self._default_signer
        self._clock = clock
        self._sleep = sleep
        self._rng = rng

    def _default_signer(self, credentials: Credentials) -> Signer:
        sign = self.settings.sign
        return get_signer(
            credentials.access_key_id,
            credentials.access_key_secret,
            sign.sign_version,
            sign.region,
        )

    def _timeout(self, token: CancellationToken) -> httpx.Timeout:
        http = self.settings.http
        total = token.bound_timeout(http.request_timeout)
        connect = http.connect_timeout if total is None else min(http.connect_timeout, total)
        return httpx.Timeout(total, connect=connect)

    def send_once(
        self,
        project: str,
        method: str,
        uri: str,
        headers: Mapping[str, str],
        body: Optional[bytes],
        token: CancellationToken,
    ) -> httpx.Response:
        """Perform one signed exchange; the returned response body is already read."""
        validate_preconditions(headers, body)

        token.raise_if_cancelled()
        with token_scope(token):
            credentials = self.provider.get_credentials()

        host = self.endpoint.host_for(project)
        prepared = prepare_headers(
            headers,
            host=host,
            user_agent=self.settings.http.user_agent,
            credentials=credentials,
            common_headers=self.settings.common_headers,
        )
        self._signer_factory(credentials).sign(method, uri, prepared, body)

        url = self.endpoint.url_for(project, uri, force_http=self.settings.force_http)
        try:
            request = self.http_client.build_request(
                method, url, headers=prepared, content=body, timeout=self._timeout(token)
            )
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise ClientError(f"invalid request url: {exc}") from exc
        except ValueError as exc:
            # Header values that cannot be encoded for the wire.
            raise ClientError(f"invalid request headers: {exc}") from exc

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "HTTP Request",
                extra={
                    "method": method,
                    "uri": uri,
                    "host": host,
                    "extra_fields": {
                        "headers": mask_headers(dict(request.headers)),
                        "body_size": 0 if body is None else len(body),
                    },
                },
            )

        token.raise_if_cancelled()
        try:
            with token_scope(token):
                response = self.http_client.send(request, stream=True)
        except (httpx.LocalProtocolError, httpx.UnsupportedProtocol) as exc:
            raise ClientError(f"request rejected before sending: {exc}") from exc
        if response.status_code != 200:
            raise parse_error_response(response)

        try:
            response.read()
        finally:
            response.close()
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "HTTP Response",
                extra={
                    "method": method,
                    "uri": uri,
                    "status": response.status_code,
                    "request_id": get_request_id(response),
                    "extra_fields": {"headers": mask_headers(dict(response.headers))},
                },
            )
        return response

    def execute(
        self,
        project: str,
        method: str,
        uri: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[bytes] = None,
        *,
        token: Optional[CancellationToken] = None,
    ) -> httpx.Response:
        """Run one logical call with retries until success, a terminal error or the deadline.

        Args:
            project: Project name, prefixed to the endpoint host when non-empty.
            method: HTTP method; GET selects the read retry classification.
            uri: Path plus optional query string.
            headers: Caller headers; never mutated.
            body: Request payload.
            token: Cancellation token; one bounded by ``retry_timeout`` is created when omitted.

        Raises:
            ClientError: Local precondition failure.
            CredentialsError: No usable credentials.
            RemoteServiceError | BadResponseError: Service error, after retries.
            httpx.TransportError: Network failure, after retries.
        """
        method = method.upper()
        caller_headers = dict(headers or {})
        validate_preconditions(caller_headers, body)

        if token is None:
            token = CancellationToken(self.settings.retry.retry_timeout, clock=self._clock)
        state = RetryState(method=method, uri=uri, started=self._clock())
        policy = create_request_retry_policy(
            method, self.settings.retry, token, sleep=self._sleep, rng=self._rng
        )

        def _attempt() -> httpx.Response:
            if token.is_cancelled() and state.last_error is not None:
                raise state.last_error
            state.attempts += 1
            try:
                return self.send_once(project, method, uri, caller_headers, body, token)
            except DeadlineExceeded:
                if state.last_error is not None:
                    raise state.last_error
                raise
            except Exception as exc:
                state.last_error = exc
                logger.debug(
                    "request attempt failed",
                    extra={
                        "method": method,
                        "uri": uri,
                        "attempt": state.attempts,
                        "request_id": getattr(exc, "request_id", ""),
                        "extra_fields": {"error": type(exc).__name__},
                    },
                )
                raise

        response = policy(_attempt)
        logger.debug(
            "request succeeded",
            extra={
                "method": method,
                "uri": uri,
                "attempt": state.attempts,
                "status": response.status_code,
                "request_id": get_request_id(response),
                "extra_fields": {"elapsed": round(self._clock() - state.started, 3)},
            },
        )
        return response


__all__ = [
    "Endpoint",
    "ErrorDocument",
    "RequestExecutor",
    "RetryState",
    "SignerFactory",
    "get_request_id",
    "parse_error_response",
    "prepare_headers",
    "validate_preconditions",
]
