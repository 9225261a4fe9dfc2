# === NAVMAP v1 ===
# {
#   "module": "SLSTransport.network.retry",
#   "purpose": "Tenacity retry policy for signed log service requests",
#   "sections": [
#     {"id": "retry-read-error-check", "name": "retry_read_error_check", "anchor": "function-retry-read-error-check", "kind": "function"},
#     {"id": "retry-write-error-check", "name": "retry_write_error_check", "anchor": "function-retry-write-error-check", "kind": "function"},
#     {"id": "select-error-classifier", "name": "select_error_classifier", "anchor": "function-select-error-classifier", "kind": "function"},
#     {"id": "wait-backoff-within-deadline", "name": "wait_backoff_within_deadline", "anchor": "class-wait-backoff-within-deadline", "kind": "class"},
#     {"id": "stop-when-cancelled", "name": "stop_when_cancelled", "anchor": "class-stop-when-cancelled", "kind": "class"},
#     {"id": "create-request-retry-policy", "name": "create_request_retry_policy", "anchor": "function-create-request-retry-policy", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Retry policy for signed log service requests.

Retry strategy:
- **Classification**: picked once per call from the HTTP method.  Reads (GET)
  retry transport errors and any 5xx; writes retry transport errors and only
  500/502/503.  Server-error retries can be switched off; transport errors are
  always retried.
- **Backoff**: exponential with +/-50% jitter, starting at ``initial_interval``
  and capped at ``max_interval``, never sleeping past the call deadline.
- **Deadline**: owned by the :class:`CancellationToken`; once it fires no new
  attempt is scheduled and the last error is re-raised unchanged.

Example:
    >>> from SLSTransport.cancellation import CancellationToken
    >>> from SLSTransport.settings import RetrySettings
    >>> policy = create_request_retry_policy("GET", RetrySettings(), CancellationToken(90))
    >>> policy(lambda: "ok")
    'ok'
"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable

import httpx
from tenacity import RetryCallState, Retrying, before_sleep_log, retry_if_exception
from tenacity.stop import stop_base
from tenacity.wait import wait_base

from SLSTransport.cancellation import CancellationToken
from SLSTransport.errors import BadResponseError, RemoteServiceError
from SLSTransport.network.policy import READ_RETRY_STATUSES, WRITE_RETRY_STATUSES
from SLSTransport.settings import RetrySettings

logger = logging.getLogger(__name__)

#: ``(error, retry_on_server_error) -> retryable``
ErrorClassifier = Callable[[BaseException, bool], bool]

#: Relative jitter applied to each backoff interval
RANDOMIZATION_FACTOR = 0.5


# ============================================================================
# Error Classification
# ============================================================================


def _status_of(exc: BaseException) -> int:
    if isinstance(exc, (RemoteServiceError, BadResponseError)):
        return exc.http_code
    return 0


#: Transport errors caused by the request or the client setup, not the network
_LOCAL_TRANSPORT_ERRORS = (httpx.LocalProtocolError, httpx.UnsupportedProtocol, httpx.ProxyError)


def _is_network_failure(exc: BaseException) -> bool:
    return isinstance(exc, httpx.TransportError) and not isinstance(exc, _LOCAL_TRANSPORT_ERRORS)


def retry_read_error_check(exc: BaseException, retry_on_server_error: bool) -> bool:
    """Retryability of an error raised by a read (GET) call."""
    if _is_network_failure(exc):
        return True
    return retry_on_server_error and _status_of(exc) in READ_RETRY_STATUSES


def retry_write_error_check(exc: BaseException, retry_on_server_error: bool) -> bool:
    """Retryability of an error raised by a write call."""
    if _is_network_failure(exc):
        return True
    return retry_on_server_error and _status_of(exc) in WRITE_RETRY_STATUSES


def select_error_classifier(method: str) -> ErrorClassifier:
    if method.upper() == "GET":
        return retry_read_error_check
    return retry_write_error_check


# ============================================================================
# Tenacity Strategies
# ============================================================================


class wait_backoff_within_deadline(wait_base):
    """Jittered exponential backoff clamped to the time the token has left."""

    def __init__(
        self,
        token: CancellationToken,
        *,
        initial: float,
        maximum: float,
        multiplier: float,
        randomization: float = RANDOMIZATION_FACTOR,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.token = token
        self.initial = initial
        self.maximum = maximum
        self.multiplier = multiplier
        self.randomization = randomization
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        exponent = max(0, retry_state.attempt_number - 1)
        interval = min(self.initial * self.multiplier**exponent, self.maximum)
        delay = interval * (1.0 + self.randomization * (2.0 * self.rng() - 1.0))
        remaining = self.token.remaining()
        if remaining is not None:
            delay = min(delay, remaining)
        return max(0.0, delay)


class stop_when_cancelled(stop_base):
    """Stop once the call's token is cancelled or past its deadline."""

    def __init__(self, token: CancellationToken) -> None:
        self.token = token

    def __call__(self, retry_state: RetryCallState) -> bool:
        return self.token.is_cancelled()


def create_request_retry_policy(
    method: str,
    settings: RetrySettings,
    token: CancellationToken,
    *,
    sleep: Callable[[float], None] = time.sleep,
    rng: Callable[[], float] = random.random,
) -> Retrying:
    """Create the Tenacity policy driving one logical request.

    Args:
        method: HTTP method; selects the read or write classification.
        settings: Backoff tuning and the retry-on-server-error switch.
        token: Deadline of the whole call.
        sleep: Sleep function (tests inject one that advances a fake clock).
        rng: Uniform ``[0, 1)`` source for jitter.

    Returns:
        A :class:`tenacity.Retrying` that re-raises the last error verbatim.
    """
    classify = select_error_classifier(method)
    retry_on_server_error = settings.retry_on_server_error

    def _should_retry(exc: BaseException) -> bool:
        return not token.is_cancelled() and classify(exc, retry_on_server_error)

    return Retrying(
        stop=stop_when_cancelled(token),
        wait=wait_backoff_within_deadline(
            token,
            initial=settings.initial_interval,
            maximum=settings.max_interval,
            multiplier=settings.multiplier,
            rng=rng,
        ),
        retry=retry_if_exception(_should_retry),
        sleep=sleep,
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


__all__ = [
    "ErrorClassifier",
    "create_request_retry_policy",
    "retry_read_error_check",
    "retry_write_error_check",
    "select_error_classifier",
    "stop_when_cancelled",
    "wait_backoff_within_deadline",
]
