# === NAVMAP v1 ===
# {
#   "module": "tests.conftest",
#   "purpose": "Shared pytest fixtures for the SLSTransport suite",
#   "sections": [
#     {"id": "fakeclock", "name": "FakeClock", "anchor": "class-fakeclock", "kind": "class"},
#     {"id": "recordingtransport", "name": "RecordingTransport", "anchor": "class-recordingtransport", "kind": "class"},
#     {"id": "isolate-defaults", "name": "_isolate_defaults", "anchor": "function-isolate-defaults", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""
Pytest Configuration

Shared fixtures: a controllable clock whose ``sleep`` advances time, a
recording ``httpx.MockTransport`` wrapper, and an autouse fixture that drops
the cached process-wide settings, HTTP client and DNS resolver around every
test so environment overrides never leak between tests.
"""

from __future__ import annotations

from typing import Callable, Iterable, List, Union

import httpx
import pytest

from SLSTransport.network.client import reset_http_client
from SLSTransport.network.dns_cache import reset_default_resolver
from SLSTransport.settings import ClientSettings, RetrySettings, reset_default_settings

Responder = Callable[[httpx.Request], httpx.Response]


class FakeClock:
    """Monotonic clock that only moves when told to (or when slept on)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, responses: Union[Responder, Iterable[httpx.Response]]) -> None:
        self.requests: List[httpx.Request] = []
        if callable(responses):
            responder = responses
        else:
            queue = list(responses)

            def responder(request: httpx.Request) -> httpx.Response:
                template = queue.pop(0) if len(queue) > 1 else queue[0]
                return httpx.Response(
                    template.status_code, headers=template.headers, content=template.content
                )

        def _handler(request: httpx.Request) -> httpx.Response:
            request.read()
            self.requests.append(request)
            return responder(request)

        super().__init__(_handler)


def error_response(status: int, code: str = "ServerBusy", *, request_id: str = "req-1") -> httpx.Response:
    return httpx.Response(
        status,
        json={"errorCode": code, "errorMessage": f"{code} happened"},
        headers={"x-log-requestid": request_id},
    )


@pytest.fixture(autouse=True)
def _isolate_defaults(monkeypatch: pytest.MonkeyPatch):
    for name in (
        "SLS_SIGN_VERSION",
        "SLS_REGION",
        "SLS_REQUEST_TIMEOUT",
        "SLS_RETRY_TIMEOUT",
        "SLS_RETRY_ON_SERVER_ERROR",
        "SLS_FORCE_HTTP",
        "SLS_DNS_CACHE_ENABLED",
        "SLS_DNS_CACHE_TTL",
        "SLS_DNS_CACHE_MAX_ENTRIES",
        "SLS_PROXY",
        "SLS_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_default_settings()
    reset_http_client()
    reset_default_resolver()
    yield
    reset_http_client()
    reset_default_resolver()
    reset_default_settings()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> ClientSettings:
    return ClientSettings(retry=RetrySettings(retry_timeout=90.0))


@pytest.fixture
def body_headers() -> dict:
    return {"x-log-bodyrawsize": "0"}


@pytest.fixture
def make_transport() -> Callable[..., RecordingTransport]:
    return RecordingTransport


@pytest.fixture
def make_error_response() -> Callable[..., httpx.Response]:
    return error_response
