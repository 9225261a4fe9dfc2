from __future__ import annotations

import hashlib
import logging
from typing import List

import httpx
import pytest

from SLSTransport.cancellation import CancellationToken
from SLSTransport.credentials import EcsRamRoleCredentialsProvider
from SLSTransport.client import LogClient
from SLSTransport.credentials import Credentials
from SLSTransport.errors import (
    BadResponseError,
    ClientError,
    CredentialsError,
    RemoteServiceError,
    SignerError,
)
from SLSTransport.request import Endpoint, parse_error_response, prepare_headers
from SLSTransport.settings import ClientSettings, RetrySettings, SignSettings

ENDPOINT = "https://cn-hangzhou.log.aliyuncs.com"


def _client(transport, fake_clock, settings: ClientSettings = None, **kwargs) -> LogClient:
    return LogClient(
        ENDPOINT,
        kwargs.pop("access_key_id", "mockAccessKeyID"),
        kwargs.pop("access_key_secret", "mockAccessKeySecret"),
        kwargs.pop("security_token", ""),
        settings=settings or ClientSettings(),
        transport=transport,
        clock=fake_clock,
        sleep=fake_clock.sleep,
        rng=lambda: 0.5,
        **kwargs,
    )


# --- Endpoint -----------------------------------------------------------------


@pytest.mark.parametrize(
    "raw, host, https",
    [
        ("https://cn-hangzhou.log.aliyuncs.com", "cn-hangzhou.log.aliyuncs.com", True),
        ("http://cn-hangzhou.log.aliyuncs.com", "cn-hangzhou.log.aliyuncs.com", False),
        ("cn-hangzhou.log.aliyuncs.com/", "cn-hangzhou.log.aliyuncs.com", False),
        ("localhost:8080", "localhost:8080", False),
    ],
)
def test_endpoint_parse(raw: str, host: str, https: bool) -> None:
    endpoint = Endpoint.parse(raw)
    assert endpoint.host == host
    assert endpoint.use_https is https


def test_endpoint_urls() -> None:
    endpoint = Endpoint.parse(ENDPOINT)
    assert endpoint.url_for("demo", "/logstores") == (
        "https://demo.cn-hangzhou.log.aliyuncs.com/logstores"
    )
    assert endpoint.url_for("", "/", force_http=True) == "http://cn-hangzhou.log.aliyuncs.com/"


def test_empty_endpoint_rejected() -> None:
    with pytest.raises(ClientError):
        Endpoint.parse("https://")


# --- Header preparation -------------------------------------------------------


def test_prepare_headers_sets_pipeline_headers_and_respects_precedence() -> None:
    caller = {"x-log-bodyrawsize": "0", "X-Custom": "caller"}
    prepared = prepare_headers(
        caller,
        host="demo.example.com",
        user_agent="agent/1",
        credentials=Credentials("id", "secret", "sts"),
        common_headers={"x-custom": "common", "x-extra": "common", "user-agent": "other"},
    )

    assert prepared["Host"] == "demo.example.com"
    assert prepared["x-log-apiversion"] == "0.6.0"
    assert prepared["x-log-signaturemethod"] == "hmac-sha256"
    assert prepared["User-Agent"] == "agent/1"
    assert prepared["x-acs-security-token"] == "sts"
    assert prepared["X-Custom"] == "caller"
    assert prepared["x-extra"] == "common"
    assert "x-custom" not in prepared
    assert "user-agent" not in prepared
    assert caller == {"x-log-bodyrawsize": "0", "X-Custom": "caller"}


def test_prepare_headers_omits_empty_token() -> None:
    prepared = prepare_headers(
        {}, host="h", user_agent="u", credentials=Credentials("id", "secret")
    )
    assert "x-acs-security-token" not in prepared


def test_prepare_headers_normalises_caller_spellings() -> None:
    prepared = prepare_headers(
        {
            "x-log-bodyrawsize": "2",
            "content-type": "application/json",
            "date": "Sat, 17 Oct 2026 08:00:00 GMT",
            "host": "caller.example.com",
            "user-agent": "caller/1",
            "X-Acs-Security-Token": "stale",
        },
        host="demo.example.com",
        user_agent="agent/1",
        credentials=Credentials("id", "secret", "sts"),
    )

    assert prepared["Content-Type"] == "application/json"
    assert prepared["Date"] == "Sat, 17 Oct 2026 08:00:00 GMT"
    assert prepared["Host"] == "demo.example.com"
    assert prepared["User-Agent"] == "agent/1"
    assert prepared["x-acs-security-token"] == "sts"
    lowered = [key.lower() for key in prepared]
    assert len(lowered) == len(set(lowered))


# --- Error parsing ------------------------------------------------------------


def test_parse_error_response_builds_remote_error() -> None:
    response = httpx.Response(
        403,
        json={"errorCode": "Unauthorized", "errorMessage": "denied"},
        headers={"x-log-requestid": "abc"},
    )
    error = parse_error_response(response)
    assert isinstance(error, RemoteServiceError)
    assert (error.http_code, error.code, error.message, error.request_id) == (
        403,
        "Unauthorized",
        "denied",
        "abc",
    )


def test_parse_error_response_unparsable_body() -> None:
    response = httpx.Response(502, text="<html>bad gateway</html>", headers={"x-log-requestid": "r"})
    error = parse_error_response(response)
    assert isinstance(error, BadResponseError)
    assert error.http_code == 502
    assert error.body == "<html>bad gateway</html>"
    assert error.headers["x-log-requestid"] == "r"
    assert error.request_id == "r"


# --- Executor -----------------------------------------------------------------


def test_successful_get_is_signed_and_routed(make_transport, fake_clock, body_headers) -> None:
    transport = make_transport([httpx.Response(200, json={"logstores": []})])
    client = _client(transport, fake_clock, security_token="sts-token")

    response = client.request("demo", "GET", "/logstores?offset=0", body_headers)

    assert response.status_code == 200
    assert response.json() == {"logstores": []}
    request = transport.requests[0]
    assert str(request.url) == "https://demo.cn-hangzhou.log.aliyuncs.com/logstores?offset=0"
    assert request.headers["Host"] == "demo.cn-hangzhou.log.aliyuncs.com"
    assert request.headers["x-log-apiversion"] == "0.6.0"
    assert request.headers["x-acs-security-token"] == "sts-token"
    assert request.headers["Authorization"].startswith("SLS mockAccessKeyID:")
    assert request.headers["User-Agent"].startswith("sls-transport-python/")
    assert body_headers == {"x-log-bodyrawsize": "0"}


def test_force_http_downgrades_scheme(make_transport, fake_clock, body_headers) -> None:
    transport = make_transport([httpx.Response(200)])
    client = _client(transport, fake_clock, ClientSettings(force_http=True))
    client.request("", "GET", "/", body_headers)
    assert transport.requests[0].url.scheme == "http"


def test_post_with_body_carries_payload(make_transport, fake_clock) -> None:
    transport = make_transport([httpx.Response(200)])
    client = _client(transport, fake_clock)
    body = b'{"name": "app"}'
    client.request(
        "demo",
        "POST",
        "/logstores",
        {"x-log-bodyrawsize": str(len(body)), "Content-Type": "application/json"},
        body,
    )
    request = transport.requests[0]
    assert request.content == body
    assert request.headers["Content-MD5"] == hashlib.md5(body).hexdigest().upper()


def test_v4_signing_selected_by_settings(make_transport, fake_clock, body_headers) -> None:
    transport = make_transport([httpx.Response(200)])
    settings = ClientSettings(sign=SignSettings(sign_version="v4", region="cn-hangzhou"))
    _client(transport, fake_clock, settings).request("demo", "GET", "/logstores", body_headers)
    headers = transport.requests[0].headers
    assert headers["Authorization"].startswith("SLS4-HMAC-SHA256 Credential=mockAccessKeyID/")
    assert "x-log-content-sha256" in headers


def test_v4_without_region_fails_before_sending(make_transport, fake_clock, body_headers) -> None:
    transport = make_transport([httpx.Response(200)])
    settings = ClientSettings(sign=SignSettings(sign_version="v4"))
    with pytest.raises(SignerError):
        _client(transport, fake_clock, settings).request("demo", "GET", "/", body_headers)
    assert transport.requests == []


def test_missing_body_raw_size_is_client_error(make_transport, fake_clock) -> None:
    transport = make_transport([httpx.Response(200)])
    with pytest.raises(ClientError, match="x-log-bodyrawsize"):
        _client(transport, fake_clock).request("demo", "GET", "/logstores", {})
    assert transport.requests == []


def test_body_without_content_type_is_client_error(make_transport, fake_clock, body_headers) -> None:
    transport = make_transport([httpx.Response(200)])
    with pytest.raises(ClientError, match="Content-Type"):
        _client(transport, fake_clock).request("demo", "POST", "/logstores", body_headers, b"{}")
    assert transport.requests == []


def test_get_503_retries_until_deadline(
    make_transport, make_error_response, fake_clock, body_headers
) -> None:
    transport = make_transport([make_error_response(503, request_id="last-503")])
    client = _client(transport, fake_clock)

    with pytest.raises(RemoteServiceError) as excinfo:
        client.request("demo", "GET", "/logstores", body_headers)

    assert excinfo.value.http_code == 503
    assert excinfo.value.request_id == "last-503"
    assert len(transport.requests) >= 5
    assert sum(fake_clock.sleeps) == pytest.approx(90.0)


@pytest.mark.parametrize("retry_on_server_error", [True, False])
def test_404_never_retried(
    make_transport, make_error_response, fake_clock, body_headers, retry_on_server_error: bool
) -> None:
    transport = make_transport([make_error_response(404, "ProjectNotExist")])
    settings = ClientSettings(retry=RetrySettings(retry_on_server_error=retry_on_server_error))

    with pytest.raises(RemoteServiceError) as excinfo:
        _client(transport, fake_clock, settings).request("demo", "GET", "/", body_headers)

    assert excinfo.value.code == "ProjectNotExist"
    assert len(transport.requests) == 1
    assert fake_clock.sleeps == []


def test_write_retries_502_then_succeeds(
    make_transport, make_error_response, fake_clock, body_headers
) -> None:
    transport = make_transport([make_error_response(502), make_error_response(500), httpx.Response(200)])
    response = _client(transport, fake_clock).request("demo", "PUT", "/logstores/app", body_headers)
    assert response.status_code == 200
    assert len(transport.requests) == 3


def test_write_does_not_retry_504(make_transport, make_error_response, fake_clock, body_headers) -> None:
    transport = make_transport([make_error_response(504), httpx.Response(200)])
    with pytest.raises(RemoteServiceError):
        _client(transport, fake_clock).request("demo", "DELETE", "/logstores/app", body_headers)
    assert len(transport.requests) == 1


def test_server_error_retry_can_be_disabled(
    make_transport, make_error_response, fake_clock, body_headers
) -> None:
    transport = make_transport([make_error_response(503), httpx.Response(200)])
    settings = ClientSettings(retry=RetrySettings(retry_on_server_error=False))
    with pytest.raises(RemoteServiceError):
        _client(transport, fake_clock, settings).request("demo", "GET", "/", body_headers)
    assert len(transport.requests) == 1


def test_transport_error_is_retried(make_transport, fake_clock, body_headers) -> None:
    outcomes: List[object] = ["fail", httpx.Response(200)]

    def responder(request: httpx.Request) -> httpx.Response:
        item = outcomes.pop(0)
        if item == "fail":
            raise httpx.ConnectError("connection refused", request=request)
        return item

    transport = make_transport(responder)
    settings = ClientSettings(retry=RetrySettings(retry_on_server_error=False))
    response = _client(transport, fake_clock, settings).request("demo", "POST", "/x", body_headers)
    assert response.status_code == 200
    assert len(transport.requests) == 2


def test_bad_response_carries_status(make_transport, fake_clock, body_headers) -> None:
    transport = make_transport([httpx.Response(400, text="not json", headers={"x-log-requestid": "q"})])
    with pytest.raises(BadResponseError) as excinfo:
        _client(transport, fake_clock).request("demo", "GET", "/", body_headers)
    assert excinfo.value.http_code == 400
    assert excinfo.value.request_id == "q"


def test_each_attempt_signs_with_current_credentials(
    make_transport, make_error_response, fake_clock, body_headers
) -> None:
    class RotatingProvider:
        def __init__(self) -> None:
            self.calls = 0

        def get_credentials(self) -> Credentials:
            self.calls += 1
            return Credentials(f"id-{self.calls}", "secret")

    provider = RotatingProvider()
    transport = make_transport([make_error_response(503), httpx.Response(200)])
    client = _client(transport, fake_clock, credentials_provider=provider)
    client.request("demo", "GET", "/", body_headers)

    assert provider.calls == 2
    assert transport.requests[0].headers["Authorization"].startswith("SLS id-1:")
    assert transport.requests[1].headers["Authorization"].startswith("SLS id-2:")


def test_credentials_error_is_terminal(make_transport, fake_clock, body_headers) -> None:
    class BrokenProvider:
        calls = 0

        def get_credentials(self) -> Credentials:
            BrokenProvider.calls += 1
            raise CredentialsError("no token")

    transport = make_transport([httpx.Response(200)])
    with pytest.raises(CredentialsError):
        _client(transport, fake_clock, credentials_provider=BrokenProvider()).request(
            "demo", "GET", "/", body_headers
        )
    assert BrokenProvider.calls == 1
    assert transport.requests == []


def test_attempt_timeout_is_bounded_by_deadline(make_transport, fake_clock, body_headers) -> None:
    transport = make_transport([httpx.Response(200)])
    client = _client(transport, fake_clock)
    token = CancellationToken(30, clock=fake_clock)

    client._executor.execute("demo", "GET", "/", body_headers, token=token)

    timeout = transport.requests[0].extensions["timeout"]
    assert timeout["read"] == pytest.approx(30)
    assert timeout["connect"] == pytest.approx(5)


def test_debug_dump_masks_secrets(
    make_transport, fake_clock, body_headers, caplog: pytest.LogCaptureFixture
) -> None:
    transport = make_transport([httpx.Response(200)])
    client = _client(transport, fake_clock, security_token="sts-secret-token")
    with caplog.at_level(logging.DEBUG, logger="SLSTransport"):
        client.request("demo", "GET", "/", body_headers)

    dumps = [record for record in caplog.records if record.getMessage() == "HTTP Request"]
    assert dumps
    dumped_headers = dumps[0].extra_fields["headers"]
    assert dumped_headers["authorization"] == "***masked***"
    assert dumped_headers["x-acs-security-token"] == "***masked***"
    assert "sts-secret-token" not in caplog.text


def test_lowercase_content_type_signed_as_sent(make_transport, fake_clock) -> None:
    transport = make_transport([httpx.Response(200), httpx.Response(200)])
    client = _client(transport, fake_clock)
    body = b"{}"
    date = "Sat, 17 Oct 2026 08:00:00 GMT"
    client.request(
        "demo",
        "POST",
        "/logstores",
        {"x-log-bodyrawsize": "2", "content-type": "application/json", "date": date},
        body,
    )
    client.request(
        "demo",
        "POST",
        "/logstores",
        {"x-log-bodyrawsize": "2", "Content-Type": "application/json", "Date": date},
        body,
    )

    lowercase, canonical = transport.requests
    assert lowercase.headers.get_list("content-type") == ["application/json"]
    assert lowercase.headers.get_list("date") == [date]
    assert lowercase.headers["Authorization"] == canonical.headers["Authorization"]


def test_caller_host_and_user_agent_not_duplicated(make_transport, fake_clock) -> None:
    transport = make_transport([httpx.Response(200)])
    headers = {"x-log-bodyrawsize": "0", "host": "elsewhere.example.com", "user-agent": "mine/1"}
    _client(transport, fake_clock).request("demo", "GET", "/logstores", headers)

    sent = transport.requests[0].headers
    assert sent.get_list("host") == ["demo.cn-hangzhou.log.aliyuncs.com"]
    assert len(sent.get_list("user-agent")) == 1
    assert sent["user-agent"].startswith("sls-transport-python/")


def test_unencodable_header_value_is_client_error(make_transport, fake_clock) -> None:
    transport = make_transport([httpx.Response(200)])
    headers = {"x-log-bodyrawsize": "0", "x-log-topic": "日志"}
    with pytest.raises(ClientError, match="invalid request headers"):
        _client(transport, fake_clock).request("demo", "GET", "/logstores", headers)
    assert transport.requests == []
    assert fake_clock.sleeps == []


@pytest.mark.parametrize("method", ["GET", "POST"])
def test_request_rejected_by_protocol_layer_is_not_retried(
    make_transport, fake_clock, body_headers, method: str
) -> None:
    def responder(request: httpx.Request) -> httpx.Response:
        raise httpx.LocalProtocolError("Illegal header value b'a\\r\\nb'")

    transport = make_transport(responder)
    with pytest.raises(ClientError, match="rejected before sending"):
        _client(transport, fake_clock).request(
            "demo", method, "/logstores", {**body_headers, "x-log-topic": "a\r\nb"}
        )
    assert len(transport.requests) == 1
    assert fake_clock.sleeps == []


def test_proxy_error_is_not_retried(make_transport, fake_clock, body_headers) -> None:
    def responder(request: httpx.Request) -> httpx.Response:
        raise httpx.ProxyError("407 Proxy Authentication Required", request=request)

    transport = make_transport(responder)
    with pytest.raises(httpx.ProxyError):
        _client(transport, fake_clock).request("demo", "GET", "/logstores", body_headers)
    assert len(transport.requests) == 1


def test_hanging_credential_fetch_ends_at_call_deadline(
    make_transport, fake_clock, body_headers
) -> None:
    read_timeouts: List[float] = []

    def metadata(request: httpx.Request) -> httpx.Response:
        read_timeouts.append(request.extensions["timeout"]["read"])
        fake_clock.advance(request.extensions["timeout"]["read"])
        raise httpx.ReadTimeout("timed out", request=request)

    provider = EcsRamRoleCredentialsProvider(
        "role", http_client=httpx.Client(transport=httpx.MockTransport(metadata))
    )
    transport = make_transport([httpx.Response(200)])
    client = _client(transport, fake_clock, credentials_provider=provider)
    started = fake_clock()

    with pytest.raises(CredentialsError):
        client._executor.execute(
            "demo", "GET", "/", body_headers, token=CancellationToken(1.0, clock=fake_clock)
        )
    assert read_timeouts == [pytest.approx(1.0)]
    assert fake_clock() - started == pytest.approx(1.0)
    assert transport.requests == []
