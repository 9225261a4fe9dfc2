from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timezone
from urllib.parse import quote, unquote, urlencode

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from SLSTransport.errors import SignerError
from SLSTransport.signer.v4 import (
    EMPTY_STRING_SHA256,
    SignerV4,
    build_canonical_query,
    build_canonical_request,
    url_encode,
)

ACCESS_KEY_ID = "acId"
ACCESS_KEY_SECRET = "acKeySecret"
REGION = "cn-hangzhou"
FIXED_NOW = datetime(2022, 6, 1, 12, 30, 45, tzinfo=timezone.utc)


def _signer() -> SignerV4:
    return SignerV4(ACCESS_KEY_ID, ACCESS_KEY_SECRET, REGION, clock=lambda: FIXED_NOW)


def _hmac(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode(), hashlib.sha256).digest()


def test_get_without_body_signs_expected_canonical_request() -> None:
    headers = {"Host": "demo.cn-hangzhou.log.aliyuncs.com", "x-log-bodyrawsize": "0"}
    _signer().sign("GET", "/logstores/app?offset=0&type=log", headers, None)

    assert headers["x-log-content-sha256"] == EMPTY_STRING_SHA256
    assert headers["x-log-date"] == "20220601T123045Z"
    assert headers["Content-Length"] == "0"

    canonical_request = (
        "GET\n"
        "/logstores/app\n"
        "offset=0&type=log\n"
        "host:demo.cn-hangzhou.log.aliyuncs.com\n"
        "x-log-bodyrawsize:0\n"
        f"x-log-content-sha256:{EMPTY_STRING_SHA256}\n"
        "x-log-date:20220601T123045Z\n"
        "\n"
        "host;x-log-bodyrawsize;x-log-content-sha256;x-log-date\n"
        f"{EMPTY_STRING_SHA256}"
    )
    scope = f"20220601/{REGION}/sls/aliyun_v4_request"
    string_to_sign = (
        "SLS4-HMAC-SHA256\n20220601T123045Z\n"
        f"{scope}\n{hashlib.sha256(canonical_request.encode()).hexdigest()}"
    )
    key = _hmac(("aliyun_v4" + ACCESS_KEY_SECRET).encode(), "20220601")
    for part in (REGION, "sls", "aliyun_v4_request"):
        key = _hmac(key, part)
    signature = hmac.new(key, string_to_sign.encode(), hashlib.sha256).hexdigest()

    assert headers["Authorization"] == (
        f"SLS4-HMAC-SHA256 Credential={ACCESS_KEY_ID}/{scope},"
        "SignedHeaders=host;x-log-bodyrawsize;x-log-content-sha256;x-log-date,"
        f"Signature={signature}"
    )


def test_body_hash_and_content_length() -> None:
    body = b"hello world"
    headers = {"Content-Type": "application/x-protobuf", "x-log-bodyrawsize": "11"}
    _signer().sign("POST", "/logstores/app/shards/lb", headers, body)

    assert headers["x-log-content-sha256"] == hashlib.sha256(body).hexdigest()
    assert headers["Content-Length"] == "11"
    assert "content-type;" in headers["Authorization"]


def test_empty_content_type_defaults_to_json() -> None:
    headers = {"Content-Type": "", "x-log-bodyrawsize": "0"}
    _signer().sign("POST", "/logstores", headers, b"{}")
    assert headers["Content-Type"] == "application/json"


def test_log_date_header_overrides_clock() -> None:
    headers = {"x-log-date": "20200101T000000Z", "x-log-bodyrawsize": "0"}
    _signer().sign("GET", "/logstores", headers, None)
    assert headers["x-log-date"] == "20200101T000000Z"
    assert "Credential=acId/20200101/cn-hangzhou/sls/aliyun_v4_request" in headers["Authorization"]


def test_empty_region_fails_without_touching_headers() -> None:
    headers = {"x-log-bodyrawsize": "0"}
    with pytest.raises(SignerError):
        SignerV4(ACCESS_KEY_ID, ACCESS_KEY_SECRET, "").sign("GET", "/logstores", headers, None)
    assert headers == {"x-log-bodyrawsize": "0"}


def test_url_encode_reserved_characters() -> None:
    assert url_encode("a+b c*d") == "a%2Bb%20c%2Ad"
    assert url_encode("/logstores/a b", ignore_slash=True) == "/logstores/a%20b"
    assert url_encode("a/b") == "a%2Fb"
    assert url_encode("AZaz09-_.~") == "AZaz09-_.~"


def test_canonical_query_sorts_and_drops_equals_for_empty_values() -> None:
    assert build_canonical_query({"b": "2", "a": "", "c": "x y"}) == "a&b=2&c=x%20y"


def test_canonical_request_preserves_path_slashes() -> None:
    request = build_canonical_request("GET", "/a b/c*d", {}, {}, "", EMPTY_STRING_SHA256)
    assert request.splitlines()[1] == "/a%20b/c%2Ad"


_token_text = st.text(
    alphabet=st.characters(blacklist_categories=("Cs", "Cc"), blacklist_characters="\x00"),
    max_size=20,
)


@settings(max_examples=50, deadline=None)
@given(value=_token_text)
def test_url_encode_output_is_stable_under_reencoding_of_unreserved(value: str) -> None:
    encoded = url_encode(value)
    assert " " not in encoded
    assert "+" not in encoded
    assert "*" not in encoded
    # Only unreserved characters and escapes survive, so decoding then re-encoding is a fixed point.
    assert url_encode(unquote(encoded)) == encoded


@settings(max_examples=50, deadline=None)
@given(
    segments=st.lists(
        st.text(alphabet="abcXYZ019-_.~ *+", min_size=1, max_size=8), min_size=1, max_size=4
    ),
    params=st.dictionaries(
        st.text(alphabet="abcdef", min_size=1, max_size=5),
        st.text(alphabet="abc019 *+", max_size=6),
        max_size=4,
    ),
)
def test_signing_is_deterministic(segments: list, params: dict) -> None:
    path = "/" + "/".join(quote(segment, safe="") for segment in segments)
    uri = path + ("?" + urlencode(params) if params else "")

    first = {"x-log-bodyrawsize": "0", "Host": "example.com"}
    second = dict(first)
    _signer().sign("GET", uri, first, None)
    _signer().sign("GET", uri, second, None)
    assert first["Authorization"] == second["Authorization"]
