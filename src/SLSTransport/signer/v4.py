"""Canonical-request signature scheme (``SLS4-HMAC-SHA256``).

The signature covers the method, the encoded path, the sorted query, a
canonical subset of headers and the payload hash, scoped to
``<date>/<region>/sls/aliyun_v4_request``.  The signing key is derived by
chaining HMAC-SHA256 over the date, region, product and terminator tokens,
so a leaked signing key is only useful for one region on one day.
"""

from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timezone
from typing import Callable, Dict, List, MutableMapping, Optional, Tuple
from urllib.parse import quote_plus

from SLSTransport.errors import SignerError
from SLSTransport.signer.uri import first_values, split_uri

EMPTY_STRING_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

ALGORITHM = "SLS4-HMAC-SHA256"
PRODUCT = "sls"
TERMINATOR = "aliyun_v4_request"
SECRET_KEY_PREFIX = "aliyun_v4"

HEADER_AUTHORIZATION = "Authorization"
HEADER_CONTENT_TYPE = "Content-Type"
HEADER_CONTENT_LENGTH = "Content-Length"
HEADER_CONTENT_SHA256 = "x-log-content-sha256"
HEADER_LOG_DATE = "x-log-date"

DEFAULT_CONTENT_TYPE = "application/json"

#: Lowercase header names always included in the canonical header set.
DEFAULT_SIGNED_HEADERS = frozenset({"host", "content-type"})
SIGNED_HEADER_PREFIXES = ("x-log-", "x-acs-")

_DATE_LEN = len("20060102")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def url_encode(value: str, ignore_slash: bool = False) -> str:
    """Percent-encode ``value`` for canonicalization.

    Spaces become ``%20`` and ``*`` becomes ``%2A``; with ``ignore_slash`` the
    path separator is kept literal.

    Examples:
        >>> url_encode("a b*c/d")
        'a%20b%2Ac%2Fd'
        >>> url_encode("/logstores/my store", ignore_slash=True)
        '/logstores/my%20store'
    """
    encoded = quote_plus(value, safe="")
    encoded = encoded.replace("+", "%20").replace("*", "%2A")
    if ignore_slash:
        encoded = encoded.replace("%2F", "/")
    return encoded


def _hmac_sha256(message: bytes, key: bytes) -> bytes:
    return hmac.new(key, message, hashlib.sha256).digest()


def build_canonical_headers(headers: MutableMapping[str, str]) -> Dict[str, str]:
    canonical: Dict[str, str] = {}
    for key, value in headers.items():
        lower = key.lower()
        if lower in DEFAULT_SIGNED_HEADERS or lower.startswith(SIGNED_HEADER_PREFIXES):
            canonical[lower] = value
    return canonical


def build_signed_header_str(canonical_headers: Dict[str, str]) -> str:
    return ";".join(sorted(canonical_headers))


def build_canonical_query(params: Dict[str, str]) -> str:
    encoded: Dict[str, str] = {}
    for key, value in params.items():
        encoded[url_encode(key.strip())] = url_encode(value.strip())
    parts: List[str] = []
    for key in sorted(encoded):
        value = encoded[key]
        parts.append(f"{key}={value}" if value else key)
    return "&".join(parts)


def build_canonical_request(
    method: str,
    path: str,
    params: Dict[str, str],
    canonical_headers: Dict[str, str],
    signed_header_str: str,
    sha256_payload: str,
) -> str:
    header_block = "".join(
        f"{key}:{canonical_headers[key].strip()}\n" for key in sorted(canonical_headers)
    )
    return (
        f"{method}\n"
        f"{url_encode(path, ignore_slash=True)}\n"
        f"{build_canonical_query(params)}\n"
        f"{header_block}\n"
        f"{signed_header_str}\n"
        f"{sha256_payload}"
    )


def build_scope(date: str, region: str) -> str:
    return f"{date}/{region}/{PRODUCT}/{TERMINATOR}"


def build_string_to_sign(canonical_request: str, date_time: str, scope: str) -> str:
    digest = hashlib.sha256(canonical_request.encode("utf-8")).hexdigest()
    return f"{ALGORITHM}\n{date_time}\n{scope}\n{digest}"


def build_signing_key(access_key_secret: str, region: str, date: str) -> bytes:
    secret = (SECRET_KEY_PREFIX + access_key_secret).encode("utf-8")
    key = _hmac_sha256(date.encode("utf-8"), secret)
    key = _hmac_sha256(region.encode("utf-8"), key)
    key = _hmac_sha256(PRODUCT.encode("utf-8"), key)
    return _hmac_sha256(TERMINATOR.encode("utf-8"), key)


def build_authorization(
    access_key_id: str, signed_header_str: str, signature: str, scope: str
) -> str:
    return (
        f"{ALGORITHM} Credential={access_key_id}/{scope},"
        f"SignedHeaders={signed_header_str},Signature={signature}"
    )


class SignerV4:
    """Scoped canonical-request signer; needs a non-empty region."""

    def __init__(
        self,
        access_key_id: str,
        access_key_secret: str,
        region: str,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.access_key_id = access_key_id
        self._access_key_secret = access_key_secret
        self.region = region
        self._clock = clock

    def __repr__(self) -> str:
        return f"SignerV4(access_key_id={self.access_key_id!r}, region={self.region!r})"

    def _dates(self, headers: MutableMapping[str, str]) -> Tuple[str, str]:
        override = headers.get(HEADER_LOG_DATE)
        if override:
            return override[:_DATE_LEN], override
        now = self._clock().astimezone(timezone.utc)
        return now.strftime("%Y%m%d"), now.strftime("%Y%m%dT%H%M%SZ")

    def sign(
        self,
        method: str,
        uri_with_query: str,
        headers: MutableMapping[str, str],
        body: Optional[bytes],
    ) -> None:
        if not self.region:
            raise SignerError("SignType v4 require a valid region")
        path, query = split_uri(uri_with_query)

        # The transport drops an empty Content-Type, which would break the signature.
        if HEADER_CONTENT_TYPE in headers and not headers[HEADER_CONTENT_TYPE]:
            headers[HEADER_CONTENT_TYPE] = DEFAULT_CONTENT_TYPE

        date, date_time = self._dates(headers)
        payload = body or b""
        sha256_payload = hashlib.sha256(payload).hexdigest() if payload else EMPTY_STRING_SHA256

        headers[HEADER_CONTENT_SHA256] = sha256_payload
        headers[HEADER_LOG_DATE] = date_time
        headers[HEADER_CONTENT_LENGTH] = str(len(payload))

        canonical_headers = build_canonical_headers(headers)
        signed_header_str = build_signed_header_str(canonical_headers)
        canonical_request = build_canonical_request(
            method,
            path,
            first_values(query),
            canonical_headers,
            signed_header_str,
            sha256_payload,
        )
        scope = build_scope(date, self.region)
        string_to_sign = build_string_to_sign(canonical_request, date_time, scope)
        signing_key = build_signing_key(self._access_key_secret, self.region, date)
        signature = _hmac_sha256(string_to_sign.encode("utf-8"), signing_key).hex()
        headers[HEADER_AUTHORIZATION] = build_authorization(
            self.access_key_id, signed_header_str, signature, scope
        )


__all__ = [
    "EMPTY_STRING_SHA256",
    "DEFAULT_SIGNED_HEADERS",
    "SignerV4",
    "build_canonical_headers",
    "build_canonical_query",
    "build_canonical_request",
    "build_scope",
    "build_signing_key",
    "build_string_to_sign",
    "url_encode",
]
