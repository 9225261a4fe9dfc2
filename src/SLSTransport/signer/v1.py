"""Legacy ``SLS <accessKeyId>:<digest>`` signature scheme.

String to sign::

    METHOD \\n Content-MD5 \\n Content-Type \\n Date \\n
    canonicalized x-log-/x-acs- headers \\n canonicalized resource

The digest is ``base64(HMAC-SHA256(secret, string_to_sign))``.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from email.utils import formatdate
from typing import Callable, Dict, MutableMapping, Optional
from urllib.parse import urlsplit

from SLSTransport.signer.uri import first_values, split_uri

HEADER_AUTHORIZATION = "Authorization"
HEADER_CONTENT_MD5 = "Content-MD5"
HEADER_CONTENT_TYPE = "Content-Type"
HEADER_DATE = "Date"

SIGNED_HEADER_PREFIXES = ("x-log-", "x-acs-")


def now_rfc1123() -> str:
    """Current time formatted as ``Mon, 02 Jan 2006 15:04:05 GMT``."""
    return formatdate(usegmt=True)


class SignerV1:
    """HMAC-SHA256 signer for the legacy authorization header."""

    def __init__(
        self,
        access_key_id: str,
        access_key_secret: str,
        *,
        date_source: Callable[[], str] = now_rfc1123,
    ) -> None:
        self.access_key_id = access_key_id
        self._access_key_secret = access_key_secret
        self._date_source = date_source

    def __repr__(self) -> str:
        return f"SignerV1(access_key_id={self.access_key_id!r})"

    def sign(
        self,
        method: str,
        uri_with_query: str,
        headers: MutableMapping[str, str],
        body: Optional[bytes],
    ) -> None:
        _, query = split_uri(uri_with_query)

        content_md5 = ""
        if body is not None:
            content_md5 = hashlib.md5(body).hexdigest().upper()
            headers[HEADER_CONTENT_MD5] = content_md5
        content_type = headers.get(HEADER_CONTENT_TYPE, "")
        date = headers.get(HEADER_DATE)
        if date is None:
            date = self._date_source()
            headers[HEADER_DATE] = date

        sign_string = "\n".join(
            [
                method,
                content_md5,
                content_type,
                date,
                canonicalize_headers(headers),
                canonicalize_resource(urlsplit(uri_with_query).path, query),
            ]
        )
        mac = hmac.new(
            self._access_key_secret.encode("utf-8"),
            sign_string.encode("utf-8"),
            hashlib.sha256,
        )
        digest = base64.b64encode(mac.digest()).decode("ascii")
        headers[HEADER_AUTHORIZATION] = f"SLS {self.access_key_id}:{digest}"


def canonicalize_headers(headers: MutableMapping[str, str]) -> str:
    """Sorted ``key:value`` lines for the reserved header families."""
    selected: Dict[str, str] = {}
    for key, value in headers.items():
        lower = key.strip().lower()
        if lower.startswith(SIGNED_HEADER_PREFIXES):
            selected[lower] = value.strip()
    return "\n".join(f"{key}:{selected[key]}" for key in sorted(selected))


def canonicalize_resource(path: str, query: Dict[str, list]) -> str:
    """Path followed by the key-sorted query parameters, values unescaped.

    A repeated parameter contributes only its first value.
    """
    if not query:
        return path
    values = first_values(query)
    pairs = [f"{key}={values[key]}" for key in sorted(values)]
    return path + "?" + "&".join(pairs)


__all__ = ["SignerV1", "canonicalize_headers", "canonicalize_resource", "now_rfc1123"]
