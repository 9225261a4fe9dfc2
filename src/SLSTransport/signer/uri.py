"""URI parsing shared by the signing protocols."""

from __future__ import annotations

import re
from typing import Dict, List, Tuple
from urllib.parse import parse_qs, unquote, urlsplit

from SLSTransport.errors import SignerError

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_CONTROL_CHARS = re.compile(r"[\x00-\x20\x7f]")


def split_uri(uri_with_query: str) -> Tuple[str, Dict[str, List[str]]]:
    """Split ``uri_with_query`` into its decoded path and decoded query values.

    Query values keep their order of appearance and blank values are kept,
    so ``/logs?topic=&line=10`` yields ``{"topic": [""], "line": ["10"]}``.

    Raises:
        SignerError: If the URI contains control characters, whitespace or a
            malformed percent-escape.
    """
    if _CONTROL_CHARS.search(uri_with_query):
        raise SignerError(f"uriWithQuery: invalid character in {uri_with_query!r}")
    if _BAD_ESCAPE.search(uri_with_query):
        raise SignerError(f"uriWithQuery: invalid URL escape in {uri_with_query!r}")
    try:
        parts = urlsplit(uri_with_query)
    except ValueError as exc:
        raise SignerError(f"uriWithQuery: {exc}") from exc
    query = parse_qs(parts.query, keep_blank_values=True) if parts.query else {}
    return unquote(parts.path), query


def first_values(query: Dict[str, List[str]]) -> Dict[str, str]:
    """Keep the first value of each query parameter; both signers sign one value per key."""
    return {key: (values[0] if values else "") for key, values in query.items()}


__all__ = ["first_values", "split_uri"]
