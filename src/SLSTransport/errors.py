"""Exception hierarchy shared by the signing, credentials, and delivery layers.

A logical call to the log service can fail locally (missing headers, a
misconfigured signer), remotely (a well-formed error document from the
service), in between (a non-200 answer we cannot parse), or before it even
starts (no usable credentials).  This module groups those failure modes so
callers can react to categories while retry code inspects the HTTP status
carried by the remote variants.
"""

from __future__ import annotations

from typing import Mapping, Optional, Sequence

__all__ = [
    "SLSTransportError",
    "ClientError",
    "SignerError",
    "RemoteServiceError",
    "BadResponseError",
    "CredentialsError",
]


class SLSTransportError(RuntimeError):
    """Base exception for every failure raised by the request pipeline."""


class ClientError(SLSTransportError):
    """Raised when a local precondition or transport setup step fails."""


class SignerError(ClientError):
    """Raised when a request cannot be signed (bad version, region or URI)."""


class RemoteServiceError(SLSTransportError):
    """Well-formed error response returned by the log service."""

    def __init__(
        self,
        message: str,
        *,
        http_code: int,
        code: str = "",
        request_id: str = "",
    ) -> None:
        super().__init__(message)
        self.http_code = http_code
        self.code = code
        self.message = message
        self.request_id = request_id

    def __str__(self) -> str:
        return (
            f"{{httpCode: {self.http_code}, errorCode: {self.code!r}, "
            f"errorMessage: {self.message!r}, requestID: {self.request_id!r}}}"
        )


class BadResponseError(SLSTransportError):
    """Non-200 response whose body could not be decoded as an error document."""

    def __init__(
        self,
        body: str,
        *,
        http_code: int,
        headers: Optional[Mapping[str, str]] = None,
        request_id: str = "",
    ) -> None:
        super().__init__(body)
        self.body = body
        self.http_code = http_code
        self.headers = dict(headers or {})
        self.request_id = request_id

    def __str__(self) -> str:
        return (
            f"bad response (httpCode: {self.http_code}, requestID: {self.request_id!r}): "
            f"{self.body}"
        )


class CredentialsError(SLSTransportError):
    """Raised when valid credentials cannot be obtained."""

    def __init__(
        self,
        message: str,
        *,
        attempt_errors: Optional[Sequence[BaseException]] = None,
    ) -> None:
        errors = tuple(attempt_errors or ())
        if errors:
            joined = ", ".join(str(exc) for exc in errors)
            message = f"{message}, errors: [{joined}]"
        super().__init__(message)
        self.attempt_errors = errors
# === NAVMAP v1 ===
# {
#   "module": "SLSTransport.errors",
#   "purpose": "Define the exception hierarchy used by signing, credentials and request delivery",
#   "sections": [
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "local", "name": "Client & Signer Errors", "anchor": "LOC", "kind": "api"},
#     {"id": "remote", "name": "Remote & Bad Response Errors", "anchor": "REM", "kind": "api"},
#     {"id": "credentials", "name": "Credentials Errors", "anchor": "CRD", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
