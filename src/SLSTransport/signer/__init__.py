# === NAVMAP v1 ===
# {
#   "module": "SLSTransport.signer",
#   "purpose": "Request signing protocols and the factory selecting one per client",
#   "sections": [
#     {"id": "signer", "name": "Signer", "anchor": "class-signer", "kind": "class"},
#     {"id": "get-signer", "name": "get_signer", "anchor": "function-get-signer", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Request signing for the log service.

Two mutually exclusive protocols are supported:

- :class:`SignerV1` - the legacy ``SLS <id>:<digest>`` HMAC scheme.
- :class:`SignerV4` - the canonical-request scheme scoped to a date and region.

Both mutate the header mapping they are given and never touch the network.
:func:`get_signer` picks one from the ``sign_version`` configuration value.

Example:
    >>> signer = get_signer("id", "secret", "v4", "cn-hangzhou")
    >>> headers = {"x-log-bodyrawsize": "0"}
    >>> signer.sign("GET", "/logstores", headers, None)
    >>> headers["Authorization"].startswith("SLS4-HMAC-SHA256 Credential=id/")
    True
"""

from __future__ import annotations

from typing import MutableMapping, Optional, Protocol

from SLSTransport.errors import SignerError
from SLSTransport.signer.v1 import SignerV1
from SLSTransport.signer.v4 import SignerV4, url_encode

SIGN_VERSION_V1 = "v1"
SIGN_VERSION_V4 = "v4"


class Signer(Protocol):
    """Capability shared by every signing protocol."""

    def sign(
        self,
        method: str,
        uri_with_query: str,
        headers: MutableMapping[str, str],
        body: Optional[bytes],
    ) -> None:
        """Add the authorization header (and protocol headers) to ``headers``."""


def get_signer(
    access_key_id: str,
    access_key_secret: str,
    sign_version: str = "",
    region: str = "",
) -> Signer:
    """Return the signer for ``sign_version`` ("" and "v1" select the legacy scheme).

    Raises:
        SignerError: If ``sign_version`` is not recognised.
    """
    if sign_version in ("", SIGN_VERSION_V1):
        return SignerV1(access_key_id, access_key_secret)
    if sign_version == SIGN_VERSION_V4:
        return SignerV4(access_key_id, access_key_secret, region)
    raise SignerError(f"signVersion {sign_version} is invalid")


__all__ = [
    "SIGN_VERSION_V1",
    "SIGN_VERSION_V4",
    "Signer",
    "SignerV1",
    "SignerV4",
    "get_signer",
    "url_encode",
]
