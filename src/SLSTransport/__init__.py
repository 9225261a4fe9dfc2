"""Signed, retrying HTTP transport for the SLS log service.

The package signs requests (v1 or v4), obtains credentials from static,
callback-driven or instance-metadata providers, and drives each logical call
through a deadline-bounded retry loop over an httpx client that can dial
through a TTL DNS cache.

Example:
    >>> from SLSTransport import LogClient
    >>> client = LogClient("https://cn-hangzhou.log.aliyuncs.com", "id", "secret")
    >>> client.endpoint.use_https
    True
"""

__version__ = "0.1.0"

from SLSTransport.client import LogClient  # noqa: E402
from SLSTransport.credentials import (  # noqa: E402
    Credentials,
    CredentialsProvider,
    EcsRamRoleCredentialsProvider,
    StaticCredentialsProvider,
    TemporaryCredentials,
    UpdateFuncCredentialsProvider,
)
from SLSTransport.errors import (  # noqa: E402
    BadResponseError,
    ClientError,
    CredentialsError,
    RemoteServiceError,
    SignerError,
    SLSTransportError,
)
from SLSTransport.settings import ClientSettings, get_default_settings  # noqa: E402
from SLSTransport.signer import SIGN_VERSION_V1, SIGN_VERSION_V4, get_signer  # noqa: E402

__all__ = [
    "__version__",
    "SIGN_VERSION_V1",
    "SIGN_VERSION_V4",
    "BadResponseError",
    "ClientError",
    "ClientSettings",
    "Credentials",
    "CredentialsError",
    "CredentialsProvider",
    "EcsRamRoleCredentialsProvider",
    "LogClient",
    "RemoteServiceError",
    "SLSTransportError",
    "SignerError",
    "StaticCredentialsProvider",
    "TemporaryCredentials",
    "UpdateFuncCredentialsProvider",
    "get_default_settings",
    "get_signer",
]
