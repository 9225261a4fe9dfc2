"""Credentials lifecycle: value types, fetchers, and providers.

Example:
    >>> from SLSTransport.credentials import StaticCredentialsProvider
    >>> provider = StaticCredentialsProvider("id", "secret")
    >>> provider.get_credentials().access_key_id
    'id'
"""

from SLSTransport.credentials.fetch import (
    ECS_RAM_ROLE_URL_PREFIX,
    EcsRamRoleResponse,
    fetcher_with_retry,
    new_credentials_fetcher,
)
from SLSTransport.credentials.models import (
    DEFAULT_EXPIRED_FACTOR,
    Credentials,
    TemporaryCredentials,
)
from SLSTransport.credentials.providers import (
    CredentialsProvider,
    EcsRamRoleCredentialsProvider,
    StaticCredentialsProvider,
    UpdateFuncCredentialsProvider,
    UpdateTokenFunction,
)

__all__ = [
    "DEFAULT_EXPIRED_FACTOR",
    "ECS_RAM_ROLE_URL_PREFIX",
    "Credentials",
    "CredentialsProvider",
    "EcsRamRoleCredentialsProvider",
    "EcsRamRoleResponse",
    "StaticCredentialsProvider",
    "TemporaryCredentials",
    "UpdateFuncCredentialsProvider",
    "UpdateTokenFunction",
    "fetcher_with_retry",
    "new_credentials_fetcher",
]
