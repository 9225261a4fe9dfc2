# === NAVMAP v1 ===
# {
#   "module": "SLSTransport.settings",
#   "purpose": "Define immutable configuration models, environment overrides and the process-wide default",
#   "sections": [
#     {"id": "signsettings", "name": "SignSettings", "anchor": "class-signsettings", "kind": "class"},
#     {"id": "httpsettings", "name": "HttpSettings", "anchor": "class-httpsettings", "kind": "class"},
#     {"id": "dnscachesettings", "name": "DnsCacheSettings", "anchor": "class-dnscachesettings", "kind": "class"},
#     {"id": "retrysettings", "name": "RetrySettings", "anchor": "class-retrysettings", "kind": "class"},
#     {"id": "clientsettings", "name": "ClientSettings", "anchor": "class-clientsettings", "kind": "class"},
#     {"id": "environmentoverrides", "name": "EnvironmentOverrides", "anchor": "class-environmentoverrides", "kind": "class"},
#     {"id": "get-default-settings", "name": "get_default_settings", "anchor": "function-get-default-settings", "kind": "function"},
#     {"id": "reset-default-settings", "name": "reset_default_settings", "anchor": "function-reset-default-settings", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Configuration models for the SLS request pipeline.

All knobs a caller can turn (signature version, region, connection tuning,
DNS caching, retry behaviour) live in frozen pydantic models.  A client is
constructed with one :class:`ClientSettings` instance and never observes a
change to it afterwards; variations are derived with ``model_copy``.  The
process-wide default is assembled once from the built-in defaults plus
``SLS_*`` environment overrides and cached, which replaces the mutable module
globals (default HTTP client timeouts, DNS TTL, retry flag) that callers could
otherwise reconfigure underneath running clients.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from SLSTransport import __version__
from SLSTransport.signer import SIGN_VERSION_V1, SIGN_VERSION_V4

logger = logging.getLogger(__name__)

_VALID_SIGN_VERSIONS = {"", SIGN_VERSION_V1, SIGN_VERSION_V4}

DEFAULT_USER_AGENT = f"sls-transport-python/{__version__}"


class SignSettings(BaseModel):
    """Signature protocol selection."""

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    sign_version: str = Field(
        default="",
        description="Signature version: '' or 'v1' for the legacy scheme, 'v4' for scoped signing",
    )
    region: str = Field(default="", description="Region id, required by v4 signing")

    @field_validator("sign_version", mode="before")
    @classmethod
    def validate_sign_version(cls, v: Any) -> str:
        """Normalise and validate the signature version."""
        value = "" if v is None else str(v).strip().lower()
        if value not in _VALID_SIGN_VERSIONS:
            raise ValueError(f"sign_version must be one of '', 'v1', 'v4'; got {v!r}")
        return value

    @property
    def is_v4(self) -> bool:
        return self.sign_version == SIGN_VERSION_V4


class HttpSettings(BaseModel):
    """HTTP connection tuning for the httpx client.

    Controls timeouts, pooling, keep-alive behaviour, proxying and user agent.
    """

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    request_timeout: float = Field(
        default=60.0,
        gt=0.0,
        le=3600.0,
        description="Per-attempt timeout in seconds",
    )
    connect_timeout: float = Field(
        default=5.0,
        gt=0.0,
        le=300.0,
        description="Connect timeout in seconds",
    )
    idle_timeout: float = Field(
        default=55.0,
        ge=0.0,
        le=3600.0,
        description="Idle keep-alive connection expiry in seconds",
    )
    disable_keep_alives: bool = Field(
        default=False,
        description="Close every connection after one exchange",
    )
    proxy: Optional[str] = Field(default=None, description="Proxy URL for all requests")
    max_connections: int = Field(default=100, ge=1, le=4096)
    max_keepalive_connections: int = Field(default=20, ge=0, le=4096)
    trust_env: bool = Field(
        default=True,
        description="Honor HTTP(S)_PROXY and NO_PROXY environment variables",
    )
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent header value")

    @field_validator("proxy", mode="before")
    @classmethod
    def blank_proxy_is_none(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        value = str(v).strip()
        return value or None


class DnsCacheSettings(BaseModel):
    """Hostname resolution cache used by the connection dialer."""

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    enabled: bool = Field(default=False, description="Resolve hosts through the TTL cache")
    ttl_seconds: float = Field(
        default=60.0,
        ge=60.0,
        le=900.0,
        description="Freshness window for cached addresses (1 to 15 minutes)",
    )
    max_entries: int = Field(
        default=10_000,
        ge=1,
        description="Entry count that triggers an expiry sweep",
    )


class RetrySettings(BaseModel):
    """Retry and backoff behaviour of the request executor."""

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    retry_timeout: float = Field(
        default=90.0,
        gt=0.0,
        le=3600.0,
        description="Overall wall-clock deadline for one logical call",
    )
    retry_on_server_error: bool = Field(
        default=True,
        description="Retry 5xx responses (all 5xx for reads, 500/502/503 for writes)",
    )
    initial_interval: float = Field(default=0.5, gt=0.0, le=60.0)
    max_interval: float = Field(default=60.0, gt=0.0, le=600.0)
    multiplier: float = Field(default=1.5, ge=1.0, le=10.0)

    @model_validator(mode="after")
    def check_intervals(self) -> "RetrySettings":
        if self.initial_interval > self.max_interval:
            raise ValueError("initial_interval must not exceed max_interval")
        return self


class ClientSettings(BaseModel):
    """Root configuration handed to a :class:`SLSTransport.client.LogClient`."""

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    sign: SignSettings = Field(default_factory=SignSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    dns_cache: DnsCacheSettings = Field(default_factory=DnsCacheSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    force_http: bool = Field(
        default=False,
        description="Use plaintext HTTP even when the endpoint asks for https://",
    )
    common_headers: Dict[str, str] = Field(
        default_factory=dict,
        description="Headers merged into every request without overriding pipeline headers",
    )
    log_level: str = Field(default="INFO")

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_level(cls, v: Any) -> str:
        value = str(v or "INFO").upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"invalid log level {v!r}")
        return value

    def config_hash(self) -> str:
        """Return a stable fingerprint of these settings."""
        payload = json.dumps(self.model_dump(mode="json"), sort_keys=True)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def with_updates(self, **sections: Any) -> "ClientSettings":
        """Return a copy with whole sections or top-level fields replaced."""
        return self.model_copy(update=sections)


class EnvironmentOverrides(BaseSettings):
    """Pydantic settings model exposing environment-derived overrides."""

    sign_version: Optional[str] = Field(default=None, alias="SLS_SIGN_VERSION")
    region: Optional[str] = Field(default=None, alias="SLS_REGION")
    request_timeout: Optional[float] = Field(default=None, alias="SLS_REQUEST_TIMEOUT")
    retry_timeout: Optional[float] = Field(default=None, alias="SLS_RETRY_TIMEOUT")
    retry_on_server_error: Optional[bool] = Field(default=None, alias="SLS_RETRY_ON_SERVER_ERROR")
    force_http: Optional[bool] = Field(default=None, alias="SLS_FORCE_HTTP")
    dns_cache_enabled: Optional[bool] = Field(default=None, alias="SLS_DNS_CACHE_ENABLED")
    dns_cache_ttl: Optional[float] = Field(default=None, alias="SLS_DNS_CACHE_TTL")
    dns_cache_max_entries: Optional[int] = Field(default=None, alias="SLS_DNS_CACHE_MAX_ENTRIES")
    proxy: Optional[str] = Field(default=None, alias="SLS_PROXY")
    log_level: Optional[str] = Field(default=None, alias="SLS_LOG_LEVEL")

    model_config = SettingsConfigDict(env_prefix="SLS_", case_sensitive=False, extra="ignore")


def _section_updates(overrides: EnvironmentOverrides, mapping: Dict[str, str]) -> Dict[str, Any]:
    updates: Dict[str, Any] = {}
    for attr, field_name in mapping.items():
        value = getattr(overrides, attr)
        if value is not None:
            updates[field_name] = value
    return updates


def apply_env_overrides(
    settings: ClientSettings, overrides: Optional[EnvironmentOverrides] = None
) -> ClientSettings:
    """Return ``settings`` with any ``SLS_*`` environment overrides applied."""
    env = overrides if overrides is not None else EnvironmentOverrides()

    sign = _section_updates(env, {"sign_version": "sign_version", "region": "region"})
    http = _section_updates(env, {"request_timeout": "request_timeout", "proxy": "proxy"})
    retry = _section_updates(
        env,
        {"retry_timeout": "retry_timeout", "retry_on_server_error": "retry_on_server_error"},
    )
    dns = _section_updates(
        env,
        {
            "dns_cache_enabled": "enabled",
            "dns_cache_ttl": "ttl_seconds",
            "dns_cache_max_entries": "max_entries",
        },
    )
    top = _section_updates(env, {"force_http": "force_http", "log_level": "log_level"})

    # Re-validate through the constructors so env values obey the field bounds.
    return ClientSettings(
        sign=SignSettings(**{**settings.sign.model_dump(), **sign}),
        http=HttpSettings(**{**settings.http.model_dump(), **http}),
        retry=RetrySettings(**{**settings.retry.model_dump(), **retry}),
        dns_cache=DnsCacheSettings(**{**settings.dns_cache.model_dump(), **dns}),
        force_http=top.get("force_http", settings.force_http),
        common_headers=dict(settings.common_headers),
        log_level=top.get("log_level", settings.log_level),
    )


_DEFAULT_SETTINGS: Optional[ClientSettings] = None
_DEFAULT_SETTINGS_LOCK = threading.Lock()


def get_default_settings() -> ClientSettings:
    """Return the process-wide default settings, built once on first use."""
    global _DEFAULT_SETTINGS  # noqa: PLW0603

    if _DEFAULT_SETTINGS is not None:
        return _DEFAULT_SETTINGS
    with _DEFAULT_SETTINGS_LOCK:
        if _DEFAULT_SETTINGS is None:
            _DEFAULT_SETTINGS = apply_env_overrides(ClientSettings())
            logger.debug(
                "default settings initialised",
                extra={"config_hash": _DEFAULT_SETTINGS.config_hash()},
            )
        return _DEFAULT_SETTINGS


def reset_default_settings() -> None:
    """Drop the cached default settings (test isolation only)."""
    global _DEFAULT_SETTINGS  # noqa: PLW0603

    with _DEFAULT_SETTINGS_LOCK:
        _DEFAULT_SETTINGS = None


__all__ = [
    "SIGN_VERSION_V1",
    "SIGN_VERSION_V4",
    "DEFAULT_USER_AGENT",
    "SignSettings",
    "HttpSettings",
    "DnsCacheSettings",
    "RetrySettings",
    "ClientSettings",
    "EnvironmentOverrides",
    "apply_env_overrides",
    "get_default_settings",
    "reset_default_settings",
]
