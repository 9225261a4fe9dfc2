"""
Structured Logging Utilities

This module centralizes logging setup for the SLS request pipeline. It
provides helpers for masking credentials and signatures before anything is
written, a JSON formatter for machine-readable log files, and a setup routine
that installs (and later replaces) only the handlers it owns.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

MASK = "***masked***"

_SENSITIVE_KEYS = {
    "authorization",
    "x-acs-security-token",
    "access_key_secret",
    "accesskeysecret",
    "security_token",
    "securitytoken",
    "secret",
    "token",
    "password",
}


def _is_sensitive(key: str) -> bool:
    lower = key.lower()
    return lower in _SENSITIVE_KEYS or lower.endswith("secret") or lower.endswith("token")


def mask_sensitive_data(payload: Mapping[str, object]) -> Dict[str, object]:
    """Remove secrets from structured payloads prior to logging.

    Args:
        payload: Arbitrary key-value pairs that may contain credentials,
            security tokens or signatures.

    Returns:
        Copy of the payload where secret fields are replaced with
        ``***masked***``.

    Examples:
        >>> mask_sensitive_data({"Authorization": "SLS id:sig", "status": 200})
        {'Authorization': '***masked***', 'status': 200}
    """
    masked: Dict[str, object] = {}
    for key, value in payload.items():
        if _is_sensitive(str(key)):
            masked[key] = MASK
        elif isinstance(value, Mapping):
            masked[key] = mask_sensitive_data(value)
        else:
            masked[key] = value
    return masked


def mask_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Return a copy of ``headers`` safe to include in debug dumps."""
    return {key: (MASK if _is_sensitive(key) else value) for key, value in headers.items()}


class JSONFormatter(logging.Formatter):
    """Formatter emitting JSON structured logs.

    Examples:
        >>> formatter = JSONFormatter()
        >>> isinstance(formatter.format(logging.makeLogRecord({'msg': 'test'})), str)
        True
    """

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        log_obj: Dict[str, object] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for attr in ("method", "uri", "attempt", "status", "request_id", "host"):
            if hasattr(record, attr):
                log_obj[attr] = getattr(record, attr)
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_obj.update(extra_fields)
        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(log_obj), default=str)


def setup_logging(
    level: Optional[Union[str, int]] = None,
    *,
    json_output: bool = False,
    log_file: Optional[Path] = None,
    max_log_size_mb: int = 50,
) -> logging.Logger:
    """Configure handlers for the ``SLSTransport`` logger hierarchy.

    Args:
        level: Logging level name or number; ``None`` uses the configured
            ``log_level`` (``SLS_LOG_LEVEL``).
        json_output: Emit JSON lines on the console instead of plain text.
        log_file: Optional path of a rotating JSON-lines log file.
        max_log_size_mb: Rotation threshold for ``log_file``.

    Returns:
        The configured package logger.

    Examples:
        >>> setup_logging("DEBUG").name
        'SLSTransport'
    """
    if level is None:
        from SLSTransport.settings import get_default_settings

        level = get_default_settings().log_level
    logger = logging.getLogger("SLSTransport")
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, "_sls_managed", False):
            logger.removeHandler(handler)
            handler.close()

    stream_handler = logging.StreamHandler(sys.stderr)
    if json_output:
        stream_handler.setFormatter(JSONFormatter())
    else:
        stream_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    stream_handler._sls_managed = True  # type: ignore[attr-defined]
    logger.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=int(max_log_size_mb * 1024 * 1024),
            backupCount=5,
        )
        file_handler.setFormatter(JSONFormatter())
        file_handler._sls_managed = True  # type: ignore[attr-defined]
        logger.addHandler(file_handler)

    logger.propagate = True
    return logger


__all__ = ["MASK", "JSONFormatter", "mask_headers", "mask_sensitive_data", "setup_logging"]
