"""Cooperative cancellation primitives bounding one logical request.

Every logical call to the log service runs under a wall-clock deadline.  The
:class:`CancellationToken` carries that deadline through credential fetches,
DNS lookups and the HTTP exchange; each blocking step checks the token before
starting and clamps its own timeout to the time that is left, so an attempt
that begins close to the deadline gives up at its next I/O boundary instead of
completing late.  Nothing here interrupts threads; cancellation is observed,
never forced.
"""

from __future__ import annotations

import contextvars
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

Clock = Callable[[], float]


class DeadlineExceeded(TimeoutError):
    """Raised by :meth:`CancellationToken.raise_if_cancelled` once the token fires."""


class CancellationToken:
    """Thread-safe cancellation token with an optional deadline.

    Examples:
        >>> token = CancellationToken(timeout=90.0)
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.is_cancelled()
        True
    """

    def __init__(self, timeout: Optional[float] = None, *, clock: Clock = time.monotonic) -> None:
        """Initialize a token that expires ``timeout`` seconds from now (never if ``None``)."""
        self._clock = clock
        self._is_cancelled = threading.Event()
        self._lock = threading.Lock()
        self._deadline = None if timeout is None else clock() + timeout

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        with self._lock:
            self._is_cancelled.set()

    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def is_cancelled(self) -> bool:
        """Return ``True`` when cancelled explicitly or when the deadline passed."""
        return self._is_cancelled.is_set() or self.expired()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, ``None`` when unbounded, never negative."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def bound_timeout(self, timeout: Optional[float]) -> Optional[float]:
        """Clamp ``timeout`` to the time remaining before the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        if timeout is None:
            return remaining
        return min(timeout, remaining)

    def raise_if_cancelled(self) -> None:
        if self._is_cancelled.is_set():
            raise DeadlineExceeded("request cancelled")
        if self.expired():
            raise DeadlineExceeded("request deadline exceeded")


_active_token: contextvars.ContextVar[Optional["CancellationToken"]] = contextvars.ContextVar(
    "active_token", default=None
)


def current_token() -> Optional[CancellationToken]:
    """Return the token of the request attempt running in this context, if any."""
    return _active_token.get()


@contextmanager
def token_scope(token: CancellationToken) -> Iterator[CancellationToken]:
    """Make ``token`` visible to credential fetches and DNS lookups inside the block.

    Examples:
        >>> with token_scope(CancellationToken(5.0)) as token:
        ...     current_token() is token
        True
        >>> current_token() is None
        True
    """
    marker = _active_token.set(token)
    try:
        yield token
    finally:
        _active_token.reset(marker)


__all__ = ["CancellationToken", "DeadlineExceeded", "current_token", "token_scope"]
# === NAVMAP v1 ===
# {
#   "module": "SLSTransport.cancellation",
#   "purpose": "Provide the deadline-bound cooperative cancellation token threaded through request attempts",
#   "sections": [
#     {"id": "token", "name": "CancellationToken", "anchor": "TOK", "kind": "api"},
#     {"id": "deadline", "name": "DeadlineExceeded", "anchor": "DLE", "kind": "api"},
#     {"id": "scope", "name": "token_scope", "anchor": "SCP", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
