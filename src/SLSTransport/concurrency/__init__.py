# === NAVMAP v1 ===
# {
#   "module": "SLSTransport.concurrency.__init__",
#   "purpose": "Concurrency helpers shared across SLSTransport components.",
#   "sections": []
# }
# === /NAVMAP ===

"""
Concurrency helpers shared across SLSTransport components.

Currently exposes :class:`ReadWriteLock`, the shared/exclusive lock guarding
the DNS cache map and the cached credentials held by refreshing providers.
"""

from .locks import ReadWriteLock

__all__ = ["ReadWriteLock"]
