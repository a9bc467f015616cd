"""Selection of the active ticket/window store."""
import logging
import threading

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)

_store = None
_store_lock = threading.Lock()


def build_store(backend=None, hub=None):
    backend = backend or settings.QUEUE_STORE_BACKEND
    if backend == 'memory':
        from .memory_store import InMemoryQueueStore
        return InMemoryQueueStore(hub=hub)
    if backend == 'database':
        from .db_store import DatabaseQueueStore
        return DatabaseQueueStore(hub=hub)
    raise ImproperlyConfigured(f"Unknown QUEUE_STORE_BACKEND: {backend!r}")


def get_store():
    """Return the process-wide store, creating it on first use."""
    global _store
    with _store_lock:
        if _store is None:
            _store = build_store()
            logger.info("Using %s queue store", _store.backend)
        return _store


def reset_store():
    """Drop the current store; the next get_store() call builds a fresh one."""
    global _store
    with _store_lock:
        _store = None
