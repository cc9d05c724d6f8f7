"""
Queue store module.
Contains the durable store contract and its implementations.
"""

from jobengine.config import get_settings
from jobengine.store.base import QueueStore, connect_with_retry
from jobengine.store.memory import MemoryStore
from jobengine.store.postgres import PostgresStore

__all__ = [
    "QueueStore",
    "MemoryStore",
    "PostgresStore",
    "connect_with_retry",
    "create_store",
]


def create_store(backend: str | None = None) -> QueueStore:
    """
    Create the configured queue store.

    Args:
        backend: "postgres" or "memory". Defaults to the configured backend.

    Returns:
        An unconnected store.
    """
    backend = backend or get_settings().store_backend
    if backend == "postgres":
        return PostgresStore()
    if backend == "memory":
        return MemoryStore()
    raise ValueError(f"Unknown store backend: {backend}")
