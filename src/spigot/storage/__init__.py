"""Durable storage for Spigot."""

import logging

from .base import FaucetStore, StorageUnavailableError
from .memory import MemoryStore
from .redis_store import RedisStore

logger = logging.getLogger(__name__)


def create_store(redis_url: str | None) -> FaucetStore:
    """Create the store for the configured backend.

    Parameters
    ----------
    redis_url : str | None
        Redis connection URL. If empty, uses in-memory storage, which does not
        survive restarts and must not be shared between processes.
    """
    if redis_url:
        return RedisStore(redis_url)
    logger.warning("No Redis URL configured, using in-memory storage (not durable)")
    return MemoryStore()


__all__ = [
    "FaucetStore",
    "MemoryStore",
    "RedisStore",
    "StorageUnavailableError",
    "create_store",
]
