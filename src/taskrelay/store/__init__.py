"""
Store adapters.

The queue only ever talks to `KVStore` (get/put/delete/list with TTL). Three backends:
- memory: in-process, for development/tests/single-process deployments
- sqlite: single-host persistent store
- redis: shared remote store for multi-host worker pools
"""

from __future__ import annotations

from pathlib import Path

from taskrelay.config import Settings
from taskrelay.utils.log import logger

from .interfaces import KVStore
from .memory_store import MemoryStore
from .sqlite_store import SqliteStore

__all__ = ["KVStore", "MemoryStore", "SqliteStore", "build_store"]


def build_store(s: Settings) -> KVStore:
    """
    Return the store selected by STORE_BACKEND (validated at settings load).
    """
    backend = str(s.store_backend)
    if backend == "redis":
        from .redis_store import RedisStore

        logger.info("store_backend_selected", backend="redis")
        return RedisStore(redis_url=str(s.redis_url or ""))
    if backend == "sqlite":
        logger.info("store_backend_selected", backend="sqlite", path=str(s.store_path))
        return SqliteStore(Path(s.store_path))
    logger.info("store_backend_selected", backend="memory")
    return MemoryStore()
