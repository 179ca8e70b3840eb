from __future__ import annotations

import time
from typing import Callable

from taskrelay.errors import StoreUnavailable
from taskrelay.ops import metrics
from taskrelay.store.interfaces import KVStore
from taskrelay.utils.log import logger

from .interfaces import QueueConfig, QueueKeys
from .models import TaskIndex


class TaskIndexCache:
    """
    Cached enumeration of pending task ids.

    Turns a `list(task prefix)` per poll into one `get` per poll, with a `list`
    at most once per freshness window.

    - read(): fresh snapshot -> served as-is; otherwise list + rewrite snapshot
    - list failure: serve the newest known snapshot while younger than the
      staleness tolerance, else [] (fail-closed)
    - on_enqueue(): no-op; a new task may stay invisible for one freshness window
    - invalidate(): drop the snapshot so the next read() lists again
    """

    def __init__(
        self,
        store: KVStore,
        config: QueueConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._cfg = config
        self._keys = config.keys
        self._clock = clock
        # Last snapshot this process listed itself; outlives the store key's TTL.
        self._last_good: TaskIndex | None = None

    async def _read_snapshot(self) -> TaskIndex | None:
        try:
            raw = await self._store.get(self._keys.index)
        except StoreUnavailable as ex:
            logger.warning("task_index_cache_read_failed", error=str(ex))
            return None
        if not isinstance(raw, dict):
            return None
        try:
            return TaskIndex.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            logger.warning("task_index_cache_corrupt", key=self._keys.index)
            return None

    async def read(self) -> list[str]:
        cached = await self._read_snapshot()
        if cached is not None and self._clock() - cached.cached_at < self._cfg.index_fresh_sec:
            metrics.task_index_reads.labels(outcome="hit").inc()
            return list(cached.ids)

        metrics.store_list_calls.labels(namespace="task").inc()
        try:
            keys = await self._store.list(self._keys.task_prefix)
        except StoreUnavailable as ex:
            return self._fallback(cached, ex)

        ids = [QueueKeys.strip(k, self._keys.task_prefix) for k in keys]
        snap = TaskIndex(ids=ids, cached_at=self._clock())
        self._last_good = snap
        try:
            await self._store.put(self._keys.index, snap.to_dict(), ttl_sec=self._cfg.index_ttl_sec)
        except StoreUnavailable as ex:
            # The ids are still good; the next poll simply lists again.
            logger.warning("task_index_cache_write_failed", error=str(ex))
        metrics.task_index_reads.labels(outcome="refresh").inc()
        return list(ids)

    def _fallback(self, cached: TaskIndex | None, ex: StoreUnavailable) -> list[str]:
        candidates = [c for c in (cached, self._last_good) if c is not None]
        if not candidates:
            logger.error("task_index_unavailable", error=str(ex))
            metrics.task_index_reads.labels(outcome="fail_closed").inc()
            return []
        newest = max(candidates, key=lambda c: c.cached_at)
        age = self._clock() - newest.cached_at
        if age >= self._cfg.index_stale_max_sec:
            logger.error(
                "task_index_stale_discarded",
                error=str(ex),
                stale_age_sec=round(age),
                max_age_sec=self._cfg.index_stale_max_sec,
            )
            metrics.task_index_reads.labels(outcome="fail_closed").inc()
            return []
        logger.warning(
            "task_index_stale_served",
            error=str(ex),
            stale_age_sec=round(age),
            count=len(newest.ids),
        )
        metrics.task_index_reads.labels(outcome="stale").inc()
        return list(newest.ids)

    async def on_enqueue(self, task_id: str) -> None:
        # Intentionally empty: writing the index on every enqueue would cost a
        # store write per producer call.
        return None

    async def invalidate(self) -> None:
        self._last_good = None
        try:
            await self._store.delete(self._keys.index)
        except StoreUnavailable as ex:
            # The snapshot still expires on its own TTL.
            logger.warning("task_index_invalidate_failed", error=str(ex))
