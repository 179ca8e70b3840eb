from __future__ import annotations

import time
from typing import Callable

from taskrelay.errors import NotFound, StoreUnavailable
from taskrelay.ops import metrics
from taskrelay.store.interfaces import KVStore
from taskrelay.utils.log import logger

from .interfaces import QueueConfig, ReleaseOutcome
from .leases import LeaseCoordinator
from .models import (
    ClaimedTask,
    EnqueueReceipt,
    LeaseRecord,
    ResultRecord,
    TaskRecord,
    iso_from_ts,
)
from .task_index import TaskIndexCache


class TaskQueue:
    """
    Task/result lifecycle on a plain KV store.

    Write-path failures (enqueue, store_result's result write, acquire) raise
    StoreUnavailable. Read-path enumeration failures degrade inside the index
    cache and the lease coordinator, which makes claim() return None.
    """

    def __init__(
        self,
        store: KVStore,
        config: QueueConfig,
        *,
        index: TaskIndexCache | None = None,
        leases: LeaseCoordinator | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.config = config
        self._keys = config.keys
        self._clock = clock
        self.index = index or TaskIndexCache(store, config, clock=clock)
        self.leases = leases or LeaseCoordinator(store, config, clock=clock)

    # --- producer side ---

    async def enqueue(self, task: TaskRecord) -> EnqueueReceipt:
        await self.store.put(self._keys.task(task.id), task.to_dict(), ttl_sec=self.config.task_ttl_sec)
        await self.index.on_enqueue(task.id)
        metrics.tasks_enqueued.inc()
        logger.info(
            "task_enqueued",
            task_id=task.id,
            type=task.type.value,
            priority=task.priority.value,
            source=task.source,
        )
        eta = iso_from_ts(self._clock() + self.config.estimated_completion_sec)
        return EnqueueReceipt(
            id=task.id,
            status="accepted",
            message=f"Task queued. Poll /api/result/{task.id} for result",
            estimated_completion=eta,
        )

    async def get_pending_requests(self) -> list[str]:
        return await self.index.read()

    async def get_request(self, task_id: str) -> TaskRecord | None:
        raw = await self.store.get(self._keys.task(task_id))
        if not isinstance(raw, dict):
            return None
        try:
            return TaskRecord.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            logger.warning("task_record_corrupt", task_id=str(task_id))
            return None

    async def cancel(self, task_id: str) -> bool:
        """
        Delete a task before completion. Idempotent; returns whether it existed.
        A claimer racing with this call finds the task absent and moves on.
        """
        existed = (await self.get_request(task_id)) is not None
        await self.store.delete(self._keys.task(task_id))
        await self._drop_lease_quietly(task_id)
        await self.index.invalidate()
        if existed:
            metrics.tasks_cancelled.inc()
            logger.info("task_cancelled", task_id=str(task_id))
        return existed

    # --- result side ---

    async def store_result(self, task_id: str, result: ResultRecord) -> ResultRecord:
        rec = ResultRecord(
            id=str(task_id),
            status=result.status,
            message=result.message,
            stored_at=iso_from_ts(self._clock()),
            estimated_completion=result.estimated_completion,
            output=result.output,
            error=result.error,
        )
        # The result is the source of truth; everything after it is cleanup.
        await self.store.put(self._keys.result(task_id), rec.to_dict(), ttl_sec=self.config.result_ttl_sec)
        metrics.results_stored.inc()

        await self._delete_task_quietly(task_id)
        await self._drop_lease_quietly(task_id)
        await self.index.invalidate()

        logger.info("result_stored", task_id=str(task_id), status=rec.status)
        return rec

    async def get_result(self, task_id: str) -> ResultRecord | None:
        raw = await self.store.get(self._keys.result(task_id))
        if not isinstance(raw, dict):
            return None
        try:
            return ResultRecord.from_dict(raw)
        except TypeError:
            logger.warning("result_record_corrupt", task_id=str(task_id))
            return None

    # --- worker side ---

    async def claim(self, worker_id: str, *, lease_sec: int | None = None) -> ClaimedTask | None:
        """
        Claim the first pending task without an active lease.

        None means "nothing safely claimable": the queue may be empty, or the
        store may be too degraded to tell.
        """
        pending = await self.get_pending_requests()
        available = await self.leases.compute_available(pending) if pending else []
        for task_id in available:
            lease = await self.leases.acquire(task_id, worker_id, lease_sec=lease_sec)
            if lease is None:
                metrics.claims.labels(outcome="conflict").inc()
                continue
            try:
                task = await self.get_request(task_id)
                done = task is not None and (await self.get_result(task_id)) is not None
            except StoreUnavailable:
                await self._drop_lease_quietly(task_id)
                raise
            if done:
                # A status write raced with completion and left the record behind.
                await self._delete_task_quietly(task_id)
                task = None
            if task is None:
                # Completed, cancelled or expired since the index snapshot.
                metrics.claims.labels(outcome="vanished").inc()
                logger.info("claim_task_vanished", task_id=task_id, worker_id=str(worker_id))
                await self._drop_lease_quietly(task_id)
                await self.index.invalidate()
                continue
            metrics.claims.labels(outcome="claimed").inc()
            logger.info("task_claimed", task_id=task_id, worker_id=str(worker_id), expires_at=lease.expires_at)
            return ClaimedTask(task=task, lease=lease)

        metrics.claims.labels(outcome="empty").inc()
        logger.debug("claim_nothing_available", worker_id=str(worker_id), pending=len(pending))
        return None

    async def release(
        self,
        task_id: str,
        worker_id: str | None = None,
        *,
        reason: str | None = None,
    ) -> ReleaseOutcome:
        out = await self.leases.release(task_id, worker_id)
        if out is ReleaseOutcome.released:
            logger.info("task_released", task_id=str(task_id), reason=reason or "manual")
        return out

    async def renew(self, task_id: str, worker_id: str, *, extend_sec: int | None = None) -> LeaseRecord:
        return await self.leases.renew(task_id, worker_id, extend_sec=extend_sec)

    async def update_status(self, task_id: str, status: str) -> TaskRecord:
        """
        Rewrite the task record with a new status.

        A completed task (result present) is treated as missing. The result is
        read again after the write: if it appeared meanwhile, the rewritten
        record is deleted so completion never resurrects a task.
        """
        task = await self.get_request(task_id)
        if task is None or (await self.get_result(task_id)) is not None:
            raise NotFound("task", task_id)
        task.status = str(status)
        task.updated_at = iso_from_ts(self._clock())
        await self.store.put(self._keys.task(task_id), task.to_dict(), ttl_sec=self.config.task_ttl_sec)
        if (await self.get_result(task_id)) is not None:
            logger.info("task_status_update_lost_race", task_id=str(task_id))
            await self._delete_task_quietly(task_id)
            await self.index.invalidate()
            raise NotFound("task", task_id)
        logger.info("task_status_updated", task_id=str(task_id), status=task.status)
        return task

    async def _delete_task_quietly(self, task_id: str) -> None:
        try:
            await self.store.delete(self._keys.task(task_id))
        except StoreUnavailable as ex:
            logger.warning("task_delete_failed", task_id=str(task_id), error=str(ex))

    async def _drop_lease_quietly(self, task_id: str) -> None:
        try:
            await self.leases.drop(task_id)
        except StoreUnavailable as ex:
            # The lease expires on its own TTL.
            logger.warning("lease_delete_failed", task_id=str(task_id), error=str(ex))
