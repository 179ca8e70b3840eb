from __future__ import annotations

import asyncio
import os
import socket
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

from taskrelay.config import Settings
from taskrelay.errors import NotFound, NotLeaseHolder, StoreUnavailable
from taskrelay.queue.models import ClaimedTask, ResultRecord, TaskRecord
from taskrelay.queue.task_queue import TaskQueue
from taskrelay.utils.log import logger, set_worker_id

OUTPUT_MAX_CHARS = 10_000


@dataclass(frozen=True, slots=True)
class HandlerResult:
    success: bool
    output: Any = None
    error: str | None = None


Handler = Callable[[TaskRecord], Awaitable[Any]]


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


def _clip(v: Any) -> Any:
    if isinstance(v, str) and len(v) > OUTPUT_MAX_CHARS:
        return v[:OUTPUT_MAX_CHARS]
    return v


class Worker:
    """
    Poll -> claim -> run handler -> store result.

    - the lease is renewed in the background while the handler runs
    - a handler exception releases the lease early, then a failed result is stored
    - repeated loop errors trigger a capped backoff
    - handlers must be idempotent: a claim race can hand one task to two workers
    """

    def __init__(
        self,
        task_queue: TaskQueue,
        handler: Handler,
        *,
        worker_id: str | None = None,
        lease_sec: int | None = None,
        poll_interval_sec: float = 15.0,
        renew_interval_sec: float = 120.0,
        max_consecutive_errors: int = 5,
        max_backoff_sec: float = 60.0,
    ) -> None:
        self.task_queue = task_queue
        self.handler = handler
        self.worker_id = str(worker_id or default_worker_id())
        self.lease_sec = lease_sec
        self.poll_interval_sec = max(0.0, float(poll_interval_sec))
        self.renew_interval_sec = max(0.01, float(renew_interval_sec))
        self.max_consecutive_errors = max(1, int(max_consecutive_errors))
        self.max_backoff_sec = max(0.0, float(max_backoff_sec))
        self.consecutive_errors = 0
        self.processed = 0
        self._stop = asyncio.Event()

    @classmethod
    def from_settings(cls, s: Settings, task_queue: TaskQueue, handler: Handler) -> Worker:
        return cls(
            task_queue,
            handler,
            worker_id=str(s.worker_id or "") or None,
            lease_sec=int(s.lease_ttl_sec),
            poll_interval_sec=float(s.worker_poll_interval_sec),
            renew_interval_sec=float(s.worker_renew_interval_sec),
            max_consecutive_errors=int(s.worker_max_consecutive_errors),
            max_backoff_sec=float(s.worker_max_backoff_sec),
        )

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def _sleep(self, sec: float) -> None:
        # Returns early when stop() is called.
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop.wait(), timeout=max(0.0, float(sec)))

    async def run(self) -> None:
        set_worker_id(self.worker_id)
        logger.info(
            "worker_started",
            worker_id=self.worker_id,
            poll_interval_sec=self.poll_interval_sec,
            lease_sec=self.lease_sec,
        )
        while not self.stopping:
            worked = False
            try:
                worked = await self.run_once()
                self.consecutive_errors = 0
            except asyncio.CancelledError:
                raise
            except Exception as ex:
                self.consecutive_errors += 1
                logger.error(
                    "worker_poll_error",
                    worker_id=self.worker_id,
                    error=str(ex),
                    consecutive_errors=self.consecutive_errors,
                )

            if self.consecutive_errors > self.max_consecutive_errors:
                delay = min(self.poll_interval_sec * 2, self.max_backoff_sec)
                logger.warning(
                    "worker_backoff",
                    worker_id=self.worker_id,
                    consecutive_errors=self.consecutive_errors,
                    delay_sec=delay,
                )
                await self._sleep(delay)
                self.consecutive_errors = 0

            if not worked:
                await self._sleep(self.poll_interval_sec)
        logger.info("worker_stopped", worker_id=self.worker_id, processed=self.processed)

    async def run_once(self) -> bool:
        """Claim and process at most one task. Returns whether a task was processed."""
        claimed = await self.task_queue.claim(self.worker_id, lease_sec=self.lease_sec)
        if claimed is None:
            return False
        await self.process(claimed)
        return True

    async def process(self, claimed: ClaimedTask) -> ResultRecord:
        task = claimed.task
        renewer = asyncio.create_task(self._renew_loop(task.id), name=f"lease.renew.{task.id}")
        try:
            try:
                res = await self.handler(task)
            except asyncio.CancelledError:
                raise
            except Exception as ex:
                logger.error("task_execution_error", task_id=task.id, worker_id=self.worker_id, error=str(ex))
                try:
                    await self.task_queue.release(task.id, self.worker_id, reason=f"Execution error: {ex}")
                except StoreUnavailable as rex:
                    logger.warning("lease_release_failed", task_id=task.id, error=str(rex))
                res = HandlerResult(success=False, error=str(ex))
        finally:
            renewer.cancel()
            with suppress(asyncio.CancelledError):
                await renewer

        if not isinstance(res, HandlerResult):
            res = HandlerResult(success=True, output=res)
        result = ResultRecord(
            id=task.id,
            status="completed" if res.success else "failed",
            message="Task completed" if res.success else "Task failed",
            output=_clip(res.output),
            error=_clip(res.error),
        )
        stored = await self.task_queue.store_result(task.id, result)
        self.processed += 1
        return stored

    async def _renew_loop(self, task_id: str) -> None:
        while True:
            await asyncio.sleep(self.renew_interval_sec)
            try:
                lease = await self.task_queue.renew(task_id, self.worker_id, extend_sec=self.lease_sec)
                logger.debug("lease_renew_ok", task_id=task_id, expires_at=lease.expires_at)
            except (NotFound, NotLeaseHolder) as ex:
                # Lease expired or was taken over; keep running, the result write still lands.
                logger.warning("lease_lost", task_id=task_id, worker_id=self.worker_id, error=str(ex))
                return
            except StoreUnavailable as ex:
                logger.warning("lease_renew_failed", task_id=task_id, error=str(ex))
            except Exception as ex:
                # Renewal errors must not skip the result write.
                logger.error("lease_renew_error", task_id=task_id, worker_id=self.worker_id, error=str(ex))
