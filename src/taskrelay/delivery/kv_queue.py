from __future__ import annotations

from taskrelay.errors import StoreUnavailable
from taskrelay.ops import metrics
from taskrelay.queue.models import EnqueueReceipt, TaskRecord
from taskrelay.queue.task_queue import TaskQueue
from taskrelay.utils.log import logger

from .interfaces import DeliveryOutcome, FailureReason


class KvQueueDelivery:
    """Write the task into the shared store; workers poll for it."""

    mode = "kv-queue"

    def __init__(self, task_queue: TaskQueue) -> None:
        self.task_queue = task_queue

    async def deliver(self, task: TaskRecord) -> DeliveryOutcome:
        try:
            receipt = await self.task_queue.enqueue(task)
        except StoreUnavailable as ex:
            # Never reported as accepted: the task is not durable anywhere.
            metrics.delivery_outcomes.labels(mode=self.mode, outcome="rejected").inc()
            logger.error("delivery_store_write_failed", mode=self.mode, task_id=task.id, error=str(ex))
            return DeliveryOutcome(
                receipt=EnqueueReceipt(id=task.id, status="rejected", message="Task store unavailable"),
                accepted=False,
                failure=FailureReason.STORE_UNAVAILABLE,
                detail=str(ex),
            )
        metrics.delivery_outcomes.labels(mode=self.mode, outcome="accepted").inc()
        return DeliveryOutcome(receipt=receipt, accepted=True)
