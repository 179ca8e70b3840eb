"""
Delivery strategies: how an accepted producer payload reaches the workers.

Exactly one is chosen at construction from DELIVERY_MODE:
- kv-queue: write into the shared store (workers poll it)
- webhook: POST to WEBHOOK_URL
- direct: POST to the orchestrator API at DIRECT_URL
"""

from __future__ import annotations

from taskrelay.queue.task_queue import TaskQueue
from taskrelay.utils.log import logger

from .http_delivery import DirectDelivery, WebhookDelivery
from .interfaces import Delivery, DeliveryConfig, DeliveryOutcome, FailureReason
from .kv_queue import KvQueueDelivery

__all__ = [
    "Delivery",
    "DeliveryConfig",
    "DeliveryOutcome",
    "DirectDelivery",
    "FailureReason",
    "KvQueueDelivery",
    "WebhookDelivery",
    "build_delivery",
]


def build_delivery(config: DeliveryConfig, *, task_queue: TaskQueue) -> Delivery:
    mode = str(config.mode)
    if mode == "webhook":
        if not config.webhook_url:
            raise ValueError("webhook delivery requires a webhook URL")
        d: Delivery = WebhookDelivery(config)
    elif mode == "direct":
        if not config.direct_url:
            raise ValueError("direct delivery requires a direct URL")
        d = DirectDelivery(config)
    elif mode == "kv-queue":
        d = KvQueueDelivery(task_queue)
    else:
        raise ValueError(f"unknown delivery mode: {mode!r}")
    logger.info("delivery_mode_selected", mode=d.mode)
    return d
