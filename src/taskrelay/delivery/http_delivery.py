from __future__ import annotations

import asyncio
import json
import socket
import time
import urllib.error
import urllib.request
from typing import Any, Callable

from taskrelay.ops import metrics
from taskrelay.queue.models import EnqueueReceipt, TaskRecord, iso_from_ts
from taskrelay.utils.log import logger
from taskrelay.utils.retry import retry_call

from .interfaces import DeliveryConfig, DeliveryOutcome, FailureReason

_RETRY_STATUSES = {408, 425, 429}


def _is_timeout(ex: BaseException) -> bool:
    if isinstance(ex, (TimeoutError, socket.timeout)):
        return True
    if isinstance(ex, urllib.error.URLError) and not isinstance(ex, urllib.error.HTTPError):
        return isinstance(ex.reason, (TimeoutError, socket.timeout))
    return False


def _retryable(ex: BaseException) -> bool:
    if isinstance(ex, urllib.error.HTTPError):
        return int(ex.code) in _RETRY_STATUSES or int(ex.code) >= 500
    return isinstance(ex, (urllib.error.URLError, TimeoutError, OSError))


def _post_json(url: str, body: dict[str, Any], *, headers: dict[str, str], timeout_sec: float) -> tuple[int, Any]:
    data = json.dumps(body, separators=(",", ":")).encode("utf-8")
    req = urllib.request.Request(url, data=data, method="POST")
    req.add_header("Content-Type", "application/json")
    req.add_header("Accept", "application/json")
    for k, v in headers.items():
        if k and v:
            req.add_header(k, v)
    with urllib.request.urlopen(req, timeout=float(timeout_sec)) as resp:  # nosec B310
        status = int(getattr(resp, "status", 200) or 200)
        raw = resp.read()
    try:
        return status, json.loads(raw.decode("utf-8")) if raw else None
    except (UnicodeDecodeError, ValueError):
        return status, None


class _HttpDelivery:
    """
    POST the task as JSON to a remote orchestrator.

    Any transport failure yields a degraded placeholder receipt with a typed
    reason, a warning log and a delivery_degraded metric; it is never reported
    as accepted.
    """

    mode = ""
    placeholder_eta_sec = 120

    def __init__(
        self,
        config: DeliveryConfig,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self._clock = clock
        self._sleep = sleep

    def target_url(self) -> str:
        raise NotImplementedError

    def _headers(self) -> dict[str, str]:
        tok = self.config.auth_token
        return {"Authorization": f"Bearer {tok}"} if tok else {}

    def _send_sync(self, task: TaskRecord) -> tuple[int, Any]:
        url = self.target_url()

        def _on_retry(attempt: int, delay: float, ex: BaseException) -> None:
            logger.info(
                "delivery_retry",
                mode=self.mode,
                task_id=task.id,
                attempt=attempt,
                delay_sec=round(delay, 2),
                error=str(ex)[:200],
            )

        return retry_call(
            lambda: _post_json(
                url,
                task.to_dict(),
                headers=self._headers(),
                timeout_sec=self.config.timeout_sec,
            ),
            retries=self.config.retries,
            retry_on=_retryable,
            on_retry=_on_retry,
            sleep=self._sleep,
        )

    def _receipt_from(self, task: TaskRecord, body: Any) -> EnqueueReceipt:
        b = body if isinstance(body, dict) else {}
        eta = b.get("estimated_completion") or b.get("estimatedCompletion")
        if not eta:
            eta = iso_from_ts(self._clock() + self.config.estimated_completion_sec)
        return EnqueueReceipt(
            id=str(b.get("id") or task.id),
            status=str(b.get("status") or "accepted"),
            message=str(b.get("message") or f"Task delivered via {self.mode}"),
            estimated_completion=str(eta),
        )

    def _degraded(self, task: TaskRecord, reason: FailureReason, detail: str) -> DeliveryOutcome:
        metrics.delivery_degraded.labels(mode=self.mode, reason=reason.value).inc()
        metrics.delivery_outcomes.labels(mode=self.mode, outcome="degraded").inc()
        logger.warning(
            "delivery_degraded",
            mode=self.mode,
            task_id=task.id,
            reason=reason.value,
            error=detail[:200],
        )
        receipt = EnqueueReceipt(
            id=task.id,
            status="degraded",
            message=f"{self.mode} delivery failed ({reason.value}); not queued",
            estimated_completion=iso_from_ts(self._clock() + self.placeholder_eta_sec),
        )
        return DeliveryOutcome(receipt=receipt, accepted=False, degraded=True, failure=reason, detail=detail)

    async def deliver(self, task: TaskRecord) -> DeliveryOutcome:
        try:
            status, body = await asyncio.to_thread(self._send_sync, task)
        except urllib.error.HTTPError as ex:
            return self._degraded(task, FailureReason.HTTP_ERROR, f"HTTP {ex.code}")
        except (urllib.error.URLError, TimeoutError, OSError) as ex:
            if _is_timeout(ex):
                return self._degraded(task, FailureReason.TIMEOUT, str(ex))
            return self._degraded(task, FailureReason.HTTP_ERROR, str(ex))
        if not 200 <= int(status) < 300:
            return self._degraded(task, FailureReason.HTTP_ERROR, f"HTTP {status}")
        metrics.delivery_outcomes.labels(mode=self.mode, outcome="accepted").inc()
        logger.info("delivery_sent", mode=self.mode, task_id=task.id, status=int(status))
        return DeliveryOutcome(receipt=self._receipt_from(task, body), accepted=True)


class WebhookDelivery(_HttpDelivery):
    """POST the task to WEBHOOK_URL as-is."""

    mode = "webhook"
    placeholder_eta_sec = 120

    def target_url(self) -> str:
        return self.config.webhook_url


class DirectDelivery(_HttpDelivery):
    """POST the task to the orchestrator API at DIRECT_URL."""

    mode = "direct"
    placeholder_eta_sec = 300

    def target_url(self) -> str:
        return self.config.direct_url.rstrip("/") + "/api/orchestrate"
