from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from taskrelay.config import Settings
from taskrelay.queue.models import EnqueueReceipt, TaskRecord


class FailureReason(str, Enum):
    STORE_UNAVAILABLE = "store_unavailable"
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"


@dataclass(frozen=True, slots=True)
class DeliveryOutcome:
    """
    Result of handing a task to the configured transport.

    accepted  -> the transport durably took the task
    degraded  -> a placeholder receipt was produced after a transport failure;
                 the task may never be processed
    neither   -> the task was rejected (e.g. the store write failed)
    """

    receipt: EnqueueReceipt
    accepted: bool
    degraded: bool = False
    failure: FailureReason | None = None
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "receipt": self.receipt.to_dict(),
            "accepted": bool(self.accepted),
            "degraded": bool(self.degraded),
            "failure": self.failure.value if self.failure is not None else None,
            "detail": self.detail,
        }


class Delivery(Protocol):
    mode: str

    async def deliver(self, task: TaskRecord) -> DeliveryOutcome: ...


@dataclass(frozen=True, slots=True)
class DeliveryConfig:
    mode: str = "kv-queue"  # kv-queue|webhook|direct
    timeout_sec: float = 30.0
    retries: int = 2
    webhook_url: str = ""
    direct_url: str = ""
    auth_token: str = field(default="", repr=False)
    estimated_completion_sec: int = 60

    @classmethod
    def from_settings(cls, s: Settings) -> DeliveryConfig:
        tok = s.secret.delivery_auth_token
        return cls(
            mode=str(s.delivery_mode),
            timeout_sec=max(0.1, float(s.delivery_timeout_sec)),
            retries=max(0, int(s.delivery_retries)),
            webhook_url=str(s.webhook_url or "").strip(),
            direct_url=str(s.direct_url or "").strip(),
            auth_token=tok.get_secret_value() if tok is not None else "",
            estimated_completion_sec=max(0, int(s.estimated_completion_sec)),
        )
