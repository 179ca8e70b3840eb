from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from taskrelay.config import Settings


@dataclass(frozen=True, slots=True)
class QueueKeys:
    """Logical key namespaces: task:{id}, lease:{id}, result:{id}, task-index."""

    prefix: str = "queue"

    @property
    def task_prefix(self) -> str:
        return f"{self.prefix}:task:"

    @property
    def lease_prefix(self) -> str:
        return f"{self.prefix}:lease:"

    @property
    def result_prefix(self) -> str:
        return f"{self.prefix}:result:"

    @property
    def index(self) -> str:
        return f"{self.prefix}:task-index"

    def task(self, task_id: str) -> str:
        return self.task_prefix + str(task_id)

    def lease(self, task_id: str) -> str:
        return self.lease_prefix + str(task_id)

    def result(self, task_id: str) -> str:
        return self.result_prefix + str(task_id)

    @staticmethod
    def strip(key: str, prefix: str) -> str:
        return key[len(prefix) :] if key.startswith(prefix) else key


@dataclass(frozen=True, slots=True)
class QueueConfig:
    """
    Constructed once and passed to the queue components; nothing reads ambient state.
    """

    keys: QueueKeys
    task_ttl_sec: int = 3600
    lease_ttl_sec: int = 300
    lease_max_sec: int = 600
    result_ttl_sec: int = 3600
    index_fresh_sec: int = 300
    index_stale_max_sec: int = 1800
    estimated_completion_sec: int = 60

    @property
    def index_ttl_sec(self) -> int:
        # Outlives the freshness window so stale-but-usable reads stay possible.
        return 2 * int(self.index_fresh_sec)

    def clamp_lease(self, lease_sec: int | None) -> int:
        v = int(lease_sec) if lease_sec else int(self.lease_ttl_sec)
        return max(1, min(v, int(self.lease_max_sec)))

    @classmethod
    def from_settings(cls, s: Settings) -> QueueConfig:
        return cls(
            keys=QueueKeys(prefix=str(s.queue_key_prefix)),
            task_ttl_sec=max(1, int(s.task_ttl_sec)),
            lease_ttl_sec=max(1, int(s.lease_ttl_sec)),
            lease_max_sec=max(1, int(s.lease_max_sec)),
            result_ttl_sec=max(1, int(s.result_ttl_sec)),
            index_fresh_sec=max(1, int(s.task_index_fresh_sec)),
            index_stale_max_sec=max(1, int(s.task_index_stale_max_sec)),
            estimated_completion_sec=max(0, int(s.estimated_completion_sec)),
        )


class ReleaseOutcome(str, Enum):
    released = "released"
    no_lease = "no_lease"
    not_holder = "not_holder"
