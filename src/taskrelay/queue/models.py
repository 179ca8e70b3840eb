from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Priority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class TaskType(str, Enum):
    task = "task"
    query = "query"
    approval = "approval"
    notification = "notification"


def now_utc() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def iso_from_ts(ts: float) -> str:
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat()


@dataclass(frozen=True, slots=True)
class DelegationHint:
    target: str
    reason: str
    agent: str | None = None


@dataclass(frozen=True, slots=True)
class SkillHint:
    category: str
    files: list[str] = field(default_factory=list)
    tokens_estimate: int = 0


@dataclass(slots=True)
class TaskRecord:
    id: str
    type: TaskType
    source: str
    content: str
    priority: Priority
    queued_at: str
    delegation_hints: list[DelegationHint] = field(default_factory=list)
    skill_hints: list[SkillHint] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    status: str = "pending"
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["type"] = self.type.value
        d["priority"] = self.priority.value
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> TaskRecord:
        dd = dict(d)
        dd.setdefault("delegation_hints", [])
        dd.setdefault("skill_hints", [])
        dd.setdefault("metadata", {})
        dd.setdefault("status", "pending")
        dd.setdefault("updated_at", None)
        dd["type"] = TaskType(str(dd["type"]))
        dd["priority"] = Priority(str(dd["priority"]))
        dd["delegation_hints"] = [
            h if isinstance(h, DelegationHint) else DelegationHint(**h) for h in dd["delegation_hints"]
        ]
        dd["skill_hints"] = [h if isinstance(h, SkillHint) else SkillHint(**h) for h in dd["skill_hints"]]
        return cls(**dd)


@dataclass(frozen=True, slots=True)
class LeaseRecord:
    task_id: str
    worker_id: str
    acquired_at: str
    expires_at: str
    claim_nonce: str
    renewed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> LeaseRecord:
        dd = dict(d)
        dd.setdefault("claim_nonce", "")
        dd.setdefault("renewed_at", None)
        return cls(**dd)


@dataclass(frozen=True, slots=True)
class ResultRecord:
    id: str
    status: str
    message: str
    stored_at: str = ""
    estimated_completion: str | None = None
    output: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ResultRecord:
        return cls(**dict(d))


@dataclass(frozen=True, slots=True)
class TaskIndex:
    ids: list[str]
    cached_at: float  # unix seconds

    def to_dict(self) -> dict[str, Any]:
        return {"ids": list(self.ids), "cached_at": float(self.cached_at)}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> TaskIndex:
        return cls(ids=[str(x) for x in d["ids"]], cached_at=float(d["cached_at"]))


@dataclass(frozen=True, slots=True)
class EnqueueReceipt:
    id: str
    status: str  # accepted | rejected | pending_approval
    message: str
    estimated_completion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class ClaimedTask:
    task: TaskRecord
    lease: LeaseRecord

    def to_dict(self) -> dict[str, Any]:
        return {"task_id": self.task.id, "task": self.task.to_dict(), "lease": self.lease.to_dict()}
