from __future__ import annotations

from typing import Any


class TaskRelayError(RuntimeError):
    pass


class StoreUnavailable(TaskRelayError):
    """A store call failed (network, rate limit, backend error)."""

    def __init__(self, op: str, key: str = "", detail: str = "") -> None:
        self.op = str(op)
        self.key = str(key)
        self.detail = str(detail)
        msg = f"store {self.op} failed"
        if self.key:
            msg += f" (key={self.key})"
        if self.detail:
            msg += f": {self.detail}"
        super().__init__(msg)


class ValidationError(TaskRelayError):
    """Producer payload rejected before any store write."""

    def __init__(self, errors: list[dict[str, Any]] | str) -> None:
        if isinstance(errors, str):
            errors = [{"loc": [], "msg": errors}]
        self.errors = list(errors)
        parts = []
        for e in self.errors:
            loc = ".".join(str(x) for x in (e.get("loc") or []))
            parts.append(f"{loc}: {e.get('msg')}" if loc else str(e.get("msg")))
        super().__init__("invalid task payload: " + "; ".join(parts))


class NotFound(TaskRelayError):
    def __init__(self, what: str, task_id: str) -> None:
        self.what = str(what)
        self.task_id = str(task_id)
        super().__init__(f"{self.what} not found: {self.task_id}")


class NotLeaseHolder(TaskRelayError):
    def __init__(self, task_id: str, worker_id: str) -> None:
        self.task_id = str(task_id)
        self.worker_id = str(worker_id)
        super().__init__("Not lease holder")
