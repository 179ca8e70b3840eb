"""
Queue semantics over a get/put/delete/list store.

- TaskIndexCache: bounded-staleness enumeration of pending ids
- LeaseCoordinator: batched availability + advisory leases
- TaskQueue: task/result lifecycle and the claim loop
"""

from __future__ import annotations

from taskrelay.config import Settings
from taskrelay.store.interfaces import KVStore

from .interfaces import QueueConfig, QueueKeys, ReleaseOutcome
from .leases import LeaseCoordinator
from .models import (
    ClaimedTask,
    DelegationHint,
    EnqueueReceipt,
    LeaseRecord,
    Priority,
    ResultRecord,
    SkillHint,
    TaskIndex,
    TaskRecord,
    TaskType,
)
from .task_index import TaskIndexCache
from .task_queue import TaskQueue

__all__ = [
    "ClaimedTask",
    "DelegationHint",
    "EnqueueReceipt",
    "LeaseCoordinator",
    "LeaseRecord",
    "Priority",
    "QueueConfig",
    "QueueKeys",
    "ReleaseOutcome",
    "ResultRecord",
    "SkillHint",
    "TaskIndex",
    "TaskIndexCache",
    "TaskQueue",
    "TaskRecord",
    "TaskType",
    "build_task_queue",
]


def build_task_queue(s: Settings, store: KVStore) -> TaskQueue:
    return TaskQueue(store, QueueConfig.from_settings(s))
