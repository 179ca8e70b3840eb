"""
Producer payload validation (the boundary before any store write).

Classification (priority/type heuristics, delegation estimates) happens upstream;
this module only checks that what arrives is a well-formed task and rejects it
otherwise. Nothing is coerced: "3" is not an int, "HIGH" is not a priority.
"""

from __future__ import annotations

import json
import re
from typing import Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

from taskrelay.errors import ValidationError
from taskrelay.queue.models import (
    DelegationHint,
    Priority,
    SkillHint,
    TaskRecord,
    TaskType,
    now_utc,
)

TASK_ID_MAX = 64
TASK_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class DelegationHintIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    target: StrictStr = Field(min_length=1, max_length=128)
    reason: StrictStr = Field(default="", max_length=1024)
    agent: StrictStr | None = Field(default=None, max_length=128)


class SkillHintIn(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    category: StrictStr = Field(min_length=1, max_length=128)
    files: list[StrictStr] = Field(default_factory=list, max_length=256)
    tokens_estimate: StrictInt = Field(default=0, ge=0, alias="tokensEstimate")


class TaskPayload(BaseModel):
    """Wire shape accepted from producers (snake_case or the camelCase aliases)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: StrictStr = Field(min_length=1, max_length=TASK_ID_MAX, pattern=TASK_ID_RE.pattern)
    type: Literal["task", "query", "approval", "notification"] = "task"
    source: StrictStr = Field(default="api", min_length=1, max_length=64)
    content: StrictStr = ""
    priority: Literal["low", "medium", "high", "critical"] = "medium"
    delegation_hints: list[DelegationHintIn] = Field(default_factory=list, alias="delegationHints", max_length=32)
    skill_hints: list[SkillHintIn] = Field(default_factory=list, alias="skillHints", max_length=32)
    metadata: dict[str, Any] = Field(default_factory=dict)


def validate_task_id(task_id: Any) -> str:
    if not isinstance(task_id, str) or not TASK_ID_RE.match(task_id):
        raise ValidationError(
            [
                {
                    "loc": ["id"],
                    "msg": f"task id must be 1-{TASK_ID_MAX} characters of letters, digits, '-' or '_'",
                }
            ]
        )
    return task_id


def _metadata_size(metadata: dict[str, Any]) -> int:
    try:
        raw = json.dumps(metadata, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as ex:
        raise ValidationError([{"loc": ["metadata"], "msg": f"not JSON serialisable: {ex}"}]) from ex
    return len(raw.encode("utf-8"))


def shape_task(
    payload: Any,
    *,
    metadata_max_bytes: int = 16 * 1024,
    content_max_chars: int = 100_000,
) -> TaskRecord:
    """
    Validate a producer payload into a TaskRecord ready for enqueue.

    Raises ValidationError listing every problem found.
    """
    if not isinstance(payload, dict):
        raise ValidationError("payload must be a JSON object")
    try:
        p = TaskPayload.model_validate(payload)
    except pydantic.ValidationError as ex:
        raise ValidationError(
            [{"loc": list(e.get("loc") or []), "msg": str(e.get("msg") or "invalid")} for e in ex.errors()]
        ) from ex

    problems: list[dict[str, Any]] = []
    if len(p.content) > int(content_max_chars):
        problems.append({"loc": ["content"], "msg": f"longer than {int(content_max_chars)} characters"})
    size = _metadata_size(p.metadata)
    if size > int(metadata_max_bytes):
        problems.append({"loc": ["metadata"], "msg": f"{size} bytes exceeds limit of {int(metadata_max_bytes)}"})
    if problems:
        raise ValidationError(problems)

    return TaskRecord(
        id=p.id,
        type=TaskType(p.type),
        source=p.source,
        content=p.content,
        priority=Priority(p.priority),
        queued_at=now_utc(),
        delegation_hints=[DelegationHint(target=h.target, reason=h.reason, agent=h.agent) for h in p.delegation_hints],
        skill_hints=[
            SkillHint(category=h.category, files=list(h.files), tokens_estimate=int(h.tokens_estimate))
            for h in p.skill_hints
        ],
        metadata=dict(p.metadata),
    )
