from __future__ import annotations

import json
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from taskrelay.api.deps import get_delivery, get_task_queue, verify_api_key
from taskrelay.delivery import Delivery, FailureReason
from taskrelay.errors import NotFound, NotLeaseHolder, StoreUnavailable, ValidationError
from taskrelay.queue.interfaces import ReleaseOutcome
from taskrelay.queue.models import ResultRecord
from taskrelay.queue.task_queue import TaskQueue
from taskrelay.shaper import shape_task, validate_task_id
from taskrelay.utils.log import logger

router = APIRouter(prefix="/api", tags=["queue"], dependencies=[Depends(verify_api_key)])

_STATUS_MAX = 64
_REASON_MAX = 512


@contextmanager
def http_errors(op: str, task_id: str | None = None) -> Iterator[None]:
    """Map queue exceptions onto HTTP status codes (503/422/404/403)."""
    try:
        yield
    except StoreUnavailable as ex:
        logger.warning("queue_store_unavailable", op=op, task_id=task_id, error=str(ex))
        raise HTTPException(status_code=503, detail="Task store unavailable; try again later") from ex
    except ValidationError as ex:
        raise HTTPException(status_code=422, detail=ex.errors) from ex
    except NotFound as ex:
        raise HTTPException(status_code=404, detail=str(ex)) from ex
    except NotLeaseHolder as ex:
        raise HTTPException(status_code=403, detail="Not lease holder") from ex


def _task_id(task_id: str) -> str:
    with http_errors("validate"):
        return validate_task_id(task_id)


async def _json_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON") from None
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON")
    return body


def _opt_str(body: dict[str, Any], *names: str, max_len: int = 128) -> str | None:
    for n in names:
        if n in body and body[n] is not None:
            v = body[n]
            if not isinstance(v, str) or not v.strip() or len(v) > max_len:
                raise HTTPException(status_code=422, detail=f"{n} must be a non-empty string (max {max_len})")
            return v.strip()
    return None


def _opt_int(body: dict[str, Any], *names: str, lo: int, hi: int) -> int | None:
    for n in names:
        if n in body and body[n] is not None:
            v = body[n]
            if isinstance(v, bool) or not isinstance(v, int) or not lo <= v <= hi:
                raise HTTPException(status_code=422, detail=f"{n} must be an integer in [{lo}, {hi}]")
            return int(v)
    return None


# --- producer side ---


@router.post("/queue")
async def enqueue_task(request: Request, delivery: Delivery = Depends(get_delivery)) -> Any:
    body = await _json_body(request)
    s = request.app.state.settings
    with http_errors("enqueue", str(body.get("id") or "") or None):
        task = shape_task(
            body,
            metadata_max_bytes=int(s.metadata_max_bytes),
            content_max_chars=int(s.content_max_chars),
        )
    outcome = await delivery.deliver(task)
    if outcome.failure is FailureReason.STORE_UNAVAILABLE:
        raise HTTPException(status_code=503, detail="Task store unavailable; task not queued")
    if outcome.degraded:
        # Transport failed: report it instead of pretending the task was accepted.
        return JSONResponse(status_code=502, content={"success": False, **outcome.to_dict()})
    return {"success": True, **outcome.to_dict()}


@router.get("/queue")
async def list_pending(tq: TaskQueue = Depends(get_task_queue)) -> dict[str, Any]:
    pending = await tq.get_pending_requests()
    return {"pending": pending, "count": len(pending)}


@router.delete("/queue/{task_id}")
async def cancel_task(task_id: str, tq: TaskQueue = Depends(get_task_queue)) -> dict[str, Any]:
    tid = _task_id(task_id)
    with http_errors("cancel", tid):
        existed = await tq.cancel(tid)
    return {"success": True, "existed": bool(existed)}


# --- worker side ---


@router.post("/queue/claim")
async def claim_task(request: Request, tq: TaskQueue = Depends(get_task_queue)) -> dict[str, Any]:
    body = await _json_body(request)
    worker_id = _opt_str(body, "worker_id", "workerId") or f"worker_{int(time.time() * 1000)}"
    lease_sec = _opt_int(body, "lease_sec", "leaseDurationSec", lo=1, hi=tq.config.lease_max_sec)
    with http_errors("claim"):
        claimed = await tq.claim(worker_id, lease_sec=lease_sec)
    if claimed is None:
        return {"success": False, "message": "No tasks available or all tasks are leased"}
    return {"success": True, **claimed.to_dict()}


@router.get("/queue/{task_id}")
async def get_task(task_id: str, tq: TaskQueue = Depends(get_task_queue)) -> dict[str, Any]:
    tid = _task_id(task_id)
    with http_errors("get_task", tid):
        task = await tq.get_request(tid)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return task.to_dict()


@router.post("/queue/{task_id}/release")
async def release_task(task_id: str, request: Request, tq: TaskQueue = Depends(get_task_queue)) -> dict[str, Any]:
    tid = _task_id(task_id)
    body = await _json_body(request)
    worker_id = _opt_str(body, "worker_id", "workerId")
    reason = _opt_str(body, "reason", max_len=_REASON_MAX)
    with http_errors("release", tid):
        out = await tq.release(tid, worker_id, reason=reason)
    if out is ReleaseOutcome.not_holder:
        raise HTTPException(status_code=403, detail="Not lease holder")
    if out is ReleaseOutcome.no_lease:
        return {"success": True, "message": "No active lease"}
    return {"success": True}


@router.post("/queue/{task_id}/renew")
async def renew_lease(task_id: str, request: Request, tq: TaskQueue = Depends(get_task_queue)) -> dict[str, Any]:
    tid = _task_id(task_id)
    body = await _json_body(request)
    worker_id = _opt_str(body, "worker_id", "workerId")
    if worker_id is None:
        raise HTTPException(status_code=422, detail="worker_id is required")
    extend_sec = _opt_int(body, "extend_sec", "extendSec", lo=1, hi=tq.config.lease_max_sec)
    with http_errors("renew", tid):
        lease = await tq.renew(tid, worker_id, extend_sec=extend_sec)
    return {"success": True, "lease": lease.to_dict()}


@router.post("/queue/{task_id}/status")
async def update_status(task_id: str, request: Request, tq: TaskQueue = Depends(get_task_queue)) -> dict[str, Any]:
    tid = _task_id(task_id)
    body = await _json_body(request)
    status = _opt_str(body, "status", max_len=_STATUS_MAX)
    if status is None:
        raise HTTPException(status_code=422, detail="status is required")
    with http_errors("update_status", tid):
        task = await tq.update_status(tid, status)
    return {"success": True, "status": task.status}


# --- results ---


@router.post("/result/{task_id}")
async def store_result(task_id: str, request: Request, tq: TaskQueue = Depends(get_task_queue)) -> dict[str, Any]:
    tid = _task_id(task_id)
    body = await _json_body(request)
    success = body.get("success")
    if not isinstance(success, bool):
        raise HTTPException(status_code=422, detail="success must be a boolean")
    error = body.get("error")
    if error is not None and not isinstance(error, str):
        raise HTTPException(status_code=422, detail="error must be a string")
    message = _opt_str(body, "message", max_len=_REASON_MAX)
    result = ResultRecord(
        id=tid,
        status="completed" if success else "failed",
        message=message or ("Task completed" if success else "Task failed"),
        output=body.get("output"),
        error=error,
    )
    with http_errors("store_result", tid):
        await tq.store_result(tid, result)
    return {"success": True}


@router.get("/result/{task_id}")
async def get_result(task_id: str, tq: TaskQueue = Depends(get_task_queue)) -> dict[str, Any]:
    tid = _task_id(task_id)
    with http_errors("get_result", tid):
        res = await tq.get_result(tid)
    if res is None:
        raise HTTPException(status_code=404, detail="Result not found")
    return res.to_dict()
