from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from typing import Any

from fastapi import Request, Response

from taskrelay.utils.log import logger, set_request_id


def _new_request_id() -> str:
    return uuid.uuid4().hex


async def request_context_middleware(
    request: Request, call_next: Callable[[Request], Any]
) -> Response:
    """
    Request-scoped context:
    - Inject X-Request-ID if absent
    - Put request_id into contextvars so all logs get the correlation field
    - One access log line per request
    """
    rid = request.headers.get("x-request-id") or _new_request_id()
    set_request_id(rid)
    request.state.request_id = rid
    t0 = time.perf_counter()
    try:
        resp = await call_next(request)
        resp.headers.setdefault("x-request-id", rid)
        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=int(resp.status_code),
            duration_ms=round((time.perf_counter() - t0) * 1000.0, 2),
        )
        return resp
    finally:
        set_request_id(None)
