from __future__ import annotations

import hmac
import time
from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from taskrelay.config import Settings, get_settings
from taskrelay.delivery import Delivery
from taskrelay.queue.task_queue import TaskQueue
from taskrelay.utils.log import logger

_FAIL_LIMIT = 10
_FAIL_PER_SECONDS = 60


@dataclass
class _Bucket:
    tokens: float
    updated_at: float


class FailureLimiter:
    """In-proc token bucket keyed by client IP, charged only on auth failures."""

    def __init__(self, *, limit: int = _FAIL_LIMIT, per_seconds: int = _FAIL_PER_SECONDS) -> None:
        self.limit = int(limit)
        self.per_seconds = int(per_seconds)
        self._mem: dict[str, _Bucket] = {}

    def allow(self, key: str) -> bool:
        now = time.monotonic()
        rate = float(self.limit) / float(self.per_seconds)
        b = self._mem.get(key)
        if b is None:
            b = _Bucket(tokens=float(self.limit), updated_at=now)
            self._mem[key] = b
        b.tokens = min(float(self.limit), b.tokens + (now - b.updated_at) * rate)
        b.updated_at = now
        if b.tokens < 1.0:
            return False
        b.tokens -= 1.0
        return True


def _settings(request: Request) -> Settings:
    s = getattr(request.app.state, "settings", None)
    return s if s is not None else get_settings()


def _client_ip(request: Request) -> str:
    return str(getattr(request.client, "host", "") or "unknown")


def verify_api_key(request: Request) -> None:
    """
    Auth dependency: X-API-Key header, compared in constant time.

    - No QUEUE_API_KEY configured: 401 for every request (fail-closed)
    - Invalid/missing key: 401
    - Repeated failures: 429 after 10 failures/min per IP
    """
    s = _settings(request)
    secret = s.secret.queue_api_key
    expected = secret.get_secret_value() if secret is not None else ""
    if not expected:
        logger.error("auth_not_configured", path=str(request.url.path))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    provided = request.headers.get("x-api-key") or ""
    if provided and hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        return

    ip = _client_ip(request)
    limiter: FailureLimiter | None = getattr(request.app.state, "auth_limiter", None)
    if limiter is None:
        limiter = FailureLimiter()
        request.app.state.auth_limiter = limiter
    if not limiter.allow(f"auth:ip:{ip}"):
        logger.warning("auth_rate_limited", ip=ip)
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Too many auth failures")

    # Never log the key value.
    logger.info("auth_fail", ip=ip, path=str(request.url.path), key_present=bool(provided))
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def get_task_queue(request: Request) -> TaskQueue:
    tq = getattr(request.app.state, "task_queue", None)
    if tq is None:
        raise HTTPException(status_code=503, detail="Queue not initialized; try again later")
    return tq


def get_delivery(request: Request) -> Delivery:
    d = getattr(request.app.state, "delivery", None)
    if d is None:
        raise HTTPException(status_code=503, detail="Delivery not initialized; try again later")
    return d
