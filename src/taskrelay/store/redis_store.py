from __future__ import annotations

import json
import re
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from taskrelay.errors import StoreUnavailable
from taskrelay.utils.log import logger

_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")


def _glob_escape(prefix: str) -> str:
    return _GLOB_SPECIAL.sub(r"\\\1", prefix)


class RedisStore:
    """
    Redis adapter restricted to the plain KV surface (GET/SET EX/DEL/SCAN).

    No Lua, no MULTI, no SET NX: the queue must work against stores that offer
    nothing stronger than independent key operations.
    """

    def __init__(self, *, redis_url: str, scan_count: int = 500) -> None:
        self._redis_url = str(redis_url or "").strip()
        self._scan_count = max(10, int(scan_count))
        self._client: redis.Redis | None = None

    def _redis(self) -> redis.Redis:
        if self._client is not None:
            return self._client
        try:
            self._client = redis.Redis.from_url(self._redis_url, decode_responses=True)
        except (RedisError, ValueError) as ex:
            # Do not log the URL (may contain credentials).
            logger.warning("redis_store_init_failed", error=str(ex))
            raise StoreUnavailable("connect", detail=str(ex)) from ex
        return self._client

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._redis().get(str(key))
        except (RedisError, OSError) as ex:
            raise StoreUnavailable("get", key, str(ex)) from ex
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("redis_store_undecodable_value", key=str(key))
            return None

    async def put(self, key: str, value: Any, *, ttl_sec: int | None = None) -> None:
        try:
            raw = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as ex:
            raise StoreUnavailable("put", key, f"value not serialisable: {ex}") from ex
        try:
            await self._redis().set(str(key), raw, ex=int(ttl_sec) if ttl_sec else None)
        except (RedisError, OSError) as ex:
            raise StoreUnavailable("put", key, str(ex)) from ex

    async def delete(self, key: str) -> None:
        try:
            await self._redis().delete(str(key))
        except (RedisError, OSError) as ex:
            raise StoreUnavailable("delete", key, str(ex)) from ex

    async def list(self, prefix: str) -> list[str]:
        out: list[str] = []
        seen: set[str] = set()
        try:
            async for k in self._redis().scan_iter(match=_glob_escape(prefix) + "*", count=self._scan_count):
                # SCAN may yield a key more than once.
                if k not in seen:
                    seen.add(k)
                    out.append(k)
        except (RedisError, OSError) as ex:
            raise StoreUnavailable("list", prefix, str(ex)) from ex
        return out

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        try:
            await client.aclose()
        except (RedisError, OSError) as ex:
            logger.warning("redis_store_close_failed", error=str(ex))
