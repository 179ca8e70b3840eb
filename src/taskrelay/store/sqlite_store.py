from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Callable

from sqlitedict import SqliteDict  # type: ignore

from taskrelay.errors import StoreUnavailable
from taskrelay.utils.log import logger


class SqliteStore:
    """
    Single-host persistent store (sqlitedict).

    Each row holds {"v": <value>, "exp": <unix ts | null>}; expired rows are
    treated as absent and removed lazily.
    """

    def __init__(self, db_path: Path, *, clock: Callable[[], float] = time.time) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._lock = threading.Lock()

    def _db(self) -> SqliteDict:
        # Open/close per operation (safe across worker threads)
        return SqliteDict(
            str(self.db_path),
            tablename="kv",
            autocommit=True,
            encode=json.dumps,
            decode=json.loads,
        )

    def _expired(self, row: Any) -> bool:
        if not isinstance(row, dict):
            return True
        exp = row.get("exp")
        return exp is not None and self._clock() >= float(exp)

    def _get_sync(self, key: str) -> Any | None:
        with self._lock, self._db() as db:
            row = db.get(key)
            if row is None:
                return None
            if self._expired(row):
                del db[key]
                return None
            return row.get("v")

    def _put_sync(self, key: str, value: Any, ttl_sec: int | None) -> None:
        exp = self._clock() + float(ttl_sec) if ttl_sec else None
        with self._lock, self._db() as db:
            db[key] = {"v": value, "exp": exp}

    def _delete_sync(self, key: str) -> None:
        with self._lock, self._db() as db:
            if key in db:
                del db[key]

    def _list_sync(self, prefix: str) -> list[str]:
        out: list[str] = []
        stale: list[str] = []
        with self._lock, self._db() as db:
            for k, row in db.items():
                if not str(k).startswith(prefix):
                    continue
                if self._expired(row):
                    stale.append(str(k))
                    continue
                out.append(str(k))
            for k in stale:
                del db[k]
        if stale:
            logger.debug("sqlite_store_expired_pruned", prefix=prefix, count=len(stale))
        return out

    async def _run(self, op: str, key: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except (sqlite3.Error, OSError, RuntimeError) as ex:
            raise StoreUnavailable(op, key, str(ex)) from ex
        except (TypeError, ValueError) as ex:
            raise StoreUnavailable(op, key, f"value not serialisable: {ex}") from ex

    async def get(self, key: str) -> Any | None:
        return await self._run("get", key, self._get_sync, str(key))

    async def put(self, key: str, value: Any, *, ttl_sec: int | None = None) -> None:
        await self._run("put", key, self._put_sync, str(key), value, ttl_sec)

    async def delete(self, key: str) -> None:
        await self._run("delete", key, self._delete_sync, str(key))

    async def list(self, prefix: str) -> list[str]:
        return await self._run("list", prefix, self._list_sync, str(prefix))

    async def close(self) -> None:
        return None
