from __future__ import annotations

import json
import time
from typing import Any, Callable

from taskrelay.errors import StoreUnavailable


class MemoryStore:
    """
    In-process store with TTL expiry.

    Values are kept JSON-encoded so callers never share mutable state with the store,
    matching what a remote backend would hand back.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._items: dict[str, tuple[str, float | None]] = {}

    def _alive(self, key: str) -> tuple[str, float | None] | None:
        item = self._items.get(key)
        if item is None:
            return None
        _, exp = item
        if exp is not None and self._clock() >= exp:
            self._items.pop(key, None)
            return None
        return item

    async def get(self, key: str) -> Any | None:
        item = self._alive(str(key))
        if item is None:
            return None
        return json.loads(item[0])

    async def put(self, key: str, value: Any, *, ttl_sec: int | None = None) -> None:
        try:
            raw = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as ex:
            raise StoreUnavailable("put", key, f"value not serialisable: {ex}") from ex
        exp = self._clock() + float(ttl_sec) if ttl_sec else None
        # Re-insert so enumeration order follows write order.
        self._items.pop(str(key), None)
        self._items[str(key)] = (raw, exp)

    async def delete(self, key: str) -> None:
        self._items.pop(str(key), None)

    async def list(self, prefix: str) -> list[str]:
        return [k for k in list(self._items) if k.startswith(prefix) and self._alive(k) is not None]

    async def close(self) -> None:
        return None
