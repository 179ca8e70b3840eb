from __future__ import annotations

from typing import Any, Protocol


class KVStore(Protocol):
    """
    The only shared mutable resource.

    - `get` returns the decoded JSON value, or None when absent/expired
    - `put` overwrites unconditionally (last write wins); `ttl_sec` bounds lifetime
    - `list` returns full key names under a prefix, in whatever order the backend yields
    - every backend failure surfaces as `StoreUnavailable`
    - no multi-key transactions, no compare-and-swap
    """

    async def get(self, key: str) -> Any | None: ...

    async def put(self, key: str, value: Any, *, ttl_sec: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def list(self, prefix: str) -> list[str]: ...

    async def close(self) -> None: ...
