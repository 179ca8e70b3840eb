from __future__ import annotations

import asyncio

from taskrelay.errors import StoreUnavailable
from taskrelay.queue import QueueConfig, QueueKeys, TaskQueue, TaskRecord
from taskrelay.shaper import shape_task
from taskrelay.worker import OUTPUT_MAX_CHARS, HandlerResult, Worker
from tests._helpers.fakes import FakeStore


def _queue(store: FakeStore) -> TaskQueue:
    return TaskQueue(store, QueueConfig(keys=QueueKeys(prefix="t")), clock=store.clock)


async def _enqueue(q: TaskQueue, tid: str, content: str = "x") -> None:
    await q.enqueue(shape_task({"id": tid, "content": content}))


def test_run_once_stores_completed_result() -> None:
    async def handler(task: TaskRecord) -> HandlerResult:
        return HandlerResult(success=True, output=task.content.upper())

    async def run() -> None:
        q = _queue(FakeStore())
        await _enqueue(q, "a", "hello")
        w = Worker(q, handler, worker_id="w1")
        assert await w.run_once() is True
        res = await q.get_result("a")
        assert res is not None
        assert res.status == "completed"
        assert res.output == "HELLO"
        assert w.processed == 1
        assert await w.run_once() is False

    asyncio.run(run())


def test_plain_return_value_counts_as_success() -> None:
    async def handler(task: TaskRecord) -> dict:
        return {"answer": 4}

    async def run() -> None:
        q = _queue(FakeStore())
        await _enqueue(q, "a")
        await Worker(q, handler, worker_id="w1").run_once()
        res = await q.get_result("a")
        assert res is not None and res.output == {"answer": 4}

    asyncio.run(run())


def test_handler_exception_stores_failed_result() -> None:
    async def handler(task: TaskRecord) -> HandlerResult:
        raise RuntimeError("kaboom")

    async def run() -> None:
        q = _queue(FakeStore())
        await _enqueue(q, "a")
        await Worker(q, handler, worker_id="w1").run_once()
        res = await q.get_result("a")
        assert res is not None
        assert res.status == "failed"
        assert res.error == "kaboom"
        assert await q.get_request("a") is None
        assert await q.leases.get("a") is None

    asyncio.run(run())


def test_long_output_is_clipped() -> None:
    async def handler(task: TaskRecord) -> str:
        return "z" * (OUTPUT_MAX_CHARS + 50)

    async def run() -> None:
        q = _queue(FakeStore())
        await _enqueue(q, "a")
        await Worker(q, handler, worker_id="w1").run_once()
        res = await q.get_result("a")
        assert res is not None and len(res.output) == OUTPUT_MAX_CHARS

    asyncio.run(run())


def test_lease_is_renewed_while_handler_runs() -> None:
    async def run() -> None:
        q = _queue(FakeStore())
        await _enqueue(q, "a")
        renewals: list[str] = []
        real_renew = q.renew

        async def counting_renew(task_id, worker_id, *, extend_sec=None):
            renewals.append(task_id)
            return await real_renew(task_id, worker_id, extend_sec=extend_sec)

        q.renew = counting_renew  # type: ignore[method-assign]

        async def slow(task: TaskRecord) -> str:
            await asyncio.sleep(0.05)
            return "done"

        await Worker(q, slow, worker_id="w1", renew_interval_sec=0.01).run_once()
        assert renewals
        assert set(renewals) == {"a"}

    asyncio.run(run())


def test_run_stops_and_backs_off_on_errors() -> None:
    async def handler(task: TaskRecord) -> str:
        return "ok"

    async def run() -> None:
        store = FakeStore()
        q = _queue(store)
        w = Worker(
            q,
            handler,
            worker_id="w1",
            poll_interval_sec=0.0,
            max_consecutive_errors=2,
            max_backoff_sec=0.0,
        )
        polls = {"n": 0}

        async def failing_claim(worker_id, *, lease_sec=None):
            polls["n"] += 1
            if polls["n"] >= 6:
                w.stop()
            raise StoreUnavailable("get", "t:task:x", "down")

        q.claim = failing_claim  # type: ignore[method-assign]
        await asyncio.wait_for(w.run(), timeout=5)
        assert w.stopping is True
        assert polls["n"] == 6
        # Reset by the backoff after the third consecutive error.
        assert w.consecutive_errors < 3

    asyncio.run(run())


def test_run_processes_until_stopped() -> None:
    async def run() -> None:
        q = _queue(FakeStore())
        for tid in ("a", "b"):
            await _enqueue(q, tid)
        seen: list[str] = []

        async def handler(task: TaskRecord) -> str:
            seen.append(task.id)
            if len(seen) == 2:
                w.stop()
            return "ok"

        w = Worker(q, handler, worker_id="w1", poll_interval_sec=0.0)
        await asyncio.wait_for(w.run(), timeout=5)
        assert seen == ["a", "b"]
        assert w.processed == 2

    asyncio.run(run())


def test_renewal_error_does_not_skip_result() -> None:
    async def run() -> None:
        q = _queue(FakeStore())
        await _enqueue(q, "a")

        async def broken_renew(task_id, worker_id, *, extend_sec=None):
            raise RuntimeError("renew exploded")

        q.renew = broken_renew  # type: ignore[method-assign]

        async def slow(task: TaskRecord) -> str:
            await asyncio.sleep(0.05)
            return "done"

        await Worker(q, slow, worker_id="w1", renew_interval_sec=0.01).run_once()
        res = await q.get_result("a")
        assert res is not None and res.status == "completed"

    asyncio.run(run())
