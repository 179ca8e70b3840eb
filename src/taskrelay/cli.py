from __future__ import annotations

import asyncio
import importlib
import json
import signal
import uuid
from contextlib import suppress
from typing import Any

import click

from taskrelay.config import get_safe_config_report, get_settings
from taskrelay.delivery import DeliveryConfig, build_delivery
from taskrelay.errors import ValidationError
from taskrelay.queue import build_task_queue
from taskrelay.queue.models import TaskRecord
from taskrelay.shaper import shape_task
from taskrelay.store import build_store
from taskrelay.utils.log import set_log_level
from taskrelay.worker import Handler, HandlerResult, Worker


async def echo_handler(task: TaskRecord) -> HandlerResult:
    """Default handler: completes every task with its own content."""
    return HandlerResult(success=True, output=task.content)


def _load_handler(spec: str) -> Handler:
    if spec == "echo":
        return echo_handler
    mod_name, sep, attr = spec.partition(":")
    if not sep or not mod_name or not attr:
        raise click.BadParameter("expected 'module:function' or 'echo'", param_hint="--handler")
    try:
        fn = getattr(importlib.import_module(mod_name), attr)
    except (ImportError, AttributeError) as ex:
        raise click.BadParameter(f"cannot load {spec}: {ex}", param_hint="--handler") from ex
    if not callable(fn):
        raise click.BadParameter(f"{spec} is not callable", param_hint="--handler")
    return fn


def _echo_json(obj: Any) -> None:
    click.echo(json.dumps(obj, indent=2, sort_keys=True, default=str))


@click.group()
@click.version_option(package_name="taskrelay")
@click.option("--log-level", type=str, default=None, help="Overrides LOG_LEVEL for this process.")
def cli(log_level: str | None) -> None:
    """Task relay: queue semantics on a get/put/delete/list store."""
    if log_level:
        set_log_level(log_level)


@cli.command("serve")
@click.option("--host", type=str, default=None, help="Defaults to HOST.")
@click.option("--port", type=int, default=None, help="Defaults to PORT.")
def serve(host: str | None, port: int | None) -> None:
    """Run the HTTP queue API."""
    import uvicorn

    s = get_settings()
    uvicorn.run(
        "taskrelay.server:app",
        host=str(host or s.host),
        port=int(port or s.port),
        reload=False,
    )


@cli.command("worker")
@click.option("--handler", "handler_spec", default="echo", show_default=True, help="'module:function' or 'echo'.")
@click.option("--once", is_flag=True, default=False, help="Claim and process at most one task, then exit.")
def worker_cmd(handler_spec: str, once: bool) -> None:
    """Poll the store for tasks and run them through a handler."""
    handler = _load_handler(handler_spec)
    s = get_settings()

    async def _main() -> int:
        store = build_store(s)
        try:
            w = Worker.from_settings(s, build_task_queue(s, store), handler)
            if once:
                return 0 if await w.run_once() else 1
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                with suppress(NotImplementedError):
                    loop.add_signal_handler(sig, w.stop)
            await w.run()
            return 0
        finally:
            await store.close()

    raise SystemExit(asyncio.run(_main()))


@cli.command("enqueue")
@click.option("--id", "task_id", type=str, default=None, help="Defaults to a random id.")
@click.option("--content", type=str, required=True)
@click.option(
    "--type",
    "task_type",
    type=click.Choice(["task", "query", "approval", "notification"]),
    default="task",
    show_default=True,
)
@click.option(
    "--priority",
    type=click.Choice(["low", "medium", "high", "critical"]),
    default="medium",
    show_default=True,
)
@click.option("--source", type=str, default="cli", show_default=True)
@click.option("--metadata", "metadata_json", type=str, default=None, help="JSON object.")
def enqueue(
    task_id: str | None,
    content: str,
    task_type: str,
    priority: str,
    source: str,
    metadata_json: str | None,
) -> None:
    """Validate a task and hand it to the configured delivery mode."""
    s = get_settings()
    metadata: Any = {}
    if metadata_json:
        try:
            metadata = json.loads(metadata_json)
        except ValueError as ex:
            raise click.BadParameter(f"invalid JSON: {ex}", param_hint="--metadata") from ex
    payload = {
        "id": task_id or uuid.uuid4().hex,
        "type": task_type,
        "priority": priority,
        "source": source,
        "content": content,
        "metadata": metadata,
    }
    try:
        task = shape_task(
            payload,
            metadata_max_bytes=int(s.metadata_max_bytes),
            content_max_chars=int(s.content_max_chars),
        )
    except ValidationError as ex:
        raise click.ClickException(str(ex)) from ex

    async def _main() -> dict[str, Any]:
        store = build_store(s)
        try:
            delivery = build_delivery(DeliveryConfig.from_settings(s), task_queue=build_task_queue(s, store))
            outcome = await delivery.deliver(task)
            return outcome.to_dict()
        finally:
            await store.close()

    out = asyncio.run(_main())
    _echo_json(out)
    if not out["accepted"]:
        raise SystemExit(1)


@cli.command("pending")
def pending() -> None:
    """List pending task ids (served from the task index cache)."""
    s = get_settings()

    async def _main() -> list[str]:
        store = build_store(s)
        try:
            return await build_task_queue(s, store).get_pending_requests()
        finally:
            await store.close()

    ids = asyncio.run(_main())
    _echo_json({"pending": ids, "count": len(ids)})


@cli.command("result")
@click.argument("task_id", required=True, type=str)
def result(task_id: str) -> None:
    """Print the stored result for TASK_ID."""
    s = get_settings()

    async def _main() -> dict[str, Any] | None:
        store = build_store(s)
        try:
            res = await build_task_queue(s, store).get_result(task_id)
            return res.to_dict() if res is not None else None
        finally:
            await store.close()

    out = asyncio.run(_main())
    if out is None:
        raise click.ClickException(f"Result not found: {task_id}")
    _echo_json(out)


@cli.command("config")
def config_report() -> None:
    """Print the effective configuration (secrets shown only as SET/UNSET)."""
    _echo_json(get_safe_config_report())


if __name__ == "__main__":  # pragma: no cover
    cli()
