from __future__ import annotations

import asyncio
import json
from dataclasses import asdict
from typing import Optional

import typer
from loguru import logger

from error_relay.delivery import OfflineQueue
from error_relay.settings import RelaySettings, get_settings

from .reporter import ErrorReporter

app = typer.Typer(help="error-relay operational CLI")

# ---------------------------
# Common options
# ---------------------------


def endpoint_opt() -> Optional[str]:
    return typer.Option(
        None, "--endpoint", envvar="ERROR_RELAY_ENDPOINT_URL", help="Collector endpoint URL"
    )


def project_opt() -> Optional[str]:
    return typer.Option(None, "--project", envvar="ERROR_RELAY_PROJECT_NAME", help="Project name")


def queue_file_opt() -> Optional[str]:
    return typer.Option(None, "--queue-file", help="Offline queue file (defaults to settings)")


def _settings(**overrides) -> RelaySettings:
    s = get_settings()
    update = {k: v for k, v in overrides.items() if v is not None}
    return s.model_copy(update=update) if update else s


def _queue(s: RelaySettings) -> OfflineQueue:
    cfg = s.queue_config()
    if cfg is None:
        typer.echo("offline queue is disabled (ERROR_RELAY_QUEUE_ENABLED=false)", err=True)
        raise typer.Exit(code=2)
    return OfflineQueue(cfg)


# ---------------------------
# Delivery
# ---------------------------


@app.command("send-test")
def send_test(endpoint: Optional[str] = endpoint_opt(), project: Optional[str] = project_opt()):
    """POST a connection-test report straight to the collector."""
    s = _settings(endpoint_url=endpoint, project_name=project)

    async def _run() -> bool:
        reporter = ErrorReporter(s)
        try:
            return await reporter.test_connection()
        finally:
            await reporter.stop()

    ok = asyncio.run(_run())
    typer.echo(json.dumps({"ok": ok, "endpoint": s.endpoint_url}, indent=2))
    if not ok:
        raise typer.Exit(code=1)


@app.command("capture-message")
def capture_message(
    message: str = typer.Argument(..., help="Message to report"),
    level: str = typer.Option("info", "--level", help="debug | info | warning | error"),
    endpoint: Optional[str] = endpoint_opt(),
    project: Optional[str] = project_opt(),
):
    """Report a message through the full delivery pipeline."""
    if level not in ("debug", "info", "warning", "error"):
        raise typer.BadParameter(f"invalid level {level!r}", param_hint="--level")
    s = _settings(endpoint_url=endpoint, project_name=project)

    async def _run() -> int:
        async with ErrorReporter(s) as reporter:
            await reporter.capture_message(message, level=level)
        return reporter.pipeline.health().queue_size

    queued = asyncio.run(_run())
    typer.echo(json.dumps({"submitted": True, "queue_size": queued}, indent=2))


# ---------------------------
# Offline queue
# ---------------------------


@app.command("queue-stats")
def queue_stats(queue_file: Optional[str] = queue_file_opt()):
    q = _queue(_settings(queue_file=queue_file))
    typer.echo(json.dumps({**asdict(q.stats()), "queue_file": str(q.path)}, indent=2))


@app.command("flush-queue")
def flush_queue(
    endpoint: Optional[str] = endpoint_opt(),
    queue_file: Optional[str] = queue_file_opt(),
):
    """Try every queued report once."""
    s = _settings(endpoint_url=endpoint, queue_file=queue_file)

    async def _run() -> tuple[int, int]:
        reporter = ErrorReporter(s)
        queue = reporter.pipeline.offline_queue
        before = queue.size if queue else 0
        try:
            await reporter.flush_queue()
        finally:
            await reporter.stop()
        return before, queue.size if queue else 0

    before, after = asyncio.run(_run())
    logger.success(f"Queue flush done: {before - after} delivered or dropped, {after} remaining")
    typer.echo(json.dumps({"before": before, "remaining": after}, indent=2))


@app.command("clear-queue")
def clear_queue(
    queue_file: Optional[str] = queue_file_opt(),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    q = _queue(_settings(queue_file=queue_file))
    if not yes:
        typer.confirm(f"Discard {q.size} queued report(s) in {q.path}?", abort=True)
    dropped = q.size
    q.clear()
    logger.success(f"Cleared {dropped} queued report(s)")
    typer.echo(json.dumps({"cleared": dropped}, indent=2))


# ---------------------------
# Config
# ---------------------------


@app.command("show-config")
def show_config():
    typer.echo(json.dumps(get_settings().model_dump(), indent=2, default=str))


def main():
    app()


if __name__ == "__main__":
    main()
