"""Helpers shared by CLI commands."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.progress import BarColumn, DownloadColumn, Progress, TextColumn, TransferSpeedColumn

from cavekeeper.core.config import AppConfig
from cavekeeper.core.events import DownloadQueued, Notification, StatusMessage, UpgradeFound
from cavekeeper.install.progress import ProgressChannel
from cavekeeper.orchestrator import Orchestrator

T = TypeVar("T")

STATUS_TEXT = {
    "status.game_update.check_failed": "[red]Update check failed:[/red] {err}",
    "status.game_update.found": "[green]Update found for {title}[/green]",
    "status.game_update.not_found": "No update for {title}",
    "status.game_update.install_failed": "[red]Updating {title} failed:[/red] {err}",
    "status.install.failed": "[red]Installing {title} failed:[/red] {err}",
}


def _get_context_objects(ctx: click.Context) -> tuple[AppConfig, Console, bool]:
    """Extract context objects from Click context."""
    config = ctx.obj["config"]
    console = ctx.obj["console"]
    verbose = ctx.obj.get("verbose", False)
    return config, console, verbose


def format_status(message: StatusMessage) -> str:
    """Human-readable text for a status message."""
    template = STATUS_TEXT.get(message.key)
    if template is None:
        return f"{message.key} {message.params}" if message.params else message.key
    return template.format(**message.params)


def console_listener(console: Console) -> Callable[[Any], None]:
    """Dispatcher listener printing user-facing events to ``console``."""

    def listener(event: Any) -> None:
        if isinstance(event, StatusMessage):
            console.print(format_status(event))
        elif isinstance(event, Notification):
            console.print(f"[cyan]•[/cyan] {event.message}")
        elif isinstance(event, UpgradeFound):
            console.print(f"[green]✓[/green] Upgrade available for {event.game.title}")
        elif isinstance(event, DownloadQueued):
            upload = event.request.upload
            console.print(
                f"[dim]Queued {event.request.reason.value} of {event.request.game.title}"
                f"{f' ({upload.label})' if upload else ''}[/dim]"
            )

    return listener


def run_with_orchestrator(
    config: AppConfig,
    console: Console,
    body: Callable[[Orchestrator], Awaitable[T]],
) -> T:
    """Build the orchestrator, log in, run ``body`` and close clients."""

    async def _main() -> T:
        orchestrator = Orchestrator.create(config)
        orchestrator.dispatcher.subscribe(console_listener(console))
        try:
            await orchestrator.login()
            return await body(orchestrator)
        finally:
            await orchestrator.close()

    return asyncio.run(_main())


async def render_progress(channel: ProgressChannel, console: Console, title: str, total: int | None) -> None:
    """Render a progress channel as a rich progress bar until it closes."""
    with Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=console,
        transient=True,
    ) as progress:
        size = total or 100
        task = progress.add_task(f"Downloading {title}", total=size)
        async for event in channel:
            progress.update(task, completed=event.progress * size)
            if event.done:
                break
