"""Check installed caves for updates."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from cavekeeper.commands.common import _get_context_objects, run_with_orchestrator
from cavekeeper.core.events import ChoicePrompt, EventRecorder, ModalRequested
from cavekeeper.install.queue import InstallQueue, InstallStatus
from cavekeeper.orchestrator import Orchestrator

# Seconds between two drains of the install queue in watch mode.
WATCH_DRAIN_INTERVAL = 5.0


def ask_choice(console: Console, prompt: ChoicePrompt) -> int | None:
    """Show a choice prompt and return the picked option index, None if cancelled."""
    table = Table(title=prompt.title, show_header=True)
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Upload", style="green")
    table.add_column("Updated", style="magenta")
    for index, option in enumerate(prompt.options, start=1):
        table.add_row(str(index), option.label, option.updated_ago)

    console.print(prompt.message)
    console.print(table)

    choices = [str(i) for i in range(1, len(prompt.options) + 1)] + [prompt.cancel_label]
    answer = Prompt.ask("Pick an upload", choices=choices, default=prompt.cancel_label, console=console)
    if answer == prompt.cancel_label:
        return None
    return int(answer) - 1


async def answer_prompts(
    orchestrator: Orchestrator, recorder: EventRecorder, console: Console, interactive: bool
) -> None:
    """Ask the user about every recorded choice prompt and queue the picks."""
    for event in recorder.of_type(ModalRequested):
        if not interactive:
            console.print(f"[yellow]{event.prompt.title}: several uploads, skipped (--no-input)[/yellow]")
            continue
        request = event.prompt.choose(ask_choice(console, event.prompt))
        if request is not None:
            await orchestrator.install_queue.submit(request)


async def apply_queue(queue: InstallQueue, console: Console) -> None:
    """Run every queued install and summarize the outcome."""
    records = await queue.drain()
    for record in records:
        if record.status == InstallStatus.DONE:
            console.print(f"[green]✓[/green] Updated {record.request.game.title}")
        queue.forget(record.id)


@click.group(name="updates")
@click.pass_context
def updates_group(ctx: click.Context) -> None:
    """Check installed games for updates."""
    pass


@updates_group.command(name="check")
@click.argument("cave_id")
@click.option("--apply", "apply_", is_flag=True, help="Install found updates right away")
@click.option("--no-input", is_flag=True, help="Never ask to pick among several uploads")
@click.pass_context
def check_cave(ctx: click.Context, cave_id: str, apply_: bool, no_input: bool) -> None:
    """Check one cave for updates."""
    config, console, verbose = _get_context_objects(ctx)

    async def body(orchestrator: Orchestrator) -> bool:
        recorder = EventRecorder()
        orchestrator.dispatcher.subscribe(recorder)

        result = await orchestrator.checker.check_cave(cave_id, noisy=True)
        if result is None:
            console.print(f"[yellow]Cave not found:[/yellow] {cave_id}")
            return False

        if verbose:
            console.print(f"Outcome: {result.outcome.value}")
            if result.skip_reason:
                console.print(f"Skipped: {result.skip_reason}")

        await answer_prompts(orchestrator, recorder, console, interactive=not no_input)
        if apply_:
            await apply_queue(orchestrator.install_queue, console)
        return True

    if not run_with_orchestrator(config, console, body):
        ctx.exit(1)


@updates_group.command(name="check-all")
@click.option("--apply", "apply_", is_flag=True, help="Install found updates right away")
@click.option("--no-input", is_flag=True, help="Never ask to pick among several uploads")
@click.pass_context
def check_all(ctx: click.Context, apply_: bool, no_input: bool) -> None:
    """Check every installed cave for updates, once."""
    config, console, verbose = _get_context_objects(ctx)

    async def body(orchestrator: Orchestrator) -> None:
        recorder = EventRecorder()
        orchestrator.dispatcher.subscribe(recorder)

        with console.status("Checking for updates..."):
            await orchestrator.scheduler.check_all()

        queued = orchestrator.install_queue.records(InstallStatus.PENDING)
        console.print(f"{len(queued)} update(s) queued")
        await answer_prompts(orchestrator, recorder, console, interactive=not no_input)
        if apply_:
            await apply_queue(orchestrator.install_queue, console)

    run_with_orchestrator(config, console, body)


@updates_group.command(name="watch")
@click.option("--apply", "apply_", is_flag=True, help="Install found updates as they are queued")
@click.pass_context
def watch(ctx: click.Context, apply_: bool) -> None:
    """Keep checking for updates until interrupted."""
    config, console, verbose = _get_context_objects(ctx)

    async def body(orchestrator: Orchestrator) -> None:
        orchestrator.scheduler.start()
        console.print(
            f"Watching for updates every {config.updater.base_interval / 60:.0f} minutes "
            f"(+ up to {config.updater.max_jitter / 60:.0f}). Press Ctrl+C to stop."
        )
        while True:
            if apply_:
                await apply_queue(orchestrator.install_queue, console)
            await asyncio.sleep(WATCH_DRAIN_INTERVAL)

    try:
        run_with_orchestrator(config, console, body)
    except KeyboardInterrupt:
        console.print("Stopped")
