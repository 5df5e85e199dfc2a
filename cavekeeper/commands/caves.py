"""Inspect installed caves."""

from __future__ import annotations

import json

import click
from rich.table import Table

from cavekeeper.commands.common import _get_context_objects
from cavekeeper.core.store import EntityStore


@click.group(name="caves")
@click.pass_context
def caves_group(ctx: click.Context) -> None:
    """Inspect installed games (caves)."""
    pass


@caves_group.command(name="list")
@click.pass_context
def list_caves(ctx: click.Context) -> None:
    """List installed caves."""
    config, console, verbose = _get_context_objects(ctx)
    store = EntityStore.load(config.store_path)
    caves = store.get_entities("caves")

    if config.output_format == "json":
        print(json.dumps([cave.model_dump(mode="json") for cave in caves.values()], indent=2))
        return

    if not caves:
        console.print("No caves installed")
        return

    table = Table(title="Installed Caves")
    table.add_column("Cave", style="cyan")
    table.add_column("Game", style="green")
    table.add_column("Upload", justify="right")
    table.add_column("Build", justify="right")
    table.add_column("Installed", style="magenta")
    table.add_column("Launchable", justify="center")
    if verbose:
        table.add_column("Folder", style="dim")

    for cave_id, cave in caves.items():
        game = store.get_entity("games", cave.game_id) if cave.game_id is not None else None
        row = [
            cave_id,
            game.title if game else str(cave.game_id or "-"),
            str(cave.upload_id or "-"),
            str(cave.build_id or "-"),
            cave.installed_at.strftime("%Y-%m-%d %H:%M") if cave.installed_at else "-",
            "[green]✓[/green]" if cave.launchable else "[red]✗[/red]",
        ]
        if verbose:
            row.append(cave.install_folder)
        table.add_row(*row)

    console.print(table)
