"""Install a game from the catalog."""

from __future__ import annotations

import asyncio

import click

from cavekeeper.commands.common import _get_context_objects, render_progress, run_with_orchestrator
from cavekeeper.core.catalog import CatalogError, fetch_game_lazily
from cavekeeper.core.types import Cave
from cavekeeper.install.errors import PipelineError
from cavekeeper.install.progress import ProgressChannel
from cavekeeper.install.request import InstallReason, InstallRequest
from cavekeeper.orchestrator import Orchestrator
from cavekeeper.update.upload_selector import resolve_download_key


@click.command(name="install")
@click.argument("game_id", type=int)
@click.option("--upload-id", type=int, help="Install this upload instead of the most recent one")
@click.pass_context
def install(ctx: click.Context, game_id: int, upload_id: int | None) -> None:
    """Download, extract and launch a game."""
    config, console, verbose = _get_context_objects(ctx)

    async def body(orchestrator: Orchestrator) -> Cave | None:
        game = await fetch_game_lazily(orchestrator.catalog, orchestrator.store, game_id)
        key = resolve_download_key(orchestrator.store, orchestrator.session, game)

        upload = None
        if upload_id is not None:
            uploads = (
                await orchestrator.catalog.list_uploads_for_key(key.id)
                if key is not None
                else await orchestrator.catalog.list_uploads_for_game(game.id)
            )
            upload = next((u for u in uploads if u.id == upload_id), None)
            if upload is None:
                raise click.ClickException(f"Upload {upload_id} not found for {game.title}")

        request = InstallRequest(
            game=game,
            upload=upload,
            reason=InstallReason.INSTALL,
            download_key_id=key.id if key else None,
            total_size=upload.size if upload else None,
        )
        channel = ProgressChannel()
        pipeline = orchestrator.pipeline_for(request, progress=channel)
        renderer = asyncio.ensure_future(
            render_progress(channel, console, game.title, request.total_size)
        )
        try:
            cave = await pipeline.run()
        finally:
            channel.close()
            await renderer

        if cave is not None and verbose:
            console.print(f"Installed to {cave.install_folder}")
        return cave

    try:
        cave = run_with_orchestrator(config, console, body)
    except (PipelineError, CatalogError) as e:
        console.print(f"[red]Error:[/red] {e}")
        ctx.exit(1)
        return

    if cave is None:
        ctx.exit(1)
    console.print(f"[green]✓[/green] Installed and launched (cave {cave.id})")
