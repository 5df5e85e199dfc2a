"""Main entry point for the cavekeeper CLI."""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

import click
import structlog
from rich.console import Console

from cavekeeper import __version__
from cavekeeper.commands.caves import caves_group
from cavekeeper.commands.install import install
from cavekeeper.commands.updates import updates_group
from cavekeeper.core.config import AppConfig


UPDATER_LOGGER = "cavekeeper.update"

SHARED_PROCESSORS: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.StackInfoRenderer(),
    structlog.dev.set_exc_info,
    structlog.processors.TimeStamper(fmt="iso"),
]

_installed: list[tuple[logging.Logger, logging.Handler]] = []


class StderrHandler(logging.StreamHandler):
    """Stream handler writing to whatever ``sys.stderr`` currently is."""

    def __init__(self, level: int | str = logging.NOTSET) -> None:
        logging.Handler.__init__(self, level)

    @property
    def stream(self) -> Any:
        return sys.stderr

    @stream.setter
    def stream(self, value: Any) -> None:
        pass


def _formatter(colors: bool) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=SHARED_PROCESSORS,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
    )


def configure_logging(
    level: str = "WARNING",
    colors: bool = False,
    updater_log: Path | None = None,
    updater_level: str = "INFO",
) -> None:
    """Configure structured logging through the standard library.

    Events at ``level`` and above go to stderr, leaving stdout to command
    output. With ``updater_log`` set, events of the update modules are also
    written to that file at ``updater_level``.
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    for owner, handler in _installed:
        owner.removeHandler(handler)
        handler.close()
    _installed.clear()

    root = logging.getLogger()
    console = StderrHandler(level)
    console.setFormatter(_formatter(colors))
    root.addHandler(console)
    root.setLevel(level)
    _installed.append((root, console))

    updater = logging.getLogger(UPDATER_LOGGER)
    updater.setLevel(logging.NOTSET)
    if updater_log is not None:
        updater_log.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            updater_log, maxBytes=1024 * 1024, backupCount=3, encoding="utf-8"
        )
        file_handler.setLevel(updater_level)
        file_handler.setFormatter(_formatter(colors=False))
        updater.addHandler(file_handler)
        updater.setLevel(min(logging.getLevelName(level), logging.getLevelName(updater_level)))
        _installed.append((updater, file_handler))


configure_logging()

logger = structlog.get_logger()


@click.group()
@click.version_option(version=__version__, prog_name="cavekeeper")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--debug", "-d", is_flag=True, help="Enable debug output")
@click.option(
    "--output",
    "-o",
    type=click.Choice(["rich", "json", "plain"], case_sensitive=False),
    default="rich",
    help="Output format",
)
@click.pass_context
def main(
    ctx: click.Context,
    config: Path | None,
    verbose: bool,
    debug: bool,
    output: str,
) -> None:
    """Keep a library of installed games up to date."""
    ctx.ensure_object(dict)

    # Load configuration
    try:
        app_config = AppConfig.load(config)
    except Exception as e:
        logger.error("Failed to load configuration", error=str(e))
        sys.exit(1)

    # Override config with CLI options
    if verbose or debug:
        app_config.log_level = "DEBUG" if debug else "INFO"
    if output:
        app_config.output_format = output

    configure_logging(
        app_config.log_level if verbose or debug else "WARNING",
        colors=debug,
        updater_log=app_config.updater_log_path,
        updater_level=app_config.log_level,
    )

    # Create console for rich output
    console = Console(
        force_terminal=output == "rich",
        no_color=output != "rich",
        width=None if output == "rich" else 120,
    )

    # Store config and console in context for subcommands
    ctx.obj["config"] = app_config
    ctx.obj["console"] = console
    ctx.obj["verbose"] = verbose or debug
    ctx.obj["debug"] = debug

    logger.debug("CLI initialized", config=app_config.model_dump(exclude={"catalog": {"api_key"}}))


@main.command()
@click.pass_context
def version(ctx: click.Context) -> None:
    """Show version information."""
    console: Console = ctx.obj["console"]
    config: AppConfig = ctx.obj["config"]

    if config.output_format == "json":
        import json

        info = {
            "name": "cavekeeper",
            "version": __version__,
            "python_version": sys.version.replace("\n", " "),
            "platform": sys.platform,
            "install_platform": config.install.platform.value,
        }
        # Use regular print for JSON to avoid Rich formatting
        print(json.dumps(info, indent=2))
    else:
        console.print(f"cavekeeper {__version__}")
        if ctx.obj["verbose"]:
            console.print(f"Python {sys.version}")
            console.print(f"Platform: {sys.platform}")


# Register commands
main.add_command(caves_group)
main.add_command(install)
main.add_command(updates_group)


def handle_exception(exc_type: type[BaseException], exc_value: BaseException, exc_traceback: Any) -> None:
    """Handle uncaught exceptions."""
    if issubclass(exc_type, KeyboardInterrupt):
        logger.info("Operation cancelled by user")
        sys.exit(1)

    logger.error(
        "Uncaught exception",
        exc_info=(exc_type, exc_value, exc_traceback),
    )
    sys.exit(1)


if __name__ == "__main__":
    # Install exception handler
    sys.excepthook = handle_exception

    try:
        main()
    except Exception as e:
        logger.error("CLI execution failed", error=str(e))
        sys.exit(1)
