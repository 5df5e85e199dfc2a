"""Start installed games."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol

import structlog

from cavekeeper.core.session import TaskRegistry
from cavekeeper.install.errors import LaunchError

logger = structlog.get_logger()

LAUNCH_TASK = "launch"


class Launcher(Protocol):
    """Start an executable without waiting for it to exit."""

    async def launch(self, executable: Path, game_id: int) -> None:
        ...


class ProcessLauncher:
    """Launch executables as child processes.

    A ``launch`` task is registered for the game while the process runs, so
    update checks leave running games alone.
    """

    def __init__(self, tasks: TaskRegistry) -> None:
        self.tasks = tasks
        self._watchers: set[asyncio.Task[None]] = set()

    @staticmethod
    def command_for(executable: Path) -> list[str]:
        """Command line starting ``executable``."""
        if executable.suffix.lower() == ".app":
            return ["open", "-W", str(executable)]
        return [str(executable)]

    async def launch(self, executable: Path, game_id: int) -> None:
        """Start ``executable`` and return once the process is spawned.

        Raises:
            LaunchError: If the process cannot be started
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command_for(executable), cwd=str(executable.parent)
            )
        except OSError as e:
            raise LaunchError(f"Could not start {executable.name}: {e}") from e

        task_id = self.tasks.start(game_id, LAUNCH_TASK)
        logger.info("game_launched", executable=str(executable), pid=process.pid, game_id=game_id)

        watcher = asyncio.ensure_future(self._watch(process, task_id))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)

    async def _watch(self, process: asyncio.subprocess.Process, task_id: str) -> None:
        try:
            code = await process.wait()
            logger.info("game_exited", pid=process.pid, code=code)
        finally:
            self.tasks.finish(task_id)
