"""Periodic update checks over every installed cave.

The scheduler runs one polling loop per process: each iteration starts a
pass over all caves, then sleeps for a base interval plus a random jitter.
Caves within a pass are checked one at a time with a short delay between
them, spreading catalog requests out instead of bursting them.

The loop has no cancellation contract and runs until the process exits.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable

import structlog

from cavekeeper.core.catalog import HostUnreachableError
from cavekeeper.core.config import UpdaterConfig
from cavekeeper.core.events import Dispatcher, UpdateCheckFinished, UpdateCheckStarted
from cavekeeper.core.store import EntityStore
from cavekeeper.update.checker import UpdateChecker

logger = structlog.get_logger()


class UpdateScheduler:
    """Lifecycle object owning the update polling loop.

    Args:
        checker: Per-cave update checker
        store: Entity store listing installed caves
        config: Pacing configuration
        dispatcher: Sink for pass start/finish signals
        sleep: Coroutine function used to wait, replaced in tests
        rng: Random source for the jitter
    """

    def __init__(
        self,
        checker: UpdateChecker,
        store: EntityStore,
        config: UpdaterConfig | None = None,
        dispatcher: Dispatcher | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.checker = checker
        self.store = store
        self.config = config or UpdaterConfig()
        self.dispatcher = dispatcher or checker.dispatcher
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._task: asyncio.Task[None] | None = None
        self.passes = 0

    def start(self) -> bool:
        """Start the polling loop. Safe to call repeatedly.

        Must be called from a running event loop.

        Returns:
            True if this call started the loop, False if it was already started
        """
        if self._task is not None:
            return False
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(
            "update_scheduler_started",
            base_interval=self.config.base_interval,
            max_jitter=self.config.max_jitter,
        )
        return True

    def is_running(self) -> bool:
        """Whether the polling loop is alive."""
        return self._task is not None and not self._task.done()

    def next_delay(self) -> float:
        """Seconds to wait between two passes."""
        return self.config.base_interval + self._rng.uniform(0, self.config.max_jitter)

    async def _run(self) -> None:
        current: asyncio.Task[None] | None = None
        while True:
            if current is not None and not current.done():
                # Passes never overlap.
                await current
            logger.info("scheduled_update_check")
            current = asyncio.ensure_future(self.check_all())
            await self._sleep(self.next_delay())

    async def check_all(self) -> None:
        """Check every installed cave once, in sequence.

        Errors from one cave are logged and never stop the pass.
        """
        caves = self.store.get_entities("caves")
        self.passes += 1
        self.dispatcher.emit(UpdateCheckStarted())
        logger.debug("update_pass_started", pass_number=self.passes, caves=len(caves))

        try:
            for cave_id, cave in caves.items():
                try:
                    result = await self.checker.check(cave)
                    if result.error is not None:
                        logger.info(
                            "update_check_error",
                            cave_id=cave_id,
                            kind=result.error_kind.value if result.error_kind else None,
                            error=str(result.error),
                        )
                except HostUnreachableError:
                    logger.info("update_check_offline", cave_id=cave_id)
                except Exception as e:
                    logger.error("update_check_crashed", cave_id=cave_id, error=str(e), exc_info=True)
                await self._sleep(self.config.item_delay)
        finally:
            self.dispatcher.emit(UpdateCheckFinished())
            logger.debug("update_pass_finished", pass_number=self.passes)
