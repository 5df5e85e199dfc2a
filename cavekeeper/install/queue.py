"""Install queue: registry of install requests keyed by install ID.

Requests enter through :meth:`InstallQueue.submit` and leave through
:meth:`InstallQueue.forget`. In between, :meth:`InstallQueue.drain` runs
pending records one at a time through an install pipeline. Submitting a
request identical to one still pending or active returns the existing ID
instead of queueing the same work twice.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

import structlog

from cavekeeper.core.events import Dispatcher, DownloadQueued
from cavekeeper.install.pipeline import InstallPipeline
from cavekeeper.install.request import InstallReason, InstallRequest

logger = structlog.get_logger()


class InstallStatus(StrEnum):
    """Lifecycle of a queued install."""
    PENDING = "pending"
    ACTIVE = "active"
    DONE = "done"
    HALTED = "halted"
    FAILED = "failed"


OPEN_STATUSES = (InstallStatus.PENDING, InstallStatus.ACTIVE)


@dataclass
class InstallRecord:
    """One entry of the install registry."""

    id: str
    request: InstallRequest
    status: InstallStatus = InstallStatus.PENDING
    pipeline: InstallPipeline | None = None
    error: Exception | None = None


PipelineFactory = Callable[[InstallRequest], InstallPipeline]


class InstallQueue:
    """Registry of queued installs and the runner draining it.

    Args:
        pipeline_factory: Builds the pipeline for a request
        dispatcher: Sink for queue signals and failure messages
    """

    def __init__(self, pipeline_factory: PipelineFactory, dispatcher: Dispatcher) -> None:
        self.pipeline_factory = pipeline_factory
        self.dispatcher = dispatcher
        self._records: dict[str, InstallRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def get(self, install_id: str) -> InstallRecord | None:
        """Get a record by install ID."""
        return self._records.get(install_id)

    def records(self, status: InstallStatus | None = None) -> list[InstallRecord]:
        """Records in insertion order, optionally filtered by status."""
        return [r for r in self._records.values() if status is None or r.status == status]

    def find_open(self, request: InstallRequest) -> InstallRecord | None:
        """Pending or active record doing the same work as ``request``."""
        for record in self._records.values():
            if record.status in OPEN_STATUSES and record.request.dedup_key == request.dedup_key:
                return record
        return None

    async def submit(self, request: InstallRequest) -> str:
        """Queue an install request.

        Returns:
            Install ID of the new record, or of the open record already
            doing the same work
        """
        existing = self.find_open(request)
        if existing is not None:
            logger.debug("install_already_queued", install_id=existing.id, game_id=request.game.id)
            return existing.id

        record = InstallRecord(id=uuid.uuid4().hex, request=request)
        self._records[record.id] = record
        logger.info(
            "install_queued",
            install_id=record.id,
            game_id=request.game.id,
            upload_id=request.upload.id if request.upload else None,
            reason=request.reason.value,
            incremental=request.incremental,
        )
        self.dispatcher.emit(DownloadQueued(install_id=record.id, request=request))
        return record.id

    def forget(self, install_id: str) -> bool:
        """Remove a finished or pending record. Active records are kept.

        Returns:
            True if the record was removed
        """
        record = self._records.get(install_id)
        if record is None or record.status == InstallStatus.ACTIVE:
            return False
        del self._records[install_id]
        return True

    async def run_next(self) -> InstallRecord | None:
        """Run the oldest pending record, if any. Never raises."""
        pending = self.records(InstallStatus.PENDING)
        if not pending:
            return None

        record = pending[0]
        record.status = InstallStatus.ACTIVE
        record.pipeline = self.pipeline_factory(record.request)
        title = record.request.game.title

        try:
            cave = await record.pipeline.run()
        except Exception as e:
            record.status = InstallStatus.FAILED
            record.error = e
            logger.error("queued_install_failed", install_id=record.id, error=str(e))
            key = (
                "status.game_update.install_failed"
                if record.request.reason == InstallReason.UPDATE
                else "status.install.failed"
            )
            self.dispatcher.status(key, title=title, err=str(e))
            return record

        record.status = InstallStatus.DONE if cave is not None else InstallStatus.HALTED
        logger.info("queued_install_finished", install_id=record.id, status=record.status.value)
        return record

    async def drain(self) -> list[InstallRecord]:
        """Run every pending record in order. Never raises.

        Returns:
            The records that were run
        """
        done: list[InstallRecord] = []
        while (record := await self.run_next()) is not None:
            done.append(record)
        return done
