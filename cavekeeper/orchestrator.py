"""Wire the update checker, scheduler and install pipeline together."""

from __future__ import annotations

from dataclasses import dataclass, field

import httpx
import structlog

from cavekeeper.core.catalog import CatalogClient
from cavekeeper.core.config import AppConfig
from cavekeeper.core.events import Dispatcher
from cavekeeper.core.session import Session
from cavekeeper.core.store import EntityStore
from cavekeeper.install.configurator import ExecutableConfigurator
from cavekeeper.install.extractor import ArchiveExtractor
from cavekeeper.install.launcher import ProcessLauncher
from cavekeeper.install.pipeline import InstallPipeline
from cavekeeper.install.progress import ProgressChannel
from cavekeeper.install.queue import InstallQueue
from cavekeeper.install.request import InstallRequest
from cavekeeper.install.transport import HttpTransport
from cavekeeper.update.checker import UpdateChecker
from cavekeeper.update.scheduler import UpdateScheduler
from cavekeeper.update.upgrade_path import CatalogUpgradePathResolver

logger = structlog.get_logger()


@dataclass
class Orchestrator:
    """Process-wide services sharing one store, session and dispatcher."""

    config: AppConfig
    store: EntityStore
    catalog: CatalogClient
    transport: HttpTransport
    session: Session = field(default_factory=Session)
    dispatcher: Dispatcher = field(default_factory=Dispatcher)

    def __post_init__(self) -> None:
        self.extractor = ArchiveExtractor()
        self.configurator = ExecutableConfigurator(self.config.install.platform)
        self.launcher = ProcessLauncher(self.session.tasks)
        self.install_queue = InstallQueue(self.pipeline_for, self.dispatcher)
        self.checker = UpdateChecker(
            store=self.store,
            session=self.session,
            catalog=self.catalog,
            resolver=CatalogUpgradePathResolver(self.catalog),
            install_queue=self.install_queue,
            dispatcher=self.dispatcher,
            config=self.config,
        )
        self.scheduler = UpdateScheduler(
            self.checker, self.store, self.config.updater, self.dispatcher
        )

    @classmethod
    def create(
        cls,
        config: AppConfig,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> Orchestrator:
        """Build every service from configuration.

        Args:
            config: Application configuration
            http_transport: Optional httpx transport shared by the catalog
                client and the downloader, used by tests
        """
        return cls(
            config=config,
            store=EntityStore.load(config.store_path),
            catalog=CatalogClient(config.catalog, transport=http_transport),
            transport=HttpTransport(config.install, transport=http_transport),
        )

    def pipeline_for(
        self, request: InstallRequest, progress: ProgressChannel | None = None
    ) -> InstallPipeline:
        """Build the install pipeline for one request."""
        return InstallPipeline(
            request,
            store=self.store,
            session=self.session,
            catalog=self.catalog,
            dispatcher=self.dispatcher,
            config=self.config,
            transport=self.transport,
            extractor=self.extractor,
            configurator=self.configurator,
            launcher=self.launcher,
            progress=progress,
        )

    async def login(self) -> None:
        """Resolve the user owning the configured API key."""
        if not self.config.catalog.api_key:
            logger.warning("no_api_key", hint="set CAVEKEEPER_API_KEY")
            return
        self.session.me = await self.catalog.fetch_me()
        logger.info("logged_in", user_id=self.session.me.id, username=self.session.me.username)

    async def close(self) -> None:
        """Close HTTP clients."""
        await self.catalog.close()
        await self.transport.close()
