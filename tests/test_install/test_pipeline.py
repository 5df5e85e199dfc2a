"""Tests for cavekeeper.install.pipeline module."""

import asyncio
from datetime import timedelta
from pathlib import Path

import pytest
from helpers import (
    ME,
    NOW,
    FakeCatalog,
    FakeConfigurator,
    FakeExtractor,
    FakeLauncher,
    FakeTransport,
    make_cave,
    make_game,
    make_upload,
)

from cavekeeper.core.events import Notification
from cavekeeper.core.types import UpgradePath, UpgradeStep
from cavekeeper.install.errors import ConfigurationError, ExtractionError, TransferError
from cavekeeper.install.pipeline import InstallPipeline, InstallStage, install_folder_name
from cavekeeper.install.progress import ProgressChannel
from cavekeeper.install.request import InstallReason, InstallRequest, download_path


class PipelineParts:
    """Collaborators of one pipeline under test."""

    def __init__(self, **overrides):
        self.catalog = overrides.get("catalog", FakeCatalog())
        self.transport = overrides.get("transport", FakeTransport())
        self.extractor = overrides.get("extractor", FakeExtractor())
        self.configurator = overrides.get("configurator", FakeConfigurator())
        self.launcher = overrides.get("launcher", FakeLauncher())

    def pipeline(self, request, store, session, dispatcher, config, progress=None) -> InstallPipeline:
        return InstallPipeline(
            request,
            store=store,
            session=session,
            catalog=self.catalog,
            dispatcher=dispatcher,
            config=config,
            transport=self.transport,
            extractor=self.extractor,
            configurator=self.configurator,
            launcher=self.launcher,
            progress=progress,
        )


def _notifications(recorder) -> list[str]:
    return [event.message for event in recorder.of_type(Notification)]


class TestInstallFolderName:
    """Test install_folder_name function."""

    def test_slug(self):
        assert install_folder_name(42, "Space Rocks: Deluxe!") == "42-space-rocks-deluxe"

    def test_title_without_letters(self):
        assert install_folder_name(42, "???") == "42"


class TestFreshInstall:
    """Test installing a game for the first time."""

    def test_stages_run_in_order(self, store, session, dispatcher, recorder, app_config):
        """Test the pipeline visits every stage in order and launches."""
        parts = PipelineParts()
        upload = make_upload(100, build_id=3)
        request = InstallRequest(game=make_game(), upload=upload)
        pipeline = parts.pipeline(request, store, session, dispatcher, app_config)

        cave = asyncio.run(pipeline.run())

        assert pipeline.history == list(InstallStage)
        assert pipeline.stage == InstallStage.RUNNING
        assert pipeline.error is None
        assert cave is store.get_entity("caves", cave.id)
        assert cave.upload_id == 100
        assert cave.build_id == 3
        assert cave.installed_by == ME
        assert cave.launchable
        assert cave.install_folder == str(app_config.apps_dir / "10-space-rocks")
        assert parts.launcher.calls == [(Path("/games/space-rocks/run.sh"), 10)]
        assert "Space Rocks finished downloading" in _notifications(recorder)

    def test_download_destination(self, store, session, dispatcher, app_config):
        """Test the archive is downloaded into the downloads directory."""
        parts = PipelineParts()
        upload = make_upload(100)
        request = InstallRequest(game=make_game(), upload=upload, download_key_id=4)
        cave = asyncio.run(parts.pipeline(request, store, session, dispatcher, app_config).run())

        dest = download_path(app_config.downloads_dir, upload)
        assert parts.catalog.calls == [("resolve_download_url", 100, 4)]
        assert parts.transport.calls == [("https://cdn.test/uploads/100", dest)]
        assert parts.extractor.calls == [(dest, app_config.apps_dir / "10-space-rocks")]
        assert cave.download_key_id == 4

    def test_searches_upload_when_missing(self, store, session, dispatcher, app_config):
        """Test the most recent compatible upload is picked."""
        catalog = FakeCatalog(uploads=[
            make_upload(100, updated_at=NOW - timedelta(days=3)),
            make_upload(101, updated_at=NOW - timedelta(days=1)),
        ])
        parts = PipelineParts(catalog=catalog)
        request = InstallRequest(game=make_game())

        cave = asyncio.run(parts.pipeline(request, store, session, dispatcher, app_config).run())

        assert cave.upload_id == 101
        assert ("list_uploads_for_game", 10) in catalog.calls

    def test_no_uploads_halts_with_notification(self, store, session, dispatcher, recorder, app_config):
        """Test no compatible upload ends the run without a cave."""
        parts = PipelineParts()
        pipeline = parts.pipeline(InstallRequest(game=make_game()), store, session, dispatcher, app_config)

        assert asyncio.run(pipeline.run()) is None
        assert pipeline.stage == InstallStage.SEARCHING_UPLOAD
        assert parts.transport.calls == []
        assert store.get_entities("caves") == {}
        assert any("No uploads of Space Rocks" in m for m in _notifications(recorder))

    def test_existing_archive_skips_transfer(self, store, session, dispatcher, app_config):
        """Test a finished download on disk goes straight to extraction."""
        parts = PipelineParts()
        upload = make_upload(100)
        dest = download_path(app_config.downloads_dir, upload)
        dest.parent.mkdir(parents=True)
        dest.write_bytes(b"already here")

        pipeline = parts.pipeline(
            InstallRequest(game=make_game(), upload=upload), store, session, dispatcher, app_config
        )
        asyncio.run(pipeline.run())

        assert parts.transport.calls == []
        assert parts.catalog.calls == []
        assert parts.extractor.calls[0][0] == dest
        assert InstallStage.DOWNLOADING in pipeline.history

    def test_run_twice(self, store, session, dispatcher, app_config):
        """Test a pipeline only runs once."""
        pipeline = PipelineParts().pipeline(
            InstallRequest(game=make_game(), upload=make_upload()), store, session, dispatcher, app_config
        )
        asyncio.run(pipeline.run())
        with pytest.raises(RuntimeError, match="already ran"):
            asyncio.run(pipeline.run())


class TestPipelineFailures:
    """Test stages halting the pipeline."""

    def _update_request(self) -> InstallRequest:
        return InstallRequest(
            game=make_game(),
            upload=make_upload(101, build_id=9),
            reason=InstallReason.UPDATE,
            cave_id="cave-1",
        )

    def test_extraction_failure_keeps_cave(self, store, session, dispatcher, recorder, app_config):
        """Test a failed extraction halts at EXTRACTING and leaves the cave untouched."""
        original = make_cave(build_id=5, install_folder="/games/space-rocks")
        store.save_entity("caves", original)
        parts = PipelineParts(extractor=FakeExtractor(error=ExtractionError("corrupt archive")))
        pipeline = parts.pipeline(self._update_request(), store, session, dispatcher, app_config)

        with pytest.raises(ExtractionError) as exc_info:
            asyncio.run(pipeline.run())

        assert pipeline.stage == InstallStage.EXTRACTING
        assert pipeline.history[-1] == InstallStage.EXTRACTING
        assert pipeline.error is exc_info.value
        assert exc_info.value.stage == "extracting"
        assert exc_info.value.title == "Space Rocks"
        assert store.get_entity("caves", "cave-1") == original
        assert parts.configurator.calls == []
        assert parts.launcher.calls == []
        assert any("Could not extract Space Rocks" in m for m in _notifications(recorder))

    def test_unexpected_extraction_error_is_wrapped(self, store, session, dispatcher, app_config):
        """Test non-pipeline extraction errors become ExtractionError."""
        parts = PipelineParts(extractor=FakeExtractor(error=OSError("disk full")))
        pipeline = parts.pipeline(
            InstallRequest(game=make_game(), upload=make_upload()), store, session, dispatcher, app_config
        )

        with pytest.raises(ExtractionError, match="disk full"):
            asyncio.run(pipeline.run())

    def test_no_executables(self, store, session, dispatcher, recorder, app_config):
        """Test an empty configuration halts at CONFIGURING."""
        parts = PipelineParts(configurator=FakeConfigurator(executables=[]))
        pipeline = parts.pipeline(
            InstallRequest(game=make_game(), upload=make_upload()), store, session, dispatcher, app_config
        )

        with pytest.raises(ConfigurationError):
            asyncio.run(pipeline.run())

        assert pipeline.stage == InstallStage.CONFIGURING
        assert store.get_entities("caves") == {}
        assert any("Could not configure" in m for m in _notifications(recorder))

    def test_transfer_failure(self, store, session, dispatcher, app_config):
        """Test a failed download halts at DOWNLOADING and closes progress."""
        parts = PipelineParts(transport=FakeTransport(error=TransferError("connection reset")))
        channel = ProgressChannel()
        pipeline = parts.pipeline(
            InstallRequest(game=make_game(), upload=make_upload()),
            store, session, dispatcher, app_config, progress=channel,
        )

        async def _run():
            with pytest.raises(TransferError):
                await pipeline.run()
            return [event async for event in channel]

        events = asyncio.run(_run())

        assert pipeline.stage == InstallStage.DOWNLOADING
        assert parts.extractor.calls == []
        assert events[-1].done
        assert events[-1].error == "connection reset"


class TestUpdates:
    """Test pipelines updating an existing cave."""

    def test_full_update_overwrites_cave_in_place(self, store, session, dispatcher, app_config):
        """Test a full update keeps the cave ID and folder."""
        store.save_entity("caves", make_cave(build_id=None, install_folder="/games/space-rocks"))
        parts = PipelineParts()
        request = InstallRequest(
            game=make_game(),
            upload=make_upload(101, build_id=9),
            reason=InstallReason.UPDATE,
            cave_id="cave-1",
        )

        cave = asyncio.run(parts.pipeline(request, store, session, dispatcher, app_config).run())

        assert cave.id == "cave-1"
        assert cave.upload_id == 101
        assert cave.build_id == 9
        assert cave.install_folder == "/games/space-rocks"
        assert parts.extractor.calls[0][1] == Path("/games/space-rocks")
        assert len(store.get_entities("caves")) == 1

    def test_incremental_update_applies_patches_in_order(self, store, session, dispatcher, app_config):
        """Test each patch is downloaded and applied in order."""
        store.save_entity("caves", make_cave(build_id=5, install_folder="/games/space-rocks"))
        upload = make_upload(100, build_id=7)
        path = UpgradePath(
            steps=[UpgradeStep(id=6, parent_build_id=5, patch_size=10),
                   UpgradeStep(id=7, parent_build_id=6, patch_size=20)],
            total_size=30,
        )
        request = InstallRequest(
            game=make_game(),
            upload=upload,
            reason=InstallReason.UPDATE,
            cave_id="cave-1",
            incremental=True,
            upgrade_path=path,
        )
        parts = PipelineParts()
        channel = ProgressChannel()

        async def _run():
            cave = await parts.pipeline(
                request, store, session, dispatcher, app_config, progress=channel
            ).run()
            return cave, [event async for event in channel]

        cave, events = asyncio.run(_run())

        assert [c[:3] for c in parts.catalog.calls] == [
            ("resolve_patch_url", 100, 6),
            ("resolve_patch_url", 100, 7),
        ]
        assert [archive.name for archive, _ in parts.extractor.calls] == ["100-6.patch", "100-7.patch"]
        assert cave.build_id == 7
        assert events[-1].done
        assert events[-1].progress == 1.0
        assert all(0.0 <= e.progress <= 1.0 for e in events)
