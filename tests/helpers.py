"""Factories and test doubles shared by cavekeeper tests."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from cavekeeper.core.catalog import CatalogError
from cavekeeper.core.types import Cave, Game, Platform, Upload, UpgradePath, UpgradeStep, User
from cavekeeper.install.request import InstallRequest

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)
ME = User(id=1, username="alice")
SOMEONE_ELSE = User(id=2, username="bob")


def make_game(game_id: int = 10, title: str = "Space Rocks") -> Game:
    return Game(id=game_id, title=title)


def make_upload(
    upload_id: int = 100,
    game_id: int = 10,
    updated_at: datetime | None = None,
    build_id: int | None = None,
    size: int = 2048,
    platforms: frozenset[Platform] = frozenset({Platform.LINUX}),
) -> Upload:
    return Upload(
        id=upload_id,
        game_id=game_id,
        filename=f"upload-{upload_id}.zip",
        size=size,
        updated_at=updated_at,
        build_id=build_id,
        platforms=platforms,
    )


def make_cave(**overrides: Any) -> Cave:
    fields: dict[str, Any] = {
        "id": "cave-1",
        "game_id": 10,
        "upload_id": 100,
        "installed_at": NOW - timedelta(days=2),
        "installed_by": ME,
        "launchable": True,
    }
    fields.update(overrides)
    return Cave(**fields)


class FakeCatalog:
    """Catalog double recording every call."""

    def __init__(
        self,
        games: dict[int, Game] | None = None,
        uploads: list[Upload] | None = None,
        upgrade_steps: list[UpgradeStep] | None = None,
        error: Exception | None = None,
    ):
        self.games = games or {10: make_game()}
        self.uploads = uploads or []
        self.upgrade_steps = upgrade_steps or []
        self.error = error
        self.calls: list[tuple[Any, ...]] = []

    def _record(self, *call: Any) -> None:
        self.calls.append(call)
        if self.error is not None:
            raise self.error

    async def fetch_game(self, game_id: int) -> Game:
        self._record("fetch_game", game_id)
        if game_id not in self.games:
            raise CatalogError(f"Game {game_id} not found", status_code=404)
        return self.games[game_id]

    async def list_uploads_for_game(self, game_id: int) -> list[Upload]:
        self._record("list_uploads_for_game", game_id)
        return list(self.uploads)

    async def list_uploads_for_key(self, key_id: int) -> list[Upload]:
        self._record("list_uploads_for_key", key_id)
        return list(self.uploads)

    async def resolve_download_url(self, upload_id: int, key_id: int | None = None) -> str:
        self._record("resolve_download_url", upload_id, key_id)
        return f"https://cdn.test/uploads/{upload_id}"

    async def resolve_patch_url(self, upload_id: int, build_id: int, key_id: int | None = None) -> str:
        self._record("resolve_patch_url", upload_id, build_id, key_id)
        return f"https://cdn.test/uploads/{upload_id}/builds/{build_id}"

    async def find_upgrade(
        self, upload_id: int, current_build_id: int, key_id: int | None = None
    ) -> list[UpgradeStep]:
        self._record("find_upgrade", upload_id, current_build_id, key_id)
        return list(self.upgrade_steps)


class FakeResolver:
    """Upgrade path resolver double."""

    def __init__(self, path: UpgradePath | None = None, error: Exception | None = None):
        self.path = path
        self.error = error
        self.calls: list[tuple[int, Upload]] = []

    async def resolve(self, current_build_id: int, upload: Upload, key_id: int | None = None) -> UpgradePath:
        self.calls.append((current_build_id, upload))
        if self.error is not None:
            raise self.error
        if self.path is not None:
            return self.path
        steps = [
            UpgradeStep(id=build, parent_build_id=build - 1, patch_size=100)
            for build in range(current_build_id + 1, (upload.build_id or current_build_id) + 1)
        ]
        return UpgradePath(steps=steps, total_size=sum(s.patch_size for s in steps))


class FakeQueue:
    """Install queue double keeping submitted requests."""

    def __init__(self) -> None:
        self.requests: list[InstallRequest] = []

    async def submit(self, request: InstallRequest) -> str:
        self.requests.append(request)
        return f"install-{len(self.requests)}"


class FakeTransport:
    """Transport double writing fixed content to the destination."""

    def __init__(self, content: bytes = b"archive", error: Exception | None = None):
        self.content = content
        self.error = error
        self.calls: list[tuple[str, Path]] = []

    async def download(self, url: str, dest_path: Path) -> AsyncIterator[float]:
        self.calls.append((url, dest_path))
        yield 0.5
        if self.error is not None:
            raise self.error
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        dest_path.write_bytes(self.content)
        yield 1.0


class FakeExtractor:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[tuple[Path, Path]] = []

    async def extract(self, archive_path: Path, dest_dir: Path) -> None:
        self.calls.append((archive_path, dest_dir))
        if self.error is not None:
            raise self.error


class FakeConfigurator:
    def __init__(self, executables: list[Path] | None = None, error: Exception | None = None):
        self.executables = executables if executables is not None else [Path("/games/space-rocks/run.sh")]
        self.error = error
        self.calls: list[Path] = []

    async def configure(self, install_dir: Path) -> list[Path]:
        self.calls.append(install_dir)
        if self.error is not None:
            raise self.error
        return list(self.executables)


class FakeLauncher:
    def __init__(self) -> None:
        self.calls: list[tuple[Path, int]] = []

    async def launch(self, executable: Path, game_id: int) -> None:
        self.calls.append((executable, game_id))

