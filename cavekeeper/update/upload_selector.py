"""Pick the uploads of a game that apply to a platform."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from cavekeeper.core.catalog import CatalogClient
from cavekeeper.core.session import Session
from cavekeeper.core.store import EntityStore
from cavekeeper.core.types import Cave, DownloadKey, Game, Platform, Upload
from cavekeeper.core.utils import EPOCH

logger = structlog.get_logger()


@dataclass
class UploadSelection:
    """Candidate uploads for a game and the download key used to list them."""

    uploads: list[Upload] = field(default_factory=list)
    download_key: DownloadKey | None = None

    @property
    def download_key_id(self) -> int | None:
        return self.download_key.id if self.download_key else None


def resolve_download_key(
    store: EntityStore, session: Session, game: Game, cave: Cave | None = None
) -> DownloadKey | None:
    """Download key granting access to a game's uploads.

    The cave's own key wins; otherwise any key the current user holds for
    the game is used.
    """
    if cave is not None and cave.download_key_id is not None:
        key = store.get_entity("download_keys", cave.download_key_id)
        if key is not None:
            return key
        # Key not cached locally, the catalog still knows it by ID.
        return DownloadKey(id=cave.download_key_id, game_id=game.id)

    owner_id = session.me.id if session.me else None
    return store.find_download_key(game.id, owner_id)


def filter_uploads(uploads: list[Upload], platform: Platform) -> list[Upload]:
    """Uploads that run on ``platform``, most recently updated first."""
    compatible = [upload for upload in uploads if upload.supports(platform)]
    return sorted(compatible, key=lambda u: u.updated_at or EPOCH, reverse=True)


async def find_uploads(
    catalog: CatalogClient,
    store: EntityStore,
    session: Session,
    game: Game,
    platform: Platform,
    cave: Cave | None = None,
) -> UploadSelection:
    """List the uploads of a game that apply to a platform.

    Args:
        catalog: Catalog client
        store: Entity store holding known download keys
        session: Current session
        game: Game to list uploads for
        platform: Target platform family
        cave: Installed cave, whose download key takes precedence

    Returns:
        Candidate uploads and the download key they were listed through
    """
    download_key = resolve_download_key(store, session, game, cave)
    if download_key is not None:
        all_uploads = await catalog.list_uploads_for_key(download_key.id)
    else:
        all_uploads = await catalog.list_uploads_for_game(game.id)

    uploads = filter_uploads(all_uploads, platform)
    logger.debug(
        "uploads_found",
        game_id=game.id,
        platform=platform.value,
        total=len(all_uploads),
        compatible=len(uploads),
        download_key_id=download_key.id if download_key else None,
    )
    return UploadSelection(uploads=uploads, download_key=download_key)
