"""Catalog API client."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from cavekeeper.core.config import CatalogConfig
from cavekeeper.core.store import EntityStore
from cavekeeper.core.types import Game, Upload, UpgradeStep, User

logger = structlog.get_logger()


class CatalogError(Exception):
    """Raised when a catalog request fails.

    Attributes:
        status_code: HTTP status of the response, if one was received
        errors: Error messages reported by the catalog
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        errors: tuple[str, ...] = (),
    ):
        self.status_code = status_code
        self.errors = errors
        super().__init__(message)


class APIError(CatalogError):
    """The catalog answered with one or more error messages."""

    def has_error(self, text: str) -> bool:
        """Whether any reported error message contains ``text``."""
        return any(text in error for error in self.errors)


class NetworkError(CatalogError):
    """The catalog could not be reached or the transfer broke off."""


class HostUnreachableError(NetworkError):
    """The catalog host could not be connected to at all."""


# Reported when a download key is claimed by a user who does not own it.
KEY_OWNERSHIP_ERROR = "incorrect user for claim"


def is_key_ownership_error(error: BaseException) -> bool:
    """Whether an error means the download key belongs to someone else."""
    return isinstance(error, APIError) and error.has_error(KEY_OWNERSHIP_ERROR)


class CatalogClient:
    """Async client for the catalog API.

    Args:
        config: Catalog configuration (base URL, API key, timeouts)
        transport: Optional httpx transport, used by tests to mock the API
    """

    def __init__(
        self,
        config: CatalogConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or CatalogConfig()
        self._transport = transport
        self._async_client: httpx.AsyncClient | None = None

    @property
    def async_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._async_client is None:
            headers = {
                "User-Agent": "cavekeeper/0.1.0",
                "Accept": "application/json",
            }
            if self.config.api_key:
                headers["Authorization"] = self.config.api_key
            self._async_client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                verify=self.config.verify_ssl,
                follow_redirects=True,
                headers=headers,
                transport=self._transport,
            )
        return self._async_client

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Perform a GET request and return the decoded payload.

        Raises:
            HostUnreachableError: If no connection could be made
            NetworkError: On any other transport failure
            APIError: If the catalog reports errors or a bad status
        """
        params = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            response = await self.async_client.get(path, params=params)
        except httpx.ConnectError as e:
            logger.debug("catalog_unreachable", path=path, error=str(e))
            raise HostUnreachableError(f"Cannot reach catalog: {e}") from e
        except httpx.TransportError as e:
            logger.debug("catalog_network_error", path=path, error=str(e))
            raise NetworkError(f"Network error ({type(e).__name__}): {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        errors = tuple(payload.get("errors", ())) if isinstance(payload, dict) else ()
        if errors or response.is_error:
            raise APIError(
                f"Catalog request {path} failed: {', '.join(errors) or response.status_code}",
                status_code=response.status_code,
                errors=errors,
            )
        if not isinstance(payload, dict):
            raise APIError(f"Unexpected payload for {path}", status_code=response.status_code)

        logger.debug("catalog_fetch_success", path=path, status=response.status_code)
        return payload

    async def fetch_me(self) -> User:
        """Fetch the user owning the configured API key."""
        payload = await self._get("/me")
        return User.model_validate(payload["user"])

    async def fetch_game(self, game_id: int) -> Game:
        """Fetch one game by ID."""
        payload = await self._get(f"/games/{game_id}")
        return Game.model_validate(payload["game"])

    async def list_uploads_for_game(self, game_id: int) -> list[Upload]:
        """List the uploads of a game visible to the current user."""
        payload = await self._get(f"/games/{game_id}/uploads")
        return [Upload.model_validate({"game_id": game_id, **u}) for u in payload.get("uploads", [])]

    async def list_uploads_for_key(self, key_id: int) -> list[Upload]:
        """List the uploads unlocked by a download key."""
        payload = await self._get(f"/download-key/{key_id}/uploads")
        return [Upload.model_validate(u) for u in payload.get("uploads", [])]

    async def resolve_download_url(self, upload_id: int, key_id: int | None = None) -> str:
        """Resolve a direct download URL for an upload archive."""
        payload = await self._get(f"/uploads/{upload_id}/download", {"download_key_id": key_id})
        return str(payload["url"])

    async def resolve_patch_url(
        self, upload_id: int, build_id: int, key_id: int | None = None
    ) -> str:
        """Resolve a direct download URL for the patch reaching ``build_id``."""
        payload = await self._get(
            f"/uploads/{upload_id}/builds/{build_id}/patch", {"download_key_id": key_id}
        )
        return str(payload["url"])

    async def find_upgrade(
        self, upload_id: int, current_build_id: int, key_id: int | None = None
    ) -> list[UpgradeStep]:
        """Fetch the raw patch chain from ``current_build_id`` to the upload's build."""
        payload = await self._get(
            f"/uploads/{upload_id}/upgrade/{current_build_id}", {"download_key_id": key_id}
        )
        return [UpgradeStep.model_validate(step) for step in payload.get("upgrade_path", [])]

    async def close(self) -> None:
        """Close HTTP client."""
        if self._async_client is not None:
            await self._async_client.aclose()
            self._async_client = None

    async def __aenter__(self) -> CatalogClient:
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Async context manager exit."""
        await self.close()


async def fetch_game_lazily(catalog: CatalogClient, store: EntityStore, game_id: int) -> Game:
    """Get a game from the store, fetching and caching it on a miss."""
    game = store.get_entity("games", game_id)
    if game is not None:
        return game

    game = await catalog.fetch_game(game_id)
    store.save_entity("games", game)
    logger.debug("game_cached", game_id=game_id, title=game.title)
    return game
