"""Local entity store for games, caves and download keys.

Entities are kept in memory and keyed by kind then by ID. When the store
has a backing file, every write is persisted as JSON using atomic writes
(temp file + os.replace) so an interrupted save never corrupts it.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from cavekeeper.core.types import Cave, DownloadKey, Game

logger = structlog.get_logger()

ENTITY_TYPES: dict[str, type[BaseModel]] = {
    "games": Game,
    "caves": Cave,
    "download_keys": DownloadKey,
}


class EntityStore:
    """Entity store shared by update checks and install pipelines.

    Args:
        path: JSON file backing the store, or None for a memory-only store
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self._entities: dict[str, dict[str, BaseModel]] = {kind: {} for kind in ENTITY_TYPES}

    @staticmethod
    def _check_kind(kind: str) -> None:
        if kind not in ENTITY_TYPES:
            raise ValueError(f"Unknown entity kind: {kind}")

    def get_entities(self, kind: str) -> dict[str, Any]:
        """Get a snapshot of all entities of a kind.

        Args:
            kind: Entity kind ("games", "caves" or "download_keys")

        Returns:
            Dict mapping entity ID (as string) to entity
        """
        self._check_kind(kind)
        return dict(self._entities[kind])

    def get_entity(self, kind: str, entity_id: str | int) -> Any | None:
        """Get one entity by ID, or None if unknown."""
        self._check_kind(kind)
        return self._entities[kind].get(str(entity_id))

    def save_entity(self, kind: str, entity: BaseModel) -> None:
        """Insert or replace an entity and persist the store."""
        self._check_kind(kind)
        if not isinstance(entity, ENTITY_TYPES[kind]):
            raise TypeError(f"Expected {ENTITY_TYPES[kind].__name__} for {kind}")
        self._entities[kind][str(entity.id)] = entity  # type: ignore[attr-defined]
        self.save()

    def update_cave(self, cave_id: str, **changes: Any) -> Cave:
        """Update fields of an existing cave and persist the store.

        Args:
            cave_id: ID of the cave to update
            **changes: Field values to set

        Returns:
            The updated cave

        Raises:
            KeyError: If the cave does not exist
        """
        cave = self.get_entity("caves", cave_id)
        if cave is None:
            raise KeyError(f"No cave with id {cave_id}")
        updated = cave.model_copy(update=changes)
        self._entities["caves"][cave_id] = updated
        self.save()
        logger.debug("cave_updated", cave_id=cave_id, fields=sorted(changes))
        return updated

    def find_download_key(self, game_id: int, owner_id: int | None = None) -> DownloadKey | None:
        """Find a download key for a game, optionally restricted to one owner."""
        for key in self._entities["download_keys"].values():
            if key.game_id != game_id:  # type: ignore[attr-defined]
                continue
            if owner_id is not None and key.owner_id not in (None, owner_id):  # type: ignore[attr-defined]
                continue
            return key  # type: ignore[return-value]
        return None

    def save(self) -> None:
        """Persist the store to its backing file, if any."""
        if self.path is None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".json.tmp")

        data = {
            kind: {
                entity_id: entity.model_dump(mode="json")
                for entity_id, entity in entities.items()
            }
            for kind, entities in self._entities.items()
        }

        tmp_path.write_text(json.dumps(data, separators=(",", ":")))
        os.replace(tmp_path, self.path)

    @classmethod
    def load(cls, path: Path) -> EntityStore:
        """Load a store from disk.

        A missing or unreadable file yields an empty store bound to the
        same path. Entities that fail validation are skipped.
        """
        store = cls(path)
        if not path.exists():
            return store

        try:
            raw = json.loads(path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("store_load_failed", path=str(path), error=str(e))
            return store

        for kind, model in ENTITY_TYPES.items():
            for entity_id, payload in raw.get(kind, {}).items():
                try:
                    store._entities[kind][entity_id] = model.model_validate(payload)
                except ValidationError as e:
                    logger.warning("store_entity_invalid", kind=kind, id=entity_id, error=str(e))

        return store
