"""Upgrade path resolution for incremental builds.

An upgrade path is the ordered chain of patches taking an installed build
to the current build of its upload. Patches are applied strictly in order;
stopping after any prefix leaves the cave on a valid intermediate build.
Computing the patches themselves is the catalog's job; this module only
fetches and validates the chain.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from cavekeeper.core.catalog import CatalogClient, CatalogError
from cavekeeper.core.types import Upload, UpgradePath, UpgradeStep

logger = structlog.get_logger()


class UpgradePathError(CatalogError):
    """No usable upgrade path exists between two builds."""


class UpgradePathResolver(Protocol):
    """Resolve the patch chain from an installed build to an upload's build."""

    async def resolve(
        self, current_build_id: int, upload: Upload, key_id: int | None = None
    ) -> UpgradePath:
        ...


def validate_upgrade_path(
    current_build_id: int, target_build_id: int | None, steps: list[UpgradeStep]
) -> UpgradePath:
    """Check that ``steps`` form a contiguous chain and build an UpgradePath.

    Args:
        current_build_id: Build the cave is on
        target_build_id: Build the upload is on
        steps: Patches in application order

    Returns:
        The validated upgrade path

    Raises:
        UpgradePathError: If the chain is empty, broken, or misses the target
    """
    if not steps:
        raise UpgradePathError(
            f"No upgrade path from build {current_build_id} to {target_build_id}"
        )

    previous = current_build_id
    for step in steps:
        if step.parent_build_id is not None and step.parent_build_id != previous:
            raise UpgradePathError(
                f"Broken upgrade path: build {step.id} patches {step.parent_build_id}, "
                f"expected {previous}"
            )
        previous = step.id

    if target_build_id is not None and previous != target_build_id:
        raise UpgradePathError(
            f"Upgrade path ends at build {previous}, expected {target_build_id}"
        )

    return UpgradePath(steps=list(steps), total_size=sum(step.patch_size for step in steps))


class CatalogUpgradePathResolver:
    """Upgrade path resolver backed by the catalog API."""

    def __init__(self, catalog: CatalogClient) -> None:
        self.catalog = catalog

    async def resolve(
        self, current_build_id: int, upload: Upload, key_id: int | None = None
    ) -> UpgradePath:
        """Resolve and validate the patch chain for ``upload``.

        Raises:
            UpgradePathError: If the catalog has no usable chain
            CatalogError: If the catalog request fails
        """
        steps = await self.catalog.find_upgrade(upload.id, current_build_id, key_id)
        path = validate_upgrade_path(current_build_id, upload.build_id, steps)
        logger.debug(
            "upgrade_path_resolved",
            upload_id=upload.id,
            from_build=current_build_id,
            to_build=path.target_build_id,
            patches=len(path.steps),
            total_size=path.total_size,
        )
        return path
