"""Core type definitions for cavekeeper."""

from __future__ import annotations

import sys
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Platform(StrEnum):
    """Supported platform families."""
    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"

    @classmethod
    def current(cls) -> Platform:
        """Platform family of the running interpreter."""
        if sys.platform.startswith("win") or sys.platform == "cygwin":
            return cls.WINDOWS
        if sys.platform == "darwin":
            return cls.MACOS
        return cls.LINUX


# Catalog capability flag carried by uploads for each platform family.
PLATFORM_FLAGS: dict[Platform, str] = {
    Platform.WINDOWS: "p_windows",
    Platform.MACOS: "p_osx",
    Platform.LINUX: "p_linux",
}


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class User(BaseModel):
    """Catalog user."""
    id: int = Field(..., description="User ID")
    username: str = Field(default="", description="Login name")

    model_config = ConfigDict(extra="allow")


class Game(BaseModel):
    """Catalog item snapshot."""
    id: int = Field(..., description="Game ID")
    title: str = Field(..., description="Display title")
    url: str | None = Field(None, description="Store page URL")
    classification: str | None = Field(None, description="Catalog classification")
    user_id: int | None = Field(None, description="Owning developer ID")
    cover_url: str | None = Field(None, description="Cover image URL")

    model_config = ConfigDict(extra="allow")


class Upload(BaseModel):
    """Distributable artifact of a game."""
    id: int = Field(..., description="Upload ID")
    game_id: int | None = Field(None, description="Owning game ID")
    filename: str = Field(default="", description="Archive file name")
    display_name: str | None = Field(None, description="Human-friendly name")
    size: int = Field(default=0, description="Archive size in bytes")
    updated_at: datetime | None = Field(None, description="Last update timestamp")
    build_id: int | None = Field(None, description="Current incremental build ID")
    platforms: frozenset[Platform] = Field(
        default_factory=frozenset, description="Platforms this upload runs on"
    )

    model_config = ConfigDict(extra="allow")

    @model_validator(mode="before")
    @classmethod
    def collect_platform_flags(cls, data: Any) -> Any:
        """Turn catalog ``p_*`` capability flags into ``platforms``."""
        if not isinstance(data, dict) or "platforms" in data:
            return data
        data = dict(data)
        data["platforms"] = frozenset(
            platform for platform, flag in PLATFORM_FLAGS.items() if data.pop(flag, False)
        )
        return data

    @field_validator("updated_at")
    @classmethod
    def validate_updated_at(cls, v: datetime | None) -> datetime | None:
        """Treat naive timestamps as UTC."""
        return _as_utc(v)

    @property
    def label(self) -> str:
        """Name shown to users."""
        return self.display_name or self.filename or f"upload #{self.id}"

    def supports(self, platform: Platform) -> bool:
        """Whether this upload can be installed on the given platform."""
        return platform in self.platforms


class DownloadKey(BaseModel):
    """Grants a user access to a game's uploads."""
    id: int = Field(..., description="Download key ID")
    game_id: int = Field(..., description="Game this key unlocks")
    owner_id: int | None = Field(None, description="User owning the key")

    model_config = ConfigDict(extra="allow")


class Cave(BaseModel):
    """One local installation of a game."""
    id: str = Field(..., description="Cave ID")
    game_id: int | None = Field(None, description="Installed game ID")
    upload_id: int | None = Field(None, description="Installed upload ID")
    build_id: int | None = Field(None, description="Installed build ID")
    installed_at: datetime | None = Field(None, description="Install timestamp")
    installed_by: User | None = Field(None, description="User who installed the cave")
    launchable: bool = Field(default=False, description="Whether an executable was found")
    download_key_id: int | None = Field(None, description="Download key used to install")
    install_folder: str = Field(default="", description="Installation directory")
    executables: list[str] = Field(default_factory=list, description="Discovered entry points")

    model_config = ConfigDict(extra="allow")

    @field_validator("installed_at")
    @classmethod
    def validate_installed_at(cls, v: datetime | None) -> datetime | None:
        """Treat naive timestamps as UTC."""
        return _as_utc(v)


class UpgradeStep(BaseModel):
    """One patch in an upgrade path."""
    id: int = Field(..., description="Build ID reached by applying this patch")
    parent_build_id: int | None = Field(None, description="Build ID the patch applies to")
    patch_size: int = Field(default=0, description="Patch size in bytes")

    model_config = ConfigDict(extra="allow")


class UpgradePath(BaseModel):
    """Ordered patch chain from an installed build to a target build."""
    steps: list[UpgradeStep] = Field(default_factory=list)
    total_size: int = Field(default=0, description="Sum of patch sizes")

    @property
    def target_build_id(self) -> int | None:
        """Build reached once every step is applied."""
        return self.steps[-1].id if self.steps else None
