"""Configuration management for cavekeeper."""

from __future__ import annotations

import json
import os
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, field_validator

from cavekeeper.core.types import Platform

logger = structlog.get_logger()

API_KEY_ENV = "CAVEKEEPER_API_KEY"


class CatalogConfig(BaseModel):
    """Catalog API configuration."""

    base_url: str = Field(
        default="https://api.itch.io",
        description="Catalog API base URL"
    )
    api_key: str | None = Field(default=None, description="API key for the current session")
    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Validate base URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Invalid base URL: {v}")
        return v.rstrip("/")

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout value."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v


class UpdaterConfig(BaseModel):
    """Update scheduler pacing."""

    base_interval: float = Field(
        default=20 * 60,  # 20 minutes
        description="Seconds between two scheduled passes"
    )
    max_jitter: float = Field(
        default=10 * 60,  # 10 minutes
        description="Upper bound of the random delay added to base_interval"
    )
    item_delay: float = Field(
        default=0.025,
        description="Seconds to wait between two caves within a pass"
    )

    @field_validator("base_interval", "max_jitter", "item_delay")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        """Validate delay values."""
        if v < 0:
            raise ValueError("Delays must be non-negative")
        return v


class InstallConfig(BaseModel):
    """Install pipeline configuration."""

    platform: Platform = Field(
        default_factory=Platform.current,
        description="Platform family used to pick uploads"
    )
    progress_interval: float = Field(
        default=0.25,
        description="Minimum seconds between two progress updates"
    )
    chunk_size: int = Field(default=64 * 1024, description="Download chunk size in bytes")

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        """Validate chunk size."""
        if v <= 0:
            raise ValueError("Chunk size must be positive")
        return v


class AppConfig(BaseModel):
    """Application configuration."""

    # Directory settings
    config_dir: Path = Field(
        default=Path.home() / ".config" / "cavekeeper",
        description="Configuration directory"
    )
    data_dir: Path = Field(
        default=Path.home() / ".local" / "share" / "cavekeeper",
        description="Data directory (store, downloads, installed apps)"
    )

    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    updater: UpdaterConfig = Field(default_factory=UpdaterConfig)
    install: InstallConfig = Field(default_factory=InstallConfig)

    # Output settings
    output_format: str = Field(
        default="rich",
        description="Output format (rich, json, plain)"
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    def model_post_init(self, __context) -> None:
        """Ensure directories exist."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def store_path(self) -> Path:
        """Path of the persisted entity store."""
        return self.data_dir / "store.json"

    @property
    def downloads_dir(self) -> Path:
        """Directory holding downloaded archives and patches."""
        return self.data_dir / "downloads"

    @property
    def apps_dir(self) -> Path:
        """Directory holding installed caves."""
        return self.data_dir / "apps"

    @property
    def updater_log_path(self) -> Path:
        """Log file receiving update checker and scheduler events."""
        return self.data_dir / "logs" / "updater.log"

    @classmethod
    def load(cls, config_file: Path | None = None) -> AppConfig:
        """Load configuration from file.

        The ``CAVEKEEPER_API_KEY`` environment variable, when set, overrides
        the catalog API key from the file.

        Args:
            config_file: Path to config file, uses default if None

        Returns:
            Application configuration
        """
        if config_file is None:
            config_file = Path.home() / ".config" / "cavekeeper" / "config.json"

        data: dict = {}
        if config_file.exists():
            with open(config_file) as f:
                data = json.load(f)

        env_key = os.environ.get(API_KEY_ENV)
        if env_key:
            data.setdefault("catalog", {})["api_key"] = env_key

        return cls(**data)

    def save(self, config_file: Path | None = None) -> None:
        """Save configuration to file.

        Args:
            config_file: Path to config file, uses default if None
        """
        if config_file is None:
            config_file = self.config_dir / "config.json"

        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

        logger.info("config_saved", path=str(config_file))

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v: str) -> str:
        """Validate output format."""
        valid_formats = {"rich", "json", "plain"}
        if v not in valid_formats:
            raise ValueError(f"Invalid output format: {v}. Valid formats: {valid_formats}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Valid levels: {valid_levels}")
        return v
