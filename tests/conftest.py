"""Pytest configuration and shared fixtures for cavekeeper tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from helpers import ME

from cavekeeper.core.config import AppConfig, InstallConfig, UpdaterConfig
from cavekeeper.core.events import Dispatcher, EventRecorder
from cavekeeper.core.session import Session
from cavekeeper.core.store import EntityStore
from cavekeeper.core.types import Platform


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Configuration rooted in a temporary directory."""
    return AppConfig(
        config_dir=tmp_path / "config",
        data_dir=tmp_path / "data",
        install=InstallConfig(platform=Platform.LINUX),
        updater=UpdaterConfig(base_interval=100.0, max_jitter=50.0, item_delay=0.0),
    )


@pytest.fixture
def store() -> EntityStore:
    """Memory-only entity store."""
    return EntityStore()


@pytest.fixture
def session() -> Session:
    """Session logged in as ME."""
    return Session(me=ME)


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def dispatcher(recorder: EventRecorder) -> Dispatcher:
    """Dispatcher with a recorder subscribed."""
    dispatcher = Dispatcher()
    dispatcher.subscribe(recorder)
    return dispatcher


# Pytest configuration
def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest settings."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
