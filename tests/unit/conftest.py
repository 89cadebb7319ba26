"""Shared fixtures for unit tests."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from envgroups.config import Workspace
from envgroups.core.backend import MemoryBackend
from envgroups.core.store import MemoryStore

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from envgroups.config.schema import Settings


class FakeClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def _clean_envgroups_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove ENVGROUPS_* env vars so unit tests don't leak host config."""
    for var in list(os.environ):
        if var.startswith("ENVGROUPS_"):
            monkeypatch.delenv(var, raising=False)
    monkeypatch.delenv("NO_COLOR", raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def workspace(store: MemoryStore, backend: MemoryBackend, clock: FakeClock) -> Workspace:
    return Workspace.build(store, backend, clock=clock, path_separator=":")


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Factory fixture: write YAML + optional .env, return loaded Settings."""
    from envgroups.config import load_settings

    def _make(yaml_str: str, *, dotenv: str | None = None) -> Settings:
        (tmp_path / "config.yaml").write_text(yaml_str)
        if dotenv is not None:
            (tmp_path / ".env").write_text(dotenv)
        return load_settings(tmp_path / "config.yaml")

    return _make
