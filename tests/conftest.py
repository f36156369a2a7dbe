"""Shared test fixtures for superstorage."""

from __future__ import annotations

from pathlib import Path

import pytest

from superstorage.broadcast import LocalBroadcast
from superstorage.controller import Storage
from superstorage.schema import s
from superstorage.store import MemoryStore


@pytest.fixture
def store() -> MemoryStore:
    """An empty in-memory byte store."""
    return MemoryStore()


@pytest.fixture
def hub() -> LocalBroadcast:
    """An in-process broadcast hub with inline delivery."""
    return LocalBroadcast()


@pytest.fixture
def storage(store: MemoryStore, hub: LocalBroadcast) -> Storage:
    """A controller over the memory store and local hub."""
    return Storage(store, hub)


@pytest.fixture
def user_schema():
    """The name/age object schema used throughout the tests."""
    return s.object({"name": s.string().required(), "age": s.number()})


@pytest.fixture
def storage_home(tmp_path: Path) -> Path:
    """A temporary storage home directory."""
    home = tmp_path / ".superstorage"
    home.mkdir()
    return home
