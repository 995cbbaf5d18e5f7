"""Shared fixtures for mountgate tests."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from mountgate.config import build_config
from mountgate.dispatcher import VFSDispatcher
from mountgate.mounts import Mountpoint
from mountgate.permissions import MountGroups

from tests.fakes import ListOnlyAdapter, MemoryAdapter

if TYPE_CHECKING:
    from mountgate.config import VFSConfig


@pytest.fixture
def log() -> list[tuple[Any, ...]]:
    return []


@pytest.fixture
def local(log) -> MemoryAdapter:
    """Adapter registered as the default ``system`` adapter."""
    return MemoryAdapter("local", log)


@pytest.fixture
def cloud(log) -> MemoryAdapter:
    """Adapter registered as ``cloud``."""
    return MemoryAdapter("cloud", log)


@pytest.fixture
def mountpoints() -> list[Mountpoint]:
    return [
        Mountpoint(name="a"),
        Mountpoint(name="a2"),
        Mountpoint(name="b", adapter="cloud"),
        Mountpoint(name="ro", read_only=True),
        Mountpoint(name="rocloud", adapter="cloud", read_only=True),
        Mountpoint(
            name="edit",
            groups=MountGroups.from_entries([{"writefile": ["editors"]}]),
        ),
        Mountpoint(name="staff", groups=MountGroups.from_entries(["staff"])),
        Mountpoint(name="listonly", adapter="listonly"),
    ]


@pytest.fixture
def config(local, cloud, mountpoints) -> VFSConfig:
    return build_config(
        mountpoints,
        {"system": local, "cloud": cloud, "listonly": ListOnlyAdapter()},
    )


@pytest.fixture
def dispatcher(config) -> VFSDispatcher:
    return VFSDispatcher(config)
