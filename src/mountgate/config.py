"""VFSConfig — process-wide mountpoints and adapters, built once at startup."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .adapters.registry import AdapterRegistry
from .adapters.system import SystemAdapter
from .exceptions import ConfigError
from .mounts import SYSTEM_ADAPTER, MountRegistry, Mountpoint
from .protocol import SupportsLifecycle

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = logging.getLogger(__name__)

TEMPLATE_VARIABLES = ("root", "vfs")
"""Top-level config keys substituted into mountpoint roots at load time."""


@dataclass(frozen=True)
class VFSConfig:
    """Read-only context threaded through every request."""

    mounts: MountRegistry
    adapters: AdapterRegistry

    def __post_init__(self) -> None:
        for mountpoint in self.mounts:
            if mountpoint.adapter_id not in self.adapters:
                raise ConfigError(
                    f"Mountpoint {mountpoint.name!r} uses unknown adapter {mountpoint.adapter_id!r}"
                )

    async def open(self) -> None:
        """Open every adapter with ``open()``/``close()`` lifecycle hooks."""
        for name, adapter in self.adapters.items():
            if isinstance(adapter, SupportsLifecycle):
                logger.debug("Opening adapter %s", name)
                await adapter.open()

    async def close(self) -> None:
        """Close lifecycle adapters, logging failures and carrying on."""
        for name, adapter in self.adapters.items():
            if isinstance(adapter, SupportsLifecycle):
                try:
                    await adapter.close()
                except Exception:
                    logger.warning("Adapter close failed for %s", name, exc_info=True)


def build_config(
    mountpoints: Iterable[Mountpoint],
    adapters: Mapping[str, Any] | None = None,
    *,
    system_root: Path | str | None = None,
) -> VFSConfig:
    """Build a config from ready-made mountpoints.

    A ``SystemAdapter`` is registered as ``"system"`` unless *adapters*
    supplies one.
    """
    registry = AdapterRegistry()
    registry.register(SYSTEM_ADAPTER, SystemAdapter(system_root))
    for name, adapter in (adapters or {}).items():
        registry.register(name, adapter)
    return VFSConfig(MountRegistry(mountpoints), registry)


def load_config(data: Mapping[str, Any], adapters: Mapping[str, Any] | None = None) -> VFSConfig:
    """Build a config from its mapping form.

    Example::

        load_config(
            {
                "vfs": "/srv/vfs",
                "mountpoints": [
                    {"name": "home", "attributes": {"root": "{vfs}/{username}"}},
                    {"name": "shared", "adapter": "db"},
                ],
            },
            adapters={"db": DatabaseAdapter("sqlite+aiosqlite:///vfs.db")},
        )
    """
    entries = data.get("mountpoints")
    if not isinstance(entries, list):
        raise ConfigError("Configuration needs a 'mountpoints' list")

    variables = {key: str(data[key]) for key in TEMPLATE_VARIABLES if data.get(key)}
    mountpoints = [Mountpoint.from_config(entry, variables) for entry in entries]
    config = build_config(mountpoints, adapters, system_root=data.get("vfs"))
    logger.info("Loaded %d mountpoint(s)", len(config.mounts))
    return config


def load_config_file(path: Path | str, adapters: Mapping[str, Any] | None = None) -> VFSConfig:
    """Load the mapping form of the config from a JSON file."""
    path = Path(path)
    try:
        data = json.loads(path.read_text("utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read configuration {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration {path} must be a JSON object")
    return load_config(data, adapters)
