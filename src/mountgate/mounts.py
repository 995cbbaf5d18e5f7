"""Mountpoint and MountRegistry."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .exceptions import ConfigError
from .permissions import MountGroups

logger = logging.getLogger(__name__)

SYSTEM_ADAPTER = "system"
"""Adapter used by mountpoints that do not name one."""

_NAME_RE = re.compile(r"^\w+$")


@dataclass(frozen=True)
class Mountpoint:
    """A named binding between a path prefix and a storage adapter."""

    name: str
    """Prefix string, e.g. "home" for ``home:/file.txt``."""

    adapter: str | None = None
    """Adapter identifier. ``None`` selects the system adapter."""

    groups: MountGroups = field(default_factory=MountGroups)
    """Group requirements for operations on this mountpoint."""

    read_only: bool = False
    """If True, state-mutating operations are refused."""

    root: str | None = None
    """Backing location for adapters that need one (may contain ``{username}``)."""

    label: str = ""
    """Display name for the mountpoint."""

    attributes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    """Remaining adapter-specific attributes from configuration."""

    def __post_init__(self) -> None:
        if not _NAME_RE.match(self.name):
            raise ConfigError(f"Invalid mountpoint name: {self.name!r}")
        if not self.label:
            object.__setattr__(self, "label", self.name)

    @property
    def adapter_id(self) -> str:
        return self.adapter or SYSTEM_ADAPTER

    @classmethod
    def from_config(
        cls, entry: Mapping[str, Any], variables: Mapping[str, str] | None = None
    ) -> Mountpoint:
        """Build from a configuration entry.

        The entry has ``name`` and optional ``label``/``adapter`` keys plus
        an ``attributes`` mapping holding ``groups``, ``readOnly``, ``root``
        and anything adapter-specific. ``{name}`` placeholders in ``root``
        are expanded from *variables*; unknown placeholders such as
        ``{username}`` are left for the adapter.
        """
        if "name" not in entry:
            raise ConfigError(f"Mountpoint entry has no name: {dict(entry)!r}")

        attributes = dict(entry.get("attributes") or {})
        groups = MountGroups.from_entries(attributes.pop("groups", None))
        read_only = bool(attributes.pop("readOnly", False))
        root = attributes.pop("root", None)
        if root is not None:
            root = _expand(str(root), variables or {})

        return cls(
            name=str(entry["name"]),
            adapter=entry.get("adapter"),
            groups=groups,
            read_only=read_only,
            root=root,
            label=str(entry.get("label") or ""),
            attributes=MappingProxyType(attributes),
        )


def _expand(template: str, variables: Mapping[str, str]) -> str:
    for key, value in variables.items():
        template = template.replace("{" + key + "}", value)
    return template


class MountRegistry:
    """Ordered, read-only collection of configured mountpoints.

    Built once from configuration; lookups are by exact prefix name.
    """

    def __init__(self, mountpoints: Iterable[Mountpoint] = ()) -> None:
        by_name: dict[str, Mountpoint] = {}
        for mountpoint in mountpoints:
            if mountpoint.name in by_name:
                raise ConfigError(f"Duplicate mountpoint name: {mountpoint.name!r}")
            by_name[mountpoint.name] = mountpoint
            logger.debug("Mountpoint %s -> adapter %s", mountpoint.name, mountpoint.adapter_id)
        self._mounts: Mapping[str, Mountpoint] = MappingProxyType(by_name)

    def __iter__(self) -> Iterator[Mountpoint]:
        return iter(self._mounts.values())

    def __len__(self) -> int:
        return len(self._mounts)

    def __contains__(self, name: object) -> bool:
        return name in self._mounts

    def get(self, name: str | None) -> Mountpoint | None:
        """Return the mountpoint named *name*, or None."""
        if not name:
            return None
        return self._mounts.get(name)

    def list_mounts(self) -> list[Mountpoint]:
        """List all mountpoints in configuration order."""
        return list(self._mounts.values())

    def visible_to(self, caller_groups: Iterable[str]) -> list[Mountpoint]:
        """List mountpoints whose unconditional group requirements the caller meets."""
        held = set(caller_groups)
        return [m for m in self._mounts.values() if m.groups.required <= held]
