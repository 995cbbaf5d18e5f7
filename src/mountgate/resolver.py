"""MountResolver — map a request onto an authorized (adapter, mountpoint) pair."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any, NamedTuple

from .exceptions import (
    MountpointNotFoundError,
    MountpointReadOnlyError,
    PermissionDeniedError,
    UnsupportedEndpointError,
)
from .operations import HANDLERS, OPERATION_PATH_FIELDS, Operation
from .permissions import ReadOnlyPolicy, check_groups, check_read_only
from .utils import get_prefix

if TYPE_CHECKING:
    from collections.abc import Callable

    from .adapters.registry import AdapterRegistry
    from .mounts import MountRegistry, Mountpoint

logger = logging.getLogger(__name__)

RESOLVE_FIELDS = ("path", "from", "root")
"""Fields inspected, in order, to find the mountpoint of a request."""


class ResolvedMount(NamedTuple):
    adapter: Any
    mountpoint: Mountpoint


class MountResolver:
    """Resolves, authorizes and capability-checks a request in one step.

    Pure decision over the registries it was built with: no adapter is
    called and nothing is mutated. Every failure raises a classified
    ``VFSError`` before any adapter call can happen.
    """

    def __init__(self, mounts: MountRegistry, adapters: AdapterRegistry) -> None:
        self._mounts = mounts
        self._adapters = adapters

    @property
    def mounts(self) -> MountRegistry:
        return self._mounts

    @staticmethod
    def candidate_fields(operation: Operation | None) -> tuple[str, ...]:
        """Fields that may locate the mountpoint of *operation*, in scan order.

        Only fields the operation's handler reads are considered, so a
        stray ``path`` cannot stand in for the ``from`` of a rename or
        the ``root`` of a search.
        """
        if operation is None or operation not in OPERATION_PATH_FIELDS:
            return RESOLVE_FIELDS
        used = OPERATION_PATH_FIELDS[operation]
        return tuple(name for name in RESOLVE_FIELDS if name in used)

    def resolve(
        self,
        operation: str,
        fields: Mapping[str, Any],
        caller_groups: Iterable[str],
        read_only: ReadOnlyPolicy | bool | Callable[[Mapping[str, Any]], str] | None = False,
    ) -> ResolvedMount:
        """Return the adapter and mountpoint that serve *operation*.

        Raises:
            MountpointNotFoundError: No mountpoint matches the path prefix.
            MountpointReadOnlyError: The read-only policy refuses the write.
            PermissionDeniedError: The caller lacks a required group.
            UnsupportedEndpointError: The operation is unknown or the adapter lacks it.
        """
        name = operation.value if isinstance(operation, Operation) else str(operation)
        op = Operation.parse(name)

        field_name = next((f for f in self.candidate_fields(op) if f in fields), None)
        prefix = get_prefix(fields[field_name]) if field_name else ""
        mountpoint = self._mounts.get(prefix)

        if mountpoint is None:
            raise MountpointNotFoundError(f"Mountpoint not found for '{prefix}'")

        if check_read_only(read_only, mountpoint, fields):
            raise MountpointReadOnlyError(f"Mountpoint '{prefix}' is read-only")

        if not check_groups(caller_groups, name, mountpoint):
            raise PermissionDeniedError(f"Permission was denied for '{name}' in '{prefix}'")

        adapter_id = mountpoint.adapter_id
        if op is None or op not in HANDLERS or not self._adapters.supports(adapter_id, op):
            raise UnsupportedEndpointError(
                f"VFS Endpoint '{name}' was not valid for this mountpoint."
            )

        logger.debug("Resolved %s on %s via adapter %s", name, prefix, adapter_id)
        return ResolvedMount(self._adapters.get(adapter_id), mountpoint)
