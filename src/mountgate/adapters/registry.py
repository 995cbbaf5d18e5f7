"""AdapterRegistry — adapters by identifier, with capability sets."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from typing import Any

from mountgate.exceptions import ConfigError
from mountgate.operations import Operation
from mountgate.protocol import SupportsRead, SupportsSearch, SupportsTransfer, SupportsWrite

logger = logging.getLogger(__name__)

PROTOCOL_OPERATIONS: tuple[tuple[type, frozenset[Operation]], ...] = (
    (
        SupportsRead,
        frozenset({Operation.EXISTS, Operation.STAT, Operation.READDIR, Operation.READFILE}),
    ),
    (
        SupportsWrite,
        frozenset({Operation.WRITEFILE, Operation.MKDIR, Operation.UNLINK, Operation.TOUCH}),
    ),
    (SupportsTransfer, frozenset({Operation.RENAME, Operation.COPY})),
    (SupportsSearch, frozenset({Operation.SEARCH})),
)
"""Capability protocols and the operations each one groups."""


def capabilities_of(adapter: Any) -> frozenset[Operation]:
    """Operations *adapter* exposes as callables.

    Adapters satisfying a whole capability protocol get all of its
    operations; otherwise each operation is looked up on its own.
    """
    caps: set[Operation] = set()
    for protocol, operations in PROTOCOL_OPERATIONS:
        if isinstance(adapter, protocol):
            caps |= operations
        else:
            caps |= {op for op in operations if callable(getattr(adapter, op.value, None))}
    return frozenset(caps)


def partial_protocols(adapter: Any, caps: frozenset[Operation]) -> list[str]:
    """Names of capability protocols *adapter* implements only in part."""
    return [
        protocol.__name__
        for protocol, operations in PROTOCOL_OPERATIONS
        if caps & operations and not isinstance(adapter, protocol)
    ]


class AdapterRegistry:
    """Registry of storage adapters keyed by identifier.

    Capability sets are computed once at registration so per-request
    checks are a set lookup.
    """

    def __init__(self, adapters: Mapping[str, Any] | None = None) -> None:
        self._adapters: dict[str, Any] = {}
        self._capabilities: dict[str, frozenset[Operation]] = {}
        for name, adapter in (adapters or {}).items():
            self.register(name, adapter)

    def register(self, name: str, adapter: Any) -> None:
        """Add or replace the adapter registered as *name*."""
        caps = capabilities_of(adapter)
        if not caps:
            raise ConfigError(f"Adapter {name!r} exposes no known operation")
        partial = partial_protocols(adapter, caps)
        if partial:
            logger.warning(
                "Adapter %s partially implements %s", name, ", ".join(partial)
            )
        missing = sorted(op.value for op in Operation if op not in caps)
        if missing:
            logger.debug("Adapter %s does not implement: %s", name, ", ".join(missing))
        self._adapters[name] = adapter
        self._capabilities[name] = caps

    def get(self, name: str) -> Any | None:
        return self._adapters.get(name)

    def supports(self, name: str, operation: Operation) -> bool:
        """True when the adapter *name* is registered and exposes *operation*."""
        return operation in self._capabilities.get(name, frozenset())

    def capabilities(self, name: str) -> frozenset[Operation]:
        return self._capabilities.get(name, frozenset())

    def __contains__(self, name: object) -> bool:
        return name in self._adapters

    def __iter__(self) -> Iterator[str]:
        return iter(self._adapters)

    def items(self) -> list[tuple[str, Any]]:
        return list(self._adapters.items())
