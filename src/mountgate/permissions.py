"""Group authorization and read-only policy checks."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from .utils import get_prefix

if TYPE_CHECKING:
    from .mounts import Mountpoint


# =============================================================================
# Groups
# =============================================================================


@dataclass(frozen=True)
class MountGroups:
    """Group requirements declared on a mountpoint.

    Attributes:
        required: Groups the caller must hold for every operation.
        per_operation: Groups the caller must additionally hold for the
            named operation only.
    """

    required: frozenset[str] = frozenset()
    per_operation: Mapping[str, frozenset[str]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def from_entries(
        cls, entries: Iterable[str | Mapping[str, Iterable[str]]] | None
    ) -> MountGroups:
        """Build from the configuration form: bare names mixed with mappings.

        ``["staff", {"writefile": ["editors"]}]`` requires ``staff`` for all
        operations and ``editors`` for ``writefile``. When several mappings
        name the same operation, the first one wins.
        """
        required: set[str] = set()
        per_operation: dict[str, frozenset[str]] = {}
        for entry in entries or ():
            if isinstance(entry, str):
                required.add(entry)
                continue
            for operation, groups in entry.items():
                if isinstance(groups, str):
                    groups = [groups]
                per_operation.setdefault(operation, frozenset(groups))
        return cls(frozenset(required), MappingProxyType(per_operation))

    @property
    def is_empty(self) -> bool:
        return not self.required and not self.per_operation

    def allows(self, caller_groups: Iterable[str], operation: str) -> bool:
        """True when *caller_groups* holds every group needed for *operation*."""
        if self.is_empty:
            return True
        held = set(caller_groups)
        if not self.required <= held:
            return False
        return self.per_operation.get(operation, frozenset()) <= held


def check_groups(caller_groups: Iterable[str], operation: str, mountpoint: Mountpoint) -> bool:
    """Decide whether the caller may run *operation* on *mountpoint*."""
    return mountpoint.groups.allows(caller_groups, operation)


# =============================================================================
# Read-only policy
# =============================================================================


@dataclass(frozen=True)
class FixedPolicy:
    """Read-only override with a constant decision."""

    blocked: bool


@dataclass(frozen=True)
class ComputedPolicy:
    """Read-only override that computes the real write target from fields.

    ``target`` returns a virtual path; the policy blocks only when that
    path's prefix is the read-only mountpoint being checked.
    """

    target: Callable[[Mapping[str, Any]], str]


ReadOnlyPolicy = FixedPolicy | ComputedPolicy

WRITES = FixedPolicy(True)
READS = FixedPolicy(False)


def as_policy(
    value: ReadOnlyPolicy | bool | Callable[[Mapping[str, Any]], str] | None,
) -> ReadOnlyPolicy:
    """Coerce a bool, a target function or a policy into a policy."""
    if isinstance(value, (FixedPolicy, ComputedPolicy)):
        return value
    if callable(value):
        return ComputedPolicy(value)
    return FixedPolicy(bool(value))


def check_read_only(
    policy: ReadOnlyPolicy | bool | Callable[[Mapping[str, Any]], str] | None,
    mountpoint: Mountpoint,
    fields: Mapping[str, Any],
) -> bool:
    """True when the request must be refused because *mountpoint* is read-only."""
    if not mountpoint.read_only:
        return False

    policy = as_policy(policy)
    if isinstance(policy, ComputedPolicy):
        return get_prefix(policy.target(fields)) == mountpoint.name
    return policy.blocked


def destination_of(fields: Mapping[str, Any]) -> str:
    """Write target of a two-path operation."""
    return str(fields.get("to") or "")
