"""mountgate: a mount-aware VFS request dispatcher.

Resolves prefixed virtual paths to mountpoints, enforces group and
read-only policy, and routes operations to pluggable storage adapters.
"""

__version__ = "0.1.0"

from mountgate.adapters import AdapterRegistry, DatabaseAdapter, SystemAdapter
from mountgate.app import build_router, create_app
from mountgate.config import VFSConfig, build_config, load_config, load_config_file
from mountgate.dispatcher import VFSDispatcher
from mountgate.exceptions import (
    ConfigError,
    FieldError,
    MountgateError,
    MountpointNotFoundError,
    MountpointReadOnlyError,
    PermissionDeniedError,
    StorageError,
    UnsupportedEndpointError,
    VFSError,
)
from mountgate.mounts import MountRegistry, Mountpoint
from mountgate.operations import Operation
from mountgate.orchestrator import CrossAdapterOrchestrator
from mountgate.permissions import ComputedPolicy, FixedPolicy, MountGroups
from mountgate.protocol import AdapterContext, Caller
from mountgate.resolver import MountResolver, ResolvedMount
from mountgate.types import FileStat

__all__ = [
    "AdapterContext",
    "AdapterRegistry",
    "Caller",
    "ComputedPolicy",
    "ConfigError",
    "CrossAdapterOrchestrator",
    "DatabaseAdapter",
    "FieldError",
    "FileStat",
    "FixedPolicy",
    "MountGroups",
    "MountRegistry",
    "MountResolver",
    "MountgateError",
    "Mountpoint",
    "MountpointNotFoundError",
    "MountpointReadOnlyError",
    "Operation",
    "PermissionDeniedError",
    "ResolvedMount",
    "StorageError",
    "SystemAdapter",
    "UnsupportedEndpointError",
    "VFSConfig",
    "VFSDispatcher",
    "VFSError",
    "__version__",
    "build_config",
    "build_router",
    "create_app",
    "load_config",
    "load_config_file",
]
