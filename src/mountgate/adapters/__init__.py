"""Storage adapters and the adapter registry."""

from mountgate.adapters.database import DatabaseAdapter
from mountgate.adapters.registry import AdapterRegistry, capabilities_of
from mountgate.adapters.system import SystemAdapter

__all__ = [
    "AdapterRegistry",
    "DatabaseAdapter",
    "SystemAdapter",
    "capabilities_of",
]
