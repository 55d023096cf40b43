"""
Backing store protocols and the bundled node sessions.
"""

from .base import (
    ItemExistsError,
    Node,
    NodeSession,
    PathNotFoundError,
    PropertyType,
    ReferentialIntegrityError,
    StorageError,
    StoreConfigurationError,
    TransactionsUnsupportedError,
)
from .config import StoreConfig, open_session
from .memory import MemoryNode, MemoryNodeSession
from .sqlite import SQLiteNodeSession

__all__ = [
    "ItemExistsError",
    "MemoryNode",
    "MemoryNodeSession",
    "Node",
    "NodeSession",
    "PathNotFoundError",
    "PropertyType",
    "ReferentialIntegrityError",
    "SQLiteNodeSession",
    "StorageError",
    "StoreConfig",
    "StoreConfigurationError",
    "TransactionsUnsupportedError",
    "open_session",
]
