"""
Backing store protocol definitions for BlazeODM.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol

from ..errors import BlazeODMError


class StorageError(BlazeODMError):
    """Base error for backing store failures."""


class PathNotFoundError(StorageError, KeyError):
    """Raised when no node exists at a path or identifier."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class ItemExistsError(StorageError):
    """Raised when a node with the same name already exists under a parent."""


class ReferentialIntegrityError(StorageError):
    """Raised on save when a hard reference points at a missing node."""


class TransactionsUnsupportedError(StorageError):
    """Raised by sessions that do not implement transactions."""


class StoreConfigurationError(StorageError):
    """Raised when store configuration is invalid."""


class PropertyType(str, Enum):
    STRING = "String"
    LONG = "Long"
    DOUBLE = "Double"
    BOOLEAN = "Boolean"
    DATE = "Date"
    PATH = "Path"
    REFERENCE = "Reference"
    WEAKREFERENCE = "WeakReference"

    @property
    def is_reference(self) -> bool:
        return self in (PropertyType.REFERENCE, PropertyType.WEAKREFERENCE)


class Node(Protocol):
    """
    A node of the tree-structured content repository.
    """

    @property
    def path(self) -> str:
        """Absolute path of the node."""

    @property
    def name(self) -> str:
        """Last path segment; empty for the root node."""

    @property
    def identifier(self) -> str:
        """Stable identifier that survives moves."""

    @property
    def primary_type(self) -> str:
        """Node type given at creation."""

    def get_parent(self) -> "Node":
        """Return the parent node. Raises ``PathNotFoundError`` on the root."""

    def get_property_value(self, name: str, default: Any = None) -> Any:
        """Return a property value (lists for multivalue properties)."""

    def get_property_type(self, name: str) -> Optional[PropertyType]:
        """Return the type of a property or ``None`` when unset."""

    def has_property(self, name: str) -> bool:
        """Whether the property is set."""

    def get_properties(self, prefix: Optional[str] = None) -> Dict[str, Any]:
        """Return all property values, optionally filtered by name prefix."""

    def set_property(self, name: str, value: Any, type: Optional[PropertyType] = None) -> None:
        """Set a property; ``None`` removes it."""

    def remove_property(self, name: str) -> None:
        """Remove a property if present."""

    def add_node(self, name: str, node_type: str = "nt:unstructured", identifier: Optional[str] = None) -> "Node":
        """Create a child node appended after existing children."""

    def has_node(self, name: str) -> bool:
        """Whether a child with this name exists."""

    def get_node(self, name: str) -> "Node":
        """Return a child by name. Raises ``PathNotFoundError``."""

    def get_nodes(self, filter: Optional[str] = None) -> Dict[str, "Node"]:
        """Return children keyed by name, in order, optionally filtered by a glob."""

    def get_node_names(self, filter: Optional[str] = None) -> List[str]:
        """Return ordered child names, optionally filtered by a glob."""

    def add_mixin(self, name: str) -> None:
        """Add a mixin type."""

    def is_node_type(self, name: str) -> bool:
        """Whether the primary type or a mixin matches ``name``."""

    def order_before(self, source: str, target: Optional[str]) -> None:
        """Move child ``source`` before child ``target``; ``None`` moves it last."""

    def get_referrers(self, name: Optional[str] = None, *, weak: bool = False) -> List["Node"]:
        """Nodes holding a (weak) reference property pointing at this node."""

    def remove(self) -> None:
        """Remove this node and its subtree."""


class NodeSession(Protocol):
    """
    Session on the backing store consumed by the unit of work.
    """

    supports_transactions: bool

    def get_root_node(self) -> Node:
        """Return the root node."""

    def get_node(self, path: str) -> Node:
        """Return the node at ``path``. Raises ``PathNotFoundError``."""

    def node_exists(self, path: str) -> bool:
        """Whether a node exists at ``path``."""

    def get_node_by_identifier(self, identifier: str) -> Node:
        """Return the node with ``identifier``. Raises ``PathNotFoundError``."""

    def get_nodes(self, paths: Iterable[str]) -> Dict[str, Node]:
        """Return existing nodes keyed by path, skipping missing ones."""

    def get_nodes_by_identifier(self, identifiers: Iterable[str]) -> Dict[str, Node]:
        """Return existing nodes keyed by identifier, skipping missing ones."""

    def move(self, source: str, destination: str) -> None:
        """Move the node at ``source`` to the absolute ``destination`` path."""

    def remove_item(self, path: str) -> None:
        """Remove the node at ``path``."""

    def save(self) -> None:
        """Persist pending changes."""

    def refresh(self, keep_changes: bool = False) -> None:
        """Reload persisted state, optionally keeping pending changes."""

    def has_pending_changes(self) -> bool:
        """Whether there are unsaved changes."""

    def begin_transaction(self) -> None:
        """Start a transaction. Raises ``TransactionsUnsupportedError`` when unsupported."""

    def commit_transaction(self) -> None:
        """Commit the current transaction."""

    def rollback_transaction(self) -> None:
        """Roll back the current transaction."""

    def close(self) -> None:
        """Release resources. Implementations should be idempotent."""
