"""
In-memory node tree session.

Writes are transient until :meth:`MemoryNodeSession.save`; the persisted
workspace is snapshotted for transactions. Subclasses persist the workspace
elsewhere by overriding the ``_read_persisted``/``_write_persisted`` hooks.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from fnmatch import fnmatchcase
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from ..utils import get_logger, time_call
from ..utils.paths import ROOT, apply_order_before, assert_valid_name, basename, dirname, is_descendant, normalize
from ..utils.redaction import redact_value
from .base import (
    ItemExistsError,
    PathNotFoundError,
    PropertyType,
    ReferentialIntegrityError,
    StorageError,
    TransactionsUnsupportedError,
)

Workspace = Dict[str, "NodeRecord"]


@dataclass
class NodeRecord:
    identifier: str
    name: str
    parent: Optional[str]
    primary_type: str = "nt:unstructured"
    mixins: List[str] = field(default_factory=list)
    properties: Dict[str, Tuple[PropertyType, Any]] = field(default_factory=dict)
    children: List[str] = field(default_factory=list)

    def copy(self) -> "NodeRecord":
        return NodeRecord(
            identifier=self.identifier,
            name=self.name,
            parent=self.parent,
            primary_type=self.primary_type,
            mixins=list(self.mixins),
            properties={
                name: (ptype, list(value) if isinstance(value, list) else value)
                for name, (ptype, value) in self.properties.items()
            },
            children=list(self.children),
        )


def copy_workspace(workspace: Workspace) -> Workspace:
    return {identifier: record.copy() for identifier, record in workspace.items()}


def _infer_type(value: Any) -> PropertyType:
    if isinstance(value, list):
        return _infer_type(value[0]) if value else PropertyType.STRING
    if isinstance(value, MemoryNode):
        return PropertyType.REFERENCE
    if isinstance(value, bool):
        return PropertyType.BOOLEAN
    if isinstance(value, int):
        return PropertyType.LONG
    if isinstance(value, float):
        return PropertyType.DOUBLE
    if isinstance(value, datetime):
        return PropertyType.DATE
    return PropertyType.STRING


def _matches(name: str, filter: Optional[str]) -> bool:
    if not filter:
        return True
    return any(fnmatchcase(name, pattern.strip()) for pattern in filter.split("|"))


class MemoryNode:
    """
    Handle on a node of a :class:`MemoryNodeSession`.

    Handles stay valid across moves because they address nodes by identifier.
    """

    def __init__(self, session: "MemoryNodeSession", identifier: str) -> None:
        self._session = session
        self._identifier = identifier

    def __repr__(self) -> str:
        try:
            return f"<MemoryNode {self.path}>"
        except PathNotFoundError:
            return f"<MemoryNode {self._identifier} (removed)>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MemoryNode):
            return NotImplemented
        return other._session is self._session and other._identifier == self._identifier

    def __hash__(self) -> int:
        return hash(self._identifier)

    @property
    def _record(self) -> NodeRecord:
        return self._session._record(self._identifier)

    # ------------------------------------------------------------------ #
    @property
    def identifier(self) -> str:
        return self._identifier

    @property
    def name(self) -> str:
        return self._record.name

    @property
    def path(self) -> str:
        return self._session._path_of(self._identifier)

    @property
    def primary_type(self) -> str:
        return self._record.primary_type

    @property
    def mixins(self) -> List[str]:
        return list(self._record.mixins)

    def get_parent(self) -> "MemoryNode":
        parent = self._record.parent
        if parent is None:
            raise PathNotFoundError("The root node has no parent")
        return MemoryNode(self._session, parent)

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #
    def get_property_value(self, name: str, default: Any = None) -> Any:
        entry = self._record.properties.get(name)
        if entry is None:
            return default
        value = entry[1]
        return list(value) if isinstance(value, list) else value

    def get_property_type(self, name: str) -> Optional[PropertyType]:
        entry = self._record.properties.get(name)
        return entry[0] if entry else None

    def has_property(self, name: str) -> bool:
        return name in self._record.properties

    def get_properties(self, prefix: Optional[str] = None) -> Dict[str, Any]:
        return {
            name: self.get_property_value(name)
            for name in self._record.properties
            if prefix is None or name.startswith(prefix)
        }

    def set_property(self, name: str, value: Any, type: Optional[PropertyType] = None) -> None:
        if value is None:
            self.remove_property(name)
            return
        ptype = type or _infer_type(value)
        if isinstance(value, (list, tuple)):
            stored: Any = [self._session._coerce(item, ptype) for item in value]
        else:
            stored = self._session._coerce(value, ptype)
        self._record.properties[name] = (ptype, stored)
        self._session._touch(
            "set_property", self._identifier, name=name, value=redact_value(stored, name=name)
        )

    def remove_property(self, name: str) -> None:
        if self._record.properties.pop(name, None) is not None:
            self._session._touch("remove_property", self._identifier, name=name)

    # ------------------------------------------------------------------ #
    # Children
    # ------------------------------------------------------------------ #
    def add_node(self, name: str, node_type: str = "nt:unstructured", identifier: Optional[str] = None) -> "MemoryNode":
        assert_valid_name(name)
        if self.has_node(name):
            raise ItemExistsError(f"Node {name!r} already exists below {self.path}")
        return self._session._create(self._identifier, name, node_type, identifier)

    def has_node(self, name: str) -> bool:
        return self._session._child_id(self._identifier, name) is not None

    def get_node(self, name: str) -> "MemoryNode":
        child = self._session._child_id(self._identifier, name)
        if child is None:
            raise PathNotFoundError(f"No child {name!r} below {self.path}")
        return MemoryNode(self._session, child)

    def get_nodes(self, filter: Optional[str] = None) -> Dict[str, "MemoryNode"]:
        nodes: Dict[str, MemoryNode] = {}
        for child in self._record.children:
            record = self._session._record(child)
            if _matches(record.name, filter):
                nodes[record.name] = MemoryNode(self._session, child)
        return nodes

    def get_node_names(self, filter: Optional[str] = None) -> List[str]:
        return list(self.get_nodes(filter))

    def order_before(self, source: str, target: Optional[str]) -> None:
        record = self._record
        names = [self._session._record(child).name for child in record.children]
        ordered = apply_order_before(names, source, target)
        by_name = {self._session._record(child).name: child for child in record.children}
        record.children = [by_name[name] for name in ordered]
        self._session._touch("order_before", self._identifier, source=source, target=target)

    # ------------------------------------------------------------------ #
    def add_mixin(self, name: str) -> None:
        record = self._record
        if name not in record.mixins:
            record.mixins.append(name)
            self._session._touch("add_mixin", self._identifier, mixin=name)

    def is_node_type(self, name: str) -> bool:
        record = self._record
        return record.primary_type == name or name in record.mixins

    def get_referrers(self, name: Optional[str] = None, *, weak: bool = False) -> List["MemoryNode"]:
        wanted = PropertyType.WEAKREFERENCE if weak else PropertyType.REFERENCE
        return [
            MemoryNode(self._session, holder)
            for holder in self._session._referrers(self._identifier, wanted, name)
        ]

    def remove(self) -> None:
        self._session._remove(self._identifier)


class MemoryNodeSession:
    """
    Path addressed, ordered node tree held in memory.

    Not safe for concurrent use from multiple threads.
    """

    logger_name = "storage.memory"

    def __init__(self, *, supports_transactions: bool = True) -> None:
        self.supports_transactions = supports_transactions
        self.logger = get_logger(self.logger_name)
        self._transaction_snapshot: Optional[Workspace] = None
        self._in_transaction = False
        self._pending = False
        self._closed = False
        self._persisted: Workspace = {}
        self._working: Workspace = self._read_persisted()
        self._root_id = self._ensure_root(self._working)
        if self._pending:
            self._write_persisted(self._working)
            self._pending = False

    # ------------------------------------------------------------------ #
    # Persistence hooks
    # ------------------------------------------------------------------ #
    def _read_persisted(self) -> Workspace:
        return copy_workspace(self._persisted)

    def _write_persisted(self, workspace: Workspace) -> None:
        self._persisted = copy_workspace(workspace)

    def _start_transaction(self) -> None:
        self._transaction_snapshot = copy_workspace(self._persisted)

    def _finish_transaction(self, commit: bool) -> None:
        snapshot, self._transaction_snapshot = self._transaction_snapshot, None
        if not commit and snapshot is not None:
            self._persisted = snapshot

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #
    def get_root_node(self) -> MemoryNode:
        return MemoryNode(self, self._root_id)

    def get_node(self, path: str) -> MemoryNode:
        identifier = self._resolve(path)
        if identifier is None:
            raise PathNotFoundError(f"No node at {path}")
        return MemoryNode(self, identifier)

    def node_exists(self, path: str) -> bool:
        return self._resolve(path) is not None

    def get_node_by_identifier(self, identifier: str) -> MemoryNode:
        if identifier not in self._working:
            raise PathNotFoundError(f"No node with identifier {identifier}")
        return MemoryNode(self, identifier)

    def get_nodes(self, paths: Iterable[str]) -> Dict[str, MemoryNode]:
        nodes: Dict[str, MemoryNode] = {}
        for path in paths:
            identifier = self._resolve(path)
            if identifier is not None:
                nodes[normalize(path)] = MemoryNode(self, identifier)
        return nodes

    def get_nodes_by_identifier(self, identifiers: Iterable[str]) -> Dict[str, MemoryNode]:
        return {
            identifier: MemoryNode(self, identifier)
            for identifier in identifiers
            if identifier in self._working
        }

    def iter_nodes(self) -> Iterator[MemoryNode]:
        for identifier in list(self._working):
            yield MemoryNode(self, identifier)

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #
    def move(self, source: str, destination: str) -> None:
        source = normalize(source)
        destination = normalize(destination)
        identifier = self._resolve(source)
        if identifier is None:
            raise PathNotFoundError(f"No node at {source}")
        if identifier == self._root_id:
            raise StorageError("The root node cannot be moved")
        if destination == source:
            return
        if is_descendant(destination, source):
            raise StorageError(f"Cannot move {source} below itself to {destination}")
        if self._resolve(destination) is not None:
            raise ItemExistsError(f"A node already exists at {destination}")
        parent_id = self._resolve(dirname(destination))
        if parent_id is None:
            raise PathNotFoundError(f"No parent node for {destination}")
        name = basename(destination)
        assert_valid_name(name)

        record = self._working[identifier]
        self._working[record.parent].children.remove(identifier)
        self._working[parent_id].children.append(identifier)
        record.parent = parent_id
        record.name = name
        self._touch("move", identifier, source=source, destination=destination)

    def remove_item(self, path: str) -> None:
        self.get_node(path).remove()

    def save(self) -> None:
        self._ensure_open()
        with time_call("node_session.save", self.logger, threshold_ms=200, nodes=len(self._working)):
            self._check_integrity()
            self._write_persisted(self._working)
        self._pending = False

    def refresh(self, keep_changes: bool = False) -> None:
        if keep_changes:
            return
        self._working = self._read_persisted()
        self._root_id = self._ensure_root(self._working)
        self._pending = False

    def has_pending_changes(self) -> bool:
        return self._pending

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def begin_transaction(self) -> None:
        self._ensure_open()
        if not self.supports_transactions:
            raise TransactionsUnsupportedError(f"{type(self).__name__} does not support transactions")
        if self._in_transaction:
            raise StorageError("A transaction is already active")
        self._start_transaction()
        self._in_transaction = True

    def commit_transaction(self) -> None:
        if not self._in_transaction:
            raise StorageError("No active transaction to commit")
        self._in_transaction = False
        self._finish_transaction(commit=True)

    def rollback_transaction(self) -> None:
        if not self._in_transaction:
            raise StorageError("No active transaction to roll back")
        self._in_transaction = False
        self._finish_transaction(commit=False)
        self.refresh(keep_changes=False)

    def close(self) -> None:
        self._closed = True

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageError(f"{type(self).__name__} is closed")

    def _ensure_root(self, workspace: Workspace) -> str:
        for identifier, record in workspace.items():
            if record.parent is None:
                return identifier
        root = NodeRecord(identifier=str(uuid.uuid4()), name="", parent=None, primary_type="rep:root")
        workspace[root.identifier] = root
        self._pending = True
        return root.identifier

    def _record(self, identifier: str) -> NodeRecord:
        try:
            return self._working[identifier]
        except KeyError:
            raise PathNotFoundError(f"Node {identifier} does not exist") from None

    def _path_of(self, identifier: str) -> str:
        names: List[str] = []
        record = self._record(identifier)
        while record.parent is not None:
            names.append(record.name)
            record = self._record(record.parent)
        return ROOT + "/".join(reversed(names))

    def _child_id(self, parent: str, name: str) -> Optional[str]:
        for child in self._record(parent).children:
            if self._working[child].name == name:
                return child
        return None

    def _resolve(self, path: str) -> Optional[str]:
        path = normalize(path)
        identifier: Optional[str] = self._root_id
        if path == ROOT:
            return identifier
        for name in path[1:].split("/"):
            identifier = self._child_id(identifier, name)
            if identifier is None:
                return None
        return identifier

    def _create(self, parent: str, name: str, node_type: str, identifier: Optional[str]) -> MemoryNode:
        identifier = identifier or str(uuid.uuid4())
        if identifier in self._working:
            raise ItemExistsError(f"A node with identifier {identifier} already exists")
        self._working[identifier] = NodeRecord(
            identifier=identifier, name=name, parent=parent, primary_type=node_type
        )
        self._working[parent].children.append(identifier)
        self._touch("add_node", identifier, name=name, node_type=node_type)
        return MemoryNode(self, identifier)

    def _remove(self, identifier: str) -> None:
        if identifier == self._root_id:
            raise StorageError("The root node cannot be removed")
        record = self._record(identifier)
        self._working[record.parent].children.remove(identifier)
        stack = [identifier]
        while stack:
            current = self._working.pop(stack.pop())
            stack.extend(current.children)
        self._touch("remove", identifier)

    def _referrers(self, target: str, ptype: PropertyType, name: Optional[str]) -> List[str]:
        holders = []
        for identifier, record in self._working.items():
            for prop_name, (prop_type, value) in record.properties.items():
                if prop_type is not ptype or (name is not None and prop_name != name):
                    continue
                values = value if isinstance(value, list) else [value]
                if target in values:
                    holders.append(identifier)
                    break
        return holders

    def _coerce(self, value: Any, ptype: PropertyType) -> Any:
        if isinstance(value, MemoryNode):
            return value.path if ptype is PropertyType.PATH else value.identifier
        return value

    def _check_integrity(self) -> None:
        for record in self._working.values():
            for prop_name, (prop_type, value) in record.properties.items():
                if prop_type is not PropertyType.REFERENCE:
                    continue
                for target in value if isinstance(value, list) else [value]:
                    if target not in self._working:
                        raise ReferentialIntegrityError(
                            f"Property {prop_name!r} of {self._path_of(record.identifier)} "
                            f"references missing node {target}"
                        )

    def _touch(self, operation: str, identifier: str, **details: Any) -> None:
        self._pending = True
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug("node %s: %s %s", operation, identifier, details)
