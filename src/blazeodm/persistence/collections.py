"""
Lazy collections bound to a document association.

Collections stay uninitialized until their content is read or written. Each
also tracks the "original" keys or paths it had in the store, so change-set
computation can diff collections that were never loaded.
"""

from __future__ import annotations

import itertools
from collections.abc import MutableMapping, MutableSequence
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, List, Optional, Type

from ..errors import BlazeODMError, InvalidDocumentError
from ..storage.base import PathNotFoundError
from ..utils import paths

if TYPE_CHECKING:
    from ..core.document import Document
    from .unit_of_work import UnitOfWork

_collection_tokens = itertools.count(1)


class CollectionState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    FROM_COLLECTION = "from_collection"
    FROM_COLLECTION_FORCE = "from_collection_force"
    FROM_STORE = "from_store"


class PersistentCollection:
    """
    Shared lifecycle of the lazy collections.

    ``FROM_COLLECTION`` means the content was supplied by application code for
    a new document; ``FROM_COLLECTION_FORCE`` means it replaces what the store
    holds for an existing one. Not safe for concurrent use from multiple threads.
    """

    def __init__(self, uow: "UnitOfWork", document: "Document", field_name: Optional[str], locale: Optional[str] = None) -> None:
        self.uow = uow
        self.document = document
        self.field_name = field_name
        self.locale = locale
        self.state = CollectionState.UNINITIALIZED
        self.token = next(_collection_tokens)
        self._collection: Any = None
        self._dirty = False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.field_name} {self.state.value}>"

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    @property
    def is_initialized(self) -> bool:
        return self.state is not CollectionState.UNINITIALIZED

    def initialize(self) -> None:
        if self.state is not CollectionState.UNINITIALIZED:
            return
        self.state = CollectionState.INITIALIZING
        try:
            self._collection = self._load()
        except Exception:
            self.state = CollectionState.UNINITIALIZED
            raise
        self.state = CollectionState.FROM_STORE

    def _load(self) -> Any:
        raise NotImplementedError

    def _initialize_from_collection(self, content: Any, force_overwrite: bool = False) -> None:
        self._collection = content
        self.state = CollectionState.FROM_COLLECTION_FORCE if force_overwrite else CollectionState.FROM_COLLECTION
        self._dirty = True

    def refresh(self) -> None:
        """Forget the loaded content; the next access reloads it from the store."""
        self.state = CollectionState.UNINITIALIZED
        self._collection = None
        self._dirty = False

    def take_snapshot(self) -> None:
        self._dirty = False

    def changed(self) -> bool:
        return self._dirty

    is_dirty = changed

    def set_dirty(self, dirty: bool) -> None:
        self._dirty = dirty

    def set_locale(self, locale: Optional[str]) -> None:
        self.locale = locale

    def unwrap(self) -> Any:
        raise NotImplementedError

    def _owner_id(self) -> Optional[str]:
        return self.uow.get_document_id(self.document, throw=False)


class ChildrenCollection(PersistentCollection, MutableMapping):
    """
    Ordered children of a document, keyed by node name.

    ``len()``, ``in`` and :meth:`slice` work from the child names alone while
    the collection is uninitialized.
    """

    def __init__(
        self,
        uow: "UnitOfWork",
        document: "Document",
        field_name: str,
        filter: Optional[str] = None,
        fetch_depth: Optional[int] = None,
        locale: Optional[str] = None,
    ) -> None:
        super().__init__(uow, document, field_name, locale)
        self.filter = filter
        self.fetch_depth = fetch_depth
        self._original_nodenames: Optional[List[str]] = None

    @classmethod
    def create_from_collection(
        cls,
        uow: "UnitOfWork",
        document: "Document",
        field_name: str,
        content: Any,
        filter: Optional[str] = None,
        fetch_depth: Optional[int] = None,
        force_overwrite: bool = False,
    ) -> "ChildrenCollection":
        collection = cls(uow, document, field_name, filter, fetch_depth)
        collection._initialize_from_collection(_as_dict(content), force_overwrite)
        return collection

    def _child_nodes(self, node: Any) -> Dict[str, Any]:
        return {
            name: child
            for name, child in node.get_nodes(self.filter).items()
            if not paths.is_locale_node_name(name)
        }

    def _load(self) -> Dict[str, "Document"]:
        self.get_original_nodenames()
        node = self.uow.get_node_for_document(self.document)
        child_nodes = self._child_nodes(node)
        documents = self.uow.get_or_create_documents(None, child_nodes.values(), locale=self.locale)
        by_id = {self.uow.get_document_id(child): child for child in documents}
        return {name: by_id[child_node.path] for name, child_node in child_nodes.items()}

    def get_original_nodenames(self) -> List[str]:
        if self._original_nodenames is None:
            if self.state is CollectionState.FROM_COLLECTION:
                self._original_nodenames = [str(key) for key in self._collection]
            else:
                try:
                    node = self.uow.get_node_for_document(self.document)
                except PathNotFoundError:
                    self._original_nodenames = []
                else:
                    self._original_nodenames = list(self._child_nodes(node))
        return list(self._original_nodenames)

    def take_snapshot(self) -> None:
        if self.is_initialized:
            self._original_nodenames = [str(key) for key in self._collection]
            self.state = CollectionState.FROM_STORE
        else:
            self._original_nodenames = None
        super().take_snapshot()

    def refresh(self) -> None:
        self._original_nodenames = None
        super().refresh()

    def unwrap(self) -> Dict[Any, "Document"]:
        return dict(self._collection) if self._collection is not None else {}

    def _replace_contents(self, content: Dict[str, "Document"]) -> None:
        self._collection = content

    # Mapping protocol ----------------------------------------------------
    def __getitem__(self, key: str) -> "Document":
        self.initialize()
        return self._collection[key]

    def __setitem__(self, key: str, value: "Document") -> None:
        self.initialize()
        self._dirty = True
        self._collection[key] = value

    def __delitem__(self, key: str) -> None:
        self.initialize()
        self._dirty = True
        del self._collection[key]

    def __iter__(self) -> Iterator[str]:
        self.initialize()
        return iter(list(self._collection))

    def __len__(self) -> int:
        if not self.is_initialized:
            return len(self.get_original_nodenames())
        return len(self._collection)

    def __contains__(self, key: object) -> bool:
        if not self.is_initialized:
            return key in self.get_original_nodenames()
        return key in self._collection

    def clear(self) -> None:
        self.initialize()
        self._dirty = True
        self._collection.clear()

    def slice(self, offset: int, length: Optional[int] = None) -> Dict[str, "Document"]:
        """Return ``length`` children from ``offset`` without loading the others."""
        end = None if length is None else offset + length
        if self.is_initialized:
            return dict(list(self._collection.items())[offset:end])

        names = self.get_original_nodenames()[offset:end]
        parent_id = self._owner_id()
        if parent_id is None or not names:
            return {}
        nodes = self.uow.session.get_nodes([paths.join(parent_id, name) for name in names])
        documents = self.uow.get_or_create_documents(None, nodes.values(), locale=self.locale)
        by_id = {self.uow.get_document_id(child): child for child in documents}
        return {paths.basename(path): by_id[path] for path in nodes}


class _DocumentList(PersistentCollection, MutableSequence):
    """List protocol shared by the reference and referrer collections."""

    _original_paths: Optional[List[str]]

    def unwrap(self) -> List["Document"]:
        return list(self._collection) if self._collection is not None else []

    def _current_paths(self) -> List[str]:
        found = []
        for document in self._collection:
            id = self.uow.get_document_id(document, throw=False)
            if id is not None:
                found.append(id)
        return found

    def take_snapshot(self) -> None:
        if self.is_initialized:
            self._original_paths = self._current_paths()
            self.state = CollectionState.FROM_STORE
        else:
            self._original_paths = None
        super().take_snapshot()

    def __getitem__(self, index):
        self.initialize()
        return self._collection[index]

    def __setitem__(self, index, value) -> None:
        self.initialize()
        self._dirty = True
        self._collection[index] = value

    def __delitem__(self, index) -> None:
        self.initialize()
        self._dirty = True
        del self._collection[index]

    def insert(self, index: int, value: "Document") -> None:
        self.initialize()
        self._dirty = True
        self._collection.insert(index, value)

    def __iter__(self) -> Iterator["Document"]:
        self.initialize()
        return iter(list(self._collection))

    def __contains__(self, value: object) -> bool:
        self.initialize()
        return any(item is value for item in self._collection)

    def remove(self, value: "Document") -> None:
        self.initialize()
        for index, item in enumerate(self._collection):
            if item is value:
                self._dirty = True
                del self._collection[index]
                return
        raise ValueError(f"{value!r} is not in the collection")

    def __len__(self) -> int:
        self.initialize()
        return len(self._collection)


class ReferenceManyCollection(_DocumentList):
    """
    Documents referenced by a multivalue reference property.

    ``reference_type`` is ``"uuid"`` for (weak) references and ``"path"`` for
    path references; ``len()`` does not load the documents.
    """

    def __init__(
        self,
        uow: "UnitOfWork",
        document: "Document",
        field_name: str,
        referenced: Iterable[str] = (),
        target_class: Optional[Type["Document"]] = None,
        locale: Optional[str] = None,
        reference_type: str = "uuid",
    ) -> None:
        super().__init__(uow, document, field_name, locale)
        self.referenced = list(referenced)
        self.target_class = target_class
        self.reference_type = reference_type
        self._original_paths = None

    @classmethod
    def create_from_collection(
        cls,
        uow: "UnitOfWork",
        document: "Document",
        field_name: str,
        content: Any,
        target_class: Optional[Type["Document"]] = None,
        force_overwrite: bool = False,
        reference_type: str = "uuid",
    ) -> "ReferenceManyCollection":
        collection = cls(uow, document, field_name, target_class=target_class, reference_type=reference_type)
        collection._initialize_from_collection(_as_list(content), force_overwrite)
        return collection

    def _stored_references(self) -> List[str]:
        field = self.document._meta.fields[self.field_name]
        try:
            node = self.uow.get_node_for_document(self.document)
        except PathNotFoundError:
            return []
        return list(node.get_property_value(field.property) or [])

    def _referenced_nodes(self, referenced: Optional[List[str]] = None) -> List[Any]:
        session = self.uow.session
        keys = self.referenced if referenced is None else referenced
        if self.reference_type == "uuid":
            found = session.get_nodes_by_identifier(keys)
        else:
            found = session.get_nodes(keys)
        return [found[key] for key in keys if key in found]

    def _load(self) -> List["Document"]:
        documents = []
        self._original_paths = []
        for node in self._referenced_nodes():
            proxy = self.uow.get_or_create_proxy_from_node(node, self.locale)
            if self.target_class is not None and not isinstance(proxy, self.target_class):
                raise BlazeODMError(
                    f"Unexpected class for referenced document at '{node.path}'. "
                    f"Expected '{self.target_class.__name__}' but got '{type(proxy).__name__}'."
                )
            documents.append(proxy)
            self._original_paths.append(node.path)
        return documents

    def get_original_paths(self) -> List[str]:
        if self._original_paths is None:
            if self.state is CollectionState.FROM_COLLECTION:
                self._original_paths = self._current_paths()
            elif self.state is CollectionState.FROM_COLLECTION_FORCE:
                stored = self._stored_references()
                self._original_paths = [node.path for node in self._referenced_nodes(stored)]
            else:
                self._original_paths = [node.path for node in self._referenced_nodes()]
        return list(self._original_paths)

    def refresh(self) -> None:
        self.referenced = self._stored_references()
        self._original_paths = None
        super().refresh()

    def __len__(self) -> int:
        if not self.is_initialized:
            return len(self.referenced)
        return len(self._collection)


class ReferrersCollection(_DocumentList):
    """
    Documents whose reference property points at the owning document.

    A ``strategy`` of ``None`` collects both hard and weak referrers.
    """

    def __init__(
        self,
        uow: "UnitOfWork",
        document: "Document",
        field_name: str,
        referring_class: Optional[Type["Document"]] = None,
        property_name: Optional[str] = None,
        strategy: Optional[str] = "weak",
        locale: Optional[str] = None,
    ) -> None:
        super().__init__(uow, document, field_name, locale)
        if strategy not in ("weak", "hard", None):
            raise InvalidDocumentError(
                f"Referrers '{field_name}' need a weak or hard reference, not {strategy!r}"
            )
        self.referring_class = referring_class
        self.property_name = property_name
        self.strategy = strategy
        self._original_paths = None

    @classmethod
    def create_from_collection(
        cls,
        uow: "UnitOfWork",
        document: "Document",
        field_name: str,
        content: Any,
        referring_class: Optional[Type["Document"]] = None,
        property_name: Optional[str] = None,
        strategy: str = "weak",
        force_overwrite: bool = False,
    ) -> "ReferrersCollection":
        collection = cls(uow, document, field_name, referring_class, property_name, strategy)
        collection._initialize_from_collection(_as_list(content), force_overwrite)
        return collection

    def _referrer_nodes(self) -> List[Any]:
        try:
            node = self.uow.get_node_for_document(self.document)
        except PathNotFoundError:
            return []
        if self.strategy is None:
            return node.get_referrers(self.property_name, weak=False) + node.get_referrers(
                self.property_name, weak=True
            )
        return node.get_referrers(self.property_name, weak=self.strategy == "weak")

    def _load(self) -> List["Document"]:
        nodes = self._referrer_nodes()
        self._original_paths = [node.path for node in nodes]
        return self.uow.get_or_create_documents(self.referring_class, nodes, locale=self.locale)

    def get_original_paths(self) -> List[str]:
        if self._original_paths is None:
            if self.state is CollectionState.FROM_COLLECTION:
                self._original_paths = self._current_paths()
            else:
                self._original_paths = [node.path for node in self._referrer_nodes()]
        return list(self._original_paths)

    def refresh(self) -> None:
        self._original_paths = None
        super().refresh()

    def __len__(self) -> int:
        if not self.is_initialized:
            return len(self._referrer_nodes())
        return len(self._collection)


def _as_dict(content: Any) -> Dict[Any, "Document"]:
    if isinstance(content, PersistentCollection):
        content = content.unwrap()
    if isinstance(content, dict):
        return dict(content)
    return {index: document for index, document in enumerate(content or [])}


def _as_list(content: Any) -> List["Document"]:
    if isinstance(content, PersistentCollection):
        content = content.unwrap()
    if isinstance(content, dict):
        return list(content.values())
    return list(content or [])
