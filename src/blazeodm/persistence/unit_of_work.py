"""
Unit of work: change tracking, scheduling, cascades and the commit sequence.

Every document the unit of work touches gets an integer handle from the
identity map arena, and every side table here (snapshots, queues, change sets,
locale state) is keyed by that handle. A unit of work belongs to exactly one
:class:`~blazeodm.DocumentManager` and is not safe for concurrent use from
multiple threads.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Set, Tuple, Type

from ..core.document import Document, DocumentMapping
from ..core.relations import Association, Cascade
from ..errors import (
    BlazeODMError,
    CascadeError,
    ClassMismatchError,
    IdentifierError,
    IllegalMoveError,
    InvalidDocumentError,
    MissingTranslationError,
    TranslationError,
)
from ..hooks import events
from ..storage.base import Node, PathNotFoundError, PropertyType
from ..utils import get_logger, paths, time_call
from . import proxy
from .collections import ChildrenCollection, PersistentCollection, ReferenceManyCollection, ReferrersCollection
from .id_generators import IdGenerator, create_generator
from .identity_map import DocumentState, IdentityMap
from .transaction import TransactionManager

if TYPE_CHECKING:
    from ..translation import LocaleChooser, TranslationStrategy
    from .manager import DocumentManager

REFERENCEABLE_MIXIN = "mix:referenceable"
VERSIONING_MIXINS = {"simple": "mix:simpleVersionable", "full": "mix:versionable"}

_REFERENCE_TYPES = {
    "hard": PropertyType.REFERENCE,
    "weak": PropertyType.WEAKREFERENCE,
    "path": PropertyType.PATH,
}
_REFERENCE_KINDS = ("reference_one", "reference_many", "referrers")


@dataclass
class ChangeSet:
    """
    Pending changes of one document.

    ``fields`` maps a field name to ``(old, new)``. ``reorderings`` holds one
    ``{source: target}`` move map per children field whose order changed; the
    wanted order is kept at the same index of ``child_orders``.
    """

    fields: Dict[str, Tuple[Any, Any]] = field(default_factory=dict)
    reorderings: List[Dict[str, Optional[str]]] = field(default_factory=list)
    child_orders: List[List[str]] = field(default_factory=list)


def _differs(old: Any, new: Any) -> bool:
    if isinstance(old, (Document, PersistentCollection)) or isinstance(new, (Document, PersistentCollection)):
        return old is not new
    return old != new


def _copy_value(value: Any) -> Any:
    return list(value) if type(value) is list else value


def _snapshot(values: Dict[str, Any]) -> Dict[str, Any]:
    return {name: _copy_value(value) for name, value in values.items()}


class UnitOfWork:
    """
    Computes change sets for managed documents and writes them to the session.

    The commit sequence is: inserts (parents first), updates, association
    updates, removals, reorders and moves, followed by a single session save.
    A failure anywhere in that sequence closes the owning manager.
    """

    def __init__(self, manager: "DocumentManager") -> None:
        self.manager = manager
        self.session = manager.session
        self.config = manager.config
        self.hooks = manager.hooks
        self.class_mapper = manager.class_mapper
        self.identity_map = IdentityMap()
        self.transaction_manager = TransactionManager(self.session)
        self.proxy_factory = proxy.ProxyFactory(self)
        self.logger = get_logger("persistence.unit_of_work")
        self._generators: Dict[str, IdGenerator] = {}
        self._reset()

    def _reset(self) -> None:
        self._original_data: Dict[int, Dict[str, Any]] = {}
        self._original_translated_data: Dict[int, Dict[str, Dict[str, Any]]] = {}
        self._document_translations: Dict[int, Dict[str, Optional[Dict[str, Any]]]] = {}
        self._document_locales: Dict[int, Dict[str, Optional[str]]] = {}
        self._changesets: Dict[int, ChangeSet] = {}
        self._scheduled_inserts: Dict[int, Document] = {}
        self._scheduled_updates: Dict[int, Document] = {}
        self._scheduled_removals: Dict[int, Document] = {}
        self._scheduled_moves: Dict[int, Tuple[Document, str]] = {}
        self._scheduled_reorders: Dict[int, List[Tuple[Document, str, str, bool]]] = {}
        self._computed: Set[int] = set()
        self._visited_collections: Dict[int, PersistentCollection] = {}

    # ------------------------------------------------------------------ #
    # Identity
    # ------------------------------------------------------------------ #
    def _handle(self, document: Document) -> int:
        return self.identity_map.handle(document)

    def _fire(self, event: str, document: Optional[Document], **context: Any) -> None:
        self.hooks.fire(event, document, manager=self.manager, **context)

    @staticmethod
    def _assert_document(document: Any, where: str = "document") -> None:
        if not isinstance(document, Document):
            raise InvalidDocumentError(f"Expected a document for {where}, got {type(document).__name__}")

    def register_document(self, document: Document, id: str) -> int:
        handle = self.identity_map.register(document, id)
        self.logger.debug("Registered %s at %s", type(document).__name__, id)
        return handle

    def unregister_document(self, document: Document) -> None:
        self._forget(self._handle(document))

    def _forget(self, handle: int) -> None:
        self.identity_map.unregister(handle)
        for table in (
            self._original_data,
            self._original_translated_data,
            self._document_translations,
            self._document_locales,
            self._changesets,
            self._scheduled_inserts,
            self._scheduled_updates,
            self._scheduled_removals,
            self._scheduled_moves,
            self._scheduled_reorders,
        ):
            table.pop(handle, None)
        self._computed.discard(handle)

    def _purge(self, path: str, include_self: bool = False) -> None:
        """Unregister every loaded document below ``path``."""
        for id, handle in self.identity_map.ids():
            if paths.is_descendant(id, path) or (include_self and id == path):
                self._forget(handle)

    def get_document_state(self, document: Document) -> DocumentState:
        state = self.identity_map.state_of(self._handle(document))
        if state is not None:
            return state
        id = document._meta.get_identifier_value(document)
        if not id:
            return DocumentState.NEW
        id = paths.normalize(id)
        if self.identity_map.lookup(id) is not None or self.session.node_exists(id):
            return DocumentState.DETACHED
        return DocumentState.NEW

    def get_document_id(self, document: Document, throw: bool = True) -> Optional[str]:
        id = self.identity_map.id_of(self._handle(document))
        if id is None and throw:
            raise InvalidDocumentError(f"Document {document!r} is not managed")
        return id

    def get_document_by_id(self, id: str) -> Optional[Document]:
        return self.identity_map.lookup(id)

    def _contains_handle(self, handle: int) -> bool:
        return self.identity_map.is_tracked(handle) and handle not in self._scheduled_removals

    def contains(self, document: Document) -> bool:
        return self._contains_handle(self._handle(document))

    def is_scheduled_for_removal(self, document: Document) -> bool:
        return self._handle(document) in self._scheduled_removals

    def get_scheduled_inserts(self) -> List[Document]:
        return list(self._scheduled_inserts.values())

    def get_scheduled_updates(self) -> List[Document]:
        return list(self._scheduled_updates.values())

    def get_scheduled_removals(self) -> List[Document]:
        return list(self._scheduled_removals.values())

    def get_scheduled_moves(self) -> List[Tuple[Document, str]]:
        return list(self._scheduled_moves.values())

    def get_scheduled_reorders(self) -> List[Tuple[Document, str, str, bool]]:
        return [entry for entries in self._scheduled_reorders.values() for entry in entries]

    def get_document_change_set(self, document: Document) -> Optional[ChangeSet]:
        return self._changesets.get(self._handle(document))

    def get_original_data(self, document: Document) -> Dict[str, Any]:
        return dict(self._original_data.get(self._handle(document), {}))

    # ------------------------------------------------------------------ #
    # Nodes
    # ------------------------------------------------------------------ #
    def get_node_for_document(self, document: Document) -> Node:
        return self.session.get_node(self.get_document_id(document))

    def _node_or_none(self, document: Document) -> Optional[Node]:
        id = self.get_document_id(document, throw=False)
        if id is None:
            return None
        try:
            return self.session.get_node(id)
        except PathNotFoundError:
            return None

    def existing_child_names(self, parent: Document) -> List[str]:
        parent_id = self.get_document_id(parent, throw=False)
        if parent_id is None:
            return []
        names: List[str] = []
        if self.session.node_exists(parent_id):
            names.extend(self.session.get_node(parent_id).get_node_names())
        names.extend(
            paths.basename(id)
            for id, _ in self.identity_map.ids()
            if id != parent_id and paths.dirname(id) == parent_id
        )
        return names

    def _find_child(self, parent_id: str, name: str) -> Optional[Document]:
        path = paths.join(parent_id, name)
        document = self.identity_map.lookup(path)
        if document is None and self.session.node_exists(path):
            document = self.get_or_create_document(None, self.session.get_node(path))
        return document

    # ------------------------------------------------------------------ #
    # Loading
    # ------------------------------------------------------------------ #
    def get_or_create_documents(
        self,
        document_class: Optional[Type[Document]],
        nodes: Iterable[Node],
        *,
        refresh: bool = False,
        locale: Optional[str] = None,
        fallback: bool = True,
    ) -> List[Document]:
        """
        Return the documents for ``nodes``, reusing instances already in the identity map.

        Nodes whose stored class does not match ``document_class`` are skipped.
        With ``refresh`` the existing instances are re-hydrated in place.
        """

        documents: List[Document] = []
        for node in nodes:
            try:
                actual_class = self.class_mapper.resolve_class(node, document_class)
            except ClassMismatchError:
                self.logger.debug("Skipping %s: stored class does not match %s", node.path, document_class)
                continue
            document = self.identity_map.lookup(node.path)
            if document is not None:
                if document_class is not None and not isinstance(document, document_class):
                    self.logger.debug("Skipping %s: loaded as %s", node.path, type(document).__name__)
                    continue
                if not refresh:
                    documents.append(document)
                    continue
            else:
                document = actual_class._meta.new_instance()
            self._hydrate(document, node, locale=locale, fallback=fallback)
            documents.append(document)
        return documents

    def get_or_create_document(self, document_class: Optional[Type[Document]], node: Node, **kwargs: Any) -> Optional[Document]:
        found = self.get_or_create_documents(document_class, [node], **kwargs)
        return found[0] if found else None

    def get_or_create_proxy(self, id: str, document_class: Type[Document], locale: Optional[str] = None) -> Document:
        document = self.identity_map.lookup(id)
        if document is not None:
            if (
                locale
                and proxy.is_initialized(document)
                and document._meta.is_translatable
                and locale != self.get_current_locale(document)
            ):
                self.load_translation(document, locale, fallback=True)
            return document
        document = self.proxy_factory.get_proxy(document_class, id)
        self.register_document(document, id)
        if locale:
            self._set_locale(document, document._meta, locale)
        return document

    def get_or_create_proxy_from_node(self, node: Node, locale: Optional[str] = None) -> Document:
        return self.get_or_create_proxy(node.path, self.class_mapper.resolve_class(node), locale)

    def refresh_document_for_proxy(self, document: Document) -> None:
        """Loader of lazy proxies: hydrate ``document`` in place from its node."""
        id = self.get_document_id(document, throw=False) or document._meta.get_identifier_value(document)
        node = self.session.get_node(id)
        locale = self._document_locales.get(self._handle(document), {}).get("current")
        self.get_or_create_documents(type(document), [node], refresh=True, locale=locale, fallback=True)

    def _hydrate(self, document: Document, node: Node, *, locale: Optional[str], fallback: bool) -> None:
        mapping = document._meta
        document.__dict__["_proxy_loader"] = None

        state: Dict[str, Any] = {}
        for name in mapping.field_mappings:
            state[name] = self._read_property(node, mapping.fields[name])
        if mapping.nodename:
            state[mapping.nodename] = node.name
        if mapping.identifier:
            state[mapping.identifier] = node.path
        if mapping.uuid_field:
            state[mapping.uuid_field] = node.identifier
        if mapping.depth_field:
            state[mapping.depth_field] = paths.depth(node.path)
        if self.identity_map.lookup(node.path) is not document:
            self.register_document(document, node.path)
        if mapping.parent_mapping and node.path != paths.ROOT:
            state[mapping.parent_mapping] = self.get_or_create_proxy_from_node(node.get_parent(), locale)
        for name in mapping.reference_mappings:
            state[name] = self._load_reference(document, node, mapping.fields[name], locale)
        for name in mapping.child_mappings:
            nodename = mapping.fields[name].nodename
            state[name] = (
                self.get_or_create_proxy_from_node(node.get_node(nodename), locale)
                if node.has_node(nodename)
                else None
            )
        for name in mapping.children_mappings:
            children = mapping.fields[name]
            state[name] = ChildrenCollection(self, document, name, children.filter, children.fetch_depth, locale)
        for name in mapping.referrers_mappings:
            referrers = mapping.fields[name]
            referencing = referrers.referencing_field()
            state[name] = ReferrersCollection(
                self, document, name, referrers.resolve_target(), referencing.property, referencing.strategy, locale
            )

        handle = self._handle(document)
        values = {name: state.get(name) for name in mapping.fields}
        document._field_values.update(values)
        self._original_data[handle] = _snapshot(values)
        if mapping.is_translatable:
            self.load_translation(document, locale, fallback=fallback, refresh=True)
        self._fire(events.POST_LOAD, document)

    @staticmethod
    def _read_property(node: Node, field_obj: Any) -> Any:
        value = node.get_property_value(field_obj.property)
        if field_obj.multivalue:
            if value is None:
                return []
            return list(value) if isinstance(value, list) else [value]
        return value

    def _load_reference(self, document: Document, node: Node, field_obj: Any, locale: Optional[str]) -> Any:
        reference_type = "path" if field_obj.strategy == "path" else "uuid"
        stored = node.get_property_value(field_obj.property)
        if field_obj.many:
            if stored is None:
                referenced: List[str] = []
            else:
                referenced = stored if isinstance(stored, list) else [stored]
            return ReferenceManyCollection(
                self, document, field_obj.name, referenced, field_obj.resolve_target(), locale, reference_type
            )
        if stored is None:
            return None
        try:
            if reference_type == "path":
                target_node = self.session.get_node(stored)
            else:
                target_node = self.session.get_node_by_identifier(stored)
        except PathNotFoundError:
            self.logger.debug("Reference '%s' of %s points at a missing node", field_obj.name, node.path)
            return None
        reference = self.get_or_create_proxy_from_node(target_node, locale)
        target = field_obj.resolve_target()
        if target is not None and not isinstance(reference, target):
            raise BlazeODMError(
                f"Unexpected class for referenced document at '{target_node.path}'. "
                f"Expected '{target.__name__}' but got '{type(reference).__name__}'."
            )
        return reference

    # ------------------------------------------------------------------ #
    # Change sets
    # ------------------------------------------------------------------ #
    def compute_change_sets(self) -> None:
        for handle, document in self.identity_map.items():
            if self.identity_map.state_of(handle) is DocumentState.MANAGED:
                self.compute_change_set(document)

    def compute_single_document_change_set(self, document: Document) -> None:
        state = self.get_document_state(document)
        if state not in (DocumentState.MANAGED, DocumentState.REMOVED):
            raise InvalidDocumentError(f"Document {document!r} is not managed")
        if state is DocumentState.MANAGED:
            self.compute_change_set(document)
        for inserted in list(self._scheduled_inserts.values()):
            self.compute_change_set(inserted)

    @staticmethod
    def _actual_data(mapping: DocumentMapping, document: Document) -> Dict[str, Any]:
        values = document._field_values
        version_fields = mapping.version_fields
        data: Dict[str, Any] = {}
        for name, field_obj in mapping.fields.items():
            if name in version_fields:
                continue
            if name not in values and field_obj.kind == "field":
                default = field_obj.get_default()
                if default is not None:
                    values[name] = default
            data[name] = values.get(name)
        return data

    def compute_change_set(self, document: Document) -> None:
        if not proxy.is_initialized(document):
            return
        handle = self._handle(document)
        if handle in self._computed:
            return
        self._computed.add(handle)

        mapping = document._meta
        actual = self._actual_data(mapping, document)
        change_set = dict(actual)
        id = self.get_document_id(document, throw=False)

        is_new = handle not in self._original_data
        if is_new:
            self._original_data[handle] = _snapshot(actual)
        elif handle in self._changesets:
            # recomputing in the same flush: diff against the pre-flush values again
            previous = self._changesets[handle]
            for name, (old, _) in previous.fields.items():
                self._original_data[handle][name] = old
            previous.reorderings = []
            previous.child_orders = []
        original = self._original_data[handle]

        if mapping.parent_mapping:
            parent = change_set.get(mapping.parent_mapping)
            if parent is not None:
                self._assert_document(parent, mapping.parent_mapping)
                if self.get_document_state(parent) is DocumentState.MANAGED:
                    self.compute_change_set(parent)

        for name in mapping.child_mappings:
            change_set[name] = self._compute_child_field(document, mapping, name, change_set[name], original, is_new, id)

        self._compute_association_changes(document, mapping, change_set, is_new, handle)
        self._compute_children_changes(document, mapping, change_set, is_new, handle, id)

        if not is_new:
            self._detect_assignment_move(document, mapping, change_set, original)
            if mapping.identifier and _differs(original.get(mapping.identifier), change_set.get(mapping.identifier)):
                raise IdentifierError(
                    f"The id of {type(document).__name__} is immutable "
                    f"({original.get(mapping.identifier)} != {change_set.get(mapping.identifier)}); use move()"
                )

        fields = {name: change_set[name] for name in mapping.fields if name in change_set}
        translation_changes = False
        if mapping.is_translatable:
            if not self._translation_cleared(handle):
                self._do_bind_translation(document, mapping, self.get_current_locale(document))
            translation_changes = self._has_translation_changes(handle)
            if mapping.locale_mapping:
                fields.pop(mapping.locale_mapping, None)

        if is_new:
            self._changesets[handle] = ChangeSet(fields={name: (None, value) for name, value in fields.items()})
            self._scheduled_inserts[handle] = document
            self.logger.debug("Scheduled insert of %s at %s", type(document).__name__, id)
            return

        changed: Dict[str, Tuple[Any, Any]] = {}
        for name, value in fields.items():
            old = original.get(name)
            if isinstance(value, (ReferenceManyCollection, ReferrersCollection)):
                if value.changed():
                    changed[name] = (old, value)
            elif _differs(old, value):
                changed[name] = (old, value)

        if changed or translation_changes:
            self._changesets.setdefault(handle, ChangeSet()).fields = changed
            self._original_data[handle] = _snapshot({name: change_set[name] for name in actual})
            self._scheduled_updates[handle] = document
            self.logger.debug("Scheduled update of %s (%s)", id, ", ".join(changed) or "translations")
        elif handle in self._changesets and not self._changesets[handle].reorderings:
            del self._changesets[handle]
            self._scheduled_updates.pop(handle, None)
        elif handle in self._changesets:
            self._changesets[handle].fields = {}

    def _compute_child_field(
        self,
        document: Document,
        mapping: DocumentMapping,
        name: str,
        child: Any,
        original: Dict[str, Any],
        is_new: bool,
        id: Optional[str],
    ) -> Any:
        if child is None:
            return None
        if not isinstance(child, Document):
            raise InvalidDocumentError(f"Child field '{name}' of {document!r} must hold a single document")
        if not is_new:
            previous = original.get(name)
            if previous is not None and previous is not child and not self.is_scheduled_for_removal(previous):
                raise IllegalMoveError(
                    f"Cannot replace the child '{name}' of {id} by assignment. "
                    "Remove the current child first or use move()."
                )
        return self._compute_child_changes(mapping.fields[name].nodename, child, id, document)

    def _compute_child_changes(self, nodename: str, child: Document, parent_id: str, parent: Document) -> Document:
        child_mapping = child._meta
        state = self.get_document_state(child)
        if state is DocumentState.NEW:
            if child_mapping.nodename:
                assigned = child_mapping.get_value(child, child_mapping.nodename)
                if assigned and assigned != nodename:
                    raise IdentifierError(
                        f"Child of {parent_id} is named {assigned!r} but stored under {nodename!r}"
                    )
            child_id = paths.join(parent_id, nodename)
            child_mapping.set_identifier_value(child, child_id)
            if self.identity_map.lookup(child_id) is not None:
                child = self.merge(child)
            else:
                self.persist_new(child, override_generator="assigned", parent=parent)
            self.compute_change_set(child)
        elif state is DocumentState.DETACHED:
            raise InvalidDocumentError(f"A detached document was found as child of {parent_id}: {child!r}")
        elif paths.dirname(self.get_document_id(child)) != parent_id:
            raise IllegalMoveError(
                f"{self.get_document_id(child)} cannot become a child of {parent_id} by assignment; use move()"
            )
        return child

    def _child_nodename(self, parent_id: str, key: Any, child: Document, parent: Document) -> str:
        """Name of ``child`` below ``parent_id``: its nodename, its id, its key, or a generated one."""
        child_mapping = child._meta
        if child_mapping.nodename:
            name = child_mapping.get_value(child, child_mapping.nodename)
            if name:
                paths.assert_valid_name(name)
                return name
        child_id = self.get_document_id(child, throw=False) or child_mapping.get_identifier_value(child)
        if not child_id:
            if isinstance(key, str) and key:
                paths.assert_valid_name(key)
                return key
            child_id = self._generator(child_mapping.id_generator).generate(child, child_mapping, self, parent)
        child_id = paths.normalize(child_id)
        if paths.dirname(child_id) != parent_id:
            raise IllegalMoveError(f"{child_id} cannot become a child of {parent_id} by assignment; use move()")
        return paths.basename(child_id)

    def _list_collection(
        self,
        document: Document,
        handle: int,
        name: str,
        value: Any,
        is_new: bool,
        factory: Any,
    ) -> PersistentCollection:
        """Wrap a plain list value in a persistent collection and remember it as the original."""
        if isinstance(value, PersistentCollection):
            if value.is_initialized:
                self._visited_collections[value.token] = value
            return value
        if value is None:
            value = []
        elif isinstance(value, Document) or not isinstance(value, (list, tuple, dict)):
            raise InvalidDocumentError(f"Field '{name}' of {document!r} must hold a list of documents")
        collection = factory(value, not is_new)
        document._meta.set_value(document, name, collection)
        self._original_data[handle][name] = collection
        self._visited_collections[collection.token] = collection
        return collection

    def _compute_association_changes(
        self, document: Document, mapping: DocumentMapping, change_set: Dict[str, Any], is_new: bool, handle: int
    ) -> None:
        for name in mapping.reference_mappings:
            field_obj = mapping.fields[name]
            value = change_set[name]
            if not field_obj.many:
                if value is None:
                    continue
                if not isinstance(value, Document):
                    raise InvalidDocumentError(f"Reference '{name}' of {document!r} must hold a single document")
                self._cascade_reachable(field_obj, value, document)
                continue

            reference_type = "path" if field_obj.strategy == "path" else "uuid"
            collection = self._list_collection(
                document,
                handle,
                name,
                value,
                is_new,
                lambda content, force, field_obj=field_obj, reference_type=reference_type: (
                    ReferenceManyCollection.create_from_collection(
                        self, document, field_obj.name, content, field_obj.resolve_target(), force, reference_type
                    )
                ),
            )
            change_set[name] = collection
            self._compute_collection_members(document, handle, field_obj, collection, is_new)

        for name in mapping.referrers_mappings:
            field_obj = mapping.fields[name]
            referencing = field_obj.referencing_field()
            collection = self._list_collection(
                document,
                handle,
                name,
                change_set[name],
                is_new,
                lambda content, force, field_obj=field_obj, referencing=referencing: (
                    ReferrersCollection.create_from_collection(
                        self,
                        document,
                        field_obj.name,
                        content,
                        field_obj.resolve_target(),
                        referencing.property,
                        referencing.strategy,
                        force,
                    )
                ),
            )
            change_set[name] = collection
            self._compute_collection_members(document, handle, field_obj, collection, is_new)

    def _compute_collection_members(
        self, document: Document, handle: int, field_obj: Association, collection: PersistentCollection, is_new: bool
    ) -> None:
        if not collection.is_initialized:
            return
        members = collection.unwrap()
        for member in members:
            if member is not None:
                self._cascade_reachable(field_obj, member, document)
        if is_new or not field_obj.cascades(Cascade.REMOVE):
            return
        original = self._original_data[handle].get(field_obj.name)
        if not isinstance(original, (ReferenceManyCollection, ReferrersCollection)):
            return
        for path in original.get_original_paths():
            orphan = self.identity_map.lookup(path)
            if orphan is not None and self.contains(orphan) and not any(member is orphan for member in members):
                self.schedule_remove(orphan)

    def _cascade_reachable(self, field_obj: Association, target: Any, owner: Document) -> None:
        self._assert_document(target, field_obj.name)
        state = self.get_document_state(target)
        if state is DocumentState.NEW:
            if not field_obj.cascades(Cascade.PERSIST):
                raise CascadeError(
                    f"A new document was found through '{field_obj.name}' of {owner!r} which is not "
                    f"configured to cascade persist: {target!r}. Persist it explicitly or add Cascade.PERSIST."
                )
            self.persist_new(target)
            self.compute_change_set(target)
        elif state is DocumentState.DETACHED:
            raise InvalidDocumentError(f"A detached document was found through '{field_obj.name}' of {owner!r}")

    def _compute_children_changes(
        self,
        document: Document,
        mapping: DocumentMapping,
        change_set: Dict[str, Any],
        is_new: bool,
        handle: int,
        id: Optional[str],
    ) -> None:
        for name in mapping.children_mappings:
            field_obj = mapping.fields[name]
            value = change_set[name]
            if not isinstance(value, ChildrenCollection):
                if isinstance(value, Document) or (value is not None and not isinstance(value, (dict, list, tuple))):
                    raise InvalidDocumentError(f"Children '{name}' of {document!r} must be a mapping or a list")
                value = ChildrenCollection.create_from_collection(
                    self, document, name, value or {}, field_obj.filter, field_obj.fetch_depth, force_overwrite=not is_new
                )
                mapping.set_value(document, name, value)
                change_set[name] = value
                self._original_data[handle][name] = value
            if not value.is_initialized:
                continue
            self._visited_collections[value.token] = value

            children: Dict[str, Document] = {}
            renamed: List[str] = []
            for key, child in value.unwrap().items():
                if child is None:
                    continue
                self._assert_document(child, name)
                child_name = self._child_nodename(id, key, child, document)
                if child_name in children:
                    raise IdentifierError(f"Two children of {id} are named {child_name!r}")
                children[child_name] = self._compute_child_changes(child_name, child, id, document)
                if isinstance(key, str) and key != child_name:
                    renamed.append(key)
            value._replace_contents(children)

            if not is_new:
                original = self._original_data[handle].get(name)
                if not isinstance(original, ChildrenCollection):
                    original = value
                self._compute_children_order(document, handle, id, original, list(children), renamed)

    def _compute_children_order(
        self,
        document: Document,
        handle: int,
        id: str,
        original: ChildrenCollection,
        child_names: List[str],
        renamed: List[str],
    ) -> None:
        kept: List[str] = []
        for child_name in original.get_original_nodenames():
            if child_name in child_names or child_name in renamed:
                kept.append(child_name)
                continue
            removed = self._find_child(id, child_name)
            if (
                removed is not None
                and self._handle(removed) not in self._scheduled_moves
                and not self.is_scheduled_for_removal(removed)
            ):
                self.schedule_remove(removed)

        order = kept + [child_name for child_name in child_names if child_name not in kept]
        if not child_names or order == child_names:
            return
        reordering = paths.calculate_order_before(order, child_names)
        if not reordering:
            return
        change = self._changesets.setdefault(handle, ChangeSet())
        change.reorderings.append(reordering)
        change.child_orders.append(child_names)
        self._scheduled_updates[handle] = document
        self.logger.debug("Scheduled reordering of the children of %s: %s", id, reordering)

    def _detect_assignment_move(
        self, document: Document, mapping: DocumentMapping, change_set: Dict[str, Any], original: Dict[str, Any]
    ) -> None:
        destination_path = destination_name = None
        if mapping.parent_mapping:
            parent = change_set.get(mapping.parent_mapping)
            if parent is not None and original.get(mapping.parent_mapping) is not parent:
                destination_path = self.get_document_id(parent)
        if mapping.nodename:
            name = change_set.get(mapping.nodename)
            if name and name != original.get(mapping.nodename):
                destination_name = name
        if destination_path is None and destination_name is None:
            return

        current = self.get_document_id(document)
        if destination_path is None:
            destination_path = paths.dirname(current)
        if destination_name is None:
            destination_name = paths.basename(current)
        paths.assert_valid_name(destination_name)
        target = paths.join(destination_path, destination_name)
        if target != current:
            self.schedule_move(document, target)

    # ------------------------------------------------------------------ #
    # Scheduling
    # ------------------------------------------------------------------ #
    def _generator(self, name: str) -> IdGenerator:
        if name not in self._generators:
            self._generators[name] = create_generator(name)
        return self._generators[name]

    def persist_new(
        self, document: Document, override_generator: Optional[str] = None, parent: Optional[Document] = None
    ) -> str:
        mapping = document._meta
        self._fire(events.PRE_PERSIST, document)
        id = self._generator(override_generator or mapping.id_generator).generate(document, mapping, self, parent)
        handle = self.register_document(document, id)
        self._scheduled_inserts[handle] = document
        mapping.set_identifier_value(document, id)
        if mapping.uuid_field:
            value = mapping.get_value(document, mapping.uuid_field)
            if value:
                try:
                    uuid.UUID(str(value))
                except ValueError:
                    raise IdentifierError(f"{value!r} is not a valid uuid for {id}") from None
            else:
                mapping.set_value(document, mapping.uuid_field, self.config.uuid_generator())
        return id

    def schedule_insert(self, document: Document) -> None:
        self._do_schedule_insert(document, set())

    def _do_schedule_insert(
        self,
        document: Document,
        visited: Set[int],
        override_generator: Optional[str] = None,
        parent: Optional[Document] = None,
    ) -> None:
        self._assert_document(document)
        handle = self._handle(document)
        if handle in visited:
            return
        visited.add(handle)

        mapping = document._meta
        if mapping.abstract:
            raise InvalidDocumentError(f"Cannot persist the abstract document {type(document).__name__}")
        if mapping.parent_mapping:
            owner = mapping.get_value(document, mapping.parent_mapping)
            if owner is not None:
                self._assert_document(owner, mapping.parent_mapping)
                if self.get_document_state(owner) is DocumentState.NEW:
                    self._do_schedule_insert(owner, visited)

        state = self.get_document_state(document)
        if state is DocumentState.NEW:
            self.persist_new(document, override_generator, parent)
        elif state is DocumentState.REMOVED:
            self._scheduled_removals.pop(handle, None)
            if self.identity_map.id_of(handle) is None:
                self.identity_map.unregister(handle)
                self.persist_new(document, override_generator, parent)
            else:
                self.identity_map.set_state(handle, DocumentState.MANAGED)
        elif state is DocumentState.DETACHED:
            raise InvalidDocumentError(
                f"Detached document or new document with an already existing id passed to persist: {document!r}"
            )
        self._cascade_schedule_insert(document, mapping, visited)

    def _related_documents(self, value: Any, field_obj: Optional[Association] = None) -> List[Document]:
        """Documents held by an association value; uninitialized collections yield nothing."""
        if value is None:
            return []
        if isinstance(value, Document):
            return [value]
        if field_obj is not None and field_obj.kind in ("reference_one", "parent", "child"):
            raise InvalidDocumentError(f"Field '{field_obj.name}' must hold a single document")
        if isinstance(value, PersistentCollection):
            content = value.unwrap()
        else:
            content = value
        if isinstance(content, dict):
            content = list(content.values())
        return [document for document in content if document is not None]

    def _cascade_schedule_insert(self, document: Document, mapping: DocumentMapping, visited: Set[int]) -> None:
        for name in mapping.reference_mappings + mapping.referrers_mappings:
            field_obj = mapping.fields[name]
            if not field_obj.cascades(Cascade.PERSIST):
                continue
            for related in self._related_documents(mapping.get_value(document, name), field_obj):
                self._assert_document(related, name)
                if self.get_document_state(related) is DocumentState.NEW:
                    self._do_schedule_insert(related, visited)

        id = self.get_document_id(document, throw=False)
        for name in mapping.child_mappings:
            field_obj = mapping.fields[name]
            child = mapping.get_value(document, name)
            if not field_obj.cascades(Cascade.PERSIST) or child is None:
                continue
            self._assert_document(child, name)
            if self.get_document_state(child) is not DocumentState.NEW:
                continue
            child_mapping = child._meta
            if child_mapping.nodename:
                assigned = child_mapping.get_value(child, child_mapping.nodename)
                if assigned and assigned != field_obj.nodename:
                    raise IdentifierError(f"Child of {id} is named {assigned!r} but stored under {field_obj.nodename!r}")
            child_mapping.set_identifier_value(child, paths.join(id, field_obj.nodename))
            self._do_schedule_insert(child, visited, "assigned", document)

        for name in mapping.children_mappings:
            field_obj = mapping.fields[name]
            value = mapping.get_value(document, name)
            if not field_obj.cascades(Cascade.PERSIST) or value is None:
                continue
            if isinstance(value, PersistentCollection):
                items = list(value.unwrap().items())
            elif isinstance(value, dict):
                items = list(value.items())
            else:
                items = list(enumerate(value))
            for key, child in items:
                if child is None:
                    continue
                self._assert_document(child, name)
                if self.get_document_state(child) is not DocumentState.NEW:
                    continue
                child_name = self._child_nodename(id, key, child, document)
                child._meta.set_identifier_value(child, paths.join(id, child_name))
                self._do_schedule_insert(child, visited, "assigned", document)

    def schedule_move(self, document: Document, target: str) -> None:
        handle = self._handle(document)
        state = self.get_document_state(document)
        if state is DocumentState.NEW:
            raise InvalidDocumentError(f"Cannot move {document!r}: it was never persisted")
        if state is DocumentState.REMOVED:
            self._scheduled_removals.pop(handle, None)
            self.identity_map.set_state(handle, DocumentState.MANAGED)
        elif state is DocumentState.DETACHED:
            raise InvalidDocumentError(f"Cannot move the detached document {document!r}")
        self._scheduled_moves[handle] = (document, target)
        self.logger.debug("Scheduled move of %s to %s", self.get_document_id(document), target)

    def schedule_reorder(self, document: Document, source: str, target: str, before: bool) -> None:
        state = self.get_document_state(document)
        if state is DocumentState.REMOVED:
            raise InvalidDocumentError(f"Cannot reorder the children of the removed document {document!r}")
        if state is not DocumentState.MANAGED:
            raise InvalidDocumentError(f"Cannot reorder the children of the unmanaged document {document!r}")
        self._scheduled_reorders.setdefault(self._handle(document), []).append((document, source, target, before))

    def schedule_remove(self, document: Document) -> None:
        self._do_schedule_remove(document, set())

    def _do_schedule_remove(self, document: Document, visited: Set[int]) -> None:
        self._assert_document(document)
        handle = self._handle(document)
        if handle in visited:
            return
        visited.add(handle)

        state = self.get_document_state(document)
        if state is DocumentState.REMOVED:
            return
        if state is DocumentState.DETACHED:
            raise InvalidDocumentError(f"Cannot remove the detached document {document!r}")
        self._scheduled_inserts.pop(handle, None)
        if state is DocumentState.MANAGED:
            self._scheduled_moves.pop(handle, None)
            self._scheduled_reorders.pop(handle, None)

        self._scheduled_removals[handle] = document
        self.identity_map.set_state(handle, DocumentState.REMOVED)
        self._fire(events.PRE_REMOVE, document)
        self.logger.debug("Scheduled removal of %s", self.get_document_id(document, throw=False))

        mapping = document._meta
        for name in mapping.reference_mappings + mapping.referrers_mappings:
            field_obj = mapping.fields[name]
            if not field_obj.cascades(Cascade.REMOVE):
                continue
            value = mapping.get_value(document, name)
            if isinstance(value, PersistentCollection):
                value.initialize()
            for related in self._related_documents(value, field_obj):
                self._do_schedule_remove(related, visited)

    # ------------------------------------------------------------------ #
    # Merge / detach / refresh
    # ------------------------------------------------------------------ #
    def merge(self, document: Document) -> Document:
        return self._do_merge(document, {})

    def _do_merge(
        self,
        document: Document,
        visited: Dict[int, Document],
        previous: Optional[Document] = None,
        association: Optional[Association] = None,
    ) -> Document:
        self._assert_document(document)
        handle = self._handle(document)
        if handle in visited:
            return visited[handle]

        mapping = document._meta
        if self.get_document_state(document) is DocumentState.MANAGED:
            managed = document
            visited[handle] = managed
        else:
            managed = self._merge_target(document, mapping)
            visited[handle] = managed
            self._copy_for_merge(document, managed, mapping)
            if self.get_document_id(managed, throw=False) is None:
                self.persist_new(managed)

        if previous is not None and association is not None:
            self._attach_merged(previous, association, managed)
        self._cascade_merge(document, managed, mapping, visited)
        return managed

    def _merge_target(self, document: Document, mapping: DocumentMapping) -> Document:
        locale = self.get_current_locale(document) if mapping.is_translatable else None
        id = mapping.get_identifier_value(document)
        if not id:
            return mapping.new_instance()
        id = paths.normalize(id)

        managed = self.identity_map.lookup(id)
        if managed is not None:
            if self.identity_map.state_of(self._handle(managed)) is DocumentState.REMOVED:
                raise InvalidDocumentError(f"Removed document {id} cannot be merged")
            if not isinstance(managed, type(document)):
                raise InvalidDocumentError(
                    f"Cannot merge a {type(document).__name__} into the {type(managed).__name__} at {id}"
                )
            proxy.initialize(managed)
            if locale and locale != self.get_current_locale(managed):
                self.load_translation(managed, locale, fallback=True)
            return managed

        if locale:
            managed = self.manager.find_translation(type(document), id, locale)
        else:
            managed = self.manager.find(type(document), id)
        if managed is not None:
            return managed
        if mapping.id_generator != "assigned":
            raise InvalidDocumentError(f"Document to merge was not found at {id}")
        managed = mapping.new_instance()
        mapping.set_identifier_value(managed, id)
        return managed

    def _copy_for_merge(self, document: Document, managed: Document, mapping: DocumentMapping) -> None:
        is_new = self.get_document_id(managed, throw=False) is None
        for name, field_obj in mapping.fields.items():
            if field_obj.kind == "id" or name not in document._field_values:
                continue
            value = mapping.get_value(document, name)
            kind = field_obj.kind
            if kind in ("reference_one", "parent", "child"):
                self._merge_single(managed, mapping, field_obj, value)
            elif kind in ("reference_many", "referrers", "children"):
                if isinstance(value, PersistentCollection) and not value.is_initialized:
                    continue
                if field_obj.cascades(Cascade.MERGE) and kind != "children":
                    current = mapping.get_value(managed, name)
                    if isinstance(current, PersistentCollection):
                        current.initialize()
                        if len(current):
                            current.clear()
                    else:
                        mapping.set_value(managed, name, [])
                elif is_new:
                    mapping.set_value(managed, name, value.unwrap() if isinstance(value, PersistentCollection) else value)
            elif kind in ("nodename", "uuid", "depth", "version_name", "version_created"):
                if value is not None:
                    mapping.set_value(managed, name, value)
            else:
                mapping.set_value(managed, name, _copy_value(value))

    def _merge_single(self, managed: Document, mapping: DocumentMapping, field_obj: Association, value: Any) -> None:
        if value is None:
            mapping.set_value(managed, field_obj.name, None)
            return
        if field_obj.cascades(Cascade.MERGE):
            return
        if self.get_document_state(value) is DocumentState.MANAGED:
            mapping.set_value(managed, field_obj.name, value)
            return
        target_id = value._meta.get_identifier_value(value)
        if not target_id:
            mapping.set_value(managed, field_obj.name, value)
            return
        mapping.set_value(managed, field_obj.name, self.get_or_create_proxy(paths.normalize(target_id), type(value)))

    @staticmethod
    def _attach_merged(previous: Document, association: Association, managed: Document) -> None:
        mapping = previous._meta
        if association.kind == "reference_one":
            mapping.set_value(previous, association.name, managed)
            return
        collection = mapping.get_value(previous, association.name)
        if collection is None:
            collection = []
            mapping.set_value(previous, association.name, collection)
        if not any(member is managed for member in collection):
            collection.append(managed)

    def _cascade_merge(self, document: Document, managed: Document, mapping: DocumentMapping, visited: Dict[int, Document]) -> None:
        for name in mapping.reference_mappings + mapping.referrers_mappings:
            field_obj = mapping.fields[name]
            if not field_obj.cascades(Cascade.MERGE):
                continue
            for related in self._related_documents(mapping.get_value(document, name), field_obj):
                self._do_merge(related, visited, managed, field_obj)

    def detach(self, document: Document) -> None:
        self._do_detach(document, set())

    def _do_detach(self, document: Document, visited: Set[int]) -> None:
        handle = self._handle(document)
        if handle in visited:
            return
        visited.add(handle)

        mapping = document._meta
        for name in mapping.children_mappings + mapping.reference_mappings + mapping.referrers_mappings:
            field_obj = mapping.fields[name]
            if not field_obj.cascades(Cascade.DETACH):
                continue
            for related in self._related_documents(mapping.get_value(document, name), field_obj):
                self._do_detach(related, visited)
        if self.identity_map.state_of(handle) is DocumentState.MANAGED:
            self._forget(handle)
            self.logger.debug("Detached %r", document)

    def refresh(self, document: Document) -> None:
        self.session.refresh(keep_changes=True)
        self._do_refresh(document, set())

    def _do_refresh(self, document: Document, visited: Set[int]) -> None:
        handle = self._handle(document)
        if handle in visited:
            return
        visited.add(handle)
        if self.get_document_state(document) is not DocumentState.MANAGED:
            raise InvalidDocumentError(f"Cannot refresh the unmanaged document {document!r}")

        mapping = document._meta
        node = self.get_node_for_document(document)
        for name in mapping.reference_mappings + mapping.referrers_mappings:
            field_obj = mapping.fields[name]
            if not field_obj.cascades(Cascade.REFRESH):
                continue
            for related in self._related_documents(mapping.get_value(document, name), field_obj):
                self._do_refresh(related, visited)

        self._document_translations.pop(handle, None)
        self._changesets.pop(handle, None)
        locale = self._document_locales.get(handle, {}).get("current")
        self.get_or_create_documents(type(document), [node], refresh=True, locale=locale, fallback=True)

    def clear(self) -> None:
        self.identity_map.clear()
        self._reset()
        self._fire(events.ON_CLEAR, None)
        self.session.refresh(keep_changes=False)

    # ------------------------------------------------------------------ #
    # Commit
    # ------------------------------------------------------------------ #
    def _has_scheduled_work(self) -> bool:
        return bool(
            self._scheduled_inserts
            or self._scheduled_updates
            or self._scheduled_removals
            or self._scheduled_moves
            or self._scheduled_reorders
        )

    def commit(self, document: Any = None) -> None:
        """
        Write all pending changes to the session and save it.

        ``document`` restricts change detection to one document or a list of
        documents; scheduled inserts are always included.
        """

        self._fire(events.PRE_FLUSH, None)
        try:
            if document is None:
                self.compute_change_sets()
            else:
                for item in document if isinstance(document, (list, tuple, set)) else [document]:
                    self._assert_document(item)
                    self.compute_single_document_change_set(item)
        except Exception:
            self._computed.clear()
            raise
        self._fire(events.ON_FLUSH, None)

        if not self._has_scheduled_work():
            self._fire(events.POST_FLUSH, None)
            self._computed.clear()
            return

        self.logger.info(
            "Committing %d inserts, %d updates, %d removals, %d reorders, %d moves",
            len(self._scheduled_inserts),
            len(self._scheduled_updates),
            len(self._scheduled_removals),
            len(self._scheduled_reorders),
            len(self._scheduled_moves),
        )
        try:
            self.transaction_manager.begin()
            with time_call("unit_of_work.inserts", self.logger, count=len(self._scheduled_inserts)):
                association_updates = self._execute_inserts(dict(self._scheduled_inserts))
            with time_call("unit_of_work.updates", self.logger, count=len(self._scheduled_updates)):
                self._execute_updates(dict(self._scheduled_updates))
            with time_call("unit_of_work.association_updates", self.logger, count=len(association_updates)):
                self._execute_updates(association_updates, dispatch_events=False)
            with time_call("unit_of_work.removals", self.logger, count=len(self._scheduled_removals)):
                self._execute_removals(dict(self._scheduled_removals))
            with time_call("unit_of_work.reorders", self.logger, count=len(self._scheduled_reorders)):
                self._execute_reorders(dict(self._scheduled_reorders))
            with time_call("unit_of_work.moves", self.logger, count=len(self._scheduled_moves)):
                self._execute_moves(dict(self._scheduled_moves))
            with time_call("session.save", self.logger):
                self.session.save()
            self.transaction_manager.commit()
        except Exception:
            self.logger.exception("Commit failed; closing the document manager")
            self._abort()
            raise

        for collection in self._visited_collections.values():
            collection.take_snapshot()
        self._fire(events.POST_FLUSH, None)
        for locales in self._document_locales.values():
            locales["original"] = locales.get("current")
        self._clear_flush_state()
        self._fire(events.END_FLUSH, None)
        self.logger.info("Commit finished")

    def _abort(self) -> None:
        try:
            self.manager.close()
        except Exception:
            self.logger.exception("Closing the document manager after a failed commit raised")
        try:
            self.transaction_manager.rollback()
        except Exception:
            self.logger.exception("Rollback after a failed commit raised")

    def _clear_flush_state(self) -> None:
        self._scheduled_inserts.clear()
        self._scheduled_updates.clear()
        self._scheduled_removals.clear()
        self._scheduled_moves.clear()
        self._scheduled_reorders.clear()
        self._changesets.clear()
        self._computed.clear()
        self._visited_collections.clear()

    @staticmethod
    def _check_nullable(document: Document, mapping: DocumentMapping, fields: Dict[str, Tuple[Any, Any]]) -> None:
        for name in mapping.field_mappings:
            if name in fields and fields[name][1] is None and not mapping.fields[name].nullable:
                raise InvalidDocumentError(f"Field '{name}' of {document!r} is not nullable")

    def _set_mixins(self, mapping: DocumentMapping, node: Node, document: Document) -> None:
        if mapping.versionable:
            node.add_mixin(VERSIONING_MIXINS[mapping.versionable])
        if mapping.referenceable or mapping.versionable == "full":
            node.add_mixin(REFERENCEABLE_MIXIN)
        if mapping.uuid_field and not mapping.get_value(document, mapping.uuid_field):
            mapping.set_value(document, mapping.uuid_field, node.identifier)
            self._original_data.setdefault(self._handle(document), {})[mapping.uuid_field] = node.identifier

    def _execute_inserts(self, documents: Dict[int, Document]) -> Dict[int, Document]:
        pending = []
        for position, (handle, document) in enumerate(documents.items()):
            id = self.identity_map.id_of(handle)
            if id is not None and self._contains_handle(handle):
                pending.append((paths.depth(id), position, handle, document))
        pending.sort(key=lambda entry: entry[:2])

        association_updates: Dict[int, Document] = {}
        association_changes: Dict[int, ChangeSet] = {}
        for _, _, handle, document in pending:
            mapping = document._meta
            id = self.get_document_id(document)
            change = self._changesets.get(handle) or ChangeSet()
            self._check_nullable(document, mapping, change.fields)

            parent_node = self.session.get_node(paths.dirname(id))
            uuid_value = mapping.get_value(document, mapping.uuid_field) if mapping.uuid_field else None
            node = parent_node.add_node(paths.basename(id), mapping.node_type, identifier=uuid_value)
            node.add_mixin(self.config.managed_mixin)
            for mixin in mapping.mixins:
                node.add_mixin(mixin)

            original = self._original_data.setdefault(handle, {})
            if mapping.nodename:
                mapping.set_value(document, mapping.nodename, node.name)
                original[mapping.nodename] = node.name
            if mapping.parent_mapping and mapping.get_value(document, mapping.parent_mapping) is None:
                parent = self.get_or_create_proxy_from_node(parent_node)
                mapping.set_value(document, mapping.parent_mapping, parent)
                original[mapping.parent_mapping] = parent
            if mapping.depth_field:
                mapping.set_value(document, mapping.depth_field, paths.depth(id))
                original[mapping.depth_field] = paths.depth(id)
            if self.config.write_metadata:
                self.class_mapper.write_metadata(node, type(document))
            self._set_mixins(mapping, node, document)

            for name, (_, value) in change.fields.items():
                field_obj = mapping.fields[name]
                if field_obj.kind == "field":
                    if name in mapping.translatable_fields or value is None:
                        continue
                    node.set_property(field_obj.property, list(value) if field_obj.multivalue else value, field_obj.property_type)
                elif field_obj.kind in _REFERENCE_KINDS:
                    association_updates[handle] = document
                    association_changes.setdefault(handle, ChangeSet()).fields[name] = (None, value)

            if mapping.is_translatable:
                self._save_translation(document, node, mapping)
            self._fire(events.POST_PERSIST, document)

        self._changesets.update(association_changes)
        return association_updates

    def _execute_updates(self, documents: Dict[int, Document], dispatch_events: bool = True) -> None:
        for handle, document in documents.items():
            if not self._contains_handle(handle):
                continue
            mapping = document._meta
            node = self.get_node_for_document(document)
            if self.config.write_metadata:
                self.class_mapper.write_metadata(node, type(document))

            if dispatch_events and self.hooks.has_handlers(events.PRE_UPDATE, document):
                self._fire(events.PRE_UPDATE, document, change_set=self._changesets.get(handle))
                self._computed.discard(handle)
                self.compute_change_set(document)

            change = self._changesets.get(handle) or ChangeSet()
            self._check_nullable(document, mapping, change.fields)
            for name, (_, value) in list(change.fields.items()):
                field_obj = mapping.fields[name]
                kind = field_obj.kind
                if kind == "field":
                    if name in mapping.translatable_fields:
                        continue
                    if field_obj.multivalue:
                        value = list(value) if value else None
                    node.set_property(field_obj.property, value, field_obj.property_type)
                elif kind in ("reference_one", "reference_many"):
                    self._write_reference(node, field_obj, value)
                elif kind == "referrers":
                    self._write_referrers(document, node, field_obj, value)
                elif kind == "child" and value is None:
                    self._remove_child_node(node, field_obj.nodename)

            for wanted in change.child_orders:
                wanted_names = set(wanted)
                live = [name for name in node.get_node_names() if name in wanted_names]
                for source, target in paths.calculate_order_before(live, wanted).items():
                    node.order_before(source, target)

            if mapping.is_translatable:
                self._save_translation(document, node, mapping)
            if dispatch_events:
                self._fire(events.POST_UPDATE, document)

    def _write_reference(self, node: Node, field_obj: Any, value: Any) -> None:
        if value is None:
            node.remove_property(field_obj.property)
            return
        ptype = _REFERENCE_TYPES[field_obj.strategy]
        if field_obj.many:
            stored = [self._reference_value(target, ptype) for target in value if target is not None]
            node.set_property(field_obj.property, stored or None, ptype)
        else:
            node.set_property(field_obj.property, self._reference_value(value, ptype), ptype)

    def _reference_value(self, target: Document, ptype: PropertyType) -> str:
        target_id = self.get_document_id(target)
        if ptype is PropertyType.PATH:
            return target_id
        target_node = self.session.get_node(target_id)
        self._set_mixins(target._meta, target_node, target)
        if not target_node.is_node_type(REFERENCEABLE_MIXIN):
            raise InvalidDocumentError(
                f"{target!r} is not referenceable; set Meta.referenceable = True on {type(target).__name__}"
            )
        return target_node.identifier

    def _write_referrers(self, document: Document, node: Node, field_obj: Any, referrers: Any) -> None:
        """Point the referencing property of every referrer at ``document``."""
        if referrers is None:
            return
        referencing = field_obj.referencing_field()
        referring_class = field_obj.resolve_target()
        ptype = _REFERENCE_TYPES[referencing.strategy]
        if ptype is PropertyType.PATH:
            raise InvalidDocumentError(f"Referrers '{field_obj.name}' need a weak or hard reference")
        self._set_mixins(document._meta, node, document)
        if not node.is_node_type(REFERENCEABLE_MIXIN):
            raise InvalidDocumentError(f"{document!r} is not referenceable and cannot have referrers")
        identifier = node.identifier

        for referrer in referrers:
            if referrer is None:
                continue
            if referring_class is not None and not isinstance(referrer, referring_class):
                raise BlazeODMError(
                    f"'{field_obj.name}' of {document!r} holds a {type(referrer).__name__}, "
                    f"expected {referring_class.__name__}"
                )
            referrer_mapping = referrer._meta
            referrer_handle = self._handle(referrer)
            referrer_node = self.get_node_for_document(referrer)
            referrer_change = self._changesets.get(referrer_handle)

            if not referencing.many:
                current = referrer_mapping.get_value(referrer, referencing.name)
                if current is not None and current is not document:
                    raise BlazeODMError(
                        f"Conflicting settings for '{referencing.name}' on {referrer!r}: it references "
                        f"{current!r} but is listed in '{field_obj.name}' of {document!r}"
                    )
                referrer_mapping.set_value(referrer, referencing.name, document)
                if referrer_change is not None:
                    referrer_change.fields.pop(referencing.name, None)
                referrer_node.set_property(referencing.property, identifier, ptype)
                if referrer_handle in self._original_data:
                    self._original_data[referrer_handle][referencing.name] = document
                continue

            collection = referrer_mapping.get_value(referrer, referencing.name)
            if collection is None:
                collection = ReferenceManyCollection.create_from_collection(
                    self, referrer, referencing.name, [], type(document), force_overwrite=True
                )
                referrer_mapping.set_value(referrer, referencing.name, collection)
                collection.set_dirty(False)
                if referrer_handle in self._original_data:
                    self._original_data[referrer_handle][referencing.name] = collection
            was_dirty = isinstance(collection, PersistentCollection) and collection.is_dirty()
            if not any(member is document for member in collection):
                if was_dirty:
                    raise BlazeODMError(
                        f"Ambiguous change of '{referencing.name}' on {referrer!r}: it was modified and "
                        f"does not contain {document!r} listed in '{field_obj.name}'"
                    )
                collection.append(document)
            if was_dirty:
                continue
            if referrer_change is not None:
                referrer_change.fields.pop(referencing.name, None)
            stored = referrer_node.get_property_value(referencing.property) or []
            if identifier not in stored:
                referrer_node.set_property(referencing.property, [*stored, identifier], ptype)
            if isinstance(collection, PersistentCollection):
                collection.set_dirty(False)

    def _remove_child_node(self, node: Node, nodename: str) -> None:
        if not node.has_node(nodename):
            return
        child_node = node.get_node(nodename)
        self._purge(child_node.path, include_self=True)
        child_node.remove()

    def _execute_removals(self, documents: Dict[int, Document]) -> None:
        for handle, document in documents.items():
            id = self.identity_map.id_of(handle)
            if id is None:
                self._forget(handle)
                continue
            try:
                node = self.session.get_node(id)
            except PathNotFoundError:
                self.logger.debug("Node %s was already removed with its parent", id)
            else:
                mapping = document._meta
                if mapping.is_translatable:
                    self._translation_strategy(mapping).remove_all_translations(document, node, mapping)
                node.remove()
            self._unlink_from_parent(document, id)
            self._forget(handle)
            self._purge(id)
            self._fire(events.POST_REMOVE, document)

    def _unlink_from_parent(self, document: Document, id: str) -> None:
        """Drop a removed document from the loaded child slots of its parent."""
        parent = self.identity_map.lookup(paths.dirname(id))
        if parent is None or not proxy.is_initialized(parent):
            return
        mapping = parent._meta
        parent_handle = self._handle(parent)
        original = self._original_data.get(parent_handle, {})
        for name in mapping.child_mappings:
            if mapping.get_value(parent, name) is document:
                mapping.set_value(parent, name, None)
                original[name] = None
        for name in mapping.children_mappings:
            collection = mapping.get_value(parent, name)
            if isinstance(collection, ChildrenCollection) and collection.is_initialized:
                kept = {key: child for key, child in collection.unwrap().items() if child is not document}
                collection._replace_contents(kept)

    def _execute_reorders(self, documents: Dict[int, List[Tuple[Document, str, str, bool]]]) -> None:
        for handle, entries in documents.items():
            if not self._contains_handle(handle):
                continue
            for parent, source, target, before in entries:
                node = self.get_node_for_document(parent)
                names = node.get_node_names()
                if source not in names or target not in names:
                    self.logger.debug("Skipping reorder of %s: %s or %s does not exist", node.path, source, target)
                    continue
                destination: Optional[str] = target
                if not before:
                    position = names.index(target) + 1
                    destination = names[position] if position < len(names) else None
                if destination == source:
                    continue
                node.order_before(source, destination)
                parent_mapping = parent._meta
                for name in parent_mapping.children_mappings:
                    collection = parent_mapping.get_value(parent, name)
                    if isinstance(collection, ChildrenCollection):
                        collection.refresh()

    def _execute_moves(self, documents: Dict[int, Tuple[Document, str]]) -> None:
        for handle, (document, target) in documents.items():
            if not self._contains_handle(handle):
                continue
            source = self.get_document_id(document)
            if source == target:
                continue
            self._fire(events.PRE_MOVE, document, source=source, target=target)
            self.session.move(source, target)

            mapping = document._meta
            node = self.session.get_node(target)
            original = self._original_data.setdefault(handle, {})
            if mapping.nodename:
                mapping.set_value(document, mapping.nodename, node.name)
                original[mapping.nodename] = node.name
            if mapping.parent_mapping:
                parent = self.get_or_create_proxy_from_node(node.get_parent())
                mapping.set_value(document, mapping.parent_mapping, parent)
                original[mapping.parent_mapping] = parent
            if mapping.depth_field:
                mapping.set_value(document, mapping.depth_field, paths.depth(target))
                original[mapping.depth_field] = paths.depth(target)

            for id, moved_handle in self.identity_map.ids():
                if id != source and not paths.is_descendant(id, source):
                    continue
                new_id = paths.rebase(id, source, target)
                self.identity_map.rekey(moved_handle, new_id)
                moved = self.identity_map.document(moved_handle)
                moved._meta.set_identifier_value(moved, new_id)
                if moved._meta.identifier and moved_handle in self._original_data:
                    self._original_data[moved_handle][moved._meta.identifier] = new_id
            self.logger.debug("Moved %s to %s", source, target)
            self._fire(events.POST_MOVE, document, source=source, target=target)

    # ------------------------------------------------------------------ #
    # Translations
    # ------------------------------------------------------------------ #
    def _translation_strategy(self, mapping: DocumentMapping) -> "TranslationStrategy":
        return self.manager.get_translation_strategy(mapping.translator)

    def _locale_chooser(self) -> "LocaleChooser":
        return self.manager.get_locale_chooser()

    def get_current_locale(self, document: Document) -> Optional[str]:
        mapping = document._meta
        if not mapping.is_translatable:
            return None
        if mapping.locale_mapping:
            locale = mapping.get_value(document, mapping.locale_mapping)
            if locale:
                return locale
        locales = self._document_locales.get(self._handle(document))
        if locales and locales.get("current"):
            return locales["current"]
        return self._locale_chooser().get_locale()

    def _set_locale(self, document: Document, mapping: DocumentMapping, locale: Optional[str]) -> None:
        if not mapping.is_translatable:
            return
        locales = self._document_locales.setdefault(self._handle(document), {"original": locale})
        locales["current"] = locale
        if mapping.locale_mapping and proxy.is_initialized(document):
            mapping.set_value(document, mapping.locale_mapping, locale)

    def _translation_cleared(self, handle: int) -> bool:
        locales = self._document_locales.get(handle)
        return locales is not None and "current" in locales and locales["current"] is None

    def _has_translation_changes(self, handle: int) -> bool:
        original = self._original_translated_data.get(handle, {})
        for locale, data in self._document_translations.get(handle, {}).items():
            if data is None or locale not in original:
                return True
            if any(_differs(original[locale].get(name), value) for name, value in data.items()):
                return True
        return False

    def bind_translation(self, document: Document, locale: str) -> None:
        """Mark the current translated field values as the ``locale`` translation."""
        if self.get_document_state(document) is not DocumentState.MANAGED:
            raise InvalidDocumentError(f"Only managed documents can be translated: {document!r}")
        mapping = document._meta
        if not mapping.is_translatable:
            raise TranslationError(f"{type(document).__name__} has no translatable fields")
        if locale != self.get_current_locale(document) and locale in self.get_locales_for(document):
            raise TranslationError(
                f"Translation {locale!r} of {document!r} already exists; load it with find_translation() first"
            )
        self._do_bind_translation(document, mapping, locale)

    def _do_bind_translation(self, document: Document, mapping: DocumentMapping, locale: str) -> None:
        translations = self._document_translations.setdefault(self._handle(document), {})
        event = events.PRE_UPDATE_TRANSLATION if translations.get(locale) else events.PRE_CREATE_TRANSLATION
        self._fire(event, document, locale=locale)
        self._set_locale(document, mapping, locale)
        translations[locale] = self._translated_values(document, mapping)

    @staticmethod
    def _translated_values(document: Document, mapping: DocumentMapping) -> Dict[str, Any]:
        return {name: _copy_value(mapping.get_value(document, name)) for name in mapping.translatable_fields}

    def remove_translation(self, document: Document, locale: str) -> None:
        mapping = document._meta
        self._fire(events.PRE_REMOVE_TRANSLATION, document, locale=locale)
        if not mapping.is_translatable:
            return
        if len(self.get_locales_for(document)) <= 1:
            raise TranslationError(f"The last translation of {document!r} cannot be removed")
        proxy.initialize(document)
        self._document_translations.setdefault(self._handle(document), {})[locale] = None
        self._set_locale(document, mapping, None)

    def get_locales_for(self, document: Document) -> List[str]:
        mapping = document._meta
        if not mapping.is_translatable:
            raise MissingTranslationError(f"{type(document).__name__} is not translatable")
        locales: List[str] = []
        node = self._node_or_none(document) if self.contains(document) else None
        if node is not None:
            locales.extend(self._translation_strategy(mapping).get_locales_for(document, node, mapping))
        for locale, data in self._document_translations.get(self._handle(document), {}).items():
            if data is None:
                if locale in locales:
                    locales.remove(locale)
            elif locale not in locales:
                locales.append(locale)
        return locales

    def _save_translation(self, document: Document, node: Node, mapping: DocumentMapping) -> None:
        handle = self._handle(document)
        strategy = self._translation_strategy(mapping)
        translations = self._document_translations.get(handle, {})
        for locale, data in list(translations.items()):
            if data is not None:
                strategy.save_translation(data, node, mapping, locale)
                self._original_translated_data.setdefault(handle, {})[locale] = dict(data)
            else:
                strategy.remove_translation(document, node, mapping, locale)
                del translations[locale]
                self._original_translated_data.get(handle, {}).pop(locale, None)
                self._fire(events.POST_REMOVE_TRANSLATION, document, locale=locale)

    def load_translation(
        self, document: Document, locale: Optional[str] = None, fallback: bool = False, refresh: bool = False
    ) -> Optional[str]:
        """
        Load the translated fields of ``document`` in ``locale``.

        Pending (not yet flushed) translations win over stored ones. With
        ``fallback`` the locale chooser's fallback order is tried next; when
        nothing is found the translated fields are reset. Returns the locale
        that was actually loaded.
        """

        mapping = document._meta
        if not mapping.is_translatable:
            return None
        handle = self._handle(document)
        current = self.get_current_locale(document)
        if locale is None:
            locale = current

        used, found = self._load_translation_data(document, mapping, handle, locale, current, fallback, refresh)
        self._set_locale(document, mapping, used)
        if found:
            values = self._translated_values(document, mapping)
            self._document_translations.setdefault(handle, {})[used] = values
            self._original_translated_data.setdefault(handle, {})[used] = dict(values)
        if handle in self._original_data:
            original = self._original_data[handle]
            for name in mapping.translatable_fields:
                original[name] = _copy_value(mapping.get_value(document, name))
            if mapping.locale_mapping:
                original[mapping.locale_mapping] = used

        self._cascade_translation(document, mapping, used)
        self._fire(events.POST_LOAD_TRANSLATION, document, locale=used)
        return used

    def _load_translation_data(
        self,
        document: Document,
        mapping: DocumentMapping,
        handle: int,
        locale: str,
        current: Optional[str],
        fallback: bool,
        refresh: bool,
    ) -> Tuple[str, bool]:
        pending = self._document_translations.get(handle, {})
        if not refresh and pending.get(locale) is not None:
            self._apply_translation(document, mapping, pending[locale])
            return locale, True

        strategy = self._translation_strategy(mapping)
        node = self._node_or_none(document)
        if node is not None and strategy.load_translation(document, node, mapping, locale):
            return locale, True
        if not fallback:
            raise MissingTranslationError(
                f"{document!r} has no translation {locale!r} and fallback was not requested"
            )

        for candidate in self._locale_chooser().get_fallback_locales(document, mapping, locale):
            if not refresh and candidate == current:
                return candidate, True
            if not refresh and pending.get(candidate) is not None:
                self._apply_translation(document, mapping, pending[candidate])
                return candidate, True
            if node is not None and strategy.load_translation(document, node, mapping, candidate):
                return candidate, True

        for name in mapping.translatable_fields:
            mapping.set_value(document, name, [] if mapping.fields[name].multivalue else None)
        return locale, False

    @staticmethod
    def _apply_translation(document: Document, mapping: DocumentMapping, data: Dict[str, Any]) -> None:
        for name, value in data.items():
            mapping.set_value(document, name, _copy_value(value))

    def _cascade_translation(self, document: Document, mapping: DocumentMapping, locale: str) -> None:
        for name, field_obj in mapping.fields.items():
            if not isinstance(field_obj, Association) or not field_obj.cascades(Cascade.TRANSLATION):
                continue
            value = mapping.get_value(document, name)
            if isinstance(value, PersistentCollection) and not value.is_initialized:
                value.set_locale(locale)
                continue
            for related in self._related_documents(value, field_obj):
                if (
                    not proxy.is_initialized(related)
                    or not related._meta.is_translatable
                    or self.get_current_locale(related) == locale
                ):
                    continue
                try:
                    self.load_translation(related, locale, fallback=True)
                except MissingTranslationError as exc:
                    self.logger.debug("No translation %s for %r: %s", locale, related, exc)
