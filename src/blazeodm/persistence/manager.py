"""
Document manager coordinating the node session, unit of work and translations.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Type, TypeVar

from ..core.class_mapper import CLASS_PROPERTY, DocumentClassMapper
from ..core.document import Document
from ..errors import DocumentManagerClosedError, InvalidDocumentError, TranslationError
from ..storage.base import NodeSession, PathNotFoundError
from ..storage.config import StoreConfig, open_session
from ..translation import LocaleChooser, TranslationStrategy, default_strategies
from ..utils import get_logger, paths
from .collections import ChildrenCollection, ReferrersCollection
from .identity_map import DocumentState
from .unit_of_work import UnitOfWork

if TYPE_CHECKING:
    from ..hooks import HookDispatcher
    from ..storage.base import Node

TDocument = TypeVar("TDocument", bound=Document)

_UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def _generate_uuid() -> str:
    return str(uuid.uuid4())


@dataclass
class Configuration:
    """
    Manager-level settings.

    ``write_metadata`` stamps the document type tag on every written node;
    ``validate_class_names`` makes ``find(Cls, id)`` return ``None`` when the
    stored class is not ``Cls`` or a subclass.
    """

    write_metadata: bool = True
    validate_class_names: bool = True
    managed_mixin: str = "blaze:managed"
    class_property: str = CLASS_PROPERTY
    translation_strategies: Dict[str, TranslationStrategy] = field(default_factory=default_strategies)
    locale_chooser: Optional[LocaleChooser] = None
    uuid_generator: Callable[[], str] = _generate_uuid


class DocumentManager:
    """
    Application-facing API for loading, persisting and flushing documents.

    A manager owns one unit of work and must not be shared between threads.
    After a failed flush the manager is closed and every further call raises
    :class:`~blazeodm.errors.DocumentManagerClosedError`.
    """

    def __init__(
        self,
        session: NodeSession,
        config: Optional[Configuration] = None,
        *,
        hooks: Optional["HookDispatcher"] = None,
    ) -> None:
        self.session = session
        self.config = config or Configuration()
        if hooks is None:
            from ..hooks import hooks

        self.hooks = hooks
        self.class_mapper = DocumentClassMapper(
            class_property=self.config.class_property,
            validate_class_names=self.config.validate_class_names,
        )
        self.closed = False
        self.logger = get_logger("persistence.manager")
        self.unit_of_work = UnitOfWork(self)

    @classmethod
    def from_config(cls, store: StoreConfig | str, config: Optional[Configuration] = None, **kwargs: Any) -> "DocumentManager":
        """Open the session described by ``store`` (a :class:`StoreConfig` or a DSN)."""
        if isinstance(store, str):
            store = StoreConfig.from_dsn(store)
        manager = cls(open_session(store), config, **kwargs)
        manager.logger.info("Opened document manager on %s", store.descriptive_label())
        return manager

    # ------------------------------------------------------------------ #
    # Context management
    # ------------------------------------------------------------------ #
    def __enter__(self) -> "DocumentManager":
        self._ensure_open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None and not self.closed:
                self.flush()
        finally:
            if not self.closed:
                self.close()

    def _ensure_open(self) -> None:
        if self.closed:
            raise DocumentManagerClosedError("The document manager is closed")

    @staticmethod
    def _check_document(document: Any) -> None:
        if not isinstance(document, Document):
            raise InvalidDocumentError(f"Expected a document, got {type(document).__name__}")

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #
    def find(self, document_class: Optional[Type[TDocument]], id: str) -> Optional[TDocument]:
        """
        Return the document at path ``id`` (or with that uuid), ``None`` when missing.

        A document already in the identity map is returned as is. A stored
        class that does not match ``document_class`` also yields ``None``.
        """

        self._ensure_open()
        node = self._node_for(id, document_class)
        if isinstance(node, Document):
            return node
        if node is None:
            return None
        return self.unit_of_work.get_or_create_document(document_class, node)

    def _node_for(self, id: str, document_class: Optional[Type[Document]] = None) -> "Node | Document | None":
        uow = self.unit_of_work
        try:
            if _UUID_PATTERN.match(id):
                node = self.session.get_node_by_identifier(id)
                id = node.path
            else:
                id = paths.normalize(id)
                node = None
        except PathNotFoundError:
            return None

        document = uow.get_document_by_id(id)
        if document is not None:
            if uow.is_scheduled_for_removal(document):
                return None
            if document_class is not None and not isinstance(document, document_class):
                self.logger.debug("%s is a %s, not a %s", id, type(document).__name__, document_class.__name__)
                return None
            return document
        if node is not None:
            return node
        try:
            return self.session.get_node(id)
        except PathNotFoundError:
            return None

    def find_many(self, document_class: Optional[Type[TDocument]], ids: Iterable[str]) -> List[TDocument]:
        """Return the found documents in the order of ``ids``; misses are skipped."""
        self._ensure_open()
        uow = self.unit_of_work
        found: Dict[str, Document] = {}
        missing: List[str] = []
        ordered: List[str] = []
        for id in ids:
            id = paths.normalize(id)
            ordered.append(id)
            document = uow.get_document_by_id(id)
            if document is None:
                missing.append(id)
            elif not uow.is_scheduled_for_removal(document) and (
                document_class is None or isinstance(document, document_class)
            ):
                found[id] = document

        if missing:
            nodes = self.session.get_nodes(missing)
            for document in uow.get_or_create_documents(document_class, nodes.values()):
                found[uow.get_document_id(document)] = document
        return [found[id] for id in ordered if id in found]  # type: ignore[misc]

    def find_translation(
        self, document_class: Optional[Type[TDocument]], id: str, locale: str, fallback: bool = True
    ) -> Optional[TDocument]:
        """
        Load the document at ``id`` with its translated fields in ``locale``.

        Without ``fallback`` a missing translation raises
        :class:`~blazeodm.errors.MissingTranslationError`.
        """

        self._ensure_open()
        self.get_locale_chooser()
        node = self._node_for(id, document_class)
        if node is None:
            return None
        if isinstance(node, Document):
            self.unit_of_work.load_translation(node, locale, fallback=fallback)
            return node  # type: ignore[return-value]
        return self.unit_of_work.get_or_create_document(document_class, node, locale=locale, fallback=fallback)

    def get_reference(self, document_class: Type[TDocument], id: str) -> TDocument:
        """Return a lazy proxy for ``id``; the node is only read on first field access."""
        self._ensure_open()
        return self.unit_of_work.get_or_create_proxy(paths.normalize(id), document_class)  # type: ignore[return-value]

    # ------------------------------------------------------------------ #
    # Scheduling
    # ------------------------------------------------------------------ #
    def persist(self, document: Document) -> None:
        self._ensure_open()
        self._check_document(document)
        self.unit_of_work.schedule_insert(document)

    def remove(self, document: Document) -> None:
        self._ensure_open()
        self._check_document(document)
        self.unit_of_work.schedule_remove(document)

    def merge(self, document: TDocument) -> TDocument:
        """Copy the state of ``document`` onto its managed copy and return that copy."""
        self._ensure_open()
        self._check_document(document)
        return self.unit_of_work.merge(document)  # type: ignore[return-value]

    def detach(self, document: Document) -> None:
        self._ensure_open()
        self._check_document(document)
        self.unit_of_work.detach(document)

    def refresh(self, document: Document) -> None:
        self._ensure_open()
        self._check_document(document)
        self.unit_of_work.refresh(document)

    def move(self, document: Document, target: str) -> None:
        """Schedule moving ``document`` (and its subtree) to the absolute path ``target``."""
        self._ensure_open()
        self._check_document(document)
        target = paths.normalize(target)
        paths.assert_valid_name(paths.basename(target))
        self.unit_of_work.schedule_move(document, target)

    def reorder(self, document: Document, source: str, target: str, before: bool = True) -> None:
        """Schedule placing child ``source`` of ``document`` before (or after) child ``target``."""
        self._ensure_open()
        self._check_document(document)
        if source == target:
            return
        self.unit_of_work.schedule_reorder(document, source, target, before)

    def flush(self, document: Any = None) -> None:
        self._ensure_open()
        self.unit_of_work.commit(document)

    commit = flush

    # ------------------------------------------------------------------ #
    # Collections
    # ------------------------------------------------------------------ #
    def get_children(
        self,
        document: Document,
        filter: Optional[str] = None,
        fetch_depth: Optional[int] = None,
        locale: Optional[str] = None,
    ) -> ChildrenCollection:
        self._ensure_open()
        self._check_document(document)
        return ChildrenCollection(self.unit_of_work, document, None, filter, fetch_depth, locale)

    def get_referrers(
        self,
        document: Document,
        type: Optional[str] = None,
        name: Optional[str] = None,
        locale: Optional[str] = None,
        referring_class: Optional[Type[Document]] = None,
    ) -> ReferrersCollection:
        """
        Documents referencing ``document``; ``type`` is ``"weak"``, ``"hard"`` or ``None`` for both.
        """

        self._ensure_open()
        self._check_document(document)
        return ReferrersCollection(self.unit_of_work, document, None, referring_class, name, type, locale)

    # ------------------------------------------------------------------ #
    # Identity
    # ------------------------------------------------------------------ #
    def contains(self, document: Document) -> bool:
        self._ensure_open()
        self._check_document(document)
        return self.unit_of_work.contains(document)

    def get_document_id(self, document: Document) -> Optional[str]:
        self._ensure_open()
        return self.unit_of_work.get_document_id(document, throw=False)

    def get_document_state(self, document: Document) -> DocumentState:
        self._ensure_open()
        return self.unit_of_work.get_document_state(document)

    def get_node_for_document(self, document: Document) -> "Node":
        self._ensure_open()
        self._check_document(document)
        return self.unit_of_work.get_node_for_document(document)

    def clear(self) -> None:
        self._ensure_open()
        self.unit_of_work.clear()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.unit_of_work.clear()
        self.logger.debug("Document manager closed")

    # ------------------------------------------------------------------ #
    # Translations
    # ------------------------------------------------------------------ #
    def get_locale_chooser(self) -> LocaleChooser:
        if self.config.locale_chooser is None:
            raise TranslationError("No locale chooser is configured")
        return self.config.locale_chooser

    def set_locale_chooser(self, chooser: LocaleChooser) -> None:
        self.config.locale_chooser = chooser

    def get_translation_strategy(self, key: Optional[str]) -> TranslationStrategy:
        try:
            return self.config.translation_strategies[key]  # type: ignore[index]
        except KeyError:
            raise TranslationError(f"You must set a valid translator strategy, {key!r} is unknown") from None

    def set_translation_strategy(self, key: str, strategy: TranslationStrategy) -> None:
        self.config.translation_strategies[key] = strategy

    def is_document_translatable(self, document: Document) -> bool:
        return document._meta.is_translatable

    def get_locales_for(self, document: Document, include_fallbacks: bool = False) -> List[str]:
        self._ensure_open()
        self._check_document(document)
        locales = self.unit_of_work.get_locales_for(document)
        if include_fallbacks:
            for locale in self.get_locale_chooser().get_fallback_locales(document, document._meta):
                if locale not in locales:
                    locales.append(locale)
        return locales

    def bind_translation(self, document: Document, locale: str) -> None:
        """Store the current translated field values as the ``locale`` translation on the next flush."""
        self._ensure_open()
        self._check_document(document)
        self.get_locale_chooser()
        self.unit_of_work.bind_translation(document, locale)

    def remove_translation(self, document: Document, locale: str) -> None:
        self._ensure_open()
        self._check_document(document)
        self.unit_of_work.remove_translation(document, locale)
