"""
Resolution of stored type tags to document classes.
"""

from __future__ import annotations

from typing import Optional, Type

from ..errors import ClassMismatchError
from ..storage.base import Node, PropertyType
from .document import Document, Generic
from .relations import DocumentRegistry, document_registry

CLASS_PROPERTY = "blaze:class"
CLASS_PARENTS_PROPERTY = "blaze:classparents"


class DocumentClassMapper:
    """
    Maps nodes to document classes through the type tag written on insert.

    Unknown or missing tags resolve to :class:`Generic` unless a class was
    requested explicitly.
    """

    def __init__(
        self,
        registry: DocumentRegistry = document_registry,
        *,
        class_property: str = CLASS_PROPERTY,
        validate_class_names: bool = True,
    ) -> None:
        self.registry = registry
        self.class_property = class_property
        self.validate_class_names = validate_class_names

    def stored_class(self, node: Node) -> Optional[Type[Document]]:
        tag = node.get_property_value(self.class_property)
        if not tag:
            return None
        return self.registry.resolve_tag(tag)

    def resolve_class(self, node: Node, requested: Optional[Type[Document]] = None) -> Type[Document]:
        stored = self.stored_class(node)
        if requested is None or requested is Generic:
            return stored or requested or Generic
        if stored is None:
            return requested
        if issubclass(stored, requested):
            return stored
        if self.validate_class_names:
            raise ClassMismatchError(
                f"Node {node.path} holds a {stored.__name__}, not a {requested.__name__}"
            )
        return requested

    def validate_class_name(self, document: Document, requested: Optional[Type[Document]]) -> None:
        if requested is None or not self.validate_class_names:
            return
        if not isinstance(document, requested):
            raise ClassMismatchError(
                f"Document {document!r} is a {type(document).__name__}, not a {requested.__name__}"
            )

    def write_metadata(self, node: Node, document_class: Type[Document]) -> None:
        if document_class is Generic:
            return
        node.set_property(self.class_property, document_class._meta.type_tag, PropertyType.STRING)
        parents = [
            base._meta.type_tag
            for base in document_class.__mro__[1:]
            if isinstance(base, type) and issubclass(base, Document) and base is not Document
            and not base._meta.abstract
        ]
        if parents:
            node.set_property(CLASS_PARENTS_PROPERTY, parents, PropertyType.STRING)
