"""
Document base classes and mapping orchestration for BlazeODM.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Optional, Tuple, Type, TypeVar

from ..errors import MappingError
from .fields import Field, Id, Nodename
from .relations import Association, Children, ParentDocument, document_registry

ID_GENERATORS = ("assigned", "parent", "auto", "repository")
VERSIONING_MODES = (None, "simple", "full")

_SINGLE_KINDS = {
    "id": "identifier",
    "nodename": "nodename",
    "parent": "parent_mapping",
    "uuid": "uuid_field",
    "locale": "locale_mapping",
    "depth": "depth_field",
    "version_name": "version_name_field",
    "version_created": "version_created_field",
}

_LIST_KINDS = {
    "field": "field_mappings",
    "child": "child_mappings",
    "children": "children_mappings",
    "reference_one": "reference_mappings",
    "reference_many": "reference_mappings",
    "referrers": "referrers_mappings",
}


@dataclass
class DocumentMapping:
    """
    Class mapping calculated by :class:`DocumentMeta`.
    """

    document: Type["Document"]
    type_tag: str
    node_type: str = "nt:unstructured"
    abstract: bool = False
    id_generator: str = "assigned"
    referenceable: bool = False
    versionable: Optional[str] = None
    translator: Optional[str] = None
    mixins: Tuple[str, ...] = ()
    fields: "OrderedDict[str, Field]" = field(default_factory=OrderedDict)

    identifier: Optional[str] = None
    nodename: Optional[str] = None
    parent_mapping: Optional[str] = None
    uuid_field: Optional[str] = None
    locale_mapping: Optional[str] = None
    depth_field: Optional[str] = None
    version_name_field: Optional[str] = None
    version_created_field: Optional[str] = None

    field_mappings: List[str] = field(default_factory=list)
    child_mappings: List[str] = field(default_factory=list)
    children_mappings: List[str] = field(default_factory=list)
    reference_mappings: List[str] = field(default_factory=list)
    referrers_mappings: List[str] = field(default_factory=list)
    translatable_fields: List[str] = field(default_factory=list)

    def add_field(self, field_obj: Field) -> None:
        name = field_obj.require_name()
        if name in self.fields:
            raise MappingError(f"Duplicate field name '{name}' on document '{self.document.__name__}'")
        self.fields[name] = field_obj

        if field_obj.kind in _SINGLE_KINDS:
            slot = _SINGLE_KINDS[field_obj.kind]
            if getattr(self, slot) is not None:
                raise MappingError(
                    f"Document '{self.document.__name__}' maps more than one {field_obj.kind} field"
                )
            setattr(self, slot, name)
        else:
            getattr(self, _LIST_KINDS[field_obj.kind]).append(name)

        if field_obj.translated:
            self.translatable_fields.append(name)

    def get_field(self, name: str) -> Field:
        try:
            return self.fields[name]
        except KeyError as exc:
            raise KeyError(f"Unknown field '{name}' on document '{self.document.__name__}'") from exc

    def association(self, name: str) -> Association:
        return self.get_field(name)  # type: ignore[return-value]

    # Raw value access, bypassing descriptors and proxy loading -------------
    @staticmethod
    def get_value(document: "Document", name: str) -> Any:
        return document._field_values.get(name)

    @staticmethod
    def set_value(document: "Document", name: str, value: Any) -> None:
        document._field_values[name] = value

    def get_identifier_value(self, document: "Document") -> Optional[str]:
        return document._field_values.get(self.identifier) if self.identifier else None

    def set_identifier_value(self, document: "Document", value: Optional[str]) -> None:
        if self.identifier:
            document._field_values[self.identifier] = value

    # Introspection ----------------------------------------------------------
    @property
    def is_translatable(self) -> bool:
        return bool(self.translator) and bool(self.translatable_fields)

    @property
    def version_fields(self) -> Tuple[str, ...]:
        return tuple(name for name in (self.version_name_field, self.version_created_field) if name)

    def is_nullable(self, name: str) -> bool:
        return self.get_field(name).nullable

    def repository_generator(self) -> Optional[Callable[..., str]]:
        return getattr(self.document, "generate_id", None)

    def new_instance(self) -> "Document":
        instance = self.document.__new__(self.document)
        instance._field_values = {}
        instance._proxy_loader = None
        return instance


TDocument = TypeVar("TDocument", bound="Document")


def _inherited_option(meta: Any, base: Optional[DocumentMapping], option: str, default: Any) -> Any:
    if meta is not None and hasattr(meta, option):
        return getattr(meta, option)
    if base is not None:
        return getattr(base, option)
    return default


class DocumentMeta(type):
    """
    Metaclass collecting field descriptors into a :class:`DocumentMapping`.
    """

    def __new__(mcls, name: str, bases: tuple[type, ...], attrs: Dict[str, Any]) -> "DocumentMeta":
        if name == "Document" and not bases:
            return super().__new__(mcls, name, bases, attrs)

        declared_fields: Dict[str, Field] = {}
        for attr_name, value in list(attrs.items()):
            if isinstance(value, Field):
                declared_fields[attr_name] = attrs.pop(attr_name)

        cls = super().__new__(mcls, name, bases, attrs)

        meta = attrs.get("Meta")
        base_mapping: Optional[DocumentMapping] = next(
            (base._meta for base in bases if isinstance(getattr(base, "_meta", None), DocumentMapping)),
            None,
        )

        mapping = DocumentMapping(
            document=cls,
            type_tag=getattr(meta, "type_tag", f"{cls.__module__}.{name}"),
            node_type=_inherited_option(meta, base_mapping, "node_type", "nt:unstructured"),
            abstract=getattr(meta, "abstract", False),
            referenceable=_inherited_option(meta, base_mapping, "referenceable", False),
            versionable=_inherited_option(meta, base_mapping, "versionable", None),
            translator=_inherited_option(meta, base_mapping, "translator", None),
            mixins=tuple(_inherited_option(meta, base_mapping, "mixins", ())),
        )
        cls._meta = mapping

        if base_mapping is not None:
            for inherited in base_mapping.fields.values():
                if inherited.name not in declared_fields:
                    mapping.add_field(inherited)

        sorted_fields = sorted(declared_fields.items(), key=lambda item: item[1].creation_counter)
        for attr_name, field_obj in sorted_fields:
            field_obj.contribute_to_class(cls, attr_name)
            mapping.add_field(field_obj)

        if mapping.identifier is None:
            if "id" in mapping.fields:
                raise MappingError(
                    f"Document '{name}' defines a field named 'id' but no identifier field."
                )
            id_field = Id()
            id_field.contribute_to_class(cls, "id")
            mapping.add_field(id_field)
            mapping.fields.move_to_end("id", last=False)

        mcls._configure_id_generator(mapping, meta, base_mapping)
        mcls._validate(mapping)

        if not mapping.abstract:
            document_registry.register(cls)
        return cls

    @staticmethod
    def _configure_id_generator(mapping: DocumentMapping, meta: Any, base: Optional[DocumentMapping]) -> None:
        id_field = mapping.fields[mapping.identifier]
        strategy = getattr(id_field, "strategy", None) or getattr(meta, "id_generator", None)
        if strategy is None and base is not None and base.identifier == mapping.identifier:
            strategy = base.id_generator
        if strategy is None:
            strategy = "parent" if mapping.parent_mapping and mapping.nodename else "assigned"
        if strategy not in ID_GENERATORS:
            raise MappingError(
                f"Unknown id generator {strategy!r} on '{mapping.document.__name__}'; "
                f"expected one of {', '.join(ID_GENERATORS)}"
            )
        if strategy == "repository" and not callable(mapping.repository_generator()):
            raise MappingError(
                f"Document '{mapping.document.__name__}' uses the repository id generator "
                "but defines no generate_id(document, parent_id) classmethod"
            )
        mapping.id_generator = strategy

    @staticmethod
    def _validate(mapping: DocumentMapping) -> None:
        name = mapping.document.__name__
        if mapping.translatable_fields and not mapping.translator:
            raise MappingError(f"Document '{name}' has translated fields but no translator")
        if mapping.versionable not in VERSIONING_MODES:
            raise MappingError(f"Invalid versionable mode {mapping.versionable!r} on '{name}'")
        for field_name in mapping.translatable_fields:
            if mapping.fields[field_name].kind != "field":
                raise MappingError(f"Only scalar fields can be translated ('{field_name}' on '{name}')")


class Document(metaclass=DocumentMeta):
    """
    Base document providing the data container.

    Persistence operations are supplied by :class:`~blazeodm.DocumentManager`.
    Instances are not safe for concurrent use from multiple threads.
    """

    _meta: ClassVar[DocumentMapping]

    def __init__(self, **kwargs: Any) -> None:
        self._field_values: Dict[str, Any] = {}
        self._proxy_loader: Optional[Callable[["Document"], None]] = None

        for name, value in kwargs.items():
            if name not in self._meta.fields:
                raise TypeError(f"{type(self).__name__} got an unexpected field '{name}'")
            setattr(self, name, value)

    def __repr__(self) -> str:
        identifier = self._meta.get_identifier_value(self)
        return f"<{self.__class__.__name__} {identifier or 'unsaved'}>"

    def _ensure_loaded(self) -> None:
        loader = self.__dict__.get("_proxy_loader")
        if loader is None:
            return
        self._proxy_loader = None
        try:
            loader(self)
        except Exception:
            self._proxy_loader = loader
            raise

    @classmethod
    def register_hook(cls, event: str, handler) -> None:
        from ..hooks import hooks

        hooks.register(event, handler, document=cls)


class Generic(Document):
    """
    Fallback document for nodes without a known class.
    """

    nodename = Nodename()
    parent = ParentDocument()
    children = Children()

    class Meta:
        type_tag = "blaze:generic"
        id_generator = "parent"
