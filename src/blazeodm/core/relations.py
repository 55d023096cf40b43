"""
Association descriptors, cascade flags and the document registry.
"""

from __future__ import annotations

from enum import IntFlag
from typing import Any, Dict, Iterable, Optional, Type

from ..errors import MappingError
from .fields import Field

REFERENCE_STRATEGIES = ("weak", "hard", "path")


class Cascade(IntFlag):
    NONE = 0
    PERSIST = 1
    REMOVE = 2
    MERGE = 4
    DETACH = 8
    REFRESH = 16
    TRANSLATION = 32
    ALL = PERSIST | REMOVE | MERGE | DETACH | REFRESH | TRANSLATION

    @classmethod
    def parse(cls, value: Any) -> "Cascade":
        """
        Accept flags, ints, a keyword such as ``"persist"`` or a list of keywords.
        """

        if value is None:
            return cls.NONE
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            value = [value]
        flags = cls.NONE
        for keyword in value:
            try:
                flags |= cls[str(keyword).strip().upper()]
            except KeyError:
                raise MappingError(f"Unsupported cascade keyword {keyword!r}") from None
        return flags


class Association(Field):
    """
    Base class for fields pointing at other documents.
    """

    property_type = None

    def __init__(self, target: Type | str | None = None, *, cascade: Any = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.target = target
        self.cascade = Cascade.parse(cascade)

    def clean(self, value: Any) -> Any:
        return value

    def default_property(self, name: str) -> Optional[str]:
        return None

    def cascades(self, flag: Cascade) -> bool:
        return bool(self.cascade & flag)

    def resolve_target(self) -> Optional[Type]:
        if self.target is None or isinstance(self.target, type):
            return self.target
        return document_registry.resolve(self.target)


class ParentDocument(Association):
    """The document owning the parent node."""

    kind = "parent"


class Child(Association):
    """A single named child node."""

    kind = "child"

    def __init__(self, nodename: Optional[str] = None, *, cascade: Any = None, **kwargs: Any) -> None:
        super().__init__(cascade=cascade, **kwargs)
        self.nodename = nodename

    def bind(self, document: type, name: str) -> None:
        super().bind(document, name)
        if self.nodename is None:
            self.nodename = name


class Children(Association):
    """
    The ordered child nodes, keyed by node name.

    ``filter`` is a glob (``"a*|b*"``) limiting which child names belong here.
    """

    kind = "children"

    def __init__(self, filter: Optional[str] = None, *, fetch_depth: Optional[int] = None, cascade: Any = None, **kwargs: Any) -> None:
        super().__init__(cascade=cascade, **kwargs)
        self.filter = filter
        self.fetch_depth = fetch_depth


class Reference(Association):
    """
    Reference to other documents stored as a property.

    ``strategy`` is ``"weak"`` (default), ``"hard"`` (integrity enforced by the
    store) or ``"path"``.
    """

    many = False

    def __init__(
        self,
        target: Type | str | None = None,
        *,
        strategy: str = "weak",
        property: Optional[str] = None,
        cascade: Any = None,
        **kwargs: Any,
    ) -> None:
        if strategy not in REFERENCE_STRATEGIES:
            raise MappingError(
                f"Unknown reference strategy {strategy!r}; expected one of {', '.join(REFERENCE_STRATEGIES)}"
            )
        super().__init__(target, cascade=cascade, property=property, **kwargs)
        self.strategy = strategy

    def default_property(self, name: str) -> Optional[str]:
        return name


class ReferenceOne(Reference):
    kind = "reference_one"


class ReferenceMany(Reference):
    kind = "reference_many"
    many = True


class Referrers(Association):
    """
    Documents of class ``referring`` whose ``referenced_by`` reference points here.
    """

    kind = "referrers"

    def __init__(self, referring: Type | str, referenced_by: str, *, cascade: Any = None, **kwargs: Any) -> None:
        super().__init__(referring, cascade=cascade, **kwargs)
        self.referenced_by = referenced_by

    def referencing_field(self) -> Reference:
        referring = self.resolve_target()
        if referring is None:
            raise MappingError(f"Unknown referring document {self.target!r} for '{self.name}'")
        field = referring._meta.fields.get(self.referenced_by)
        if not isinstance(field, Reference):
            raise MappingError(
                f"'{self.referenced_by}' on {referring.__name__} is not a reference field"
            )
        return field


class DocumentRegistry:
    """
    Closed set of known document classes, keyed by type tag and class name.
    """

    def __init__(self) -> None:
        self.by_tag: Dict[str, Type] = {}
        self.by_name: Dict[str, Type] = {}

    def register(self, document: Type) -> None:
        self.by_tag[document._meta.type_tag] = document
        self.by_name[document.__name__] = document

    def resolve(self, target: str) -> Optional[Type]:
        if target in self.by_tag:
            return self.by_tag[target]
        return self.by_name.get(target.split(".")[-1])

    def resolve_tag(self, tag: str) -> Optional[Type]:
        return self.by_tag.get(tag)

    def documents(self) -> Iterable[Type]:
        return list(self.by_tag.values())


document_registry = DocumentRegistry()
