"""
Field definitions and descriptors for BlazeODM documents.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional, Sequence, cast

from ..errors import InvalidDocumentError, MappingError
from ..storage.base import PropertyType

if TYPE_CHECKING:
    from .document import Document


class Field:
    """
    Base class for document field descriptors.

    Values live in ``instance._field_values``; reading or writing through the
    descriptor initializes a lazy proxy first.
    """

    kind = "field"
    property_type: Optional[PropertyType] = PropertyType.STRING
    loads_proxy = True

    _creation_counter = 0

    def __init__(
        self,
        *,
        property: Optional[str] = None,
        nullable: bool = True,
        multivalue: bool = False,
        translated: bool = False,
        default: Any = None,
        choices: Optional[Sequence[Any]] = None,
        validators: Optional[Iterable[Callable[[Any], None]]] = None,
        help_text: Optional[str] = None,
    ) -> None:
        self.property = property
        self.nullable = nullable
        self.multivalue = multivalue
        self.translated = translated
        self.default = default
        self.choices = tuple(choices) if choices is not None else None
        self.validators = list(validators or [])
        self.help_text = help_text

        self.document: type["Document"] | None = None
        self.name: str | None = None
        self.creation_counter = Field._creation_counter
        Field._creation_counter += 1

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    # Descriptor protocol -------------------------------------------------
    def __get__(self, instance: object | None, owner: type | None = None) -> Any:
        if instance is None:
            return self

        document = cast("Document", instance)
        if self.loads_proxy:
            document._ensure_loaded()
        name = self.require_name()
        if name not in document._field_values:
            default = self.get_default()
            if default is not None:
                document._field_values[name] = default
            return default
        return document._field_values[name]

    def __set__(self, instance: object, value: Any) -> None:
        document = cast("Document", instance)
        if self.loads_proxy:
            document._ensure_loaded()
        document._field_values[self.require_name()] = self.clean(value)

    # Metadata helpers ----------------------------------------------------
    def bind(self, document: type["Document"], name: str) -> None:
        self.document = document
        self.name = name
        if self.property is None:
            self.property = self.default_property(name)

    def default_property(self, name: str) -> Optional[str]:
        return name

    def contribute_to_class(self, document: type["Document"], name: str) -> None:
        """
        Attach the field to the document class as a descriptor.
        """
        self.bind(document, name)
        setattr(document, name, self)

    def require_name(self) -> str:
        if self.name is None:
            raise MappingError("Field name is not set.")
        return self.name

    # Conversion / validation ---------------------------------------------
    def get_default(self) -> Any:
        if callable(self.default):
            return self.default()
        return self.default

    def clean(self, value: Any) -> Any:
        if value is None:
            return None
        if self.multivalue:
            if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
                raise InvalidDocumentError(f"Field '{self.name}' expects a list of values")
            return [self._clean_item(item) for item in value]
        return self._clean_item(value)

    def _clean_item(self, value: Any) -> Any:
        if self.choices and value not in self.choices:
            raise InvalidDocumentError(
                f"Value '{value}' for field '{self.name}' not in choices {self.choices}"
            )
        python_value = self.to_python(value)
        for validator in self.validators:
            validator(python_value)
        return python_value

    def to_python(self, value: Any) -> Any:
        return value


class StringField(Field):
    def __init__(self, *, max_length: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.max_length = max_length

    def to_python(self, value: Any) -> str:
        result = str(value)
        if self.max_length and len(result) > self.max_length:
            raise InvalidDocumentError(
                f"Value for field '{self.name}' exceeds max_length {self.max_length}"
            )
        return result


class IntegerField(Field):
    property_type = PropertyType.LONG

    def to_python(self, value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise InvalidDocumentError(f"Invalid integer value '{value}'") from exc


class FloatField(Field):
    property_type = PropertyType.DOUBLE

    def to_python(self, value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise InvalidDocumentError(f"Invalid float value '{value}'") from exc


class BooleanField(Field):
    property_type = PropertyType.BOOLEAN

    def to_python(self, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.lower()
            if lowered in {"true", "t", "1"}:
                return True
            if lowered in {"false", "f", "0"}:
                return False
        if isinstance(value, (int, float)):
            return bool(value)
        raise InvalidDocumentError(f"Invalid boolean value '{value}'")


class DateTimeField(Field):
    property_type = PropertyType.DATE

    def __init__(self, *, auto_now_add: bool = False, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.auto_now_add = auto_now_add

    def get_default(self) -> Any:
        if self.auto_now_add:
            return datetime.now(timezone.utc)
        return super().get_default()

    def to_python(self, value: Any) -> datetime:
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value)
            except ValueError:
                pass
        raise InvalidDocumentError(f"Expected datetime for field '{self.name}', received {value!r}")


# Marker fields -------------------------------------------------------------


class Id(Field):
    """
    Identifier (absolute path) of the document.

    ``strategy`` overrides the document's ``Meta.id_generator``.
    """

    kind = "id"
    property_type = None
    loads_proxy = False

    def __init__(self, *, strategy: Optional[str] = None) -> None:
        super().__init__()
        self.strategy = strategy

    def default_property(self, name: str) -> Optional[str]:
        return None


class Nodename(Field):
    """Name of the node, the last segment of the identifier."""

    kind = "nodename"
    property_type = None

    def default_property(self, name: str) -> Optional[str]:
        return None


class Uuid(Field):
    """Stable node identifier, assigned when the document is persisted."""

    kind = "uuid"
    property_type = None

    def default_property(self, name: str) -> Optional[str]:
        return "jcr:uuid"


class Depth(Field):
    """Read-only depth of the node below the root."""

    kind = "depth"
    property_type = None

    def default_property(self, name: str) -> Optional[str]:
        return None


class Locale(Field):
    """Locale the translated fields are currently loaded in."""

    kind = "locale"
    property_type = None

    def default_property(self, name: str) -> Optional[str]:
        return None


class VersionName(Field):
    kind = "version_name"
    property_type = None

    def default_property(self, name: str) -> Optional[str]:
        return None


class VersionCreated(Field):
    kind = "version_created"
    property_type = None

    def default_property(self, name: str) -> Optional[str]:
        return None
