"""
BlazeODM public package initialization.

This module exposes the primary public APIs: document declaration, the
document manager and the bundled node sessions.
"""

from .core import (  # noqa: F401
    BooleanField,
    Cascade,
    Child,
    Children,
    DateTimeField,
    Depth,
    Document,
    FloatField,
    Generic,
    Id,
    IntegerField,
    Locale,
    Nodename,
    ParentDocument,
    ReferenceMany,
    ReferenceOne,
    Referrers,
    StringField,
    Uuid,
    VersionCreated,
    VersionName,
)
from .errors import (  # noqa: F401
    BlazeODMError,
    CascadeError,
    ClassMismatchError,
    DocumentManagerClosedError,
    IdentifierError,
    IllegalMoveError,
    InvalidDocumentError,
    MappingError,
    MissingTranslationError,
    TranslationError,
)
from .hooks import events, hooks  # noqa: F401
from .persistence import Configuration, DocumentManager, DocumentState  # noqa: F401
from .storage import MemoryNodeSession, SQLiteNodeSession, StoreConfig, open_session  # noqa: F401
from .translation import AttributeTranslationStrategy, ChildTranslationStrategy, LocaleChooser  # noqa: F401

__all__ = [
    "AttributeTranslationStrategy",
    "BlazeODMError",
    "BooleanField",
    "Cascade",
    "CascadeError",
    "Child",
    "ChildTranslationStrategy",
    "Children",
    "ClassMismatchError",
    "Configuration",
    "DateTimeField",
    "Depth",
    "Document",
    "DocumentManager",
    "DocumentManagerClosedError",
    "DocumentState",
    "FloatField",
    "Generic",
    "Id",
    "IdentifierError",
    "IllegalMoveError",
    "IntegerField",
    "InvalidDocumentError",
    "Locale",
    "LocaleChooser",
    "MappingError",
    "MemoryNodeSession",
    "MissingTranslationError",
    "Nodename",
    "ParentDocument",
    "ReferenceMany",
    "ReferenceOne",
    "Referrers",
    "SQLiteNodeSession",
    "StoreConfig",
    "StringField",
    "TranslationError",
    "Uuid",
    "VersionCreated",
    "VersionName",
    "events",
    "hooks",
    "open_session",
]
