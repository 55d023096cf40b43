"""
Core building blocks for BlazeODM documents and mapping metadata.
"""

from .class_mapper import DocumentClassMapper
from .document import Document, DocumentMapping, DocumentMeta, Generic
from .fields import (
    BooleanField,
    DateTimeField,
    Depth,
    Field,
    FloatField,
    Id,
    IntegerField,
    Locale,
    Nodename,
    StringField,
    Uuid,
    VersionCreated,
    VersionName,
)
from .relations import (
    Cascade,
    Child,
    Children,
    ParentDocument,
    ReferenceMany,
    ReferenceOne,
    Referrers,
    document_registry,
)

__all__ = [
    "BooleanField",
    "Cascade",
    "Child",
    "Children",
    "DateTimeField",
    "Depth",
    "Document",
    "DocumentClassMapper",
    "DocumentMapping",
    "DocumentMeta",
    "Field",
    "FloatField",
    "Generic",
    "Id",
    "IntegerField",
    "Locale",
    "Nodename",
    "ParentDocument",
    "ReferenceMany",
    "ReferenceOne",
    "Referrers",
    "StringField",
    "Uuid",
    "VersionCreated",
    "VersionName",
    "document_registry",
]
