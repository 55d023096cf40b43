"""
Error hierarchy shared by every BlazeODM package.
"""

from __future__ import annotations


class BlazeODMError(RuntimeError):
    """Base error for BlazeODM failures."""


class MappingError(BlazeODMError):
    """Raised when a document class is misconfigured."""


class InvalidDocumentError(BlazeODMError, ValueError):
    """Raised when an argument is not a usable document for the requested operation."""


class CascadeError(BlazeODMError):
    """Raised when a new document is reachable through an association without cascade persist."""


class IllegalMoveError(BlazeODMError):
    """Raised when a document is moved by assigning it to another child slot."""


class IdentifierError(BlazeODMError):
    """Raised for immutable or malformed document identifiers."""


class ClassMismatchError(BlazeODMError):
    """Raised when the class stored on a node does not match the requested class."""


class DocumentManagerClosedError(BlazeODMError):
    """Raised when a closed document manager is used."""


class TranslationError(BlazeODMError):
    """Raised for invalid translation operations."""


class MissingTranslationError(TranslationError):
    """Raised when a locale is not available."""
