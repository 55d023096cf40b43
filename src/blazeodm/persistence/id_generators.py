"""
Identifier generation strategies.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Dict, Optional, Type

from ..errors import IdentifierError, MappingError
from ..utils import paths

if TYPE_CHECKING:
    from ..core.document import Document, DocumentMapping
    from .unit_of_work import UnitOfWork


def generate_node_name() -> str:
    return uuid.uuid4().hex[:16]


class IdGenerator:
    """
    Base strategy; ``generate`` returns the absolute path of a new document.
    """

    name = ""

    def generate(
        self,
        document: "Document",
        mapping: "DocumentMapping",
        uow: "UnitOfWork",
        parent: Optional["Document"] = None,
    ) -> str:
        raise NotImplementedError

    @staticmethod
    def _parent_of(document: "Document", mapping: "DocumentMapping", parent: Optional["Document"]) -> Optional["Document"]:
        if parent is None and mapping.parent_mapping:
            parent = mapping.get_value(document, mapping.parent_mapping)
        return parent

    @staticmethod
    def build_id(document: "Document", uow: "UnitOfWork", parent: "Document", name: str) -> str:
        parent_id = uow.get_document_id(parent, throw=False)
        if not parent_id:
            raise IdentifierError(
                f"Parent id for {type(document).__name__} named {name!r} could not be determined. "
                "Persist the parent document first."
            )
        return paths.join(parent_id, name)


class AssignedIdGenerator(IdGenerator):
    """Uses the id set on the document."""

    name = "assigned"

    def generate(self, document, mapping, uow, parent=None):
        id = mapping.get_identifier_value(document)
        if not id:
            raise IdentifierError(
                f"No id found on {type(document).__name__}; set the '{mapping.identifier}' field "
                "to the path where the document should be stored."
            )
        return paths.normalize(id)


class ParentIdGenerator(IdGenerator):
    """Builds ``{parent id}/{nodename}``, falling back to an assigned id."""

    name = "parent"

    def generate(self, document, mapping, uow, parent=None):
        parent = self._parent_of(document, mapping, parent)
        name = mapping.get_value(document, mapping.nodename) if mapping.nodename else None
        id = mapping.get_identifier_value(document)

        if not id:
            if not name and parent is None:
                raise IdentifierError(
                    f"{type(document).__name__} has no id, parent or nodename to derive an id from"
                )
            if parent is None:
                raise IdentifierError(f"{type(document).__name__} has a nodename but no parent")
            if not name:
                raise IdentifierError(f"{type(document).__name__} has a parent but no nodename")

        if parent is None or not name:
            return paths.normalize(id)

        paths.assert_valid_name(name)
        return self.build_id(document, uow, parent, name)


class AutoIdGenerator(IdGenerator):
    """Generates a unique node name below the parent."""

    name = "auto"

    def generate(self, document, mapping, uow, parent=None):
        parent = self._parent_of(document, mapping, parent)
        id = mapping.get_identifier_value(document)
        if not id and parent is None:
            raise IdentifierError(f"{type(document).__name__} has neither an id nor a parent")
        if parent is None:
            return paths.normalize(id)

        existing = set(uow.existing_child_names(parent))
        name = generate_node_name()
        while name in existing:
            name = generate_node_name()
        return self.build_id(document, uow, parent, name)


class RepositoryIdGenerator(IdGenerator):
    """Delegates to the document class' ``generate_id(document, parent_id)``."""

    name = "repository"

    def generate(self, document, mapping, uow, parent=None):
        generator = mapping.repository_generator()
        if generator is None:
            raise MappingError(f"{type(document).__name__} defines no generate_id classmethod")
        parent = self._parent_of(document, mapping, parent)
        parent_id = uow.get_document_id(parent, throw=False) if parent is not None else None
        id = generator(document, parent_id)
        if not id:
            raise IdentifierError(f"generate_id of {type(document).__name__} returned no id")
        return paths.normalize(id)


GENERATORS: Dict[str, Type[IdGenerator]] = {
    generator.name: generator
    for generator in (AssignedIdGenerator, ParentIdGenerator, AutoIdGenerator, RepositoryIdGenerator)
}


def create_generator(name: str) -> IdGenerator:
    try:
        return GENERATORS[name]()
    except KeyError:
        raise MappingError(f"Id generator {name!r} does not exist") from None
