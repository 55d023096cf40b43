"""
Persistence layer: identity map, unit of work and the document manager.
"""

from .collections import ChildrenCollection, PersistentCollection, ReferenceManyCollection, ReferrersCollection
from .identity_map import DocumentState, IdentityMap
from .manager import Configuration, DocumentManager
from .transaction import TransactionManager
from .unit_of_work import ChangeSet, UnitOfWork

__all__ = [
    "ChangeSet",
    "ChildrenCollection",
    "Configuration",
    "DocumentManager",
    "DocumentState",
    "IdentityMap",
    "PersistentCollection",
    "ReferenceManyCollection",
    "ReferrersCollection",
    "TransactionManager",
    "UnitOfWork",
]
