"""
Handle arena and identity map ensuring a single in-memory document per id.
"""

from __future__ import annotations

import itertools
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

_arena_tokens = itertools.count(1)

HANDLES_ATTRIBUTE = "_blaze_handles"


class DocumentState(Enum):
    NEW = "new"
    MANAGED = "managed"
    REMOVED = "removed"
    DETACHED = "detached"


class IdentityMap:
    """
    Tracks documents by integer handle and by id.

    Every document the unit of work touches gets a stable handle from this
    arena; all side tables (snapshots, queues, locale state) are keyed by
    handle. The handle is remembered on the instance, per arena, so the same
    document can be handed to different managers.

    Not safe for concurrent use from multiple threads.
    """

    def __init__(self) -> None:
        self._token = next(_arena_tokens)
        self._handles = itertools.count(1)
        self._documents: Dict[int, Any] = {}
        self._states: Dict[int, DocumentState] = {}
        self._ids: Dict[int, str] = {}
        self._by_id: Dict[str, int] = {}

    # ------------------------------------------------------------------ #
    # Handles
    # ------------------------------------------------------------------ #
    def handle(self, document: Any) -> int:
        """Return the handle of ``document``, allocating one on first sight."""
        handles = document.__dict__.get(HANDLES_ATTRIBUTE)
        if handles is None:
            handles = {}
            document.__dict__[HANDLES_ATTRIBUTE] = handles
        handle = handles.get(self._token)
        if handle is None:
            handle = next(self._handles)
            handles[self._token] = handle
        return handle

    def document(self, handle: int) -> Optional[Any]:
        return self._documents.get(handle)

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #
    def register(self, document: Any, id: str) -> int:
        """
        Track ``document`` under ``id`` as MANAGED and return its handle.

        Re-registering the same instance is a no-op apart from the state.
        """

        handle = self.handle(document)
        previous = self._ids.get(handle)
        if previous is not None and previous != id and self._by_id.get(previous) == handle:
            del self._by_id[previous]
        self._documents[handle] = document
        self._ids[handle] = id
        self._by_id[id] = handle
        self._states[handle] = DocumentState.MANAGED
        return handle

    def unregister(self, handle: int) -> None:
        id = self._ids.pop(handle, None)
        if id is not None and self._by_id.get(id) == handle:
            del self._by_id[id]
        self._documents.pop(handle, None)
        self._states.pop(handle, None)

    def rekey(self, handle: int, new_id: str) -> None:
        old_id = self._ids.get(handle)
        if old_id is not None and self._by_id.get(old_id) == handle:
            del self._by_id[old_id]
        self._ids[handle] = new_id
        self._by_id[new_id] = handle

    def clear(self) -> None:
        self._documents.clear()
        self._states.clear()
        self._ids.clear()
        self._by_id.clear()

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #
    def lookup(self, id: str) -> Optional[Any]:
        handle = self._by_id.get(id)
        return self._documents.get(handle) if handle is not None else None

    def id_of(self, handle: int) -> Optional[str]:
        return self._ids.get(handle)

    def state_of(self, handle: int) -> Optional[DocumentState]:
        return self._states.get(handle)

    def set_state(self, handle: int, state: DocumentState) -> None:
        self._states[handle] = state

    def is_tracked(self, handle: int) -> bool:
        return handle in self._documents

    def items(self) -> List[Tuple[int, Any]]:
        return list(self._documents.items())

    def ids(self) -> List[Tuple[str, int]]:
        return list(self._by_id.items())

    def __len__(self) -> int:
        return len(self._documents)

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._documents.values()))

    def __contains__(self, document: Any) -> bool:
        handles = document.__dict__.get(HANDLES_ATTRIBUTE) or {}
        handle = handles.get(self._token)
        return handle is not None and handle in self._documents
