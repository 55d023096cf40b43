"""
Hook dispatcher coordinating lifecycle events.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Type

from ..core.document import Document
from .events import ALL_EVENTS


HookHandler = Callable[..., None]


class HookDispatcher:
    """
    Maintains global and per-document-class hook handlers.

    Handlers are called as ``handler(document, **context)``; manager-level
    events pass ``None`` as the document. Per-class handlers also fire for
    subclasses.
    """

    def __init__(self) -> None:
        self._global_handlers: Dict[str, List[HookHandler]] = defaultdict(list)
        self._document_handlers: Dict[Type[Document], Dict[str, List[HookHandler]]] = defaultdict(
            lambda: defaultdict(list)
        )

    def register(self, event: str, handler: HookHandler, *, document: Optional[Type[Document]] = None) -> None:
        if event not in ALL_EVENTS:
            raise ValueError(f"Unknown lifecycle event {event!r}")
        if document:
            self._document_handlers[document][event].append(handler)
        else:
            self._global_handlers[event].append(handler)

    def handlers_for(self, event: str, document: Optional[Document]) -> List[HookHandler]:
        handlers = list(self._global_handlers.get(event, []))
        if document is not None:
            for cls in type(document).__mro__:
                handlers.extend(self._document_handlers.get(cls, {}).get(event, []))
        return handlers

    def has_handlers(self, event: str, document: Optional[Document] = None) -> bool:
        return bool(self.handlers_for(event, document))

    def fire(self, event: str, document: Optional[Document], **context: Any) -> None:
        for handler in self.handlers_for(event, document):
            handler(document, **context)

    def clear(self) -> None:
        self._global_handlers.clear()
        self._document_handlers.clear()


hooks = HookDispatcher()
