"""
Lazy stand-ins for documents that are referenced but not yet loaded.

A proxy is an ordinary instance of the document class whose only populated
field is the identifier. The first descriptor access calls its loader, which
fills the remaining fields from the node.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Type

if TYPE_CHECKING:
    from ..core.document import Document
    from .unit_of_work import UnitOfWork

PROXY_ATTRIBUTE = "_blaze_proxy"


def make_proxy(document_class: Type["Document"], loader: Callable[["Document"], None]) -> "Document":
    proxy = document_class._meta.new_instance()
    proxy._proxy_loader = loader
    proxy.__dict__[PROXY_ATTRIBUTE] = True
    return proxy


def is_proxy(document: Any) -> bool:
    return bool(getattr(document, "__dict__", {}).get(PROXY_ATTRIBUTE))


def is_initialized(document: Any) -> bool:
    """False only for proxies whose loader has not run yet."""
    return getattr(document, "__dict__", {}).get("_proxy_loader") is None


def initialize(document: Any) -> None:
    if not is_initialized(document):
        document._ensure_loaded()


class ProxyFactory:
    """
    Creates proxies whose loaders refresh them through a unit of work.
    """

    def __init__(self, uow: "UnitOfWork") -> None:
        self.uow = uow

    def get_proxy(self, document_class: Type["Document"], id: str) -> "Document":
        proxy = make_proxy(document_class, self.uow.refresh_document_for_proxy)
        document_class._meta.set_identifier_value(proxy, id)
        return proxy
