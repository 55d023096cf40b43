"""
Storage strategies for translated fields.

A strategy reads and writes the translated fields of one locale on the
document's node. The unit of work decides which locale to load or save; the
strategy only knows where the values live.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..storage.base import Node, PathNotFoundError
from ..utils import get_logger, paths

if TYPE_CHECKING:
    from ..core.document import Document, DocumentMapping


class TranslationStrategy:
    """Interface shared by the translation strategies."""

    key = ""

    def __init__(self) -> None:
        self.logger = get_logger(f"translation.{self.key}")

    def save_translation(self, data: Dict[str, Any], node: Node, mapping: "DocumentMapping", locale: str) -> None:
        raise NotImplementedError

    def load_translation(self, document: "Document", node: Node, mapping: "DocumentMapping", locale: str) -> bool:
        """Fill the translated fields of ``document``; False when ``locale`` is not stored."""
        raise NotImplementedError

    def remove_translation(self, document: "Document", node: Node, mapping: "DocumentMapping", locale: str) -> None:
        raise NotImplementedError

    def get_locales_for(self, document: "Document", node: Node, mapping: "DocumentMapping") -> List[str]:
        raise NotImplementedError

    def remove_all_translations(self, document: "Document", node: Node, mapping: "DocumentMapping") -> None:
        for locale in self.get_locales_for(document, node, mapping):
            self.remove_translation(document, node, mapping, locale)

    @staticmethod
    def _reset_fields(document: "Document", mapping: "DocumentMapping", locale: str) -> None:
        for name in mapping.translatable_fields:
            mapping.set_value(document, name, None)
        if mapping.locale_mapping and mapping.get_value(document, mapping.locale_mapping) == locale:
            mapping.set_value(document, mapping.locale_mapping, None)

    @staticmethod
    def _stored_value(node: Node, mapping: "DocumentMapping", name: str, property: str) -> Any:
        value = node.get_property_value(property)
        field = mapping.fields[name]
        if field.multivalue:
            if value is None:
                return []
            return list(value) if isinstance(value, list) else [value]
        return value


class AttributeTranslationStrategy(TranslationStrategy):
    """
    Stores each locale as extra properties on the document node.

    The property of field ``title`` in ``de`` is named ``locale:de-title``.
    """

    key = "attribute"

    def __init__(self, prefix: str = "locale") -> None:
        super().__init__()
        self.prefix = prefix

    def property_name(self, locale: str, property: str) -> str:
        return f"{self.prefix}:{locale}-{property}"

    def save_translation(self, data, node, mapping, locale):
        for name in mapping.translatable_fields:
            field = mapping.fields[name]
            node.set_property(self.property_name(locale, field.property), data.get(name), field.property_type)

    def load_translation(self, document, node, mapping, locale):
        found = False
        for name in mapping.translatable_fields:
            field = mapping.fields[name]
            property = self.property_name(locale, field.property)
            if node.has_property(property):
                found = True
            mapping.set_value(document, name, self._stored_value(node, mapping, name, property))
        return found

    def remove_translation(self, document, node, mapping, locale):
        for name in mapping.translatable_fields:
            node.remove_property(self.property_name(locale, mapping.fields[name].property))
        self._reset_fields(document, mapping, locale)

    def get_locales_for(self, document, node, mapping):
        marker = f"{self.prefix}:"
        properties = {mapping.fields[name].property for name in mapping.translatable_fields}
        locales: List[str] = []
        for property in node.get_properties(marker):
            locale, _, field_property = property[len(marker) :].partition("-")
            if field_property in properties and locale not in locales:
                locales.append(locale)
        return locales


class ChildTranslationStrategy(TranslationStrategy):
    """
    Stores each locale in a child node named ``blaze_locale:<locale>``.

    Children collections never list these nodes.
    """

    key = "child"

    def node_name(self, locale: str) -> str:
        return f"{paths.LOCALE_NODE_PREFIX}{locale}"

    def _translation_node(self, node: Node, locale: str, create: bool = False) -> Optional[Node]:
        name = self.node_name(locale)
        if node.has_node(name):
            return node.get_node(name)
        if not create:
            return None
        return node.add_node(name)

    def save_translation(self, data, node, mapping, locale):
        translation = self._translation_node(node, locale, create=True)
        for name in mapping.translatable_fields:
            field = mapping.fields[name]
            translation.set_property(field.property, data.get(name), field.property_type)

    def load_translation(self, document, node, mapping, locale):
        translation = self._translation_node(node, locale)
        if translation is None:
            return False
        for name in mapping.translatable_fields:
            mapping.set_value(document, name, self._stored_value(translation, mapping, name, mapping.fields[name].property))
        return True

    def remove_translation(self, document, node, mapping, locale):
        translation = self._translation_node(node, locale)
        if translation is not None:
            try:
                translation.remove()
            except PathNotFoundError:
                self.logger.debug("Translation node %s vanished before removal", self.node_name(locale))
        self._reset_fields(document, mapping, locale)

    def get_locales_for(self, document, node, mapping):
        return [
            name[len(paths.LOCALE_NODE_PREFIX) :]
            for name in node.get_node_names()
            if paths.is_locale_node_name(name)
        ]


def default_strategies() -> Dict[str, TranslationStrategy]:
    return {
        AttributeTranslationStrategy.key: AttributeTranslationStrategy(),
        ChildTranslationStrategy.key: ChildTranslationStrategy(),
    }
