"""
Locale selection and fallback order for translated documents.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from ..errors import MissingTranslationError

if TYPE_CHECKING:
    from ..core.document import DocumentMapping


class LocaleChooser:
    """
    Holds the current locale and, per locale, the locales to fall back to.

    ``preferences`` maps every available locale to its fallback order, e.g.
    ``{"en": ["de", "fr"], "de": ["en"], "fr": ["en"]}``; it must contain
    ``default_locale``.
    """

    def __init__(self, preferences: Dict[str, Sequence[str]], default_locale: str) -> None:
        self.default_locale = default_locale
        self._locale: Optional[str] = None
        self.preferences: Dict[str, List[str]] = {}
        self.set_preferences(preferences)

    def set_preferences(self, preferences: Dict[str, Sequence[str]]) -> None:
        if self.default_locale not in preferences:
            raise MissingTranslationError(
                f"The supplied list of locales does not contain {self.default_locale!r}"
            )
        self.preferences = {locale: list(order) for locale, order in preferences.items()}

    def set_fallback_locales(self, locale: str, order: Sequence[str], replace: bool = False) -> None:
        """Set the fallbacks of ``locale``; previous entries are kept at the end unless ``replace``."""
        order = list(order)
        if not replace:
            for previous in self.preferences.get(locale, []):
                if previous not in order:
                    order.append(previous)
        self.preferences[locale] = order

    def get_fallback_locales(
        self, document: Any = None, mapping: Optional["DocumentMapping"] = None, for_locale: Optional[str] = None
    ) -> List[str]:
        if for_locale is None:
            return list(self.preferences[self.get_locale()])
        try:
            return list(self.preferences[for_locale])
        except KeyError:
            raise MissingTranslationError(f"There is no fallback for locale {for_locale!r}") from None

    def get_default_locales_order(self) -> List[str]:
        return [self.default_locale, *self.preferences[self.default_locale]]

    def get_locale(self) -> str:
        return self._locale or self.default_locale

    def set_locale(self, locale: str) -> None:
        if locale not in self.preferences:
            # "de_CH" falls back to "de" when only the language is configured
            base = locale[:2]
            if base not in self.preferences:
                raise MissingTranslationError(f"The locale {locale!r} is not one of the available locales")
            locale = base
        self._locale = locale

    @property
    def locales(self) -> List[str]:
        return list(self.preferences)
