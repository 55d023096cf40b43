"""
Translation support: locale selection and translation storage strategies.
"""

from .locale_chooser import LocaleChooser
from .strategies import (
    AttributeTranslationStrategy,
    ChildTranslationStrategy,
    TranslationStrategy,
    default_strategies,
)

__all__ = [
    "AttributeTranslationStrategy",
    "ChildTranslationStrategy",
    "LocaleChooser",
    "TranslationStrategy",
    "default_strategies",
]
