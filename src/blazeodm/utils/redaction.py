"""Redaction helpers for store DSNs and logged node properties."""

from __future__ import annotations

from typing import Any, Mapping

REDACTED_VALUE = "***"

_SENSITIVE_NAME_TOKENS = (
    "password",
    "passwd",
    "pwd",
    "secret",
    "token",
    "apikey",
    "accesskey",
    "privatekey",
    "credential",
)

_SENSITIVE_VALUE_TOKENS = (
    "password=",
    "secret=",
    "token=",
    "bearer ",
    "authorization:",
)


def _compact(value: str) -> str:
    return "".join(ch for ch in value.lower() if ch.isalnum())


def is_sensitive_name(name: str) -> bool:
    """Property and option names such as ``user-password`` or ``apiKey``."""
    compact = _compact(name)
    return any(token in compact for token in _SENSITIVE_NAME_TOKENS)


def is_sensitive_value(value: str) -> bool:
    normalized = value.lower()
    return any(token in normalized for token in _SENSITIVE_VALUE_TOKENS)


def redact_value(value: Any, *, name: str | None = None) -> Any:
    if name is not None and is_sensitive_name(str(name)):
        return REDACTED_VALUE
    if isinstance(value, Mapping):
        return {key: redact_value(item, name=str(key)) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(redact_value(item) for item in value)
    if isinstance(value, str) and is_sensitive_value(value):
        return REDACTED_VALUE
    return value


def redact_properties(properties: Mapping[str, Any]) -> dict[str, Any]:
    return {name: redact_value(value, name=name) for name, value in properties.items()}
