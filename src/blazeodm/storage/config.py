"""
Store configuration parsed from DSNs.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlencode, urlparse

from ..utils.redaction import redact_value
from .base import NodeSession, StoreConfigurationError
from .memory import MemoryNodeSession
from .sqlite import SQLiteNodeSession

SUPPORTED_DRIVERS = ("memory", "sqlite")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(value: str, *, key: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise StoreConfigurationError(f"Invalid boolean value for '{key}': {value!r}")


def _parse_float(value: str, *, key: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise StoreConfigurationError(f"Invalid float value for '{key}': {value!r}") from exc


@dataclass
class StoreConfig:
    """
    Normalized backing store configuration.
    """

    url: str
    driver: str = "memory"
    path: Optional[str] = None
    transactions: bool = True
    timeout: float = 5.0
    options: Dict[str, str] = field(default_factory=dict)
    source: Optional[str] = None

    @classmethod
    def from_dsn(cls, dsn: str, **kwargs: Any) -> "StoreConfig":
        """
        Build a store config from ``memory://`` or ``sqlite:///path`` DSNs.
        """

        parsed = urlparse(dsn)
        driver = parsed.scheme
        if driver not in SUPPORTED_DRIVERS:
            raise StoreConfigurationError(
                f"Unsupported store driver {driver!r}; expected one of {', '.join(SUPPORTED_DRIVERS)}"
            )
        query = {key: values[0] for key, values in parse_qs(parsed.query).items()}

        transactions = True
        if "transactions" in query:
            transactions = _parse_bool(query.pop("transactions"), key="transactions")
        timeout = 5.0
        if "timeout" in query:
            timeout = _parse_float(query.pop("timeout"), key="timeout")

        path = None
        if driver == "sqlite":
            path = parsed.path[1:] if parsed.path.startswith("/") else parsed.path
            if not path:
                raise StoreConfigurationError("sqlite DSN requires a database path, e.g. sqlite:///nodes.db")

        options = dict(query)
        options.update(kwargs.pop("options", None) or {})
        return cls(
            url=dsn,
            driver=driver,
            path=path,
            transactions=kwargs.pop("transactions", transactions),
            timeout=kwargs.pop("timeout", timeout),
            options=options,
            **kwargs,
        )

    @classmethod
    def from_env(cls, env_var: str, **kwargs: Any) -> "StoreConfig":
        value = os.getenv(env_var)
        if not value:
            raise StoreConfigurationError(f"Environment variable {env_var} is not set")
        return cls.from_dsn(value, source=env_var, **kwargs)

    def redacted_dsn(self) -> str:
        parsed = urlparse(self.url)
        query = {key: values[0] for key, values in parse_qs(parsed.query).items()}
        redacted_query = {key: redact_value(value, name=key) for key, value in query.items()}
        result = f"{parsed.scheme}://{parsed.netloc}{parsed.path}"
        if redacted_query:
            result += f"?{urlencode(redacted_query)}"
        return result

    def descriptive_label(self) -> str:
        redacted = self.redacted_dsn()
        if self.source:
            return f"{self.source} ({redacted})"
        return redacted


def open_session(config: StoreConfig | str) -> NodeSession:
    """
    Create the node session described by ``config`` (a config or a DSN).
    """

    if isinstance(config, str):
        config = StoreConfig.from_dsn(config)
    if config.driver == "sqlite":
        return SQLiteNodeSession(
            config.path or ":memory:",
            timeout=config.timeout,
            supports_transactions=config.transactions,
        )
    return MemoryNodeSession(supports_transactions=config.transactions)
