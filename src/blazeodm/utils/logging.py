"""Structured logging helpers for BlazeODM."""

from __future__ import annotations

import logging
import os
import time
import uuid
from contextvars import ContextVar
from typing import Any, Optional

LOG_LEVEL_ENV = "BLAZEODM_LOG_LEVEL"

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


def _level_from_env() -> int:
    value = os.getenv(LOG_LEVEL_ENV)
    if not value:
        return logging.INFO
    level = logging.getLevelName(value.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"Invalid log level in {LOG_LEVEL_ENV}: {value!r}")
    return level


def configure_logging(level: Optional[int] = None) -> None:
    logger = logging.getLogger("blazeodm")
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(correlation_id)s | %(name)s | %(message)s"
    )
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())
    logger.addHandler(handler)
    logger.setLevel(level if level is not None else _level_from_env())


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(f"blazeodm.{name}")


def set_correlation_id(value: Optional[str] = None) -> str:
    token = value or str(uuid.uuid4())
    _correlation_id.set(token)
    return token


def get_correlation_id() -> str:
    cid = _correlation_id.get()
    if cid is None:
        cid = set_correlation_id()
    return cid


def time_call(name: str, logger: logging.Logger, *, threshold_ms: int = 100, **details: Any):
    """
    Time the wrapped block; slow blocks log at WARNING, the rest at DEBUG.
    """

    start = time.monotonic()

    class Timer:
        elapsed_ms = 0.0

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            self.elapsed_ms = (time.monotonic() - start) * 1000
            level = logging.WARNING if self.elapsed_ms >= threshold_ms else logging.DEBUG
            extra = {"elapsed_ms": self.elapsed_ms, "details": details}
            logger.log(level, "%s took %.2fms", name, self.elapsed_ms, extra=extra)

    return Timer()
