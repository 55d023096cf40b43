import logging

import pytest

from blazeodm.utils import logging as blaze_logging
from blazeodm.utils.logging import get_correlation_id, get_logger, set_correlation_id, time_call


def test_correlation_id_round_trip():
    token = set_correlation_id("test-token")
    assert token == "test-token"
    assert get_correlation_id() == "test-token"


def test_get_logger_is_namespaced():
    assert get_logger("persistence.unit_of_work").name == "blazeodm.persistence.unit_of_work"


def test_time_call_logs_duration(caplog):
    logger = get_logger("tests.logging")
    caplog.set_level(logging.DEBUG, logger=logger.name)
    with time_call("unit-test", logger, threshold_ms=0):
        pass
    messages = [record.message for record in caplog.records if record.name == logger.name]
    assert any("unit-test took" in message for message in messages)


def test_time_call_below_threshold_logs_at_debug(caplog):
    logger = get_logger("tests.logging.fast")
    caplog.set_level(logging.DEBUG, logger=logger.name)
    with time_call("fast-block", logger, threshold_ms=10_000, rows=3):
        pass
    record = next(record for record in caplog.records if record.name == logger.name)
    assert record.levelno == logging.DEBUG
    assert record.details == {"rows": 3}


def test_log_level_from_environment(monkeypatch):
    monkeypatch.setenv(blaze_logging.LOG_LEVEL_ENV, "debug")
    assert blaze_logging._level_from_env() == logging.DEBUG
    monkeypatch.setenv(blaze_logging.LOG_LEVEL_ENV, "loud")
    with pytest.raises(ValueError):
        blaze_logging._level_from_env()
    monkeypatch.delenv(blaze_logging.LOG_LEVEL_ENV)
    assert blaze_logging._level_from_env() == logging.INFO
