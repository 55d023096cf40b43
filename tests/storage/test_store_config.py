import pytest

from blazeodm.storage import (
    MemoryNodeSession,
    SQLiteNodeSession,
    StoreConfig,
    StoreConfigurationError,
    open_session,
)


def test_from_dsn_parses_memory_options():
    config = StoreConfig.from_dsn("memory://?transactions=false&timeout=2.5&label=test")
    assert config.driver == "memory"
    assert config.transactions is False
    assert config.timeout == 2.5
    assert config.options == {"label": "test"}


def test_from_dsn_parses_sqlite_path(tmp_path):
    config = StoreConfig.from_dsn(f"sqlite:///{tmp_path / 'nodes.db'}")
    assert config.driver == "sqlite"
    assert config.path.endswith("nodes.db")


def test_from_dsn_options_override():
    config = StoreConfig.from_dsn("memory://?label=a", options={"label": "b"})
    assert config.options["label"] == "b"


@pytest.mark.parametrize(
    "dsn",
    [
        "postgres://localhost/db",
        "memory://?transactions=maybe",
        "memory://?timeout=soon",
        "sqlite://",
    ],
)
def test_invalid_dsns_raise(dsn):
    with pytest.raises(StoreConfigurationError):
        StoreConfig.from_dsn(dsn)


def test_from_env_records_source(monkeypatch):
    monkeypatch.setenv("BLAZE_STORE", "memory://?token=abc")
    config = StoreConfig.from_env("BLAZE_STORE")
    assert config.source == "BLAZE_STORE"
    assert config.redacted_dsn() == "memory://?token=%2A%2A%2A"
    assert config.descriptive_label().startswith("BLAZE_STORE (")


def test_from_env_requires_variable(monkeypatch):
    monkeypatch.delenv("BLAZE_STORE", raising=False)
    with pytest.raises(StoreConfigurationError):
        StoreConfig.from_env("BLAZE_STORE")


def test_open_session_builds_matching_session(tmp_path):
    assert isinstance(open_session("memory://"), MemoryNodeSession)
    session = open_session(f"sqlite:///{tmp_path / 'open.db'}?transactions=false")
    assert isinstance(session, SQLiteNodeSession)
    assert session.supports_transactions is False
    session.close()
