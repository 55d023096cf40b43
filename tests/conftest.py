import pytest

from blazeodm.hooks import hooks


@pytest.fixture(autouse=True)
def clear_hooks():
    hooks.clear()
    yield
    hooks.clear()
