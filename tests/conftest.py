"""Shared pytest fixtures for the ISP bot tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

# Settings read at call time; a developer's shell must not leak into tests
_ENV_VARS = (
    "APP_ENV",
    "EVOLUTION_WEBHOOK_SECRET",
    "MESSAGE_LOG_BACKEND",
    "BOT_TIMEZONE",
    "DB_PASSWORD",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Drop bot settings from the environment for every test."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
