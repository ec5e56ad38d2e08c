"""Root test configuration for the queue purger.

Clears every environment variable the config layer reads so that a
developer's shell (or CI) cannot change default values under test.
Tests that exercise env overrides set them explicitly with monkeypatch.
"""

import pytest

_CONFIG_ENV_VARS = (
    "AMQP_CONNECTION_STRING",
    "AMQP_QUEUE_NAME",
    "AMQP_JSON_PATH",
    "PURGER_CONFIG",
    "PURGER_PORT",
    "LOG_LEVEL",
    "JSON_LOGS",
)


@pytest.fixture(autouse=True)
def clean_config_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Remove config env vars and run each test from an empty directory.

    The empty working directory keeps a stray ``.purger/config.yaml`` in the
    checkout from being picked up by load_config().
    """
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
