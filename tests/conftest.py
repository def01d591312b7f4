import logging
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from ajournal.config import Config
from ajournal.storage import Storage

CREDENTIAL_VARIABLES = (
    "ANTHROPIC_API_KEY",
    "SLACK_USER_TOKEN",
    "SLACK_WORKSPACE",
    "GITHUB_TOKEN",
    "GOOGLE_CREDENTIALS_PATH",
    "JIRA_API_TOKEN",
    "AJOURNAL_CONFIG",
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Run every test in its own directory with no real credentials around.

    main() reconfigures the root logger, so its handlers are put back afterwards.
    """
    monkeypatch.chdir(tmp_path)
    for name in CREDENTIAL_VARIABLES:
        monkeypatch.delenv(name, raising=False)

    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def config(tmp_path):
    cfg = Config(path=tmp_path / "config.yaml")
    cfg.set("storage.data_dir", str(tmp_path / "data"))
    cfg.set("storage.sync_state_file", str(tmp_path / "data" / "sync-state.json"))
    cfg.set("storage.raw_data_dir", str(tmp_path / "data" / "raw-data"))
    cfg.set("storage.google_token_file", str(tmp_path / "data" / "google-token.json"))
    cfg.set("journal.output_dir", str(tmp_path / "data" / "journals"))
    cfg.set("journal.timezone", "UTC")
    cfg.set("secrets.base_path", str(tmp_path / "secrets"))
    # No sleeping in tests
    cfg.set("integrations.slack.rate_limit_delay", 0)
    cfg.set("integrations.slack.thread_delay", 0)
    return cfg


@pytest.fixture
def storage(config):
    store = Storage(config)
    store.init()
    return store


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def claude_reply(text: str) -> MagicMock:
    """Shape of anthropic's messages.create() return value that we read."""
    message = MagicMock()
    message.content = [MagicMock(text=text)]
    return message
