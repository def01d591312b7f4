from datetime import date

import pytest

from ajournal.config import Config
from ajournal.main import build_parser, main, parse_config_value
from ajournal.storage import Storage
from ajournal.sync import SyncResult


@pytest.fixture(autouse=True)
def saved_config(config):
    """main() loads config.yaml from the working directory (tmp_path)."""
    config.save()
    return config


def test_no_command_prints_help(capsys):
    assert main([]) == 1
    assert "usage: ajournal" in capsys.readouterr().out


def test_parse_config_value():
    assert parse_config_value("3") == 3
    assert parse_config_value("true") is True
    assert parse_config_value("[a, b]") == ["a", "b"]
    assert parse_config_value("hello") == "hello"
    assert parse_config_value("[unclosed") == "[unclosed"


def test_parser_rejects_unknown_integration():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["sync", "--integration", "trello"])


def test_config_set_parses_yaml_scalars(saved_config, capsys):
    assert main(["config", "--set", "integrations.slack.max_pages=3"]) == 0

    assert Config.load(saved_config.path).get("integrations.slack.max_pages") == 3
    assert "Set integrations.slack.max_pages = 3" in capsys.readouterr().out


def test_config_set_requires_key_value(capsys):
    assert main(["config", "--set", "no-equals-sign"]) == 1
    assert "Invalid format" in capsys.readouterr().out


def test_config_show_keeps_placeholders(monkeypatch, capsys):
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_secret")

    assert main(["config", "--show"]) == 0

    out = capsys.readouterr().out
    assert "${GITHUB_TOKEN}" in out
    assert "ghp_secret" not in out


def test_generate_rejects_bad_date(capsys):
    assert main(["generate", "--date", "2024-13-01"]) == 1
    assert "Invalid date" in capsys.readouterr().out


def test_generate_for_date(saved_config, capsys):
    Storage(saved_config).save_raw_data("github", "2024-01-15", [
        {"type": "pr_created", "title": "Add importer", "repository": "octo/api", "timestamp": "2024-01-15T09:30:00Z"},
    ])

    assert main(["generate", "--date", "2024-01-15"]) == 0
    assert "2024-01-15.md" in capsys.readouterr().out


def test_sync_prints_counts(monkeypatch, capsys):
    monkeypatch.setattr("ajournal.google_auth.validate_before_run", lambda config, storage: True)
    monkeypatch.setattr(
        "ajournal.main.run_sync",
        lambda config, storage, days=None, integration=None: SyncResult({"slack": 2}, ["Slack: 2 activities"]),
    )

    assert main(["sync", "--days", "2"]) == 0

    out = capsys.readouterr().out
    assert "Slack: 2 activities" in out
    assert "Sync completed: 2 activities." in out


def test_sync_stops_when_calendar_token_is_bad(monkeypatch, capsys):
    monkeypatch.setattr("ajournal.google_auth.validate_before_run", lambda config, storage: False)
    monkeypatch.setattr("ajournal.main.run_sync", lambda *a, **k: pytest.fail("should not sync"))

    assert main(["sync"]) == 1


def test_configuration_errors_exit_nonzero(saved_config, capsys):
    saved_config.set("integrations.gcal.enabled", False)
    saved_config.save()

    assert main(["sync", "--integration", "slack"]) == 1
    assert "Error: Slack token not set" in capsys.readouterr().out


def test_status(saved_config, capsys):
    storage = Storage(saved_config)
    storage.set_sync_state("github", {"username": "octo"})
    storage.save_journal(date(2024, 1, 15), "# Journal")

    assert main(["status"]) == 0

    out = capsys.readouterr().out
    assert "github: " in out
    assert "daily/2024/week-03/2024-01-15.md" in out


def test_migrate(saved_config, capsys):
    output_dir = Storage(saved_config).output_dir
    output_dir.mkdir(parents=True)
    (output_dir / "2024-01-15.md").write_text("# Legacy")

    assert main(["migrate"]) == 0
    assert "Migrated 1 files" in capsys.readouterr().out
    assert main(["migrate"]) == 0
    assert "No files needed migration." in capsys.readouterr().out


def test_reports(capsys):
    assert main(["weekly-report", "--date", "2024-01-15"]) == 0
    assert "No journals found for the specified week" in capsys.readouterr().out

    assert main(["monthly-report", "--month", "2024-13"]) == 1
    assert "Invalid month format" in capsys.readouterr().out
