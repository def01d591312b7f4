from datetime import date

import pytest

from ajournal.errors import ConfigurationError, IntegrationError
from ajournal.integrations import GCalIntegration, GitHubIntegration, Integration
from ajournal.sync import build_integrations, dates_back, generate_journals, run_all, run_sync

from conftest import utc


class FakeIntegration(Integration):
    def __init__(self, config, storage, name, records):
        self.name = name
        self.label = name.title()
        super().__init__(config, storage)
        self.records = records
        self.windows = []

    def fetch_activities(self, start, end):
        self.windows.append((start, end))
        return self.records


def disable_all(config):
    for name in ("slack", "github", "gcal", "jira"):
        config.set(f"integrations.{name}.enabled", False)


def test_unknown_integration(config, storage):
    with pytest.raises(IntegrationError, match="Unknown integration: trello"):
        build_integrations(config, storage, "trello")


def test_disabled_integrations_are_skipped(config, storage, monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_abc")
    config.set("integrations.slack.enabled", False)

    built = build_integrations(config, storage)

    assert [type(i) for i in built] == [GitHubIntegration, GCalIntegration]
    assert [type(i) for i in build_integrations(config, storage, "gcal")] == [GCalIntegration]
    assert build_integrations(config, storage, "jira") == []


def test_missing_credentials_stop_the_run(config, storage):
    with pytest.raises(ConfigurationError):
        build_integrations(config, storage, "slack")


def test_run_sync_collects_counts(config, storage):
    slack = FakeIntegration(config, storage, "slack", [{"timestamp": "2024-01-15T10:00:00Z"}] * 3)
    github = FakeIntegration(config, storage, "github", [])
    start, end = utc(2024, 1, 15), utc(2024, 1, 16)

    result = run_sync(config, storage, start=start, end=end, integrations=[slack, github])

    assert result.counts == {"slack": 3, "github": 0}
    assert result.total == 3
    assert result.output == "Slack: 3 activities\nGithub: 0 activities"
    assert slack.windows == [(start, end)]
    assert len(storage.get_raw_data("slack", "2024-01-15")["data"]) == 3


def test_run_sync_default_window(config, storage):
    fake = FakeIntegration(config, storage, "slack", [])

    run_sync(config, storage, days=3, integrations=[fake])

    start, end = fake.windows[0]
    assert (end - start).days == 3


def test_dates_back():
    assert dates_back(3, date(2024, 3, 1)) == [date(2024, 3, 1), date(2024, 2, 29), date(2024, 2, 28)]
    assert dates_back(0, date(2024, 3, 1)) == [date(2024, 3, 1)]


def test_generate_journals_skips_empty_days(config, storage):
    storage.save_raw_data("github", "2024-01-15", [
        {"type": "pr_created", "title": "Add importer", "repository": "octo/api", "timestamp": "2024-01-15T09:30:00Z"},
    ])

    paths = generate_journals(config, storage, [date(2024, 1, 16), date(2024, 1, 15)])

    assert paths == [storage.daily_journal_path(date(2024, 1, 15))]
    assert "# Work Summary for 2024-01-15" in paths[0].read_text()


def test_run_all_generates_each_day_in_window(config, storage):
    disable_all(config)
    for day in ("2024-01-15", "2024-01-16"):
        storage.save_raw_data("gcal", day, [
            {"type": "calendar_event", "title": "Standup", "eventType": "standup", "duration": 15,
             "timestamp": f"{day}T10:00:00+00:00"},
        ])

    result, paths = run_all(config, storage, start=utc(2024, 1, 15), end=utc(2024, 1, 16, 12))

    assert result.total == 0
    assert [p.name for p in paths] == ["2024-01-16.md", "2024-01-15.md"]
