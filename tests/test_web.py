from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from ajournal.errors import ConfigurationError
from ajournal.sync import SyncResult
from ajournal.web import create_app


@pytest.fixture
def client(config):
    config.set("integrations.gcal.enabled", False)
    return TestClient(create_app(config))


def test_index_serves_the_ui(client):
    response = client.get("/")

    assert response.status_code == 200
    assert "text/html" in response.headers["content-type"]


def test_journal_list_and_detail(client, storage):
    storage.save_journal(date(2024, 1, 15), "# Work Journal - Monday, January 15, 2024\n\nBody")
    storage.save_journal(date(2024, 1, 12), "# Work Journal - Friday, January 12, 2024\n\nBody")

    journals = client.get("/api/journals").json()

    assert [j["id"] for j in journals] == ["2024-01-15", "2024-01-12"]
    assert journals[0]["title"] == "Work Journal - Monday, January 15, 2024"
    assert journals[0]["preview"].endswith("...")

    detail = client.get("/api/journals/2024-01-15").json()
    assert detail["content"].startswith("# Work Journal - Monday")
    assert detail["date"] == "2024-01-15"


def test_missing_journal_is_404(client):
    assert client.get("/api/journals/2024-01-15").status_code == 404
    assert client.get("/api/journals/not-a-date").status_code == 404
    assert client.put("/api/journals/2024-01-15", json={"content": "x"}).status_code == 404


def test_update_journal(client, storage):
    storage.save_journal(date(2024, 1, 15), "old")

    response = client.put("/api/journals/2024-01-15", json={"content": "# Edited"})

    assert response.status_code == 200
    assert response.json()["message"] == "Journal updated successfully"
    assert storage.get_journal(date(2024, 1, 15)) == "# Edited"
    assert client.put("/api/journals/2024-01-15", json={}).status_code == 400


def test_status(client, storage):
    assert client.get("/api/status").json() == {"status": "No sync data available"}

    storage.set_sync_state("github", {"username": "octo"})
    assert client.get("/api/status").json()["github"]["username"] == "octo"


def test_env_status_reports_presence_only(client, monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_secret")

    body = client.get("/api/env-status").json()

    assert body["GITHUB_TOKEN"] is True
    assert body["SLACK_USER_TOKEN"] is False
    assert "ghp_secret" not in str(body)


def test_config_hides_jira_token(client):
    settings = client.get("/api/config").json()

    assert "api_token" not in settings["integrations"]["jira"]
    assert settings["integrations"]["github"]["token"] == "${GITHUB_TOKEN}"


def test_config_update_saves(client, config):
    response = client.put("/api/config", json={"integrations": {"slack": {"max_pages": 2}}})

    assert response.status_code == 200
    assert config.get("integrations.slack.max_pages") == 2
    assert config.get("integrations.jira.api_token") == "${JIRA_API_TOKEN}"
    assert "max_pages: 2" in config.path.read_text()


def test_sync_success_and_failure(client, monkeypatch):
    calls = []

    def fake_run_sync(config, storage, days=None, integration=None):
        calls.append((days, integration))
        return SyncResult(counts={"github": 4}, messages=["GitHub: 4 activities"])

    monkeypatch.setattr("ajournal.web.run_sync", fake_run_sync)
    response = client.post("/api/sync", json={"integration": "github", "days": 2})

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Sync completed successfully", "output": "GitHub: 4 activities"}
    assert calls == [(2, "github")]

    def broken_run_sync(*args, **kwargs):
        raise ConfigurationError("Slack token not set")

    monkeypatch.setattr("ajournal.web.run_sync", broken_run_sync)
    response = client.post("/api/sync")

    assert response.status_code == 500
    assert response.json()["success"] is False
    assert response.json()["error"] == "Slack token not set"


def test_run_rejects_future_dates(client, monkeypatch):
    monkeypatch.setattr("ajournal.web.run_all", lambda *a, **k: pytest.fail("should not run"))
    future = (date.today() + timedelta(days=5)).isoformat()

    response = client.post("/api/run", json={"startDate": future})

    assert response.status_code == 400
    assert response.json()["message"] == "Cannot sync future dates"


def test_run_with_date_range(client, monkeypatch):
    seen = {}

    def fake_run_all(config, storage, days=None, start=None, end=None):
        seen.update(start=start, end=end)
        return SyncResult(messages=["Slack: 1 activities"]), []

    monkeypatch.setattr("ajournal.web.run_all", fake_run_all)
    response = client.post("/api/run", json={"startDate": "2024-01-15", "endDate": "2024-01-16"})

    assert response.status_code == 200
    assert response.json()["message"] == "Journal update completed (0 journals)"
    assert seen["start"].date() == date(2024, 1, 15)
    assert seen["end"].date() == date(2024, 1, 16)


def test_run_requires_valid_calendar_token(config):
    config.set("integrations.gcal.enabled", True)
    client = TestClient(create_app(config))

    response = client.post("/api/run", json={})

    assert response.status_code == 400
    assert response.json()["needsTokenRefresh"] is True


def test_gcal_token_status_without_credentials(client):
    body = client.get("/api/gcal-token-status").json()

    assert body["valid"] is False
    assert body["needsRefresh"] is False
    assert "GOOGLE_CREDENTIALS_PATH" in body["error"]


def test_generate_for_one_date(client, storage):
    storage.save_raw_data("github", "2024-01-15", [
        {"type": "pr_created", "title": "Add importer", "repository": "octo/api", "timestamp": "2024-01-15T09:30:00Z"},
    ])

    response = client.post("/api/generate", json={"date": "2024-01-15"})

    assert response.status_code == 200
    assert "2024-01-15.md" in response.json()["output"]
    assert storage.get_journal(date(2024, 1, 15)) is not None


def test_generate_bad_date_is_reported(client):
    response = client.post("/api/generate", json={"date": "15/01/2024"})

    assert response.status_code == 500
    assert response.json()["message"] == "Journal generation failed"


def test_saving_fetched_settings_keeps_the_jira_token(client, config):
    config.set("integrations.jira.api_token", "literal-token")
    settings = client.get("/api/config").json()
    settings["integrations"]["slack"]["max_pages"] = 2

    response = client.put("/api/config", json=settings)

    assert response.status_code == 200
    assert "literal-token" not in response.text
    assert config.get("integrations.jira.api_token") == "literal-token"
    assert config.get("integrations.slack.max_pages") == 2


def test_posted_jira_token_wins(client, config):
    config.set("integrations.jira.api_token", "old-token")

    client.put("/api/config", json={"integrations": {"jira": {"api_token": "${JIRA_API_TOKEN}"}}})

    assert config.data["integrations"]["jira"]["api_token"] == "${JIRA_API_TOKEN}"
