from datetime import date

import pytest
import requests

from ajournal.errors import ConfigurationError
from ajournal.integrations.jira import JiraIntegration, comment_text

from conftest import utc

BASE = "https://acme.atlassian.net/rest/api/2"


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def json(self):
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class FakeJira:
    """Routes /search by the JQL's leading clause and /issue/... by path."""

    def __init__(self, searches, issues=None, comments=None):
        self.searches = searches
        self.issues = issues or {}
        self.comments = comments or {}
        self.calls = []

    def get(self, url, params=None, timeout=None):
        path = url[len(BASE):]
        self.calls.append((path, params))
        if path == "/search":
            for prefix, issues in self.searches.items():
                if params["jql"].startswith(prefix):
                    return FakeResponse({"issues": issues})
            return FakeResponse({"issues": []})
        if path.endswith("/comment"):
            key = path.split("/")[2]
            return FakeResponse({"comments": self.comments.get(key, [])})
        key = path.split("/")[2]
        if key in self.issues:
            return FakeResponse(self.issues[key])
        return FakeResponse({"errorMessages": ["not found"]}, 404)


def ticket(key, summary, project=("API", "Platform API"), **fields):
    return {
        "key": key,
        "fields": {
            "summary": summary,
            "status": {"name": "In Progress"},
            "priority": {"name": "High"},
            "assignee": {"displayName": "Alex"},
            "reporter": {"displayName": "Alex"},
            "project": {"key": project[0], "name": project[1]},
            "issuetype": {"name": "Story"},
            "created": "2024-01-15T09:00:00.000+0000",
            **fields,
        },
    }


@pytest.fixture
def jira(config, storage):
    config.set("integrations.jira.host", "acme.atlassian.net")
    config.set("integrations.jira.username", "alex@example.com")

    def make(session, **settings):
        for key, value in settings.items():
            config.set(f"integrations.jira.{key}", value)
        return JiraIntegration(config, storage, session=session)
    return make


def test_missing_token_is_a_configuration_error(config, storage):
    with pytest.raises(ConfigurationError, match="api_token"):
        JiraIntegration(config, storage)


def test_session_is_configured_from_settings(config, storage, monkeypatch):
    monkeypatch.setenv("JIRA_API_TOKEN", "secret")
    config.set("integrations.jira.strict_ssl", False)

    integration = JiraIntegration(config, storage)

    assert integration.session.auth == ("your-email@company.com", "secret")
    assert integration.session.verify is False
    assert integration.base_url == "https://your-company.atlassian.net/rest/api/2"


def test_three_kinds_of_activity(jira):
    session = FakeJira(
        searches={
            "reporter": [ticket("API-1", "New endpoint", description="Build it")],
            "assignee": [ticket("API-2", "Fix timeout")],
            "comment": [ticket("API-3", "Discuss schema")],
        },
        issues={"API-2": {"changelog": {"histories": [
            {"created": "2024-01-15T11:00:00.000+0000",
             "items": [{"field": "status", "fromString": "To Do", "toString": "In Progress"}]},
            {"created": "2024-01-14T11:00:00.000+0000", "items": [{"field": "status"}]},
        ]}}},
        comments={"API-3": [
            {"created": "2024-01-15T12:00:00.000+0000", "body": "I think we should version it",
             "author": {"emailAddress": "alex@example.com"}},
            {"created": "2024-01-15T12:30:00.000+0000", "body": "Agreed",
             "author": {"emailAddress": "sam@example.com"}},
            {"created": "2024-01-16T08:00:00.000+0000", "body": "Tomorrow's note",
             "author": {"emailAddress": "alex@example.com"}},
        ]},
    )
    integration = jira(session)

    activities = integration.get_activities_for_date(date(2024, 1, 15))

    assert [(a["type"], a["ticketKey"]) for a in activities] == [
        ("ticket_created", "API-1"),
        ("ticket_updated", "API-2"),
        ("comment_added", "API-3"),
    ]
    created, updated, commented = activities
    assert created["description"] == "Build it"
    assert created["url"] == "https://acme.atlassian.net/browse/API-1"
    assert created["projectKey"] == "API"
    assert updated["changes"] == [{"field": "status", "from": "To Do", "to": "In Progress"}]
    assert commented["comment"] == "I think we should version it"

    jqls = [params["jql"] for path, params in session.calls if path == "/search"]
    assert jqls[0] == 'reporter = "alex@example.com" AND created >= "2024-01-15" AND created < "2024-01-16"'


def test_rich_text_bodies_become_empty(jira):
    session = FakeJira(searches={"reporter": [ticket("API-1", "New", description={"type": "doc", "content": []})]})

    [created] = jira(session, track_updated=False, track_commented=False).get_activities_for_date(date(2024, 1, 15))

    assert created["description"] == ""
    assert comment_text({"body": {"type": "doc"}}) == ""


def test_own_comment_matching(jira):
    integration = jira(FakeJira(searches={}))

    assert integration.is_own_comment({"author": {"name": "alex@example.com"}})
    assert integration.is_own_comment({"author": {"accountId": "alex@example.com"}})
    assert not integration.is_own_comment({"author": {"displayName": "alex@example.com"}})
    assert not integration.is_own_comment({})


def test_failed_lookups_contribute_nothing(jira):
    session = FakeJira(searches={"assignee": [ticket("API-9", "Gone")]})

    assert jira(session).get_activities_for_date(date(2024, 1, 15)) == []


def test_project_filters(jira):
    activities = [
        {"projectKey": "API", "project": "Platform API"},
        {"projectKey": "WEB", "project": "Website"},
        {"projectKey": "TEST-1", "project": "Sandbox"},
    ]

    assert jira(FakeJira({})).filter_activities(activities) == activities[:2]
    assert jira(FakeJira({}), include_projects=["Website"]).filter_activities(activities) == [activities[1]]
    assert jira(FakeJira({}), include_projects=[], exclude_projects=["API"]).filter_activities(activities) == [activities[1]]


def test_fetch_iterates_days(jira):
    session = FakeJira(searches={})
    jira(session).fetch_activities(utc(2024, 1, 15), utc(2024, 1, 17, 23, 59))

    created_queries = [p["jql"] for path, p in session.calls if path == "/search" and p["jql"].startswith("reporter")]
    assert len(created_queries) == 3
    assert '"2024-01-17"' in created_queries[-1]


def test_malformed_tickets_are_dropped(jira, caplog):
    session = FakeJira(searches={
        "reporter": [{"key": "API-7"}, ticket("API-1", "New endpoint")],
        "assignee": [{"fields": {"summary": "No key"}}],
        "comment": [{"key": "API-8", "fields": None}],
    })

    activities = jira(session).get_activities_for_date(date(2024, 1, 15))

    assert [a["ticketKey"] for a in activities] == ["API-1"]
    assert "Skipping malformed Jira ticket API-7" in caplog.text
    assert "Skipping malformed Jira ticket API-8" in caplog.text


def test_sync_survives_a_malformed_ticket(jira, storage):
    session = FakeJira(searches={"reporter": [{"fields": {"summary": "No key"}}, ticket("API-1", "New endpoint")]})

    saved = jira(session, track_updated=False, track_commented=False).sync(utc(2024, 1, 15), utc(2024, 1, 15, 23, 59))

    assert [a["ticketKey"] for a in saved] == ["API-1"]
    assert storage.get_raw_data("jira", "2024-01-15")["data"][0]["ticketKey"] == "API-1"


def test_unparseable_timestamps_sort_first(jira):
    session = FakeJira(searches={"reporter": [
        ticket("API-1", "Dated"),
        ticket("API-2", "Undated", created="not a date"),
    ]})

    activities = jira(session, track_updated=False, track_commented=False).get_activities_for_date(date(2024, 1, 15))

    assert [a["ticketKey"] for a in activities] == ["API-2", "API-1"]
