from unittest.mock import MagicMock

import pytest

from ajournal.integrations.gcal import GCalIntegration, categorize_event, extract_meeting_link

from conftest import utc


def event(summary, start="2024-01-15T10:00:00Z", end="2024-01-15T10:30:00Z", **extra):
    return {"summary": summary, "start": {"dateTime": start}, "end": {"dateTime": end}, **extra}


def fake_service(calendars, events_by_calendar):
    service = MagicMock()
    service.calendarList.return_value.list.return_value.execute.return_value = {"items": calendars}

    def list_events(**kwargs):
        request = MagicMock()
        request.execute.return_value = {"items": events_by_calendar.get(kwargs["calendarId"], [])}
        return request

    service.events.return_value.list.side_effect = list_events
    return service


@pytest.fixture
def gcal(config, storage):
    def make(calendars=(), events=None, **settings):
        for key, value in settings.items():
            config.set(f"integrations.gcal.{key}", value)
        return GCalIntegration(config, storage, service=fake_service(list(calendars), events or {}))
    return make


def test_categorize_event():
    assert categorize_event({"summary": "Daily Standup"}) == "standup"
    assert categorize_event({"summary": "Sprint Planning Session"}) == "planning"
    assert categorize_event({"summary": "Q1 Retro"}) == "retrospective"
    assert categorize_event({"summary": "Sync", "attendees": [{}, {}]}) == "meeting"
    assert categorize_event({"attendees": [{}]}) == "focus_time"


def test_extract_meeting_link():
    teams = "Join: https://teams.microsoft.com/l/meetup-join/19%3ameeting_abc/0?context=x then agenda"
    assert extract_meeting_link({"description": teams}) == (
        "https://teams.microsoft.com/l/meetup-join/19%3ameeting_abc/0?context=x"
    )
    assert extract_meeting_link({"location": "https://meet.google.com/abc-defg-hij"}) == (
        "https://meet.google.com/abc-defg-hij"
    )
    assert extract_meeting_link({"description": "https://acme.zoom.us/j/123456"}) == "https://acme.zoom.us/j/123456"
    assert extract_meeting_link({"description": "Room 4"}) is None


def test_event_exclusions(gcal):
    integration = gcal(exclude_events=["Lunch"], exclude_event_patterns=["ooo*"])

    assert integration.should_include_event(event("Design review"))
    assert not integration.should_include_event({"summary": "Holiday", "start": {"date": "2024-01-15"}})
    assert not integration.should_include_event({"summary": "Nothing"})
    assert not integration.should_include_event(event("Quick chat", end="2024-01-15T10:10:00Z"))
    assert not integration.should_include_event(event("lunch"))
    assert not integration.should_include_event(event("OOO - dentist"))
    declined = event("Town hall", attendees=[{"self": True, "responseStatus": "declined"}])
    assert not integration.should_include_event(declined)


def test_filter_calendars(gcal):
    calendars = [
        {"id": "me@example.com", "summary": "Work"},
        {"id": "family123@group.calendar.google.com", "summary": "Personal stuff"},
        {"id": "en.usa#holiday@group.v.calendar.google.com", "summary": "US Holidays"},
        {"id": "team@example.com", "summary": "Team birthdays"},
    ]

    assert [c["summary"] for c in gcal().filter_calendars(calendars)] == ["Work"]

    only_team = gcal(include_calendars=["team@example.com"], exclude_calendars=[], exclude_calendar_patterns=[])
    assert only_team.filter_calendars(calendars) == [calendars[3]]


def test_fetch_activities_processes_events(gcal):
    attendees = [
        {"email": "me@example.com", "self": True, "organizer": True, "responseStatus": "accepted"},
        {"email": "sam@example.com", "responseStatus": "accepted"},
        {"email": "kim@example.com", "responseStatus": "declined"},
    ]
    integration = gcal(
        calendars=[{"id": "work", "summary": "Work"}, {"id": "bday", "summary": "Birthdays"}],
        events={
            "work": [
                event("Daily Standup", attendees=attendees,
                      description="https://meet.google.com/abc-defg-hij"),
                event("Heads down", start="2024-01-15T13:00:00Z", end="2024-01-15T15:00:00Z"),
            ],
            "bday": [event("Sam's birthday")],
        },
        track_location=True,
    )

    activities = integration.fetch_activities(utc(2024, 1, 15), utc(2024, 1, 15, 23, 59))

    assert [a["title"] for a in activities] == ["Daily Standup", "Heads down"]
    standup, focus = activities
    assert standup["type"] == "calendar_event"
    assert standup["eventType"] == "standup"
    assert standup["duration"] == 30
    assert standup["attendeeCount"] == 3
    assert standup["isOrganizer"] is True
    assert standup["meetingLink"] == "https://meet.google.com/abc-defg-hij"
    assert [a["email"] for a in standup["attendees"]] == ["me@example.com", "sam@example.com"]
    assert focus["eventType"] == "focus_time"
    assert focus["duration"] == 120
    assert "attendees" not in focus


def test_events_request_parameters(gcal):
    integration = gcal(calendars=[{"id": "work", "summary": "Work"}])
    start, end = utc(2024, 1, 15), utc(2024, 1, 15, 23, 59)

    integration.fetch_activities(start, end)

    kwargs = integration.service.events.return_value.list.call_args.kwargs
    assert kwargs["calendarId"] == "work"
    assert kwargs["timeMin"] == start.isoformat()
    assert kwargs["singleEvents"] is True
    assert kwargs["orderBy"] == "startTime"
