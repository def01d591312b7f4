"""
Google Calendar connector.

Pulls timed events from the user's calendars and turns them into
`calendar_event` records with a duration, a rough category and the
meeting link if there is one. All-day events, declined events and short
blocks (under min_duration minutes) are left out.
"""

import logging
import re
from datetime import datetime

from googleapiclient.errors import HttpError

from .. import dates
from ..google_auth import build_calendar_service
from .base import Integration, matches_any

logger = logging.getLogger(__name__)


# Checked in order; the first category whose keywords appear wins.
EVENT_CATEGORIES = (
    ("standup", ("standup", "stand up", "daily")),
    ("retrospective", ("retro", "retrospective")),
    ("planning", ("planning", "sprint planning")),
    ("review", ("review", "demo")),
    ("one_on_one", ("1:1", "one on one", "1-on-1")),
    ("interview", ("interview", "screening")),
    ("all_hands", ("all hands", "town hall", "company")),
    ("training", ("training", "workshop", "learning")),
)

MEETING_LINK_PATTERNS = (
    re.compile(r"https://meet\.google\.com/[a-z-]+", re.IGNORECASE),
    re.compile(r"https://zoom\.us/j/\d+", re.IGNORECASE),
    re.compile(r"https://[\w.-]*\.zoom\.us/j/\d+", re.IGNORECASE),
    re.compile(r"https://teams\.microsoft\.com/l/meetup-join/[^\s]+", re.IGNORECASE),
)


def categorize_event(event: dict) -> str:
    """
    Guess what kind of event this is from its title and description.

    Example:
        categorize_event({"summary": "Daily Standup"})           # "standup"
        categorize_event({"summary": "Sprint Planning Session"})  # "planning"
        categorize_event({"summary": "Heads down"})               # "focus_time"
    """
    combined = f"{event.get('summary') or ''} {event.get('description') or ''}".lower()

    for category, keywords in EVENT_CATEGORIES:
        if any(keyword in combined for keyword in keywords):
            return category

    if len(event.get("attendees") or []) > 1:
        return "meeting"
    return "focus_time"


def extract_meeting_link(event: dict) -> str | None:
    """First Meet / Zoom / Teams URL in the description or location."""
    content = f"{event.get('description') or ''} {event.get('location') or ''}"
    for pattern in MEETING_LINK_PATTERNS:
        match = pattern.search(content)
        if match:
            return match.group(0)
    return None


def event_bounds(event: dict) -> tuple[datetime, datetime]:
    start = dates.parse_timestamp((event.get("start") or {}).get("dateTime"))
    end = dates.parse_timestamp((event.get("end") or {}).get("dateTime"))
    return start, end


class GCalIntegration(Integration):
    name = "gcal"
    label = "Google Calendar"

    def __init__(self, config, storage, service=None):
        super().__init__(config, storage)
        self._service = service

    @property
    def service(self):
        """Built on first use so a disabled or unconfigured calendar costs nothing."""
        if self._service is None:
            self._service = build_calendar_service(self.config, self.storage)
        return self._service

    def fetch_activities(self, start: datetime, end: datetime) -> list[dict]:
        activities = []
        for calendar in self.filter_calendars(self.get_calendars()):
            activities.extend(self.get_calendar_events(calendar, start, end))
        return activities

    def get_calendars(self) -> list[dict]:
        calendars = []
        page_token = None
        while True:
            try:
                response = self.service.calendarList().list(pageToken=page_token).execute()
            except HttpError as e:
                logger.error("Error fetching calendar list: %s", e)
                break
            calendars.extend(response.get("items", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        return calendars

    def filter_calendars(self, calendars: list[dict]) -> list[dict]:
        """
        Apply include_calendars, exclude_calendars and exclude_calendar_patterns.

        Includes match a substring of the name or id (case-insensitive) or
        the exact value. Excludes match a substring; patterns are globs
        checked against both name and id.
        """
        include = self.settings.get("include_calendars") or []
        exclude = self.settings.get("exclude_calendars") or []
        patterns = self.settings.get("exclude_calendar_patterns") or []

        kept = []
        for calendar in calendars:
            summary = calendar.get("summary") or ""
            calendar_id = calendar.get("id") or ""
            name_lower, id_lower = summary.lower(), calendar_id.lower()

            if include and not any(
                item.lower() in name_lower or item.lower() in id_lower or item in (summary, calendar_id)
                for item in include
            ):
                continue

            if any(item.lower() in name_lower or item.lower() in id_lower for item in exclude):
                continue

            if matches_any(summary, patterns) or matches_any(calendar_id, patterns):
                continue

            kept.append(calendar)
        return kept

    def get_calendar_events(self, calendar: dict, start: datetime, end: datetime) -> list[dict]:
        events = []
        page_token = None
        while True:
            try:
                response = self.service.events().list(
                    calendarId=calendar["id"],
                    timeMin=start.isoformat(),
                    timeMax=end.isoformat(),
                    singleEvents=True,
                    orderBy="startTime",
                    maxResults=2500,
                    pageToken=page_token,
                ).execute()
            except HttpError as e:
                logger.error("Error fetching events from %s: %s", calendar.get("summary"), e)
                break

            events.extend(response.get("items", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break

        return [
            self.process_event(event, calendar)
            for event in events
            if self.should_include_event(event)
        ]

    def should_include_event(self, event: dict) -> bool:
        event_start = event.get("start") or {}
        if not event_start.get("dateTime") and not event_start.get("date"):
            return False

        # All-day
        if not event_start.get("dateTime"):
            return False

        title = (event.get("summary") or "").lower()
        if any(title == excluded.lower() for excluded in self.settings.get("exclude_events") or []):
            return False
        if matches_any(title, self.settings.get("exclude_event_patterns") or []):
            return False

        try:
            start, end = event_bounds(event)
        except (TypeError, ValueError) as e:
            logger.warning("Skipping event %r with bad times: %s", event.get("summary"), e)
            return False
        if (end - start).total_seconds() / 60 < self.settings.get("min_duration", 0):
            return False

        for attendee in event.get("attendees") or []:
            if attendee.get("self") and attendee.get("responseStatus") == "declined":
                return False

        return True

    def process_event(self, event: dict, calendar: dict) -> dict:
        start, end = event_bounds(event)
        processed = {
            "type": "calendar_event",
            "calendar": calendar.get("summary"),
            "calendarId": calendar.get("id"),
            "title": event.get("summary") or "Untitled Event",
            "description": event.get("description") or "",
            "start": start.isoformat(),
            "end": end.isoformat(),
            "timestamp": start.isoformat(),
            "duration": (end - start).total_seconds() / 60,
            "location": event.get("location") or "",
            "eventType": categorize_event(event),
            "attendeeCount": 0,
            "isOrganizer": False,
            "meetingLink": extract_meeting_link(event),
        }

        attendees = event.get("attendees")
        if self.settings.get("track_attendees") and attendees:
            processed["attendeeCount"] = len(attendees)
            processed["isOrganizer"] = any(a.get("organizer") and a.get("self") for a in attendees)

            if self.settings.get("track_location"):
                processed["attendees"] = [
                    {
                        "email": a.get("email"),
                        "responseStatus": a.get("responseStatus"),
                        "organizer": a.get("organizer", False),
                    }
                    for a in attendees
                    if a.get("responseStatus") != "declined"
                ]

        return processed
