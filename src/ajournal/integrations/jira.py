"""
Jira connector using the REST API (v2 by default) over requests.

Per day we run three JQL searches:
- reporter = me, created that day             -> ticket_created
- assignee = me, updated that day             -> ticket_updated (one per changelog entry)
- comment ~ me, updated that day              -> comment_added (my comments only)

A failed search or lookup is logged and contributes nothing, and a malformed
ticket is logged and dropped. The rest of the day still goes through.
"""

import logging
from datetime import date, datetime, timedelta, timezone

import requests

from .. import dates
from ..errors import ConfigurationError
from .base import Integration, is_excluded

logger = logging.getLogger(__name__)

SEARCH_FIELDS = [
    "summary", "status", "priority", "assignee", "reporter",
    "created", "updated", "project", "issuetype", "description",
]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def comment_text(comment: dict) -> str:
    """Comment body as plain text. API v3 returns rich-text documents, which we skip."""
    body = comment.get("body")
    return body if isinstance(body, str) else ""


def ticket_key(ticket) -> str:
    return ticket.get("key", "?") if isinstance(ticket, dict) else "?"


def sort_key(activity: dict) -> datetime:
    """Activity time for ordering; missing or unparseable timestamps sort first."""
    try:
        moment = dates.parse_timestamp(activity["timestamp"])
    except (KeyError, TypeError, ValueError):
        return EPOCH
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


class JiraIntegration(Integration):
    name = "jira"
    label = "Jira"

    def __init__(self, config, storage, session: requests.Session | None = None):
        super().__init__(config, storage)
        self.protocol = self.settings.get("protocol") or "https"
        self.host = self.settings.get("host")
        self.username = self.settings.get("username")
        self.api_version = str(self.settings.get("api_version") or "2")

        if session is None:
            api_token = config.secret("integrations.jira.api_token")
            missing = [
                name for name, value in (("host", self.host), ("username", self.username), ("api_token", api_token))
                if not value
            ]
            if missing:
                raise ConfigurationError(f"Jira is enabled but missing: {', '.join(missing)}")
            session = requests.Session()
            session.auth = (self.username, api_token)
            session.verify = self.settings.get("strict_ssl", True) is not False
            session.headers.update({"Accept": "application/json"})
        self.session = session

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}/rest/api/{self.api_version}"

    def browse_url(self, key: str) -> str:
        return f"{self.protocol}://{self.host}/browse/{key}"

    def _get(self, path: str, params: dict | None = None) -> dict:
        response = self.session.get(f"{self.base_url}{path}", params=params, timeout=30)
        response.raise_for_status()
        return response.json()

    def sync_identity(self) -> dict:
        return {"username": self.username}

    def fetch_activities(self, start: datetime, end: datetime) -> list[dict]:
        activities = []
        for day in dates.iter_days(start, end, self.tz):
            day_activities = self.get_activities_for_date(day)
            if day_activities:
                logger.info("Jira: %d activities for %s", len(day_activities), day.isoformat())
            activities.extend(day_activities)
        return activities

    def filter_activities(self, activities: list[dict]) -> list[dict]:
        include = self.settings.get("include_projects") or []
        exclude = self.settings.get("exclude_projects") or []
        patterns = self.settings.get("exclude_project_patterns") or []

        kept = []
        for activity in activities:
            names = [n for n in (activity.get("projectKey"), activity.get("project")) if n]
            if include and not any(n in include for n in names):
                continue
            if any(is_excluded(n, exclude, patterns) for n in names):
                continue
            kept.append(activity)
        return kept

    # -----------------------------------------------------------------------
    # Per-Day Collection
    # -----------------------------------------------------------------------

    def get_activities_for_date(self, day: date) -> list[dict]:
        day_str = day.isoformat()
        next_str = (day + timedelta(days=1)).isoformat()
        user = self.username
        activities = []

        if self.settings.get("track_created", True):
            jql = f'reporter = "{user}" AND created >= "{day_str}" AND created < "{next_str}"'
            for ticket in self.search_tickets(jql):
                try:
                    activities.append(self.created_record(ticket))
                except (KeyError, TypeError, AttributeError) as e:
                    logger.warning("Skipping malformed Jira ticket %s: %r", ticket_key(ticket), e)

        if self.settings.get("track_updated", True):
            jql = f'assignee = "{user}" AND updated >= "{day_str}" AND updated < "{next_str}"'
            for ticket in self.search_tickets(jql):
                try:
                    fields = self.ticket_fields(ticket)
                    changes = self.get_ticket_changelog(ticket["key"], day)
                    activities.extend([self.update_record(fields, change) for change in changes])
                except (KeyError, TypeError, AttributeError) as e:
                    logger.warning("Skipping malformed Jira ticket %s: %r", ticket_key(ticket), e)

        if self.settings.get("track_commented", True):
            jql = f'comment ~ "{user}" AND updated >= "{day_str}" AND updated < "{next_str}"'
            for ticket in self.search_tickets(jql):
                try:
                    fields = self.ticket_fields(ticket)
                    comments = self.get_ticket_comments(ticket["key"], day)
                    activities.extend([
                        {
                            **fields,
                            "timestamp": comment.get("created"),
                            "type": "comment_added",
                            "comment": comment_text(comment)[:200],
                        }
                        for comment in comments
                        if self.is_own_comment(comment)
                    ])
                except (KeyError, TypeError, AttributeError) as e:
                    logger.warning("Skipping malformed Jira ticket %s: %r", ticket_key(ticket), e)

        activities.sort(key=sort_key)
        return activities

    def created_record(self, ticket: dict) -> dict:
        description = ticket["fields"].get("description")
        if not isinstance(description, str):
            description = ""
        return {
            **self.ticket_fields(ticket),
            "timestamp": ticket["fields"].get("created"),
            "type": "ticket_created",
            "description": description[:200],
        }

    @staticmethod
    def update_record(fields: dict, change: dict) -> dict:
        return {
            **fields,
            "timestamp": change.get("created"),
            "type": "ticket_updated",
            "changes": [
                {"field": item.get("field"), "from": item.get("fromString"), "to": item.get("toString")}
                for item in change.get("items", [])
            ],
        }

    def ticket_fields(self, ticket: dict) -> dict:
        """The fields every Jira record shares."""
        fields = ticket["fields"]
        project = fields.get("project") or {}
        return {
            "ticketKey": ticket["key"],
            "summary": fields.get("summary", ""),
            "status": (fields.get("status") or {}).get("name"),
            "priority": (fields.get("priority") or {}).get("name") or "None",
            "assignee": (fields.get("assignee") or {}).get("displayName") or "Unassigned",
            "reporter": (fields.get("reporter") or {}).get("displayName"),
            "project": project.get("name"),
            "projectKey": project.get("key"),
            "issueType": (fields.get("issuetype") or {}).get("name"),
            "url": self.browse_url(ticket["key"]),
        }

    def is_own_comment(self, comment: dict) -> bool:
        author = comment.get("author") or {}
        return self.username in (author.get("name"), author.get("emailAddress"), author.get("accountId"))

    def _on_day(self, timestamp: str | None, day: date) -> bool:
        if not timestamp:
            return False
        return dates.to_date(timestamp, self.tz) == day

    # -----------------------------------------------------------------------
    # REST Calls
    # -----------------------------------------------------------------------

    def search_tickets(self, jql: str) -> list[dict]:
        try:
            result = self._get("/search", {
                "jql": jql,
                "fields": ",".join(SEARCH_FIELDS),
                "maxResults": self.settings.get("max_results", 100),
            })
        except (requests.RequestException, ValueError) as e:
            logger.error("Error searching Jira tickets: %s", e)
            return []
        return result.get("issues", [])

    def get_ticket_changelog(self, key: str, day: date) -> list[dict]:
        try:
            ticket = self._get(f"/issue/{key}", {"expand": "changelog"})
        except (requests.RequestException, ValueError) as e:
            logger.error("Error getting changelog for %s: %s", key, e)
            return []
        histories = (ticket.get("changelog") or {}).get("histories") or []
        return [h for h in histories if self._on_day(h.get("created"), day)]

    def get_ticket_comments(self, key: str, day: date) -> list[dict]:
        try:
            result = self._get(f"/issue/{key}/comment")
        except (requests.RequestException, ValueError) as e:
            logger.error("Error getting comments for %s: %s", key, e)
            return []
        return [c for c in result.get("comments") or [] if self._on_day(c.get("created"), day)]
