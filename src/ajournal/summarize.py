"""
Turn a day's activities into prose using the Claude API.

This module handles:
- Loading the Anthropic API key (config/env first, then ~/.secrets/)
- Building the per-day summarization prompt
- Categorizing activities and estimating where the time went
- Falling back to a plain, offline summary when the API call fails

Activities passed in here are wrapped with their origin:

    {"source": "slack", "data": {...normalized Slack record...}}

so one list can mix every integration.
"""

import json
import logging
import re
from collections import Counter
from datetime import date

# The anthropic package is the official Python SDK for Claude
import anthropic

from .config import Config, expand_path
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


SOURCE_LABELS = {
    "slack": "Slack Communications",
    "github": "GitHub Activities",
    "gcal": "Calendar Events",
    "jira": "Jira Activities",
}

# Hours credited per activity when there's no real duration to go on
SLACK_HOURS_PER_MESSAGE = 0.1
GITHUB_HOURS_PER_ACTIVITY = 0.5
JIRA_HOURS_PER_ACTIVITY = 0.25


def _clip(text: str | None, length: int) -> str:
    text = (text or "").replace("\n", " ").strip()
    return text if len(text) <= length else text[:length] + "..."


def by_source(activities: list[dict], source: str) -> list[dict]:
    return [a for a in activities if a.get("source") == source]


def describe_activity(activity: dict) -> str:
    """
    One-line, human-readable description of a wrapped activity.

    Example:
        describe_activity({"source": "github", "data": {"type": "pr_created",
                           "title": "Add cache", "repository": "octo/api"}})
        # 'GitHub PR created: "Add cache" in octo/api'
    """
    data = activity.get("data") or {}
    source = activity.get("source")
    kind = data.get("type")

    if source == "slack":
        return f'Slack {kind} in #{data.get("channel")}: "{_clip(data.get("text"), 50)}"'

    if source == "github":
        if kind == "pr_created":
            return f'GitHub PR created: "{data.get("title")}" in {data.get("repository")}'
        if kind == "pr_reviewed":
            return f'GitHub PR reviewed: "{data.get("title")}" in {data.get("repository")}'
        if kind == "commit":
            return f'GitHub commit: "{_clip(data.get("message"), 80)}" in {data.get("repository")}'
        if kind == "issue_activity":
            return f'GitHub issue: "{data.get("title")}" in {data.get("repository")}'
        return f"GitHub {kind} in {data.get('repository')}"

    if source == "gcal":
        return f'Calendar: {data.get("eventType")} "{data.get("title")}" ({round(data.get("duration") or 0)}min)'

    if source == "jira":
        if kind == "ticket_created":
            return f'Jira ticket created: {data.get("ticketKey")} "{data.get("summary")}"'
        if kind == "ticket_updated":
            fields = ", ".join(c.get("field") or "" for c in data.get("changes", []))
            return f'Jira ticket updated: {data.get("ticketKey")} "{data.get("summary")}" ({fields})'
        if kind == "comment_added":
            return f'Jira comment on {data.get("ticketKey")}: "{_clip(data.get("comment"), 50)}"'
        return f"Jira {kind} on {data.get('ticketKey')}"

    return f"{source} activity"


class Summarizer:
    """
    Wraps the Anthropic client with the prompts we use.

    The client is created on first use, so building a Summarizer never
    needs a key; only actually calling the model does.
    """

    def __init__(self, config: Config, client: anthropic.Anthropic | None = None):
        self.config = config
        self._client = client

    # -----------------------------------------------------------------------
    # Client
    # -----------------------------------------------------------------------

    def get_api_key(self) -> str:
        """
        The Anthropic API key.

        Looks at ai.api_key (usually ${ANTHROPIC_API_KEY}) first, then the
        shared secrets file:

            ~/.secrets/shared/anthropic-api-key.txt

        The file should contain just the key, nothing else.

        Raises:
            ConfigurationError: If neither is available
        """
        key = self.config.secret("ai.api_key")
        if key:
            return key

        secrets_dir = expand_path(self.config.get("secrets.base_path", "~/.secrets"))
        key_path = secrets_dir / self.config.get("secrets.shared_folder", "shared") / "anthropic-api-key.txt"
        if key_path.exists():
            return key_path.read_text(encoding="utf-8").strip()

        raise ConfigurationError(f"No Anthropic API key. Set ANTHROPIC_API_KEY or create {key_path}")

    @property
    def client(self) -> anthropic.Anthropic:
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=self.get_api_key())
        return self._client

    def complete(self, prompt: str, max_tokens: int | None = None) -> str:
        """
        Send one user message and return the text of the reply.

        Raises:
            anthropic.APIError, ConfigurationError: Callers decide how to fall back
        """
        message = self.client.messages.create(
            model=self.config.get("ai.model"),
            max_tokens=max_tokens or self.config.get("ai.max_tokens", 2000),
            messages=[{"role": "user", "content": prompt}],
        )
        # content is a list of blocks; a plain text reply has exactly one
        return message.content[0].text

    # -----------------------------------------------------------------------
    # Daily Summary
    # -----------------------------------------------------------------------

    def build_prompt(self, activities: list[dict], day: date) -> str:
        """
        Build the daily summarization prompt.

        Layout: the configured instructions, then one section per source
        that has activity, then a closing request. Long texts are clipped
        so a chatty day doesn't blow the context window.
        """
        lines = [f"Work activities for {day.strftime('%a %b %d %Y')}:", ""]

        slack = by_source(activities, "slack")
        if slack:
            lines.append(f"**Slack Communications ({len(slack)} activities):**")
            for activity in slack:
                data = activity["data"]
                intent = ", ".join(data.get("intent") or [])
                lines.append(f'- {data.get("type")} in #{data.get("channel")}: "{_clip(data.get("text"), 100)}" (Intent: {intent})')
            lines.append("")

        github = by_source(activities, "github")
        if github:
            lines.append(f"**GitHub Activities ({len(github)} activities):**")
            for activity in github:
                data = activity["data"]
                kind = data.get("type")
                if kind == "pr_created":
                    lines.append(f'- Created PR: "{data.get("title")}" in {data.get("repository")}')
                elif kind == "pr_reviewed":
                    lines.append(f'- Reviewed PR: "{data.get("title")}" in {data.get("repository")} ({data.get("reviewState")})')
                elif kind == "commit":
                    lines.append(f'- Committed: "{_clip(data.get("message"), 100)}" in {data.get("repository")}')
                elif kind == "issue_activity":
                    lines.append(f'- Issue activity: "{data.get("title")}" in {data.get("repository")}')
            lines.append("")

        calendar = by_source(activities, "gcal")
        if calendar:
            lines.append(f"**Calendar Events ({len(calendar)} events):**")
            for activity in calendar:
                data = activity["data"]
                hours = round((data.get("duration") or 0) / 60, 2)
                lines.append(f'- {data.get("eventType")}: "{data.get("title")}" ({hours}h, {data.get("attendeeCount", 0)} attendees)')
            lines.append("")

        jira = by_source(activities, "jira")
        if jira:
            lines.append(f"**Jira Activities ({len(jira)} activities):**")
            for activity in jira:
                lines.append(f"- {describe_activity(activity)}")
            lines.append("")

        activities_text = "\n".join(lines)
        return f"""{self.config.get("ai.summarization_prompt")}

{activities_text}

Please create a professional work journal summary for this day. Focus on productivity insights, key accomplishments, and time allocation patterns."""

    def summarize_activities(self, activities: list[dict], day: date) -> str:
        """AI summary for the day, or the offline fallback if anything goes wrong."""
        try:
            return self.complete(self.build_prompt(activities, day))
        except Exception as e:
            logger.error("AI summarization failed, using fallback: %s", e)
            return self.fallback_summary(activities, day)

    def fallback_summary(self, activities: list[dict], day: date) -> str:
        """
        Summary built without the model: counts per source plus the first
        few activity descriptions.

        Sources with no activity get no overview line, so an empty day is
        just the title and two empty headings.
        """
        lines = [f"# Work Summary for {day.isoformat()}", "", "## Activity Overview"]

        counts = Counter(a.get("source") for a in activities)
        for source, label in SOURCE_LABELS.items():
            if counts[source]:
                noun = "events" if source == "gcal" else "activities"
                lines.append(f"- **{label}**: {counts[source]} {noun}")

        lines += ["", "## Key Activities"]
        for activity in activities[: self.config.get("ai.fallback_items", 10)]:
            lines.append(f"- {describe_activity(activity)}")

        return "\n".join(lines) + "\n"

    # -----------------------------------------------------------------------
    # Categorization
    # -----------------------------------------------------------------------

    def categorize_activities(self, activities: list[dict]) -> dict[str, list[dict]]:
        """
        Group activities into categories like "Development" or "Meetings".

        The model answers with {"Category": [index, ...]}; we map the
        indices back to activities. Indices that don't exist are dropped.

        Returns:
            {} when ai.categorize_work is off; the source-based fallback
            when the model call or its JSON fails.
        """
        if not self.config.get("ai.categorize_work"):
            return {}
        if not activities:
            return {}

        listing = "\n".join(f"{i}. {describe_activity(a)}" for i, a in enumerate(activities))
        prompt = f"""Please categorize the following work activities into logical groups and identify patterns:

{listing}

Return ONLY a JSON object with categories as keys and arrays of activity indices (0-indexed) as values. Use categories like: "Development", "Meetings", "Communication", "Code Review", "Planning", etc.

Example format:
{{
  "Development": [0, 2, 5],
  "Meetings": [1, 3],
  "Communication": [4, 6]
}}"""

        try:
            response = self.complete(prompt, max_tokens=1000)
            # The reply sometimes wraps the JSON in prose or a code fence
            match = re.search(r"\{[\s\S]*\}", response)
            if not match:
                raise ValueError("No JSON found in response")
            categorization = json.loads(match.group(0))
            if not isinstance(categorization, dict):
                raise ValueError("Categorization is not an object")

            categorized = {}
            for category, indices in categorization.items():
                picked = [
                    activities[i] for i in indices
                    if isinstance(i, int) and 0 <= i < len(activities)
                ]
                if picked:
                    categorized[category] = picked
            return categorized

        except Exception as e:
            logger.error("AI categorization failed, using fallback: %s", e)
            return self.fallback_categorization(activities)

    def fallback_categorization(self, activities: list[dict]) -> dict[str, list[dict]]:
        categories = {
            "Communication": by_source(activities, "slack"),
            "Development": by_source(activities, "github"),
            "Meetings": by_source(activities, "gcal"),
            "Tickets": by_source(activities, "jira"),
        }
        return {name: items for name, items in categories.items() if items}

    # -----------------------------------------------------------------------
    # Metrics and Insights
    # -----------------------------------------------------------------------

    def calculate_metrics(self, activities: list[dict]) -> dict:
        """
        Rough time accounting.

        Meetings use real calendar durations. Everything else is an
        estimate per activity (6 min per Slack message, 30 min per GitHub
        activity, 15 min per Jira activity). Good enough for trends, not
        for timesheets.
        """
        metrics = {
            "meetingTime": 0.0,
            "developmentTime": 0.0,
            "communicationTime": 0.0,
            "ticketTime": 0.0,
            "slackCount": 0,
            "githubCount": 0,
            "calendarCount": 0,
            "jiraCount": 0,
            "patterns": [],
        }

        for activity in activities:
            source = activity.get("source")
            if source == "slack":
                metrics["slackCount"] += 1
                metrics["communicationTime"] += SLACK_HOURS_PER_MESSAGE
            elif source == "github":
                metrics["githubCount"] += 1
                metrics["developmentTime"] += GITHUB_HOURS_PER_ACTIVITY
            elif source == "gcal":
                metrics["calendarCount"] += 1
                metrics["meetingTime"] += (activity.get("data", {}).get("duration") or 0) / 60
            elif source == "jira":
                metrics["jiraCount"] += 1
                metrics["ticketTime"] += JIRA_HOURS_PER_ACTIVITY

        for key in ("meetingTime", "developmentTime", "communicationTime", "ticketTime"):
            metrics[key] = round(metrics[key], 2)

        if metrics["meetingTime"] > 4:
            metrics["patterns"].append("High meeting day (4+ hours)")
        if metrics["githubCount"] > 5:
            metrics["patterns"].append("High development activity")
        if metrics["slackCount"] > 20:
            metrics["patterns"].append("High communication volume")

        return metrics

    def generate_insights(self, activities: list[dict], day: date) -> str | None:
        """2-3 bullet insights from the metrics, or None (disabled or failed)."""
        if not self.config.get("ai.include_metrics"):
            return None

        metrics = self.calculate_metrics(activities)
        patterns = "\n".join(metrics["patterns"]) or "None detected"
        prompt = f"""Based on the following work metrics for {day.strftime('%a %b %d %Y')}, provide 2-3 brief insights about productivity patterns:

**Time Distribution:**
- Meetings: {metrics["meetingTime"]} hours
- Development: {metrics["developmentTime"]} hours
- Communication: {metrics["communicationTime"]} hours
- Tickets: {metrics["ticketTime"]} hours

**Activity Counts:**
- GitHub activities: {metrics["githubCount"]}
- Slack messages: {metrics["slackCount"]}
- Calendar events: {metrics["calendarCount"]}
- Jira activities: {metrics["jiraCount"]}

**Key Patterns:**
{patterns}

Provide actionable insights in 2-3 bullet points."""

        try:
            return self.complete(prompt, max_tokens=300)
        except Exception as e:
            logger.error("AI insights failed: %s", e)
            return None
