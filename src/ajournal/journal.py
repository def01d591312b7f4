"""
Build the daily Markdown journal from stored raw data.

This module handles:
- Reading every integration's raw data for one day
- Asking the Summarizer for the summary, categories and insights
- Laying it all out as Markdown and saving it through Storage

Journal layout:

    # Work Journal - Monday, January 15, 2024
    ## Summary            (AI or fallback summary)
    ## Activity Breakdown (one ### section per category)
    ## Metrics            (when journal.include_metrics)
    ## Raw Activity Log   (when journal.include_raw_data)
    ---
    *Generated ...*
"""

import logging
from datetime import date, datetime, timezone
from pathlib import Path

from . import dates
from .config import Config
from .storage import Storage
from .summarize import Summarizer, describe_activity

logger = logging.getLogger(__name__)

# Raw-data folder names, in the order sections appear in the journal
SOURCES = ("slack", "github", "gcal", "jira")


def collect_activities(storage: Storage, day: date) -> list[dict]:
    """
    Every stored activity for the day, wrapped with its source.

    Syntax notes:
    - sorted(..., key=...) builds a new list; the key function picks what to
      compare (here the parsed timestamp)
    - Records whose timestamp can't be parsed sort first instead of failing

    Returns:
        [{"source": "slack", "data": {...}}, ...] oldest first
    """
    activities = []
    for source in SOURCES:
        raw = storage.get_raw_data(source, day)
        if not raw:
            continue
        for record in raw.get("data") or []:
            activities.append({"source": source, "data": record})

    def sort_key(activity: dict) -> datetime:
        try:
            parsed = dates.parse_timestamp(activity["data"]["timestamp"])
        except (KeyError, TypeError, ValueError):
            return datetime.min.replace(tzinfo=timezone.utc)
        # Naive timestamps are taken as UTC so they compare with aware ones
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    return sorted(activities, key=sort_key)


class JournalGenerator:
    def __init__(self, config: Config, storage: Storage, summarizer: Summarizer | None = None):
        self.config = config
        self.storage = storage
        self.summarizer = summarizer or Summarizer(config)

    def generate(self, day: date) -> Path | None:
        """
        Write the journal for day, replacing any existing one.

        Returns:
            The saved path, or None when nothing was recorded that day.
        """
        activities = collect_activities(self.storage, day)
        if not activities:
            logger.info("No activities found for %s", day.isoformat())
            return None

        content = self.build_journal(activities, day)
        path = self.storage.save_journal(day, content)
        logger.info("Journal for %s saved to %s", day.isoformat(), path)
        return path

    def build_journal(self, activities: list[dict], day: date) -> str:
        summary = self.summarizer.summarize_activities(activities, day)
        categories = self.summarizer.categorize_activities(activities)

        lines = [
            f"# Work Journal - {day.strftime('%A, %B %d, %Y')}",
            "",
            "## Summary",
            "",
            summary.strip(),
            "",
        ]

        if categories:
            lines += ["## Activity Breakdown", ""]
            for category, items in categories.items():
                lines.append(f"### {category} ({len(items)})")
                lines += [f"- {describe_activity(item)}" for item in items]
                lines.append("")

        if self.config.get("journal.include_metrics"):
            lines += self.metrics_section(activities, day)

        if self.config.get("journal.include_raw_data"):
            lines += self.raw_log_section(activities)

        generated_at = datetime.now(self.storage.tz).strftime("%Y-%m-%d %H:%M")
        lines += ["---", f"*Generated on {generated_at} by AJournal from {len(activities)} activities*", ""]
        return "\n".join(lines)

    def metrics_section(self, activities: list[dict], day: date) -> list[str]:
        metrics = self.summarizer.calculate_metrics(activities)
        lines = [
            "## Metrics",
            "",
            f"- **Meetings**: {metrics['meetingTime']}h ({metrics['calendarCount']} events)",
            f"- **Development**: {metrics['developmentTime']}h ({metrics['githubCount']} GitHub activities)",
            f"- **Communication**: {metrics['communicationTime']}h ({metrics['slackCount']} Slack messages)",
            f"- **Tickets**: {metrics['ticketTime']}h ({metrics['jiraCount']} Jira activities)",
        ]
        lines += [f"- {pattern}" for pattern in metrics["patterns"]]
        lines.append("")

        insights = self.summarizer.generate_insights(activities, day)
        if insights:
            lines += ["### Insights", "", insights.strip(), ""]
        return lines

    def raw_log_section(self, activities: list[dict]) -> list[str]:
        time_format = self.config.get("journal.time_format") or "%H:%M"
        lines = ["## Raw Activity Log", ""]
        for activity in activities:
            timestamp = activity["data"].get("timestamp")
            try:
                when = dates.parse_timestamp(timestamp).astimezone(self.storage.tz).strftime(time_format)
            except (TypeError, ValueError):
                when = "--:--"
            lines.append(f"- `{when}` [{activity['source']}] {describe_activity(activity)}")
        lines.append("")
        return lines
