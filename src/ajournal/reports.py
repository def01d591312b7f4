"""
Weekly, monthly and quarterly reports built from existing daily journals.

Reports only read journals. If the model call fails we still write a
report: a plain list of which days were covered, so the period isn't lost.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

from . import dates
from .config import Config
from .storage import Storage
from .summarize import Summarizer

logger = logging.getLogger(__name__)

# Quarterly prompts get long; keep them bounded
QUARTERLY_MAX_DAYS = 20
QUARTERLY_MAX_CHARS = 500

WEEKLY_PROMPT = """Create a comprehensive weekly work summary based on these daily journal entries. Focus on:

1. **Key Accomplishments**: Major deliverables, milestones, and achievements
2. **Project Progress**: Status updates on ongoing initiatives
3. **Collaboration Highlights**: Important meetings, reviews, and team interactions
4. **Technical Insights**: Problems solved, optimizations made, lessons learned
5. **Time Allocation**: How time was distributed across different activities
6. **Blockers & Challenges**: Issues encountered and how they were addressed
7. **Next Week Planning**: Action items and follow-ups identified

Daily entries:
{entries}

Please provide a concise but comprehensive summary that would be valuable for team updates, performance reviews, and planning."""

MONTHLY_PROMPT = """Create a comprehensive monthly work summary based on these daily journal entries. Focus on:

1. **Key Accomplishments**: Major deliverables, milestones, and achievements for the month
2. **Project Progress**: Status updates and progress on ongoing initiatives
3. **Collaboration & Leadership**: Important meetings, reviews, team interactions, and leadership activities
4. **Technical Growth**: Skills developed, problems solved, optimizations made, lessons learned
5. **Time Allocation**: How time was distributed across different activities and projects
6. **Challenges & Solutions**: Issues encountered and how they were addressed or resolved
7. **Goals & Planning**: Progress toward goals and planning for next month

Daily entries:
{entries}

Please provide a strategic monthly summary that would be valuable for performance reviews, goal setting, and career development."""

QUARTERLY_PROMPT = """Create a comprehensive quarterly work summary based on these daily journal entries. Focus on:

1. **Strategic Accomplishments**: Major deliverables, business impact, and strategic initiatives completed
2. **Professional Growth**: Skills developed, leadership opportunities, career advancement
3. **Project Portfolio**: Overview of projects worked on, their outcomes, and business value
4. **Team & Collaboration**: Leadership activities, mentoring, cross-team collaborations
5. **Innovation & Problem Solving**: Creative solutions, process improvements, technical innovations
6. **Challenges & Resilience**: Major challenges overcome and lessons learned
7. **Strategic Planning**: Goals achieved and strategic directions for next quarter

Daily entries ({count} days):
{entries}

Please provide a high-level quarterly summary suitable for executive reviews, performance evaluations, and strategic planning."""


def gather_journals(storage: Storage, start: date, end: date) -> list[dict]:
    """
    Journals for every day from start to end that has one.

    Returns:
        List of {"date", "content"} dicts, oldest first
    """
    entries = []
    for day in dates.iter_days(start, end):
        content = storage.get_journal(day)
        if content:
            entries.append({"date": day, "content": content})
        else:
            logger.debug("No journal found for %s", day.isoformat())
    return entries


def format_entries(entries: list[dict], max_chars: int | None = None) -> str:
    blocks = []
    for entry in entries:
        content = entry["content"]
        if max_chars is not None and len(content) > max_chars:
            content = content[:max_chars] + "..."
        blocks.append(f"=== {entry['date'].strftime('%Y-%m-%d (%A)')} ===\n{content}")
    return "\n\n".join(blocks)


def fallback_report_body(entries: list[dict]) -> str:
    """What we write when the model is unavailable."""
    lines = [
        "*AI summary unavailable. Journals included in this period:*",
        "",
    ]
    for entry in entries:
        first_line = next((line for line in entry["content"].splitlines() if line.strip()), "")
        lines.append(f"- {entry['date'].isoformat()}: {first_line.lstrip('# ').strip()}")
    return "\n".join(lines)


class ReportGenerator:
    def __init__(self, config: Config, storage: Storage, summarizer: Summarizer | None = None):
        self.config = config
        self.storage = storage
        self.summarizer = summarizer or Summarizer(config)

    def _today(self) -> date:
        return datetime.now(self.storage.tz).date()

    def _summarize(self, prompt: str, entries: list[dict], max_tokens: int) -> str:
        try:
            return self.summarizer.complete(prompt, max_tokens=max_tokens)
        except Exception as e:
            logger.error("AI report generation failed, using fallback: %s", e)
            return fallback_report_body(entries)

    def _document(self, title: str, body: str) -> str:
        generated_at = datetime.now(timezone.utc).isoformat()
        return f"# {title}\n\n{body.strip()}\n\n---\n*Generated on {generated_at} by AJournal*\n"

    def weekly_report(self, start: date | None = None, name: str | None = None) -> Path | None:
        """
        Report for 7 days starting at start (default: the last 7 days
        ending today).

        Returns:
            The saved path, or None when no journals exist in the range.
        """
        if start is None:
            start = self._today() - timedelta(days=6)
        start, end = dates.week_range(start)

        entries = gather_journals(self.storage, start, end)
        if not entries:
            return None
        logger.info("Found %d journal entries for the week", len(entries))

        body = self._summarize(WEEKLY_PROMPT.format(entries=format_entries(entries)), entries, 2000)
        title = f"Weekly Report - {start.strftime('%b %d')} to {end.strftime('%b %d, %Y')}"
        filename = name or f"weekly-report-{end.isoformat()}.md"
        return self.storage.save_weekly_report(filename, self._document(title, body), end)

    def monthly_report(self, month: str | None = None, name: str | None = None) -> Path | None:
        """
        Report for a calendar month ("YYYY-MM", default: this month).

        Raises:
            ValueError: If month isn't YYYY-MM
        """
        if month:
            year, month_number = dates.parse_month(month)
        else:
            today = self._today()
            year, month_number = today.year, today.month
        start, end = dates.month_range(year, month_number)

        entries = gather_journals(self.storage, start, end)
        if not entries:
            return None
        logger.info("Found %d journal entries for the month", len(entries))

        body = self._summarize(MONTHLY_PROMPT.format(entries=format_entries(entries)), entries, 3000)
        title = f"Monthly Report - {start.strftime('%B %Y')}"
        filename = name or f"monthly-report-{year:04d}-{month_number:02d}.md"
        # Mid-month so the ISO year is the calendar year
        return self.storage.save_monthly_report(filename, self._document(title, body), start.replace(day=15))

    def quarterly_report(self, quarter: str | None = None, name: str | None = None) -> Path | None:
        """
        Report for a quarter ("YYYY-Qn", default: this quarter).

        Only the first QUARTERLY_MAX_DAYS journals go into the prompt, each
        cut to QUARTERLY_MAX_CHARS.

        Raises:
            ValueError: If quarter isn't YYYY-Qn
        """
        if quarter:
            year, quarter_number = dates.parse_quarter(quarter)
        else:
            today = self._today()
            year, quarter_number = today.year, dates.quarter_of(today)
        start, end = dates.quarter_range(year, quarter_number)

        entries = gather_journals(self.storage, start, end)
        if not entries:
            return None
        logger.info("Found %d journal entries for the quarter", len(entries))

        prompt = QUARTERLY_PROMPT.format(
            count=len(entries),
            entries=format_entries(entries[:QUARTERLY_MAX_DAYS], max_chars=QUARTERLY_MAX_CHARS),
        )
        body = self._summarize(prompt, entries, 4000)
        title = f"Quarterly Report - Q{quarter_number} {year}"
        filename = name or f"quarterly-report-q{quarter_number}-{year}.md"
        middle = date(year, (quarter_number - 1) * 3 + 2, 15)
        return self.storage.save_quarterly_report(filename, self._document(title, body), middle)
