"""
Local storage for raw activity data, sync state, journals and reports.

Directory layout (defaults):

    data/
      sync-state.json                  one entry per integration
      raw-data/<integration>/<yyyy-MM-dd>.json
      journals/
        daily/<ISO year>/week-<NN>/<date>.md
        reports/{weekly,monthly,quarterly}/<ISO year>/<file>.md
        <date>.md                      legacy flat layout, read-only fallback

Nothing here is transactional. A crash between mkdir and write can leave an
empty folder behind, which is harmless for a single-user tool.
"""

import json
import logging
import re
import shutil
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from . import dates
from .config import Config, expand_path

logger = logging.getLogger(__name__)

REPORT_KINDS = ("weekly", "monthly", "quarterly")

# Legacy flat files that migrate_existing_journals() knows how to move
DAILY_FILE_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})\.md$")
WEEKLY_REPORT_PATTERN = re.compile(r"^weekly-report-(\d{4})-(\d{2})-(\d{2})\.md$")


def parse_date_from_filename(filename: str) -> date | None:
    """
    Extract date from a journal filename like '2024-01-15.md'.

    Returns:
        A date object if the filename matches the pattern, None otherwise
        (including impossible dates like 2024-02-31.md).
    """
    match = DAILY_FILE_PATTERN.match(filename)
    if not match:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def _read_json(path: Path) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Storage:
    """Owns the data directory tree."""

    def __init__(self, config: Config):
        self.config = config
        self.data_dir = expand_path(config.get("storage.data_dir", "./data"))
        self.sync_state_file = expand_path(config.get("storage.sync_state_file", "./data/sync-state.json"))
        self.raw_data_dir = expand_path(config.get("storage.raw_data_dir", "./data/raw-data"))
        self.output_dir = expand_path(config.get("journal.output_dir", "./data/journals"))
        self.google_token_file = expand_path(config.get("storage.google_token_file", "./data/google-token.json"))
        self.date_format = config.get("journal.date_format") or "%Y-%m-%d"
        self.tz = dates.get_timezone(config.get("journal.timezone"))

    # -----------------------------------------------------------------------
    # Initialization
    # -----------------------------------------------------------------------

    def init(self) -> None:
        """Create every directory we write into. Safe to call repeatedly."""
        for path in (self.data_dir, self.raw_data_dir, self.sync_state_file.parent, self.output_dir):
            path.mkdir(parents=True, exist_ok=True)
        self.init_journal_folders()

    def init_journal_folders(self) -> None:
        (self.output_dir / "daily").mkdir(parents=True, exist_ok=True)
        for kind in REPORT_KINDS:
            (self.output_dir / "reports" / kind).mkdir(parents=True, exist_ok=True)

    # -----------------------------------------------------------------------
    # Path Derivation
    # -----------------------------------------------------------------------

    def _date(self, day: date | datetime | str) -> date:
        return dates.to_date(day, self.tz)

    def daily_journal_dir(self, day: date | datetime | str) -> Path:
        """daily/<ISO year>/week-<NN>/ for the day."""
        iso_year, week_folder = dates.iso_week_parts(self._date(day))
        return self.output_dir / "daily" / str(iso_year) / week_folder

    def journal_filename(self, day: date | datetime | str) -> str:
        return f"{self._date(day).strftime(self.date_format)}.md"

    def daily_journal_path(self, day: date | datetime | str) -> Path:
        return self.daily_journal_dir(day) / self.journal_filename(day)

    def report_path(self, kind: str, day: date | datetime | str, filename: str) -> Path:
        """reports/<kind>/<ISO year>/<filename>."""
        iso_year, _ = dates.iso_week_parts(self._date(day))
        return self.output_dir / "reports" / kind / str(iso_year) / filename

    # -----------------------------------------------------------------------
    # Sync State
    # -----------------------------------------------------------------------

    def get_sync_state(self, integration: str | None = None) -> dict:
        """
        Read sync-state.json.

        Returns the whole mapping, or one integration's entry ({} if absent).
        A missing or unreadable file reads as empty.
        """
        state: dict = {}
        if self.sync_state_file.exists():
            try:
                state = _read_json(self.sync_state_file)
            except (OSError, ValueError) as e:
                logger.error("Error reading sync state: %s", e)
                state = {}

        if integration:
            return state.get(integration, {})
        return state

    def set_sync_state(self, integration: str, state: dict) -> dict:
        """
        Merge state into the integration's entry and stamp lastSync.

        Returns:
            The integration's updated entry
        """
        current = self.get_sync_state()
        current[integration] = {
            **current.get(integration, {}),
            **state,
            "lastSync": _now_iso(),
        }
        _write_json(self.sync_state_file, current)
        return current[integration]

    # -----------------------------------------------------------------------
    # Raw Data
    # -----------------------------------------------------------------------

    def raw_data_path(self, integration: str, day: date | datetime | str) -> Path:
        return self.raw_data_dir / integration / f"{dates.day_key(day, self.tz)}.json"

    def save_raw_data(self, integration: str, day: date | datetime | str, data: Any) -> Path:
        """
        Save one day's activities for an integration.

        Other top-level keys already in the file survive, but "data" is
        replaced wholesale: a second sync of the same day keeps only what the
        second fetch returned.
        """
        file_path = self.raw_data_path(integration, day)
        existing: dict = {}
        if file_path.exists():
            try:
                existing = _read_json(file_path)
            except (OSError, ValueError) as e:
                logger.warning("Replacing unreadable raw data file %s: %s", file_path, e)

        merged = {
            **existing,
            "timestamp": _now_iso(),
            "data": data if isinstance(data, list) else [data],
        }
        _write_json(file_path, merged)
        return file_path

    def get_raw_data(self, integration: str, day: date | datetime | str) -> dict | None:
        file_path = self.raw_data_path(integration, day)
        if not file_path.exists():
            return None
        try:
            return _read_json(file_path)
        except (OSError, ValueError) as e:
            logger.error("Error reading raw data %s: %s", file_path, e)
            return None

    def get_raw_data_for_range(self, integration: str, start: date | datetime | str, end: date | datetime | str) -> dict[str, dict]:
        """All raw data files for an integration between start and end (inclusive)."""
        integration_dir = self.raw_data_dir / integration
        if not integration_dir.exists():
            return {}

        first, last = self._date(start), self._date(end)
        by_date = {}
        for file in sorted(integration_dir.glob("*.json")):
            try:
                file_date = date.fromisoformat(file.stem)
            except ValueError:
                continue
            if first <= file_date <= last:
                doc = self.get_raw_data(integration, file_date)
                if doc is not None:
                    by_date[file.stem] = doc
        return by_date

    # -----------------------------------------------------------------------
    # Journals
    # -----------------------------------------------------------------------

    def save_journal(self, day: date | datetime | str, content: str) -> Path:
        file_path = self.daily_journal_path(day)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content, encoding="utf-8")
        return file_path

    def find_journal(self, day: date | datetime | str) -> Path | None:
        """Where the day's journal lives: nested layout first, then the legacy flat file."""
        file_path = self.daily_journal_path(day)
        if file_path.exists():
            return file_path

        legacy_path = self.output_dir / self.journal_filename(day)
        if legacy_path.exists():
            return legacy_path

        return None

    def get_journal(self, day: date | datetime | str) -> str | None:
        file_path = self.find_journal(day)
        if file_path is None:
            return None
        return file_path.read_text(encoding="utf-8")

    def list_journals(self) -> list[str]:
        """
        Every journal, newest first, as paths relative to the output dir.

        Nested files look like "daily/2024/week-03/2024-01-15.md"; legacy
        flat ones are just "2024-01-15.md". Sorting is on the file name so
        both layouts interleave by date.
        """
        journals = []
        daily_dir = self.output_dir / "daily"

        if daily_dir.exists():
            for year_dir in sorted(p for p in daily_dir.iterdir() if p.is_dir()):
                for week_dir in sorted(p for p in year_dir.iterdir() if p.is_dir()):
                    for file in week_dir.glob("*.md"):
                        journals.append(f"daily/{year_dir.name}/{week_dir.name}/{file.name}")

        if self.output_dir.exists():
            for file in self.output_dir.glob("*.md"):
                if not file.name.startswith(tuple(f"{kind}-report" for kind in REPORT_KINDS)):
                    journals.append(file.name)

        return sorted(journals, key=lambda p: (Path(p).name, p), reverse=True)

    # -----------------------------------------------------------------------
    # Reports
    # -----------------------------------------------------------------------

    def save_report(self, kind: str, day: date | datetime | str, filename: str, content: str) -> Path:
        if kind not in REPORT_KINDS:
            raise ValueError(f"Unknown report kind: {kind}")
        file_path = self.report_path(kind, day, filename)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content, encoding="utf-8")
        return file_path

    def save_weekly_report(self, filename: str, content: str, day: date | None = None) -> Path:
        return self.save_report("weekly", day or date.today(), filename, content)

    def save_monthly_report(self, filename: str, content: str, day: date | None = None) -> Path:
        return self.save_report("monthly", day or date.today(), filename, content)

    def save_quarterly_report(self, filename: str, content: str, day: date | None = None) -> Path:
        return self.save_report("quarterly", day or date.today(), filename, content)

    def list_reports(self, kind: str, year: int) -> list[str]:
        report_dir = self.output_dir / "reports" / kind / str(year)
        if not report_dir.exists():
            return []
        return sorted((f.name for f in report_dir.glob("*.md")), reverse=True)

    # -----------------------------------------------------------------------
    # Migration
    # -----------------------------------------------------------------------

    def migrate_existing_journals(self) -> int:
        """
        Move legacy flat files into the nested layout.

        - YYYY-MM-DD.md                -> daily/<year>/week-<NN>/YYYY-MM-DD.md
        - weekly-report-YYYY-MM-DD.md  -> reports/weekly/<year>/

        Anything else in the output dir is left alone. A file that fails to
        move is logged and skipped.

        Returns:
            Number of files moved
        """
        if not self.output_dir.exists():
            return 0

        migrated = 0
        for file in sorted(self.output_dir.iterdir()):
            if not file.is_file():
                continue

            target = None
            journal_date = parse_date_from_filename(file.name)
            if journal_date is not None:
                target = self.daily_journal_dir(journal_date) / file.name
            else:
                match = WEEKLY_REPORT_PATTERN.match(file.name)
                if match:
                    try:
                        report_date = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
                    except ValueError:
                        continue
                    target = self.report_path("weekly", report_date, file.name)

            if target is None:
                continue

            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(file), str(target))
            except OSError as e:
                logger.error("Failed to migrate %s: %s", file.name, e)
                continue

            migrated += 1
            logger.info("Migrated %s to %s", file.name, target.relative_to(self.output_dir))

        return migrated
