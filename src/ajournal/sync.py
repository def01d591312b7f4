"""
The sync and generate flows, shared by the CLI and the web server.

Both front ends call these functions directly (no subprocesses). Everything
runs sequentially in the calling thread.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path

from .config import Config
from .errors import IntegrationError
from .integrations import GCalIntegration, GitHubIntegration, Integration, JiraIntegration, SlackIntegration
from .journal import JournalGenerator
from .storage import Storage
from .summarize import Summarizer

logger = logging.getLogger(__name__)

# Order here is the order integrations sync in
INTEGRATIONS: dict[str, type[Integration]] = {
    "slack": SlackIntegration,
    "github": GitHubIntegration,
    "gcal": GCalIntegration,
    "jira": JiraIntegration,
}


@dataclass
class SyncResult:
    counts: dict[str, int] = field(default_factory=dict)
    messages: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def output(self) -> str:
        return "\n".join(self.messages)


def build_integrations(config: Config, storage: Storage, only: str | None = None) -> list[Integration]:
    """
    Instantiate the enabled connectors (or just `only`, if it's enabled).

    Raises:
        IntegrationError: Unknown integration name
        ConfigurationError: A connector is enabled but missing its credentials
    """
    if only and only not in INTEGRATIONS:
        raise IntegrationError(f"Unknown integration: {only}. Choose from: {', '.join(INTEGRATIONS)}")

    integrations = []
    for name, integration_cls in INTEGRATIONS.items():
        if only and name != only:
            continue
        if not config.get(f"integrations.{name}.enabled"):
            logger.info("%s integration disabled", integration_cls.label)
            continue
        integrations.append(integration_cls(config, storage))
    return integrations


def run_sync(
    config: Config,
    storage: Storage,
    days: int | None = None,
    integration: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    integrations: list[Integration] | None = None,
) -> SyncResult:
    """
    Sync every enabled integration for the window.

    The window defaults to the last `days` days (sync.lookback_days) ending
    now. An integration that fails setup stops the run; errors inside a
    connector are handled there.

    Args:
        integrations: Pre-built connectors (mostly for tests)
    """
    if end is None:
        end = datetime.now(storage.tz)
    if start is None:
        lookback = days if days is not None else config.get("sync.lookback_days", 1)
        start = end - timedelta(days=lookback)

    storage.init()
    if integrations is None:
        integrations = build_integrations(config, storage, integration)

    result = SyncResult()
    for connector in integrations:
        logger.info("Syncing %s...", connector.label)
        activities = connector.sync(start, end)
        result.counts[connector.name] = len(activities)
        result.messages.append(f"{connector.label}: {len(activities)} activities")
    return result


def dates_back(days: int, today: date | None = None) -> list[date]:
    """Today and the days - 1 days before it, newest first."""
    today = today or date.today()
    return [today - timedelta(days=offset) for offset in range(max(days, 1))]


def generate_journals(
    config: Config,
    storage: Storage,
    days: list[date],
    summarizer: Summarizer | None = None,
) -> list[Path]:
    """Generate the journal for each day that has activity. Returns the saved paths."""
    generator = JournalGenerator(config, storage, summarizer)
    paths = []
    for day in days:
        path = generator.generate(day)
        if path:
            paths.append(path)
    return paths


def run_all(
    config: Config,
    storage: Storage,
    days: int | None = None,
    integration: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    summarizer: Summarizer | None = None,
) -> tuple[SyncResult, list[Path]]:
    """
    Sync, then generate journals for every day in the window.

    With an explicit start/end, journals cover each day from start to end;
    otherwise the last `days` days ending today.
    """
    result = run_sync(config, storage, days=days, integration=integration, start=start, end=end)

    if start is not None:
        last = (end or datetime.now(storage.tz)).date()
        span = (last - start.date()).days + 1
        targets = dates_back(span, last)
    else:
        lookback = days if days is not None else config.get("sync.lookback_days", 1)
        targets = dates_back(lookback, datetime.now(storage.tz).date())

    paths = generate_journals(config, storage, targets, summarizer)
    return result, paths
