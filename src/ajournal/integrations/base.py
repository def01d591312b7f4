"""
Shared plumbing for the integration connectors.

Each connector only has to implement fetch_activities(). The sync() flow
around it is the same everywhere:

    fetch -> filter -> group by day -> save raw data -> update sync state
"""

import logging
import re
from collections import defaultdict
from datetime import datetime
from typing import Any, Iterable

from .. import dates
from ..config import Config
from ..storage import Storage

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Name Filters
# ---------------------------------------------------------------------------

def pattern_to_regex(pattern: str) -> re.Pattern:
    """
    Turn a glob-like pattern into a case-insensitive regex.

    Only "*" is special (any run of characters). Everything else matches
    literally, and the pattern has to cover the whole name:

        "test-*"  matches "test-foo", "TEST-bar"
                  but not "contest-1" or "test"
    """
    parts = [re.escape(part) for part in pattern.split("*")]
    return re.compile("^" + ".*".join(parts) + "$", re.IGNORECASE)


def matches_any(name: str, patterns: Iterable[str]) -> bool:
    return any(pattern_to_regex(pattern).match(name) for pattern in patterns)


def is_excluded(name: str, names: Iterable[str] = (), patterns: Iterable[str] = ()) -> bool:
    """True if name is in the exact-name list or matches one of the patterns."""
    if name is None:
        return False
    return name in set(names or ()) or matches_any(name, patterns or ())


def group_by_day(activities: list[dict], tz=None) -> dict[str, list[dict]]:
    """
    Bucket activities by the yyyy-MM-dd of their timestamp in tz.

    Records with a missing or unparseable timestamp are dropped (logged).
    """
    grouped: dict[str, list[dict]] = defaultdict(list)
    for activity in activities:
        try:
            key = dates.day_key(activity["timestamp"], tz)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            logger.warning("Dropping activity with bad timestamp %r: %s", activity.get("timestamp"), e)
            continue
        grouped[key].append(activity)
    return dict(grouped)


# ---------------------------------------------------------------------------
# Base Connector
# ---------------------------------------------------------------------------

class Integration:
    """
    One external API adapted into normalized activity records.

    Subclasses set `name` (the storage key, e.g. "slack") and `label`
    (what we print), and implement fetch_activities().
    """

    name = "base"
    label = "Base"

    def __init__(self, config: Config, storage: Storage):
        self.config = config
        self.storage = storage
        self.settings: dict[str, Any] = config.get(f"integrations.{self.name}", {}) or {}
        self.tz = storage.tz

    def fetch_activities(self, start: datetime, end: datetime) -> list[dict]:
        raise NotImplementedError

    def filter_activities(self, activities: list[dict]) -> list[dict]:
        """Hook for post-fetch filtering. Default keeps everything."""
        return activities

    def sync_identity(self) -> dict:
        """Extra fields for sync-state (who we synced as)."""
        return {}

    def sync(self, start: datetime, end: datetime) -> list[dict]:
        """
        Fetch, store and return every activity between start and end.

        Returns:
            Flat list of the activities that survived filtering
        """
        activities = self.filter_activities(self.fetch_activities(start, end))

        by_day = group_by_day(activities, self.tz)
        for day_str, day_activities in sorted(by_day.items()):
            self.storage.save_raw_data(self.name, day_str, day_activities)
            logger.info("%s: saved %d activities for %s", self.label, len(day_activities), day_str)

        self.storage.set_sync_state(self.name, {
            "lastSyncStart": start.isoformat(),
            "lastSyncEnd": end.isoformat(),
            "totalActivities": len(activities),
            **self.sync_identity(),
        })

        return activities
