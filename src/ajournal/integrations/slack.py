"""
Slack connector built on search.messages.

Why search instead of walking conversations.history?
- One query per day finds the user's messages in every channel at once
- conversations.history would need a call per channel per page

The catch is that search doesn't return thread replies reliably, so for
every thread the user started we fetch the replies separately.

Everything is sequential with fixed sleeps between calls to stay under
Slack's Tier 3 rate limit (~50 requests/minute).
"""

import logging
import time
from datetime import datetime, timezone

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from .. import dates
from ..errors import ConfigurationError
from .base import Integration, is_excluded

logger = logging.getLogger(__name__)


# Keyword -> intent. Every category that matches is attached.
INTENT_KEYWORDS = {
    "decision": ("decision", "decide", "should we"),
    "status_update": ("update", "progress", "done", "completed"),
    "coordination": ("meeting", "schedule", "sync", "coordinate"),
    "problem_solving": ("issue", "problem", "bug", "error"),
    "information_sharing": ("fyi", "heads up", "announcement"),
}


def extract_intent(text: str) -> list[str]:
    """
    Coarse intent labels for a message, from literal keyword matches.

    Example:
        extract_intent("FYI the deploy is done")
        # ["status_update", "information_sharing"]
    """
    lowered = text.lower()
    intents = []

    if "?" in text or lowered.startswith(("how ", "what ", "why ")):
        intents.append("question")

    for intent, keywords in INTENT_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            intents.append(intent)

    return intents or ["general_communication"]


def get_channel_info(channel: dict) -> tuple[str, str]:
    """
    Classify the channel a message lives in.

    Returns:
        (activity type, display name)
    """
    if channel.get("is_im"):
        return "direct_message", "Direct Message"
    if channel.get("is_mpim"):
        return "group_message", "Group DM"
    if channel.get("is_private"):
        return "private_channel_message", channel.get("name", "")
    if channel.get("is_channel"):
        return "public_channel_message", channel.get("name", "")
    return "unknown_message", channel.get("id", "")


def ts_to_datetime(ts: str) -> datetime:
    """Slack timestamps are "epoch.seconds" strings."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)


class SlackIntegration(Integration):
    name = "slack"
    label = "Slack"

    def __init__(self, config, storage, client: WebClient | None = None):
        super().__init__(config, storage)
        if client is None:
            token = config.secret("integrations.slack.token")
            if not token:
                raise ConfigurationError(
                    "Slack token not set. Export SLACK_USER_TOKEN (a user token with search:read)."
                )
            client = WebClient(token=token)
        self.client = client
        self.user_id: str | None = None
        self.username: str | None = None
        self.workspace = config.secret("integrations.slack.workspace") or "yourworkspace"

    def _pause(self, seconds: float | None) -> None:
        if seconds:
            time.sleep(seconds)

    def resolve_identity(self) -> None:
        """Look up who the token belongs to. Only calls auth.test once."""
        if self.user_id:
            return
        result = self.client.auth_test()
        self.user_id = result["user_id"]
        self.username = result["user"]
        logger.info("Authenticated to Slack as %s (@%s)", self.user_id, self.username)

    def sync_identity(self) -> dict:
        return {"userId": self.user_id, "username": self.username, "method": "search_api_daily"}

    def fetch_activities(self, start: datetime, end: datetime) -> list[dict]:
        self.resolve_identity()

        activities = []
        for day in dates.iter_days(start, end, self.tz):
            messages = self.search_user_messages(day.isoformat())
            day_activities = []
            for msg in messages:
                processed = self.process_message(msg)
                if processed and self.should_include_message(processed):
                    day_activities.append(processed)

            logger.info("Slack: %d activities for %s", len(day_activities), day.isoformat())
            activities.extend(day_activities)
            self._pause(self.settings.get("rate_limit_delay", 1.2))

        return activities

    def search_user_messages(self, date_str: str) -> list[dict]:
        """
        All of the user's messages on one day, plus their thread replies.

        Pages through search results until a short page, an empty page,
        or max_pages. A failed request ends the day with what we have.
        """
        query = f"from:{self.username} on:{date_str}"
        count = min(self.settings.get("max_messages", 100), 100)
        max_pages = self.settings.get("max_pages", 5)

        messages: list[dict] = []
        page = 1
        while page <= max_pages:
            try:
                result = self.client.search_messages(
                    query=query,
                    sort="timestamp",
                    sort_dir="desc",
                    count=count,
                    page=page,
                )
            except SlackApiError as e:
                logger.error("Slack search failed for %s (page %d): %s", date_str, page, e)
                break

            matches = (result.get("messages") or {}).get("matches") or []
            if not matches:
                break

            messages.extend(matches)
            if len(matches) < count:
                break

            page += 1
            self._pause(self.settings.get("rate_limit_delay", 1.2))

        if self.settings.get("track_threads", True):
            messages.extend(self.get_thread_replies(messages, date_str))

        return messages

    def get_thread_replies(self, messages: list[dict], date_str: str) -> list[dict]:
        """
        Replies by the user in threads they started, limited to date_str.

        Only top-level thread parents are expanded (thread_ts == ts). Replies
        already returned by search are not added twice.
        """
        seen = {((m.get("channel") or {}).get("id"), m.get("ts")) for m in messages}
        processed_threads = set()
        replies_found = []

        for message in messages:
            thread_ts = message.get("thread_ts")
            if not thread_ts or thread_ts != message.get("ts") or thread_ts in processed_threads:
                continue

            channel = message.get("channel") or {}
            processed_threads.add(thread_ts)
            try:
                response = self.client.conversations_replies(channel=channel.get("id"), ts=thread_ts, limit=100)
            except SlackApiError as e:
                logger.error("Error fetching thread replies in %s: %s", channel.get("name"), e)
                continue

            for reply in response.get("messages") or []:
                key = (channel.get("id"), reply.get("ts"))
                if (
                    reply.get("user") == self.user_id
                    and reply.get("ts") != message.get("ts")
                    and key not in seen
                    and self.is_message_on_date(reply.get("ts"), date_str)
                ):
                    seen.add(key)
                    replies_found.append(self.convert_reply(reply, channel))

            self._pause(self.settings.get("thread_delay", 0.5))

        return replies_found

    def is_message_on_date(self, ts: str | None, date_str: str) -> bool:
        if not ts:
            return False
        return dates.day_key(ts_to_datetime(ts), self.tz) == date_str

    def convert_reply(self, reply: dict, channel: dict) -> dict:
        """Shape a conversations.replies message like a search match."""
        ts = reply["ts"]
        thread_ts = reply.get("thread_ts", "")
        return {
            "channel": channel,
            "user": reply.get("user"),
            "username": self.username,
            "ts": ts,
            "thread_ts": thread_ts,
            "text": reply.get("text", ""),
            "permalink": (
                f"https://{self.workspace}.slack.com/archives/{channel.get('id')}"
                f"/p{ts.replace('.', '')}?thread_ts={thread_ts}"
            ),
            "reactions": reply.get("reactions", []),
        }

    def process_message(self, msg: dict) -> dict | None:
        """Normalize a search match (or converted reply). Malformed ones come back as None."""
        try:
            channel = msg.get("channel") or {}
            activity_type, channel_name = get_channel_info(channel)
            text = msg.get("text") or ""
            return {
                "type": activity_type,
                "channel": channel_name,
                "channelId": channel.get("id"),
                "timestamp": ts_to_datetime(msg["ts"]).isoformat(),
                "text": text,
                "user": msg.get("user"),
                "isUserMessage": True,
                "threadTs": msg.get("thread_ts"),
                "permalink": msg.get("permalink"),
                "reactions": [],
                "intent": extract_intent(text),
                "searchScore": msg.get("score", 0),
            }
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Skipping malformed Slack message: %s", e)
            return None

    def should_include_message(self, message: dict) -> bool:
        if len(message.get("text", "")) < self.settings.get("min_message_length", 0):
            return False

        if is_excluded(
            message.get("channel"),
            self.settings.get("exclude_channels", []),
            self.settings.get("exclude_channel_patterns", []),
        ):
            return False

        if not self.settings.get("track_dms", True) and message.get("type") == "direct_message":
            return False

        return True
