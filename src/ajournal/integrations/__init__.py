"""Connectors that pull activity from external services."""

from .base import Integration, group_by_day, is_excluded, matches_any, pattern_to_regex
from .gcal import GCalIntegration
from .github import GitHubIntegration
from .jira import JiraIntegration
from .slack import SlackIntegration

__all__ = [
    "Integration",
    "GCalIntegration",
    "GitHubIntegration",
    "JiraIntegration",
    "SlackIntegration",
    "group_by_day",
    "is_excluded",
    "matches_any",
    "pattern_to_regex",
]
