"""
Configuration management for ajournal.

This module handles loading settings from config.yaml with sensible defaults.
The config file is optional on first run - it gets created from defaults.

Configuration hierarchy:
1. config.yaml in the working directory (or $AJOURNAL_CONFIG)
2. Built-in defaults (if config missing or key not specified)

Values can reference environment variables as ${NAME}. They are resolved
when read, never when saved, so API tokens pulled from the environment
don't end up written into config.yaml.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml  # PyYAML

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config File Paths
# ---------------------------------------------------------------------------

def get_config_path() -> Path:
    """
    Get the path to the config file.

    $AJOURNAL_CONFIG wins if set; otherwise config.yaml in the current
    working directory (same place the data/ folder lives by default).

    Returns:
        Path to the YAML config file
    """
    override = os.environ.get("AJOURNAL_CONFIG")
    if override:
        return expand_path(override)
    return Path.cwd() / "config.yaml"


# ---------------------------------------------------------------------------
# Default Configuration
# ---------------------------------------------------------------------------

# Structure mirrors the YAML file for easy mental mapping.

DEFAULT_SUMMARIZATION_PROMPT = """Analyze the following work activities and create a concise, professional summary for a work journal. Focus on:
- Key accomplishments and progress made
- Important communications and decisions
- Time allocation across different activities
- Notable insights or blockers encountered

Format as bullet points under relevant categories. Keep it factual and actionable."""

DEFAULT_CONFIG = {
    "integrations": {
        "slack": {
            "enabled": True,
            "token": "${SLACK_USER_TOKEN}",
            "workspace": "${SLACK_WORKSPACE}",
            "exclude_channels": ["random", "general"],
            "exclude_channel_patterns": ["test-*", "temp-*"],
            "track_dms": True,
            "track_threads": True,
            "min_message_length": 10,
            # search.messages caps count at 100 per page
            "max_messages": 100,
            "max_pages": 5,
            # Seconds. ~50 requests/minute keeps us under Tier 3 limits.
            "rate_limit_delay": 1.2,
            "thread_delay": 0.5,
        },
        "github": {
            "enabled": True,
            "token": "${GITHUB_TOKEN}",
            "api_url": "https://api.github.com",
            "exclude_repos": [],
            "exclude_repo_patterns": ["*-playground", "*-test"],
            "track_prs_created": True,
            "track_prs_reviewed": True,
            "track_issues": False,
            "track_commits": False,
            "max_repos": 20,
        },
        "gcal": {
            "enabled": True,
            "credentials_path": "${GOOGLE_CREDENTIALS_PATH}",
            "include_calendars": [],
            "exclude_calendars": ["personal", "Birthdays", "holidays"],
            "exclude_calendar_patterns": ["*personal*", "*birthday*", "*holiday*"],
            "exclude_events": [],
            "exclude_event_patterns": [],
            "min_duration": 15,
            "track_attendees": True,
            "track_location": False,
        },
        "jira": {
            "enabled": False,
            "protocol": "https",
            "host": "your-company.atlassian.net",
            "username": "your-email@company.com",
            "api_token": "${JIRA_API_TOKEN}",
            "api_version": "2",
            "strict_ssl": True,
            "track_created": True,
            "track_updated": True,
            "track_commented": True,
            "include_projects": [],
            "exclude_projects": [],
            "exclude_project_patterns": ["TEST-*", "TEMP-*"],
            "max_results": 100,
        },
    },
    "ai": {
        "provider": "anthropic",
        "api_key": "${ANTHROPIC_API_KEY}",
        "model": "claude-sonnet-4-5",
        "summarization_prompt": DEFAULT_SUMMARIZATION_PROMPT,
        "categorize_work": True,
        "include_metrics": True,
        "max_tokens": 2000,
        # How many activities the offline fallback summary lists
        "fallback_items": 10,
    },
    "journal": {
        "output_dir": "./data/journals",
        "include_metrics": True,
        "include_raw_data": False,
        "date_format": "%Y-%m-%d",
        "time_format": "%H:%M",
        # IANA name like "Europe/Berlin"; empty means the system time zone
        "timezone": None,
    },
    "sync": {
        "lookback_days": 1,
    },
    "storage": {
        "data_dir": "./data",
        "sync_state_file": "./data/sync-state.json",
        "raw_data_dir": "./data/raw-data",
        "google_token_file": "./data/google-token.json",
    },
    "secrets": {
        "base_path": "~/.secrets",
        "shared_folder": "shared",
    },
    "logging": {
        "level": "INFO",
        "file": None,
    },
    "web": {
        "host": "127.0.0.1",
        "port": 3000,
    },
}


# ---------------------------------------------------------------------------
# Merge / Resolve Helpers
# ---------------------------------------------------------------------------

def _deep_copy(value: Any) -> Any:
    """
    Create a deep copy of nested dicts and lists.

    We can't just use d.copy() because that's shallow -
    nested dicts would still reference the originals.
    """
    if isinstance(value, dict):
        return {key: _deep_copy(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_deep_copy(item) for item in value]
    return value


def _deep_merge(base: dict, overlay: dict) -> dict:
    """
    Deep merge overlay into base, returning a new dict.

    - Keys in overlay overwrite keys in base
    - Nested dicts are merged recursively
    - Lists and other values are replaced entirely

    Args:
        base: Base configuration (defaults)
        overlay: User configuration to merge in

    Returns:
        Merged configuration
    """
    result = _deep_copy(base)

    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = _deep_copy(value)

    return result


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def resolve_env_variables(value: Any) -> Any:
    """
    Replace ${NAME} with the value of environment variable NAME.

    Walks dicts and lists recursively. Unset variables leave the
    placeholder exactly as written.

    Example:
        resolve_env_variables({"token": "${GITHUB_TOKEN}"})
        # -> {"token": "ghp_..."} if GITHUB_TOKEN is set
    """
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1)) or m.group(0), value)
    if isinstance(value, list):
        return [resolve_env_variables(item) for item in value]
    if isinstance(value, dict):
        return {key: resolve_env_variables(item) for key, item in value.items()}
    return value


# ---------------------------------------------------------------------------
# Config Object
# ---------------------------------------------------------------------------

class Config:
    """
    Loaded configuration, created once at start-up and passed around.

    Holds the raw (unresolved) settings tree; every read goes through
    resolve_env_variables().
    """

    def __init__(self, data: dict | None = None, path: Path | str | None = None):
        self.path = Path(path) if path else get_config_path()
        self.data = _deep_copy(DEFAULT_CONFIG) if data is None else data

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """
        Load configuration from file, falling back to defaults.

        Merge strategy:
        - Start with DEFAULT_CONFIG
        - If the file exists, overlay its values
        - Missing keys in YAML use defaults
        - Extra keys in YAML are preserved

        A missing file is written out from defaults so there is something
        to edit. A broken file is logged and ignored.
        """
        config = cls(path=path)

        if not config.path.exists():
            try:
                config.save()
            except OSError as e:
                logger.warning("Could not write default config to %s: %s", config.path, e)
            return config

        try:
            with open(config.path, encoding="utf-8") as f:
                user_config = yaml.safe_load(f)

            if isinstance(user_config, dict):
                config.data = _deep_merge(config.data, user_config)
            elif user_config is not None:
                logger.warning("Ignoring %s: top level is not a mapping", config.path)

        except (yaml.YAMLError, OSError) as e:
            logger.warning("Error reading %s: %s", config.path, e)
            logger.warning("Using default configuration.")

        return config

    def get(self, key_path: str | None = None, default: Any = None) -> Any:
        """
        Get a config value using dot-notation path.

        Examples:
            get("ai.model")                        # "claude-sonnet-4-5"
            get("integrations.slack.max_pages")    # 5
            get("nonexistent.key", "fallback")     # "fallback"
            get()                                  # the whole (resolved) tree

        Args:
            key_path: Dot-separated path, or None for everything
            default: Value to return if path not found

        Returns:
            The config value with ${VAR} placeholders resolved
        """
        if not key_path:
            return resolve_env_variables(self.data)

        value = self.data
        for key in key_path.split("."):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return resolve_env_variables(value)

    def set(self, key_path: str, value: Any) -> None:
        """Set a value by dotted path, creating intermediate dicts."""
        keys = key_path.split(".")
        target = self.data
        for key in keys[:-1]:
            if not isinstance(target.get(key), dict):
                target[key] = {}
            target = target[key]
        target[keys[-1]] = value

    def update(self, overlay: dict) -> None:
        """Replace settings with overlay merged over the defaults."""
        self.data = _deep_merge(DEFAULT_CONFIG, overlay)

    def secret(self, key_path: str) -> str | None:
        """
        Get a credential, treating unresolved placeholders as missing.

        "${GITHUB_TOKEN}" left as-is means the variable isn't set,
        which for our purposes is the same as no token at all.
        """
        value = self.get(key_path)
        if not value or not isinstance(value, str) or _ENV_PATTERN.search(value):
            return None
        return value

    def as_dict(self, resolve: bool = True) -> dict:
        """Copy of the settings tree, resolved unless asked otherwise."""
        return self.get() if resolve else _deep_copy(self.data)

    def save(self) -> None:
        """Write the raw settings (placeholders intact) to self.path."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.data, f, sort_keys=False, allow_unicode=True)

    def reset(self) -> None:
        """Restore defaults and save."""
        self.data = _deep_copy(DEFAULT_CONFIG)
        self.save()


# ---------------------------------------------------------------------------
# Path Expansion
# ---------------------------------------------------------------------------

def expand_path(path_str: str | Path) -> Path:
    """
    Turn a configured path into a Path, expanding a leading ~.

    Relative paths stay relative to the working directory, which is where
    config.yaml and the data/ folder live by default.
    """
    return Path(path_str).expanduser()
