"""
GitHub connector using the REST API over requests.

Activity kinds (each toggled in config):
- pr_created:     search `author:<me> type:pr created:<range>`
- pr_reviewed:    search `commenter:<me> type:pr updated:<range>`, then
                  fetch each candidate's reviews and keep the ones by me
- issue_activity: search `involves:<me> type:issue updated:<range>`
- commit:         list my repos (capped), then each repo's commits by me

PR review detection is an approximation. The search API can't filter by
reviewer + date, so a review with no comment can be missed, and every
candidate PR costs one extra request.
"""

import logging
from datetime import datetime

import requests

from .. import dates
from ..errors import ConfigurationError
from .base import Integration, is_excluded

logger = logging.getLogger(__name__)

# Repos we can list but not read commits from (empty repo, gone, no access)
SKIPPABLE_STATUS_CODES = {403, 404, 409}

# What a single malformed API item raises while we build its record
MALFORMED = (KeyError, TypeError, AttributeError, ValueError)


def repo_from_url(repository_url: str) -> str:
    """'https://api.github.com/repos/octo/hello' -> 'octo/hello'."""
    return "/".join(repository_url.rstrip("/").split("/")[-2:])


def item_ref(item) -> str:
    if isinstance(item, dict):
        return item.get("html_url") or str(item.get("number", "?"))
    return "?"


class GitHubIntegration(Integration):
    name = "github"
    label = "GitHub"

    def __init__(self, config, storage, session: requests.Session | None = None):
        super().__init__(config, storage)
        self.api_url = (self.settings.get("api_url") or "https://api.github.com").rstrip("/")
        if session is None:
            token = config.secret("integrations.github.token")
            if not token:
                raise ConfigurationError("GitHub token not set. Export GITHUB_TOKEN.")
            session = requests.Session()
            session.headers.update({
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            })
        self.session = session
        self.username: str | None = None

    def _get(self, path: str, params: dict | None = None):
        response = self.session.get(f"{self.api_url}{path}", params=params, timeout=30)
        response.raise_for_status()
        return response.json()

    def _search(self, query: str, sort: str) -> list[dict]:
        data = self._get("/search/issues", {"q": query, "sort": sort, "order": "desc", "per_page": 100})
        return data.get("items", [])

    def resolve_identity(self) -> None:
        if not self.username:
            self.username = self._get("/user")["login"]
            logger.info("Authenticated to GitHub as %s", self.username)

    def sync_identity(self) -> dict:
        return {"username": self.username}

    def _date_range(self, start: datetime, end: datetime) -> str:
        return f"{dates.day_key(start, self.tz)}..{dates.day_key(end, self.tz)}"

    def fetch_activities(self, start: datetime, end: datetime) -> list[dict]:
        self.resolve_identity()

        steps = (
            ("track_prs_created", self.get_prs_created),
            ("track_prs_reviewed", self.get_prs_reviewed),
            ("track_issues", self.get_issues_worked_on),
            ("track_commits", self.get_commits),
        )

        activities = []
        for setting, fetch in steps:
            if not self.settings.get(setting):
                continue
            try:
                activities.extend(fetch(start, end))
            except (requests.RequestException, KeyError, ValueError) as e:
                logger.error("GitHub %s failed: %s", fetch.__name__, e)

        return activities

    def filter_activities(self, activities: list[dict]) -> list[dict]:
        return [
            activity for activity in activities
            if not is_excluded(
                activity.get("repository"),
                self.settings.get("exclude_repos", []),
                self.settings.get("exclude_repo_patterns", []),
            )
        ]

    # -----------------------------------------------------------------------
    # Activity Kinds
    # -----------------------------------------------------------------------

    def get_prs_created(self, start: datetime, end: datetime) -> list[dict]:
        query = f"author:{self.username} type:pr created:{self._date_range(start, end)}"
        prs = []
        for pr in self._search(query, "created"):
            try:
                prs.append({
                    "type": "pr_created",
                    "repository": repo_from_url(pr["repository_url"]),
                    "title": pr.get("title", ""),
                    "number": pr.get("number"),
                    "url": pr.get("html_url"),
                    "timestamp": pr["created_at"],
                    "state": pr.get("state"),
                    "draft": pr.get("draft", False),
                    "labels": [label.get("name") for label in pr.get("labels", [])],
                })
            except MALFORMED as e:
                logger.warning("Skipping malformed GitHub PR %s: %r", item_ref(pr), e)
        return prs

    def get_prs_reviewed(self, start: datetime, end: datetime) -> list[dict]:
        query = f"commenter:{self.username} type:pr updated:{self._date_range(start, end)}"
        reviews = []

        for pr in self._search(query, "updated"):
            try:
                if (pr.get("user") or {}).get("login") == self.username:
                    continue
                repository = repo_from_url(pr["repository_url"])
                number = pr["number"]
            except MALFORMED as e:
                logger.warning("Skipping malformed GitHub PR %s: %r", item_ref(pr), e)
                continue

            try:
                pr_reviews = self._get(f"/repos/{repository}/pulls/{number}/reviews")
            except requests.RequestException as e:
                logger.error("Error fetching reviews for %s#%s: %s", repository, number, e)
                continue

            for review in pr_reviews:
                try:
                    submitted_at = review.get("submitted_at")
                    if (review.get("user") or {}).get("login") != self.username or not submitted_at:
                        continue
                    if not start <= dates.parse_timestamp(submitted_at) <= end:
                        continue
                except MALFORMED as e:
                    logger.warning("Skipping malformed review on %s#%s: %r", repository, number, e)
                    continue
                reviews.append({
                    "type": "pr_reviewed",
                    "repository": repository,
                    "title": pr.get("title", ""),
                    "number": number,
                    "url": pr.get("html_url"),
                    "timestamp": submitted_at,
                    "reviewState": review.get("state"),
                    "reviewBody": review.get("body") or "",
                    "author": (pr.get("user") or {}).get("login"),
                })

        return reviews

    def get_issues_worked_on(self, start: datetime, end: datetime) -> list[dict]:
        query = f"involves:{self.username} type:issue updated:{self._date_range(start, end)}"
        issues = []
        for issue in self._search(query, "updated"):
            try:
                assignees = [a.get("login") for a in issue.get("assignees", [])]
                issues.append({
                    "type": "issue_activity",
                    "repository": repo_from_url(issue["repository_url"]),
                    "title": issue.get("title", ""),
                    "number": issue.get("number"),
                    "url": issue.get("html_url"),
                    "timestamp": issue["updated_at"],
                    "state": issue.get("state"),
                    "labels": [label.get("name") for label in issue.get("labels", [])],
                    "assignees": assignees,
                    "isAssigned": self.username in assignees,
                })
            except MALFORMED as e:
                logger.warning("Skipping malformed GitHub issue %s: %r", item_ref(issue), e)
        return issues

    def get_commits(self, start: datetime, end: datetime) -> list[dict]:
        """
        Commits by the user across their most recently updated repos.

        Capped at max_repos to bound the request count. Repos we can't read
        are skipped quietly; other failures are logged and skipped, as are
        malformed repo or commit entries.
        """
        repos = self._get("/user/repos", {"type": "all", "sort": "updated", "per_page": 100})
        commits = []

        for repo in repos[: self.settings.get("max_repos", 20)]:
            try:
                full_name = repo["full_name"]
            except MALFORMED as e:
                logger.warning("Skipping malformed repo entry: %r", e)
                continue
            try:
                repo_commits = self._get(f"/repos/{full_name}/commits", {
                    "author": self.username,
                    "since": start.isoformat(),
                    "until": end.isoformat(),
                    "per_page": 100,
                })
            except requests.HTTPError as e:
                status = e.response.status_code if e.response is not None else None
                if status not in SKIPPABLE_STATUS_CODES:
                    logger.error("Error fetching commits from %s: %s", full_name, e)
                continue
            except requests.RequestException as e:
                logger.error("Error fetching commits from %s: %s", full_name, e)
                continue

            for commit in repo_commits:
                try:
                    stats = commit.get("stats") or {}
                    commits.append({
                        "type": "commit",
                        "repository": full_name,
                        "sha": commit.get("sha"),
                        "message": commit["commit"]["message"],
                        "url": commit.get("html_url"),
                        "timestamp": commit["commit"]["author"]["date"],
                        "additions": stats.get("additions", 0),
                        "deletions": stats.get("deletions", 0),
                        "totalChanges": stats.get("total", 0),
                    })
                except MALFORMED as e:
                    logger.warning("Skipping malformed commit in %s: %r", full_name, e)

        return commits
