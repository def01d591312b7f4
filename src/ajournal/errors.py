"""
Exceptions raised by ajournal.

Only setup-level problems are exceptions. Per-item API failures are logged
and skipped inside the connectors instead.
"""


class AJournalError(Exception):
    """Base class for all ajournal errors."""


class ConfigurationError(AJournalError):
    """A required setting, file or environment variable is missing."""


class AuthorizationError(AJournalError):
    """
    Stored credentials are expired or rejected.

    auth_url, when known, is where the operator can re-authorize.
    """

    def __init__(self, message: str, auth_url: str | None = None):
        super().__init__(message)
        self.auth_url = auth_url


class IntegrationError(AJournalError):
    """Unknown integration name."""
