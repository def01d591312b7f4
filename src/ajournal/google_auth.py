"""
Google Calendar authentication.

Two kinds of credentials file can sit at GOOGLE_CREDENTIALS_PATH:
- A service account key ({"type": "service_account", ...}), used as-is
- An OAuth client ({"installed": {...}} or {"web": {...}}), which also needs
  a user token saved at storage.google_token_file

OAuth Flow Overview:
    1. `ajournal setup --google` opens the browser to Google's consent screen
    2. The user grants read-only calendar access
    3. Google redirects to localhost with an authorization code
    4. The code is exchanged for access + refresh tokens, saved locally
    5. Later runs load the token and refresh it when it has expired

The token file IS a secret: anyone with it can read your calendar.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from google.auth.exceptions import GoogleAuthError, RefreshError
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .config import Config, expand_path
from .errors import AuthorizationError, ConfigurationError
from .storage import Storage

logger = logging.getLogger(__name__)

# Read-only is all we need: we never create or change events.
SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]

DEFAULT_REDIRECT_URI = "http://localhost"


@dataclass
class TokenStatus:
    valid: bool
    error: str | None = None
    needs_refresh: bool = False


# ---------------------------------------------------------------------------
# Credentials Files
# ---------------------------------------------------------------------------

def get_credentials_path(config: Config) -> Path:
    """
    Path to the Google credentials JSON.

    Raises:
        ConfigurationError: If GOOGLE_CREDENTIALS_PATH isn't set
    """
    path = config.secret("integrations.gcal.credentials_path")
    if not path:
        raise ConfigurationError("GOOGLE_CREDENTIALS_PATH environment variable not set")
    return expand_path(path)


def load_client_config(path: Path) -> dict:
    """
    Read a credentials file.

    Raises:
        ConfigurationError: If the file is missing or isn't JSON
    """
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Google credentials not found at: {path}")
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Could not read Google credentials at {path}: {e}")


def _oauth_client(client_config: dict) -> dict:
    """The {"client_id", "client_secret", ...} block, wherever it's nested."""
    return client_config.get("installed") or client_config.get("web") or client_config


def _flow_config(client_config: dict) -> dict:
    """Normalize to the {"installed": {...}} shape google_auth_oauthlib expects."""
    if "installed" in client_config or "web" in client_config:
        return client_config
    client = dict(client_config)
    client.setdefault("auth_uri", "https://accounts.google.com/o/oauth2/auth")
    client.setdefault("token_uri", "https://oauth2.googleapis.com/token")
    return {"installed": client}


def load_user_credentials(client_config: dict, token_path: Path) -> Credentials:
    """
    Build user credentials from the saved token.

    Accepts both our own Credentials.to_json() output and the older
    {"access_token": ..., "refresh_token": ...} token shape, filling in
    the client id/secret from the credentials file.

    Raises:
        AuthorizationError: If the token file is missing or unreadable
    """
    if not token_path.exists():
        raise AuthorizationError(
            f"Google OAuth token not found at {token_path}. Run: ajournal setup --google"
        )

    try:
        with open(token_path, encoding="utf-8") as f:
            token = json.load(f)
    except (OSError, ValueError) as e:
        raise AuthorizationError(f"Could not read Google token at {token_path}: {e}")

    client = _oauth_client(client_config)
    info = {
        "token": token.get("token") or token.get("access_token"),
        "refresh_token": token.get("refresh_token"),
        "token_uri": token.get("token_uri") or client.get("token_uri", "https://oauth2.googleapis.com/token"),
        "client_id": token.get("client_id") or client.get("client_id"),
        "client_secret": token.get("client_secret") or client.get("client_secret"),
    }
    if token.get("expiry"):
        info["expiry"] = token["expiry"]

    try:
        return Credentials.from_authorized_user_info(info, SCOPES)
    except ValueError as e:
        raise AuthorizationError(f"Invalid Google token at {token_path}: {e}")


def get_calendar_credentials(config: Config, storage: Storage):
    """
    Valid credentials for the Calendar API, refreshing the user token if needed.

    Raises:
        ConfigurationError: No usable credentials file
        AuthorizationError: Token missing, invalid or refresh rejected
    """
    credentials_path = get_credentials_path(config)
    client_config = load_client_config(credentials_path)

    if client_config.get("type") == "service_account":
        return service_account.Credentials.from_service_account_file(str(credentials_path), scopes=SCOPES)

    token_path = storage.google_token_file
    creds = load_user_credentials(client_config, token_path)

    if not creds.valid and creds.refresh_token:
        logger.info("Refreshing expired Google token...")
        try:
            creds.refresh(Request())
        except RefreshError as e:
            raise AuthorizationError(f"Google token refresh failed: {e}", auth_url=generate_auth_url(config))
        token_path.write_text(creds.to_json(), encoding="utf-8")

    return creds


def build_calendar_service(config: Config, storage: Storage):
    """A googleapiclient Calendar v3 resource."""
    creds = get_calendar_credentials(config, storage)
    return build("calendar", "v3", credentials=creds, cache_discovery=False)


# ---------------------------------------------------------------------------
# Token Validation
# ---------------------------------------------------------------------------

def validate_google_token(config: Config, storage: Storage) -> TokenStatus:
    """
    Check the saved token by making the cheapest real API call we can:
    listing one calendar.

    Returns:
        TokenStatus. needs_refresh is True when re-authorizing would fix it
        (no token, expired, revoked); False for problems a new token won't
        solve (bad credentials file, other API errors).
    """
    try:
        credentials_path = get_credentials_path(config)
    except ConfigurationError as e:
        return TokenStatus(valid=False, error=str(e))

    if not storage.google_token_file.exists():
        try:
            if load_client_config(credentials_path).get("type") == "service_account":
                return TokenStatus(valid=True)
        except ConfigurationError as e:
            return TokenStatus(valid=False, error=str(e))
        return TokenStatus(valid=False, error="Token file not found", needs_refresh=True)

    try:
        service = build_calendar_service(config, storage)
        service.calendarList().list(maxResults=1).execute()
        return TokenStatus(valid=True)
    except AuthorizationError:
        return TokenStatus(valid=False, error="Token expired or invalid", needs_refresh=True)
    except HttpError as e:
        if e.resp.status == 401:
            return TokenStatus(valid=False, error="Token expired or invalid", needs_refresh=True)
        return TokenStatus(valid=False, error=f"API Error: {e}")
    except (ConfigurationError, GoogleAuthError, OSError) as e:
        return TokenStatus(valid=False, error=f"Validation Error: {e}")


def generate_auth_url(config: Config) -> str | None:
    """
    URL the user opens to (re-)authorize calendar access.

    Syntax notes:
    - access_type="offline" asks for a refresh token
    - prompt="consent" forces Google to issue a fresh one even if the app
      was authorized before

    Returns:
        The URL, or None if there's no OAuth client to build it from.
    """
    try:
        client_config = load_client_config(get_credentials_path(config))
    except ConfigurationError as e:
        logger.error("Cannot build Google auth URL: %s", e)
        return None

    if client_config.get("type") == "service_account":
        return None

    client = _oauth_client(client_config)
    redirect_uris = client.get("redirect_uris") or [DEFAULT_REDIRECT_URI]
    flow = InstalledAppFlow.from_client_config(_flow_config(client_config), SCOPES, redirect_uri=redirect_uris[0])
    auth_url, _ = flow.authorization_url(access_type="offline", prompt="consent")
    return auth_url


def run_oauth_flow(config: Config, storage: Storage) -> Path:
    """
    Interactive browser authorization. Saves and returns the token file.

    Raises:
        ConfigurationError: If the credentials file is missing or is a
            service account (nothing to authorize)
    """
    client_config = load_client_config(get_credentials_path(config))
    if client_config.get("type") == "service_account":
        raise ConfigurationError("Service account credentials don't need browser authorization")

    print("Opening browser for Google Calendar authorization...")
    print("(You only need to do this once)")

    # run_local_server() blocks until auth completes; port=0 picks any free port
    flow = InstalledAppFlow.from_client_config(_flow_config(client_config), SCOPES)
    creds = flow.run_local_server(port=0, access_type="offline", prompt="consent")

    token_path = storage.google_token_file
    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(creds.to_json(), encoding="utf-8")
    print(f"Google credentials saved to: {token_path}")
    return token_path


def validate_before_run(config: Config, storage: Storage) -> bool:
    """
    Gate for `sync` / `run`: is the calendar usable?

    Always True when the calendar integration is disabled. Otherwise prints
    what's wrong (and the re-authorization URL when that would help).
    """
    if not config.get("integrations.gcal.enabled"):
        return True

    status = validate_google_token(config, storage)
    if status.valid:
        print("Google Calendar token is valid")
        return True

    if status.needs_refresh:
        print("Google Calendar authentication failed. The token needs to be refreshed.")
        auth_url = generate_auth_url(config)
        if auth_url:
            print("\nAuthorization URL:")
            print(auth_url)
        print("\nThen run: ajournal setup --google")
    else:
        print(f"Google Calendar validation failed: {status.error}")

    return False
