"""
Web UI and JSON API.

Serve with `ajournal serve`. Every blocking call (file IO, API syncs, model
calls) runs in a worker thread via asyncio.to_thread so the event loop
stays responsive. Requests are not serialized against each other: two
syncs started at once will both run.
"""

import asyncio
import copy
import logging
import os
from datetime import date, datetime
from pathlib import Path
from typing import Any

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from . import dates, google_auth
from .config import Config
from .storage import Storage
from .sync import dates_back, generate_journals, run_all, run_sync

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"

ENV_VARIABLES = (
    "ANTHROPIC_API_KEY",
    "SLACK_USER_TOKEN",
    "GITHUB_TOKEN",
    "GOOGLE_CREDENTIALS_PATH",
    "JIRA_API_TOKEN",
)


# ---------------------------------------------------------------------------
# Request Bodies
# ---------------------------------------------------------------------------

class SyncRequest(BaseModel):
    integration: str | None = None
    days: int | None = None


class RunRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    days: int | None = None
    start_date: date | None = Field(default=None, alias="startDate")
    end_date: date | None = Field(default=None, alias="endDate")


class GenerateRequest(BaseModel):
    date: str | None = None
    range: int | None = None


class JournalUpdateRequest(BaseModel):
    content: str | None = None


def action_result(success: bool, message: str, output: str = "", error: str | None = None) -> JSONResponse:
    """The {success, message, output, error} shape every mutating endpoint returns."""
    body: dict[str, Any] = {"success": success, "message": message, "output": output}
    if error is not None:
        body["error"] = error
    return JSONResponse(body, status_code=200 if success else 500)


def with_current_jira_token(config: Config, payload: dict) -> dict:
    """
    Copy of a posted settings tree that keeps the saved Jira token.

    GET /api/config never sends the token, so a tree posted back without
    one keeps whatever config.yaml already holds.
    """
    settings = copy.deepcopy(payload)
    integrations = settings.setdefault("integrations", {})
    if not isinstance(integrations, dict):
        return settings
    jira = integrations.setdefault("jira", {})
    if isinstance(jira, dict) and "api_token" not in jira:
        current = config.as_dict(resolve=False).get("integrations", {}).get("jira", {})
        if "api_token" in current:
            jira["api_token"] = current["api_token"]
    return settings


def _parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=404, detail="Journal not found")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

def register_journal_routes(app: FastAPI, storage: Storage) -> None:
    """Journal listing, reading and editing."""

    def describe(relative_path: str) -> dict:
        path = storage.output_dir / relative_path
        content = path.read_text(encoding="utf-8")
        stats = path.stat()
        title = next((line[2:].strip() for line in content.splitlines() if line.startswith("# ")), path.stem)
        return {
            "id": path.stem,
            "title": title,
            "date": path.stem,
            "path": str(path),
            "size": stats.st_size,
            "modified": datetime.fromtimestamp(stats.st_mtime).isoformat(),
            "preview": content[:200] + "...",
        }

    @app.get("/api/journals")
    async def list_journals() -> list[dict]:
        """All journals, newest first."""
        try:
            relative_paths = await asyncio.to_thread(storage.list_journals)
            return [await asyncio.to_thread(describe, p) for p in relative_paths]
        except OSError as exc:
            logger.exception("Failed to list journals: %s", exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @app.get("/api/journals/{day}")
    async def get_journal(day: str) -> dict:
        path = await asyncio.to_thread(storage.find_journal, _parse_day(day))
        if path is None:
            raise HTTPException(status_code=404, detail="Journal not found")

        content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        stats = path.stat()
        return {
            "id": day,
            "date": day,
            "content": content,
            "path": str(path),
            "size": stats.st_size,
            "modified": datetime.fromtimestamp(stats.st_mtime).isoformat(),
        }

    @app.put("/api/journals/{day}")
    async def update_journal(day: str, request: JournalUpdateRequest) -> dict:
        if not request.content:
            raise HTTPException(status_code=400, detail="Content is required")

        path = await asyncio.to_thread(storage.find_journal, _parse_day(day))
        if path is None:
            raise HTTPException(status_code=404, detail="Journal not found")

        await asyncio.to_thread(path.write_text, request.content, encoding="utf-8")
        stats = path.stat()
        return {
            "id": day,
            "date": day,
            "content": request.content,
            "size": stats.st_size,
            "modified": datetime.fromtimestamp(stats.st_mtime).isoformat(),
            "message": "Journal updated successfully",
        }


def register_action_routes(app: FastAPI, config: Config, storage: Storage) -> None:
    """Sync / run / generate, called in-process."""

    @app.get("/api/status")
    async def status() -> dict:
        state = await asyncio.to_thread(storage.get_sync_state)
        return state or {"status": "No sync data available"}

    @app.post("/api/sync")
    async def sync(request: SyncRequest | None = None) -> JSONResponse:
        request = request or SyncRequest()
        try:
            result = await asyncio.to_thread(
                run_sync, config, storage, days=request.days, integration=request.integration
            )
        except Exception as exc:
            logger.exception("Sync failed: %s", exc)
            return action_result(False, "Sync failed", error=str(exc))
        return action_result(True, "Sync completed successfully", result.output)

    @app.post("/api/run")
    async def run(request: RunRequest | None = None) -> JSONResponse:
        request = request or RunRequest()

        if config.get("integrations.gcal.enabled"):
            token = await asyncio.to_thread(google_auth.validate_google_token, config, storage)
            if not token.valid:
                return JSONResponse({
                    "success": False,
                    "message": "Google Calendar token expired or invalid. Please refresh your token.",
                    "needsTokenRefresh": True,
                }, status_code=400)

        start = end = None
        if request.start_date:
            today = datetime.now(storage.tz).date()
            if request.start_date > today:
                return JSONResponse(
                    {"success": False, "message": "Cannot sync future dates"}, status_code=400
                )
            last = min(request.end_date or request.start_date, today)
            start = dates.start_of_day(request.start_date, storage.tz)
            end = min(dates.end_of_day(last, storage.tz), datetime.now(storage.tz))

        try:
            result, paths = await asyncio.to_thread(
                run_all, config, storage, days=request.days, start=start, end=end
            )
        except Exception as exc:
            logger.exception("Run failed: %s", exc)
            return action_result(False, "Journal update failed", error=str(exc))

        output = "\n".join(result.messages + [f"Journal saved to: {p}" for p in paths])
        return action_result(True, f"Journal update completed ({len(paths)} journals)", output)

    @app.post("/api/generate")
    async def generate(request: GenerateRequest | None = None) -> JSONResponse:
        request = request or GenerateRequest()
        try:
            if request.date:
                paths = await asyncio.to_thread(
                    generate_journals, config, storage, [date.fromisoformat(request.date)]
                )
            elif request.range:
                today = datetime.now(storage.tz).date()
                paths = await asyncio.to_thread(
                    generate_journals, config, storage, dates_back(request.range, today)
                )
            else:
                _, paths = await asyncio.to_thread(run_all, config, storage)
        except Exception as exc:
            logger.exception("Journal generation failed: %s", exc)
            return action_result(False, "Journal generation failed", error=str(exc))

        output = "\n".join(f"Journal saved to: {p}" for p in paths)
        return action_result(True, "Journal generation completed", output)


def register_settings_routes(app: FastAPI, config: Config, storage: Storage) -> None:
    """Config editing and credential checks."""

    @app.get("/api/config")
    async def get_config() -> dict:
        """Settings as written in config.yaml (placeholders intact), minus the Jira token."""
        settings = config.as_dict(resolve=False)
        settings.get("integrations", {}).get("jira", {}).pop("api_token", None)
        return settings

    @app.put("/api/config")
    async def update_config(payload: dict = Body(...)) -> dict:
        settings = with_current_jira_token(config, payload)
        try:
            config.update(settings)
            await asyncio.to_thread(config.save)
        except OSError as exc:
            logger.exception("Failed to save config: %s", exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"message": "Configuration updated successfully", "config": payload}

    @app.get("/api/env-status")
    async def env_status() -> dict[str, bool]:
        """Which credentials are present (never their values)."""
        return {name: bool(os.environ.get(name)) for name in ENV_VARIABLES}

    @app.get("/api/gcal-token-status")
    async def gcal_token_status() -> dict:
        token = await asyncio.to_thread(google_auth.validate_google_token, config, storage)
        if not token.valid and token.needs_refresh:
            auth_url = await asyncio.to_thread(google_auth.generate_auth_url, config)
            if auth_url:
                return {
                    "valid": False,
                    "needsRefresh": True,
                    "authUrl": auth_url,
                    "message": "Token expired. Please refresh using the provided URL.",
                }
            return {"valid": False, "needsRefresh": False, "error": "Google credentials not configured"}
        return {"valid": token.valid, "needsRefresh": False, "error": token.error}


def create_app(config: Config | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Run standalone with: uvicorn --factory ajournal.web:create_app
    """
    config = config or Config.load()
    storage = Storage(config)
    storage.init()

    app = FastAPI(title="AJournal", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_journal_routes(app, storage)
    register_action_routes(app, config, storage)
    register_settings_routes(app, config, storage)

    @app.get("/", include_in_schema=False)
    async def index() -> FileResponse:
        return FileResponse(STATIC_DIR / "index.html")

    return app
