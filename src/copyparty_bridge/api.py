"""HTTP surface: the JSON file-action endpoint and the inventory loader."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Literal, Optional

import httpx
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from copyparty_bridge import __version__
from copyparty_bridge.config import Settings, get_settings
from copyparty_bridge.connection import connection_from_settings, should_forward_cookies
from copyparty_bridge.exceptions import (
    AlreadyExistsError,
    CopypartyError,
    DestinationRejectedError,
    MutationError,
    NotConfiguredError,
    PermissionDeniedError,
    ValidationError,
)
from copyparty_bridge.listing import list_directory, parse_sort_direction, parse_sort_key, sort_files
from copyparty_bridge.mutations import MutationClient

logger = logging.getLogger(__name__)

CLIENT_ERRORS = (
    ValidationError,
    NotConfiguredError,
    AlreadyExistsError,
    PermissionDeniedError,
    DestinationRejectedError,
)
CLIENT_ERROR_HINTS = ("required", "invalid", "cannot", "exists", "not configured", "denied")

ACTION_FIELDS: dict[str, list[tuple[str, str]]] = {
    "delete": [("path", "Path is required.")],
    "rename": [("path", "Path is required."), ("new_name", "New name is required.")],
    "mkdir": [("path", "Parent path is required."), ("name", "Folder name is required.")],
    "move": [("path", "Path is required."), ("destination_path", "Destination path is required.")],
}


# --- Pydantic Models ---
class FileAction(BaseModel):
    """Body of POST /api/files. Non-string values are treated as missing."""

    model_config = ConfigDict(populate_by_name=True)

    action: Optional[str] = None
    path: Optional[str] = None
    new_name: Optional[str] = Field(default=None, alias="newName")
    name: Optional[str] = None
    destination_path: Optional[str] = Field(default=None, alias="destinationPath")

    @field_validator("*", mode="before")
    @classmethod
    def strings_only(cls, v: Any) -> Optional[str]:
        if not isinstance(v, str):
            return None
        return v.strip() or None


class ActionResponse(BaseModel):
    ok: bool
    error: Optional[str] = None


# --- Dependencies ---
def settings_dependency() -> Settings:
    """Settings are re-read for every request."""
    return get_settings()


async def http_client_dependency(request: Request) -> httpx.AsyncClient:
    return request.app.state.http


def _fail(error: str, status_code: int) -> JSONResponse:
    return JSONResponse(ActionResponse(ok=False, error=error).model_dump(), status_code=status_code)


def error_status(error: CopypartyError) -> int:
    """400 for problems the caller can fix, 502 for upstream failures."""
    if isinstance(error, CLIENT_ERRORS):
        return 400
    if isinstance(error, MutationError) and error.status_code in (401, 403):
        return 400
    message = str(error).lower()
    if any(hint in message for hint in CLIENT_ERROR_HINTS):
        return 400
    return 502


def request_origin(request: Request) -> str:
    return f"{request.url.scheme}://{request.url.netloc}"


def validate_action(payload: FileAction) -> Optional[str]:
    """Check the fields an action needs. Returns an error message or None."""
    required = ACTION_FIELDS.get(payload.action or "")
    if required is None:
        return "Unknown action."
    for field_name, message in required:
        if not getattr(payload, field_name):
            return message
    return None


async def run_action(payload: FileAction, mutations: MutationClient) -> None:
    """Run one validated action."""
    if payload.action == "delete":
        await mutations.delete(payload.path)
    elif payload.action == "rename":
        await mutations.rename(payload.path, payload.new_name)
    elif payload.action == "mkdir":
        await mutations.mkdir(payload.path, payload.name)
    elif payload.action == "move":
        await mutations.move(payload.path, payload.destination_path)


def create_app() -> FastAPI:
    """Build the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with httpx.AsyncClient() as http:
            app.state.http = http
            yield

    app = FastAPI(title="copyparty-bridge", version=__version__, lifespan=lifespan)

    @app.post("/api/files", response_model=ActionResponse)
    async def file_action(
        request: Request,
        settings: Settings = Depends(settings_dependency),
        http: httpx.AsyncClient = Depends(http_client_dependency),
    ) -> Any:
        try:
            raw = await request.json()
        except ValueError:
            return _fail("Invalid JSON body.", 400)
        if not isinstance(raw, dict):
            return _fail("Invalid JSON body.", 400)
        payload = FileAction.model_validate(raw)

        cookie = ""
        if should_forward_cookies(str(request.url), settings.base_url):
            cookie = request.headers.get("cookie", "")

        error = validate_action(payload)
        if error is not None:
            return _fail(error, 400)

        try:
            connection = connection_from_settings(settings)
            mutations = MutationClient(connection, http, request_cookie=cookie)
            await run_action(payload, mutations)
        except CopypartyError as e:
            logger.warning(f"File action {payload.action!r} on {payload.path!r} failed: {e}")
            return _fail(str(e) or "Unexpected file operation failure.", error_status(e))

        logger.info(f"File action {payload.action} on {payload.path} succeeded")
        return ActionResponse(ok=True)

    @app.get("/api/inventory")
    async def inventory(
        request: Request,
        path: Optional[str] = None,
        sort: Optional[str] = None,
        direction: Optional[str] = Query(default=None, alias="dir"),
        settings: Settings = Depends(settings_dependency),
        http: httpx.AsyncClient = Depends(http_client_dependency),
    ) -> dict[str, Any]:
        sort_key = parse_sort_key(sort)
        sort_direction: Literal["asc", "desc"] = parse_sort_direction(direction)
        result = await list_directory(settings, http, path, request_origin(request))
        data = asdict(result)
        data["files"] = [asdict(entry) for entry in sort_files(result.files, sort_key, sort_direction)]
        return {"inventory": data, "sort": {"key": sort_key, "direction": sort_direction}}

    return app
