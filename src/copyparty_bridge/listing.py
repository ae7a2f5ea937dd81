"""Directory listing: fetch a copyparty ``?ls`` response and map it to InventoryEntry."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import replace
from datetime import datetime
from typing import Any, Literal
from urllib.parse import quote, unquote, urljoin, urlsplit

import httpx

from copyparty_bridge import paths
from copyparty_bridge.config import Settings
from copyparty_bridge.connection import (
    RemoteConnection,
    add_query,
    connection_from_settings,
    ensure_trailing_slash,
    send,
    url_for_path,
)
from copyparty_bridge.exceptions import CopypartyError, NotConfiguredError, UpstreamUnavailableError
from copyparty_bridge.models import EntryKind, Inventory, InventoryEntry

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = "unnamed"
NO_EXTENSION_SENTINELS = frozenset({"---", "%"})
# Epoch values above this are milliseconds; seconds would not reach it until 2286.
MILLISECONDS_THRESHOLD = 10_000_000_000
MODIFIED_FORMAT = "%b %d, %Y, %I:%M %p"

SortKey = Literal["name", "type", "size", "modified"]
SortDirection = Literal["asc", "desc"]

_DIGITS = re.compile(r"(\d+)")


def natural_key(name: str) -> tuple[tuple[int, int | str], ...]:
    """Case-insensitive, numeric-aware sort key so ``file2`` sorts before ``file10``."""
    key: list[tuple[int, int | str]] = []
    for index, part in enumerate(_DIGITS.split(name.casefold())):
        if not part:
            continue
        key.append((0, int(part)) if index % 2 else (1, part))
    return tuple(key)


class ListingClient:
    """Fetches directory listings from copyparty.

    Failures never raise out of :meth:`list`; they come back as an Inventory
    with ``error`` set so one bad directory does not break a browsing session.
    """

    def __init__(self, connection: RemoteConnection, http: httpx.AsyncClient) -> None:
        self._connection = connection
        self._http = http

    async def list(self, virtual_path: str | None = "/", request_origin: str | None = None) -> Inventory:
        """List one directory.

        Args:
            virtual_path: Directory to list; normalized before use
            request_origin: Origin of the inbound request, used to pick the
                public base URL for hrefs and the upload URL

        Returns:
            Inventory with sorted directories and files, or an empty one
            carrying an error message
        """
        connection = self._connection
        current_path = paths.normalize(virtual_path)
        public_base = connection.public_base(request_origin)
        upload_url = connection.upload_url(current_path, request_origin)
        base = Inventory(
            configured=True,
            current_path=current_path,
            parent_path=paths.parent(current_path),
            root_path=connection.root_path,
            upload_url=upload_url,
        )

        try:
            payload = await self._fetch(current_path)
        except CopypartyError as e:
            logger.warning(f"Listing {current_path} failed: {e}")
            return replace(base, error=str(e) or "Unable to load listing from Copyparty.")

        directories = [
            map_item(item, "dir", connection, current_path, public_base)
            for item in _as_item_list(payload.get("dirs"))
        ]
        files = [
            map_item(item, "file", connection, current_path, public_base)
            for item in _as_item_list(payload.get("files"))
        ]
        directories.sort(key=lambda entry: natural_key(entry.name))
        files.sort(key=lambda entry: natural_key(entry.name))

        account = payload.get("acct")
        server_info = payload.get("srvinf")
        return replace(
            base,
            directories=directories,
            files=files,
            account=account if isinstance(account, str) else "",
            server_info=server_info if isinstance(server_info, str) else "",
            total_bytes=sum(entry.size for entry in files),
        )

    async def _fetch(self, current_path: str) -> dict[str, Any]:
        url = self._connection.listing_url(current_path)
        response = await send(
            self._http,
            self._connection,
            "GET",
            url,
            headers={"Accept": "application/json"},
            mutating=False,
        )
        if not response.is_success:
            raise UpstreamUnavailableError(f"Copyparty responded with HTTP {response.status_code}.")
        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamUnavailableError(
                "Copyparty did not return JSON. Verify `?ls` access and credentials."
            ) from e
        if not isinstance(payload, dict):
            raise UpstreamUnavailableError(
                "Copyparty did not return JSON. Verify `?ls` access and credentials."
            )
        return payload


async def list_directory(
    settings: Settings,
    http: httpx.AsyncClient,
    virtual_path: str | None = "/",
    request_origin: str | None = None,
) -> Inventory:
    """List ``virtual_path`` using settings; an unconfigured backend is not an error."""
    try:
        connection = connection_from_settings(settings)
    except NotConfiguredError:
        current_path = paths.normalize(virtual_path)
        return Inventory(
            configured=False,
            current_path=current_path,
            parent_path=paths.parent(current_path),
            root_path=paths.normalize(settings.root_path),
            upload_url="",
        )
    return await ListingClient(connection, http).list(virtual_path, request_origin)


def map_item(
    item: dict[str, Any],
    kind: EntryKind,
    connection: RemoteConnection,
    current_path: str,
    public_base: str,
) -> InventoryEntry:
    """Map one raw listing item to an InventoryEntry."""
    raw_href = _as_str(item.get("href"))
    name = (
        clean_item_name(_as_str(item.get("name")))
        or clean_item_name(name_from_href(raw_href))
        or PLACEHOLDER_NAME
    )
    modified_ts = _as_number(item.get("ts"))
    return InventoryEntry(
        kind=kind,
        name=name,
        href=resolve_href(connection, public_base, current_path, raw_href, name, kind),
        size=max(int(_as_number(item.get("sz"))), 0),
        modified=_as_str(item.get("dt")) or format_modified(modified_ts),
        modified_ts=modified_ts,
        extension=resolve_extension(item.get("ext"), name),
        tags=_as_tags(item.get("tags")),
        next_path=paths.join(current_path, name) if kind == "dir" else None,
    )


def clean_item_name(name: str) -> str:
    trimmed = name.strip()
    return trimmed[:-1] if trimmed.endswith("/") else trimmed


def name_from_href(raw_href: str) -> str:
    """Derive a display name from an href: last path segment, percent-decoded."""
    if not raw_href:
        return ""
    without_query = raw_href.split("#", 1)[0].split("?", 1)[0].rstrip("/")
    segments = [segment for segment in without_query.split("/") if segment]
    if not segments:
        return ""
    return unquote(segments[-1])


def resolve_href(
    connection: RemoteConnection,
    public_base: str,
    current_path: str,
    raw_href: str,
    fallback_name: str,
    kind: EntryKind,
) -> str:
    """Resolve an entry href against the listed directory, not the backend root."""
    directory_url = ensure_trailing_slash(
        url_for_path(public_base, connection.upstream_path(current_path))
    )
    href = raw_href.strip()
    if not href:
        href = quote(fallback_name, safe="")
        if kind == "dir":
            href += "/"

    resolved = urljoin(directory_url, href)
    if connection.password and "pw" not in _query_keys(resolved):
        resolved = add_query(resolved, [("pw", connection.password)])
    return resolved


def resolve_extension(raw_extension: Any, name: str) -> str | None:
    """Pick an entry's extension.

    Explicit extensions win unless they are a "no extension" sentinel.
    Otherwise use the text after the last dot, unless the dot is the first
    or last character (dotfiles, trailing dots).
    """
    extension = _as_str(raw_extension).strip().lower()
    if extension and extension not in NO_EXTENSION_SENTINELS:
        return extension

    dot = name.rfind(".")
    if dot <= 0 or dot >= len(name) - 1:
        return None
    return name[dot + 1 :].lower()


def to_epoch_seconds(value: float) -> float:
    """Interpret a listing timestamp; values above the threshold are milliseconds."""
    return value / 1000 if value > MILLISECONDS_THRESHOLD else value


def format_modified(value: float) -> str:
    if not math.isfinite(value) or value <= 0:
        return ""
    try:
        return datetime.fromtimestamp(to_epoch_seconds(value)).strftime(MODIFIED_FORMAT)
    except (OverflowError, OSError, ValueError):
        return ""


def resolve_type(name: str, extension: str | None) -> str:
    if extension and extension.strip():
        return extension.strip().lower()
    dot = name.rfind(".")
    if -1 < dot < len(name) - 1:
        return name[dot + 1 :].lower()
    return "file"


def parse_sort_key(value: str | None) -> SortKey:
    if value in ("name", "type", "size", "modified"):
        return value  # type: ignore[return-value]
    return "type"


def parse_sort_direction(value: str | None) -> SortDirection:
    return "desc" if value == "desc" else "asc"


def sort_files(
    files: list[InventoryEntry], key: SortKey = "type", direction: SortDirection = "asc"
) -> list[InventoryEntry]:
    """Sort files for display; ties always fall back to natural name order."""

    def sort_key(entry: InventoryEntry) -> tuple[Any, ...]:
        name = natural_key(entry.name)
        if key == "name":
            return (name,)
        if key == "type":
            return (natural_key(resolve_type(entry.name, entry.extension)), name)
        if key == "size":
            return (entry.size, name)
        return (entry.modified_ts, name)

    return sorted(files, key=sort_key, reverse=direction == "desc")


def _query_keys(url: str) -> set[str]:
    query = urlsplit(url).query
    return {pair.split("=", 1)[0] for pair in query.split("&") if pair}


def _as_item_list(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, dict)]


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _as_number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value if math.isfinite(value) else 0


def _as_tags(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(key): entry for key, entry in value.items() if isinstance(entry, str)}
