"""Delete, rename, move and mkdir against copyparty's WebDAV verbs."""

from __future__ import annotations

import logging
import re

import httpx

from copyparty_bridge import paths
from copyparty_bridge.connection import RemoteConnection, ensure_trailing_slash, send, strip_query
from copyparty_bridge.exceptions import (
    AlreadyExistsError,
    BatchOperationError,
    CopypartyError,
    DestinationRejectedError,
    MutationError,
    PermissionDeniedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

SNIPPET_LENGTH = 220

_MOVE_ACCESS = re.compile(r"move-access", re.IGNORECASE)
_UNPROCESSABLE = re.compile(r"unprocessable entity", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


def sanitize_leaf_name(value: str, label: str) -> str:
    """Validate a single path segment supplied by a user.

    Raises:
        ValidationError: If empty, ``.``/``..``, or containing a slash
    """
    cleaned = value.strip()
    if not cleaned:
        raise ValidationError(f"{label} is required.")
    if cleaned in (".", ".."):
        raise ValidationError(f"{label} is invalid.")
    if "/" in cleaned or "\\" in cleaned:
        raise ValidationError(f"{label} cannot include slashes.")
    return cleaned


def build_http_error(prefix: str, response: httpx.Response) -> MutationError:
    """Translate a failed copyparty response into the matching MutationError."""
    status = response.status_code
    try:
        details = _WHITESPACE.sub(" ", response.text).strip()
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        details = ""

    if not details:
        return MutationError(f"{prefix}: HTTP {status}.", status)

    if status == 401 and _MOVE_ACCESS.search(details):
        return PermissionDeniedError(
            f"{prefix}: HTTP 401. Copyparty denied move-access for this path. "
            "Grant move permission in Copyparty or set COPYPARTY_PASSWORD/COPYPARTY_COOKIE "
            "to credentials with move rights.",
            status,
        )

    if status == 422 and _UNPROCESSABLE.search(details):
        return DestinationRejectedError(
            f"{prefix}: HTTP 422. Copyparty rejected the path as invalid. "
            "For WebDAV MOVE/COPY, ensure Destination does not include query parameters.",
            status,
        )

    return MutationError(f"{prefix}: HTTP {status} ({details[:SNIPPET_LENGTH]}).", status)


class MutationClient:
    """Applies single-path changes to copyparty.

    Every operation rejects the root path with ValidationError before any
    request is made. ``request_cookie`` is a cookie forwarded from the
    inbound request; callers decide whether it may be forwarded.
    """

    def __init__(
        self,
        connection: RemoteConnection,
        http: httpx.AsyncClient,
        *,
        request_cookie: str | None = None,
    ) -> None:
        self._connection = connection
        self._http = http
        self._request_cookie = request_cookie

    async def _send(
        self, method: str, url: str, headers: dict[str, str] | None = None
    ) -> httpx.Response:
        return await send(
            self._http,
            self._connection,
            method,
            url,
            headers=headers,
            request_cookie=self._request_cookie,
        )

    async def delete(self, path: str) -> None:
        """Delete a file or folder.

        Raises:
            ValidationError: If ``path`` is root
            MutationError: If copyparty rejects the delete
        """
        target = paths.normalize(path)
        if paths.is_root(target):
            raise ValidationError("Cannot delete root path.")

        response = await self._send("DELETE", self._connection.scoped_url(target))
        if not response.is_success:
            raise build_http_error("Delete failed", response)
        logger.info(f"Deleted {target}")

    async def rename(self, path: str, new_name: str) -> str:
        """Rename a file or folder in place.

        Args:
            path: Current virtual path
            new_name: New leaf name (no slashes)

        Returns:
            The resulting virtual path (unchanged if the name is the same)
        """
        target = paths.normalize(path)
        parent = paths.parent(target)
        if parent is None:
            raise ValidationError("Cannot rename root path.")

        safe_name = sanitize_leaf_name(new_name, "New name")
        destination = paths.join(parent, safe_name)
        if destination == target:
            return target

        await self._move(target, destination, "Rename failed")
        return destination

    async def move(self, source_path: str, destination_directory: str) -> str:
        """Move a file or folder into another directory, keeping its name.

        Returns:
            The resulting virtual path. Moving into the current parent is a
            no-op and issues no request.
        """
        source = paths.normalize(source_path)
        name = paths.leaf_name(source)
        if name is None:
            raise ValidationError("Cannot move root path.")

        destination = paths.join(paths.normalize(destination_directory), name)
        if destination == source:
            return source

        await self._move(source, destination, "Move failed")
        return destination

    async def relocate(self, source_path: str, destination_path: str) -> str:
        """Move a file to an exact path, renaming it on the way if needed.

        Returns:
            The normalized destination path
        """
        source = paths.normalize(source_path)
        destination = paths.normalize(destination_path)
        if paths.parent(source) is None or paths.parent(destination) is None:
            raise ValidationError("Cannot move root path.")
        if destination == source:
            return source

        await self._move(source, destination, "Move failed")
        return destination

    async def _move(self, source: str, destination: str, error_prefix: str) -> None:
        # Copyparty treats Destination as a literal path; a query string would
        # become part of the file name.
        destination_url = strip_query(self._connection.scoped_url(destination))
        response = await self._send(
            "MOVE",
            self._connection.scoped_url(source),
            headers={"Destination": destination_url, "Overwrite": "T"},
        )
        if not response.is_success:
            raise build_http_error(error_prefix, response)
        logger.info(f"Moved {source} -> {destination}")

    async def mkdir(self, parent_path: str, folder_name: str) -> str:
        """Create ``folder_name`` inside ``parent_path``.

        Returns:
            The new folder's virtual path

        Raises:
            AlreadyExistsError: If copyparty answers 405 or 409
            MutationError: For any other failure
        """
        safe_name = sanitize_leaf_name(folder_name, "Folder name")
        target = paths.join(paths.normalize(parent_path), safe_name)
        url = ensure_trailing_slash(self._connection.scoped_url(target))

        response = await self._send("MKCOL", url)
        if response.is_success:
            logger.info(f"Created folder: {target}")
            return target
        if response.status_code in (405, 409):
            raise AlreadyExistsError("Folder already exists.", response.status_code)
        raise build_http_error("Create folder failed", response)

    async def delete_many(self, targets: list[str]) -> list[str]:
        """Delete several paths in order, stopping at the first failure.

        Raises:
            BatchOperationError: Reports how many succeeded and where it stopped
        """
        done: list[str] = []
        for target in targets:
            try:
                await self.delete(target)
            except CopypartyError as e:
                raise _batch_error(done, target, e) from e
            done.append(target)
        return done

    async def move_many(self, targets: list[str], destination_directory: str) -> list[str]:
        """Move several paths into one directory, stopping at the first failure."""
        done: list[str] = []
        for target in targets:
            try:
                await self.move(target, destination_directory)
            except CopypartyError as e:
                raise _batch_error(done, target, e) from e
            done.append(target)
        return done


def _batch_error(done: list[str], failed: str, error: Exception) -> BatchOperationError:
    name = paths.leaf_name(failed) or failed
    return BatchOperationError(
        f"{len(done)} succeeded; stopped at {name}: {error}", succeeded=done, failed_path=failed
    )
