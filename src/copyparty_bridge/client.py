"""Main CopypartyClient class for interacting with a copyparty backend."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, BinaryIO

import httpx

from copyparty_bridge import paths
from copyparty_bridge.config import Settings, get_settings
from copyparty_bridge.connection import RemoteConnection, add_query, connection_from_settings, send
from copyparty_bridge.listing import ListingClient
from copyparty_bridge.models import FileHandle, Inventory
from copyparty_bridge.mutations import MutationClient, build_http_error

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class _ProgressReader:
    """File wrapper that reports cumulative bytes read to a callback."""

    def __init__(self, raw: BinaryIO, on_progress: ProgressCallback | None) -> None:
        self._raw = raw
        self._on_progress = on_progress
        self._loaded = 0

    def read(self, size: int = -1) -> bytes:
        chunk = self._raw.read(size)
        if chunk:
            self._loaded += len(chunk)
            if self._on_progress is not None:
                self._on_progress(self._loaded)
        return chunk

    def seek(self, offset: int, whence: int = 0) -> int:
        position = self._raw.seek(offset, whence)
        if offset == 0 and whence == 0:
            self._loaded = 0
        return position

    def tell(self) -> int:
        return self._raw.tell()

    def fileno(self) -> int:
        return self._raw.fileno()

    def close(self) -> None:
        self._raw.close()


class CopypartyClient:
    """Client for browsing and changing files on a copyparty backend.

    Supports both context manager and manual session patterns.

    Example (context manager - recommended):
        async with CopypartyClient.from_settings() as client:
            inventory = await client.list_folder("/photos")
            await client.mkdir("/photos", "2024")

    Example (manual session):
        client = CopypartyClient(RemoteConnection("http://localhost:3923"))
        await client.delete("/old.txt")
        await client.aclose()
    """

    def __init__(
        self,
        connection: RemoteConnection,
        *,
        http: httpx.AsyncClient | None = None,
        request_cookie: str | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            connection: Backend connection details
            http: Optional pre-built async HTTP client (tests inject a mock
                transport this way); one is created and owned otherwise
            request_cookie: Cookie forwarded from an inbound request
        """
        self.connection = connection
        self._owns_http = http is None
        self._http: httpx.AsyncClient | None = http or httpx.AsyncClient()
        self._request_cookie = request_cookie

    @classmethod
    def from_settings(
        cls, settings: Settings | None = None, **kwargs: Any
    ) -> CopypartyClient:
        """Build a client from settings.

        Raises:
            NotConfiguredError: If no base URL is configured
        """
        return cls(connection_from_settings(settings or get_settings()), **kwargs)

    async def __aenter__(self) -> CopypartyClient:
        """Enter context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Exit context manager."""
        await self.aclose()

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("Client is closed.")
        return self._http

    @property
    def listing(self) -> ListingClient:
        return ListingClient(self.connection, self.http)

    @property
    def mutations(self) -> MutationClient:
        return MutationClient(self.connection, self.http, request_cookie=self._request_cookie)

    async def list_folder(
        self, folder_path: str = "/", request_origin: str | None = None
    ) -> Inventory:
        """List a folder. Errors are reported on the returned Inventory."""
        return await self.listing.list(folder_path, request_origin)

    async def delete(self, path: str) -> None:
        await self.mutations.delete(path)

    async def rename(self, path: str, new_name: str) -> str:
        return await self.mutations.rename(path, new_name)

    async def move(self, source_path: str, destination_directory: str) -> str:
        return await self.mutations.move(source_path, destination_directory)

    async def relocate(self, source_path: str, destination_path: str) -> str:
        return await self.mutations.relocate(source_path, destination_path)

    async def mkdir(self, parent_path: str, folder_name: str) -> str:
        return await self.mutations.mkdir(parent_path, folder_name)

    async def delete_many(self, targets: list[str]) -> list[str]:
        return await self.mutations.delete_many(targets)

    async def move_many(self, targets: list[str], destination_directory: str) -> list[str]:
        return await self.mutations.move_many(targets, destination_directory)

    def upload_url(self, directory_path: str, request_origin: str | None = None) -> str:
        return self.connection.upload_url(directory_path, request_origin)

    async def upload(
        self,
        file: FileHandle,
        target_name: str,
        upload_url: str,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> dict[str, Any]:
        """Upload one file as a multipart POST to a directory's upload URL.

        There is no overall deadline on the transfer; only connecting is
        bounded by the connection timeout.

        Args:
            file: Payload to send
            target_name: File name to store it under
            upload_url: Per-directory upload URL (see :meth:`upload_url`)
            on_progress: Called with the cumulative number of bytes sent

        Returns:
            The JSON body copyparty answered with, or an empty dict

        Raises:
            MutationError: If copyparty rejects the upload
            NetworkError: On transport failures
        """
        url = add_query(upload_url, [("j", "")])
        timeout = httpx.Timeout(None, connect=self.connection.timeout)
        with file.open() as raw:
            reader = _ProgressReader(raw, on_progress)
            response = await send(
                self.http,
                self.connection,
                "POST",
                url,
                request_cookie=self._request_cookie,
                timeout=timeout,
                data={"act": "bput"},
                files={"f": (target_name, reader, "application/octet-stream")},
            )

        if not response.is_success:
            raise build_http_error("Upload failed", response)
        logger.info(f"Uploaded {target_name} ({file.size} bytes)")
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    async def upload_to(
        self,
        file: FileHandle,
        directory_path: str,
        target_name: str | None = None,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Upload straight into ``directory_path``; returns the file's virtual path."""
        name = target_name or file.name
        await self.upload(file, name, self.upload_url(directory_path), on_progress=on_progress)
        return paths.join(directory_path, name)

    async def aclose(self) -> None:
        """Close the client and clean up resources."""
        if self._http is not None and self._owns_http:
            await self._http.aclose()
        self._http = None
