"""Shared test helpers for copyparty_bridge tests."""

from __future__ import annotations

import asyncio
import io
import json
import re
from collections.abc import Callable
from typing import Any, BinaryIO
from urllib.parse import quote, unquote, urlsplit

import httpx

from copyparty_bridge import paths
from copyparty_bridge.exceptions import AlreadyExistsError, MutationError
from copyparty_bridge.models import FileHandle

BASE_URL = "http://copyparty.local:3923"

_FILENAME = re.compile(rb'filename="([^"]*)"')


class MemoryFile:
    """In-memory FileHandle."""

    def __init__(
        self,
        name: str,
        data: bytes = b"",
        last_modified: int = 1_700_000_000_000,
        relative_path: str | None = None,
    ) -> None:
        self.name = name
        self.data = data
        self.last_modified = last_modified
        self.relative_path = relative_path

    @property
    def size(self) -> int:
        return len(self.data)

    def open(self) -> BinaryIO:
        return io.BytesIO(self.data)


class MemoryEntry:
    """In-memory dropped filesystem entry; a directory when ``children`` is set."""

    def __init__(
        self,
        name: str,
        children: list[MemoryEntry] | None = None,
        data: bytes = b"",
    ) -> None:
        self.name = name
        self.children = children
        self.data = data
        self.reads = 0

    @property
    def is_directory(self) -> bool:
        return self.children is not None

    async def read_entries(self) -> list[MemoryEntry]:
        self.reads += 1
        return list(self.children or [])

    async def get_file(self) -> FileHandle:
        return MemoryFile(self.name, self.data)


def _multipart_file(request: httpx.Request) -> tuple[str, bytes]:
    """Pull the ``f`` field's file name and bytes out of a multipart body."""
    boundary = request.headers["content-type"].split("boundary=", 1)[1].encode()
    for part in request.content.split(b"--" + boundary):
        header, _, body = part.partition(b"\r\n\r\n")
        if b'name="f"' not in header:
            continue
        match = _FILENAME.search(header)
        name = unquote(match.group(1).decode()) if match else ""
        return name, body[: -len(b"\r\n")] if body.endswith(b"\r\n") else body
    raise AssertionError("multipart body has no file field")


class FakeCopyparty:
    """In-memory copyparty backend served through httpx.MockTransport.

    Paths are upstream paths (what appears in the request URL). Every request
    is recorded; ``fail(method, path, response)`` makes one route fail.
    """

    def __init__(self, base_url: str = BASE_URL) -> None:
        self.base_url = base_url
        self.dirs: set[str] = {"/"}
        self.files: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []
        self.failures: dict[tuple[str, str], httpx.Response] = {}
        self.on_request: Callable[[httpx.Request], None] | None = None

    # --- Setup ---
    def add_dir(self, path: str) -> None:
        self.dirs.update(paths.ancestors(path))

    def add_file(self, path: str, data: bytes) -> None:
        parent = paths.parent(path) or "/"
        self.add_dir(parent)
        self.files[paths.normalize(path)] = data

    def fail(self, method: str, path: str, response: httpx.Response) -> None:
        self.failures[(method, paths.normalize(path))] = response

    # --- Inspection ---
    def methods(self) -> list[str]:
        return [request.method for request in self.requests]

    def requests_for(self, method: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.method == method]

    # --- Transport ---
    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.on_request is not None:
            self.on_request(request)

        path = paths.normalize(unquote(request.url.path))
        failure = self.failures.get((request.method, path))
        if failure is not None:
            return failure

        if request.method == "GET" and "ls" in request.url.params:
            return self._list(path)
        if request.method == "DELETE":
            return self._delete(path)
        if request.method == "MOVE":
            destination = paths.normalize(unquote(urlsplit(request.headers["Destination"]).path))
            return self._move(path, destination)
        if request.method == "MKCOL":
            return self._mkcol(path)
        if request.method == "POST":
            return self._upload(path, request)
        return httpx.Response(405, text="method not allowed")

    def _children(self, path: str) -> tuple[list[str], list[str]]:
        dirs = sorted(d for d in self.dirs if d != "/" and paths.parent(d) == path)
        files = sorted(f for f in self.files if paths.parent(f) == path)
        return dirs, files

    def _list(self, path: str) -> httpx.Response:
        if path not in self.dirs:
            return httpx.Response(404, text="404 not found")
        dirs, files = self._children(path)
        payload = {
            "dirs": [
                {"href": quote(paths.leaf_name(d) or "") + "/", "sz": 0, "ts": 1_700_000_000}
                for d in dirs
            ],
            "files": [
                {
                    "href": quote(paths.leaf_name(f) or ""),
                    "sz": len(self.files[f]),
                    "ts": 1_700_000_000,
                    "ext": "---",
                }
                for f in files
            ],
            "acct": "*",
            "srvinf": "fake",
        }
        return httpx.Response(200, content=json.dumps(payload).encode())

    def _delete(self, path: str) -> httpx.Response:
        if path in self.files:
            del self.files[path]
            return httpx.Response(200, text="ok")
        if path in self.dirs:
            self.dirs = {d for d in self.dirs if not paths.is_within(d, path)}
            self.files = {f: b for f, b in self.files.items() if not paths.is_within(f, path)}
            return httpx.Response(200, text="ok")
        return httpx.Response(404, text="404 not found")

    def _move(self, source: str, destination: str) -> httpx.Response:
        if source in self.files:
            self.add_dir(paths.parent(destination) or "/")
            self.files[destination] = self.files.pop(source)
            return httpx.Response(201)
        if source in self.dirs:
            prefix = len(source)
            self.dirs = {
                destination + d[prefix:] if paths.is_within(d, source) else d for d in self.dirs
            }
            self.files = {
                (destination + f[prefix:] if paths.is_within(f, source) else f): b
                for f, b in self.files.items()
            }
            return httpx.Response(201)
        return httpx.Response(404, text="404 not found")

    def _mkcol(self, path: str) -> httpx.Response:
        if path in self.dirs or path in self.files:
            return httpx.Response(405, text="already exists")
        self.add_dir(path)
        return httpx.Response(201)

    def _upload(self, path: str, request: httpx.Request) -> httpx.Response:
        if path not in self.dirs:
            return httpx.Response(404, text="folder not found")
        name, data = _multipart_file(request)
        self.files[paths.join(path, name)] = data
        return httpx.Response(200, json={"status": "ok", "name": name})


class GatedStore:
    """UploadStore double whose uploads wait until released.

    Tracks peak concurrency and every call, so scheduling can be asserted
    without a backend.
    """

    def __init__(self, *, auto_release: bool = False) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.started: list[str] = []
        self.active = 0
        self.peak = 0
        self.auto_release = auto_release
        self.existing_dirs: set[str] = {"/"}
        self.mkdir_errors: dict[str, Exception] = {}
        self.mkdir_gate: asyncio.Event | None = None
        self.upload_errors: dict[str, Exception] = {}
        self.move_error: Exception | None = None
        self.delete_error: Exception | None = None

    def upload_url(self, directory_path: str, request_origin: str | None = None) -> str:
        return f"{BASE_URL}{directory_path}"

    async def mkdir(self, parent_path: str, folder_name: str) -> str:
        path = paths.join(parent_path, folder_name)
        self.calls.append(("mkdir", path))
        if self.mkdir_gate is not None:
            await self.mkdir_gate.wait()
        await asyncio.sleep(0)
        if path in self.mkdir_errors:
            raise self.mkdir_errors[path]
        if path in self.existing_dirs:
            raise AlreadyExistsError("Folder already exists.", 405)
        self.existing_dirs.add(path)
        return path

    async def delete(self, path: str) -> None:
        self.calls.append(("delete", path))
        if self.delete_error is not None:
            raise self.delete_error

    async def relocate(self, source_path: str, destination_path: str) -> str:
        self.calls.append(("relocate", (source_path, destination_path)))
        if self.move_error is not None:
            raise self.move_error
        return destination_path

    def release(self, name: str) -> None:
        self.gates.setdefault(name, asyncio.Event()).set()

    def release_all(self) -> None:
        self.auto_release = True
        for gate in self.gates.values():
            gate.set()

    async def upload(
        self,
        file: FileHandle,
        target_name: str,
        upload_url: str,
        *,
        on_progress: Callable[[int], None] | None = None,
    ) -> dict[str, Any]:
        self.calls.append(("upload", (target_name, upload_url)))
        self.started.append(target_name)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if on_progress is not None:
                on_progress(file.size // 2)
            gate = self.gates.setdefault(target_name, asyncio.Event())
            if self.auto_release:
                gate.set()
            await gate.wait()
            if target_name in self.upload_errors:
                raise self.upload_errors[target_name]
            if on_progress is not None:
                on_progress(file.size)
            return {}
        finally:
            self.active -= 1


def mutation_error(status_code: int, message: str = "boom") -> MutationError:
    return MutationError(message, status_code)


async def settle(rounds: int = 20) -> None:
    """Let pending tasks run for a few event loop iterations."""
    for _ in range(rounds):
        await asyncio.sleep(0)
