"""Turn picked files, picked folders and dropped entries into upload candidates.

Three input shapes are supported:

* a flat file list: the relative path is the file name;
* a directory picker: the relative path is the handle's ``relative_path``
  when it has one, else the file name;
* dropped filesystem entries: directories are walked with an explicit
  work stack and each file's relative path is built from its ancestors.

Every relative path is normalized, duplicates (same relative path, size and
modification time) are dropped, and so are files whose name normalizes away.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Protocol, runtime_checkable

from copyparty_bridge import paths
from copyparty_bridge.models import FileHandle, UploadCandidate

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 200


@runtime_checkable
class FileSystemEntry(Protocol):
    """A dropped file or directory whose contents are read lazily."""

    @property
    def name(self) -> str: ...

    @property
    def is_directory(self) -> bool: ...

    async def read_entries(self) -> list[FileSystemEntry]: ...

    async def get_file(self) -> FileHandle: ...


@dataclass(frozen=True)
class LocalFile:
    """A file on the local disk, optionally carrying a picker-style relative path."""

    path: Path
    relative_path: str | None = None

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def size(self) -> int:
        return self.path.stat().st_size

    @property
    def last_modified(self) -> int:
        return int(self.path.stat().st_mtime * 1000)

    def open(self) -> BinaryIO:
        return self.path.open("rb")


@dataclass(frozen=True)
class LocalEntry:
    """A local file or folder presented as a dropped filesystem entry."""

    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def is_directory(self) -> bool:
        return self.path.is_dir()

    async def read_entries(self) -> list[FileSystemEntry]:
        children = await asyncio.to_thread(lambda: sorted(self.path.iterdir()))
        return [LocalEntry(child) for child in children]

    async def get_file(self) -> FileHandle:
        return LocalFile(self.path)


class _CandidateBuffer:
    """Accumulates unique candidates and yields to the event loop every chunk."""

    def __init__(self, chunk_size: int) -> None:
        self.candidates: list[UploadCandidate] = []
        self._seen: set[tuple[str, int, int]] = set()
        self._chunk_size = max(chunk_size, 1)
        self._since_yield = 0

    async def add(self, file: FileHandle, raw_relative_path: str) -> None:
        relative_path = paths.normalize_relative(raw_relative_path)
        if not relative_path or not paths.leaf_name(relative_path):
            logger.debug(f"Dropping candidate with empty name: {raw_relative_path!r}")
            return

        candidate = UploadCandidate(file=file, relative_path=relative_path)
        key = candidate.dedupe_key
        if key in self._seen:
            logger.debug(f"Skipping duplicate candidate {relative_path}")
            return
        self._seen.add(key)
        self.candidates.append(candidate)

        self._since_yield += 1
        if self._since_yield >= self._chunk_size:
            self._since_yield = 0
            await asyncio.sleep(0)


async def collect_files(
    files: Iterable[FileHandle], *, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> list[UploadCandidate]:
    """Collect a flat file list; each file lands directly in the destination."""
    buffer = _CandidateBuffer(chunk_size)
    for file in files:
        await buffer.add(file, file.name)
    return buffer.candidates


async def collect_directory_files(
    files: Iterable[FileHandle], *, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> list[UploadCandidate]:
    """Collect files from a directory picker, keeping their relative layout."""
    buffer = _CandidateBuffer(chunk_size)
    for file in files:
        relative_path = getattr(file, "relative_path", None) or file.name
        await buffer.add(file, relative_path)
    return buffer.candidates


async def collect_dropped(
    entries: Iterable[FileSystemEntry] | None,
    files: Iterable[FileHandle] | None = None,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> list[UploadCandidate]:
    """Collect a drop.

    Args:
        entries: Structured filesystem entries, or None when the platform
            does not expose them
        files: Flat file list used when ``entries`` is unavailable
        chunk_size: Yield to the event loop after this many candidates

    Returns:
        Unique candidates in traversal order
    """
    if entries is None:
        return await collect_files(files or [], chunk_size=chunk_size)

    buffer = _CandidateBuffer(chunk_size)
    # Reversed so the first dropped entry is walked first.
    stack: list[tuple[FileSystemEntry, str]] = [(entry, "") for entry in reversed(list(entries))]
    while stack:
        entry, prefix = stack.pop()
        relative_path = f"{prefix}/{entry.name}" if prefix else entry.name
        if entry.is_directory:
            children = await entry.read_entries()
            stack.extend((child, relative_path) for child in reversed(children))
        else:
            await buffer.add(await entry.get_file(), relative_path)
    return buffer.candidates


async def collect_local_paths(
    local_paths: Iterable[Path], *, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> list[UploadCandidate]:
    """Collect local files and folders as if they had been dropped together."""
    return await collect_dropped(
        [LocalEntry(Path(path)) for path in local_paths], chunk_size=chunk_size
    )
