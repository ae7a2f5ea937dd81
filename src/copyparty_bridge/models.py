"""Data models for the copyparty_bridge library."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, Literal, Protocol, runtime_checkable

EntryKind = Literal["dir", "file"]


@dataclass(frozen=True)
class InventoryEntry:
    """A single directory or file from a copyparty listing."""

    kind: EntryKind
    name: str
    href: str
    size: int
    modified: str
    modified_ts: float
    extension: str | None
    tags: dict[str, str] = field(default_factory=dict)
    next_path: str | None = None


@dataclass(frozen=True)
class Inventory:
    """Result of listing one directory.

    ``configured=False`` means no backend is set up; ``error`` set with
    ``configured=True`` means the backend failed. Both keep the lists empty.
    """

    configured: bool
    current_path: str
    parent_path: str | None
    root_path: str
    upload_url: str
    directories: list[InventoryEntry] = field(default_factory=list)
    files: list[InventoryEntry] = field(default_factory=list)
    account: str = ""
    server_info: str = ""
    error: str | None = None
    total_bytes: int = 0

    @property
    def ok(self) -> bool:
        return self.configured and self.error is None


@runtime_checkable
class FileHandle(Protocol):
    """A binary payload with the metadata the uploader needs."""

    @property
    def name(self) -> str: ...

    @property
    def size(self) -> int: ...

    @property
    def last_modified(self) -> int:
        """Modification time in epoch milliseconds."""
        ...

    def open(self) -> BinaryIO: ...


@dataclass(frozen=True)
class UploadCandidate:
    """A file waiting to be planned, with its path relative to the upload folder."""

    file: FileHandle
    relative_path: str

    @property
    def dedupe_key(self) -> tuple[str, int, int]:
        return (self.relative_path, self.file.size, self.file.last_modified)


class ConflictStrategy(str, Enum):
    """How to treat an upload whose name already exists remotely."""

    SKIP = "skip"
    RENAME = "rename"
    REPLACE = "replace"


@dataclass(frozen=True)
class PlannedUpload:
    """A candidate after conflict resolution."""

    candidate: UploadCandidate
    source_name: str
    target_name: str
    destination_path: str
    replace_existing: bool = False


class TransferStatus(str, Enum):
    """Lifecycle state of a TransferItem."""

    QUEUED = "queued"
    UPLOADING = "uploading"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def active(self) -> bool:
        return self in (TransferStatus.QUEUED, TransferStatus.UPLOADING)


@dataclass
class TransferItem:
    """One file moving through the transfer queue. Mutated in place."""

    file: FileHandle
    source_name: str
    target_name: str
    target_path: str
    destination_path: str
    upload_url: str
    upload_directory: str
    size: int
    replace_existing: bool = False
    upload_name: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    loaded: int = 0
    progress: int = 0
    status: TransferStatus = TransferStatus.QUEUED
    error: str | None = None
    failure: Exception | None = None
    placed: bool = True

    @property
    def flattened(self) -> bool:
        """True when the bytes land in a different folder than the destination."""
        return self.upload_directory != self.destination_path

    @property
    def uploaded_path(self) -> str:
        """Where the bytes land before any move."""
        return f"{self.upload_directory.rstrip('/')}/{self.upload_name or self.target_name}"

    def report_progress(self, loaded: int) -> None:
        self.loaded = min(max(loaded, 0), self.size)
        if self.size <= 0:
            self.progress = 0
        else:
            self.progress = min(100, int(self.loaded * 100 / self.size))
