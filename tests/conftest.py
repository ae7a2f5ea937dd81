"""Pytest fixtures for copyparty_bridge tests."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import httpx
import pytest
from helpers import BASE_URL, FakeCopyparty, GatedStore

from copyparty_bridge import CopypartyClient, RemoteConnection, Settings

COPYPARTY_ENV_VARS = (
    "COPYPARTY_BASE_URL",
    "COPYPARTY_PUBLIC_BASE_URL",
    "COPYPARTY_ROOT_PATH",
    "COPYPARTY_PASSWORD",
    "COPYPARTY_COOKIE",
    "COPYPARTY_TIMEOUT_MS",
    "UPLOAD_CONCURRENCY",
    "UPLOAD_CONCURRENCY_MOBILE",
    "UPLOAD_HISTORY_LIMIT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep the real environment and any local .env file out of tests."""
    for name in COPYPARTY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def backend() -> FakeCopyparty:
    """Create an empty fake copyparty backend."""
    return FakeCopyparty()


@pytest.fixture
def connection() -> RemoteConnection:
    """Connection to the fake backend without credentials."""
    return RemoteConnection(base_url=BASE_URL)


@pytest.fixture
def settings() -> Settings:
    """Settings pointing at the fake backend."""
    return Settings(base_url=BASE_URL)


@pytest.fixture
async def http(backend: FakeCopyparty) -> AsyncIterator[httpx.AsyncClient]:
    """Async HTTP client routed to the fake backend."""
    async with backend.client() as client:
        yield client


@pytest.fixture
async def client(
    connection: RemoteConnection, http: httpx.AsyncClient
) -> AsyncIterator[CopypartyClient]:
    """CopypartyClient sharing the fake backend's HTTP client."""
    async with CopypartyClient(connection, http=http) as copyparty:
        yield copyparty


@pytest.fixture
def store() -> GatedStore:
    """Upload store whose uploads wait until released."""
    return GatedStore()


@pytest.fixture
def temp_tree(tmp_path: Path) -> Path:
    """Create a small local folder tree for upload tests."""
    root = tmp_path / "photos"
    (root / "2024").mkdir(parents=True)
    (root / "a.jpg").write_bytes(b"a" * 3)
    (root / "2024" / "b.jpg").write_bytes(b"b" * 4)
    return root
