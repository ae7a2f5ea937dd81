"""Tests for settings loading."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from copyparty_bridge import get_settings
from copyparty_bridge.config import parse_positive_int


class TestParsePositiveInt:
    """Tests for parse_positive_int()."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("4", 4), (" 12 ", 12), ("0", None), ("-1", None), ("abc", None), ("", None), (None, None)],
    )
    def test_parse(self, raw: str | None, expected: int | None) -> None:
        """Test that only strictly positive integers are accepted."""
        assert parse_positive_int(raw) == expected


class TestGetSettings:
    """Tests for get_settings()."""

    def test_defaults(self) -> None:
        """Test defaults with nothing configured."""
        settings = get_settings(load_env_file=False)

        assert not settings.configured
        assert settings.root_path == "/"
        assert settings.timeout_ms == 8000
        assert settings.upload_concurrency == 4
        assert settings.mobile_upload_concurrency == 2
        assert settings.history_limit == 200

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that environment variables are trimmed and parsed."""
        monkeypatch.setenv("COPYPARTY_BASE_URL", " http://nas.lan:3923 ")
        monkeypatch.setenv("COPYPARTY_ROOT_PATH", "/srv")
        monkeypatch.setenv("COPYPARTY_PASSWORD", "pw")
        monkeypatch.setenv("COPYPARTY_TIMEOUT_MS", "2500")
        monkeypatch.setenv("UPLOAD_CONCURRENCY", "8")

        settings = get_settings(load_env_file=False)

        assert settings.configured
        assert settings.base_url == "http://nas.lan:3923"
        assert settings.root_path == "/srv"
        assert settings.password == "pw"
        assert settings.timeout_ms == 2500
        assert settings.upload_concurrency == 8

    def test_invalid_number_falls_back(
        self, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test that invalid numbers log a warning and use the default."""
        monkeypatch.setenv("COPYPARTY_TIMEOUT_MS", "soon")

        with caplog.at_level(logging.WARNING, logger="copyparty_bridge.config"):
            settings = get_settings(load_env_file=False)

        assert settings.timeout_ms == 8000
        assert "COPYPARTY_TIMEOUT_MS" in caplog.text

    def test_reads_dotenv_file(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Test that a .env file in the working directory is loaded."""
        # Registered first so the value loaded from .env is removed on teardown.
        monkeypatch.setenv("COPYPARTY_BASE_URL", "unset")
        monkeypatch.delenv("COPYPARTY_BASE_URL")
        (tmp_path / ".env").write_text("COPYPARTY_BASE_URL=http://from-dotenv:3923\n")

        settings = get_settings()

        assert settings.base_url == "http://from-dotenv:3923"
