"""
Tests for application config (Settings).

Ensures settings load from the environment and defaults are sane.
"""
from __future__ import annotations

import pytest

from scorebook.config import DEFAULT_MAX_UPLOAD_BYTES, SNAPSHOT_FORMAT, Settings


def test_settings_loads_with_env() -> None:
    """Settings load from environment (or defaults)."""
    from scorebook.config import settings

    assert settings.app_name == "Scorebook"
    assert settings.app_version
    assert settings.access_token_secret  # set by conftest


def test_default_upload_limits() -> None:
    s = Settings()
    assert s.score_max_upload_bytes == DEFAULT_MAX_UPLOAD_BYTES == 20 * 1024 * 1024
    assert s.blob_write_timeout_seconds > 0
    assert s.score_upload_route == "/uploads/scores"


def test_snapshot_format_constant() -> None:
    assert SNAPSHOT_FORMAT == "jp_vocab_app_backup"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("uploads/scores", "/uploads/scores"),
        ("/uploads/scores/", "/uploads/scores"),
        ("  /media  ", "/media"),
        ("", "/uploads/scores"),
    ],
)
def test_upload_route_is_normalized(raw: str, expected: str) -> None:
    """The static route always has a leading slash and no trailing slash."""
    assert Settings(score_upload_route=raw).score_upload_route == expected


def test_env_prefix_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SCOREBOOK_SCORE_MAX_UPLOAD_BYTES", "1024")
    monkeypatch.setenv("SCOREBOOK_SYNC_RATE_LIMIT", "5/minute")
    s = Settings()
    assert s.score_max_upload_bytes == 1024
    assert s.sync_rate_limit == "5/minute"


def test_run_serves_on_configured_host_and_port(monkeypatch: pytest.MonkeyPatch) -> None:
    from unittest.mock import patch

    from scorebook import main
    from scorebook.config import settings

    monkeypatch.setattr(settings, "scorebook_host", "127.0.0.1")
    monkeypatch.setattr(settings, "scorebook_port", 9123)
    with patch("uvicorn.run") as mock_run:
        main.run()

    mock_run.assert_called_once_with(main.app, host="127.0.0.1", port=9123)
