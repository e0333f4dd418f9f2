"""Tests for application configuration."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from pydantic import ValidationError

from skybridge.config import Settings


class TestSettings:
    def test_default_settings(self) -> None:
        s = Settings(_env_file=None)
        assert s.secret_key == "change-me-in-production"
        assert s.debug is False
        assert s.port == 8000
        assert s.scheduler_enabled is True
        assert s.scheduler_interval_seconds == 60.0
        assert s.source_fetch_limit == 10

    def test_settings_from_fixture(self, test_settings: Settings) -> None:
        assert test_settings.secret_key == "test-secret-key-with-at-least-32-characters"
        assert test_settings.debug is True
        assert test_settings.scheduler_enabled is False

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SCHEDULER_INTERVAL_SECONDS", "5")
        monkeypatch.setenv("X_CLIENT_ID", "from-env")
        s = Settings(_env_file=None)
        assert s.scheduler_interval_seconds == 5.0
        assert s.x_client_id == "from-env"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"scheduler_interval_seconds": 0},
            {"scheduler_max_concurrency": 0},
            {"source_fetch_limit": 500},
            {"port": 70000},
        ],
    )
    def test_rejects_out_of_range_values(self, overrides: dict[str, object]) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **overrides)


class TestRuntimeSecurity:
    def test_debug_skips_checks(self) -> None:
        Settings(_env_file=None, debug=True).validate_runtime_security()

    def test_default_secret_rejected(self) -> None:
        s = Settings(_env_file=None, x_client_id="client")
        with pytest.raises(ValueError, match="SECRET_KEY"):
            s.validate_runtime_security()

    def test_missing_client_id_rejected(self) -> None:
        s = Settings(_env_file=None, secret_key="s" * 32)
        with pytest.raises(ValueError, match="X_CLIENT_ID"):
            s.validate_runtime_security()

    def test_production_settings_accepted(self) -> None:
        s = Settings(_env_file=None, secret_key="s" * 32, x_client_id="client")
        s.validate_runtime_security()


class TestCliEntry:
    def test_cli_entry_uses_app_settings(self) -> None:
        from skybridge.main import app, cli_entry

        original_settings = getattr(app.state, "settings", None)
        app.state.settings = Settings(_env_file=None, host="127.0.0.1", port=9999, debug=True)

        try:
            with patch("uvicorn.run") as mock_run:
                cli_entry()

            mock_run.assert_called_once_with(
                "skybridge.main:app",
                host="127.0.0.1",
                port=9999,
                reload=True,
            )
        finally:
            app.state.settings = original_settings
