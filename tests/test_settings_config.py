"""Tests for Settings."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from observ_core.settings import Settings, settings


class TestSettings:
    """Test Settings configuration."""

    def test_default_values(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        with patch.dict(os.environ, {}, clear=True):
            s = Settings()

        assert s.observ_enabled is True
        assert s.clickhouse_host == ""
        assert s.clickhouse_port == 8443
        assert s.clickhouse_secure is True
        assert s.lmnr_project_api_key == ""
        assert s.otel_mirror_enabled is False
        assert s.guardrail_trace_cost == 0.10
        assert s.guardrail_sample_percentage == 5.0

    @patch.dict(
        os.environ,
        {
            "OBSERV_ENABLED": "false",
            "CLICKHOUSE_HOST": "ch.internal",
            "CLICKHOUSE_PORT": "9440",
            "LMNR_PROJECT_API_KEY": "lmnr-key789",
            "GUARDRAIL_TRACE_COST": "0.25",
            "GUARDRAIL_MAX_TRACES": "50",
        },
    )
    def test_env_variable_loading(self):
        s = Settings()
        assert s.observ_enabled is False
        assert s.clickhouse_host == "ch.internal"
        assert s.clickhouse_port == 9440
        assert s.lmnr_project_api_key == "lmnr-key789"
        assert s.guardrail_trace_cost == 0.25
        assert s.guardrail_max_traces == 50

    @patch.dict(os.environ, {"UNKNOWN_SETTING": "should-be-ignored"})
    def test_extra_env_ignored(self):
        s = Settings()
        assert not hasattr(s, "unknown_setting")

    def test_settings_singleton(self):
        from observ_core.settings import settings as settings2

        assert isinstance(settings, Settings)
        assert settings is settings2

    def test_env_file_loading(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / ".env").write_text("CLICKHOUSE_HOST=from-env-file\nGUARDRAIL_TOKENS=500\n")
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("CLICKHOUSE_HOST", raising=False)
        monkeypatch.delenv("GUARDRAIL_TOKENS", raising=False)

        s = Settings()
        assert s.clickhouse_host == "from-env-file"
        assert s.guardrail_tokens == 500

    @patch.dict(os.environ, {"CLICKHOUSE_HOST": "from-env-var"})
    def test_env_var_overrides_env_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / ".env").write_text("CLICKHOUSE_HOST=from-env-file")
        monkeypatch.chdir(tmp_path)
        assert Settings().clickhouse_host == "from-env-var"

    def test_settings_immutable(self):
        s = Settings()
        with pytest.raises(ValidationError) as exc_info:
            s.clickhouse_host = "elsewhere"  # type: ignore[misc]
        assert "frozen" in str(exc_info.value).lower()

    def test_model_config_attributes(self):
        assert Settings.model_config.get("env_file") == ".env"
        assert Settings.model_config.get("extra") == "ignore"
        assert Settings.model_config.get("frozen") is True
