"""Tests for logging configuration."""

import os
from pathlib import Path
from unittest.mock import MagicMock, Mock, patch

import observ_core.logging.logging_config as logging_config_module
from observ_core.logging import get_pipeline_logger, setup_logging
from observ_core.logging.logging_config import DEFAULT_LOG_LEVELS, QUIET_LOGGERS, LoggingConfig


class TestLoggingConfig:
    def test_config_path_from_env(self):
        with patch.dict(os.environ, {"OBSERV_LOGGING_CONFIG": "/path/to/config.yml"}):
            assert LoggingConfig().config_path == Path("/path/to/config.yml")

    def test_config_path_from_prefect_env(self):
        with patch.dict(os.environ, {"PREFECT_LOGGING_SETTINGS_PATH": "/prefect/config.yml"}, clear=True):
            assert LoggingConfig().config_path == Path("/prefect/config.yml")

    def test_package_env_wins_over_prefect_env(self):
        env = {"OBSERV_LOGGING_CONFIG": "/observ.yml", "PREFECT_LOGGING_SETTINGS_PATH": "/prefect.yml"}
        with patch.dict(os.environ, env, clear=True):
            assert LoggingConfig().config_path == Path("/observ.yml")

    def test_no_config_path_returns_none(self):
        with patch.dict(os.environ, clear=True):
            assert LoggingConfig().config_path is None

    def test_load_config_from_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "logging.yml"
        config_file.write_text("""
version: 1
disable_existing_loggers: false
handlers:
  console:
    class: logging.StreamHandler
""")
        loaded = LoggingConfig(config_path=config_file).load_config()
        assert loaded["version"] == 1
        assert loaded["disable_existing_loggers"] is False
        assert "console" in loaded["handlers"]

    def test_missing_file_falls_back_to_defaults(self, tmp_path: Path) -> None:
        loaded = LoggingConfig(config_path=tmp_path / "absent.yml").load_config()
        assert loaded["loggers"]["observ_core"]["handlers"] == ["console"]

    def test_default_config_levels(self):
        with patch.dict(os.environ, {"OBSERV_LOG_LEVEL": "DEBUG"}, clear=True):
            loaded = LoggingConfig().load_config()
        assert loaded["loggers"]["observ_core"]["level"] == "DEBUG"
        assert loaded["loggers"]["observ_core"]["propagate"] is False
        for name in QUIET_LOGGERS:
            assert loaded["loggers"][name]["level"] == "WARNING"

    def test_config_is_cached(self):
        config = LoggingConfig()
        assert config.load_config() is config.load_config()

    @patch("logging.config.dictConfig")
    def test_apply_config(self, mock_dict_config: Mock) -> None:
        LoggingConfig().apply()
        mock_dict_config.assert_called_once()
        assert mock_dict_config.call_args[0][0]["version"] == 1

    @patch("logging.config.dictConfig")
    def test_apply_with_prefect_settings(self, mock_dict_config: Mock) -> None:
        with patch.dict(os.environ, clear=True):
            custom_config = {"version": 1, "loggers": {"prefect": {"level": "DEBUG"}}}
            with patch.object(LoggingConfig, "load_config", return_value=custom_config):
                LoggingConfig().apply()
                assert os.environ.get("PREFECT_LOGGING_LEVEL") == "DEBUG"


class TestSetupLogging:
    @patch("observ_core.logging.logging_config.LoggingConfig.apply")
    def test_setup_logging_basic(self, mock_apply: Mock) -> None:
        setup_logging()
        mock_apply.assert_called_once()

    @patch("observ_core.logging.logging_config.get_logger")
    @patch("observ_core.logging.logging_config.LoggingConfig.apply")
    def test_setup_logging_with_level(self, mock_apply: Mock, mock_get_logger: Mock) -> None:
        mock_logger = MagicMock()
        mock_get_logger.return_value = mock_logger

        with patch.dict(os.environ):
            setup_logging(level="DEBUG")
            assert os.environ["PREFECT_LOGGING_LEVEL"] == "DEBUG"

        assert mock_get_logger.call_count == len(DEFAULT_LOG_LEVELS)
        mock_logger.setLevel.assert_called_with("DEBUG")

    @patch("observ_core.logging.logging_config.LoggingConfig")
    def test_setup_logging_with_config_path(self, mock_config_class: Mock, tmp_path: Path) -> None:
        config_file = tmp_path / "custom.yml"
        mock_instance = MagicMock()
        mock_config_class.return_value = mock_instance

        setup_logging(config_path=config_file)

        mock_config_class.assert_called_once_with(config_file)
        mock_instance.apply.assert_called_once()


class TestGetPipelineLogger:
    @patch("observ_core.logging.logging_config.setup_logging")
    @patch("observ_core.logging.logging_config.get_logger")
    def test_ensures_setup(self, mock_get_logger: Mock, mock_setup: Mock) -> None:
        mock_logger = MagicMock()
        mock_get_logger.return_value = mock_logger

        with patch.object(logging_config_module, "_logging_config", None):
            logger = get_pipeline_logger("observ_core.test")

        mock_setup.assert_called_once()
        mock_get_logger.assert_called_with("observ_core.test")
        assert logger == mock_logger

    @patch("observ_core.logging.logging_config.setup_logging")
    @patch("observ_core.logging.logging_config.get_logger")
    def test_reuses_config(self, mock_get_logger: Mock, mock_setup: Mock) -> None:
        with patch.object(logging_config_module, "_logging_config", LoggingConfig()):
            get_pipeline_logger("observ_core.a")
            get_pipeline_logger("observ_core.b")

        mock_setup.assert_not_called()
        assert mock_get_logger.call_count == 2
