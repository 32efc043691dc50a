"""Logging configuration for Observ Core.

@public

Loggers come from Prefect's logging system so that library output lands in
the same handlers as the host application's flows. Configuration is either a
YAML ``dictConfig`` file or the built-in console setup below.

Usage:
    >>> from observ_core.logging import get_pipeline_logger
    >>> logger = get_pipeline_logger(__name__)
    >>> logger.info("Session started")

Environment variables:
    OBSERV_LOGGING_CONFIG: Path to custom logging.yml
    OBSERV_LOG_LEVEL: Level for the observ_core logger tree (INFO, DEBUG, etc.)
    PREFECT_LOGGING_LEVEL: Prefect's logging level
    PREFECT_LOGGING_SETTINGS_PATH: Alternative config path
"""

import logging.config
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from prefect.logging import get_logger

# Per-component levels; setup_logging(level=...) overrides all of them
DEFAULT_LOG_LEVELS = {
    "observ_core": "INFO",
    "observ_core.instrumentation": "INFO",
    "observ_core.observability": "INFO",
    "observ_core.guardrails": "INFO",
    "observ_core.review": "INFO",
    "observ_core.store": "INFO",
}

# Client libraries whose request-level chatter drowns out telemetry logs
QUIET_LOGGERS = ("openai", "httpx", "clickhouse_connect", "lmnr")


class LoggingConfig:
    """Loads and applies the logging configuration.

    @public

    Configuration precedence:
        1. Explicit config_path parameter
        2. OBSERV_LOGGING_CONFIG environment variable
        3. PREFECT_LOGGING_SETTINGS_PATH environment variable
        4. Default configuration

    The loaded configuration is cached; create a new instance to reload.
    """

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or self._get_default_config_path()
        self._config: Optional[Dict[str, Any]] = None

    @staticmethod
    def _get_default_config_path() -> Optional[Path]:
        if env_path := os.environ.get("OBSERV_LOGGING_CONFIG"):
            return Path(env_path)

        if prefect_path := os.environ.get("PREFECT_LOGGING_SETTINGS_PATH"):
            return Path(prefect_path)

        return None

    def load_config(self) -> Dict[str, Any]:
        """Return the ``dictConfig`` mapping, reading the YAML file when one exists."""
        if self._config is None:
            if self.config_path and self.config_path.exists():
                with open(self.config_path, "r") as f:
                    self._config = yaml.safe_load(f)
            else:
                self._config = self._get_default_config()
        assert self._config is not None
        return self._config

    @staticmethod
    def _get_default_config() -> Dict[str, Any]:
        """Console logging with one logger per package component.

        Format: "HH:MM:SS.mmm | LEVEL | logger.name - message"
        """
        package_level = os.environ.get("OBSERV_LOG_LEVEL", "INFO")
        loggers: Dict[str, Any] = {
            "observ_core": {
                "level": package_level,
                "handlers": ["console"],
                "propagate": False,
            },
        }
        for name in QUIET_LOGGERS:
            loggers[name] = {"level": "WARNING"}

        return {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s.%(msecs)03d | %(levelname)-7s | %(name)s - %(message)s",
                    "datefmt": "%H:%M:%S",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "stream": "ext://sys.stdout",
                },
            },
            "loggers": loggers,
            "root": {
                "level": "WARNING",
                "handlers": ["console"],
            },
        }

    def apply(self):
        """Apply the configuration. May set PREFECT_LOGGING_LEVEL as a side effect."""
        config = self.load_config()
        logging.config.dictConfig(config)

        if "prefect" in config.get("loggers", {}):
            prefect_level = config["loggers"]["prefect"].get("level", "INFO")
            os.environ.setdefault("PREFECT_LOGGING_LEVEL", prefect_level)


_logging_config: Optional[LoggingConfig] = None


def setup_logging(config_path: Optional[Path] = None, level: Optional[str] = None):
    """Configure logging for Observ Core.

    @public

    Args:
        config_path: YAML logging configuration file. When None, the
                     environment variables or the defaults are used.
        level: Level applied to every observ_core component logger.

    Example:
        >>> setup_logging(level="DEBUG")
    """
    global _logging_config

    _logging_config = LoggingConfig(config_path)
    _logging_config.apply()

    if level:
        for logger_name in DEFAULT_LOG_LEVELS:
            logger = get_logger(logger_name)
            logger.setLevel(level)

        os.environ["PREFECT_LOGGING_LEVEL"] = level


def get_pipeline_logger(name: str):
    """Return a Prefect logger for an Observ Core module, configuring logging on first use.

    @public
    """
    if _logging_config is None:
        setup_logging()

    return get_logger(name)
