"""Logging infrastructure for Observ Core.

@public

This module provides unified, Prefect-integrated logging. Every Observ Core
module obtains its logger through get_pipeline_logger().

Key components:
    get_pipeline_logger: Factory function for creating package loggers
    setup_logging: Initialize logging configuration from YAML
    LoggingConfig: Configuration class for logging settings

Example:
    >>> from observ_core.logging import get_pipeline_logger
    >>>
    >>> logger = get_pipeline_logger(__name__)
    >>> logger.info("Instrumented chat client")

Note:
    Never import Python's logging module directly in library code. Always use
    get_pipeline_logger() for consistent configuration.
"""

from .logging_config import LoggingConfig, get_pipeline_logger, setup_logging

__all__ = [
    "LoggingConfig",
    "setup_logging",
    "get_pipeline_logger",
]
