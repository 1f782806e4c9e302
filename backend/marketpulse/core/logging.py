"""
Centralized Logging Configuration
Facade over the logger setup and decorators
"""

from typing import Optional

import structlog

from marketpulse.core.logger_setup import LoggerSetup
from marketpulse.core.logging_decorators import log_execution_time


def configure_logging(
    log_level: Optional[str] = None, log_format: Optional[str] = None
) -> None:
    """Configure structlog for the process (idempotent)"""
    LoggerSetup.configure_logging(log_level=log_level, log_format=log_format)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Get a configured structlog logger"""
    return LoggerSetup.get_logger(name)


__all__ = [
    "configure_logging",
    "get_logger",
    "LoggerSetup",
    "log_execution_time",
]
