"""
Logger configuration and setup
Pure configuration logic for structlog
"""

import logging
import sys
from typing import Iterable, Optional

import structlog


class LoggerSetup:
    """Centralized logger setup and configuration"""

    _configured = False
    _loggers = {}

    # Client libraries that log every provider request or socket frame
    NOISY_LOGGERS = ("httpx", "httpcore", "websockets")

    @classmethod
    def configure_logging(
        cls,
        log_level: Optional[str] = None,
        log_format: Optional[str] = None,
        enable_colors: bool = True,
        quiet_loggers: Iterable[str] = NOISY_LOGGERS,
    ) -> None:
        """
        Configure structured logging for the whole process

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_format: Format type (json, console)
            enable_colors: Enable colored output for console logging
            quiet_loggers: stdlib loggers held at WARNING unless the level is DEBUG
        """
        if cls._configured:
            return

        if log_level is None or log_format is None:
            from marketpulse.core.config import get_settings

            settings = get_settings()
            log_level = log_level or settings.LOG_LEVEL
            log_format = log_format or settings.LOG_FORMAT

        log_level_num = getattr(logging, log_level.upper(), logging.INFO)

        logging.basicConfig(
            format="%(message)s",
            stream=sys.stdout,
            level=log_level_num,
        )
        if log_level_num > logging.DEBUG:
            for name in quiet_loggers:
                logging.getLogger(name).setLevel(logging.WARNING)

        processors = [
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
        ]

        if log_format == "json":
            processors.append(structlog.processors.JSONRenderer())
        else:
            processors.append(structlog.dev.ConsoleRenderer(colors=enable_colors))

        structlog.configure(
            processors=processors,
            wrapper_class=structlog.stdlib.BoundLogger,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        cls._configured = True

    @classmethod
    def get_logger(cls, name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
        """
        Get a configured logger instance

        Args:
            name: Logger name (defaults to the package logger)

        Returns:
            Configured structlog logger
        """
        if not cls._configured:
            cls.configure_logging()

        name = name or "marketpulse"
        if name not in cls._loggers:
            cls._loggers[name] = structlog.get_logger(name)

        return cls._loggers[name]

    @classmethod
    def is_configured(cls) -> bool:
        """Check if logging has been configured"""
        return cls._configured

    @classmethod
    def reset(cls) -> None:
        """Reset configuration (primarily for testing)"""
        cls._configured = False
        cls._loggers.clear()
