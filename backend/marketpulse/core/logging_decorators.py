"""
Logging decorators for cross-cutting concerns
"""

import functools
import time
from typing import Any, Callable, Optional

import structlog

from marketpulse.core.logger_setup import LoggerSetup


def log_execution_time(
    logger: Optional[structlog.stdlib.BoundLogger] = None, level: str = "debug"
):
    """Decorator to log synchronous function execution time"""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            start_time = time.perf_counter()
            log = logger or LoggerSetup.get_logger(func.__module__)

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                log.error(
                    "Function failed",
                    function=func.__qualname__,
                    duration_ms=round((time.perf_counter() - start_time) * 1000, 3),
                    error=str(e),
                )
                raise

            getattr(log, level)(
                "Function executed",
                function=func.__qualname__,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 3),
            )
            return result

        return wrapper

    return decorator
