"""Performance Logging.

Decorator and context manager for timing store queries and pricing passes
and logging slow ones.
"""

import functools
import logging
import time
from typing import Any, Callable, Optional

from clustermeter.logging_config.config import DEFAULT_LOGGING_CONFIG

logger = logging.getLogger(__name__)


def log_performance(
    threshold_ms: Optional[float] = None,
    logger_name: Optional[str] = None,
) -> Callable:
    """Decorator that logs function execution time.

    Logs all calls at DEBUG level, slow calls (above threshold) at WARNING
    and failures at ERROR before re-raising.

    Example:
        @log_performance(threshold_ms=500)
        def fetch_prices(session_factory):
            ...
    """
    if threshold_ms is None:
        threshold_ms = DEFAULT_LOGGING_CONFIG.slow_threshold_ms

    def decorator(func: Callable) -> Callable:
        _logger = logging.getLogger(logger_name or func.__module__)
        func_name = func.__qualname__

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                duration_ms = (time.perf_counter() - start) * 1000
                _logger.error(
                    f"{func_name} failed after {duration_ms:.1f}ms: {type(exc).__name__}",
                    extra={"duration_ms": round(duration_ms, 2)},
                )
                raise
            finally:
                duration_ms = (time.perf_counter() - start) * 1000
                extra = {"duration_ms": round(duration_ms, 2)}
                if duration_ms >= threshold_ms:
                    _logger.warning(
                        f"Slow operation: {func_name} took {duration_ms:.1f}ms",
                        extra=extra,
                    )
                else:
                    _logger.debug(
                        f"{func_name} completed in {duration_ms:.1f}ms",
                        extra=extra,
                    )
        return wrapper

    return decorator


class PerformanceTimer:
    """Context manager for timing code blocks.

    Example:
        with PerformanceTimer("meter namespace") as timer:
            entries = meter_monitor(sample, registry, bucket)
    """

    def __init__(self, operation_name: str, threshold_ms: Optional[float] = None):
        self.operation_name = operation_name
        self.threshold_ms = threshold_ms or DEFAULT_LOGGING_CONFIG.slow_threshold_ms
        self.start_time: float = 0
        self.duration_ms: float = 0

    def __enter__(self) -> "PerformanceTimer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        extra = {"duration_ms": round(self.duration_ms, 2)}

        if exc_type is not None:
            logger.error(
                f"{self.operation_name} failed after {self.duration_ms:.1f}ms: {exc_type.__name__}",
                extra=extra,
            )
        elif self.duration_ms >= self.threshold_ms:
            logger.warning(
                f"Slow operation: {self.operation_name} took {self.duration_ms:.1f}ms",
                extra=extra,
            )
        else:
            logger.debug(
                f"{self.operation_name} completed in {self.duration_ms:.1f}ms",
                extra=extra,
            )
