"""Structured logging for metering and billing runs.

Provides structured JSON logging, run/category/order context propagation,
and performance timing.
"""

from clustermeter.logging_config.config import LogFormat, LoggingConfig, LogLevel
from clustermeter.logging_config.context import MeteringContext, generate_run_id
from clustermeter.logging_config.performance import PerformanceTimer, log_performance
from clustermeter.logging_config.setup import configure_logging

__all__ = [
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "MeteringContext",
    "PerformanceTimer",
    "configure_logging",
    "generate_run_id",
    "log_performance",
]
