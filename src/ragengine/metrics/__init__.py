"""Logging and Prometheus metrics."""

from .observability import (
    PipelineMetrics,
    bind_correlation_id,
    configure_logging,
    current_correlation_id,
    get_logger,
    restore_correlation_id,
)

__all__ = [
    "PipelineMetrics",
    "bind_correlation_id",
    "configure_logging",
    "current_correlation_id",
    "get_logger",
    "restore_correlation_id",
]
