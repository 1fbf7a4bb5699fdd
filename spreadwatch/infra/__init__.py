"""Infrastructure utilities for logging, metrics, and reconnection backoff."""

from .backoff import Backoff, BackoffConfig
from .logging import configure_logging
from .metrics import MetricsSink

__all__ = [
    "Backoff",
    "BackoffConfig",
    "configure_logging",
    "MetricsSink",
]
