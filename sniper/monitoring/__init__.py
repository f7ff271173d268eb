"""Monitoring utilities."""

from sniper.monitoring.activity import (
    ActivityCategory,
    ActivityEntry,
    ActivityLevel,
    ActivityLog,
    JsonlActivitySink,
    StructlogActivitySink,
)
from sniper.monitoring.logging import configure_logging
from sniper.monitoring.metrics import Metrics

__all__ = [
    "configure_logging",
    "Metrics",
    "ActivityCategory",
    "ActivityEntry",
    "ActivityLevel",
    "ActivityLog",
    "JsonlActivitySink",
    "StructlogActivitySink",
]
