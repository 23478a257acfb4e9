"""Observability: structured logging and metrics hooks for photorelay."""

from __future__ import annotations

from .logger import BoundLogger, StructuredFormatter, bind, get_logger
from .metrics import MetricsHook, NoopMetricsHook, resolve_metrics

__all__ = [
    "BoundLogger",
    "MetricsHook",
    "NoopMetricsHook",
    "StructuredFormatter",
    "bind",
    "get_logger",
    "resolve_metrics",
]
