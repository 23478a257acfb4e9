"""Metrics hook protocol and no-op default implementation.

photorelay emits counters and timings at the relay boundary, around every
Media Store call, and across the client-side session.  By default a
:class:`NoopMetricsHook` is used so there is zero overhead.  Supply any
object satisfying :class:`MetricsHook` via ``PhotoRelayConfig(metrics=...)``
to route them to StatsD, Prometheus, Datadog or anything else.

Emitted metric names:

* ``photorelay.relay_requests_total``     -- counter
* ``photorelay.relay_duration_ms``        -- timing
* ``photorelay.store_requests_total``     -- counter
* ``photorelay.store_duration_ms``        -- timing
* ``photorelay.store_retries_total``      -- counter
* ``photorelay.upload_success_total``     -- counter
* ``photorelay.upload_failure_total``     -- counter
* ``photorelay.normalize_fallback_total`` -- counter
* ``photorelay.batches_total``            -- counter
* ``photorelay.session_duration_ms``      -- timing
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class MetricsHook(Protocol):
    """Protocol that any metrics backend must satisfy.

    All methods accept an optional *tags* dict of string keys and values.
    """

    def increment(
        self,
        name: str,
        value: int = 1,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Increment a counter metric."""
        ...

    def timing(
        self,
        name: str,
        ms: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Record a duration in milliseconds."""
        ...

    def gauge(
        self,
        name: str,
        value: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Set a gauge metric to an absolute value."""
        ...


class NoopMetricsHook:
    """Default metrics implementation that discards all data points."""

    __slots__ = ()

    def increment(
        self,
        name: str,
        value: int = 1,
        tags: dict[str, str] | None = None,
    ) -> None:
        pass

    def timing(
        self,
        name: str,
        ms: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        pass

    def gauge(
        self,
        name: str,
        value: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        pass


def resolve_metrics(metrics: MetricsHook | None) -> MetricsHook:
    """Return *metrics*, or a :class:`NoopMetricsHook` when it is ``None``."""
    return metrics if metrics is not None else NoopMetricsHook()
