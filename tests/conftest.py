"""Shared test fixtures for the photorelay test suite."""

from __future__ import annotations

import io
from collections.abc import Callable

import pytest
from PIL import Image

from photorelay.config import PhotoRelayConfig


class RecordingMetrics:
    """Metrics hook that keeps every data point for assertions."""

    def __init__(self) -> None:
        self.counters: list[tuple[str, int, dict[str, str] | None]] = []
        self.timings: list[tuple[str, float, dict[str, str] | None]] = []
        self.gauges: list[tuple[str, float, dict[str, str] | None]] = []

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        self.counters.append((name, value, tags))

    def timing(self, name: str, ms: float, tags: dict[str, str] | None = None) -> None:
        self.timings.append((name, ms, tags))

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self.gauges.append((name, value, tags))

    def count(self, name: str) -> int:
        return sum(v for n, v, _ in self.counters if n == name)


@pytest.fixture
def config() -> PhotoRelayConfig:
    """Test configuration with dummy store credentials and no pacing."""
    return PhotoRelayConfig(
        store_cloud_name="demo-cloud",
        store_api_key="123456789012345",
        store_api_secret="s3cr3t-api-secret-value",
        relay_url="http://relay.test",
        inter_batch_delay=0.0,
        store_retry_base_delay=0.0,
        store_retry_jitter=False,
    )


@pytest.fixture
def metrics() -> RecordingMetrics:
    """A metrics hook that records every call."""
    return RecordingMetrics()


@pytest.fixture
def image_bytes() -> Callable[..., bytes]:
    """Factory encoding a solid-colour image: ``image_bytes(w, h, fmt="JPEG")``."""

    def _make(width: int = 64, height: int = 48, fmt: str = "JPEG", mode: str = "RGB") -> bytes:
        buf = io.BytesIO()
        Image.new(mode, (width, height), "red").save(buf, fmt)
        return buf.getvalue()

    return _make
