"""
Shared pytest fixtures for all tests.

This module provides common fixtures including:
- Sample polygons
- Hand-built timelines with known growth factors
- A manually driven playback timer
- Mock growth-rate client
- FastAPI test client
"""
import os

# Keep the per-client rate limit out of the way of the test suite
os.environ.setdefault("RATE_LIMIT_REQUESTS", "10000")

import pytest
from datetime import date, timedelta
from typing import Callable, Optional
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

from app.main import app
from app.domain.models import Biome, Timeline, TimelineDay, WeatherKind
from app.infrastructure.growth_rate_client import (
    GrowthRateClient,
    GrowthRateEstimate,
    get_growth_rate_client,
)
from app.services.application.simulation_service import (
    SimulationRegistry,
    get_simulation_registry,
)
from app.services.domain.growth_timeline import classify_growth_stage, render_settings_for


# ============================================================
# Sample Polygon Fixtures
# ============================================================

@pytest.fixture
def square_polygon() -> list[tuple[float, float]]:
    """A 10 m x 10 m square (100 m²)."""
    return [(0.0, 0.0), (10.0, 0.0), (10.0, 10.0), (0.0, 10.0)]


@pytest.fixture
def l_shaped_polygon() -> list[tuple[float, float]]:
    """A concave L-shaped field, 60 m on its long sides."""
    return [
        (0.0, 0.0),
        (60.0, 0.0),
        (60.0, 20.0),
        (20.0, 20.0),
        (20.0, 60.0),
        (0.0, 60.0),
    ]


@pytest.fixture
def triangle_polygon() -> list[tuple[float, float]]:
    return [(0.0, 0.0), (80.0, 0.0), (0.0, 60.0)]


# ============================================================
# Timeline Fixtures
# ============================================================

def build_fixed_timeline(
    growth_factors: list[float],
    start_date: date = date(2025, 3, 20),
    crop_type: str = "corn",
) -> Timeline:
    """Build a timeline whose days carry the given growth factors."""
    days = []
    for index, factor in enumerate(growth_factors):
        days.append(TimelineDay(
            index=index,
            date=start_date + timedelta(days=index),
            temperature=20.0,
            humidity=60.0,
            weather_kind=WeatherKind.SUNNY,
            wind_speed=3.0,
            biome=Biome.TEMPERATE,
            base_growth_factor=factor,
            growth_factor=factor,
            growth_stage=classify_growth_stage(factor),
            render_settings=render_settings_for(WeatherKind.SUNNY),
        ))
    return Timeline(
        crop_type=crop_type,
        start_date=start_date,
        latitude=40.0,
        longitude=-88.0,
        days=days,
    )


@pytest.fixture
def make_timeline() -> Callable[..., Timeline]:
    """Factory for timelines with known growth factors."""
    return build_fixed_timeline


@pytest.fixture
def ten_day_timeline() -> Timeline:
    """Ten days with growth factors spread over every stage."""
    return build_fixed_timeline([0.1, 0.25, 0.4, 0.5, 0.55, 0.62, 0.7, 0.8, 0.88, 0.95])


# ============================================================
# Playback Fixtures
# ============================================================

class ManualTimer:
    """Playback timer driven by the test instead of an event loop."""

    def __init__(self):
        self.interval_s: Optional[float] = None
        self.callback: Optional[Callable[[], None]] = None
        self.start_count = 0
        self.cancel_count = 0

    @property
    def active(self) -> bool:
        return self.callback is not None

    def start(self, interval_s: float, callback: Callable[[], None]) -> None:
        self.interval_s = interval_s
        self.callback = callback
        self.start_count += 1

    def cancel(self) -> None:
        if self.callback is not None:
            self.cancel_count += 1
        self.callback = None

    def tick(self, times: int = 1) -> None:
        for _ in range(times):
            if self.callback is None:
                return
            self.callback()


@pytest.fixture
def manual_timer() -> ManualTimer:
    return ManualTimer()


# ============================================================
# Mock API Client Fixtures
# ============================================================

@pytest.fixture
def mock_growth_rate_client() -> AsyncMock:
    """Create a mock growth-rate client returning +8%."""
    mock_client = AsyncMock(spec=GrowthRateClient)
    mock_client.estimate_growth_rate.return_value = GrowthRateEstimate(
        growth_rate_increase=0.08,
        observations="Warm days and adequate rain favour the biostimulant.",
    )
    return mock_client


# ============================================================
# FastAPI Test Client Fixtures
# ============================================================

@pytest.fixture
def registry() -> SimulationRegistry:
    return SimulationRegistry()


@pytest.fixture
def test_client(registry, mock_growth_rate_client) -> TestClient:
    """Create a synchronous test client with a fresh registry and mocked estimator."""
    app.dependency_overrides[get_simulation_registry] = lambda: registry
    app.dependency_overrides[get_growth_rate_client] = lambda: mock_growth_rate_client
    yield TestClient(app)
    app.dependency_overrides.clear()
    registry.close_all()
