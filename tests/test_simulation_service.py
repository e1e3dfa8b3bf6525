"""
Unit tests for the simulation application service.

Tests cover:
- Registry bounds (session cap and idle expiry)
- Duplicate product applications, including concurrent requests
"""
import asyncio
from unittest.mock import MagicMock

import pytest

from app.infrastructure.growth_rate_client import GrowthRateEstimate
from app.services.application.simulation_service import (
    DuplicateApplicationError,
    RenderLog,
    SimulationNotFoundError,
    SimulationRegistry,
    SimulationService,
    SimulationSession,
)


class FakeClock:
    """Monotonic clock moved by hand."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_session(simulation_id: str) -> SimulationSession:
    return SimulationSession(
        simulation_id=simulation_id,
        layout=MagicMock(),
        controller=MagicMock(),
        latitude=40.1,
        longitude=-88.2,
        render_log=RenderLog(),
    )


@pytest.fixture
def service(mock_growth_rate_client) -> SimulationService:
    return SimulationService(SimulationRegistry(), mock_growth_rate_client)


# ============================================================
# Registry Tests
# ============================================================

class TestSimulationRegistry:
    """Tests for the bounded session store."""

    def test_cap_ends_least_recently_used(self, clock):
        registry = SimulationRegistry(max_sessions=2, idle_ttl_s=3600, clock=clock)
        first, second, third = make_session("a"), make_session("b"), make_session("c")

        registry.add(first)
        clock.now += 1
        registry.add(second)
        clock.now += 1
        registry.get("a")
        clock.now += 1
        registry.add(third)

        assert len(registry) == 2
        assert "a" in registry
        assert "b" not in registry
        second.controller.close.assert_called_once()
        first.controller.close.assert_not_called()

    def test_idle_sessions_ended_on_add(self, clock):
        registry = SimulationRegistry(max_sessions=10, idle_ttl_s=60, clock=clock)
        stale, fresh = make_session("stale"), make_session("fresh")

        registry.add(stale)
        clock.now += 50
        registry.add(fresh)
        clock.now += 30
        registry.add(make_session("new"))

        assert "stale" not in registry
        assert "fresh" in registry
        stale.controller.close.assert_called_once()
        with pytest.raises(SimulationNotFoundError):
            registry.get("stale")

    def test_evict_idle_counts(self, clock):
        registry = SimulationRegistry(max_sessions=10, idle_ttl_s=60, clock=clock)
        registry.add(make_session("a"))
        registry.add(make_session("b"))

        clock.now += 61

        assert registry.evict_idle() == 2
        assert len(registry) == 0

    def test_defaults_from_settings(self):
        registry = SimulationRegistry()

        assert registry.max_sessions >= 1
        assert registry.idle_ttl_s > 0


# ============================================================
# Product Application Tests
# ============================================================

class TestApplyProduct:
    """Tests for applying products through the service."""

    @pytest.mark.asyncio
    async def test_duplicate_rejected(self, service):
        session = service.create_simulation("corn", 40.1, -88.2, hectares=0.1, horizon_days=10, seed=1)

        await service.apply_product(session.simulation_id, "nue", "NUE", 2, growth_rate_increase=0.1)

        with pytest.raises(DuplicateApplicationError):
            await service.apply_product(session.simulation_id, "nue", "NUE", 2, growth_rate_increase=0.1)
        assert len(session.controller.ledger) == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_apply_once(self, service, mock_growth_rate_client):
        async def slow_estimate(request):
            await asyncio.sleep(0.05)
            return GrowthRateEstimate(growth_rate_increase=0.08, observations="Slow estimate.")

        mock_growth_rate_client.estimate_growth_rate.side_effect = slow_estimate
        session = service.create_simulation("corn", 40.1, -88.2, hectares=0.1, horizon_days=10, seed=1)

        results = await asyncio.gather(
            service.apply_product(session.simulation_id, "yield_booster", "Yield Booster", 0),
            service.apply_product(session.simulation_id, "yield_booster", "Yield Booster", 0),
            return_exceptions=True,
        )

        applied = [r for r in results if isinstance(r, tuple)]
        rejected = [r for r in results if isinstance(r, DuplicateApplicationError)]
        assert len(applied) == 1
        assert len(rejected) == 1
        assert len(session.controller.ledger) == 1
        assert mock_growth_rate_client.estimate_growth_rate.await_count == 1

    @pytest.mark.asyncio
    async def test_same_product_other_day_allowed(self, service):
        session = service.create_simulation("corn", 40.1, -88.2, hectares=0.1, horizon_days=10, seed=1)

        await service.apply_product(session.simulation_id, "nue", "NUE", 2, growth_rate_increase=0.1)
        await service.apply_product(session.simulation_id, "nue", "NUE", 5, growth_rate_increase=0.1)

        assert len(session.controller.ledger) == 2
