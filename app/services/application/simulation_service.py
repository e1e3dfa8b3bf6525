"""
Application service: Orchestration layer for simulation sessions.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4
import asyncio
import logging
import time

from app.config import settings
from app.domain.models import (
    FieldLayout,
    Point,
    ProductApplication,
    TimelineDay,
    WeatherKind,
    WeatherObservation,
)
from app.infrastructure.api_constants import APIConstants
from app.infrastructure.growth_rate_client import (
    GrowthRateClient,
    GrowthRateRequest,
    WeatherConditions,
)
from app.services.domain.climate_model import ClimateModel
from app.services.domain.field_layout_builder import FieldLayoutBuilder
from app.services.domain.growth_timeline import build_timeline
from app.services.domain.playback import AsyncioPlaybackTimer, PlaybackTimer
from app.services.domain.timeline_controller import TimelineController

logger = logging.getLogger(__name__)

# Rough daily precipitation per weather kind, in mm
PRECIPITATION_BY_KIND = {
    WeatherKind.SUNNY: 0.0,
    WeatherKind.PARTLY_CLOUDY: 0.0,
    WeatherKind.CLOUDY: 0.5,
    WeatherKind.RAINY: 8.0,
    WeatherKind.STORMY: 20.0,
}


class SimulationNotFoundError(Exception):
    """Raised when a simulation id is not in the registry."""
    pass


class DuplicateApplicationError(Exception):
    """Raised when a product is applied twice from the same day."""
    pass


class ApplicationNotFoundError(Exception):
    """Raised when removing a product application that is not in effect."""
    pass


@dataclass
class RenderLog:
    """Render callback target: remembers what was last pushed to the view."""
    render_count: int = 0
    last_rendered_day: Optional[TimelineDay] = None

    def record(self, day: TimelineDay) -> None:
        self.render_count += 1
        self.last_rendered_day = day


@dataclass
class SimulationSession:
    """A field layout and its timeline controller, kept until ended or evicted."""
    simulation_id: str
    layout: FieldLayout
    controller: TimelineController
    latitude: float
    longitude: float
    render_log: RenderLog
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_accessed: float = field(default_factory=time.monotonic)
    # Serialises product applications, which await the estimator
    product_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class SimulationRegistry:
    """
    In-process store of running simulation sessions.

    Each session holds its whole field layout, so the store is bounded:
    sessions idle for longer than ``idle_ttl_s`` are ended when a new one is
    added, and once ``max_sessions`` are held the least recently used one is
    ended to make room.
    """

    def __init__(
        self,
        max_sessions: Optional[int] = None,
        idle_ttl_s: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_sessions = max(1, max_sessions or settings.max_simulations)
        self.idle_ttl_s = idle_ttl_s if idle_ttl_s is not None else settings.simulation_idle_ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, SimulationSession] = {}

    def add(self, session: SimulationSession) -> None:
        self.evict_idle()
        while len(self._sessions) >= self.max_sessions:
            oldest = min(self._sessions.values(), key=lambda s: s.last_accessed)
            logger.warning(f"Simulation limit of {self.max_sessions} reached, "
                           f"ending least recently used {oldest.simulation_id}")
            self._discard(oldest.simulation_id)
        session.last_accessed = self._clock()
        self._sessions[session.simulation_id] = session

    def get(self, simulation_id: str) -> SimulationSession:
        try:
            session = self._sessions[simulation_id]
        except KeyError:
            raise SimulationNotFoundError(f"Simulation {simulation_id} not found")
        session.last_accessed = self._clock()
        return session

    def remove(self, simulation_id: str) -> SimulationSession:
        session = self.get(simulation_id)
        del self._sessions[simulation_id]
        return session

    def evict_idle(self) -> int:
        """
        End every session not accessed within the idle TTL.

        Returns:
            Number of sessions ended
        """
        cutoff = self._clock() - self.idle_ttl_s
        expired = [s.simulation_id for s in self._sessions.values() if s.last_accessed < cutoff]
        for simulation_id in expired:
            self._discard(simulation_id)
        if expired:
            logger.info(f"Ended {len(expired)} idle simulation sessions")
        return len(expired)

    def sessions(self) -> List[SimulationSession]:
        return list(self._sessions.values())

    def close_all(self) -> None:
        """Stop every session's playback and forget all sessions."""
        for session in self._sessions.values():
            session.controller.close()
        if self._sessions:
            logger.info(f"Closed {len(self._sessions)} simulation sessions")
        self._sessions.clear()

    def _discard(self, simulation_id: str) -> None:
        self._sessions.pop(simulation_id).controller.close()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, simulation_id: object) -> bool:
        return simulation_id in self._sessions


# Singleton instance
_registry: Optional[SimulationRegistry] = None


def get_simulation_registry() -> SimulationRegistry:
    """
    Get or create the singleton session registry.

    Returns:
        SimulationRegistry instance
    """
    global _registry
    if _registry is None:
        _registry = SimulationRegistry()
    return _registry


class SimulationService:
    """
    Application service for simulation sessions.

    Coordinates field construction, timeline building, playback and the
    growth-rate estimator. No simulation logic lives here; it only wires the
    domain services together and enforces caller-level rules such as
    rejecting duplicate product applications.
    """

    def __init__(
        self,
        registry: SimulationRegistry,
        growth_rate_client: GrowthRateClient,
        timer_factory: Callable[[], PlaybackTimer] = AsyncioPlaybackTimer,
    ):
        """
        Initialize the service with dependencies.

        Args:
            registry: Store of running sessions
            growth_rate_client: Estimator used when a product has no known increase
            timer_factory: Creates the playback timer of each new session
        """
        self.registry = registry
        self.growth_rate_client = growth_rate_client
        self.timer_factory = timer_factory

    def create_simulation(
        self,
        crop_type: str,
        latitude: float,
        longitude: float,
        hectares: Optional[float] = None,
        density_percent: float = 100.0,
        polygon: Optional[Sequence[Sequence[float]]] = None,
        geo_polygon: Optional[Sequence[Point]] = None,
        start_date: Optional[date] = None,
        horizon_days: Optional[int] = None,
        seed: Optional[int] = None,
        observations: Optional[Iterable[WeatherObservation]] = None,
        layout_mode: str = "grid",
    ) -> SimulationSession:
        """
        Build a field and its timeline, and register a paused session at day 0.

        A geographic boundary takes precedence over a planar polygon; with
        neither, the default square is used.

        Args:
            crop_type: Crop grown on the field
            latitude: Field latitude in degrees
            longitude: Field longitude in degrees
            hectares: Target field size (None keeps the geographic boundary's
                own area, or 1 ha for planar input)
            density_percent: Planting density in percent
            polygon: Planar (x, z) outline
            geo_polygon: (latitude, longitude) outline
            start_date: Date of day 0 (defaults from settings)
            horizon_days: Number of simulated days (defaults from settings)
            seed: Seed for weather and plant jitter (defaults from settings)
            observations: Observed weather for the leading days
            layout_mode: "grid" or "scatter"

        Returns:
            The registered SimulationSession

        Raises:
            ValueError: If the layout mode is unknown
        """
        seed = seed if seed is not None else settings.climate_seed
        start_date = start_date or date.fromisoformat(settings.default_start_date)
        horizon_days = horizon_days or settings.default_horizon_days

        builder = FieldLayoutBuilder(seed=seed)
        if geo_polygon:
            layout = builder.build_from_boundary(
                geo_polygon, hectares, crop_type, density_percent, mode=layout_mode
            )
        else:
            layout = builder.build(
                polygon or [], hectares or 1.0, crop_type, density_percent, mode=layout_mode
            )

        timeline = build_timeline(
            crop_type,
            latitude,
            longitude,
            start_date,
            horizon_days,
            climate_model=ClimateModel(seed),
            observations=observations,
        )

        render_log = RenderLog()
        controller = TimelineController(
            timeline,
            render_callback=render_log.record,
            timer=self.timer_factory(),
            base_interval_ms=settings.playback_base_interval_ms,
            min_speed=settings.playback_min_speed,
            max_speed=settings.playback_max_speed,
        )

        simulation_id = uuid4().hex
        session = SimulationSession(
            simulation_id=simulation_id,
            layout=layout,
            controller=controller,
            latitude=latitude,
            longitude=longitude,
            render_log=render_log,
        )
        self.registry.add(session)

        logger.info(f"Created simulation {simulation_id}: {crop_type}, "
                    f"{layout.plant_count} plants, {timeline.total_days} days")
        return session

    def get_simulation(self, simulation_id: str) -> SimulationSession:
        """
        Look up a running simulation.

        Raises:
            SimulationNotFoundError: If the id is unknown
        """
        return self.registry.get(simulation_id)

    def list_simulations(self) -> List[SimulationSession]:
        return self.registry.sessions()

    def end_simulation(self, simulation_id: str) -> None:
        """Stop playback and drop the session."""
        session = self.registry.remove(simulation_id)
        session.controller.close()
        logger.info(f"Ended simulation {simulation_id}")

    async def apply_product(
        self,
        simulation_id: str,
        product_id: str,
        product_name: str,
        from_day_index: int,
        growth_rate_increase: Optional[float] = None,
        soil_ph: float = APIConstants.DEFAULT_SOIL_PH,
        soil_nitrogen: float = APIConstants.DEFAULT_SOIL_NITROGEN,
    ) -> Tuple[ProductApplication, Optional[str]]:
        """
        Apply a product to a simulation from a given day.

        When ``growth_rate_increase`` is None, the estimator is asked for it,
        using the weather of the affected days.

        Args:
            simulation_id: Target simulation
            product_id: Product identifier (also the estimator's product key)
            product_name: Display name
            from_day_index: First affected day (clamped)
            growth_rate_increase: Known fractional boost, or None to estimate
            soil_ph: Soil pH sent to the estimator
            soil_nitrogen: Soil nitrogen sent to the estimator

        Returns:
            Tuple of (recorded application, estimator observations or None)

        Raises:
            SimulationNotFoundError: If the id is unknown
            DuplicateApplicationError: If the product already applies from that day
            GrowthRateServiceError: If the estimator fails
        """
        session = self.registry.get(simulation_id)
        controller = session.controller
        day_index = max(0, min(controller.get_total_days() - 1, int(from_day_index)))

        async with session.product_lock:
            if controller.ledger.find_by_product(product_id, day_index) is not None:
                raise DuplicateApplicationError(
                    f"Product {product_id} is already applied from day {day_index}"
                )

            observations = None
            if growth_rate_increase is None:
                request = GrowthRateRequest(
                    weather=summarize_weather(controller.get_days()[day_index:]),
                    crop=controller.crop_type,
                    product=product_id,
                    soil_ph=soil_ph,
                    soil_nitrogen=soil_nitrogen,
                )
                estimate = await self.growth_rate_client.estimate_growth_rate(request)
                growth_rate_increase = estimate.growth_rate_increase
                observations = estimate.observations

            application = controller.apply_product(
                product_id, product_name, growth_rate_increase, day_index
            )
        return application, observations

    def remove_product(self, simulation_id: str, application_id: str) -> ProductApplication:
        """
        Undo a product application (best effort, see TimelineController).

        Raises:
            SimulationNotFoundError: If the simulation id is unknown
            ApplicationNotFoundError: If the application is not in effect
        """
        controller = self.registry.get(simulation_id).controller
        application = controller.ledger.find(application_id)
        if application is None or not controller.remove_product(application):
            raise ApplicationNotFoundError(
                f"Product application {application_id} not found in simulation {simulation_id}"
            )
        return application


def summarize_weather(days: Sequence[TimelineDay]) -> WeatherConditions:
    """
    Condense day records into the estimator's weather summary.

    Precipitation is estimated from the weather kinds; the simulated days do
    not carry rainfall amounts.
    """
    if not days:
        return WeatherConditions(precipitation=0.0, min_temperature=0.0, max_temperature=0.0, humidity=0.0)
    temperatures = [day.temperature for day in days]
    return WeatherConditions(
        precipitation=round(sum(PRECIPITATION_BY_KIND[day.weather_kind] for day in days), 1),
        min_temperature=min(temperatures),
        max_temperature=max(temperatures),
        humidity=round(sum(day.humidity for day in days) / len(days), 1),
    )
