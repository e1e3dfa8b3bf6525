"""
Domain models for field layouts, weather and growth timelines.

These models represent the core domain entities and should be independent
of any infrastructure concerns (HTTP clients, renderers, storage, etc.).
"""
from dataclasses import dataclass
import datetime as dt
from enum import Enum
from typing import List, Optional, Tuple
from uuid import uuid4

import numpy as np
from pydantic import BaseModel, Field


Point = Tuple[float, float]


class WeatherKind(str, Enum):
    """Coarse weather categories used by the climate model and renderer."""
    SUNNY = "sunny"
    PARTLY_CLOUDY = "partly_cloudy"
    CLOUDY = "cloudy"
    RAINY = "rainy"
    STORMY = "stormy"


class Biome(str, Enum):
    """Climate model a sample was produced with."""
    TEMPERATE = "temperate"
    TROPICAL_SAVANNA = "tropical_savanna"


class GrowthStage(str, Enum):
    """Lifecycle phase derived from a day's growth factor."""
    SEEDLING = "SEEDLING"
    VEGETATIVE = "VEGETATIVE"
    REPRODUCTIVE = "REPRODUCTIVE"
    MATURE = "MATURE"


class SeasonPhase(str, Enum):
    """Coarse position inside the simulated season."""
    EARLY = "early"
    MIDDLE = "middle"
    LATE = "late"


@dataclass(frozen=True, eq=False)
class FieldLayout:
    """Scaled field outline and plant positions for one simulation.

    ``plant_positions`` is an (n, 2) array of (x, z) coordinates; dense crops
    such as wheat produce millions of plants on a hectare.
    """
    scaled_polygon: Tuple[Point, ...]
    plant_positions: np.ndarray
    crop_type: str
    density_percent: float
    hectares: float

    @property
    def plant_count(self) -> int:
        return len(self.plant_positions)

    def rendered_positions(self, max_count: int) -> List[Point]:
        """
        Evenly sample plant positions for a renderer with a plant budget.

        Args:
            max_count: Maximum number of positions to return

        Returns:
            Every n-th position so that at most ``max_count`` are returned
        """
        if max_count <= 0:
            return []
        step = max(1, -(-len(self.plant_positions) // max_count))
        return [(float(x), float(z)) for x, z in self.plant_positions[::step]]


class ClimateSample(BaseModel):
    """One day of weather and the growth factor derived from it."""
    date: dt.date
    temperature: float = Field(description="Air temperature in °C")
    humidity: float = Field(description="Relative humidity in %")
    weather_kind: WeatherKind
    wind_speed: float = Field(description="Wind speed in m/s")
    biome: Biome = Biome.TEMPERATE
    growth_factor: float = Field(ge=0.0, le=1.0)


class WeatherObservation(BaseModel):
    """Observed weather for one day, as delivered by an environmental data source."""
    date: dt.date
    temperature: float
    humidity: float
    wind_speed: float = 0.0
    weather_kind: Optional[WeatherKind] = None
    weather_code: Optional[int] = Field(
        default=None,
        description="OpenWeatherMap condition code, used when weather_kind is missing"
    )


class RenderSettings(BaseModel):
    """Lighting, fog and particle parameters for a weather kind."""
    sky_color: int
    fog_color: int
    fog_density: float
    light_intensity: float
    ambient_intensity: float
    rain_particles: int
    cloud_opacity: float
    cloud_count: int


class TimelineDay(BaseModel):
    """A single simulated day."""
    index: int
    date: dt.date
    temperature: float
    humidity: float
    weather_kind: WeatherKind
    wind_speed: float
    biome: Biome
    base_growth_factor: float = Field(
        ge=0.0, le=1.0,
        description="Growth factor from weather alone, before any products"
    )
    growth_factor: float = Field(ge=0.0, le=1.0)
    growth_stage: GrowthStage
    render_settings: RenderSettings


class Timeline(BaseModel):
    """Ordered day records for a fixed horizon."""
    crop_type: str
    start_date: dt.date
    latitude: float
    longitude: float
    days: List[TimelineDay]

    def day(self, index: int) -> TimelineDay:
        """
        Return the day record at ``index``.

        Raises:
            TimelineIntegrityError: If the record does not exist
        """
        if index < 0 or index >= len(self.days):
            raise TimelineIntegrityError(
                f"Day {index} missing from timeline of {len(self.days)} days"
            )
        record = self.days[index]
        if record.index != index:
            raise TimelineIntegrityError(
                f"Day record at position {index} carries index {record.index}"
            )
        return record

    @property
    def total_days(self) -> int:
        return len(self.days)


class ProductApplication(BaseModel):
    """A product applied from a given day onward."""
    application_id: str = Field(default_factory=lambda: uuid4().hex)
    product_id: str
    product_name: str
    growth_rate_increase: float = Field(
        description="Fractional boost, e.g. 0.05 for +5%"
    )
    applied_at_day_index: int
    applied_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))
    saturated_days: List[int] = Field(
        default_factory=list,
        description="Days whose growth factor hit the 1.0 ceiling while this application was in effect"
    )

    @property
    def reversal_exact(self) -> bool:
        """Whether removing this application restores the previous values."""
        return not self.saturated_days


class TimelineIntegrityError(Exception):
    """Raised when a timeline is missing a day record it should have."""
    pass
