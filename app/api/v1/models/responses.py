"""
API response models using Pydantic.
"""
import datetime as dt
from typing import List, Optional, Tuple
from pydantic import BaseModel, Field

from app.domain.models import GrowthStage, ProductApplication, SeasonPhase, TimelineDay


class FieldResponse(BaseModel):
    """Response model for a simulation's field layout."""
    crop_type: str
    hectares: float
    density_percent: float
    polygon: List[Tuple[float, float]] = Field(
        description="Scaled field outline as (x, z) pairs in meters"
    )
    plant_count: int = Field(description="Number of plants laid out on the field")
    estimated_population: int = Field(
        description="Real-world plant count for the requested hectares and density"
    )
    rendered_positions: List[Tuple[float, float]] = Field(
        description="Evenly sampled plant positions, at most the render budget"
    )


class PlaybackResponse(BaseModel):
    """Playback state of a simulation."""
    state: str = Field(description="paused or playing")
    current_day_index: int
    total_days: int
    speed: float
    interval_ms: float
    season_phase: SeasonPhase


class PlaybackStatusResponse(BaseModel):
    """Playback state together with the day now shown."""
    playback: PlaybackResponse
    current_day: TimelineDay


class DaySummary(BaseModel):
    """Compact day record for timeline listings."""
    index: int
    date: dt.date
    weather_kind: str
    temperature: float
    humidity: float
    growth_factor: float
    growth_stage: GrowthStage

    @classmethod
    def from_day(cls, day: TimelineDay) -> "DaySummary":
        return cls(
            index=day.index,
            date=day.date,
            weather_kind=day.weather_kind.value,
            temperature=day.temperature,
            humidity=day.humidity,
            growth_factor=day.growth_factor,
            growth_stage=day.growth_stage,
        )


class TimelineResponse(BaseModel):
    """Response model for the full list of days."""
    simulation_id: str
    total_days: int
    days: List[DaySummary]


class ProductApplicationResponse(BaseModel):
    """A product application in effect."""
    application_id: str
    product_id: str
    product_name: str
    growth_rate_increase: float
    applied_at_day_index: int
    applied_at: dt.datetime
    saturated_days: List[int]
    reversal_exact: bool = Field(
        description="Whether removing this application restores the previous values exactly"
    )
    observations: Optional[str] = Field(
        default=None,
        description="Estimator's note, when the increase was estimated"
    )

    @classmethod
    def from_application(
        cls,
        application: ProductApplication,
        observations: Optional[str] = None,
    ) -> "ProductApplicationResponse":
        return cls(
            **application.model_dump(),
            reversal_exact=application.reversal_exact,
            observations=observations,
        )


class SimulationResponse(BaseModel):
    """Response model for a simulation session."""
    simulation_id: str
    crop_type: str
    latitude: float
    longitude: float
    start_date: dt.date
    created_at: dt.datetime
    plant_count: int
    playback: PlaybackResponse
    current_day: TimelineDay
    applications: List[ProductApplicationResponse]

    class Config:
        json_schema_extra = {
            "example": {
                "simulation_id": "5f0c6a1e9b3d4c2a8e7f6d5c4b3a2918",
                "crop_type": "corn",
                "latitude": 40.1,
                "longitude": -88.2,
                "start_date": "2025-03-20",
                "created_at": "2025-03-20T08:00:00Z",
                "plant_count": 81234,
                "playback": {
                    "state": "paused",
                    "current_day_index": 0,
                    "total_days": 90,
                    "speed": 1.0,
                    "interval_ms": 1000.0,
                    "season_phase": "early",
                },
                "current_day": {"index": 0, "growth_stage": "VEGETATIVE"},
                "applications": [],
            }
        }
