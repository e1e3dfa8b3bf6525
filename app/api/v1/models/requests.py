"""
API request models using Pydantic.
"""
import datetime as dt
from typing import List, Literal, Optional, Tuple
from pydantic import BaseModel, Field

from app.domain.models import SeasonPhase, WeatherObservation


class CreateSimulationRequest(BaseModel):
    """Request model for starting a simulation."""
    crop_type: str = Field(
        description="Crop grown on the field (corn, wheat, soybean, cotton, rice)",
        examples=["corn"]
    )
    latitude: float = Field(
        ge=-90, le=90,
        description="Field latitude in degrees, used for the weather model",
        examples=[-12.5]
    )
    longitude: float = Field(
        ge=-180, le=180,
        description="Field longitude in degrees, used for the weather model",
        examples=[-55.7]
    )
    hectares: Optional[float] = Field(
        default=None,
        description="Target field size; defaults to the boundary's area or 1 ha"
    )
    density: float = Field(
        default=100.0,
        description="Planting density in percent (clamped to 1-100)"
    )
    polygon: Optional[List[Tuple[float, float]]] = Field(
        default=None,
        description="Planar field outline as (x, z) pairs in meters"
    )
    geo_polygon: Optional[List[Tuple[float, float]]] = Field(
        default=None,
        description="Geographic field outline as (latitude, longitude) pairs; overrides polygon"
    )
    start_date: Optional[dt.date] = Field(
        default=None,
        description="Date of day 0"
    )
    horizon_days: Optional[int] = Field(
        default=None,
        ge=1, le=3650,
        description="Number of simulated days"
    )
    seed: Optional[int] = Field(
        default=None,
        description="Seed for reproducible weather and plant jitter"
    )
    layout_mode: Literal["grid", "scatter"] = "grid"
    observations: List[WeatherObservation] = Field(
        default_factory=list,
        description="Observed weather for the leading days of the timeline"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "crop_type": "soybean",
                "latitude": -12.5,
                "longitude": -55.7,
                "hectares": 1.5,
                "density": 80,
                "polygon": [[0, 0], [100, 0], [100, 80], [0, 80]],
                "start_date": "2025-10-01",
                "horizon_days": 120,
                "seed": 42,
            }
        }


class SetDayRequest(BaseModel):
    """Request model for moving to a day."""
    day_index: int = Field(description="Target day; clamped into the timeline")


class PlayRequest(BaseModel):
    """Request model for starting playback."""
    speed: Optional[float] = Field(
        default=None,
        description="Speed multiplier; keeps the current speed when omitted"
    )


class SpeedRequest(BaseModel):
    """Request model for changing playback speed."""
    speed: float = Field(description="Speed multiplier (clamped to 0.1-16)")


class SeasonJumpRequest(BaseModel):
    """Request model for jumping to a season phase."""
    phase: SeasonPhase


class ApplyProductRequest(BaseModel):
    """Request model for applying a product."""
    product_id: str = Field(
        description="Product identifier, also sent to the growth-rate estimator",
        examples=["yield_booster"]
    )
    product_name: str = Field(examples=["Yield Booster"])
    day_index: int = Field(description="First affected day; clamped into the timeline")
    growth_rate_increase: Optional[float] = Field(
        default=None,
        description="Fractional boost (0.05 = +5%); estimated when omitted"
    )
    soil_ph: float = Field(default=6.5, description="Soil pH sent to the estimator")
    soil_nitrogen: float = Field(default=40.0, description="Soil nitrogen sent to the estimator")
