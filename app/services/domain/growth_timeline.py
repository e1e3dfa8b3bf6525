"""
Domain service: Day-indexed growth timeline construction.

A timeline is built eagerly for its whole horizon. Each day carries its
weather, the growth factor derived from it, the growth stage classified from
that factor, and the render settings of its weather kind.
"""
from datetime import date, timedelta
from typing import Iterable, List, Optional
import logging

from app.domain.models import (
    ClimateSample,
    GrowthStage,
    RenderSettings,
    SeasonPhase,
    Timeline,
    TimelineDay,
    WeatherKind,
    WeatherObservation,
)
from app.services.domain.climate_model import (
    ClimateModel,
    samples_from_observations,
    select_biome,
)

logger = logging.getLogger(__name__)

SEEDLING_THRESHOLD = 0.2
VEGETATIVE_THRESHOLD = 0.6
REPRODUCTIVE_THRESHOLD = 0.9

RENDER_SETTINGS = {
    WeatherKind.SUNNY: RenderSettings(
        sky_color=0x87CEEB,
        fog_color=0xD7F0FF,
        fog_density=0.0025,
        light_intensity=1.0,
        ambient_intensity=0.6,
        rain_particles=0,
        cloud_opacity=0.8,
        cloud_count=10,
    ),
    WeatherKind.PARTLY_CLOUDY: RenderSettings(
        sky_color=0x87CEEB,
        fog_color=0xD7F0FF,
        fog_density=0.003,
        light_intensity=0.8,
        ambient_intensity=0.5,
        rain_particles=0,
        cloud_opacity=0.9,
        cloud_count=20,
    ),
    WeatherKind.CLOUDY: RenderSettings(
        sky_color=0xA3B5C7,
        fog_color=0xC7C7C7,
        fog_density=0.004,
        light_intensity=0.6,
        ambient_intensity=0.4,
        rain_particles=0,
        cloud_opacity=1.0,
        cloud_count=30,
    ),
    WeatherKind.RAINY: RenderSettings(
        sky_color=0x708090,
        fog_color=0xA3A3A3,
        fog_density=0.006,
        light_intensity=0.5,
        ambient_intensity=0.3,
        rain_particles=1000,
        cloud_opacity=1.0,
        cloud_count=35,
    ),
    WeatherKind.STORMY: RenderSettings(
        sky_color=0x4A5259,
        fog_color=0x7A7A7A,
        fog_density=0.008,
        light_intensity=0.4,
        ambient_intensity=0.2,
        rain_particles=2000,
        cloud_opacity=1.0,
        cloud_count=40,
    ),
}

# Cut points between early/middle and middle/late, as fractions of the season
PHASE_BOUNDARIES = (0.33, 0.67)
# Representative position of each phase, used when jumping to it
PHASE_MARKERS = {
    SeasonPhase.EARLY: 0.15,
    SeasonPhase.MIDDLE: 0.5,
    SeasonPhase.LATE: 0.85,
}


def classify_growth_stage(growth_factor: float) -> GrowthStage:
    """
    Classify a growth factor into a growth stage.

    Thresholds are fixed and there is no hysteresis: a stage moves backward
    whenever the factor drops below its threshold.

    Args:
        growth_factor: Value in [0, 1]

    Returns:
        SEEDLING below 0.2, VEGETATIVE below 0.6, REPRODUCTIVE below 0.9,
        MATURE otherwise
    """
    if growth_factor < SEEDLING_THRESHOLD:
        return GrowthStage.SEEDLING
    if growth_factor < VEGETATIVE_THRESHOLD:
        return GrowthStage.VEGETATIVE
    if growth_factor < REPRODUCTIVE_THRESHOLD:
        return GrowthStage.REPRODUCTIVE
    return GrowthStage.MATURE


def render_settings_for(weather_kind: WeatherKind) -> RenderSettings:
    """Return a copy of the render settings for a weather kind."""
    return RENDER_SETTINGS[WeatherKind(weather_kind)].model_copy()


def leading_run(samples: List[ClimateSample]) -> List[ClimateSample]:
    """
    Order observed samples by date and keep the run of consecutive days.

    A later record for an already seen date replaces the earlier one. The
    run ends at the first missing date; the climate model fills the rest.
    """
    by_date = {}
    for sample in samples:
        by_date[sample.date] = sample

    run = []
    for day in sorted(by_date):
        if run and day != run[-1].date + timedelta(days=1):
            logger.warning(f"Observed weather skips from {run[-1].date} to {day}, "
                           f"ignoring {len(by_date) - len(run)} later observations")
            break
        run.append(by_date[day])
    return run


def build_timeline(
    crop_type: str,
    latitude: float,
    longitude: float,
    start_date: date,
    horizon_days: int,
    climate_model: Optional[ClimateModel] = None,
    observations: Optional[Iterable[WeatherObservation]] = None,
) -> Timeline:
    """
    Build every day of a growth timeline.

    Observed weather, when given, fills the leading days in date order up to
    its first gap; the climate model generates the remaining ones, continuing
    from the day after the last observation used.

    Args:
        crop_type: Crop grown on the field
        latitude: Field latitude in degrees
        longitude: Field longitude in degrees
        start_date: Date of day 0
        horizon_days: Number of days (at least 1)
        climate_model: Weather generator (a fresh unseeded one by default)
        observations: Observed weather for the first days

    Returns:
        Timeline with ``horizon_days`` day records indexed from 0
    """
    horizon_days = max(1, int(horizon_days))
    climate_model = climate_model or ClimateModel()
    biome = select_biome(latitude, longitude)

    observed = leading_run(samples_from_observations(observations or [], biome))[:horizon_days]
    if observed:
        logger.info(f"Seeding timeline with {len(observed)} observed days")

    generated_start = observed[-1].date + timedelta(days=1) if observed else start_date
    generated = climate_model.generate_daily_samples(
        latitude, longitude, generated_start, horizon_days - len(observed)
    )

    days = []
    for index, sample in enumerate(observed + generated):
        days.append(TimelineDay(
            index=index,
            date=sample.date,
            temperature=sample.temperature,
            humidity=sample.humidity,
            weather_kind=sample.weather_kind,
            wind_speed=sample.wind_speed,
            biome=sample.biome,
            base_growth_factor=sample.growth_factor,
            growth_factor=sample.growth_factor,
            growth_stage=classify_growth_stage(sample.growth_factor),
            render_settings=render_settings_for(sample.weather_kind),
        ))

    timeline = Timeline(
        crop_type=crop_type,
        start_date=days[0].date,
        latitude=latitude,
        longitude=longitude,
        days=days,
    )
    logger.info(f"Built {crop_type} timeline of {len(days)} days starting {timeline.start_date}")
    return timeline


def season_phase(day_index: int, total_days: int) -> SeasonPhase:
    """
    Coarse phase of a day within the season.

    Args:
        day_index: Day to locate
        total_days: Length of the season

    Returns:
        EARLY before the first third, LATE after the second, MIDDLE otherwise
    """
    if total_days <= 1:
        return SeasonPhase.EARLY
    progress = day_index / (total_days - 1)
    early_end, middle_end = PHASE_BOUNDARIES
    if progress < early_end:
        return SeasonPhase.EARLY
    if progress < middle_end:
        return SeasonPhase.MIDDLE
    return SeasonPhase.LATE


def season_markers(total_days: int) -> dict[SeasonPhase, int]:
    """Day index to jump to for each season phase."""
    last = max(0, total_days - 1)
    return {phase: int(round(fraction * last)) for phase, fraction in PHASE_MARKERS.items()}
