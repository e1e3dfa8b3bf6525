"""
Domain service: Synthetic daily weather and the growth-factor model.

Weather is drawn from one of two seasonal models:
- a generic latitude-based model with four seasons and persistent
  weather runs
- a tropical savanna model (wet/dry seasons) used inside a fixed
  bounding box in central Brazil

Each day's growth factor is a pure function of its temperature, weather
kind, humidity and the biome model it came from.
"""
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, Iterator, Optional
import math
import logging

import numpy as np

from app.domain.models import Biome, ClimateSample, WeatherKind, WeatherObservation

logger = logging.getLogger(__name__)

# Tropical savanna bounding box (Mato Grosso region)
SAVANNA_LATITUDE_RANGE = (-18.0, -7.0)
SAVANNA_LONGITUDE_RANGE = (-62.0, -50.0)

WEATHER_KINDS = list(WeatherKind)


@dataclass(frozen=True)
class GrowthModelParameters:
    """Weights and optima of the growth-factor model for one biome."""
    optimal_temperature: float
    temperature_tolerance: float
    sunlight_scores: dict
    optimal_humidity: float
    saturation_humidity: float
    saturation_penalty: float
    temperature_weight: float
    sunlight_weight: float
    moisture_weight: float


GROWTH_MODELS = {
    # Generic crops: temperature matters most
    Biome.TEMPERATE: GrowthModelParameters(
        optimal_temperature=20.0,
        temperature_tolerance=20.0,
        sunlight_scores={
            WeatherKind.SUNNY: 1.0,
            WeatherKind.PARTLY_CLOUDY: 0.8,
            WeatherKind.CLOUDY: 0.6,
            WeatherKind.RAINY: 0.4,
            WeatherKind.STORMY: 0.3,
        },
        optimal_humidity=70.0,
        saturation_humidity=85.0,
        saturation_penalty=0.8,
        temperature_weight=0.4,
        sunlight_weight=0.3,
        moisture_weight=0.3,
    ),
    # Savanna soils drain fast and the dry season is harsh: moisture matters most
    Biome.TROPICAL_SAVANNA: GrowthModelParameters(
        optimal_temperature=28.0,
        temperature_tolerance=28.0,
        sunlight_scores={
            WeatherKind.SUNNY: 1.0,
            WeatherKind.PARTLY_CLOUDY: 0.9,
            WeatherKind.CLOUDY: 0.8,
            WeatherKind.RAINY: 0.6,
            WeatherKind.STORMY: 0.3,
        },
        optimal_humidity=70.0,
        saturation_humidity=90.0,
        saturation_penalty=0.7,
        temperature_weight=0.3,
        sunlight_weight=0.3,
        moisture_weight=0.4,
    ),
}


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    if not math.isfinite(value):
        return low
    return max(low, min(high, value))


def growth_factor(
    temperature: float,
    weather_kind: WeatherKind,
    humidity: float,
    biome: Biome = Biome.TEMPERATE,
) -> float:
    """
    Score how favourable a day is for crop development.

    Weighted sum of three sub-scores, each in [0, 1]:
    - temperature: 1 at the optimum, falling linearly with distance
    - sunlight: fixed per weather kind, sunny highest and stormy lowest
    - moisture: humidity relative to the optimum, penalised above the
      saturation threshold (fungal risk)

    Pure and deterministic: the timeline re-derives growth stages from it.

    Args:
        temperature: Air temperature in °C
        weather_kind: Weather category of the day
        humidity: Relative humidity in %
        biome: Which biome's weights to use

    Returns:
        Growth factor in [0, 1]
    """
    params = GROWTH_MODELS[Biome(biome)]
    kind = WeatherKind(weather_kind)

    temperature_score = _clamp(
        1 - abs(params.optimal_temperature - temperature) / params.temperature_tolerance
    )
    sunlight_score = params.sunlight_scores[kind]
    saturation = params.saturation_penalty if humidity > params.saturation_humidity else 1.0
    moisture_score = _clamp(min(1.0, humidity / params.optimal_humidity) * saturation)

    return _clamp(
        temperature_score * params.temperature_weight
        + sunlight_score * params.sunlight_weight
        + moisture_score * params.moisture_weight
    )


def select_biome(latitude: float, longitude: float) -> Biome:
    """Pick the tropical savanna model inside its bounding box, the generic model elsewhere."""
    lat_min, lat_max = SAVANNA_LATITUDE_RANGE
    lon_min, lon_max = SAVANNA_LONGITUDE_RANGE
    if lat_min <= latitude <= lat_max and lon_min <= longitude <= lon_max:
        return Biome.TROPICAL_SAVANNA
    return Biome.TEMPERATE


def map_weather_code_to_kind(code: int) -> WeatherKind:
    """
    Map an OpenWeatherMap condition code to a weather kind.

    Args:
        code: Condition id (2xx thunderstorm ... 80x clouds)

    Returns:
        Matching WeatherKind, partly cloudy for unknown codes
    """
    if 200 <= code < 300:
        return WeatherKind.STORMY
    if 300 <= code < 700:
        # drizzle, rain and snow
        return WeatherKind.RAINY
    if 700 <= code < 800:
        # fog, mist, haze
        return WeatherKind.CLOUDY
    if code == 800:
        return WeatherKind.SUNNY
    if 800 < code < 900:
        return WeatherKind.PARTLY_CLOUDY if code <= 802 else WeatherKind.CLOUDY
    return WeatherKind.PARTLY_CLOUDY


def make_sample(
    day: date,
    temperature: float,
    humidity: float,
    weather_kind: WeatherKind,
    wind_speed: float,
    biome: Biome,
) -> ClimateSample:
    """Build a sample whose growth factor is derived from its own fields."""
    return ClimateSample(
        date=day,
        temperature=temperature,
        humidity=humidity,
        weather_kind=weather_kind,
        wind_speed=wind_speed,
        biome=biome,
        growth_factor=growth_factor(temperature, weather_kind, humidity, biome),
    )


def samples_from_observations(
    observations: Iterable[WeatherObservation],
    biome: Biome = Biome.TEMPERATE,
) -> list[ClimateSample]:
    """
    Convert observed weather records into climate samples.

    Records without a weather kind fall back to their condition code, and
    to partly cloudy when neither is given.
    """
    samples = []
    for observation in observations:
        if observation.weather_kind is not None:
            kind = observation.weather_kind
        elif observation.weather_code is not None:
            kind = map_weather_code_to_kind(observation.weather_code)
        else:
            kind = WeatherKind.PARTLY_CLOUDY
        samples.append(make_sample(
            day=observation.date,
            temperature=round(observation.temperature, 1),
            humidity=round(_clamp(observation.humidity, 0.0, 100.0)),
            weather_kind=kind,
            wind_speed=round(max(0.0, observation.wind_speed), 1),
            biome=biome,
        ))
    return samples


class Season(str, Enum):
    SPRING = "spring"
    SUMMER = "summer"
    FALL = "fall"
    WINTER = "winter"


def temperate_season(month: int, latitude: float) -> Season:
    """
    Meteorological season for a calendar month (1-12).

    Seasons are flipped south of the equator.
    """
    if 3 <= month <= 5:
        northern = Season.SPRING
    elif 6 <= month <= 8:
        northern = Season.SUMMER
    elif 9 <= month <= 11:
        northern = Season.FALL
    else:
        northern = Season.WINTER

    if latitude > 0:
        return northern
    return {
        Season.SPRING: Season.FALL,
        Season.SUMMER: Season.WINTER,
        Season.FALL: Season.SPRING,
        Season.WINTER: Season.SUMMER,
    }[northern]


def is_savanna_wet_season(month: int) -> bool:
    """Wet season runs October through April."""
    return month >= 10 or month <= 4


# Generic model tables
TEMPERATE_SEASON_TEMPERATURE = {
    Season.SPRING: (3.0, 7.0),
    Season.SUMMER: (8.0, 12.0),
    Season.FALL: (0.0, 4.0),
    Season.WINTER: (-7.0, -3.0),
}
TEMPERATE_SEASON_HUMIDITY = {
    Season.SPRING: 62.0,
    Season.SUMMER: 55.0,
    Season.FALL: 60.0,
    Season.WINTER: 65.0,
}
# sunny, partly cloudy, cloudy, rainy, stormy
TEMPERATE_WEATHER_WEIGHTS = {
    Season.SPRING: [0.40, 0.18, 0.15, 0.22, 0.05],
    Season.SUMMER: [0.40, 0.30, 0.15, 0.10, 0.05],
    Season.FALL: [0.40, 0.30, 0.15, 0.10, 0.05],
    Season.WINTER: [0.20, 0.30, 0.35, 0.10, 0.05],
}
TEMPERATE_TEMPERATURE_OFFSET = {
    WeatherKind.SUNNY: 3.0,
    WeatherKind.PARTLY_CLOUDY: 1.0,
    WeatherKind.CLOUDY: -1.0,
    WeatherKind.RAINY: -3.0,
    WeatherKind.STORMY: -5.0,
}
TEMPERATE_HUMIDITY_OFFSET = {
    WeatherKind.SUNNY: -20.0,
    WeatherKind.PARTLY_CLOUDY: -10.0,
    WeatherKind.CLOUDY: 5.0,
    WeatherKind.RAINY: 20.0,
    WeatherKind.STORMY: 30.0,
}
NEW_PATTERN_PROBABILITY = 0.3
PATTERN_SHIFT_PROBABILITY = 0.2
PATTERN_SHIFT_KINDS = [
    WeatherKind.SUNNY,
    WeatherKind.PARTLY_CLOUDY,
    WeatherKind.CLOUDY,
    WeatherKind.RAINY,
]

# Tropical savanna tables
SAVANNA_WEATHER_WEIGHTS = {
    True: [0.0, 0.3, 0.3, 0.3, 0.1],   # wet season
    False: [0.6, 0.3, 0.1, 0.0, 0.0],  # dry season
}
SAVANNA_TEMPERATURE_OFFSET = {
    WeatherKind.SUNNY: 2.0,
    WeatherKind.PARTLY_CLOUDY: 0.0,
    WeatherKind.CLOUDY: -1.0,
    WeatherKind.RAINY: -2.0,
    WeatherKind.STORMY: -4.0,
}
SAVANNA_HUMIDITY_OFFSET = {
    WeatherKind.SUNNY: -10.0,
    WeatherKind.PARTLY_CLOUDY: 0.0,
    WeatherKind.CLOUDY: 5.0,
    WeatherKind.RAINY: 15.0,
    WeatherKind.STORMY: 20.0,
}

WIND_SCALE = {
    WeatherKind.SUNNY: 0.8,
    WeatherKind.PARTLY_CLOUDY: 1.0,
    WeatherKind.CLOUDY: 1.2,
    WeatherKind.RAINY: 1.5,
    WeatherKind.STORMY: 2.5,
}


class ClimateModel:
    """
    Generator of synthetic daily weather.

    Owns its random generator: two models built with the same seed produce
    the same samples for the same request.
    """

    def __init__(self, seed: Optional[int] = None):
        """
        Initialize the model.

        Args:
            seed: Seed for the random generator (None = fresh entropy)
        """
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def generate_daily_samples(
        self,
        latitude: float,
        longitude: float,
        start_date: date,
        days: int,
    ) -> list[ClimateSample]:
        """
        Produce one climate sample per day.

        Args:
            latitude: Field latitude in degrees
            longitude: Field longitude in degrees
            start_date: Date of the first sample
            days: Number of samples

        Returns:
            Ordered list of ClimateSample, one per day
        """
        if days <= 0:
            return []

        biome = select_biome(latitude, longitude)
        logger.info(f"Generating {days} days of {biome.value} weather "
                    f"for ({latitude:.3f}, {longitude:.3f}) from {start_date}")

        if biome is Biome.TROPICAL_SAVANNA:
            samples = list(self._savanna_days(start_date, days))
        else:
            samples = list(self._temperate_days(latitude, start_date, days))

        if logger.isEnabledFor(logging.DEBUG):
            counts = {kind.value: sum(s.weather_kind is kind for s in samples) for kind in WEATHER_KINDS}
            logger.debug(f"Weather distribution: {counts}")
        return samples

    def _pick(self, weights: list[float]) -> WeatherKind:
        index = self._rng.choice(len(WEATHER_KINDS), p=np.asarray(weights) / sum(weights))
        return WEATHER_KINDS[int(index)]

    def _temperate_days(self, latitude: float, start_date: date, days: int) -> Iterator[ClimateSample]:
        rng = self._rng
        previous_kind: Optional[WeatherKind] = None

        for i in range(days):
            day = start_date + timedelta(days=i)
            season = temperate_season(day.month, latitude)

            low, high = TEMPERATE_SEASON_TEMPERATURE[season]
            base_temperature = 20 - abs(latitude) * 0.4 + rng.uniform(low, high)

            # weather comes in runs rather than flipping every day
            if previous_kind is None or rng.random() < NEW_PATTERN_PROBABILITY:
                kind = self._pick(TEMPERATE_WEATHER_WEIGHTS[season])
            else:
                kind = previous_kind
                if rng.random() < PATTERN_SHIFT_PROBABILITY:
                    kind = PATTERN_SHIFT_KINDS[int(rng.integers(len(PATTERN_SHIFT_KINDS)))]
            previous_kind = kind

            temperature = base_temperature + TEMPERATE_TEMPERATURE_OFFSET[kind] + rng.uniform(-2, 2)
            humidity = (
                TEMPERATE_SEASON_HUMIDITY[season]
                + TEMPERATE_HUMIDITY_OFFSET[kind]
                + rng.uniform(-5, 5)
            )
            wind_speed = rng.uniform(2, 5) * WIND_SCALE[kind]

            yield make_sample(
                day=day,
                temperature=round(temperature, 1),
                humidity=round(_clamp(humidity, 10.0, 100.0)),
                weather_kind=kind,
                wind_speed=round(wind_speed, 1),
                biome=Biome.TEMPERATE,
            )

    def _savanna_days(self, start_date: date, days: int) -> Iterator[ClimateSample]:
        rng = self._rng

        for i in range(days):
            day = start_date + timedelta(days=i)
            wet = is_savanna_wet_season(day.month)

            # May-August is the cooler part of the year
            if 5 <= day.month <= 8:
                base_temperature = rng.uniform(25, 28)
            else:
                base_temperature = rng.uniform(28, 32)

            kind = self._pick(SAVANNA_WEATHER_WEIGHTS[wet])

            temperature = base_temperature + SAVANNA_TEMPERATURE_OFFSET[kind] + rng.uniform(-1, 1)
            base_humidity = rng.uniform(75, 95) if wet else rng.uniform(30, 50)
            humidity = base_humidity + SAVANNA_HUMIDITY_OFFSET[kind]
            # dry season winds are stronger
            base_wind = rng.uniform(2, 5) if wet else rng.uniform(4, 9)
            wind_speed = base_wind * WIND_SCALE[kind]

            yield make_sample(
                day=day,
                temperature=round(temperature, 1),
                humidity=round(_clamp(humidity, 20.0, 95.0)),
                weather_kind=kind,
                wind_speed=round(wind_speed, 1),
                biome=Biome.TROPICAL_SAVANNA,
            )
