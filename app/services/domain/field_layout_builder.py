"""
Domain service: Field layout construction.

Turns a raw field outline into the layout used for the whole simulation:
- Boundary validation (default square / convex hull recovery)
- Scaling to the requested area, within the view's dimension bounds
- Plant placement on a crop-specific row grid, or scattered
"""
from typing import Optional, Sequence
from dataclasses import dataclass
import math
import logging

import numpy as np

from app.config import settings
from app.domain.crops import HECTARE_TO_SQUARE_METERS
from app.domain.models import FieldLayout, Point
from app.utils.field_geometry import (
    generate_grid_positions,
    generate_scattered_positions,
    polygon_area,
    scale_to_area,
)
from app.utils.geo_projection import project_boundary_to_field

logger = logging.getLogger(__name__)

LAYOUT_MODES = ("grid", "scatter")


@dataclass
class LayoutConfig:
    """Configuration for field layout construction."""

    min_dimension: float = 40.0
    """Smallest bounding-box extent of the scaled field, in meters"""

    max_dimension: float = 150.0
    """Largest bounding-box extent of the scaled field, in meters"""

    jitter_ratio: float = 0.1
    """Grid jitter as a fraction of plant spacing (capped at 0.1)"""

    scatter_count: int = 500
    """Number of plants placed in scatter mode"""


class FieldLayoutBuilder:
    """
    Domain service building a FieldLayout once per simulation.

    The builder is stateless apart from its configuration and random
    generator; layouts it returns are immutable.
    """

    def __init__(
        self,
        config: Optional[LayoutConfig] = None,
        seed: Optional[int] = None,
    ):
        """
        Initialize the builder.

        Args:
            config: Layout configuration (defaults from settings)
            seed: Seed for the jitter / scatter random generator
        """
        if config:
            self.config = config
        else:
            self.config = LayoutConfig(
                min_dimension=settings.field_min_dimension,
                max_dimension=settings.field_max_dimension,
                jitter_ratio=settings.grid_jitter_ratio,
                scatter_count=settings.max_rendered_plants,
            )
        self._rng = np.random.default_rng(seed)

    def build(
        self,
        polygon: Sequence[Sequence[float]],
        hectares: float,
        crop_type: str,
        density_percent: float,
        mode: str = "grid",
    ) -> FieldLayout:
        """
        Build the layout of a field.

        Args:
            polygon: Raw (x, z) outline; invalid outlines are recovered
            hectares: Target field size
            crop_type: Crop used for the spacing lookup
            density_percent: Planting density in percent
            mode: "grid" for crop rows, "scatter" for area-weighted random placement

        Returns:
            FieldLayout with the scaled outline and plant positions

        Raises:
            ValueError: If the mode is unknown
        """
        if mode not in LAYOUT_MODES:
            raise ValueError(f"Unknown layout mode '{mode}', expected one of {LAYOUT_MODES}")
        if not math.isfinite(hectares) or hectares <= 0:
            hectares = 1.0

        scaled = scale_to_area(
            polygon,
            hectares,
            min_dimension=self.config.min_dimension,
            max_dimension=self.config.max_dimension,
        )

        if mode == "scatter":
            positions = generate_scattered_positions(scaled, self.config.scatter_count, self._rng)
        else:
            positions = generate_grid_positions(
                scaled,
                crop_type,
                density_percent,
                rng=self._rng,
                jitter_ratio=self.config.jitter_ratio,
            )

        layout = FieldLayout(
            scaled_polygon=tuple(scaled),
            plant_positions=positions,
            crop_type=crop_type,
            density_percent=density_percent,
            hectares=hectares,
        )
        logger.info(f"Built {crop_type} field: {polygon_area(scaled):.0f} m², "
                    f"{layout.plant_count} plants ({mode})")
        return layout

    def build_from_boundary(
        self,
        boundary: Sequence[Point],
        hectares: Optional[float],
        crop_type: str,
        density_percent: float,
        mode: str = "grid",
    ) -> FieldLayout:
        """
        Build a layout from a geographic (latitude, longitude) boundary.

        When ``hectares`` is None, the field keeps the boundary's real area
        (still subject to the dimension clamp).
        """
        local = project_boundary_to_field(list(boundary))
        if hectares is None:
            hectares = polygon_area(local) / HECTARE_TO_SQUARE_METERS
        return self.build(local, hectares, crop_type, density_percent, mode=mode)
