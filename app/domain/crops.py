"""
Crop constants for field layout.

Typical agronomic spacings, used to lay out a planting grid. All distances
are in meters; one meter is one scene unit.
"""
from enum import Enum


class CropType(str, Enum):
    """Crops the simulator knows how to lay out."""
    CORN = "corn"
    WHEAT = "wheat"
    SOYBEAN = "soybean"
    COTTON = "cotton"
    RICE = "rice"


HECTARE_TO_SQUARE_METERS = 10_000.0
SCALE_FACTOR = 1.0

# Distance between rows
PLANT_ROW_SPACING = {
    CropType.CORN: 0.76,
    CropType.WHEAT: 0.15,
    CropType.SOYBEAN: 0.5,
    CropType.COTTON: 1.0,
    CropType.RICE: 0.3,
}

# Distance between plants within a row
PLANT_SPACING_IN_ROW = {
    CropType.CORN: 0.16,
    CropType.WHEAT: 0.025,
    CropType.SOYBEAN: 0.05,
    CropType.COTTON: 0.1,
    CropType.RICE: 0.15,
}

PLANTS_PER_HECTARE = {
    CropType.CORN: 80_000,
    CropType.WHEAT: 2_500_000,
    CropType.SOYBEAN: 400_000,
    CropType.COTTON: 100_000,
    CropType.RICE: 200_000,
}

DEFAULT_ROW_SPACING = 0.5
DEFAULT_SPACING_IN_ROW = 0.1


def crop_spacing(crop_type: str) -> tuple[float, float]:
    """
    Look up (row spacing, in-row spacing) for a crop.

    Unknown crops get the generic 0.5 m x 0.1 m layout.
    """
    try:
        crop = CropType(crop_type)
    except ValueError:
        return DEFAULT_ROW_SPACING, DEFAULT_SPACING_IN_ROW
    return PLANT_ROW_SPACING[crop], PLANT_SPACING_IN_ROW[crop]


def estimated_plant_population(crop_type: str, hectares: float, density_percent: float) -> int:
    """
    Real-world plant count for a field, as opposed to the rendered grid.

    Returns 0 for crops without a reference density.
    """
    try:
        crop = CropType(crop_type)
    except ValueError:
        return 0
    return int(round(PLANTS_PER_HECTARE[crop] * max(hectares, 0.0) * density_percent / 100))
