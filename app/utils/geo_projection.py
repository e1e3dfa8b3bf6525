"""
Geospatial projection utilities for turning farm boundaries into field polygons.
"""
from typing import Tuple, List
import logging

from pyproj import Transformer

from app.utils.field_geometry import DEFAULT_SQUARE

logger = logging.getLogger(__name__)


def get_utm_zone(longitude: float) -> int:
    """
    Calculate the UTM zone number from longitude.

    Args:
        longitude: Longitude in degrees

    Returns:
        UTM zone number (1-60)
    """
    return min(60, int((longitude + 180) / 6) + 1)


def get_utm_crs(longitude: float, latitude: float) -> str:
    """
    Get the appropriate UTM CRS (Coordinate Reference System) for a location.

    Args:
        longitude: Longitude in degrees
        latitude: Latitude in degrees

    Returns:
        EPSG code for the UTM zone
    """
    zone = get_utm_zone(longitude)
    # Northern hemisphere: EPSG:326XX, Southern hemisphere: EPSG:327XX
    hemisphere = "6" if latitude >= 0 else "7"
    return f"EPSG:32{hemisphere}{zone:02d}"


def project_to_meters(
    coordinates: List[Tuple[float, float]]
) -> List[Tuple[float, float]]:
    """
    Project lat/lon coordinates to a planar coordinate system (UTM) in meters.

    Args:
        coordinates: List of (latitude, longitude) tuples in degrees

    Returns:
        List of (easting, northing) coordinates in meters
    """
    if not coordinates:
        raise ValueError("Coordinates list cannot be empty")

    # Use the first coordinate to determine the UTM zone
    lat, lon = coordinates[0]
    utm_crs = get_utm_crs(lon, lat)

    transformer = Transformer.from_crs(
        "EPSG:4326",  # WGS84 (lat/lon)
        utm_crs,
        always_xy=True  # Ensure (lon, lat) -> (x, y) order
    )

    return [transformer.transform(lon, lat) for lat, lon in coordinates]


def project_boundary_to_field(
    boundary: List[Tuple[float, float]]
) -> List[Tuple[float, float]]:
    """
    Convert a geographic farm boundary into a local field polygon.

    The result is in meters, centred on the mean of the projected vertices,
    with x pointing east and z pointing south (the renderer's ground plane).
    Boundaries with fewer than 3 points cannot describe a field and yield
    the default square.

    Args:
        boundary: List of (latitude, longitude) tuples in degrees

    Returns:
        List of (x, z) coordinates in meters
    """
    if len(boundary) < 3:
        logger.warning(f"Boundary has {len(boundary)} points, using default square")
        return list(DEFAULT_SQUARE)

    projected = project_to_meters(boundary)
    center_x = sum(x for x, _ in projected) / len(projected)
    center_y = sum(y for _, y in projected) / len(projected)

    field = [(x - center_x, -(y - center_y)) for x, y in projected]
    logger.debug(f"Projected {len(field)} boundary points around "
                 f"({center_x:.1f}, {center_y:.1f}) in {get_utm_crs(boundary[0][1], boundary[0][0])}")
    return field
