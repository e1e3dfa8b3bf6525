"""
Field geometry helper functions.

Provides utilities for:
- Polygon validation, area and bounds
- Scaling a field outline to a target area
- Triangulation and random sampling inside triangles
- Point-in-polygon tests (ray casting, even-odd rule)
- Grid-based plant placement
"""
from dataclasses import dataclass
from typing import Optional, Sequence
import math
import logging

import numpy as np
from shapely.geometry import Polygon as ShapelyPolygon

from app.domain.crops import HECTARE_TO_SQUARE_METERS, SCALE_FACTOR, crop_spacing
from app.domain.models import Point

logger = logging.getLogger(__name__)

DEFAULT_SQUARE: list[Point] = [(-30.0, -30.0), (-30.0, 30.0), (30.0, 30.0), (30.0, -30.0)]
MIN_DIMENSION = 40.0
MAX_DIMENSION = 150.0
MAX_JITTER_RATIO = 0.1
AREA_EPSILON = 1e-9

Triangle = tuple[Point, Point, Point]


@dataclass(frozen=True)
class PolygonBounds:
    """Axis-aligned bounding box of a polygon."""
    min_x: float
    max_x: float
    min_z: float
    max_z: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_z - self.min_z

    @property
    def center(self) -> Point:
        return ((self.min_x + self.max_x) / 2, (self.min_z + self.max_z) / 2)


def _signed_area(polygon: Sequence[Point]) -> float:
    """Signed shoelace area; positive for counter-clockwise vertex order."""
    pts = np.asarray(polygon, dtype=float)
    x, z = pts[:, 0], pts[:, 1]
    return float(np.dot(x, np.roll(z, -1)) - np.dot(np.roll(x, -1), z)) / 2


def polygon_area(polygon: Sequence[Point]) -> float:
    """
    Calculate the area of a polygon with the shoelace formula.

    Args:
        polygon: List of (x, z) vertices

    Returns:
        Absolute area in square scene units (0 for fewer than 3 vertices)
    """
    if len(polygon) < 3:
        return 0.0
    return abs(_signed_area(polygon))


def polygon_centroid(polygon: Sequence[Point]) -> Point:
    """
    Mean of the polygon's vertices.

    This is the vertex centroid, not the area centroid; scaling about it
    leaves it unchanged.
    """
    pts = np.asarray(polygon, dtype=float)
    cx, cz = pts.mean(axis=0)
    return (float(cx), float(cz))


def polygon_bounds(polygon: Sequence[Point]) -> PolygonBounds:
    pts = np.asarray(polygon, dtype=float)
    return PolygonBounds(
        min_x=float(pts[:, 0].min()),
        max_x=float(pts[:, 0].max()),
        min_z=float(pts[:, 1].min()),
        max_z=float(pts[:, 1].max()),
    )


def normalize_polygon(polygon: Sequence[Sequence[float]]) -> list[Point]:
    """
    Turn raw boundary input into a usable field polygon.

    Invalid input is recovered locally, never raised:
    - a repeated closing vertex is dropped
    - fewer than 3 vertices, non-finite coordinates or zero area yield the
      default square
    - a self-intersecting boundary is replaced by its convex hull

    Args:
        polygon: Sequence of (x, z) pairs

    Returns:
        List of (x, z) tuples with at least 3 vertices and non-zero area
    """
    points = [(float(p[0]), float(p[1])) for p in polygon]

    if len(points) > 1 and points[0] == points[-1]:
        points = points[:-1]

    if len(points) < 3:
        logger.warning(f"Polygon has {len(points)} vertices (need >= 3), using default square")
        return list(DEFAULT_SQUARE)

    if not all(math.isfinite(x) and math.isfinite(z) for x, z in points):
        logger.warning("Polygon has non-finite coordinates, using default square")
        return list(DEFAULT_SQUARE)

    if polygon_area(points) <= AREA_EPSILON:
        logger.warning("Polygon is degenerate (zero area), using default square")
        return list(DEFAULT_SQUARE)

    shape = ShapelyPolygon(points)
    if not shape.is_valid:
        hull = shape.convex_hull
        logger.warning(f"Polygon is self-intersecting, using its convex hull "
                       f"({len(points)} -> {len(hull.exterior.coords) - 1} vertices)")
        points = [(float(x), float(z)) for x, z in list(hull.exterior.coords)[:-1]]

    return points


def _scale_about(polygon: Sequence[Point], center: Point, factor: float) -> list[Point]:
    cx, cz = center
    return [(cx + (x - cx) * factor, cz + (z - cz) * factor) for x, z in polygon]


def scale_to_area(
    polygon: Sequence[Sequence[float]],
    target_hectares: float,
    min_dimension: float = MIN_DIMENSION,
    max_dimension: float = MAX_DIMENSION,
) -> list[Point]:
    """
    Scale a polygon so that it covers ``target_hectares``.

    The polygon is first scaled uniformly about its vertex centroid to the
    target area. Its bounding box is then clamped into
    [min_dimension, max_dimension] by a second uniform scale about the same
    centroid. The clamp keeps the field inside the rendered view and bounds
    the plant count; it is not a physical constraint, so fields larger than
    the max dimension (or smaller than the min dimension) no longer match the
    requested area.

    Args:
        polygon: Raw (x, z) vertices
        target_hectares: Desired field size in hectares
        min_dimension: Smallest allowed bounding-box extent
        max_dimension: Largest allowed bounding-box extent

    Returns:
        Scaled list of (x, z) vertices
    """
    points = normalize_polygon(polygon)

    if not math.isfinite(target_hectares) or target_hectares <= 0:
        logger.warning(f"Invalid target area {target_hectares} ha, using 1 ha")
        target_hectares = 1.0

    target_area = target_hectares * HECTARE_TO_SQUARE_METERS * SCALE_FACTOR * SCALE_FACTOR
    current_area = polygon_area(points)
    scale_factor = math.sqrt(target_area / current_area)

    centroid = polygon_centroid(points)
    scaled = _scale_about(points, centroid, scale_factor)

    bounds = polygon_bounds(scaled)
    width, height = bounds.width, bounds.height
    logger.debug(f"Scaled polygon by {scale_factor:.3f}: {width:.1f} x {height:.1f}")

    if width > max_dimension or height > max_dimension:
        clamp_factor = min(max_dimension / width, max_dimension / height)
    elif width < min_dimension or height < min_dimension:
        clamp_factor = max(min_dimension / width, min_dimension / height)
        # never push the longer side past the upper bound
        clamp_factor = min(clamp_factor, max_dimension / max(width, height))
    else:
        return scaled

    logger.info(f"Field extent {width:.1f} x {height:.1f} outside "
                f"[{min_dimension}, {max_dimension}], rescaling by {clamp_factor:.3f}")
    return _scale_about(scaled, centroid, clamp_factor)


def _cross(a: Point, b: Point, c: Point) -> float:
    return (b[0] - a[0]) * (c[1] - b[1]) - (b[1] - a[1]) * (c[0] - b[0])


def is_convex(polygon: Sequence[Point]) -> bool:
    """
    Check whether every turn along the boundary goes the same way.

    Collinear vertices are ignored.
    """
    n = len(polygon)
    if n < 3:
        return False
    sign = 0
    for i in range(n):
        turn = _cross(polygon[i - 2], polygon[i - 1], polygon[i])
        if abs(turn) <= AREA_EPSILON:
            continue
        current = 1 if turn > 0 else -1
        if sign == 0:
            sign = current
        elif current != sign:
            return False
    return sign != 0


def _point_in_triangle(p: Point, a: Point, b: Point, c: Point) -> bool:
    d1 = (b[0] - a[0]) * (p[1] - a[1]) - (b[1] - a[1]) * (p[0] - a[0])
    d2 = (c[0] - b[0]) * (p[1] - b[1]) - (c[1] - b[1]) * (p[0] - b[0])
    d3 = (a[0] - c[0]) * (p[1] - c[1]) - (a[1] - c[1]) * (p[0] - c[0])
    has_neg = d1 < 0 or d2 < 0 or d3 < 0
    has_pos = d1 > 0 or d2 > 0 or d3 > 0
    return not (has_neg and has_pos)


def _ear_clip(polygon: Sequence[Point]) -> list[Triangle]:
    """Ear-clipping triangulation for simple (possibly concave) polygons."""
    points = list(polygon)
    remaining = list(range(len(points)))
    if _signed_area(points) < 0:
        remaining.reverse()

    triangles: list[Triangle] = []
    while len(remaining) > 3:
        n = len(remaining)
        for k in range(n):
            i_prev, i_cur, i_next = remaining[k - 1], remaining[k], remaining[(k + 1) % n]
            a, b, c = points[i_prev], points[i_cur], points[i_next]
            if _cross(a, b, c) <= 0:
                continue
            others = (points[j] for j in remaining if j not in (i_prev, i_cur, i_next))
            if any(_point_in_triangle(p, a, b, c) for p in others):
                continue
            triangles.append((a, b, c))
            del remaining[k]
            break
        else:
            logger.warning(f"Ear clipping stalled with {n} vertices left, fanning the rest")
            anchor = points[remaining[0]]
            for k in range(1, n - 1):
                triangles.append((anchor, points[remaining[k]], points[remaining[k + 1]]))
            return triangles

    triangles.append(tuple(points[i] for i in remaining))
    return triangles


def triangulate(polygon: Sequence[Point]) -> list[Triangle]:
    """
    Split a polygon into triangles.

    Convex polygons use a fan from vertex 0, i.e. (v0, vi, vi+1). Concave
    polygons would produce triangles outside the boundary with a fan, so they
    go through ear clipping instead.

    Args:
        polygon: List of (x, z) vertices

    Returns:
        List of triangles, each a tuple of three (x, z) vertices
    """
    points = [(float(x), float(z)) for x, z in polygon]
    if len(points) < 3:
        return []

    if is_convex(points):
        return [(points[0], points[i], points[i + 1]) for i in range(1, len(points) - 1)]

    triangles = _ear_clip(points)
    logger.debug(f"Ear-clipped concave polygon into {len(triangles)} triangles")
    return triangles


def random_point_in_triangle(triangle: Triangle, rng: np.random.Generator) -> Point:
    """
    Draw a uniformly distributed point inside a triangle.

    Uses barycentric coordinates, folding samples that land in the mirrored
    half of the unit square back into the triangle.
    """
    a, b = rng.random(), rng.random()
    if a + b > 1:
        a, b = 1 - a, 1 - b
    c = 1 - a - b
    (x0, z0), (x1, z1), (x2, z2) = triangle
    return (a * x0 + b * x1 + c * x2, a * z0 + b * z1 + c * z2)


def point_in_polygon(point: Point, polygon: Sequence[Point]) -> bool:
    """
    Check if a point is inside a polygon.

    Casts a ray towards +x and counts edge crossings (even-odd rule).

    Args:
        point: (x, z) coordinate tuple
        polygon: List of (x, z) coordinates defining the polygon

    Returns:
        True if point is inside polygon, False otherwise
    """
    x, z = point
    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, zi = polygon[i]
        xj, zj = polygon[j]
        if (zi > z) != (zj > z) and x < (xj - xi) * (z - zi) / (zj - zi) + xi:
            inside = not inside
        j = i
    return inside


def points_in_polygon(
    xs: np.ndarray,
    zs: np.ndarray,
    polygon: Sequence[Point],
) -> np.ndarray:
    """
    Vectorised form of :func:`point_in_polygon`.

    Args:
        xs: Array of x coordinates
        zs: Array of z coordinates (same shape as xs)
        polygon: List of (x, z) coordinates defining the polygon

    Returns:
        Boolean array, True where the point is inside
    """
    xs = np.asarray(xs, dtype=float)
    zs = np.asarray(zs, dtype=float)
    inside = np.zeros(xs.shape, dtype=bool)

    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, zi = polygon[i]
        xj, zj = polygon[j]
        j = i
        if zi == zj:
            continue  # horizontal edges are never crossed
        crosses = (zi > zs) != (zj > zs)
        x_intersect = (xj - xi) * (zs - zi) / (zj - zi) + xi
        inside ^= crosses & (xs < x_intersect)
    return inside


def generate_grid_positions(
    polygon: Sequence[Point],
    crop_type: str,
    density_percent: float,
    rng: Optional[np.random.Generator] = None,
    jitter_ratio: float = MAX_JITTER_RATIO,
) -> np.ndarray:
    """
    Lay out plants on a row grid clipped to the field polygon.

    Row and in-row spacing come from the crop table and are divided by
    sqrt(density / 100), so lower density means wider spacing. Each grid
    point is jittered by up to ``jitter_ratio`` of its spacing (capped at 10%)
    and kept only if it passes :func:`point_in_polygon`.

    Args:
        polygon: Field outline as (x, z) vertices
        crop_type: Crop name used for the spacing lookup
        density_percent: Planting density, clamped to [1, 100]
        rng: Random generator for the jitter
        jitter_ratio: Jitter as a fraction of spacing

    Returns:
        Array of shape (n, 2) with (x, z) positions in row order
    """
    if len(polygon) < 3:
        return np.empty((0, 2))

    rng = rng or np.random.default_rng()
    if not math.isfinite(density_percent):
        density_percent = 100.0
    density = min(100.0, max(1.0, density_percent))
    jitter = min(MAX_JITTER_RATIO, max(0.0, jitter_ratio))

    row_spacing, plant_spacing = crop_spacing(crop_type)
    density_factor = math.sqrt(density / 100)
    scaled_row_spacing = row_spacing / density_factor * SCALE_FACTOR
    scaled_plant_spacing = plant_spacing / density_factor * SCALE_FACTOR

    bounds = polygon_bounds(polygon)
    num_rows = math.ceil(bounds.height / scaled_row_spacing) + 2
    num_cols = math.ceil(bounds.width / scaled_plant_spacing) + 2

    # one spacing of padding on each axis
    start_x = bounds.min_x - scaled_plant_spacing
    start_z = bounds.min_z - scaled_row_spacing

    logger.debug(f"Grid setup: {num_rows} rows x {num_cols} plants, "
                 f"row spacing {scaled_row_spacing:.3f}, plant spacing {scaled_plant_spacing:.3f}")

    base_xs = start_x + np.arange(num_cols) * scaled_plant_spacing
    rows = []
    for row in range(num_rows):
        z = start_z + row * scaled_row_spacing
        xs = base_xs + rng.uniform(-1, 1, num_cols) * scaled_plant_spacing * jitter
        zs = z + rng.uniform(-1, 1, num_cols) * scaled_row_spacing * jitter
        mask = points_in_polygon(xs, zs, polygon)
        if mask.any():
            rows.append(np.column_stack((xs[mask], zs[mask])))

    if rows:
        positions = np.vstack(rows)
    else:
        positions = _fallback_position(polygon)

    logger.info(f"Generated {len(positions)} {crop_type} positions at {density:.0f}% density")
    return positions


def _fallback_position(polygon: Sequence[Point]) -> np.ndarray:
    """Centroid of the largest triangle, for fields narrower than one spacing."""
    triangles = triangulate(polygon)
    if not triangles:
        return np.empty((0, 2))
    largest = max(triangles, key=polygon_area)
    center = polygon_centroid(largest)
    if not point_in_polygon(center, polygon):
        return np.empty((0, 2))
    logger.debug("No grid point inside field, placing a single plant at the largest triangle")
    return np.array([center])


def generate_scattered_positions(
    polygon: Sequence[Point],
    count: int,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Scatter plants uniformly over the field instead of on a grid.

    Triangles are picked with probability proportional to their area, then a
    point is drawn inside the chosen triangle.

    Args:
        polygon: Field outline as (x, z) vertices
        count: Number of positions to draw
        rng: Random generator

    Returns:
        Array of shape (n, 2); points failing the containment test are dropped
    """
    triangles = triangulate(polygon)
    if not triangles or count <= 0:
        return np.empty((0, 2))

    rng = rng or np.random.default_rng()
    areas = np.array([polygon_area(t) for t in triangles])
    picks = rng.choice(len(triangles), size=count, p=areas / areas.sum())

    points = [random_point_in_triangle(triangles[i], rng) for i in picks]
    kept = [p for p in points if point_in_polygon(p, polygon)]
    return np.array(kept) if kept else np.empty((0, 2))
