"""Shared operations for the feedtidy processors.

Metric projection of shape points, the chunked worker-pool scan used by the
duplicate removers, and the geometric primitives used on projected shapes.
"""

import logging
import os
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

import geopandas as gpd
import numpy as np
from pyproj import CRS
from shapely.geometry import LineString, Point

from .graph import Shape
from .types import TidyConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


def auto_select_crs(points: gpd.GeoSeries) -> str:
    """Automatically select an appropriate metric CRS based on dataset extent.

    Selection logic:
    - |latitude| ≥ 84°: Use Universal Polar Stereographic
    - Dataset diagonal ≤ 800km: Select UTM zone from centroid
    - Otherwise: Custom Lambert Azimuthal Equal-Area
    """
    if not points.crs.is_geographic:
        points = points.to_crs("EPSG:4326")

    bounds = points.total_bounds  # [minx, miny, maxx, maxy]
    center_lon = (bounds[0] + bounds[2]) / 2
    center_lat = (bounds[1] + bounds[3]) / 2

    # Compute approximate diagonal in meters using great circle distance
    from geopy.distance import great_circle
    diagonal_km = great_circle(
        (bounds[1], bounds[0]),  # SW corner
        (bounds[3], bounds[2])   # NE corner
    ).kilometers

    if abs(center_lat) >= 84:
        return "EPSG:5041" if center_lat > 0 else "EPSG:5042"

    if diagonal_km <= 800:
        utm_zone = min(int((center_lon + 180) / 6) + 1, 60)
        epsg_code = (32600 if center_lat >= 0 else 32700) + utm_zone
        return f"EPSG:{epsg_code}"

    return (
        f"+proj=laea +lat_0={center_lat:.6f} +lon_0={center_lon:.6f} "
        f"+x_0=0 +y_0=0 +ellps=WGS84 +datum=WGS84 +units=m +no_defs"
    )


def project_shapes(shapes: Iterable[Shape], config: TidyConfig) -> Dict[Shape, np.ndarray]:
    """Project every shape's points into a metric CRS.

    Returns an (n, 2) array of x/y meters per shape, rows in point order.
    All shapes share one CRS so distances between shapes are comparable.
    """
    shapes = [s for s in shapes if s.points]
    if not shapes:
        return {}

    lons = np.array([p.lon for s in shapes for p in s.points], dtype=float)
    lats = np.array([p.lat for s in shapes for p in s.points], dtype=float)
    points = gpd.GeoSeries(gpd.points_from_xy(lons, lats), crs="EPSG:4326")

    if config.metric_crs == "auto":
        target_crs = auto_select_crs(points)
        logger.debug(f"Auto-selected metric CRS: {target_crs}")
    else:
        target_crs = config.metric_crs
        if not CRS.from_user_input(target_crs).is_projected:
            raise ValueError(f"metric_crs must be a projected CRS, got: {target_crs}")

    projected = points.to_crs(target_crs)
    xy = np.column_stack([projected.x.to_numpy(), projected.y.to_numpy()])

    result = {}
    offset = 0
    for shape in shapes:
        n = len(shape.points)
        result[shape] = xy[offset:offset + n]
        offset += n
    return result


def cumulative_distances(xy: np.ndarray) -> np.ndarray:
    """Cumulative straight-line distance along a projected point sequence."""
    if len(xy) == 0:
        return np.zeros(0)
    steps = np.hypot(np.diff(xy[:, 0]), np.diff(xy[:, 1]))
    return np.concatenate([[0.0], np.cumsum(steps)])


def simplify_indices(xy: np.ndarray, tolerance: float) -> List[int]:
    """Indices of the points kept by Douglas-Peucker simplification.

    Shapely's non topology-preserving simplify is a plain Douglas-Peucker
    pass; its output vertices are a subsequence of the input, which we map
    back to positions so point attributes survive. First and last index are
    always kept.
    """
    n = len(xy)
    if n <= 2:
        return list(range(n))

    simplified = LineString(xy).simplify(tolerance, preserve_topology=False)
    if simplified.is_empty:
        return list(range(n))
    coords = np.asarray(simplified.coords)

    keep = [0]
    cursor = 1
    for x, y in coords[1:-1]:
        while cursor < n - 1 and not (xy[cursor, 0] == x and xy[cursor, 1] == y):
            cursor += 1
        if cursor >= n - 1:
            break
        keep.append(cursor)
        cursor += 1
    keep.append(n - 1)
    return keep


def max_deviation(xy: np.ndarray, keep: Sequence[int]) -> float:
    """Largest distance of a dropped point from its simplified chord."""
    worst = 0.0
    for a, b in zip(keep, keep[1:]):
        if b - a < 2:
            continue
        chord = LineString([xy[a], xy[b]]) if not np.array_equal(xy[a], xy[b]) else None
        for i in range(a + 1, b):
            if chord is None:
                d = float(np.hypot(*(xy[i] - xy[a])))
            else:
                d = Point(xy[i]).distance(chord)
            worst = max(worst, d)
    return worst


def paths_are_similar(xy1: np.ndarray, xy2: np.ndarray, tolerance: float, max_samples: int = 100) -> bool:
    """Check if two projected paths follow the same course within tolerance.

    Both paths are sampled at identical normalized positions along their
    length; every sampled pair must be within tolerance, and so must the
    discrete Hausdorff distance of their vertices.
    """
    if len(xy1) == 0 or len(xy2) == 0:
        return len(xy1) == len(xy2)

    if len(xy1) < 2 or len(xy2) < 2:
        # Degenerate shapes: compare every point against every other
        diffs = xy1[:, None, :] - xy2[None, :, :]
        return bool(np.all(np.hypot(diffs[..., 0], diffs[..., 1]) <= tolerance))

    geom1 = LineString(xy1)
    geom2 = LineString(xy2)

    # Quick checks first
    if abs(geom1.length - geom2.length) > tolerance * 2:
        return False

    shortest = min(geom1.length, geom2.length)
    if tolerance > 0:
        num_samples = min(max_samples, max(3, int(shortest / tolerance) + 1))
    else:
        num_samples = max_samples

    for i in range(num_samples):
        t = i / (num_samples - 1)
        point1 = geom1.interpolate(t, normalized=True)
        point2 = geom2.interpolate(t, normalized=True)
        if point1.distance(point2) > tolerance:
            return False

    return geom1.hausdorff_distance(geom2) <= tolerance


def worker_count(config: TidyConfig) -> int:
    return config.n_workers or os.cpu_count() or 1


def make_chunks(items: Sequence[T], num_chunks: int) -> List[List[T]]:
    """Split items into at most num_chunks contiguous, disjoint slices."""
    if not items:
        return []
    size = (len(items) + num_chunks - 1) // num_chunks
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def scan_chunks(
    executor: Executor,
    chunks: Sequence[Sequence[T]],
    predicate: Callable[[T], bool],
) -> List[T]:
    """Run predicate over every chunk concurrently and collect the matches.

    Each task fills only its own result list; lists are concatenated in chunk
    order once all tasks have finished.
    """

    def scan(chunk: Sequence[T]) -> List[T]:
        return [item for item in chunk if predicate(item)]

    futures = [executor.submit(scan, chunk) for chunk in chunks]
    results: List[T] = []
    for future in futures:
        results.extend(future.result())
    return results


def open_pool(config: TidyConfig) -> ThreadPoolExecutor:
    return ThreadPoolExecutor(max_workers=worker_count(config), thread_name_prefix="feedtidy")


def shortest_id(entities: Iterable[T], key: Optional[Callable[[T], str]] = None) -> T:
    """Entity with the shortest identifier; first one wins ties."""
    key = key or (lambda e: e.id)
    best = None
    for entity in entities:
        if best is None or len(key(entity)) < len(key(best)):
            best = entity
    return best
