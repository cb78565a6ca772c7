"""Filling of missing distance-traveled values on shape points."""

import logging
from typing import List, Optional

import numpy as np

from ..graph import Feed, Shape
from ..ops import cumulative_distances, project_shapes
from ..types import TidyConfig, ProcessingStats

logger = logging.getLogger(__name__)


def _measure_ratio(measures: List[Optional[float]], dists: np.ndarray) -> float:
    """Average measurement units per projected meter over the measured points."""
    known = [i for i, m in enumerate(measures) if m is not None]
    if len(known) < 2:
        return 1.0
    first, last = known[0], known[-1]
    span = dists[last] - dists[first]
    if span <= 0:
        return 1.0
    ratio = (measures[last] - measures[first]) / span
    return ratio if ratio > 0 else 1.0


def remeasure_points(measures: List[Optional[float]], dists: np.ndarray) -> List[float]:
    """Fill measurement holes by linear interpolation along geometric distance.

    Holes between two measured points are interpolated between them; holes at
    either end are extrapolated from the nearest measured point using the
    shape's average measure per meter. Without any measured point the geometric
    distance itself is the measure.
    """
    known = [i for i, m in enumerate(measures) if m is not None]
    if not known:
        return [float(d) for d in dists]

    ratio = _measure_ratio(measures, dists)
    result = [float(m) if m is not None else 0.0 for m in measures]

    # Leading and trailing holes
    first, last = known[0], known[-1]
    for i in range(first):
        result[i] = max(0.0, measures[first] - (dists[first] - dists[i]) * ratio)
    for i in range(last + 1, len(measures)):
        result[i] = measures[last] + (dists[i] - dists[last]) * ratio

    # Interior holes
    for a, b in zip(known, known[1:]):
        if b - a < 2:
            continue
        span = dists[b] - dists[a]
        for i in range(a + 1, b):
            if span > 0:
                frac = (dists[i] - dists[a]) / span
            else:
                frac = (i - a) / (b - a)
            result[i] = measures[a] + (measures[b] - measures[a]) * frac

    return result


def remeasure_shapes(feed: Feed, config: TidyConfig, stats: ProcessingStats) -> Feed:
    """Give every shape point a distance-traveled value."""
    logger.info("Remeasuring shapes")

    incomplete: List[Shape] = [s for s in feed.shapes.values() if s.points and not s.is_measured()]
    if not incomplete:
        logger.info("All shapes are fully measured")
        return feed

    projected = project_shapes(incomplete, config)
    points_filled = 0

    for shape in incomplete:
        measures = [p.dist_traveled for p in shape.points]
        filled = remeasure_points(measures, cumulative_distances(projected[shape]))
        for point, old, new in zip(shape.points, measures, filled):
            if old is None:
                point.dist_traveled = new
                points_filled += 1

    stats.shapes_remeasured += len(incomplete)
    stats.points_remeasured += points_filled
    logger.info(f"Remeasured {len(incomplete)} shapes ({points_filled} points filled)")
    return feed
