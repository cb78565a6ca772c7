"""Douglas-Peucker simplification of shapes."""

import logging

from ..graph import Feed
from ..ops import project_shapes, simplify_indices
from ..types import TidyConfig, ProcessingStats

logger = logging.getLogger(__name__)


def minimize_shapes(feed: Feed, config: TidyConfig, stats: ProcessingStats) -> Feed:
    """Drop shape points that lie within tolerance of the simplified path.

    Each shape is simplified independently in the metric CRS. Kept points
    retain their sequence numbers and measurements.
    """
    logger.info(f"Minimizing shapes (tolerance={config.shape_simplify_tolerance}m)")

    points_before = sum(len(s.points) for s in feed.shapes.values())
    projected = project_shapes(feed.shapes.values(), config)

    for shape, xy in projected.items():
        keep = simplify_indices(xy, config.shape_simplify_tolerance)
        if len(keep) < len(shape.points):
            logger.debug(f"Shape {shape.id}: {len(shape.points)} → {len(keep)} points")
            shape.points = [shape.points[i] for i in keep]

    points_after = sum(len(s.points) for s in feed.shapes.values())
    stats.points_before_simplify += points_before
    stats.points_after_simplify += points_after

    logger.info(f"Simplified {points_before} → {points_after} shape points")
    return feed
