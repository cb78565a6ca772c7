"""Merging of geometrically equivalent shapes."""

import logging
from typing import Dict, List, Optional, Set, Tuple

import numpy as np

from ..graph import Feed, Shape, Trip
from ..ops import cumulative_distances, make_chunks, open_pool, paths_are_similar, project_shapes, scan_chunks, shortest_id, worker_count
from ..types import TidyConfig, ProcessingStats

logger = logging.getLogger(__name__)


def _measure_scale(shape: Shape, xy: np.ndarray) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """Measured distances of a shape paired with their normalized position along its path."""
    if len(xy) < 2 or not shape.is_measured():
        return None
    along = cumulative_distances(xy)
    if along[-1] <= 0:
        return None
    return np.array([p.dist_traveled for p in shape.points], dtype=float), along / along[-1]


def rescale_stop_distances(trip: Trip, source: Shape, target: Shape, projected: Dict[Shape, np.ndarray]) -> None:
    """Carry stop time distances measured along source over to target's measurement.

    A distance is located on the source path as a fraction of its length and
    read back at the same fraction of the target path. Distances that cannot
    be translated because either shape is unmeasured are cleared.
    """
    if all(st.shape_dist_traveled is None for st in trip.stop_times):
        return
    empty = np.zeros((0, 2))
    src = _measure_scale(source, projected.get(source, empty))
    dst = _measure_scale(target, projected.get(target, empty))
    for st in trip.stop_times:
        if st.shape_dist_traveled is None:
            continue
        if src is None or dst is None:
            st.shape_dist_traveled = None
            continue
        fraction = np.interp(st.shape_dist_traveled, src[0], src[1])
        st.shape_dist_traveled = float(np.interp(fraction, dst[1], dst[0]))


def remove_shape_duplicates(feed: Feed, config: TidyConfig, stats: ProcessingStats) -> Feed:
    """Merge shapes that follow the same path within max_shape_eq_distance.

    For every shape not yet processed, the whole shape collection is scanned
    in parallel for equivalents. The group collapses onto the member with the
    shortest id; trips are repointed with their stop time distances rescaled onto the
    survivor's measurement, and the other members are deleted.
    """
    tolerance = config.max_shape_eq_distance
    logger.info(f"Removing redundant shapes (max distance={tolerance}m)")

    before = len(feed.shapes)
    shapes = list(feed.shapes.values())
    projected: Dict[Shape, np.ndarray] = project_shapes(shapes, config)
    empty = np.zeros((0, 2))

    trips: Dict[Shape, List[Trip]] = feed.trips_by_shape()
    processed: Set[Shape] = set()
    removed: Set[Shape] = set()
    chunks = make_chunks(shapes, worker_count(config))

    def similar(a: Shape, b: Shape) -> bool:
        return paths_are_similar(
            projected.get(a, empty), projected.get(b, empty), tolerance, config.shape_similarity_samples
        )

    with open_pool(config) as pool:
        for shape in shapes:
            if shape in processed:
                continue

            equivalents = scan_chunks(
                pool, chunks, lambda other: other is not shape and other not in removed and similar(shape, other)
            )
            processed.add(shape)
            if not equivalents:
                continue

            group = [shape] + equivalents
            canonical = shortest_id(group)
            for duplicate in group:
                if duplicate is canonical:
                    continue
                # Equivalence is not transitive; only merge what is close to the survivor
                if canonical is not shape and duplicate is not shape and not similar(canonical, duplicate):
                    continue
                for trip in trips.pop(duplicate, []):
                    rescale_stop_distances(trip, duplicate, canonical, projected)
                    trip.shape = canonical
                    trips.setdefault(canonical, []).append(trip)
                del feed.shapes[duplicate.id]
                removed.add(duplicate)
                processed.add(duplicate)
                logger.debug(f"Merged shape {duplicate.id} into {canonical.id}")
            processed.add(canonical)

    merged = before - len(feed.shapes)
    stats.shape_duplicates_removed += merged
    logger.info(f"Removed {merged} redundant shapes")
    return feed
