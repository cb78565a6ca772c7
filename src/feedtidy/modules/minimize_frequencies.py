"""Compression of explicit trips into frequency blocks."""

import logging
from collections import defaultdict
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

from ..graph import Feed, Frequency, Trip
from ..types import TidyConfig, ProcessingStats

logger = logging.getLogger(__name__)


def _offset(value: Optional[int], start: int) -> Optional[int]:
    return None if value is None else value - start


def pattern_key(trip: Trip) -> Optional[Hashable]:
    """Everything that must match for two trips to be interchangeable but for their start.

    Trips that already use frequencies, or that have no timed first stop,
    are not candidates.
    """
    start = trip.start_time()
    if trip.frequencies or start is None:
        return None
    stops = tuple(
        (
            st.stop,
            _offset(st.arrival_time, start),
            _offset(st.departure_time, start),
            st.headsign,
            st.pickup_type,
            st.drop_off_type,
            st.shape_dist_traveled,
        )
        for st in trip.stop_times
    )
    return (
        trip.route,
        trip.service,
        trip.shape,
        trip.headsign,
        trip.short_name,
        trip.direction_id,
        trip.block_id,
        trip.wheelchair_accessible,
        trip.bikes_allowed,
        stops,
    )


def _extend(starts: Sequence[int], i: int, j: int, tolerance: int) -> List[int]:
    """Grow the progression starting with positions i and j as far as it goes."""
    headway = starts[j] - starts[i]
    chain = [i, j]
    k = 2
    cursor = j + 1
    while cursor < len(starts):
        expected = starts[i] + k * headway
        match = None
        while cursor < len(starts) and starts[cursor] <= expected + tolerance:
            deviation = abs(starts[cursor] - expected)
            if deviation <= tolerance and (match is None or deviation < abs(starts[match] - expected)):
                match = cursor
            cursor += 1
        if match is None:
            break
        chain.append(match)
        cursor = match + 1
        k += 1
    return chain


def find_progression(starts: Sequence[int], tolerance: int) -> List[int]:
    """Longest headway progression among sorted start times.

    Candidates are seeded from every pair of trips, one per distinct headway;
    the first longest one in seeding order wins. Returns positions into
    ``starts``.
    """
    best: List[int] = []
    n = len(starts)
    for i in range(n):
        if n - i <= len(best):
            break
        seen = set()
        for j in range(i + 1, n):
            headway = starts[j] - starts[i]
            if headway <= 2 * tolerance or headway in seen:
                continue
            # Headways only grow with j, so the reachable length only shrinks
            if (starts[-1] - starts[i] + tolerance) // headway + 1 <= len(best):
                break
            seen.add(headway)
            chain = _extend(starts, i, j, tolerance)
            if len(chain) > len(best):
                best = chain
    return best


def collapse_group(trips: List[Trip], config: TidyConfig) -> Tuple[List[Trip], int]:
    """Greedily replace progressions in one group of equivalent trips.

    Returns the trips to delete and the number of frequency blocks created.
    """
    remaining = sorted(trips, key=lambda t: t.start_time())
    tolerance = config.frequency_start_tolerance
    deleted: List[Trip] = []
    blocks = 0

    while len(remaining) >= config.min_frequency_trips:
        starts = [t.start_time() for t in remaining]
        chain = find_progression(starts, tolerance)
        if len(chain) < config.min_frequency_trips:
            break

        first, last = chain[0], chain[-1]
        headway = starts[chain[1]] - starts[first]
        exact = all(starts[pos] == starts[first] + k * headway for k, pos in enumerate(chain))

        representative = remaining[first]
        representative.frequencies.append(
            Frequency(
                start_time=starts[first],
                end_time=starts[last],
                headway_secs=headway,
                exact_times=exact,
            )
        )
        blocks += 1
        members = set(chain)
        deleted.extend(remaining[pos] for pos in chain if pos != first)
        logger.debug(
            f"Trip {representative.id} now covers {len(chain)} trips every {headway}s"
        )
        remaining = [t for pos, t in enumerate(remaining) if pos not in members]

    return deleted, blocks


def minimize_frequencies(feed: Feed, config: TidyConfig, stats: ProcessingStats) -> Feed:
    """Collapse runs of identical trips at a constant headway into frequency blocks."""
    logger.info("Minimizing stop times with frequency patterns")

    groups: Dict[Hashable, List[Trip]] = defaultdict(list)
    for trip in feed.trips.values():
        key = pattern_key(trip)
        if key is not None:
            groups[key].append(trip)

    collapsed = 0
    created = 0
    for trips in groups.values():
        if len(trips) < config.min_frequency_trips:
            continue
        deleted, blocks = collapse_group(trips, config)
        for trip in deleted:
            del feed.trips[trip.id]
        collapsed += len(deleted)
        created += blocks

    stats.trips_collapsed += collapsed
    stats.frequencies_created += created
    logger.info(f"Collapsed {collapsed} trips into {created} frequency blocks")
    return feed
