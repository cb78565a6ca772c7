"""Removal of entities that no trip reaches."""

import logging
from collections import Counter
from typing import Dict

from ..graph import Feed
from ..types import TidyConfig, ProcessingStats

logger = logging.getLogger(__name__)


def _reference_counts(feed: Feed) -> Counter:
    """Count incoming references per entity over all referencing fields."""
    refs = Counter()
    for trip in feed.trips.values():
        refs[trip.route] += 1
        refs[trip.service] += 1
        if trip.shape is not None:
            refs[trip.shape] += 1
        for st in trip.stop_times:
            refs[st.stop] += 1
    for route in feed.routes.values():
        if route.agency is not None:
            refs[route.agency] += 1
    for stop in feed.stops.values():
        if stop.parent_station is not None:
            refs[stop.parent_station] += 1
    return refs


def _prune_fares(feed: Feed) -> int:
    """Drop fare rules of removed routes and fares that no longer apply."""
    removed = 0
    live_routes = set(feed.routes.values())
    for fare_id in list(feed.fare_attributes):
        fare = feed.fare_attributes[fare_id]
        had_rules = bool(fare.rules)
        fare.rules = [r for r in fare.rules if r.route is None or r.route in live_routes]
        if (had_rules and not fare.rules) or not live_routes:
            del feed.fare_attributes[fare_id]
            removed += 1
    return removed


def remove_orphans(feed: Feed, config: TidyConfig, stats: ProcessingStats) -> Feed:
    """Remove every entity that is not transitively referenced by a trip.

    Trips are the roots. Removing a route can orphan its agency, removing a
    stop can orphan its parent station, so pruning repeats until nothing
    changes. Fare rules for removed routes are dropped with them.
    """
    logger.info("Removing orphaned entities")

    removed: Dict[str, int] = Counter()
    prunable = ("routes", "services", "shapes", "stops", "agencies")

    while True:
        refs = _reference_counts(feed)
        changed = False
        for name in prunable:
            collection = getattr(feed, name)
            orphans = [eid for eid, entity in collection.items() if refs[entity] == 0]
            for eid in orphans:
                logger.debug(f"Removing orphaned {name[:-1]} {eid}")
                del collection[eid]
            if orphans:
                removed[name] += len(orphans)
                changed = True
        if not changed:
            break

    fares_removed = _prune_fares(feed)
    if fares_removed:
        removed["fare_attributes"] += fares_removed

    stats.orphans_removed = dict(removed)
    logger.info(f"Removed {sum(removed.values())} orphaned entities: {dict(removed)}")
    return feed
