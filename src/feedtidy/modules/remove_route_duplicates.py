"""Merging of semantically equivalent routes."""

import logging
from typing import Dict, List, Set

from ..graph import FareAttribute, Feed, FareRule, Route, Trip
from ..ops import make_chunks, open_pool, scan_chunks, shortest_id, worker_count
from ..types import TidyConfig, ProcessingStats

logger = logging.getLogger(__name__)


def fare_rules_equal(fare: FareAttribute, a: Route, b: Route) -> bool:
    """Check that the rules of one fare pair up one-to-one between two routes.

    Rules are matched on origin/destination/contains. Each rule consumes at
    most one counterpart, so two identical rules for route a against one for
    route b leave an unmatched rule and the routes count as different.
    Collapsing such repeated rules is a separate concern.
    """
    unmatched_a: List[FareRule] = []
    unmatched_b: List[FareRule] = []

    for rule in fare.rules:
        if rule.route is a:
            mine, theirs = unmatched_a, unmatched_b
        elif rule.route is b:
            mine, theirs = unmatched_b, unmatched_a
        else:
            continue
        for i, other in enumerate(theirs):
            if other.zone_key() == rule.zone_key():
                del theirs[i]
                break
        else:
            mine.append(rule)

    return not unmatched_a and not unmatched_b


def fares_compatible(fares: List[FareAttribute], a: Route, b: Route) -> bool:
    """Routes are fare-compatible if every fare touching either treats both alike."""
    for fare in fares:
        if any(rule.route is a or rule.route is b for rule in fare.rules):
            if not fare_rules_equal(fare, a, b):
                return False
    return True


def _drop_route_from_fares(feed: Feed, route: Route) -> int:
    """Remove fare rules of a route; delete fares emptied by that removal."""
    deleted = 0
    for fare_id in list(feed.fare_attributes):
        fare = feed.fare_attributes[fare_id]
        if not fare.rules:
            continue
        fare.rules = [r for r in fare.rules if r.route is not route]
        if not fare.rules:
            logger.debug(f"Deleting fare {fare_id}, its last rule referenced route {route.id}")
            del feed.fare_attributes[fare_id]
            deleted += 1
    return deleted


def combine_routes(feed: Feed, routes: List[Route], trips: Dict[Route, List[Trip]]) -> int:
    """Collapse equal routes onto the one with the shortest id."""
    ref = shortest_id(routes)
    fares_deleted = 0

    for route in routes:
        if route is ref:
            continue
        for trip in trips.pop(route, []):
            trip.route = ref
            trips.setdefault(ref, []).append(trip)
        fares_deleted += _drop_route_from_fares(feed, route)
        del feed.routes[route.id]
        logger.debug(f"Merged route {route.id} into {ref.id}")

    return fares_deleted


def remove_route_duplicates(feed: Feed, config: TidyConfig, stats: ProcessingStats) -> Feed:
    """Merge routes with identical fields and compatible fares."""
    logger.info("Removing redundant routes")

    before = len(feed.routes)
    routes = list(feed.routes.values())
    fares = list(feed.fare_attributes.values())
    trips = feed.trips_by_route()
    processed: Set[Route] = set()
    chunks = make_chunks(routes, worker_count(config))

    def equivalent(route: Route, other: Route) -> bool:
        return (
            other is not route
            and other not in processed
            and other.same_fields(route)
            and fares_compatible(fares, route, other)
        )

    fares_deleted = 0
    with open_pool(config) as pool:
        for route in routes:
            if route in processed:
                continue
            equivalents = scan_chunks(pool, chunks, lambda other: equivalent(route, other))
            processed.add(route)
            if equivalents:
                processed.update(equivalents)
                fares_deleted += combine_routes(feed, equivalents + [route], trips)

    removed = before - len(feed.routes)
    stats.route_duplicates_removed += removed
    stats.fare_attributes_removed += fares_deleted
    logger.info(f"Removed {removed} redundant routes ({fares_deleted} fare attributes dropped)")
    return feed
