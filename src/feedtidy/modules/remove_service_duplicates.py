"""Merging of services that run on exactly the same dates."""

import logging
from datetime import date
from typing import Dict, FrozenSet, Set

from ..graph import Feed, Service
from ..ops import make_chunks, open_pool, scan_chunks, shortest_id, worker_count
from ..types import TidyConfig, ProcessingStats

logger = logging.getLogger(__name__)


def remove_service_duplicates(feed: Feed, config: TidyConfig, stats: ProcessingStats) -> Feed:
    """Merge services whose active-date sets are identical.

    Active dates are expanded once up front; the parallel scan only compares
    the precomputed sets.
    """
    logger.info("Removing redundant services")

    before = len(feed.services)
    services = list(feed.services.values())
    active: Dict[Service, FrozenSet[date]] = {s: frozenset(s.active_dates()) for s in services}
    trips = feed.trips_by_service()
    processed: Set[Service] = set()
    chunks = make_chunks(services, worker_count(config))

    with open_pool(config) as pool:
        for service in services:
            if service in processed:
                continue
            dates = active[service]
            equivalents = scan_chunks(
                pool,
                chunks,
                lambda other: other is not service and other not in processed and active[other] == dates,
            )
            processed.add(service)
            if not equivalents:
                continue
            processed.update(equivalents)

            group = equivalents + [service]
            ref = shortest_id(group)
            for dup in group:
                if dup is ref:
                    continue
                for trip in trips.pop(dup, []):
                    trip.service = ref
                    trips.setdefault(ref, []).append(trip)
                del feed.services[dup.id]
                logger.debug(f"Merged service {dup.id} into {ref.id}")

    removed = before - len(feed.services)
    stats.service_duplicates_removed += removed
    logger.info(f"Removed {removed} redundant services")
    return feed
