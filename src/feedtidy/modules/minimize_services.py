"""Minimization of calendar entries per service."""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Optional, Set, Tuple

import numpy as np

from ..graph import Feed, Service
from ..types import TidyConfig, ProcessingStats

logger = logging.getLogger(__name__)

# Bit i of a mask stands for weekday i (Monday = 0)
WEEKDAY_MASKS = range(1, 128)


@dataclass
class Coverage:
    """One candidate representation of an active-date set."""

    days: Tuple[bool, ...]
    start_date: Optional[date]
    end_date: Optional[date]
    exceptions: Dict[date, bool]

    @property
    def cost(self) -> int:
        return (1 if self.start_date is not None else 0) + len(self.exceptions)

    def as_service(self, service_id: str) -> Service:
        return Service(service_id, self.days, self.start_date, self.end_date, dict(self.exceptions))


def _exceptions_for(active: Set[date], days: Tuple[bool, ...], start: date, end: date) -> Dict[date, bool]:
    """Exceptions needed so that pattern + range yields exactly the active set."""
    exceptions = {}
    day = start
    while day <= end:
        if days[day.weekday()] and day not in active:
            exceptions[day] = False
        day += timedelta(days=1)
    for day in active:
        if not (start <= day <= end and days[day.weekday()]):
            exceptions[day] = True
    return dict(sorted(exceptions.items()))


def best_coverage(active: Set[date]) -> Coverage:
    """Smallest pattern/range/exception combination covering the active dates.

    For a fixed weekly pattern only dates matching it matter inside the range:
    an active one saves an addition, an inactive one costs a removal. The best
    range is therefore the maximum-sum run over those dates scored +1/-1,
    found with prefix sums. Every pattern is tried, as is the plain list of
    added dates.
    """
    best = Coverage((False,) * 7, None, None, {d: True for d in sorted(active)})
    if not active:
        return best

    first, last = min(active), max(active)
    span = (last - first).days + 1
    dates = [first + timedelta(days=i) for i in range(span)]
    weekdays = np.array([d.weekday() for d in dates])
    is_active = np.array([d in active for d in dates])

    best_saving = 1  # a calendar row costs one entry; it must save more than that
    best_choice = None
    for mask in WEEKDAY_MASKS:
        bits = np.array([(mask >> i) & 1 for i in range(7)], dtype=bool)
        selected = np.nonzero(bits[weekdays])[0]
        if len(selected) == 0:
            continue
        scores = np.where(is_active[selected], 1, -1)
        prefix = np.concatenate([[0], np.cumsum(scores)])
        running_min = np.minimum.accumulate(prefix)
        gains = prefix[1:] - running_min[:-1]
        j = int(np.argmax(gains))
        if gains[j] <= best_saving:
            continue
        i = int(np.argmin(prefix[:j + 1]))
        best_saving = int(gains[j])
        best_choice = (tuple(bool(b) for b in bits), dates[selected[i]], dates[selected[j]])

    if best_choice is not None:
        days, start, end = best_choice
        best = Coverage(days, start, end, _exceptions_for(active, days, start, end))
    return best


def minimize_service(service: Service) -> bool:
    """Rewrite one service in place if a smaller exact representation exists."""
    active = service.active_dates()
    current = service.entry_count()

    if not active:
        # Keep a single row so that the service still exists on disk
        if current <= 1:
            return False
        anchor = service.start_date or min(service.exceptions)
        candidate = Coverage((False,) * 7, anchor, anchor, {})
    else:
        candidate = best_coverage(active)

    if candidate.cost >= current:
        return False

    if candidate.as_service(service.id).active_dates() != active:
        logger.warning(f"Rejected minimized calendar for service {service.id}: active dates differ")
        return False

    service.days = candidate.days
    service.start_date = candidate.start_date
    service.end_date = candidate.end_date
    service.exceptions = dict(candidate.exceptions)
    logger.debug(f"Service {service.id}: {current} → {candidate.cost} entries")
    return True


def minimize_services(feed: Feed, config: TidyConfig, stats: ProcessingStats) -> Feed:
    """Minimize calendar + calendar_dates entries without changing any active date."""
    logger.info("Minimizing services")

    before = sum(s.entry_count() for s in feed.services.values())
    changed = sum(1 for service in feed.services.values() if minimize_service(service))
    after = sum(s.entry_count() for s in feed.services.values())

    stats.services_minimized += changed
    stats.service_entries_before += before
    stats.service_entries_after += after
    logger.info(f"Minimized {changed} services ({before} → {after} calendar entries)")
    return feed
