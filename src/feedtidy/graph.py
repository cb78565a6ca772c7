"""Entity graph for a transit feed.

Every collection maps an identifier to a mutable entity. Cross references are
plain object references, so repointing a trip to another route is a single
attribute assignment and renaming an entity never touches its referrers.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterator, List, Optional, Set, Tuple

# Monday first, matching date.weekday()
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass(eq=False)
class Agency:
    id: str
    name: str
    url: str
    timezone: str
    lang: str = ""
    phone: str = ""
    fare_url: str = ""


@dataclass(eq=False)
class Route:
    id: str
    agency: Optional[Agency]
    short_name: str = ""
    long_name: str = ""
    desc: str = ""
    type: int = 3
    url: str = ""
    color: str = ""
    text_color: str = ""

    def same_fields(self, other: "Route") -> bool:
        """Field-wise equality, agency compared by identity."""
        return (
            self.agency is other.agency
            and self.short_name == other.short_name
            and self.long_name == other.long_name
            and self.desc == other.desc
            and self.type == other.type
            and self.url == other.url
            and self.color == other.color
            and self.text_color == other.text_color
        )


@dataclass(eq=False)
class Service:
    """Calendar of a set of trips.

    ``days`` is the weekly pattern (Monday first), valid between ``start_date``
    and ``end_date`` inclusive. A service without a range is defined by its
    exceptions only. ``exceptions`` maps a date to True (added) or False
    (removed).
    """

    id: str
    days: Tuple[bool, ...] = (False,) * 7
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    exceptions: Dict[date, bool] = field(default_factory=dict)

    @property
    def has_range(self) -> bool:
        return self.start_date is not None and self.end_date is not None

    def is_active(self, day: date) -> bool:
        if day in self.exceptions:
            return self.exceptions[day]
        if not self.has_range:
            return False
        return self.start_date <= day <= self.end_date and self.days[day.weekday()]

    def active_dates(self) -> Set[date]:
        """Exact set of dates on which this service runs."""
        active = set()
        if self.has_range:
            day = self.start_date
            while day <= self.end_date:
                if self.days[day.weekday()]:
                    active.add(day)
                day += timedelta(days=1)
        for day, added in self.exceptions.items():
            if added:
                active.add(day)
            else:
                active.discard(day)
        return active

    def entry_count(self) -> int:
        """Number of rows this service occupies in calendar + calendar_dates."""
        return (1 if self.has_range else 0) + len(self.exceptions)


@dataclass(eq=False)
class ShapePoint:
    lat: float
    lon: float
    sequence: int
    dist_traveled: Optional[float] = None


@dataclass(eq=False)
class Shape:
    id: str
    points: List[ShapePoint] = field(default_factory=list)

    def is_measured(self) -> bool:
        return all(p.dist_traveled is not None for p in self.points)


@dataclass(eq=False)
class Stop:
    id: str
    name: str = ""
    lat: float = 0.0
    lon: float = 0.0
    code: str = ""
    desc: str = ""
    zone_id: str = ""
    url: str = ""
    location_type: int = 0
    parent_station: Optional["Stop"] = None
    wheelchair_boarding: int = 0


@dataclass(eq=False)
class StopTime:
    stop: Stop
    sequence: int
    arrival_time: Optional[int] = None  # seconds since midnight
    departure_time: Optional[int] = None  # seconds since midnight
    headsign: str = ""
    pickup_type: int = 0
    drop_off_type: int = 0
    shape_dist_traveled: Optional[float] = None


@dataclass(eq=False)
class Frequency:
    start_time: int  # seconds since midnight
    end_time: int  # seconds since midnight
    headway_secs: int
    exact_times: bool = False

    def expand(self) -> List[int]:
        """Start times described by this block, end time included."""
        if self.headway_secs <= 0:
            return [self.start_time]
        count = round((self.end_time - self.start_time) / self.headway_secs)
        return [self.start_time + k * self.headway_secs for k in range(count + 1)]


@dataclass(eq=False)
class Trip:
    id: str
    route: Route
    service: Service
    shape: Optional[Shape] = None
    headsign: str = ""
    short_name: str = ""
    direction_id: Optional[int] = None
    block_id: str = ""
    wheelchair_accessible: int = 0
    bikes_allowed: int = 0
    stop_times: List[StopTime] = field(default_factory=list)
    frequencies: List[Frequency] = field(default_factory=list)

    def start_time(self) -> Optional[int]:
        if not self.stop_times:
            return None
        first = self.stop_times[0]
        return first.departure_time if first.departure_time is not None else first.arrival_time


@dataclass(eq=False)
class FareRule:
    route: Optional[Route] = None
    origin_id: str = ""
    destination_id: str = ""
    contains_id: str = ""

    def zone_key(self) -> Tuple[str, str, str]:
        return (self.origin_id, self.destination_id, self.contains_id)


@dataclass(eq=False)
class FareAttribute:
    id: str
    price: float
    currency_type: str
    payment_method: int = 0
    transfers: Optional[int] = None  # None means unlimited
    transfer_duration: Optional[int] = None
    rules: List[FareRule] = field(default_factory=list)


@dataclass
class Feed:
    """In-memory entity graph of one transit feed."""

    agencies: Dict[str, Agency] = field(default_factory=dict)
    routes: Dict[str, Route] = field(default_factory=dict)
    services: Dict[str, Service] = field(default_factory=dict)
    shapes: Dict[str, Shape] = field(default_factory=dict)
    trips: Dict[str, Trip] = field(default_factory=dict)
    stops: Dict[str, Stop] = field(default_factory=dict)
    fare_attributes: Dict[str, FareAttribute] = field(default_factory=dict)

    COLLECTIONS = ("agencies", "routes", "services", "shapes", "trips", "stops", "fare_attributes")

    def collections(self) -> Dict[str, Dict[str, object]]:
        return {name: getattr(self, name) for name in self.COLLECTIONS}

    def counts(self) -> Dict[str, int]:
        return {name: len(coll) for name, coll in self.collections().items()}

    def trips_by_route(self) -> Dict[Route, List[Trip]]:
        index = defaultdict(list)
        for trip in self.trips.values():
            index[trip.route].append(trip)
        return index

    def trips_by_service(self) -> Dict[Service, List[Trip]]:
        index = defaultdict(list)
        for trip in self.trips.values():
            index[trip.service].append(trip)
        return index

    def trips_by_shape(self) -> Dict[Shape, List[Trip]]:
        index = defaultdict(list)
        for trip in self.trips.values():
            if trip.shape is not None:
                index[trip.shape].append(trip)
        return index

    def iter_fare_rules(self) -> Iterator[Tuple[FareAttribute, FareRule]]:
        for fare in self.fare_attributes.values():
            for rule in fare.rules:
                yield fare, rule

    def dangling_references(self) -> List[str]:
        """Describe every reference that does not resolve inside this feed."""
        problems = []
        agencies = set(self.agencies.values())
        routes = set(self.routes.values())
        services = set(self.services.values())
        shapes = set(self.shapes.values())
        stops = set(self.stops.values())

        for route in self.routes.values():
            if route.agency is not None and route.agency not in agencies:
                problems.append(f"route {route.id} references a missing agency")
        for stop in self.stops.values():
            if stop.parent_station is not None and stop.parent_station not in stops:
                problems.append(f"stop {stop.id} references a missing parent station")
        for trip in self.trips.values():
            if trip.route not in routes:
                problems.append(f"trip {trip.id} references a missing route")
            if trip.service not in services:
                problems.append(f"trip {trip.id} references a missing service")
            if trip.shape is not None and trip.shape not in shapes:
                problems.append(f"trip {trip.id} references a missing shape")
            for st in trip.stop_times:
                if st.stop not in stops:
                    problems.append(f"trip {trip.id} visits a missing stop")
        for fare, rule in self.iter_fare_rules():
            if rule.route is not None and rule.route not in routes:
                problems.append(f"fare {fare.id} has a rule for a missing route")
        return problems
