"""Pytest configuration and fixtures."""

import os
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Wide terminal so rich help output does not truncate option names
os.environ["COLUMNS"] = "200"

from feedtidy.graph import Agency, Feed, Route, Service, Shape, ShapePoint, Stop, StopTime, Trip
from feedtidy.types import TidyConfig

# Somewhere in Freiburg, so that "auto" picks UTM zone 32N
BASE_LAT = 47.99
BASE_LON = 7.85

WEEKDAYS_ONLY = (True, True, True, True, True, False, False)


def build_shape(shape_id: str, n: int = 5, lat_offset: float = 0.0, step: float = 0.001) -> Shape:
    """Straight west-east shape of n points, roughly 75m apart."""
    return Shape(
        shape_id,
        [ShapePoint(BASE_LAT + lat_offset, BASE_LON + i * step, i + 1) for i in range(n)],
    )


def build_trip(
    trip_id: str,
    route: Route,
    service: Service,
    stops: List[Stop],
    start: int,
    step: int = 120,
    shape: Optional[Shape] = None,
) -> Trip:
    """Trip visiting stops in order, departing every step seconds from start."""
    trip = Trip(trip_id, route, service, shape=shape)
    for i, stop in enumerate(stops):
        t = start + i * step
        trip.stop_times.append(StopTime(stop, i + 1, arrival_time=t, departure_time=t))
    return trip


def add(feed: Feed, *entities) -> Feed:
    """Register entities in the matching feed collections."""
    targets = {
        Agency: feed.agencies,
        Route: feed.routes,
        Service: feed.services,
        Shape: feed.shapes,
        Trip: feed.trips,
        Stop: feed.stops,
    }
    for entity in entities:
        targets[type(entity)][entity.id] = entity
    return feed


@pytest.fixture
def default_config():
    """Default TidyConfig for testing."""
    return TidyConfig(
        progress_bar=False,  # Disable progress bars in tests
        verbose=0,  # Quiet logging in tests
        n_workers=2,
    )


@pytest.fixture
def agency():
    return Agency("A", "Test Transit", "https://example.com", "Europe/Berlin")


@pytest.fixture
def weekday_service():
    """Mondays to Fridays in January 2024 (the 1st is a Monday)."""
    return Service("WK", WEEKDAYS_ONLY, date(2024, 1, 1), date(2024, 1, 31))


@pytest.fixture
def stops():
    return [Stop(f"S{i}", f"Stop {i}", BASE_LAT, BASE_LON + (i - 1) * 0.002) for i in range(1, 4)]


@pytest.fixture
def simple_feed(agency, weekday_service, stops):
    """One agency, one route, one shape and one trip over three stops."""
    route = Route("R1", agency, short_name="1", long_name="Main Line", type=3)
    shape = build_shape("SH1")
    trip = build_trip("T1", route, weekday_service, stops, 8 * 3600, shape=shape)
    return add(Feed(), agency, route, weekday_service, shape, trip, *stops)


FEED_TABLES: Dict[str, str] = {
    "agency.txt": (
        "agency_id,agency_name,agency_url,agency_timezone\n"
        "A,Test Transit,https://example.com,Europe/Berlin\n"
    ),
    "stops.txt": (
        "stop_id,stop_name,stop_lat,stop_lon,location_type,parent_station\n"
        "P1,Central Station,47.99,7.85,1,\n"
        "S1,Central Platform,47.99,7.85,0,P1\n"
        "S2,Market,47.99,7.852,0,\n"
        "S3,Harbour,47.99,7.854,0,\n"
    ),
    "routes.txt": (
        "route_id,agency_id,route_short_name,route_long_name,route_type,route_color\n"
        "R1,A,1,Main Line,3,FF0000\n"
        "R22,A,1,Main Line,3,FF0000\n"
    ),
    "calendar.txt": (
        "service_id,monday,tuesday,wednesday,thursday,friday,saturday,sunday,start_date,end_date\n"
        "WK,1,1,1,1,1,0,0,20240101,20240131\n"
    ),
    "calendar_dates.txt": (
        "service_id,date,exception_type\n"
        "WK,20240115,2\n"
        "SAT,20240106,1\n"
        "SAT,20240113,1\n"
    ),
    "shapes.txt": (
        "shape_id,shape_pt_lat,shape_pt_lon,shape_pt_sequence\n"
        "SH1,47.99,7.85,1\n"
        "SH1,47.99,7.851,2\n"
        "SH1,47.99,7.852,3\n"
        "SH1,47.99,7.853,4\n"
        "SH1,47.99,7.854,5\n"
    ),
    "trips.txt": (
        "route_id,service_id,trip_id,shape_id\n"
        "R1,WK,T1,SH1\n"
        "R22,WK,T2,SH1\n"
        "R1,SAT,T3,SH1\n"
    ),
    "stop_times.txt": (
        "trip_id,arrival_time,departure_time,stop_id,stop_sequence\n"
        "T1,08:00:00,08:00:00,S1,1\n"
        "T1,08:02:00,08:02:00,S2,2\n"
        "T1,08:04:00,08:04:00,S3,3\n"
        "T2,09:00:00,09:00:00,S1,1\n"
        "T2,09:02:00,09:02:00,S2,2\n"
        "T2,09:04:00,09:04:00,S3,3\n"
        "T3,25:10:00,25:10:00,S1,1\n"
        "T3,25:12:00,25:12:00,S2,2\n"
        "T3,25:14:00,25:14:00,S3,3\n"
    ),
}


def write_tables(directory: Path, tables: Dict[str, str]) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    for name, content in tables.items():
        (directory / name).write_text(content, encoding="utf-8")
    return directory


@pytest.fixture
def feed_tables():
    """Mutable copy of the raw tables of a small valid feed."""
    return dict(FEED_TABLES)


@pytest.fixture
def feed_dir(tmp_path, feed_tables):
    """Directory holding a small valid feed."""
    return write_tables(tmp_path / "feed", feed_tables)
