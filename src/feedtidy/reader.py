"""Reading of feed tables into the entity graph."""

import logging
import zipfile
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional, Tuple, TypeVar

import pandas as pd

from .errors import FeedParseError
from .graph import (
    WEEKDAYS,
    Agency,
    FareAttribute,
    FareRule,
    Feed,
    Frequency,
    Route,
    Service,
    Shape,
    ShapePoint,
    Stop,
    StopTime,
    Trip,
)
from .types import TidyConfig, ProcessingStats

logger = logging.getLogger(__name__)

T = TypeVar("T")

REQUIRED_TABLES = ("agency", "stops", "routes", "trips", "stop_times")


class RowError(Exception):
    """A row cannot be turned into an entity; it may be dropped."""


def _find_member(archive: zipfile.ZipFile, filename: str) -> Optional[str]:
    """Archive member for a table, at the top level or inside one folder."""
    members = [m for m in archive.namelist() if m == filename or m.endswith("/" + filename)]
    return min(members, key=len) if members else None


def parse_time(value: str) -> int:
    """Parse H:MM:SS into seconds since midnight; hours may exceed 23."""
    parts = value.strip().split(":")
    if len(parts) != 3:
        raise ValueError(f"invalid time '{value}'")
    hours, minutes, seconds = (int(p) for p in parts)
    if hours < 0 or not (0 <= minutes < 60 and 0 <= seconds < 60):
        raise ValueError(f"invalid time '{value}'")
    return hours * 3600 + minutes * 60 + seconds


def parse_date(value: str) -> date:
    return datetime.strptime(value.strip(), "%Y%m%d").date()


def parse_color(value: str) -> str:
    value = value.strip()
    if len(value) != 6:
        raise ValueError(f"invalid color '{value}'")
    int(value, 16)
    return value.upper()


class FeedReader:
    """Build a Feed from a directory or zip archive of feed tables.

    Leniency follows the config: malformed optional values fall back to
    defaults with ``default_on_errors``; rows with broken required values or
    references are skipped with ``drop_errors``. Duplicate ids and missing
    required tables are always fatal.
    """

    def __init__(self, path: str, config: TidyConfig, stats: Optional[ProcessingStats] = None):
        self.path = Path(path)
        self.config = config
        self.stats = stats or ProcessingStats()
        self.feed = Feed()
        self._table = ""
        self._row = 0
        self._parents: Dict[str, Tuple[str, int]] = {}

    # -- table access -------------------------------------------------------

    def _has_table(self, name: str) -> bool:
        filename = f"{name}.txt"
        if self.path.is_dir():
            return (self.path / filename).exists()
        with zipfile.ZipFile(self.path) as archive:
            return _find_member(archive, filename) is not None

    def _load_table(self, name: str) -> Optional[pd.DataFrame]:
        filename = f"{name}.txt"
        read_opts = dict(dtype=str, keep_default_na=False, encoding="utf-8-sig", skipinitialspace=True)
        try:
            if self.path.is_dir():
                file_path = self.path / filename
                if not file_path.exists():
                    return None
                df = pd.read_csv(file_path, **read_opts)
            else:
                with zipfile.ZipFile(self.path) as archive:
                    member = _find_member(archive, filename)
                    if member is None:
                        return None
                    with archive.open(member) as handle:
                        df = pd.read_csv(handle, **read_opts)
        except pd.errors.EmptyDataError:
            return pd.DataFrame()
        except (pd.errors.ParserError, UnicodeDecodeError, zipfile.BadZipFile) as e:
            raise FeedParseError(f"could not read table: {e}", table=name)
        df.columns = [c.strip() for c in df.columns]
        return df

    def _rows(self, name: str, required_columns: Tuple[str, ...] = ()) -> Iterator[Dict[str, str]]:
        """Yield the rows of a table as dicts of stripped strings."""
        df = self._load_table(name)
        if df is None:
            return
        missing = [c for c in required_columns if c not in df.columns]
        if missing and len(df):
            raise FeedParseError(f"missing required column(s) {', '.join(missing)}", table=name)
        self._table = name
        for row_num, record in enumerate(df.to_dict("records"), start=2):
            self._row = row_num
            yield {k: (v.strip() if isinstance(v, str) else "") for k, v in record.items()}

    def _each(self, name: str, required_columns: Tuple[str, ...], handler: Callable[[Dict[str, str]], None]) -> None:
        for row in self._rows(name, required_columns):
            try:
                handler(row)
            except RowError as e:
                if not self.config.drop_errors:
                    raise FeedParseError(str(e), table=self._table, row=self._row)
                self.stats.dropped_rows += 1
                logger.debug(f"Dropped {self._table}.txt row {self._row}: {e}")

    # -- field helpers ------------------------------------------------------

    def _required(self, row: Dict[str, str], column: str) -> str:
        value = row.get(column, "")
        if value == "":
            raise RowError(f"missing required field '{column}'")
        return value

    def _parse_required(self, row: Dict[str, str], column: str, parser: Callable[[str], T]) -> T:
        value = self._required(row, column)
        try:
            return parser(value)
        except ValueError:
            raise RowError(f"invalid value '{value}' for '{column}'")

    def _parse_optional(self, row: Dict[str, str], column: str, parser: Callable[[str], T], default: T) -> T:
        value = row.get(column, "")
        if value == "":
            return default
        try:
            return parser(value)
        except ValueError:
            if not self.config.default_on_errors:
                raise FeedParseError(f"invalid value '{value}' for '{column}'", table=self._table, row=self._row)
            self.stats.recovered_fields += 1
            return default

    def _lookup(self, collection: Dict[str, T], row: Dict[str, str], column: str, what: str) -> T:
        key = self._required(row, column)
        if key not in collection:
            raise RowError(f"{what} '{key}' does not exist")
        return collection[key]

    def _unique(self, collection: Dict[str, object], key: str, what: str) -> None:
        if key in collection:
            raise FeedParseError(f"duplicate {what} id '{key}'", table=self._table, row=self._row)

    # -- tables -------------------------------------------------------------

    def _read_agency(self, row: Dict[str, str]) -> None:
        agency_id = row.get("agency_id", "")
        self._unique(self.feed.agencies, agency_id, "agency")
        self.feed.agencies[agency_id] = Agency(
            id=agency_id,
            name=self._required(row, "agency_name"),
            url=self._required(row, "agency_url"),
            timezone=self._required(row, "agency_timezone"),
            lang=row.get("agency_lang", ""),
            phone=row.get("agency_phone", ""),
            fare_url=row.get("agency_fare_url", ""),
        )

    def _read_stop(self, row: Dict[str, str]) -> None:
        stop_id = self._required(row, "stop_id")
        self._unique(self.feed.stops, stop_id, "stop")
        location_type = self._parse_optional(row, "location_type", int, 0)
        if location_type <= 2:
            lat = self._parse_required(row, "stop_lat", float)
            lon = self._parse_required(row, "stop_lon", float)
        else:
            lat = self._parse_optional(row, "stop_lat", float, 0.0)
            lon = self._parse_optional(row, "stop_lon", float, 0.0)
        self.feed.stops[stop_id] = Stop(
            id=stop_id,
            name=row.get("stop_name", ""),
            lat=lat,
            lon=lon,
            code=row.get("stop_code", ""),
            desc=row.get("stop_desc", ""),
            zone_id=row.get("zone_id", ""),
            url=row.get("stop_url", ""),
            location_type=location_type,
            wheelchair_boarding=self._parse_optional(row, "wheelchair_boarding", int, 0),
        )
        if row.get("parent_station"):
            self._parents[stop_id] = (row["parent_station"], self._row)

    def _resolve_parents(self) -> None:
        self._table = "stops"
        pending = {k: v for k, v in self._parents.items() if k in self.feed.stops}

        # Dropping a station can orphan its children, so repeat until stable
        changed = True
        while changed:
            changed = False
            for stop_id, (parent_id, row) in list(pending.items()):
                if parent_id in self.feed.stops:
                    continue
                self._row = row
                if not self.config.drop_errors:
                    raise FeedParseError(f"parent station '{parent_id}' does not exist", table="stops", row=row)
                self.stats.dropped_rows += 1
                logger.debug(f"Dropped stops.txt row {row}: parent station '{parent_id}' does not exist")
                del self.feed.stops[stop_id]
                del pending[stop_id]
                changed = True

        for stop_id, (parent_id, _) in pending.items():
            self.feed.stops[stop_id].parent_station = self.feed.stops[parent_id]

    def _read_route(self, row: Dict[str, str]) -> None:
        route_id = self._required(row, "route_id")
        self._unique(self.feed.routes, route_id, "route")
        agency_id = row.get("agency_id", "")
        if agency_id == "" and len(self.feed.agencies) == 1:
            agency = next(iter(self.feed.agencies.values()))
        elif agency_id in self.feed.agencies:
            agency = self.feed.agencies[agency_id]
        else:
            raise RowError(f"agency '{agency_id}' does not exist")
        self.feed.routes[route_id] = Route(
            id=route_id,
            agency=agency,
            short_name=row.get("route_short_name", ""),
            long_name=row.get("route_long_name", ""),
            desc=row.get("route_desc", ""),
            type=self._parse_required(row, "route_type", int),
            url=row.get("route_url", ""),
            color=self._parse_optional(row, "route_color", parse_color, ""),
            text_color=self._parse_optional(row, "route_text_color", parse_color, ""),
        )

    def _read_calendar(self, row: Dict[str, str]) -> None:
        service_id = self._required(row, "service_id")
        self._unique(self.feed.services, service_id, "service")
        days = []
        for day in WEEKDAYS:
            flag = self._required(row, day)
            if flag not in ("0", "1"):
                raise RowError(f"invalid value '{flag}' for '{day}'")
            days.append(flag == "1")
        self.feed.services[service_id] = Service(
            id=service_id,
            days=tuple(days),
            start_date=self._parse_required(row, "start_date", parse_date),
            end_date=self._parse_required(row, "end_date", parse_date),
        )

    def _read_calendar_date(self, row: Dict[str, str]) -> None:
        service_id = self._required(row, "service_id")
        day = self._parse_required(row, "date", parse_date)
        exception_type = self._required(row, "exception_type")
        if exception_type not in ("1", "2"):
            raise RowError(f"invalid value '{exception_type}' for 'exception_type'")
        service = self.feed.services.setdefault(service_id, Service(id=service_id))
        if day in service.exceptions:
            raise FeedParseError(
                f"duplicate exception on {day:%Y%m%d} for service '{service_id}'", table=self._table, row=self._row
            )
        service.exceptions[day] = exception_type == "1"

    def _read_shape_point(self, row: Dict[str, str]) -> None:
        shape_id = self._required(row, "shape_id")
        point = ShapePoint(
            lat=self._parse_required(row, "shape_pt_lat", float),
            lon=self._parse_required(row, "shape_pt_lon", float),
            sequence=self._parse_required(row, "shape_pt_sequence", int),
            dist_traveled=self._parse_optional(row, "shape_dist_traveled", float, None),
        )
        shape = self.feed.shapes.setdefault(shape_id, Shape(id=shape_id))
        shape.points.append(point)

    def _read_trip(self, row: Dict[str, str]) -> None:
        trip_id = self._required(row, "trip_id")
        self._unique(self.feed.trips, trip_id, "trip")
        route = self._lookup(self.feed.routes, row, "route_id", "route")
        service = self._lookup(self.feed.services, row, "service_id", "service")
        shape = None
        if row.get("shape_id"):
            shape = self.feed.shapes.get(row["shape_id"])
            if shape is None:
                if not self.config.default_on_errors:
                    raise RowError(f"shape '{row['shape_id']}' does not exist")
                self.stats.recovered_fields += 1
        self.feed.trips[trip_id] = Trip(
            id=trip_id,
            route=route,
            service=service,
            shape=shape,
            headsign=row.get("trip_headsign", ""),
            short_name=row.get("trip_short_name", ""),
            direction_id=self._parse_optional(row, "direction_id", int, None),
            block_id=row.get("block_id", ""),
            wheelchair_accessible=self._parse_optional(row, "wheelchair_accessible", int, 0),
            bikes_allowed=self._parse_optional(row, "bikes_allowed", int, 0),
        )

    def _read_stop_time(self, row: Dict[str, str]) -> None:
        trip = self._lookup(self.feed.trips, row, "trip_id", "trip")
        stop = self._lookup(self.feed.stops, row, "stop_id", "stop")
        arrival = self._parse_optional(row, "arrival_time", parse_time, None)
        departure = self._parse_optional(row, "departure_time", parse_time, None)
        if arrival is None:
            arrival = departure
        if departure is None:
            departure = arrival
        trip.stop_times.append(
            StopTime(
                stop=stop,
                sequence=self._parse_required(row, "stop_sequence", int),
                arrival_time=arrival,
                departure_time=departure,
                headsign=row.get("stop_headsign", ""),
                pickup_type=self._parse_optional(row, "pickup_type", int, 0),
                drop_off_type=self._parse_optional(row, "drop_off_type", int, 0),
                shape_dist_traveled=self._parse_optional(row, "shape_dist_traveled", float, None),
            )
        )

    def _read_frequency(self, row: Dict[str, str]) -> None:
        trip = self._lookup(self.feed.trips, row, "trip_id", "trip")
        headway = self._parse_required(row, "headway_secs", int)
        if headway <= 0:
            raise RowError(f"invalid value '{headway}' for 'headway_secs'")
        trip.frequencies.append(
            Frequency(
                start_time=self._parse_required(row, "start_time", parse_time),
                end_time=self._parse_required(row, "end_time", parse_time),
                headway_secs=headway,
                exact_times=self._parse_optional(row, "exact_times", int, 0) == 1,
            )
        )

    def _read_fare_attribute(self, row: Dict[str, str]) -> None:
        fare_id = self._required(row, "fare_id")
        self._unique(self.feed.fare_attributes, fare_id, "fare")
        self.feed.fare_attributes[fare_id] = FareAttribute(
            id=fare_id,
            price=self._parse_required(row, "price", float),
            currency_type=self._required(row, "currency_type"),
            payment_method=self._parse_required(row, "payment_method", int),
            transfers=self._parse_optional(row, "transfers", int, None),
            transfer_duration=self._parse_optional(row, "transfer_duration", int, None),
        )

    def _read_fare_rule(self, row: Dict[str, str]) -> None:
        fare = self._lookup(self.feed.fare_attributes, row, "fare_id", "fare")
        route = None
        if row.get("route_id"):
            route = self._lookup(self.feed.routes, row, "route_id", "route")
        fare.rules.append(
            FareRule(
                route=route,
                origin_id=row.get("origin_id", ""),
                destination_id=row.get("destination_id", ""),
                contains_id=row.get("contains_id", ""),
            )
        )

    # -- entry point --------------------------------------------------------

    def _check_required_tables(self) -> None:
        if not self.path.exists():
            raise FileNotFoundError(f"Input feed not found: {self.path}")
        if not self.path.is_dir() and not zipfile.is_zipfile(self.path):
            raise FeedParseError(f"'{self.path}' is neither a directory nor a zip archive")
        for name in REQUIRED_TABLES:
            if not self._has_table(name):
                raise FeedParseError("required table is missing", table=name)
        if not self._has_table("calendar") and not self._has_table("calendar_dates"):
            raise FeedParseError("feed has neither calendar.txt nor calendar_dates.txt")

    def read(self) -> Feed:
        logger.info(f"Reading feed from {self.path}")
        self._check_required_tables()

        self._each("agency", ("agency_name", "agency_url", "agency_timezone"), self._read_agency)
        self._each("stops", ("stop_id",), self._read_stop)
        self._resolve_parents()
        self._each("routes", ("route_id", "route_type"), self._read_route)
        self._each("calendar", ("service_id", *WEEKDAYS, "start_date", "end_date"), self._read_calendar)
        self._each("calendar_dates", ("service_id", "date", "exception_type"), self._read_calendar_date)
        self._each("shapes", ("shape_id", "shape_pt_lat", "shape_pt_lon", "shape_pt_sequence"), self._read_shape_point)
        self._each("trips", ("route_id", "service_id", "trip_id"), self._read_trip)
        self._each("stop_times", ("trip_id", "stop_id", "stop_sequence"), self._read_stop_time)
        self._each("frequencies", ("trip_id", "start_time", "end_time", "headway_secs"), self._read_frequency)
        self._each("fare_attributes", ("fare_id", "price", "currency_type", "payment_method"), self._read_fare_attribute)
        self._each("fare_rules", ("fare_id",), self._read_fare_rule)

        self._finish()
        self.stats.input_counts = self.feed.counts()
        logger.info(f"Loaded {self.feed.counts()}")
        return self.feed

    def _finish(self) -> None:
        """Order sequences and reject structurally broken ones."""
        for shape in self.feed.shapes.values():
            shape.points.sort(key=lambda p: p.sequence)
            sequences = [p.sequence for p in shape.points]
            if len(set(sequences)) != len(sequences):
                raise FeedParseError(f"shape '{shape.id}' repeats a point sequence number", table="shapes")
        for trip in self.feed.trips.values():
            trip.stop_times.sort(key=lambda st: st.sequence)
            sequences = [st.sequence for st in trip.stop_times]
            if len(set(sequences)) != len(sequences):
                raise FeedParseError(f"trip '{trip.id}' repeats a stop sequence number", table="stop_times")


def read_feed(path: str, config: TidyConfig, stats: Optional[ProcessingStats] = None) -> Feed:
    """Parse the feed at path into an entity graph."""
    return FeedReader(path, config, stats).read()
