"""Serialization of the entity graph back into feed tables."""

import logging
import zipfile
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from .errors import FeedWriteError
from .graph import WEEKDAYS, Feed

logger = logging.getLogger(__name__)

COLUMNS: Dict[str, Tuple[str, ...]] = {
    "agency": ("agency_id", "agency_name", "agency_url", "agency_timezone", "agency_lang", "agency_phone",
               "agency_fare_url"),
    "stops": ("stop_id", "stop_code", "stop_name", "stop_desc", "stop_lat", "stop_lon", "zone_id", "stop_url",
              "location_type", "parent_station", "wheelchair_boarding"),
    "routes": ("route_id", "agency_id", "route_short_name", "route_long_name", "route_desc", "route_type",
               "route_url", "route_color", "route_text_color"),
    "trips": ("route_id", "service_id", "trip_id", "trip_headsign", "trip_short_name", "direction_id", "block_id",
              "shape_id", "wheelchair_accessible", "bikes_allowed"),
    "stop_times": ("trip_id", "arrival_time", "departure_time", "stop_id", "stop_sequence", "stop_headsign",
                   "pickup_type", "drop_off_type", "shape_dist_traveled"),
    "calendar": ("service_id", *WEEKDAYS, "start_date", "end_date"),
    "calendar_dates": ("service_id", "date", "exception_type"),
    "shapes": ("shape_id", "shape_pt_lat", "shape_pt_lon", "shape_pt_sequence", "shape_dist_traveled"),
    "frequencies": ("trip_id", "start_time", "end_time", "headway_secs", "exact_times"),
    "fare_attributes": ("fare_id", "price", "currency_type", "payment_method", "transfers", "transfer_duration"),
    "fare_rules": ("fare_id", "route_id", "origin_id", "destination_id", "contains_id"),
}


def format_time(seconds: Optional[int]) -> str:
    if seconds is None:
        return ""
    return f"{seconds // 3600:02d}:{seconds % 3600 // 60:02d}:{seconds % 60:02d}"


def format_date(day: Optional[date]) -> str:
    return "" if day is None else day.strftime("%Y%m%d")


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float):
        return repr(value)
    return str(value)


def _id(entity: Any) -> str:
    return "" if entity is None else entity.id


def build_tables(feed: Feed) -> Dict[str, List[Dict[str, Any]]]:
    """Flatten the graph into row dicts per table, in a stable sorted order."""
    tables: Dict[str, List[Dict[str, Any]]] = {name: [] for name in COLUMNS}

    for agency in feed.agencies.values():
        tables["agency"].append({
            "agency_id": agency.id, "agency_name": agency.name, "agency_url": agency.url,
            "agency_timezone": agency.timezone, "agency_lang": agency.lang, "agency_phone": agency.phone,
            "agency_fare_url": agency.fare_url,
        })

    for stop in feed.stops.values():
        tables["stops"].append({
            "stop_id": stop.id, "stop_code": stop.code, "stop_name": stop.name, "stop_desc": stop.desc,
            "stop_lat": stop.lat, "stop_lon": stop.lon, "zone_id": stop.zone_id, "stop_url": stop.url,
            "location_type": stop.location_type, "parent_station": _id(stop.parent_station),
            "wheelchair_boarding": stop.wheelchair_boarding,
        })

    for route in feed.routes.values():
        tables["routes"].append({
            "route_id": route.id, "agency_id": _id(route.agency), "route_short_name": route.short_name,
            "route_long_name": route.long_name, "route_desc": route.desc, "route_type": route.type,
            "route_url": route.url, "route_color": route.color, "route_text_color": route.text_color,
        })

    for service in feed.services.values():
        if service.has_range:
            row = {"service_id": service.id, "start_date": format_date(service.start_date),
                   "end_date": format_date(service.end_date)}
            row.update({day: flag for day, flag in zip(WEEKDAYS, service.days)})
            tables["calendar"].append(row)
        for day, added in service.exceptions.items():
            tables["calendar_dates"].append({
                "service_id": service.id, "date": format_date(day), "exception_type": 1 if added else 2,
            })

    for shape in feed.shapes.values():
        for point in shape.points:
            tables["shapes"].append({
                "shape_id": shape.id, "shape_pt_lat": point.lat, "shape_pt_lon": point.lon,
                "shape_pt_sequence": point.sequence, "shape_dist_traveled": point.dist_traveled,
            })

    for trip in feed.trips.values():
        tables["trips"].append({
            "route_id": trip.route.id, "service_id": trip.service.id, "trip_id": trip.id,
            "trip_headsign": trip.headsign, "trip_short_name": trip.short_name, "direction_id": trip.direction_id,
            "block_id": trip.block_id, "shape_id": _id(trip.shape),
            "wheelchair_accessible": trip.wheelchair_accessible, "bikes_allowed": trip.bikes_allowed,
        })
        for st in trip.stop_times:
            tables["stop_times"].append({
                "trip_id": trip.id, "arrival_time": format_time(st.arrival_time),
                "departure_time": format_time(st.departure_time), "stop_id": st.stop.id,
                "stop_sequence": st.sequence, "stop_headsign": st.headsign, "pickup_type": st.pickup_type,
                "drop_off_type": st.drop_off_type, "shape_dist_traveled": st.shape_dist_traveled,
            })
        for freq in trip.frequencies:
            tables["frequencies"].append({
                "trip_id": trip.id, "start_time": format_time(freq.start_time),
                "end_time": format_time(freq.end_time), "headway_secs": freq.headway_secs,
                "exact_times": freq.exact_times,
            })

    for fare in feed.fare_attributes.values():
        tables["fare_attributes"].append({
            "fare_id": fare.id, "price": fare.price, "currency_type": fare.currency_type,
            "payment_method": fare.payment_method, "transfers": fare.transfers,
            "transfer_duration": fare.transfer_duration,
        })
        for rule in fare.rules:
            tables["fare_rules"].append({
                "fare_id": fare.id, "route_id": _id(rule.route), "origin_id": rule.origin_id,
                "destination_id": rule.destination_id, "contains_id": rule.contains_id,
            })

    sort_keys = {
        "shapes": lambda r: (r["shape_id"], r["shape_pt_sequence"]),
        "trips": lambda r: r["trip_id"],
        "stop_times": lambda r: (r["trip_id"], r["stop_sequence"]),
        "calendar_dates": lambda r: (r["service_id"], r["date"]),
        "frequencies": lambda r: (r["trip_id"], r["start_time"]),
        "fare_rules": lambda r: (r["fare_id"], r["route_id"], r["origin_id"], r["destination_id"], r["contains_id"]),
    }
    for name, rows in tables.items():
        rows.sort(key=sort_keys.get(name, lambda r, c=COLUMNS[name][0]: r[c]))
    return tables


def to_frame(name: str, rows: List[Dict[str, Any]]) -> pd.DataFrame:
    """Render rows as an all-string frame; optional columns empty everywhere are left out."""
    frame = pd.DataFrame([{c: _cell(r.get(c)) for c in COLUMNS[name]} for r in rows], columns=list(COLUMNS[name]))
    keep = [c for i, c in enumerate(COLUMNS[name]) if i == 0 or (frame[c] != "").any()]
    return frame[keep]


def write_feed(feed: Feed, output_path: str) -> Dict[str, int]:
    """Write the feed to a directory, or to a zip archive if the path ends in .zip.

    Tables without rows are omitted, except the mandatory ones. Returns the
    number of rows written per table.
    """
    path = Path(output_path)
    tables = build_tables(feed)
    mandatory = {"agency", "stops", "routes", "trips", "stop_times"}
    frames = {
        name: to_frame(name, rows)
        for name, rows in tables.items()
        if rows or name in mandatory
    }
    if "calendar" not in frames and "calendar_dates" not in frames:
        frames["calendar"] = to_frame("calendar", [])

    logger.info(f"Writing feed to {path}")
    try:
        if path.suffix.lower() == ".zip":
            path.parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
                for name in sorted(frames):
                    archive.writestr(f"{name}.txt", frames[name].to_csv(index=False, lineterminator="\n"))
        else:
            path.mkdir(parents=True, exist_ok=True)
            for name in sorted(frames):
                frames[name].to_csv(path / f"{name}.txt", index=False, lineterminator="\n")
    except OSError as e:
        raise FeedWriteError(str(path), str(e))

    counts = {name: len(frame) for name, frame in frames.items()}
    logger.info(f"Wrote {sum(counts.values())} rows in {len(counts)} tables")
    return counts
