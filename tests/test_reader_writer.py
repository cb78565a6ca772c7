"""Tests for reading and writing feeds."""

import zipfile
from datetime import date

import pandas as pd
import pytest

from feedtidy.errors import FeedParseError, FeedWriteError
from feedtidy.reader import parse_color, parse_date, parse_time, read_feed
from feedtidy.types import ProcessingStats, TidyConfig
from feedtidy.writer import format_date, format_time, write_feed

from conftest import write_tables


def strict():
    return TidyConfig(progress_bar=False)


class TestFieldParsers:
    """Tests for time, date and color parsing."""

    def test_parse_time(self):
        assert parse_time("08:05:00") == 29100
        assert parse_time("8:05:00") == 29100
        assert parse_time("25:10:00") == 90600

    def test_parse_time_invalid(self):
        for value in ("08:65:00", "08:00", "abc", "08:00:60"):
            with pytest.raises(ValueError):
                parse_time(value)

    def test_parse_date(self):
        assert parse_date("20240115") == date(2024, 1, 15)
        with pytest.raises(ValueError):
            parse_date("2024-01-15")

    def test_parse_color(self):
        assert parse_color("ff00aa") == "FF00AA"
        with pytest.raises(ValueError):
            parse_color("XYZXYZ")
        with pytest.raises(ValueError):
            parse_color("FFF")

    def test_format(self):
        assert format_time(90600) == "25:10:00"
        assert format_time(None) == ""
        assert format_date(date(2024, 1, 5)) == "20240105"


class TestReadFeed:
    """Tests for read_feed."""

    def test_read_counts(self, feed_dir):
        stats = ProcessingStats()
        feed = read_feed(str(feed_dir), strict(), stats)
        assert feed.counts() == {
            "agencies": 1,
            "routes": 2,
            "services": 2,
            "shapes": 1,
            "trips": 3,
            "stops": 4,
            "fare_attributes": 0,
        }
        assert stats.input_counts == feed.counts()

    def test_references_resolved(self, feed_dir):
        feed = read_feed(str(feed_dir), strict())
        assert feed.trips["T2"].route is feed.routes["R22"]
        assert feed.trips["T3"].service is feed.services["SAT"]
        assert feed.trips["T1"].shape is feed.shapes["SH1"]
        assert feed.stops["S1"].parent_station is feed.stops["P1"]
        assert feed.routes["R1"].agency is feed.agencies["A"]
        assert feed.dangling_references() == []

    def test_values_parsed(self, feed_dir):
        feed = read_feed(str(feed_dir), strict())
        assert feed.trips["T3"].start_time() == 90600
        assert [st.stop.id for st in feed.trips["T1"].stop_times] == ["S1", "S2", "S3"]
        assert feed.routes["R1"].color == "FF0000"
        assert feed.services["WK"].exceptions == {date(2024, 1, 15): False}
        assert not feed.services["SAT"].has_range
        assert feed.services["SAT"].active_dates() == {date(2024, 1, 6), date(2024, 1, 13)}
        assert [p.sequence for p in feed.shapes["SH1"].points] == [1, 2, 3, 4, 5]

    def test_single_agency_without_id(self, tmp_path, feed_tables):
        feed_tables["agency.txt"] = (
            "agency_name,agency_url,agency_timezone\n"
            "Test Transit,https://example.com,Europe/Berlin\n"
        )
        feed_tables["routes.txt"] = (
            "route_id,route_short_name,route_long_name,route_type\n"
            "R1,1,Main Line,3\n"
            "R22,1,Main Line,3\n"
        )
        feed = read_feed(str(write_tables(tmp_path / "f", feed_tables)), strict())
        assert feed.routes["R1"].agency is feed.agencies[""]

    def test_read_zip_with_folder(self, tmp_path, feed_tables):
        archive = tmp_path / "feed.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            for name, content in feed_tables.items():
                zf.writestr(f"gtfs/{name}", content)
        feed = read_feed(str(archive), strict())
        assert len(feed.trips) == 3

    def test_missing_input(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_feed(str(tmp_path / "nope"), strict())

    def test_missing_required_table(self, tmp_path, feed_tables):
        del feed_tables["stops.txt"]
        with pytest.raises(FeedParseError, match="stops.txt"):
            read_feed(str(write_tables(tmp_path / "f", feed_tables)), strict())

    def test_missing_calendar(self, tmp_path, feed_tables):
        del feed_tables["calendar.txt"]
        del feed_tables["calendar_dates.txt"]
        with pytest.raises(FeedParseError, match="calendar"):
            read_feed(str(write_tables(tmp_path / "f", feed_tables)), strict())

    def test_duplicate_id_always_fatal(self, tmp_path, feed_tables):
        feed_tables["routes.txt"] += "R1,A,9,Other,3,\n"
        path = str(write_tables(tmp_path / "f", feed_tables))
        lenient = TidyConfig(progress_bar=False, default_on_errors=True, drop_errors=True)
        with pytest.raises(FeedParseError, match="duplicate route id 'R1'"):
            read_feed(path, lenient)


class TestLeniency:
    """Tests for the default-on-errors and drop-errors policies."""

    def test_malformed_optional_field_strict(self, tmp_path, feed_tables):
        feed_tables["routes.txt"] = feed_tables["routes.txt"].replace("R1,A,1,Main Line,3,FF0000", "R1,A,1,Main Line,3,XYZ")
        path = str(write_tables(tmp_path / "f", feed_tables))
        with pytest.raises(FeedParseError) as excinfo:
            read_feed(path, strict())
        assert excinfo.value.table == "routes"
        assert excinfo.value.row == 2

    def test_malformed_optional_field_defaulted(self, tmp_path, feed_tables):
        feed_tables["routes.txt"] = feed_tables["routes.txt"].replace("R1,A,1,Main Line,3,FF0000", "R1,A,1,Main Line,3,XYZ")
        path = str(write_tables(tmp_path / "f", feed_tables))
        stats = ProcessingStats()
        feed = read_feed(path, TidyConfig(progress_bar=False, default_on_errors=True), stats)
        assert feed.routes["R1"].color == ""
        assert stats.recovered_fields == 1

    def test_dangling_reference_strict(self, tmp_path, feed_tables):
        feed_tables["stop_times.txt"] += "T1,08:06:00,08:06:00,S99,4\n"
        path = str(write_tables(tmp_path / "f", feed_tables))
        with pytest.raises(FeedParseError, match="stop 'S99' does not exist"):
            read_feed(path, strict())

    def test_dangling_reference_dropped(self, tmp_path, feed_tables):
        feed_tables["stop_times.txt"] += "T1,08:06:00,08:06:00,S99,4\n"
        path = str(write_tables(tmp_path / "f", feed_tables))
        stats = ProcessingStats()
        feed = read_feed(path, TidyConfig(progress_bar=False, drop_errors=True), stats)
        assert len(feed.trips["T1"].stop_times) == 3
        assert stats.dropped_rows == 1

    def test_dropped_rows_cascade(self, tmp_path, feed_tables):
        """A dropped route takes its trips and their stop times with it."""
        feed_tables["routes.txt"] = feed_tables["routes.txt"].replace("R22,A,1,Main Line,3,FF0000", "R22,A,1,Main Line,,FF0000")
        path = str(write_tables(tmp_path / "f", feed_tables))
        stats = ProcessingStats()
        feed = read_feed(path, TidyConfig(progress_bar=False, drop_errors=True), stats)
        assert set(feed.routes) == {"R1"}
        assert set(feed.trips) == {"T1", "T3"}
        assert stats.dropped_rows == 5
        assert feed.dangling_references() == []

    def test_dropped_station_takes_children(self, tmp_path, feed_tables):
        """A child listed before its dropped station is dropped as well."""
        feed_tables["stops.txt"] = (
            "stop_id,stop_name,stop_lat,stop_lon,location_type,parent_station\n"
            "S1,Central Platform,47.99,7.85,0,P1\n"
            "P1,Central Station,47.99,7.85,1,PX\n"
            "S2,Market,47.99,7.852,0,\n"
            "S3,Harbour,47.99,7.854,0,\n"
        )
        path = str(write_tables(tmp_path / "f", feed_tables))
        stats = ProcessingStats()
        feed = read_feed(path, TidyConfig(progress_bar=False, drop_errors=True), stats)

        assert set(feed.stops) == {"S2", "S3"}
        assert feed.dangling_references() == []
        # T1, T2 and T3 each lose their S1 stop time
        assert stats.dropped_rows == 5
        assert [st.stop.id for st in feed.trips["T1"].stop_times] == ["S2", "S3"]

    def test_missing_station_strict(self, tmp_path, feed_tables):
        feed_tables["stops.txt"] = feed_tables["stops.txt"].replace("S1,Central Platform,47.99,7.85,0,P1", "S1,Central Platform,47.99,7.85,0,PX")
        path = str(write_tables(tmp_path / "f", feed_tables))
        with pytest.raises(FeedParseError, match="parent station 'PX' does not exist"):
            read_feed(path, strict())


class TestWriteFeed:
    """Tests for write_feed."""

    def test_write_directory(self, tmp_path, feed_dir):
        feed = read_feed(str(feed_dir), strict())
        out = tmp_path / "out"
        counts = write_feed(feed, str(out))

        assert counts["stop_times"] == 9
        assert counts["calendar_dates"] == 3
        assert not (out / "frequencies.txt").exists()
        assert not (out / "fare_rules.txt").exists()

        routes = pd.read_csv(out / "routes.txt", dtype=str, keep_default_na=False)
        assert list(routes["route_id"]) == ["R1", "R22"]
        assert "route_desc" not in routes.columns

        stop_times = pd.read_csv(out / "stop_times.txt", dtype=str, keep_default_na=False)
        assert list(stop_times["trip_id"][:3]) == ["T1", "T1", "T1"]
        assert "25:10:00" in set(stop_times["arrival_time"])

    def test_write_zip(self, tmp_path, feed_dir):
        feed = read_feed(str(feed_dir), strict())
        out = tmp_path / "out.zip"
        write_feed(feed, str(out))

        with zipfile.ZipFile(out) as zf:
            names = zf.namelist()
            assert names == sorted(names)
            assert "agency.txt" in names
            assert all(info.compress_type == zipfile.ZIP_DEFLATED for info in zf.infolist())

    def test_round_trip(self, tmp_path, feed_dir):
        """Reading back written output yields the same graph."""
        feed = read_feed(str(feed_dir), strict())
        out = tmp_path / "out.zip"
        write_feed(feed, str(out))
        again = read_feed(str(out), strict())

        assert again.counts() == feed.counts()
        assert again.trips["T3"].start_time() == 90600
        assert again.stops["S1"].parent_station is again.stops["P1"]
        assert again.services["SAT"].active_dates() == feed.services["SAT"].active_dates()
        assert again.services["WK"].active_dates() == feed.services["WK"].active_dates()

    def test_output_deterministic(self, tmp_path, feed_dir):
        feed = read_feed(str(feed_dir), strict())
        write_feed(feed, str(tmp_path / "a"))
        write_feed(feed, str(tmp_path / "b"))
        for name in ("routes.txt", "stop_times.txt", "calendar_dates.txt", "shapes.txt"):
            assert (tmp_path / "a" / name).read_text() == (tmp_path / "b" / name).read_text()

    def test_unwritable_destination(self, tmp_path, simple_feed):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        with pytest.raises(FeedWriteError) as excinfo:
            write_feed(simple_feed, str(blocker / "out"))
        assert excinfo.value.path == str(blocker / "out")
