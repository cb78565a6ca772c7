"""Tests for the frequency minimizer."""

from hypothesis import given, settings, strategies as st

from feedtidy.graph import Frequency
from feedtidy.modules import minimize_frequencies
from feedtidy.modules.minimize_frequencies import _extend, find_progression, pattern_key
from feedtidy.types import ProcessingStats, TidyConfig

from conftest import add, build_trip

EIGHT = 8 * 3600


def add_trips(feed, starts, prefix="T", step=120):
    route = feed.routes["R1"]
    service = feed.services["WK"]
    stops = sorted(feed.stops.values(), key=lambda s: s.id)
    trips = [build_trip(f"{prefix}{i}", route, service, stops, start, step=step) for i, start in enumerate(starts)]
    add(feed, *trips)
    return trips


class TestPatternKey:
    """Tests for trip grouping."""

    def test_same_pattern_different_start(self, simple_feed):
        a, b = add_trips(simple_feed, [EIGHT, EIGHT + 600])
        assert pattern_key(a) == pattern_key(b)

    def test_different_offsets(self, simple_feed):
        a, = add_trips(simple_feed, [EIGHT], prefix="A")
        b, = add_trips(simple_feed, [EIGHT], prefix="B", step=180)
        assert pattern_key(a) != pattern_key(b)

    def test_frequency_trips_skipped(self, simple_feed):
        a, = add_trips(simple_feed, [EIGHT])
        a.frequencies.append(Frequency(EIGHT, EIGHT + 3600, 600))
        assert pattern_key(a) is None


class TestFindProgression:
    """Tests for find_progression."""

    def test_regular_starts(self):
        assert find_progression([0, 600, 1200, 1800], 0) == [0, 1, 2, 3]

    def test_longest_progression_wins(self):
        starts = [0, 100, 600, 1200, 1800, 2400]
        assert find_progression(starts, 0) == [0, 2, 3, 4, 5]

    def test_tolerance(self):
        assert find_progression([0, 600, 1205, 1800], 10) == [0, 1, 2, 3]
        assert find_progression([0, 600, 1205, 1800], 0) == [0, 1]

    def test_large_regular_group(self):
        """A day of trips every two minutes is found as one progression."""
        starts = [5 * 3600 + k * 120 for k in range(600)]
        assert find_progression(starts, 0) == list(range(600))

    def test_repeated_start_times(self):
        assert find_progression([0, 0, 600, 600, 1200], 0) == [0, 2, 4]

    def test_later_longer_progression_found(self):
        """Pruning never hides a longer progression seeded later."""
        starts = [0, 50, 1000, 1100, 1200, 1300]
        assert find_progression(starts, 0) == [2, 3, 4, 5]


class TestMinimizeFrequencies:
    """Tests for minimize_frequencies."""

    def test_five_trips_every_ten_minutes(self, simple_feed, default_config):
        """08:00 to 08:40 every 600s becomes one trip with one exact block."""
        feed = simple_feed
        del feed.trips["T1"]
        add_trips(feed, [EIGHT + k * 600 for k in range(5)])

        stats = ProcessingStats()
        minimize_frequencies(feed, default_config, stats)

        assert list(feed.trips) == ["T0"]
        (block,) = feed.trips["T0"].frequencies
        assert (block.start_time, block.end_time, block.headway_secs, block.exact_times) == (
            EIGHT, EIGHT + 2400, 600, True
        )
        assert len(feed.trips["T0"].stop_times) == 3
        assert stats.trips_collapsed == 4
        assert stats.frequencies_created == 1

    def test_two_trips_never_collapse(self, simple_feed, default_config):
        add_trips(simple_feed, [EIGHT + 3600, EIGHT + 4200])
        before = set(simple_feed.trips)
        minimize_frequencies(simple_feed, default_config, ProcessingStats())
        assert set(simple_feed.trips) == before
        assert all(not t.frequencies for t in simple_feed.trips.values())

    def test_leftover_trip_kept(self, simple_feed, default_config):
        """A trip off the progression survives next to the block."""
        trips = add_trips(simple_feed, [9 * 3600, 9 * 3600 + 600, 9 * 3600 + 1200, 9 * 3600 + 1900])
        minimize_frequencies(simple_feed, default_config, ProcessingStats())

        assert trips[0].id in simple_feed.trips
        assert trips[3].id in simple_feed.trips
        assert trips[1].id not in simple_feed.trips
        assert not trips[3].frequencies

    def test_inexact_block_within_tolerance(self, simple_feed):
        """Expanded starts are within tolerance of the replaced trips."""
        config = TidyConfig(progress_bar=False, n_workers=1, frequency_start_tolerance=10)
        starts = [9 * 3600, 9 * 3600 + 600, 9 * 3600 + 1205, 9 * 3600 + 1800]
        trips = add_trips(simple_feed, starts)
        minimize_frequencies(simple_feed, config, ProcessingStats())

        (block,) = trips[0].frequencies
        assert block.exact_times is False
        expanded = block.expand()
        assert len(expanded) == len(starts)
        assert all(abs(a - b) <= 10 for a, b in zip(expanded, starts))

    def test_min_trips_respected(self, simple_feed):
        config = TidyConfig(progress_bar=False, n_workers=1, min_frequency_trips=4)
        add_trips(simple_feed, [9 * 3600, 9 * 3600 + 600, 9 * 3600 + 1200])
        before = set(simple_feed.trips)
        minimize_frequencies(simple_feed, config, ProcessingStats())
        assert set(simple_feed.trips) == before


class TestProgressionProperties:
    """Property-based tests for progression search."""

    @given(
        st.lists(st.integers(min_value=0, max_value=86400), min_size=0, max_size=25, unique=True),
        st.integers(min_value=0, max_value=30),
    )
    @settings(max_examples=100, deadline=None)
    def test_progression_members_fit_headway(self, starts, tolerance):
        starts = sorted(starts)
        chain = find_progression(starts, tolerance)
        if not chain:
            return
        assert chain == sorted(set(chain))
        first = starts[chain[0]]
        headway = starts[chain[1]] - first
        for k, pos in enumerate(chain):
            assert abs(starts[pos] - (first + k * headway)) <= tolerance

    @given(
        st.lists(st.integers(min_value=0, max_value=7200), min_size=0, max_size=20),
        st.integers(min_value=0, max_value=30),
    )
    @settings(max_examples=100, deadline=None)
    def test_as_long_as_exhaustive_search(self, starts, tolerance):
        starts = sorted(starts)
        longest = 0
        for i in range(len(starts)):
            for j in range(i + 1, len(starts)):
                if starts[j] - starts[i] > 2 * tolerance:
                    longest = max(longest, len(_extend(starts, i, j, tolerance)))
        assert len(find_progression(starts, tolerance)) == longest
