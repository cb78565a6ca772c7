"""Tests for the service minimizer."""

from datetime import date, timedelta

from hypothesis import given, settings, strategies as st

from feedtidy.graph import Service
from feedtidy.modules import minimize_services
from feedtidy.modules.minimize_services import best_coverage, minimize_service
from feedtidy.types import ProcessingStats

from conftest import WEEKDAYS_ONLY

JAN_1 = date(2024, 1, 1)


def january_weekdays():
    return {JAN_1 + timedelta(days=i) for i in range(31) if (JAN_1 + timedelta(days=i)).weekday() < 5}


class TestBestCoverage:
    """Tests for best_coverage."""

    def test_full_weeks_become_a_single_row(self):
        coverage = best_coverage(january_weekdays())
        assert coverage.days == WEEKDAYS_ONLY
        assert coverage.start_date == JAN_1
        assert coverage.end_date == date(2024, 1, 31)
        assert coverage.exceptions == {}
        assert coverage.cost == 1

    def test_holiday_becomes_removal(self):
        active = january_weekdays() - {date(2024, 1, 15)}
        coverage = best_coverage(active)
        assert coverage.days == WEEKDAYS_ONLY
        assert coverage.exceptions == {date(2024, 1, 15): False}
        assert coverage.cost == 2

    def test_sparse_dates_stay_listed(self):
        """Two unrelated dates are cheapest as plain additions."""
        active = {date(2024, 1, 3), date(2024, 2, 20)}
        coverage = best_coverage(active)
        assert coverage.start_date is None
        assert coverage.exceptions == {d: True for d in sorted(active)}

    def test_empty_set(self):
        coverage = best_coverage(set())
        assert coverage.cost == 0


class TestMinimizeService:
    """Tests for minimize_service and minimize_services."""

    def test_exception_list_compressed(self):
        service = Service("S", exceptions={d: True for d in january_weekdays()})
        assert minimize_service(service)
        assert service.entry_count() == 1
        assert service.active_dates() == january_weekdays()

    def test_minimal_service_unchanged(self, weekday_service):
        assert not minimize_service(weekday_service)
        assert weekday_service.start_date == JAN_1
        assert weekday_service.exceptions == {}

    def test_empty_service_keeps_one_row(self):
        """A service that never runs is reduced to one all-false row."""
        service = Service("S", WEEKDAYS_ONLY, JAN_1, JAN_1, exceptions={JAN_1: False})
        assert minimize_service(service)
        assert service.entry_count() == 1
        assert service.days == (False,) * 7
        assert service.active_dates() == set()

    def test_minimize_services_stats(self, simple_feed, default_config):
        simple_feed.services["X"] = Service("X", exceptions={d: True for d in january_weekdays()})
        stats = ProcessingStats()
        minimize_services(simple_feed, default_config, stats)

        assert stats.services_minimized == 1
        assert stats.service_entries_before == 1 + 23
        assert stats.service_entries_after == 2


@st.composite
def date_sets(draw):
    offsets = draw(st.sets(st.integers(min_value=0, max_value=90), max_size=60))
    return {JAN_1 + timedelta(days=o) for o in offsets}


@st.composite
def services(draw):
    """Arbitrary services: optional weekly range plus exceptions."""
    service = Service("S")
    if draw(st.booleans()):
        start = JAN_1 + timedelta(days=draw(st.integers(min_value=0, max_value=60)))
        service.days = tuple(draw(st.lists(st.booleans(), min_size=7, max_size=7)))
        service.start_date = start
        service.end_date = start + timedelta(days=draw(st.integers(min_value=0, max_value=60)))
    for offset in draw(st.sets(st.integers(min_value=0, max_value=120), max_size=20)):
        service.exceptions[JAN_1 + timedelta(days=offset)] = draw(st.booleans())
    return service


class TestServiceProperties:
    """Property-based tests for service minimization."""

    @given(date_sets())
    @settings(max_examples=100, deadline=None)
    def test_coverage_reproduces_dates(self, active):
        """The chosen representation expands to exactly the input set."""
        coverage = best_coverage(active)
        assert coverage.as_service("X").active_dates() == active
        assert coverage.cost <= len(active)

    @given(services())
    @settings(max_examples=100, deadline=None)
    def test_minimize_preserves_active_dates(self, service):
        """Minimizing never changes when a service runs and never grows it."""
        active = service.active_dates()
        before = service.entry_count()
        minimize_service(service)
        assert service.active_dates() == active
        assert service.entry_count() <= before
