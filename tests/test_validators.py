"""
Tests for input parsing utilities
"""

from datetime import date, datetime, time, timezone

import pytest

from cleaning_schedule.domain.recurrence.entities import Frequency, RuleStatus, ServiceType
from cleaning_schedule.shared.validators import (
    TICKS_PER_DAY,
    clean_text,
    parse_frequency,
    parse_service_type,
    parse_status,
    parse_time_of_day,
    parse_window_bound,
    time_to_ticks,
)


class TestTimeOfDay:
    """Tests for time of day parsing"""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("10:00", time(10, 0)),
            ("7:05", time(7, 5)),
            (" 23:59:30 ", time(23, 59, 30)),
            ({"ticks": 0}, time(0, 0)),
            ({"ticks": 360_000_000_000}, time(10, 0)),
            ({"ticks": 369_000_000_000}, time(10, 15)),
            (time(8, 30), time(8, 30)),
        ],
    )
    def test_valid_values(self, value, expected):
        assert parse_time_of_day(value) == expected

    @pytest.mark.parametrize(
        "value",
        [
            "24:00",
            "10:60",
            "10",
            "ten",
            {"ticks": TICKS_PER_DAY},
            {"ticks": -1},
            {"ticks": "360000000000"},
            {},
            time(9, 0, tzinfo=timezone.utc),
            36000,
        ],
    )
    def test_invalid_values(self, value):
        with pytest.raises(ValueError):
            parse_time_of_day(value)

    def test_ticks_roundtrip_for_minutes(self):
        assert time_to_ticks(time(10, 15)) == 369_000_000_000
        assert parse_time_of_day({"ticks": time_to_ticks(time(17, 45))}) == time(17, 45)


class TestCodedChoices:
    """Tests for enum names and dashboard codes"""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("weekly", Frequency.WEEKLY),
            ("Monthly", Frequency.MONTHLY),
            ("bi-weekly", Frequency.BIWEEKLY),
            ("fortnightly", Frequency.BIWEEKLY),
            ("daily", Frequency.DAILY),
            (1, Frequency.WEEKLY),
            (2, Frequency.BIWEEKLY),
            (5, Frequency.YEARLY),
            ("4", Frequency.QUARTERLY),
            (Frequency.MONTHLY, Frequency.MONTHLY),
        ],
    )
    def test_frequency(self, value, expected):
        assert parse_frequency(value) == expected

    @pytest.mark.parametrize("value", ["hourly", 0, 6, True, None, 1.5])
    def test_invalid_frequency(self, value):
        with pytest.raises(ValueError):
            parse_frequency(value)

    def test_service_type(self):
        assert parse_service_type("deep") == ServiceType.DEEP
        assert parse_service_type(3) == ServiceType.SPECIALIZED
        with pytest.raises(ValueError):
            parse_service_type("window washing")

    def test_status(self):
        assert parse_status(0) == RuleStatus.PAUSED
        assert parse_status(1) == RuleStatus.ACTIVE
        assert parse_status("inactive") == RuleStatus.PAUSED
        assert parse_status("cancelled") == RuleStatus.CANCELLED
        with pytest.raises(ValueError):
            parse_status(2)


class TestCleanText:
    def test_strips_and_blanks_to_none(self):
        assert clean_text("  Back door  ") == "Back door"
        assert clean_text("   ") is None
        assert clean_text(None) is None

    def test_max_length(self):
        assert clean_text("abc", max_length=3) == "abc"
        with pytest.raises(ValueError):
            clean_text("abcd", max_length=3)


class TestWindowBound:
    def test_bare_date_is_a_whole_day(self):
        assert parse_window_bound("2025-01-06") == date(2025, 1, 6)

    def test_midnight_is_an_instant(self):
        bound = parse_window_bound("2025-01-06T00:00:00")

        assert isinstance(bound, datetime)
        assert bound == datetime(2025, 1, 6, 0, 0)

    @pytest.mark.parametrize(
        "value",
        ["2025-01-06T10:00:00Z", "2025-01-06T12:00:00+02:00", "2025-01-06T05:00:00-05:00"],
    )
    def test_offsets_become_naive_utc(self, value):
        assert parse_window_bound(value) == datetime(2025, 1, 6, 10, 0)

    @pytest.mark.parametrize("value", ["", "next monday", "2025-13-01", "2025-01-06T25:00"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_window_bound(value)
