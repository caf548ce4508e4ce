"""Tests for timezone utilities in datetime_utils."""

from datetime import UTC, date, datetime, time
from zoneinfo import ZoneInfo

import pytest

from junto.core.datetime_utils import (
    has_time_of_day_passed,
    is_weekend,
    local_date_now,
    local_now,
    local_time_now,
    normalize_date,
    parse_send_time,
    resolve_timezone,
)
from junto.core.exceptions import InvalidTimeFormat, InvalidTimezone

# Tuesday 2026-01-13, 07:03 in New York (EST, UTC-5)
NY_TUESDAY_MORNING = datetime(2026, 1, 13, 12, 3, tzinfo=UTC)


class TestResolveTimezone:
    """Tests for resolve_timezone."""

    def test_returns_zoneinfo(self):
        assert resolve_timezone("America/New_York") == ZoneInfo("America/New_York")

    def test_strips_whitespace(self):
        assert resolve_timezone("  Europe/London ") == ZoneInfo("Europe/London")

    def test_unknown_name_raises(self):
        with pytest.raises(InvalidTimezone) as exc_info:
            resolve_timezone("Mars/Olympus_Mons")
        assert exc_info.value.timezone == "Mars/Olympus_Mons"

    def test_empty_name_raises(self):
        with pytest.raises(InvalidTimezone):
            resolve_timezone("")
        with pytest.raises(InvalidTimezone):
            resolve_timezone(None)


class TestLocalReadings:
    """Tests for local_now, local_time_now, local_date_now and is_weekend."""

    def test_local_time_in_new_york(self):
        """12:03 UTC in January is 07:03 in New York."""
        assert local_time_now("America/New_York", NY_TUESDAY_MORNING) == time(7, 3)

    def test_local_date_differs_across_date_line(self):
        """The same instant can be a different calendar date in another zone."""
        instant = datetime(2026, 1, 13, 20, 0, tzinfo=UTC)
        assert local_date_now("America/Los_Angeles", instant) == date(2026, 1, 13)
        assert local_date_now("Pacific/Auckland", instant) == date(2026, 1, 14)

    def test_naive_now_is_read_as_utc(self):
        naive = datetime(2026, 1, 13, 12, 3)
        assert local_time_now("America/New_York", naive) == time(7, 3)

    def test_accepts_zoneinfo(self):
        zone = ZoneInfo("Asia/Tokyo")
        assert local_now(zone, NY_TUESDAY_MORNING).tzinfo == zone

    def test_invalid_timezone_raises(self):
        with pytest.raises(InvalidTimezone):
            local_time_now("Nowhere/Special", NY_TUESDAY_MORNING)

    def test_local_time_has_no_microseconds(self):
        instant = datetime(2026, 1, 13, 12, 3, 7, 123456, tzinfo=UTC)
        assert local_time_now("UTC", instant) == time(12, 3, 7)

    def test_dst_offsets_come_from_tz_database(self):
        """Los Angeles is UTC-8 before the March 2024 change and UTC-7 after."""
        before = datetime(2024, 3, 9, 17, 0, tzinfo=UTC)
        after = datetime(2024, 3, 11, 16, 0, tzinfo=UTC)
        assert local_time_now("America/Los_Angeles", before) == time(9, 0)
        assert local_time_now("America/Los_Angeles", after) == time(9, 0)

    def test_is_weekend(self):
        saturday = datetime(2026, 1, 17, 12, 3, tzinfo=UTC)
        assert is_weekend("America/New_York", saturday) is True
        assert is_weekend("America/New_York", NY_TUESDAY_MORNING) is False

    def test_is_weekend_uses_local_weekday(self):
        """Friday evening in Los Angeles is already Saturday in UTC."""
        instant = datetime(2026, 1, 17, 3, 0, tzinfo=UTC)
        assert is_weekend("UTC", instant) is True
        assert is_weekend("America/Los_Angeles", instant) is False


class TestParseSendTime:
    """Tests for parse_send_time."""

    def test_valid_formats(self):
        assert parse_send_time("08:00") == time(8, 0)
        assert parse_send_time("07:00:00") == time(7, 0)
        assert parse_send_time("12:22:00") == time(12, 22)
        assert parse_send_time("23:59:59") == time(23, 59, 59)
        assert parse_send_time("00:00") == time(0, 0)

    def test_unpadded_components_are_accepted(self):
        """Stored values are taken as typed, so '9:5' means 09:05."""
        assert parse_send_time("9:5") == time(9, 5)
        assert parse_send_time("7:00") == time(7, 0)

    def test_time_object_passes_through(self):
        assert parse_send_time(time(6, 30)) == time(6, 30)

    @pytest.mark.parametrize("raw", ["", "invalid", "25:00", "12:60", "12:00:61", "8", "8am", None])
    def test_invalid_formats_raise(self, raw):
        with pytest.raises(InvalidTimeFormat):
            parse_send_time(raw)


class TestHasTimeOfDayPassed:
    """Tests for has_time_of_day_passed."""

    def test_before_preferred_time(self):
        assert has_time_of_day_passed("07:00:00", time(6, 59, 59)) is False

    def test_exactly_at_preferred_time(self):
        assert has_time_of_day_passed("07:00:00", time(7, 0)) is True

    def test_after_preferred_time(self):
        assert has_time_of_day_passed("07:00", time(23, 59)) is True

    def test_seconds_are_ignored(self):
        """Minute granularity: 07:00:30 preferred is reached at 07:00:00."""
        assert has_time_of_day_passed("07:00:30", time(7, 0, 0)) is True

    def test_invalid_preferred_raises(self):
        with pytest.raises(InvalidTimeFormat):
            has_time_of_day_passed("soon", time(7, 0))


class TestNormalizeDate:
    """Tests for normalize_date."""

    def test_canonical_format(self):
        assert normalize_date("2026-02-03") == date(2026, 2, 3)

    def test_iso_datetime(self):
        assert normalize_date("2026-02-03T07:05:00+00:00") == date(2026, 2, 3)

    def test_loose_legacy_formats(self):
        assert normalize_date("Tue Feb 03 2026") == date(2026, 2, 3)
        assert normalize_date("02/03/2026") == date(2026, 2, 3)
        assert normalize_date("February 3, 2026") == date(2026, 2, 3)

    def test_date_object_passes_through(self):
        assert normalize_date(date(2026, 2, 3)) == date(2026, 2, 3)

    def test_unparseable_returns_none(self):
        assert normalize_date(None) is None
        assert normalize_date("") is None
        assert normalize_date("   ") is None
        assert normalize_date("yesterday") is None
        assert normalize_date("2026-13-45") is None

