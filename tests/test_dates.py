"""
Tests for timespan parsing and day buckets.
"""
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from slack_summarizer.core.dates import (
    bucket_bounds,
    day_bucket,
    day_buckets,
    format_ts,
    is_past_day,
    parse_timespan,
    start_of_day,
)
from slack_summarizer.core.models import TimeRange

LA = ZoneInfo("America/Los_Angeles")
NOW = datetime(2024, 3, 15, 14, 30, tzinfo=LA)


class TestParseTimespan:
    """Timespan expressions."""

    def test_today(self):
        tr = parse_timespan("today", LA, now=NOW)
        assert tr.start == datetime(2024, 3, 15, tzinfo=LA)
        assert tr.end == NOW

    def test_yesterday(self):
        tr = parse_timespan("yesterday", LA, now=NOW)
        assert tr.start == datetime(2024, 3, 14, tzinfo=LA)
        assert tr.end == datetime(2024, 3, 15, tzinfo=LA)

    def test_last_week(self):
        tr = parse_timespan("last-week", LA, now=NOW)
        assert tr.start == datetime(2024, 3, 8, tzinfo=LA)
        assert tr.end == NOW

    def test_single_date(self):
        tr = parse_timespan("2024-01-10", LA, now=NOW)
        assert tr.start == datetime(2024, 1, 10, tzinfo=LA)
        assert tr.end == datetime(2024, 1, 11, tzinfo=LA)

    def test_date_range_end_inclusive(self):
        tr = parse_timespan("2024-01-10..2024-01-12", LA, now=NOW)
        assert tr.start == datetime(2024, 1, 10, tzinfo=LA)
        assert tr.end == datetime(2024, 1, 13, tzinfo=LA)

    def test_case_and_whitespace(self):
        assert parse_timespan("  Today ", LA, now=NOW).end == NOW

    def test_now_in_other_timezone_converted(self):
        utc_now = datetime(2024, 3, 15, 3, 0, tzinfo=ZoneInfo("UTC"))  # 2024-03-14 20:00 in LA
        tr = parse_timespan("today", LA, now=utc_now)
        assert tr.start == datetime(2024, 3, 14, tzinfo=LA)

    @pytest.mark.parametrize("spec", ["tomorrow", "2024-13-01", "2024-01-12..2024-01-10", "", "2024-1-1"])
    def test_invalid(self, spec):
        with pytest.raises(ValueError):
            parse_timespan(spec, LA, now=NOW)


class TestDayBuckets:
    """Calendar-day bucketing."""

    def test_single_day(self):
        tr = parse_timespan("2024-01-10", LA)
        assert day_buckets(tr, LA) == ["2024-01-10"]

    def test_range(self):
        tr = parse_timespan("2024-02-28..2024-03-01", LA)
        assert day_buckets(tr, LA) == ["2024-02-28", "2024-02-29", "2024-03-01"]

    def test_partial_days(self):
        tr = TimeRange(start=datetime(2024, 1, 10, 23, tzinfo=LA), end=datetime(2024, 1, 11, 1, tzinfo=LA))
        assert day_buckets(tr, LA) == ["2024-01-10", "2024-01-11"]

    def test_bucket_depends_on_timezone(self):
        ts = datetime(2024, 1, 10, 3, tzinfo=ZoneInfo("UTC")).timestamp()
        assert day_bucket(ts, ZoneInfo("UTC")) == "2024-01-10"
        assert day_bucket(ts, LA) == "2024-01-09"

    def test_bucket_bounds(self):
        bounds = bucket_bounds("2024-01-10", LA)
        assert bounds.start == datetime(2024, 1, 10, tzinfo=LA)
        assert bounds.end == datetime(2024, 1, 11, tzinfo=LA)

    def test_start_of_day(self):
        ts = datetime(2024, 1, 10, 15, 45, tzinfo=LA).timestamp()
        assert start_of_day(ts, LA) == datetime(2024, 1, 10, tzinfo=LA).timestamp()

    def test_is_past_day(self):
        assert is_past_day("2024-03-14", LA, now=NOW)
        assert is_past_day("2023-12-31", LA, now=NOW)
        assert not is_past_day("2024-03-15", LA, now=NOW)
        assert not is_past_day("2024-03-16", LA, now=NOW)


def test_format_ts():
    ts = datetime(2024, 1, 10, 12, tzinfo=ZoneInfo("UTC")).timestamp()
    assert format_ts(ts, ZoneInfo("UTC")) == "2024-01-10T12:00:00+00:00"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
