"""
Date and timespan helpers.

All calendar logic (day boundaries, day buckets) happens in the configured
timezone; timestamps are epoch seconds as Slack reports them.
"""

import re
from datetime import date, datetime, time, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo

from slack_summarizer.core.models import TimeRange

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_RANGE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})\.\.(\d{4}-\d{2}-\d{2})$")


def _midnight(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def _parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as e:
        raise ValueError(f"Invalid date: {value}") from e


def parse_timespan(spec: str, tz: ZoneInfo, now: Optional[datetime] = None) -> TimeRange:
    """
    Resolve a timespan expression to a concrete time range.

    Parameters
    ----------
    spec : str
        One of ``today``, ``yesterday``, ``last-week``, ``YYYY-MM-DD`` or
        ``YYYY-MM-DD..YYYY-MM-DD`` (end date inclusive).
    tz : ZoneInfo
        Timezone that defines calendar days.
    now : datetime, optional
        Reference time, defaults to the current time.

    Returns
    -------
    TimeRange
        Range with timezone-aware bounds.

    Raises
    ------
    ValueError
        If the expression cannot be parsed or the range is inverted.
    """
    now = (now or datetime.now(tz)).astimezone(tz)
    today = _midnight(now.date(), tz)
    spec = spec.strip().lower()

    if spec == "today":
        return TimeRange(start=today, end=now)
    if spec == "yesterday":
        return TimeRange(start=_midnight(now.date() - timedelta(days=1), tz), end=today)
    if spec in ("last-week", "week"):
        return TimeRange(start=_midnight(now.date() - timedelta(days=7), tz), end=now)

    if _DATE_RE.match(spec):
        day = _parse_date(spec)
        return TimeRange(start=_midnight(day, tz), end=_midnight(day + timedelta(days=1), tz))

    match = _RANGE_RE.match(spec)
    if match:
        start_day = _parse_date(match.group(1))
        end_day = _parse_date(match.group(2))
        if end_day < start_day:
            raise ValueError(f"Range end precedes start: {spec}")
        return TimeRange(start=_midnight(start_day, tz), end=_midnight(end_day + timedelta(days=1), tz))

    raise ValueError(
        f"Unrecognized timespan '{spec}'. Use today, yesterday, last-week, "
        "YYYY-MM-DD or YYYY-MM-DD..YYYY-MM-DD"
    )


def day_bucket(ts: float, tz: ZoneInfo) -> str:
    """Calendar day (``YYYY-MM-DD``) a timestamp falls on."""
    return datetime.fromtimestamp(ts, tz).strftime("%Y-%m-%d")


def day_buckets(time_range: TimeRange, tz: ZoneInfo) -> List[str]:
    """All calendar days touched by a time range, in order."""
    first = time_range.start.astimezone(tz).date()
    # end is exclusive
    last = (time_range.end.astimezone(tz) - timedelta(microseconds=1)).date()
    days = []
    current = first
    while current <= last:
        days.append(current.strftime("%Y-%m-%d"))
        current += timedelta(days=1)
    return days


def bucket_bounds(bucket: str, tz: ZoneInfo) -> TimeRange:
    day = _parse_date(bucket)
    return TimeRange(start=_midnight(day, tz), end=_midnight(day + timedelta(days=1), tz))


def start_of_day(ts: float, tz: ZoneInfo) -> float:
    """Epoch seconds of midnight on the day ``ts`` falls on."""
    local = datetime.fromtimestamp(ts, tz)
    return _midnight(local.date(), tz).timestamp()


def is_past_day(bucket: str, tz: ZoneInfo, now: Optional[datetime] = None) -> bool:
    """True when the bucket is a day before the current day in ``tz``."""
    now = (now or datetime.now(tz)).astimezone(tz)
    # YYYY-MM-DD strings sort chronologically
    return bucket < now.strftime("%Y-%m-%d")


def format_ts(ts: float, tz: ZoneInfo) -> str:
    """ISO-8601 representation of an epoch timestamp in ``tz``."""
    return datetime.fromtimestamp(ts, tz).isoformat()
