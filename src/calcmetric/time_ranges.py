# src/calcmetric/time_ranges.py
"""
Time-range resolution: symbolic code -> half-open [date_from, date_to) window.

Codes
-----
7d / 7dp    last full week (Monday based), or last 7 days with CALC_WEEK_DAILY
30d / 30dp  last calendar month, or last 30 days with CALC_MONTH_DAILY
q / qp      last calendar quarter, or last 3 months with CALC_QUARTER_DAILY
y / yp      last calendar year, or last year with CALC_YEAR_DAILY
2y / 2yp    last even-aligned biennium, or last 2 years with CALC_YEAR2_DAILY
ty / typ    Jan 1 -> today (typ: shifted back by its own length)
a           all time: 1970-01-01 -> 2100-01-01
c           custom: DATE_FROM / DATE_TO (tolerant format parsing)

The "p" suffix shifts the whole window back by one window length, so the
previous window ends exactly where the current one starts.

All bounds are tz-aware UTC pandas Timestamps at midnight.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Mapping, Optional

import pandas as pd

from calcmetric.exceptions import ConfigError


logger = logging.getLogger(__name__)

# Tried in order, most specific first.
DATE_FORMATS = (
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d %H",
    "%Y-%m-%d",
    "%Y-%m",
    "%Y",
)

ALL_TIME_FROM = "1970"
ALL_TIME_TO = "2100"


# -----------------------------
# Day-aligned helpers
# -----------------------------


def _utc(ts) -> pd.Timestamp:
    ts = pd.Timestamp(ts)
    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


def day_start(ts) -> pd.Timestamp:
    return _utc(ts).normalize()


def week_start(ts) -> pd.Timestamp:
    """Monday of the week containing ts."""
    d = day_start(ts)
    return d - pd.Timedelta(days=d.weekday())


def month_start(ts) -> pd.Timestamp:
    return day_start(ts).replace(day=1)


def quarter_start(ts) -> pd.Timestamp:
    d = day_start(ts)
    return d.replace(month=((d.month - 1) // 3) * 3 + 1, day=1)


def year_start(ts) -> pd.Timestamp:
    return day_start(ts).replace(month=1, day=1)


def biennium_start(ts) -> pd.Timestamp:
    """Jan 1 of the most recent even year."""
    d = year_start(ts)
    if d.year % 2 == 1:
        d = d.replace(year=d.year - 1)
    return d


def parse_any_date(value: str) -> pd.Timestamp:
    """
    Parse 'YYYY-MM-DD HH:MI:SS' dropping parts from the right until only
    'YYYY' is left. Naive results are taken as UTC.

    Fields must be zero padded: '2023-01' parses, '2023-1' does not.
    """
    s = value.strip()
    for fmt in DATE_FORMATS:
        try:
            parsed = datetime.strptime(s, fmt)
        except ValueError:
            continue
        # strptime accepts unpadded fields; only an exact round trip counts
        if parsed.strftime(fmt) == s:
            return _utc(parsed)
    raise ConfigError(f"cannot parse date: '{value}'")


# -----------------------------
# Window type
# -----------------------------


@dataclass(frozen=True)
class TimeWindow:
    """Half-open [date_from, date_to) window, both bounds UTC midnight."""

    date_from: pd.Timestamp
    date_to: pd.Timestamp

    @property
    def from_date(self) -> date:
        return self.date_from.date()

    @property
    def to_date(self) -> date:
        return self.date_to.date()

    @property
    def from_ymd(self) -> str:
        return self.date_from.strftime("%Y-%m-%d")

    @property
    def to_ymd(self) -> str:
        return self.date_to.strftime("%Y-%m-%d")

    def quoted(self) -> tuple[str, str]:
        """SQL literals used for {{date_from}} / {{date_to}}."""
        return f"'{self.from_ymd}'", f"'{self.to_ymd}'"

    def __str__(self) -> str:
        return f"{self.from_ymd} - {self.to_ymd}"


# -----------------------------
# Range policies
# -----------------------------


@dataclass(frozen=True)
class _RangePolicy:
    daily_key: str
    daily_offset: pd.DateOffset
    calendar_offset: pd.DateOffset
    anchor: Callable[[pd.Timestamp], pd.Timestamp]


_POLICIES: dict[str, _RangePolicy] = {
    "7d": _RangePolicy("CALC_WEEK_DAILY", pd.DateOffset(days=7), pd.DateOffset(days=7), week_start),
    "30d": _RangePolicy("CALC_MONTH_DAILY", pd.DateOffset(days=30), pd.DateOffset(months=1), month_start),
    "q": _RangePolicy("CALC_QUARTER_DAILY", pd.DateOffset(months=3), pd.DateOffset(months=3), quarter_start),
    "y": _RangePolicy("CALC_YEAR_DAILY", pd.DateOffset(years=1), pd.DateOffset(years=1), year_start),
    "2y": _RangePolicy("CALC_YEAR2_DAILY", pd.DateOffset(years=2), pd.DateOffset(years=2), biennium_start),
}

TIME_RANGES = (
    "7d", "7dp", "30d", "30dp", "q", "qp", "ty", "typ",
    "y", "yp", "2y", "2yp", "a", "c",
)


def _policy_window(code: str, env: Mapping[str, str], now: pd.Timestamp) -> TimeWindow:
    previous = code.endswith("p")
    policy = _POLICIES[code[:-1] if previous else code]

    if policy.daily_key in env:
        offset = policy.daily_offset
        dtt = day_start(now)
    else:
        offset = policy.calendar_offset
        dtt = policy.anchor(now)
    dtf = dtt - offset

    if previous:
        dtf = dtf - offset
        dtt = dtt - offset

    return TimeWindow(day_start(dtf), day_start(dtt))


def _this_year_window(code: str, now: pd.Timestamp) -> TimeWindow:
    dtt = day_start(now)
    dtf = year_start(now)
    if code == "typ":
        diff = dtt - dtf
        dtf = dtf - diff
        dtt = dtt - diff
    return TimeWindow(dtf, dtt)


def _custom_window(env: Mapping[str, str]) -> TimeWindow:
    for key in ("DATE_FROM", "DATE_TO"):
        if key not in env:
            raise ConfigError(f"you must specify {key} when using TIME_RANGE=c")
    return TimeWindow(
        day_start(parse_any_date(env["DATE_FROM"])),
        day_start(parse_any_date(env["DATE_TO"])),
    )


def resolve_time_range(
    code: str,
    env: Optional[Mapping[str, str]] = None,
    *,
    now: Optional[datetime] = None,
) -> TimeWindow:
    """
    Resolve a time-range code to a concrete window.

    Args:
        code: Time-range code (see module docstring)
        env: Configuration mapping (daily toggles, DATE_FROM/DATE_TO for "c")
        now: Reference instant (default: current UTC time)

    Raises:
        ConfigError: unknown code, missing or unparseable custom bounds
    """
    env = env or {}
    ref = pd.Timestamp.now(tz="UTC") if now is None else _utc(now)

    if code in ("ty", "typ"):
        window = _this_year_window(code, ref)
    elif code == "a":
        window = TimeWindow(parse_any_date(ALL_TIME_FROM), parse_any_date(ALL_TIME_TO))
    elif code == "c":
        window = _custom_window(env)
    elif code.rstrip("p") in _POLICIES and code in TIME_RANGES:
        window = _policy_window(code, env, ref)
    else:
        raise ConfigError(f"unknown time range: '{code}'")

    logger.info("checking for time range %s", window)
    return window
