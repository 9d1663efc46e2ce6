"""
Tests for time-range resolution.

A fixed reference instant is used everywhere: Wednesday 2024-05-15 10:30 UTC.
"""

import pandas as pd
import pytest

from calcmetric.exceptions import ConfigError
from calcmetric.time_ranges import (
    TIME_RANGES,
    TimeWindow,
    biennium_start,
    parse_any_date,
    quarter_start,
    resolve_time_range,
    week_start,
)


NOW = pd.Timestamp("2024-05-15 10:30:00", tz="UTC")

DAILY_ALL = {
    "CALC_WEEK_DAILY": "y",
    "CALC_MONTH_DAILY": "y",
    "CALC_QUARTER_DAILY": "y",
    "CALC_YEAR_DAILY": "y",
    "CALC_YEAR2_DAILY": "y",
}


def ts(s: str) -> pd.Timestamp:
    return pd.Timestamp(s, tz="UTC")


def window(code: str, env=None, now=NOW) -> tuple[pd.Timestamp, pd.Timestamp]:
    w = resolve_time_range(code, env or {}, now=now)
    return w.date_from, w.date_to


# ============================================================================
# Calendar-aligned windows
# ============================================================================


@pytest.mark.parametrize(
    "code, expected_from, expected_to",
    [
        ("7d", "2024-05-06", "2024-05-13"),
        ("7dp", "2024-04-29", "2024-05-06"),
        ("30d", "2024-04-01", "2024-05-01"),
        ("30dp", "2024-03-01", "2024-04-01"),
        ("q", "2024-01-01", "2024-04-01"),
        ("qp", "2023-10-01", "2024-01-01"),
        ("y", "2023-01-01", "2024-01-01"),
        ("yp", "2022-01-01", "2023-01-01"),
        ("2y", "2022-01-01", "2024-01-01"),
        ("2yp", "2020-01-01", "2022-01-01"),
        ("ty", "2024-01-01", "2024-05-15"),
        ("typ", "2023-08-19", "2024-01-01"),
        ("a", "1970-01-01", "2100-01-01"),
    ],
)
def test_calendar_windows(code, expected_from, expected_to):
    assert window(code) == (ts(expected_from), ts(expected_to))


@pytest.mark.parametrize(
    "code, expected_from, expected_to",
    [
        ("7d", "2024-05-08", "2024-05-15"),
        ("7dp", "2024-05-01", "2024-05-08"),
        ("30d", "2024-04-15", "2024-05-15"),
        ("30dp", "2024-03-16", "2024-04-15"),
        ("q", "2024-02-15", "2024-05-15"),
        ("qp", "2023-11-15", "2024-02-15"),
        ("y", "2023-05-15", "2024-05-15"),
        ("2y", "2022-05-15", "2024-05-15"),
    ],
)
def test_daily_windows(code, expected_from, expected_to):
    assert window(code, DAILY_ALL) == (ts(expected_from), ts(expected_to))


def test_daily_toggle_is_per_range():
    """CALC_WEEK_DAILY must not affect the monthly window."""
    env = {"CALC_WEEK_DAILY": "y"}
    assert window("7d", env) == (ts("2024-05-08"), ts("2024-05-15"))
    assert window("30d", env) == (ts("2024-04-01"), ts("2024-05-01"))


def test_biennium_in_odd_year():
    assert window("2y", now=ts("2025-03-02")) == (ts("2022-01-01"), ts("2024-01-01"))
    assert biennium_start(ts("2025-12-31")) == ts("2024-01-01")


# ============================================================================
# Properties over all codes
# ============================================================================


REFERENCE_TIMES = [
    ts("2024-05-15 10:30"),
    ts("2023-12-31 23:59"),
    ts("2024-02-29 00:00"),
    ts("2025-07-06 12:00"),  # a Sunday
]


@pytest.mark.parametrize("now", REFERENCE_TIMES)
@pytest.mark.parametrize("env", [{}, DAILY_ALL])
def test_all_windows_day_aligned_and_ordered(now, env):
    for code in TIME_RANGES:
        if code == "c":
            continue
        dtf, dtt = window(code, env, now)
        for bound in (dtf, dtt):
            assert bound == bound.normalize(), f"{code}: {bound} not day aligned"
            assert str(bound.tz) == "UTC"
        assert dtf < dtt, f"{code}: {dtf} >= {dtt}"


@pytest.mark.parametrize("code", ["ty", "typ"])
def test_this_year_is_empty_on_january_first(code):
    # [Jan 1, Jan 1): the only windows allowed to have date_from == date_to
    for now in (ts("2024-01-01 00:00"), ts("2024-01-01 23:59")):
        assert window(code, now=now) == (ts("2024-01-01"), ts("2024-01-01"))


@pytest.mark.parametrize("env", [{}, DAILY_ALL])
def test_other_windows_ordered_on_january_first(env):
    now = ts("2024-01-01 08:00")
    for code in TIME_RANGES:
        if code in ("c", "ty", "typ"):
            continue
        dtf, dtt = window(code, env, now)
        assert dtf < dtt, f"{code}: {dtf} >= {dtt}"


@pytest.mark.parametrize("now", REFERENCE_TIMES)
@pytest.mark.parametrize("env", [{}, DAILY_ALL])
@pytest.mark.parametrize("code", ["7d", "30d", "q", "y", "2y", "ty"])
def test_previous_window_is_adjacent_and_earlier(code, env, now):
    cur_from, cur_to = window(code, env, now)
    prev_from, prev_to = window(code + "p", env, now)

    assert prev_to == cur_from
    assert prev_from < prev_to
    if code in ("7d", "ty") or (code == "30d" and env):
        assert prev_to - prev_from == cur_to - cur_from


# ============================================================================
# Custom range and parsing
# ============================================================================


def test_custom_range_month_precision():
    env = {"DATE_FROM": "2023-10", "DATE_TO": "2023-11"}
    assert window("c", env) == (ts("2023-10-01"), ts("2023-11-01"))


def test_custom_range_truncates_to_day():
    env = {"DATE_FROM": "2023-10-05 13:45:10", "DATE_TO": "2023-10-07T01:02:03Z"}
    assert window("c", env) == (ts("2023-10-05"), ts("2023-10-07"))


@pytest.mark.parametrize("missing", ["DATE_FROM", "DATE_TO"])
def test_custom_range_requires_both_bounds(missing):
    env = {"DATE_FROM": "2023-10", "DATE_TO": "2023-11"}
    del env[missing]
    with pytest.raises(ConfigError, match=missing):
        resolve_time_range("c", env, now=NOW)


def test_custom_range_bad_date():
    with pytest.raises(ConfigError, match="cannot parse date"):
        resolve_time_range("c", {"DATE_FROM": "10/01/2023", "DATE_TO": "2023-11"}, now=NOW)


@pytest.mark.parametrize("code", ["", "1d", "p", "30", "cp", "ap", "Q"])
def test_unknown_time_range(code):
    with pytest.raises(ConfigError, match="unknown time range"):
        resolve_time_range(code, {}, now=NOW)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2023-10-05T01:02:03Z", "2023-10-05 01:02:03"),
        ("2023-10-05 01:02:03", "2023-10-05 01:02:03"),
        ("2023-10-05 01:02", "2023-10-05 01:02:00"),
        ("2023-10-05 01", "2023-10-05 01:00:00"),
        ("2023-10-05", "2023-10-05"),
        ("2023-10", "2023-10-01"),
        ("2023", "2023-01-01"),
    ],
)
def test_parse_any_date(value, expected):
    assert parse_any_date(value) == ts(expected)


@pytest.mark.parametrize("value", ["2023-1", "2023-10-5", "2023-10-05 1:02", "23-10-05", " "])
def test_parse_any_date_requires_padded_fields(value):
    with pytest.raises(ConfigError, match="cannot parse date"):
        parse_any_date(value)


def test_helpers():
    assert week_start(ts("2024-05-19 23:00")) == ts("2024-05-13")
    assert week_start(ts("2024-05-13 00:00")) == ts("2024-05-13")
    assert quarter_start(ts("2024-12-31")) == ts("2024-10-01")


def test_time_window_formatting():
    w = TimeWindow(ts("2023-10-01"), ts("2023-11-01"))
    assert w.quoted() == ("'2023-10-01'", "'2023-11-01'")
    assert str(w) == "2023-10-01 - 2023-11-01"
    assert w.from_date.isoformat() == "2023-10-01"
