# src/calcmetric/freshness.py
"""
Freshness tracking.

A computation is identified by (project_slug, time_range, date_from, date_to).
It is "computed" when the destination table holds at least one row with that
exact key; the rows' last_calculated_at is the freshness timestamp.

A missing destination table is not an error: it means "not computed yet"
and the table will be created by the computation.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.engine import Engine

from calcmetric.config import CalcMetricConfig
from calcmetric.db import execute, is_undefined_table, quote_ident
from calcmetric.exceptions import StorageError
from calcmetric.time_ranges import TimeWindow, day_start, resolve_time_range


logger = logging.getLogger(__name__)


def freshness_sql(table: str) -> str:
    return (
        f"SELECT last_calculated_at FROM {quote_ident(table)} "
        "WHERE project_slug = :project_slug AND time_range = :time_range "
        "AND date_from = :date_from AND date_to = :date_to LIMIT 1"
    )


def is_computed(
    engine: Engine,
    table: str,
    project_slug: str,
    time_range: str,
    window: TimeWindow,
) -> bool:
    """
    Return True iff the table holds a row for the exact key quadruple.

    Raises:
        StorageError: any failure other than an undefined table
    """
    window = TimeWindow(day_start(window.date_from), day_start(window.date_to))
    params = {
        "project_slug": project_slug,
        "time_range": time_range,
        "date_from": window.from_date,
        "date_to": window.to_date,
    }

    try:
        with engine.connect() as conn:
            row = execute(conn, freshness_sql(table), params, quiet_errors=True).fetchone()
    except StorageError as e:
        if is_undefined_table(e):
            logger.info(
                "table '%s' does not exist yet, so we need to calculate this metric", table
            )
            return False
        raise

    if row is not None:
        logger.info(
            "table '%s' was last computed at %s for (%s, %s, %s), so calculation is not needed",
            table,
            row[0],
            project_slug,
            time_range,
            window,
        )
        return True

    logger.info(
        "table '%s' present, but it needs calculation for (%s, %s, %s)",
        table,
        project_slug,
        time_range,
        window,
    )
    return False


def needs_calculation(
    engine: Engine,
    config: CalcMetricConfig,
    table: str,
    *,
    now: Optional[datetime] = None,
) -> tuple[bool, TimeWindow]:
    """
    Resolve the configured window and check whether it still has to be computed.

    FORCE_CALC is not consulted here; the runner applies it after any
    delete + re-check.
    """
    window = resolve_time_range(config.time_range, config.env, now=now)
    computed = is_computed(engine, table, config.project_slug, config.time_range, window)
    return not computed, window
