# src/calcmetric/runner.py
"""
Computation runner: one metric, one project, one time range.

Execution flow:
1. DROP the configured table (optional)
2. Apply the per-project suffix (PPT)
3. Resolve the window and check freshness
4. DELETE (optional); re-check freshness when rows were deleted
5. FORCE_CALC overrides a "fresh" result
6. Render the query, infer the schema, create the table, upsert all rows
7. CLEANUP superseded windows (optional)

The outcome is returned as a CalcResult; errors propagate to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import IntEnum
from typing import Optional

from sqlalchemy.engine import Engine

from calcmetric.config import CalcMetricConfig
from calcmetric.db import get_engine, to_db_identifier
from calcmetric.freshness import needs_calculation
from calcmetric.maintenance import cleanup, delete_rows, drop_table, parse_delete_subset
from calcmetric.materializer import ensure_table
from calcmetric.schema import infer_columns
from calcmetric.template import load_template, render_query
from calcmetric.time_ranges import TimeWindow
from calcmetric.upsert import BatchUpserter, UpsertStats, open_source


logger = logging.getLogger(__name__)


class FinalState(IntEnum):
    FAILED = -1
    SKIPPED = 0
    COMPUTED = 1


@dataclass(frozen=True)
class CalcResult:
    state: FinalState
    table: str
    window: Optional[TimeWindow] = None
    stats: Optional[UpsertStats] = None


def effective_table(config: CalcMetricConfig) -> str:
    """Destination table name, suffixed with the project in PPT mode."""
    if config.ppt:
        return f"{config.table}_{to_db_identifier(config.project_slug)}"
    return config.table


def compute(
    engine: Engine,
    config: CalcMetricConfig,
    table: str,
    window: TimeWindow,
    *,
    calculated_at: Optional[datetime] = None,
) -> UpsertStats:
    """
    Run the metric query and materialize every row into the table.

    Schema problems are raised before any DDL is issued.
    """
    sql = render_query(
        load_template(config.template_path),
        project_slug=config.project_slug,
        window=window,
        limit=config.limit,
        offset=config.offset,
        params=config.params,
    )
    if calculated_at is None:
        calculated_at = datetime.now(timezone.utc).replace(tzinfo=None)

    with open_source(config.conn, sql) as (raw_columns, rows):
        columns = infer_columns(raw_columns, guess_type=config.guess_type)
        ensure_table(
            engine,
            table,
            columns,
            ppt=config.ppt,
            extra_indexes=config.indexed_columns,
        )
        upserter = BatchUpserter(
            engine,
            table,
            columns,
            time_range=config.time_range,
            project_slug=config.project_slug,
            window=window,
            calculated_at=calculated_at,
            max_placeholders=config.max_placeholders,
        )
        return upserter.add_all(rows)


def calc_metric(
    config: CalcMetricConfig,
    *,
    engine: Optional[Engine] = None,
    now: Optional[datetime] = None,
) -> CalcResult:
    """
    Compute one metric if needed.

    Args:
        config: Parsed configuration
        engine: Optional engine (created from config.conn and disposed when omitted)
        now: Reference time for window resolution (default: current UTC time)

    Returns:
        CalcResult with state COMPUTED when at least one row was inserted or
        changed, SKIPPED otherwise.
    """
    delete_subset = parse_delete_subset(config.delete)

    own_engine = engine is None
    if engine is None:
        engine = get_engine(config.conn)

    try:
        if config.drop:
            drop_table(engine, config.table)

        table = effective_table(config)
        needed, window = needs_calculation(engine, config, table, now=now)

        if config.delete:
            deleted = delete_rows(
                engine,
                table,
                delete_subset,
                time_range=config.time_range,
                project_slug=config.project_slug,
                window=window,
            )
            if deleted > 0:
                needed, window = needs_calculation(engine, config, table, now=now)

        if not needed and config.force:
            needed = True
            logger.info(
                "table '%s' doesn't need calculation but it was requested to calculate anyway",
                table,
            )

        if not needed:
            logger.debug("table '%s' doesn't need calculation now", table)
            return CalcResult(FinalState.SKIPPED, table, window)

        stats = compute(engine, config, table, window)

        if config.cleanup:
            cleanup(
                engine,
                table,
                time_range=config.time_range,
                project_slug=config.project_slug,
                window=window,
            )

        state = FinalState.COMPUTED if stats.changed else FinalState.SKIPPED
        return CalcResult(state, table, window, stats)
    finally:
        if own_engine:
            engine.dispose()
