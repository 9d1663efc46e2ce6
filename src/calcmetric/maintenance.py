# src/calcmetric/maintenance.py
"""
Maintenance operations on a metric table: drop, conditional delete, cleanup.

DELETE takes a subset of the four key dimensions:

    tr  time_range = <current time range>
    ps  project_slug = <current project>
    df  date_from = <resolved date_from>
    dt  date_to = <resolved date_to>

An empty subset is refused; wiping a whole table is what DROP is for.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.engine import Engine

from calcmetric.db import execute, is_undefined_table, quote_ident
from calcmetric.exceptions import ConfigError, StorageError
from calcmetric.time_ranges import TimeWindow


logger = logging.getLogger(__name__)

# token -> (column, parameter)
DELETE_KEYS = {
    "tr": "time_range",
    "ps": "project_slug",
    "df": "date_from",
    "dt": "date_to",
}

# predicate order in the generated statement
_DELETE_ORDER = ("tr", "ps", "df", "dt")


def drop_table(engine: Engine, table: str) -> None:
    """Unconditionally drop the table (only on explicit request)."""
    logger.info("dropping table '%s'", table)
    with engine.begin() as conn:
        execute(conn, f"DROP TABLE IF EXISTS {quote_ident(table)}")


def parse_delete_subset(value: Optional[str]) -> frozenset[str]:
    """
    Parse "tr,ps,df,dt" style input. Blank tokens are ignored.

    Raises:
        ConfigError: unknown token
    """
    if not value:
        return frozenset()
    tokens = {t.strip() for t in value.split(",") if t.strip()}
    unknown = sorted(tokens - set(DELETE_KEYS))
    if unknown:
        raise ConfigError(
            f"unknown DELETE key(s) {unknown}, allowed: {', '.join(_DELETE_ORDER)}"
        )
    return frozenset(tokens)


def delete_statement(
    table: str,
    subset: frozenset[str],
    *,
    time_range: str,
    project_slug: str,
    window: TimeWindow,
) -> tuple[str, dict]:
    """
    Build the conditional delete. The subset must be non-empty.
    """
    if not subset:
        raise ValueError("unconditioned delete is not supported, use DROP instead")

    values = {
        "time_range": time_range,
        "project_slug": project_slug,
        "date_from": window.from_date,
        "date_to": window.to_date,
    }
    conds = []
    params = {}
    for key in _DELETE_ORDER:
        if key in subset:
            column = DELETE_KEYS[key]
            conds.append(f"{column} = :{column}")
            params[column] = values[column]

    return f"DELETE FROM {quote_ident(table)} WHERE " + " AND ".join(conds), params


def delete_rows(
    engine: Engine,
    table: str,
    subset: frozenset[str],
    *,
    time_range: str,
    project_slug: str,
    window: TimeWindow,
) -> int:
    """
    Delete rows matching the chosen key predicates; returns rows deleted.

    An empty subset deletes nothing. A missing table counts as nothing deleted.
    """
    if not subset:
        logger.warning(
            "unconditioned DELETE is not supported - you probably mean something else, "
            "use DROP to do a full table delete instead"
        )
        return 0

    sql, params = delete_statement(
        table, subset, time_range=time_range, project_slug=project_slug, window=window
    )
    try:
        with engine.begin() as conn:
            deleted = execute(conn, sql, params, quiet_errors=True).rowcount
    except StorageError as e:
        if is_undefined_table(e):
            logger.info("table '%s' does not exist, nothing to delete", table)
            return 0
        raise

    logger.info("deleted %d rows from '%s' (%s)", deleted, table, ",".join(sorted(subset)))
    return deleted


def cleanup_statement(
    table: str,
    *,
    time_range: str,
    project_slug: str,
    window: TimeWindow,
) -> tuple[str, dict]:
    sql = (
        f"DELETE FROM {quote_ident(table)} WHERE time_range = :time_range "
        "AND project_slug = :project_slug AND date_from < :date_from AND date_to < :date_to "
        "AND date(last_calculated_at) < date(now())"
    )
    params = {
        "time_range": time_range,
        "project_slug": project_slug,
        "date_from": window.from_date,
        "date_to": window.to_date,
    }
    return sql, params


def cleanup(
    engine: Engine,
    table: str,
    *,
    time_range: str,
    project_slug: str,
    window: TimeWindow,
) -> int:
    """
    Remove superseded windows of the same (time_range, project_slug): rows
    entirely older than the current window that were computed before today.
    """
    sql, params = cleanup_statement(
        table, time_range=time_range, project_slug=project_slug, window=window
    )
    with engine.begin() as conn:
        deleted = execute(conn, sql, params).rowcount

    if deleted > 0:
        logger.info(
            "cleanup %d rows from '%s' (%s, %s, <%s, <%s)",
            deleted,
            table,
            project_slug,
            time_range,
            window.from_ymd,
            window.to_ymd,
        )
    return deleted
