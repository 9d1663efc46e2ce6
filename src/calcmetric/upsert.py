# src/calcmetric/upsert.py
"""
Batch upsert engine.

Rows of the metric query are streamed from a server-side cursor (every value
loaded as raw text, NULL stays None) and written with multi-row

    INSERT INTO "t" (time_range, ..., row_number, c1, c2)
    VALUES (...), (...)
    ON CONFLICT (time_range, project_slug, date_from, date_to, row_number)
    DO UPDATE SET c1 = EXCLUDED.c1, c2 = EXCLUDED.c2
    WHERE ("t".c1::text, "t".c2::text) IS DISTINCT FROM (EXCLUDED.c1::text, EXCLUDED.c2::text)

statements. A batch is flushed as soon as the next row could push it past the
bound-parameter ceiling; each flush is its own transaction, so batches that
were flushed before a failure stay committed.

Rows whose values did not change are not rewritten, which keeps a repeated
computation from reporting changes (and keeps the original last_calculated_at).
Values are compared through their text rendering, so column types without an
equality operator (json, point, xml) work as well.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterator, Optional, Sequence

import psycopg
from psycopg import postgres
from psycopg.types.string import TextLoader
from sqlalchemy.engine import Engine

from calcmetric.db import connect_raw, execute, log_failed_statement, quote_ident
from calcmetric.exceptions import ConfigError, StorageError
from calcmetric.materializer import IDENTITY_COLUMNS, KEY_COLUMNS
from calcmetric.schema import ColumnDescriptor, RawColumn, describe_result
from calcmetric.time_ranges import TimeWindow


logger = logging.getLogger(__name__)

SOURCE_CURSOR = "calcmetric_source"
SOURCE_ITERSIZE = 2000


# =============================================================================
# Source query streaming
# =============================================================================


def load_all_as_text(adapters) -> None:
    """Make every builtin type (and its array) load as the raw text value."""
    for info in postgres.types:
        adapters.register_loader(info.oid, TextLoader)
        if info.array_oid:
            adapters.register_loader(info.array_oid, TextLoader)


def resolve_type_names(conn: psycopg.Connection, description: Sequence) -> dict[int, str]:
    """Type OID -> type name for every column, asking pg_type for non-builtins."""
    names: dict[int, str] = {}
    missing: list[int] = []
    for col in description:
        info = postgres.types.get(col[1])
        if info is not None:
            names[col[1]] = info.name
        elif col[1] not in missing:
            missing.append(col[1])

    if missing:
        rows = conn.execute(
            "SELECT oid::bigint, typname FROM pg_catalog.pg_type WHERE oid::bigint = ANY(%s)",
            [missing],
        ).fetchall()
        names.update({int(oid): typname for oid, typname in rows})
    return names


@contextmanager
def open_source(conn_str: str, sql: str) -> Iterator[tuple[list[RawColumn], Iterator[tuple]]]:
    """
    Execute the metric query on its own connection and yield
    (column metadata, row iterator).

    Raises:
        StorageError: the query fails
    """
    with connect_raw(conn_str) as raw:
        cur = raw.cursor(name=SOURCE_CURSOR)
        cur.itersize = SOURCE_ITERSIZE
        load_all_as_text(cur.adapters)
        try:
            cur.execute(sql)
            description = cur.description or []
            columns = describe_result(description, resolve_type_names(raw, description))
        except psycopg.Error as e:
            log_failed_statement(sql)
            raise StorageError(str(e), statement=sql) from e

        try:
            yield columns, iter(cur)
        finally:
            cur.close()


# =============================================================================
# Statement building
# =============================================================================


def insert_columns_sql(columns: Sequence[ColumnDescriptor]) -> str:
    names = [name for name, _ in IDENTITY_COLUMNS] + [quote_ident(c.name) for c in columns]
    return ", ".join(names)


def on_conflict_sql(table: str, columns: Sequence[ColumnDescriptor]) -> str:
    """
    ON CONFLICT clause updating every value column when it differs.

    The comparison is on ::text so it needs no equality operator for the
    column type (GUESS_TYPE may yield json, point, ...).
    """
    cols = [quote_ident(c.name) for c in columns]
    set_clause = ", ".join(f"{c} = EXCLUDED.{c}" for c in cols)
    current = ", ".join(f"{quote_ident(table)}.{c}::text" for c in cols)
    incoming = ", ".join(f"EXCLUDED.{c}::text" for c in cols)
    return (
        f"ON CONFLICT ({', '.join(KEY_COLUMNS)}) DO UPDATE SET {set_clause} "
        f"WHERE ({current}) IS DISTINCT FROM ({incoming})"
    )


def upsert_statement(
    table: str,
    columns: Sequence[ColumnDescriptor],
    rows: Sequence[Sequence[Any]],
) -> tuple[str, dict[str, Any]]:
    """Multi-row upsert with :p1..:pN bound parameters."""
    params: dict[str, Any] = {}
    tuples: list[str] = []
    k = 0
    for row in rows:
        placeholders = []
        for value in row:
            k += 1
            params[f"p{k}"] = value
            placeholders.append(f":p{k}")
        tuples.append("(" + ", ".join(placeholders) + ")")

    sql = (
        f"INSERT INTO {quote_ident(table)} ({insert_columns_sql(columns)}) VALUES "
        + ", ".join(tuples)
        + " "
        + on_conflict_sql(table, columns)
    )
    return sql, params


# =============================================================================
# Batch writer
# =============================================================================


@dataclass
class UpsertStats:
    rows: int = 0
    batches: int = 0
    affected: int = 0

    @property
    def changed(self) -> bool:
        return self.affected > 0


class BatchUpserter:
    """
    Accumulates rows of one computation and flushes them in bounded batches.

    row_number is assigned sequentially from 1. Every row of the computation
    carries the same last_calculated_at.

    Not thread-safe; one instance per computation.
    """

    def __init__(
        self,
        engine: Engine,
        table: str,
        columns: Sequence[ColumnDescriptor],
        *,
        time_range: str,
        project_slug: str,
        window: TimeWindow,
        calculated_at: datetime,
        max_placeholders: int,
    ):
        self.engine = engine
        self.table = table
        self.columns = list(columns)
        self.time_range = time_range
        self.project_slug = project_slug
        self.window = window
        self.calculated_at = calculated_at
        self.max_placeholders = max_placeholders
        self.per_row = len(IDENTITY_COLUMNS) + len(self.columns)
        if self.per_row > max_placeholders:
            raise ConfigError(
                f"a single row needs {self.per_row} placeholders, "
                f"more than the limit of {max_placeholders}"
            )

        self.stats = UpsertStats()
        self._pending: list[tuple] = []
        self._placeholders = 0

    def __repr__(self) -> str:
        return (
            f"BatchUpserter(table={self.table}, columns={len(self.columns)}, "
            f"max_placeholders={self.max_placeholders})"
        )

    def add(self, values: Sequence[Optional[str]]) -> None:
        """Append one source row; flushes when the batch is full."""
        if len(values) != len(self.columns):
            raise ValueError(f"expected {len(self.columns)} values, got {len(values)}")

        self.stats.rows += 1
        self._pending.append(
            (
                self.time_range,
                self.project_slug,
                self.calculated_at,
                self.window.from_date,
                self.window.to_date,
                self.stats.rows,
                *values,
            )
        )
        self._placeholders += self.per_row

        # checked after appending: the batch never exceeds max_placeholders
        if self._placeholders >= self.max_placeholders - self.per_row:
            logger.debug("flush at %d", self._placeholders)
            self.flush()

    def flush(self) -> int:
        """Write the pending batch in its own transaction; returns affected rows."""
        if not self._pending:
            return 0

        sql, params = upsert_statement(self.table, self.columns, self._pending)
        with self.engine.begin() as conn:
            result = execute(conn, sql, params)
            affected = result.rowcount

        if affected is None or affected < 0:
            log_failed_statement(sql, params)
            raise StorageError("driver did not report affected rows", statement=sql, params=params)

        self.stats.batches += 1
        self.stats.affected += affected
        self._pending = []
        self._placeholders = 0
        return affected

    def add_all(self, rows) -> UpsertStats:
        """Consume a row iterator, flush the tail and return the stats."""
        for row in rows:
            self.add(row)
        if self._pending:
            logger.debug("final flush at %d", self._placeholders)
        self.flush()
        logger.info(
            "completed in %d batches (%d rows, %d affected)",
            self.stats.batches,
            self.stats.rows,
            self.stats.affected,
        )
        return self.stats
