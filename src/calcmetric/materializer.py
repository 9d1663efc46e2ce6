# src/calcmetric/materializer.py
"""
Destination table DDL.

Every metric table starts with a fixed identity prefix and continues with the
columns inferred from the metric query:

    time_range          VARCHAR(6)  NOT NULL
    project_slug        TEXT        NOT NULL
    last_calculated_at  TIMESTAMP   NOT NULL
    date_from           DATE        NOT NULL
    date_to             DATE        NOT NULL
    row_number          INT         NOT NULL
    <value columns...>
    PRIMARY KEY (time_range, project_slug, date_from, date_to, row_number)

All statements are IF NOT EXISTS: safe to run on every computation, never
altering an existing table.
"""

from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy.engine import Engine

from calcmetric.db import execute, quote_ident
from calcmetric.schema import ColumnDescriptor


logger = logging.getLogger(__name__)

IDENTITY_COLUMNS = (
    ("time_range", "VARCHAR(6)"),
    ("project_slug", "TEXT"),
    ("last_calculated_at", "TIMESTAMP"),
    ("date_from", "DATE"),
    ("date_to", "DATE"),
    ("row_number", "INT"),
)

KEY_COLUMNS = ("time_range", "project_slug", "date_from", "date_to", "row_number")


def index_name(table: str, column: str) -> str:
    return quote_ident(f"{table}_{column}_idx")


def create_table_sql(table: str, columns: Sequence[ColumnDescriptor]) -> str:
    lines = [f"    {name} {sql_type} NOT NULL" for name, sql_type in IDENTITY_COLUMNS]
    for col in columns:
        line = f"    {quote_ident(col.name)} {col.sql_type.upper()}"
        if col.not_null:
            line += " NOT NULL"
        lines.append(line)
    lines.append(f"    PRIMARY KEY ({', '.join(KEY_COLUMNS)})")
    body = ",\n".join(lines)
    return f"CREATE TABLE IF NOT EXISTS {quote_ident(table)} (\n{body}\n)"


def create_index_sql(table: str, column: str, *, raw: bool = False) -> str:
    """Index DDL; raw=True keeps the column text as given (expressions allowed)."""
    target = column if raw else quote_ident(column)
    return (
        f"CREATE INDEX IF NOT EXISTS {index_name(table, column)} "
        f"ON {quote_ident(table)} ({target})"
    )


def materialize_ddl(
    table: str,
    columns: Sequence[ColumnDescriptor],
    *,
    ppt: bool = False,
    extra_indexes: Sequence[str] = (),
) -> list[str]:
    """
    Ordered DDL statements for the table and its indexes.

    The project_slug index is skipped in per-project table mode, where every
    row of the table has the same project. An extra index entry naming a
    result column exactly is quoted like the column; anything else is used
    verbatim (e.g. lower(author)).
    """
    names = {c.name for c in columns}
    stmts = [create_table_sql(table, columns), create_index_sql(table, "time_range")]
    if not ppt:
        stmts.append(create_index_sql(table, "project_slug"))
    for column in extra_indexes:
        stmts.append(create_index_sql(table, column, raw=column not in names))
    return stmts


def ensure_table(
    engine: Engine,
    table: str,
    columns: Sequence[ColumnDescriptor],
    *,
    ppt: bool = False,
    extra_indexes: Sequence[str] = (),
) -> None:
    """Create the destination table and indexes if absent (one transaction)."""
    if extra_indexes:
        logger.debug("extra indices requested: %s", list(extra_indexes))
    stmts = materialize_ddl(table, columns, ppt=ppt, extra_indexes=extra_indexes)
    with engine.begin() as conn:
        for sql in stmts:
            execute(conn, sql)
