# src/calcmetric/db.py
"""
Database helpers shared by every calcmetric stage.

- SQLAlchemy engine (psycopg 3 driver) for DDL/DML
- raw psycopg connections for streaming the metric query
- identifier helpers
- statement execution that logs the failing SQL and its arguments
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import psycopg
from psycopg.conninfo import conninfo_to_dict
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, CursorResult, Engine
from sqlalchemy.exc import SQLAlchemyError

from calcmetric.exceptions import ConfigError, StorageError


logger = logging.getLogger(__name__)

UNDEFINED_TABLE = "42P01"

_URL_PREFIXES = (
    "postgresql+psycopg2://",
    "postgresql+psycopg://",
    "postgresql+psycopg3://",
    "postgres+psycopg2://",
    "postgres+psycopg://",
    "postgres+psycopg3://",
    "postgresql://",
    "postgres://",
)


def is_url(conn_str: str) -> bool:
    return "://" in conn_str


def normalize_db_url(conn_str: str) -> str:
    """
    Return a plain libpq URL/conninfo (no SQLAlchemy dialect prefix).

    Keyword strings such as ``host=db dbname=metrics`` are validated and
    returned unchanged.
    """
    if not conn_str:
        raise ConfigError("connection string is empty")

    if not is_url(conn_str):
        try:
            conninfo_to_dict(conn_str)
        except psycopg.ProgrammingError as e:
            raise ConfigError(f"invalid connection string: {e}") from e
        return conn_str

    for prefix in _URL_PREFIXES:
        if conn_str.startswith(prefix):
            return "postgresql://" + conn_str[len(prefix):]

    scheme = conn_str.split("://", 1)[0]
    raise ConfigError(f"unsupported database scheme '{scheme}', only postgres is supported")


def get_engine(conn_str: str) -> Engine:
    """Create a SQLAlchemy engine on the psycopg (v3) driver."""
    conninfo = normalize_db_url(conn_str)
    if is_url(conninfo):
        return create_engine("postgresql+psycopg://" + conninfo[len("postgresql://"):])
    return create_engine(
        "postgresql+psycopg://",
        creator=lambda: psycopg.connect(conninfo),
    )


def connect_raw(conn_str: str) -> psycopg.Connection:
    """Open a raw psycopg connection (used to stream the metric query)."""
    return psycopg.connect(normalize_db_url(conn_str))


def to_db_identifier(arg: str) -> str:
    """Lower-case and replace '-' with '_' (project slug -> table suffix)."""
    return arg.lower().replace("-", "_")


def quote_ident(name: str) -> str:
    """Double-quote an identifier (safe for reserved words and mixed case)."""
    return '"' + name.replace('"', '""') + '"'


def sqlstate_of(exc: BaseException) -> Optional[str]:
    """
    Return the SQLSTATE carried by a DBAPI error, looking through
    SQLAlchemy and StorageError wrappers.
    """
    seen = set()
    cur: Optional[BaseException] = exc
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        code = getattr(cur, "sqlstate", None) or getattr(cur, "pgcode", None)
        if code:
            return str(code)
        orig = getattr(cur, "orig", None)
        cur = orig if orig is not None else cur.__cause__
    return None


def is_undefined_table(exc: BaseException) -> bool:
    return sqlstate_of(exc) == UNDEFINED_TABLE


def log_failed_statement(sql: str, params: Any = None) -> None:
    """Log a statement that failed, with its arguments, for diagnosis."""
    logger.error("failed statement:\n%s\nwith args: %r", sql, params)


def execute(
    conn: Connection,
    sql: str,
    params: Optional[Mapping[str, Any]] = None,
    *,
    quiet_errors: bool = False,
) -> CursorResult:
    """
    Execute a bound-parameter statement (``:name`` placeholders).

    SQLAlchemy errors are re-raised as StorageError chained to the original.
    With quiet_errors the failing statement is not logged (the caller expects
    and handles some failures, e.g. an undefined table).
    """
    logger.debug("executing sql:\n%s\nwith args: %r", sql, params)
    try:
        return conn.execute(text(sql), dict(params or {}))
    except SQLAlchemyError as e:
        if not (quiet_errors and is_undefined_table(e)):
            log_failed_statement(sql, params)
        raise StorageError(str(e), statement=sql, params=params) from e
