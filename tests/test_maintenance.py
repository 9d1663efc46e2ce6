"""
Tests for DROP / DELETE / CLEANUP statements (engine mocked).
"""

from unittest.mock import patch

import pytest

from calcmetric.exceptions import ConfigError, StorageError
from calcmetric.maintenance import (
    cleanup,
    cleanup_statement,
    delete_rows,
    delete_statement,
    drop_table,
    parse_delete_subset,
)


class _UndefinedTable(Exception):
    sqlstate = "42P01"


def _storage_error(cause: Exception) -> StorageError:
    err = StorageError("statement failed")
    err.__cause__ = cause
    return err


def test_parse_delete_subset():
    assert parse_delete_subset("") == frozenset()
    assert parse_delete_subset(None) == frozenset()
    assert parse_delete_subset("tr") == {"tr"}
    assert parse_delete_subset(" dt, tr,,ps ,df") == {"tr", "ps", "df", "dt"}


def test_parse_delete_subset_rejects_unknown_tokens():
    with pytest.raises(ConfigError, match="time_range"):
        parse_delete_subset("tr,time_range")


def test_delete_statement_follows_fixed_order(window):
    sql, params = delete_statement(
        "metric_x",
        frozenset({"dt", "tr"}),
        time_range="30d",
        project_slug="envoy",
        window=window,
    )

    assert sql == 'DELETE FROM "metric_x" WHERE time_range = :time_range AND date_to = :date_to'
    assert params == {"time_range": "30d", "date_to": window.to_date}


def test_delete_statement_all_keys(window):
    sql, params = delete_statement(
        "metric_x",
        frozenset({"tr", "ps", "df", "dt"}),
        time_range="30d",
        project_slug="envoy",
        window=window,
    )

    assert sql.endswith(
        "time_range = :time_range AND project_slug = :project_slug "
        "AND date_from = :date_from AND date_to = :date_to"
    )
    assert set(params) == {"time_range", "project_slug", "date_from", "date_to"}


def test_delete_statement_requires_a_condition(window):
    with pytest.raises(ValueError):
        delete_statement("t", frozenset(), time_range="30d", project_slug="x", window=window)


def test_delete_rows_empty_subset_touches_nothing(mock_engine, window):
    with patch("calcmetric.maintenance.logger") as log:
        deleted = delete_rows(
            mock_engine, "metric_x", frozenset(), time_range="30d", project_slug="envoy", window=window
        )

    assert deleted == 0
    mock_engine.begin.assert_not_called()
    log.warning.assert_called_once()


def test_delete_rows_returns_rowcount(mock_engine, window):
    mock_engine.conn.execute.return_value.rowcount = 3

    deleted = delete_rows(
        mock_engine, "metric_x", frozenset({"tr"}), time_range="30d", project_slug="envoy", window=window
    )

    assert deleted == 3


def test_delete_rows_missing_table_counts_as_zero(mock_engine, window):
    with patch("calcmetric.maintenance.execute") as execute:
        execute.side_effect = _storage_error(_UndefinedTable("relation does not exist"))
        deleted = delete_rows(
            mock_engine, "nope", frozenset({"ps"}), time_range="30d", project_slug="envoy", window=window
        )

    assert deleted == 0


def test_delete_rows_other_errors_propagate(mock_engine, window):
    with patch("calcmetric.maintenance.execute") as execute:
        execute.side_effect = _storage_error(RuntimeError("connection reset"))
        with pytest.raises(StorageError):
            delete_rows(
                mock_engine, "metric_x", frozenset({"ps"}), time_range="30d", project_slug="envoy", window=window
            )


def test_cleanup_statement(window):
    sql, params = cleanup_statement("metric_x", time_range="7d", project_slug="envoy", window=window)

    assert sql == (
        'DELETE FROM "metric_x" WHERE time_range = :time_range '
        "AND project_slug = :project_slug AND date_from < :date_from AND date_to < :date_to "
        "AND date(last_calculated_at) < date(now())"
    )
    assert params == {
        "time_range": "7d",
        "project_slug": "envoy",
        "date_from": window.from_date,
        "date_to": window.to_date,
    }


def test_cleanup_returns_rowcount(mock_engine, window):
    mock_engine.conn.execute.return_value.rowcount = 2
    assert cleanup(mock_engine, "metric_x", time_range="7d", project_slug="envoy", window=window) == 2
    mock_engine.begin.assert_called_once()


def test_drop_table(mock_engine):
    drop_table(mock_engine, "metric_x")

    stmt = mock_engine.conn.execute.call_args.args[0]
    assert str(stmt) == 'DROP TABLE IF EXISTS "metric_x"'
