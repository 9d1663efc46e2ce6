# src/calcmetric/template.py
"""
Metric query templates.

A metric is a SQL file (<SQL_PATH>/<METRIC>.sql) with {{placeholder}} tokens:

    {{project_slug}}            project identifier (raw, unquoted)
    {{limit}} / {{offset}}      only replaced when LIMIT / OFFSET are non-empty
    {{<name>}}                  from PARAM_<name>
    {{date_from}} / {{date_to}} quoted 'YYYY-MM-DD' literals of the window

Substitution is literal text replacement without escaping. Values must be
supplied as valid, already-quoted SQL (e.g. PARAM_tenant_id="'abc'"); the
templates are trusted input and nothing here protects against injection.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Optional

from calcmetric.exceptions import ConfigError
from calcmetric.time_ranges import TimeWindow


logger = logging.getLogger(__name__)


def placeholder(name: str) -> str:
    return "{{" + name + "}}"


def load_template(path: str | Path) -> str:
    p = Path(path)
    try:
        return p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read metric template '{p}': {e}") from e


def render_query(
    template: str,
    *,
    project_slug: str,
    window: TimeWindow,
    limit: str = "",
    offset: str = "",
    params: Optional[Mapping[str, str]] = None,
) -> str:
    sql = template.replace(placeholder("project_slug"), project_slug)
    if limit:
        sql = sql.replace(placeholder("limit"), limit)
    if offset:
        sql = sql.replace(placeholder("offset"), offset)
    for name, value in (params or {}).items():
        sql = sql.replace(placeholder(name), value)

    date_from, date_to = window.quoted()
    sql = sql.replace(placeholder("date_from"), date_from)
    sql = sql.replace(placeholder("date_to"), date_to)

    logger.debug("generated SQL:\n%s", sql)
    return sql
