# src/calcmetric/config.py
"""
Configuration for a single metric computation.

All inputs arrive as a flat mapping of KEY -> string, usually taken from
prefixed environment variables (``V3_CONN``, ``V3_METRIC``, ...). The prefix
is stripped before the mapping is parsed.

Precedence (highest first):
1. Process environment (prefixed keys)
2. Optional dotenv file passed with --env-file (same prefixed keys)

Flags are "set" when their key is present, whatever the value. DELETE,
CLEANUP and INDEXED_COLUMNS are ignored when empty.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import dotenv_values

from calcmetric.exceptions import ConfigError


DEFAULT_PREFIX = "V3_"
DEFAULT_SQL_PATH = "./sql/"

# Postgres caps bound parameters at 65535; stay well below it.
DEFAULT_MAX_PLACEHOLDERS = 0x8000

REQUIRED_KEYS = (
    "CONN",
    "METRIC",
    "TABLE",
    "PROJECT_SLUG",
    "TIME_RANGE",
)

PARAM_PREFIX = "PARAM_"


def load_env_mapping(
    prefix: str = DEFAULT_PREFIX,
    *,
    environ: Optional[Mapping[str, str]] = None,
    env_file: Optional[str | Path] = None,
) -> dict[str, str]:
    """
    Collect prefixed keys from the environment (and an optional dotenv file)
    into a mapping with the prefix stripped.

    Keys already present in the environment win over the dotenv file.
    """
    merged: dict[str, str] = {}

    if env_file:
        p = Path(env_file)
        if not p.exists():
            raise ConfigError(f"env file not found: {p}")
        for key, value in dotenv_values(p).items():
            if value is not None:
                merged[key] = value

    merged.update(os.environ if environ is None else environ)

    return {
        key[len(prefix):]: value
        for key, value in merged.items()
        if key.startswith(prefix) and len(key) > len(prefix)
    }


def _split_csv(value: Optional[str]) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(v.strip() for v in value.split(",") if v.strip())


@dataclass(frozen=True)
class CalcMetricConfig:
    """
    Parsed configuration for one (metric, project, time range) computation.

    Attributes:
        conn: Database connection string (URL or libpq keyword string)
        metric: Metric name, selects <sql_path>/<metric>.sql
        table: Destination table name as configured (before PPT suffixing)
        project_slug: Project identifier
        time_range: Time-range code (7d, 30dp, q, ty, c, ...)
        drop: Drop the table before computing
        ppt: Per-project table mode
        force: Recompute even when already fresh
        date_from: Explicit lower bound for time range "c"
        date_to: Explicit upper bound for time range "c"
        limit: Text substituted for {{limit}}
        offset: Text substituted for {{offset}}
        params: Named template parameters from PARAM_<name> keys
        indexed_columns: Extra columns to index
        delete: Raw DELETE subset (e.g. "tr,ps")
        cleanup: Remove superseded windows after computing
        debug: Debug logging
        guess_type: Pass unknown column types through verbatim
        sql_path: Directory holding query templates
        max_placeholders: Bound-parameter ceiling per upsert batch
        env: The full stripped mapping (daily-granularity toggles live here)
    """

    conn: str
    metric: str
    table: str
    project_slug: str
    time_range: str
    drop: bool = False
    ppt: bool = False
    force: bool = False
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    limit: str = ""
    offset: str = ""
    params: dict[str, str] = field(default_factory=dict)
    indexed_columns: tuple[str, ...] = ()
    delete: str = ""
    cleanup: bool = False
    debug: bool = False
    guess_type: bool = False
    sql_path: str = DEFAULT_SQL_PATH
    max_placeholders: int = DEFAULT_MAX_PLACEHOLDERS
    env: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "CalcMetricConfig":
        """Build a config from a prefix-stripped mapping."""
        missing = [k for k in REQUIRED_KEYS if k not in env]
        if missing:
            raise ConfigError(
                "you must define "
                + ", ".join(f"{DEFAULT_PREFIX}{k}" for k in missing)
                + " to run this"
            )

        raw_max = env.get("MAX_PLACEHOLDERS", "")
        if raw_max:
            try:
                max_placeholders = int(raw_max)
            except ValueError as e:
                raise ConfigError(f"MAX_PLACEHOLDERS must be an integer, got '{raw_max}'") from e
            if max_placeholders <= 0:
                raise ConfigError("MAX_PLACEHOLDERS must be > 0")
        else:
            max_placeholders = DEFAULT_MAX_PLACEHOLDERS

        params = {
            k[len(PARAM_PREFIX):]: v
            for k, v in env.items()
            if k.startswith(PARAM_PREFIX) and len(k) > len(PARAM_PREFIX)
        }

        return cls(
            conn=env["CONN"],
            metric=env["METRIC"],
            table=env["TABLE"],
            project_slug=env["PROJECT_SLUG"],
            time_range=env["TIME_RANGE"],
            drop="DROP" in env,
            ppt="PPT" in env,
            force="FORCE_CALC" in env,
            date_from=env.get("DATE_FROM"),
            date_to=env.get("DATE_TO"),
            limit=env.get("LIMIT", ""),
            offset=env.get("OFFSET", ""),
            params=params,
            indexed_columns=_split_csv(env.get("INDEXED_COLUMNS")),
            delete=env.get("DELETE", ""),
            cleanup=bool(env.get("CLEANUP")),
            debug="DEBUG" in env,
            guess_type="GUESS_TYPE" in env,
            sql_path=env.get("SQL_PATH", DEFAULT_SQL_PATH),
            max_placeholders=max_placeholders,
            env=dict(env),
        )

    @property
    def template_path(self) -> Path:
        return Path(self.sql_path) / f"{self.metric}.sql"

    def __repr__(self) -> str:
        # never print the connection string, it usually carries a password
        return (
            f"CalcMetricConfig(metric={self.metric}, table={self.table}, "
            f"project_slug={self.project_slug}, time_range={self.time_range}, "
            f"ppt={self.ppt}, force={self.force}, drop={self.drop})"
        )
