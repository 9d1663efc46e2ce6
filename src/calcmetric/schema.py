# src/calcmetric/schema.py
"""
Schema inference for arbitrary metric result sets.

The metric query is only known at runtime, so the destination columns are
derived from the live cursor metadata: (name, driver type name, nullable).
Types are mapped onto a small closed set used for DDL. Values themselves are
never marshalled per type; they travel as text and the column type coerces
them on write.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Optional, Sequence, Union

from calcmetric.exceptions import SchemaError


logger = logging.getLogger(__name__)


class ColumnType(str, Enum):
    """Canonical destination column types."""

    TEXT = "text"
    BOOLEAN = "boolean"
    DATE = "date"
    INTERVAL = "interval"
    NUMERIC = "numeric"
    BIGINT = "bigint"
    TIMESTAMP = "timestamp"


# driver type name (lower-case) -> canonical type
TYPE_MAP: dict[str, ColumnType] = {
    "text": ColumnType.TEXT,
    "varchar": ColumnType.TEXT,
    "bpchar": ColumnType.TEXT,
    "char": ColumnType.TEXT,
    "name": ColumnType.TEXT,
    "bool": ColumnType.BOOLEAN,
    "boolean": ColumnType.BOOLEAN,
    "date": ColumnType.DATE,
    "interval": ColumnType.INTERVAL,
    "numeric": ColumnType.NUMERIC,
    "float4": ColumnType.NUMERIC,
    "float8": ColumnType.NUMERIC,
    "int2": ColumnType.BIGINT,
    "int4": ColumnType.BIGINT,
    "int8": ColumnType.BIGINT,
    "int16": ColumnType.BIGINT,
    "int32": ColumnType.BIGINT,
    "int64": ColumnType.BIGINT,
    "timestamptz": ColumnType.TIMESTAMP,
    "timestamp": ColumnType.TIMESTAMP,
}


@dataclass(frozen=True)
class RawColumn:
    """Column metadata as reported by the driver."""

    name: str
    type_name: str
    nullable: Optional[bool] = None


@dataclass(frozen=True)
class ColumnDescriptor:
    """
    Destination column derived from one result column.

    type is a ColumnType, or the raw driver type name when guessing is enabled.
    nullable is None when the driver does not know (treated as nullable).
    """

    name: str
    type: Union[ColumnType, str]
    nullable: Optional[bool] = None

    @property
    def sql_type(self) -> str:
        return self.type.value if isinstance(self.type, ColumnType) else self.type

    @property
    def not_null(self) -> bool:
        return self.nullable is False


def map_type(type_name: str, *, guess_type: bool = False) -> Union[ColumnType, str]:
    """
    Map a driver type name onto the canonical set.

    Raises:
        SchemaError: unknown type and guess_type is off
    """
    name = type_name.lower()
    mapped = TYPE_MAP.get(name)
    if mapped is not None:
        return mapped
    if guess_type:
        logger.warning("unknown type '%s', using it verbatim", name)
        return name
    raise SchemaError(f"unknown type: '{name}'")


def infer_columns(
    columns: Iterable[RawColumn],
    *,
    guess_type: bool = False,
) -> list[ColumnDescriptor]:
    """
    Build ordered column descriptors from result metadata.

    Raises:
        SchemaError: no columns, empty or duplicate (case-sensitive) names,
            or an unknown type
    """
    out: list[ColumnDescriptor] = []
    seen: set[str] = set()

    for col in columns:
        if not col.name:
            raise SchemaError("result column without a name")
        if col.name in seen:
            raise SchemaError(f"non unique column name '{col.name}'")
        seen.add(col.name)
        out.append(
            ColumnDescriptor(
                name=col.name,
                type=map_type(col.type_name, guess_type=guess_type),
                nullable=col.nullable,
            )
        )

    if not out:
        raise SchemaError("query returned no columns")

    logger.debug("columns: %d", len(out))
    for c in out:
        logger.debug("%s", c)
    return out


def describe_result(
    description: Sequence,
    type_names: Mapping[int, str],
) -> list[RawColumn]:
    """
    Convert DBAPI cursor.description into RawColumn entries.

    Args:
        description: cursor.description (psycopg Column objects or 7-tuples)
        type_names: type OID -> type name for every OID in the description
    """
    raw: list[RawColumn] = []
    for col in description:
        name, type_code = col[0], col[1]
        null_ok = col[6] if len(col) > 6 else None
        type_name = type_names.get(type_code)
        if type_name is None:
            raise SchemaError(f"cannot resolve type oid {type_code} of column '{name}'")
        raw.append(RawColumn(name=name, type_name=type_name, nullable=null_ok))
    return raw
