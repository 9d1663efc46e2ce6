# src/calcmetric/exceptions.py
from __future__ import annotations

from typing import Any, Optional


class CalcMetricError(Exception):
    """Base class for all calcmetric errors."""

    pass


class ConfigError(CalcMetricError):
    """Raised for missing or invalid configuration (keys, dates, time ranges)."""

    pass


class SchemaError(CalcMetricError):
    """Raised when a result set cannot be mapped to a destination table."""

    pass


class StorageError(CalcMetricError):
    """
    Raised when a statement fails against the database.

    Keeps the failing statement and its parameters for diagnosis.
    """

    def __init__(
        self,
        message: str,
        *,
        statement: Optional[str] = None,
        params: Any = None,
    ) -> None:
        super().__init__(message)
        self.statement = statement
        self.params = params
