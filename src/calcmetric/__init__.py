# src/calcmetric/__init__.py
from __future__ import annotations

from .config import CalcMetricConfig, load_env_mapping
from .exceptions import CalcMetricError, ConfigError, SchemaError, StorageError
from .runner import CalcResult, FinalState, calc_metric
from .time_ranges import TIME_RANGES, TimeWindow, resolve_time_range

__all__ = [
    # Configuration
    "CalcMetricConfig", "load_env_mapping",

    # Errors
    "CalcMetricError", "ConfigError", "SchemaError", "StorageError",

    # Running a computation
    "CalcResult", "FinalState", "calc_metric",

    # Time windows
    "TIME_RANGES", "TimeWindow", "resolve_time_range",
]
__version__ = "0.1.0"
