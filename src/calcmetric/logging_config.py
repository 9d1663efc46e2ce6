"""
Logging for calcmetric runs.

One run computes one metric, so all output goes through the ``calcmetric``
logger tree (``logging.getLogger(__name__)`` in every module):

- console handler on stdout, level from --log-level / --quiet
- optional append-mode file handler that always records DEBUG
- DEBUG shows every generated statement with its arguments
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Mapping, Optional


DEFAULT_FORMAT = "%(asctime)s [%(levelname)-8s] [%(name)s] %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# adds filename:lineno
DEBUG_FORMAT = (
    "%(asctime)s [%(levelname)-8s] [%(name)s] [%(filename)s:%(lineno)d] %(message)s"
)

ROOT_LOGGER = "calcmetric"

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

# driver/ORM loggers that would duplicate our own statement logging
_NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "psycopg")


def debug_requested(env: Mapping[str, str]) -> bool:
    """The DEBUG config key turns on debug output, whatever its value."""
    return "DEBUG" in env


def _console_handler(level: int, fmt: str) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=DEFAULT_DATE_FORMAT))
    return handler


def _file_handler(log_file: str) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(DEBUG_FORMAT, datefmt=DEFAULT_DATE_FORMAT))
    return handler


def setup_logging(
    *,
    name: str = ROOT_LOGGER,
    level: str = "INFO",
    log_file: Optional[str] = None,
    quiet: bool = False,
    debug: bool = False,
) -> logging.Logger:
    """
    (Re)configure the calcmetric logger; safe to call more than once.

    Args:
        name: Logger name (default: "calcmetric")
        level: Console level, one of LEVELS
        log_file: Optional file that receives everything at DEBUG
        quiet: Console shows warnings and errors only
        debug: Force DEBUG and the filename:lineno format

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.propagate = False

    if debug:
        console_level = logging.DEBUG
    elif quiet:
        console_level = logging.WARNING
    else:
        console_level = getattr(logging, level.upper(), logging.INFO)

    logger.addHandler(_console_handler(console_level, DEBUG_FORMAT if debug else DEFAULT_FORMAT))
    if log_file:
        logger.addHandler(_file_handler(log_file))
        logger.debug("logging to file: %s", log_file)

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger


def add_logging_args(parser) -> None:
    """Add --log-level, --log-file, --quiet and --debug to an ArgumentParser."""
    group = parser.add_argument_group("logging")
    group.add_argument(
        "--log-level",
        default="INFO",
        choices=list(LEVELS),
        help="Console log level (default: INFO)",
    )
    group.add_argument(
        "--log-file",
        default=None,
        help="Also append full DEBUG output to this file",
    )
    group.add_argument(
        "--quiet",
        action="store_true",
        help="Only warnings and errors on the console",
    )
    group.add_argument(
        "--debug",
        action="store_true",
        help="Log every generated statement and its arguments (same as setting DEBUG)",
    )
