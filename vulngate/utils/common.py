#!/usr/bin/env python3
"""
Common utilities shared across vulngate entry points.
"""

import logging
import sys
from pathlib import Path

from vulngate.constants import DEFAULT_LOG_FILE, LOG_FORMAT


def setup_logging(log_level: str | int = "INFO", log_file: str | None = None) -> None:
    """Setup logging configuration consistently across callers.

    Args:
        log_level: Logging level as string ("INFO", "DEBUG") or integer constant
        log_file: Optional path to log file; defaults to logs/vulngate.log
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is None:
        log_file = DEFAULT_LOG_FILE

    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            # Unwritable location: console logging only
            pass
        else:
            handlers.append(logging.FileHandler(log_file))

    if isinstance(log_level, int):
        level = log_level
    else:
        level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
