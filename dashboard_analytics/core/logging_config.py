"""
Logging setup for the analytics core.

Services obtain their logger with ``logging.getLogger(__name__)``; callers that
embed the core (a dashboard backend, a notebook, a batch job) call
``configure_logging`` once at start-up.
"""

import logging
from typing import Optional, Union

from dashboard_analytics.core.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Optional[Union[int, str]] = None) -> None:
    """
    Configure root logging with the package format.

    Args:
        level: Explicit level (name or number). Defaults to Settings.log_level.
    """
    if level is None:
        level = get_settings().log_level
    if isinstance(level, str):
        level = level.upper()

    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger(__name__).debug(f"Logging configured at level {level}")
