"""
Core infrastructure package for the analytics core.

Provides:
- Configuration management via pydantic-settings
- Logging setup shared by every analyzer

Components Re-exported:
    Settings: Pydantic settings class with all analyzer thresholds
    get_settings: Function returning the cached Settings singleton
    configure_logging: Applies the package log format and level

Usage Examples:
    from dashboard_analytics.core import get_settings, configure_logging

    configure_logging()
    settings = get_settings()
    print(settings.basket_min_support)
"""

from dashboard_analytics.core.config import Settings, get_settings
from dashboard_analytics.core.logging_config import LOG_FORMAT, configure_logging

__all__ = [
    "Settings",
    "get_settings",
    "LOG_FORMAT",
    "configure_logging",
]
