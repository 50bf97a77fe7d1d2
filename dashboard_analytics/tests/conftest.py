"""
Pytest Configuration and Shared Fixtures for Dashboard Analytics Tests.

This module provides fixtures and configuration for all analyzer tests:
- Async test execution with pytest-asyncio (pipeline tests)
- Settings cache isolation so environment overrides never leak between tests
- A deterministic sales dataset (orders, clients, dates, values, products)
  covering twelve consecutive months, built by tests/factories.py

Dependencies:
- pytest
- pytest-asyncio
"""

from datetime import date
from typing import Any, Dict, Generator, List

import pytest

from dashboard_analytics.core.config import get_settings
from dashboard_analytics.models import ColumnMetadata
from dashboard_analytics.tests.factories import make_sales_rows, sales_column_metadata


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Configure custom pytest markers for test organization.

    Custom markers defined:
    - slow: Marks tests as slow (deselect with -m "not slow")
    - scenario: Marks business scenarios with hand-computed expected results

    Usage:
        pytest -m "not slow"
        pytest -m scenario
    """
    config.addinivalue_line(
        'markers',
        'slow: marks tests as slow (deselect with -m "not slow")'
    )
    config.addinivalue_line(
        'markers',
        'scenario: marks business scenarios with hand-computed expected results'
    )


# ============================================================
# SETTINGS FIXTURES
# ============================================================

@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None, None, None]:
    """
    Reset the lru_cache behind get_settings() around every test.

    Tests that set ANALYTICS_* environment variables with monkeypatch get a
    fresh Settings instance, and the next test does not inherit it.
    """
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ============================================================
# SAMPLE DATA FIXTURES
# ============================================================

@pytest.fixture
def sales_columns() -> List[ColumnMetadata]:
    """Column metadata for the sample sales dataset."""
    return sales_column_metadata()


@pytest.fixture
def sales_rows() -> List[Dict[str, Any]]:
    """Twelve months (Jan-Dec 2024) of deterministic sales rows."""
    return make_sales_rows()


@pytest.fixture
def reference_date() -> date:
    """Fixed 'today' for churn scoring, one month after the last sample purchase."""
    return date(2025, 1, 10)
