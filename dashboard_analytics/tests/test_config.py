"""
Test suite for settings loading and logging setup.
"""

import logging

import pytest
from pydantic import ValidationError

from dashboard_analytics.core import LOG_FORMAT, Settings, configure_logging, get_settings


# =============================================================================
# TEST CLASS: SETTINGS
# =============================================================================


class TestSettings:

    def test_defaults(self) -> None:
        settings = Settings()

        assert (
            settings.churn_high_threshold,
            settings.churn_medium_threshold,
            settings.churn_low_threshold,
        ) == (70, 40, 20)
        assert settings.basket_min_support == 0.02
        assert settings.basket_min_confidence == 0.30
        assert settings.basket_min_transactions == 10
        assert settings.time_series_min_periods == 12
        assert settings.kmeans_max_clusters == 5
        assert settings.concentration_high_pct == 30.0

    def test_environment_override(self, monkeypatch) -> None:
        monkeypatch.setenv('ANALYTICS_CHURN_HIGH_THRESHOLD', '80')
        monkeypatch.setenv('ANALYTICS_BASKET_MIN_SUPPORT', '0.05')

        settings = get_settings()
        assert settings.churn_high_threshold == 80
        assert settings.basket_min_support == 0.05

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()

    def test_churn_thresholds_must_be_ordered(self) -> None:
        with pytest.raises(ValidationError):
            Settings(churn_high_threshold=30, churn_medium_threshold=40)

    def test_concentration_thresholds_must_be_ordered(self) -> None:
        with pytest.raises(ValidationError):
            Settings(concentration_high_pct=10.0)

    def test_basket_fractions(self) -> None:
        with pytest.raises(ValidationError):
            Settings(basket_min_confidence=30)


# =============================================================================
# TEST CLASS: LOGGING
# =============================================================================


class TestConfigureLogging:

    def test_uses_settings_level(self, monkeypatch) -> None:
        calls = []
        monkeypatch.setattr(logging, 'basicConfig', lambda **kwargs: calls.append(kwargs))
        monkeypatch.setenv('ANALYTICS_LOG_LEVEL', 'debug')

        configure_logging()

        assert calls == [{'level': 'DEBUG', 'format': LOG_FORMAT}]

    def test_explicit_level(self, monkeypatch) -> None:
        calls = []
        monkeypatch.setattr(logging, 'basicConfig', lambda **kwargs: calls.append(kwargs))

        configure_logging(logging.WARNING)

        assert calls[0]['level'] == logging.WARNING
