"""
Settings and environment management module for the analytics core.

This module provides centralized configuration management using pydantic-settings,
which automatically loads settings from environment variables and .env files.

Key Features:
- Environment variable validation and type coercion
- Sensible defaults matching the dashboard's historical thresholds
- Singleton pattern via @lru_cache for efficient access

Environment Variables (all optional, prefix ANALYTICS_):
- ANALYTICS_LOG_LEVEL: Root log level (default: INFO)
- ANALYTICS_CHURN_HIGH_THRESHOLD / _MEDIUM_ / _LOW_: Churn risk level cut-offs
- ANALYTICS_BASKET_MIN_SUPPORT / ANALYTICS_BASKET_MIN_CONFIDENCE: Apriori filters
- ANALYTICS_KMEANS_RANDOM_SEED: Default seed for k-means initialization

Usage:
    from dashboard_analytics.core.config import get_settings

    settings = get_settings()
    high = settings.churn_high_threshold
"""

from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Analyzer settings loaded from environment variables.

    Every threshold used by the analyzers lives here so deployments can tune
    them without code changes. Defaults reproduce the behaviour the dashboard
    has always shown.

    Attributes:
        log_level: Level passed to configure_logging.
        churn_high_threshold: Minimum churn score for the ALTO risk level.
        churn_medium_threshold: Minimum churn score for the MÉDIO risk level.
        churn_low_threshold: Minimum churn score for the BAIXO risk level.
        basket_min_support: Minimum itemset support (fraction of transactions).
        basket_min_confidence: Minimum rule confidence (fraction).
        basket_min_transactions: Transactions required before mining rules.
        time_series_min_periods: Monthly periods required for decomposition.
        forecast_min_periods: Monthly totals required before fitting forecasts.
        forecast_horizon: Number of future periods to forecast.
        clustering_min_rows: Rows required before clustering.
        kmeans_max_clusters: Upper bound for k.
        kmeans_max_iterations: Hard iteration cap for k-means.
        kmeans_tolerance: Centroid movement below which k-means has converged.
        kmeans_random_seed: Seed used when no random source is injected.
        concentration_high_pct: Top-client revenue share flagged as ALTO.
        concentration_medium_pct: Top-client revenue share flagged as MÉDIO.
    """

    model_config = SettingsConfigDict(
        env_prefix='ANALYTICS_',
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=False,
    )

    log_level: str = 'INFO'

    # =========================================================================
    # Churn Risk Levels
    # =========================================================================

    # Score >= high => ALTO, >= medium => MÉDIO, >= low => BAIXO, else MÍNIMO
    churn_high_threshold: int = 70
    churn_medium_threshold: int = 40
    churn_low_threshold: int = 20

    # =========================================================================
    # Market Basket
    # =========================================================================

    # Fractions in [0, 1]; 0.02 = 2% of transactions
    basket_min_support: float = 0.02
    basket_min_confidence: float = 0.30
    basket_min_transactions: int = 10

    # =========================================================================
    # Time Series and Forecasting
    # =========================================================================

    time_series_min_periods: int = 12
    forecast_min_periods: int = 3
    forecast_horizon: int = 3

    # =========================================================================
    # Clustering
    # =========================================================================

    # k = min(kmeans_max_clusters, ceil(rows / clustering_min_rows))
    clustering_min_rows: int = 10
    kmeans_max_clusters: int = 5
    kmeans_max_iterations: int = 50
    kmeans_tolerance: float = 0.001
    kmeans_random_seed: int = 42

    # =========================================================================
    # Concentration Risk (percent of total revenue)
    # =========================================================================

    concentration_high_pct: float = 30.0
    concentration_medium_pct: float = 15.0

    @model_validator(mode='after')
    def check_threshold_order(self) -> 'Settings':
        if not (
            self.churn_high_threshold
            > self.churn_medium_threshold
            > self.churn_low_threshold
            >= 0
        ):
            raise ValueError(
                'Churn thresholds must satisfy high > medium > low >= 0'
            )
        if self.concentration_high_pct <= self.concentration_medium_pct:
            raise ValueError(
                'concentration_high_pct must be greater than concentration_medium_pct'
            )
        if not (0 <= self.basket_min_support <= 1 and 0 <= self.basket_min_confidence <= 1):
            raise ValueError('Basket support and confidence must be fractions in [0, 1]')
        return self


@lru_cache()
def get_settings() -> Settings:
    """
    Get the analyzer settings singleton.

    Returns:
        Settings: Cached settings instance.

    Raises:
        pydantic.ValidationError: If an environment override is invalid
            (e.g., churn thresholds out of order).

    Note:
        To refresh settings in tests, clear the cache:
        >>> get_settings.cache_clear()
    """
    return Settings()
