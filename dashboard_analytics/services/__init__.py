"""
Analytics Services Module

This module contains the analyzers behind the business dashboard. Each
analyzer is a pure, stateless function of (rows, column metadata) returning a
result model with an ``available`` flag.

Services:
- rfm: Recency/Frequency/Monetary segmentation
- cohort: First-purchase cohort retention and LTV
- churn: Heuristic churn risk scoring
- market_basket: Association rules (Apriori, itemsets of size 2)
- correlation: Pairwise Pearson/Spearman correlation
- time_series: Monthly decomposition, seasonality and patterns
- ml_engine: Forecasting, k-means clustering and concentration risk
- geo: State, region and city distribution
- pipeline: Concurrent execution of all analyzers

Shared helpers:
- dataset: Frozen Dataset, locale-aware number/date parsing, monthly series
- column_roles: Column role matchers and their keyword lists
- numeric: Guarded statistics helpers
"""

# =============================================================================
# Dataset and Column Role Exports
# =============================================================================

from dashboard_analytics.services.dataset import (
    Dataset,
    ensure_dataset,
    parse_number,
    parse_date,
    build_monthly_series,
)
from dashboard_analytics.services.column_roles import (
    find_column_by_type,
    find_value_column,
    find_numeric_columns,
    find_transaction_column,
    find_geo_columns,
    VALUE_KEYWORDS,
    SALES_VALUE_KEYWORDS,
    TRANSACTION_KEYWORDS,
)

# =============================================================================
# Analyzer Exports
# =============================================================================

from dashboard_analytics.services.rfm import analyze_rfm
from dashboard_analytics.services.cohort import analyze_cohorts
from dashboard_analytics.services.churn import analyze_churn
from dashboard_analytics.services.market_basket import analyze_market_basket
from dashboard_analytics.services.correlation import analyze_correlations
from dashboard_analytics.services.time_series import analyze_time_series
from dashboard_analytics.services.ml_engine import analyze_all
from dashboard_analytics.services.geo import analyze_geo

# =============================================================================
# Pipeline Exports
# =============================================================================

from dashboard_analytics.services.pipeline import analyze_dataset, analyze_dataset_sync

# =============================================================================
# __all__ - Public API Definition
# =============================================================================

__all__ = [
    # ----- Dataset -----
    'Dataset',
    'ensure_dataset',
    'parse_number',
    'parse_date',
    'build_monthly_series',
    # ----- Column Roles -----
    'find_column_by_type',
    'find_value_column',
    'find_numeric_columns',
    'find_transaction_column',
    'find_geo_columns',
    'VALUE_KEYWORDS',
    'SALES_VALUE_KEYWORDS',
    'TRANSACTION_KEYWORDS',
    # ----- Analyzers -----
    'analyze_rfm',
    'analyze_cohorts',
    'analyze_churn',
    'analyze_market_basket',
    'analyze_correlations',
    'analyze_time_series',
    'analyze_all',
    'analyze_geo',
    # ----- Pipeline -----
    'analyze_dataset',
    'analyze_dataset_sync',
]
