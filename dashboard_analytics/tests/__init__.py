'''
Dashboard Analytics Test Suite

Test Modules:
-------------
- test_dataset.py: Value parsing (numbers, dates) and monthly aggregation
- test_column_roles.py: Client / date / value / transaction column resolution
- test_rfm.py: Quintile scoring, segment table, champion vs lost scenario
- test_cohort.py: Retention matrix, average retention, LTV by cohort
- test_churn.py: Churn score components, risk levels, indicators
- test_market_basket.py: Transaction grouping, support / confidence / lift
- test_correlation.py: Strength buckets, p-value buckets, heatmap
- test_time_series.py: Decomposition identity, seasonality, cycles
- test_ml_engine.py: Forecast selection, k-means, concentration risk
- test_geo.py: State resolution, state / region / city breakdowns, diversity
- test_pipeline.py: Concurrent analyzer execution and failure isolation
- test_config.py: Settings loading and logging setup

Running Tests:
--------------
    pip install -e ".[test]"
    pytest -v

Test Dependencies:
------------------
- pytest
- pytest-asyncio

Configuration:
--------------
See conftest.py for shared fixtures and factories.py for data builders.
'''

__all__ = []
