"""
Dashboard analysis pipeline.

Runs the eight analyzers over one frozen Dataset as independent tasks and
collects their results into a single DashboardAnalysis.

Each analyzer is a pure synchronous function, so it is dispatched with
asyncio.to_thread and the tasks are joined with asyncio.gather. An analyzer
that raises is reported as unavailable with the error message; the others
are unaffected.

Usage:
    from dashboard_analytics.services.pipeline import analyze_dataset, analyze_dataset_sync

    analysis = await analyze_dataset(rows, columns)
    analysis = analyze_dataset_sync(rows, columns)  # outside an event loop
"""

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Type

from dashboard_analytics.core.config import Settings, get_settings
from dashboard_analytics.models.enums import ColumnType
from dashboard_analytics.models.schemas import (
    AnalysisResult,
    BasketResult,
    ChurnResult,
    CohortResult,
    CorrelationResult,
    DashboardAnalysis,
    GeoResult,
    MLResult,
    MonthlyAggregate,
    RFMResult,
    TimeSeriesResult,
)
from dashboard_analytics.services.churn import analyze_churn
from dashboard_analytics.services.cohort import analyze_cohorts
from dashboard_analytics.services.column_roles import (
    VALUE_KEYWORDS,
    find_column_by_type,
    find_numeric_columns,
    find_value_column,
)
from dashboard_analytics.services.correlation import analyze_correlations
from dashboard_analytics.services.dataset import ColumnsInput, Dataset, build_monthly_series, ensure_dataset
from dashboard_analytics.services.geo import analyze_geo
from dashboard_analytics.services.market_basket import analyze_market_basket
from dashboard_analytics.services.ml_engine import analyze_all
from dashboard_analytics.services.rfm import analyze_rfm
from dashboard_analytics.services.time_series import analyze_time_series

logger = logging.getLogger(__name__)


def build_dashboard_monthly_data(dataset: Dataset) -> List[MonthlyAggregate]:
    """
    Monthly revenue series shared by the time series and ML analyzers.

    Uses the DATE column and the revenue column (VALUE_KEYWORDS), falling back
    to the first numeric column. Empty when either is missing.
    """
    date_col = find_column_by_type(dataset.columns, ColumnType.DATE)
    value_col = find_value_column(dataset.columns, VALUE_KEYWORDS)
    if value_col is None:
        numeric = find_numeric_columns(dataset.columns)
        value_col = numeric[0] if numeric else None
    if date_col is None or value_col is None:
        return []
    return build_monthly_series(dataset.rows, date_col.name, value_col.name)


async def _run_analyzer(
    name: str,
    result_cls: Type[AnalysisResult],
    func: Callable[[], AnalysisResult],
) -> AnalysisResult:
    try:
        return await asyncio.to_thread(func)
    except Exception as e:
        logger.exception(f"Analyzer {name} failed")
        return result_cls.unavailable(str(e) or type(e).__name__)


async def analyze_dataset(
    rows,
    columns: Optional[ColumnsInput] = None,
    reference_date: Optional[date] = None,
    random_state: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> DashboardAnalysis:
    """
    Run every analyzer concurrently.

    Args:
        rows: Dataset or iterable of row mappings.
        columns: Column metadata.
        reference_date: "Now" for churn inactivity; defaults to today.
        random_state: k-means seed.
        settings: Settings override shared by all analyzers.

    Returns:
        DashboardAnalysis with one result per analyzer.
    """
    settings = settings or get_settings()
    dataset = ensure_dataset(rows, columns)
    monthly_data = build_dashboard_monthly_data(dataset)

    logger.info(
        f"Analyzing dataset: {len(dataset)} rows, {len(dataset.columns)} columns, "
        f"{len(monthly_data)} months"
    )

    rfm, cohort, churn, basket, correlation, time_series, ml, geo = await asyncio.gather(
        _run_analyzer('rfm', RFMResult, lambda: analyze_rfm(dataset)),
        _run_analyzer('cohort', CohortResult, lambda: analyze_cohorts(dataset)),
        _run_analyzer(
            'churn', ChurnResult,
            lambda: analyze_churn(dataset, reference_date=reference_date, settings=settings),
        ),
        _run_analyzer(
            'market_basket', BasketResult,
            lambda: analyze_market_basket(dataset, settings=settings),
        ),
        _run_analyzer('correlation', CorrelationResult, lambda: analyze_correlations(dataset)),
        _run_analyzer(
            'time_series', TimeSeriesResult,
            lambda: analyze_time_series(dataset, monthly_data=monthly_data, settings=settings),
        ),
        _run_analyzer(
            'ml', MLResult,
            lambda: analyze_all(
                dataset,
                existing_analytics={'monthlyData': monthly_data},
                random_state=random_state,
                settings=settings,
            ),
        ),
        _run_analyzer('geo', GeoResult, lambda: analyze_geo(dataset)),
    )

    return DashboardAnalysis(
        rowCount=len(dataset),
        generatedAt=datetime.now(timezone.utc),
        monthlyData=monthly_data,
        rfm=rfm,
        cohort=cohort,
        churn=churn,
        marketBasket=basket,
        correlation=correlation,
        timeSeries=time_series,
        ml=ml,
        geo=geo,
    )


def analyze_dataset_sync(
    rows,
    columns: Optional[ColumnsInput] = None,
    reference_date: Optional[date] = None,
    random_state: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> DashboardAnalysis:
    """Blocking wrapper around analyze_dataset for callers without an event loop."""
    return asyncio.run(analyze_dataset(rows, columns, reference_date, random_state, settings))
