"""
Test suite for the concurrent dashboard pipeline.

The tests verify:
1. Every analyzer runs and lands in its own DashboardAnalysis field
2. A failing analyzer is reported as unavailable without affecting the others
3. The shared monthly series prefers the revenue column
4. The geographic breakdown joins the bundle when location columns exist
5. The blocking wrapper
"""

from datetime import timezone

import pytest

from dashboard_analytics.models import ColumnType
from dashboard_analytics.services import pipeline
from dashboard_analytics.services.dataset import ensure_dataset
from dashboard_analytics.services.geo import NO_GEO_COLUMN_REASON
from dashboard_analytics.services.pipeline import (
    analyze_dataset,
    analyze_dataset_sync,
    build_dashboard_monthly_data,
)
from dashboard_analytics.tests.factories import make_columns


# =============================================================================
# TEST CLASS: MONTHLY SERIES
# =============================================================================


class TestDashboardMonthlyData:

    def test_prefers_revenue_column(self, sales_rows) -> None:
        columns = make_columns(
            ('Pedido', ColumnType.TEXT),
            ('Cliente', ColumnType.CLIENT),
            ('Data', ColumnType.DATE),
            ('Quantidade', ColumnType.NUMBER),
            ('Valor', ColumnType.CURRENCY),
        )
        months = build_dashboard_monthly_data(ensure_dataset(sales_rows, columns))

        assert len(months) == 12
        assert months[0].month == '2024-01'
        # five orders in January (Fabio skips it), two rows each
        assert months[0].total == pytest.approx(1602.5)
        assert months[0].count == 10

    def test_without_date_column(self) -> None:
        columns = make_columns(('Valor', ColumnType.CURRENCY))
        assert build_dashboard_monthly_data(ensure_dataset([{'Valor': 1}], columns)) == []


# =============================================================================
# TEST CLASS: ASYNC PIPELINE
# =============================================================================


class TestAnalyzeDataset:

    @pytest.mark.asyncio
    async def test_all_analyzers_run(self, sales_rows, sales_columns, reference_date) -> None:
        analysis = await analyze_dataset(
            sales_rows, sales_columns, reference_date=reference_date, random_state=42,
        )

        assert analysis.rowCount == len(sales_rows)
        assert analysis.generatedAt.tzinfo == timezone.utc
        assert len(analysis.monthlyData) == 12
        for result in (
            analysis.rfm, analysis.cohort, analysis.churn, analysis.marketBasket,
            analysis.correlation, analysis.timeSeries, analysis.ml,
        ):
            assert result.available, result.reason
        assert analysis.churn.metrics.referenceDate == reference_date
        assert analysis.timeSeries.metrics.periods == 12
        assert analysis.ml.clustering.k == 5
        assert not analysis.geo.available
        assert analysis.geo.reason == NO_GEO_COLUMN_REASON

    @pytest.mark.asyncio
    async def test_failing_analyzer_is_reported_unavailable(
        self, monkeypatch, sales_rows, sales_columns, reference_date,
    ) -> None:
        def broken(*args, **kwargs):
            raise RuntimeError('boom')

        monkeypatch.setattr(pipeline, 'analyze_rfm', broken)
        analysis = await analyze_dataset(sales_rows, sales_columns, reference_date=reference_date)

        assert not analysis.rfm.available
        assert analysis.rfm.reason == 'boom'
        assert analysis.cohort.available
        assert analysis.churn.available
        assert analysis.ml.available

    @pytest.mark.asyncio
    async def test_location_column_enables_geo(self, sales_rows, sales_columns, reference_date) -> None:
        cities = ['Campinas - SP', 'Niterói - RJ', 'Santos - SP']
        rows = [{**row, 'Cidade': cities[i % 3]} for i, row in enumerate(sales_rows)]
        columns = sales_columns + make_columns(('Cidade', ColumnType.TEXT))

        analysis = await analyze_dataset(rows, columns, reference_date=reference_date)

        assert analysis.geo.available
        counts = {s.state: s.count for s in analysis.geo.byState}
        assert counts == {'SP': len(rows) - len(rows[1::3]), 'RJ': len(rows[1::3])}
        assert len(analysis.geo.byCity) == 3
        assert analysis.rfm.available

    @pytest.mark.asyncio
    async def test_empty_dataset(self, sales_columns) -> None:
        analysis = await analyze_dataset([], sales_columns)

        assert analysis.rowCount == 0
        assert analysis.monthlyData == []
        assert not analysis.rfm.available
        assert not analysis.timeSeries.available
        assert not analysis.marketBasket.available

    @pytest.mark.asyncio
    async def test_same_seed_same_clusters(self, sales_rows, sales_columns, reference_date) -> None:
        first = await analyze_dataset(sales_rows, sales_columns, reference_date=reference_date, random_state=5)
        second = await analyze_dataset(sales_rows, sales_columns, reference_date=reference_date, random_state=5)

        assert [c.memberIndices for c in first.ml.clusters] == [c.memberIndices for c in second.ml.clusters]


class TestAnalyzeDatasetSync:

    def test_blocking_wrapper(self, sales_rows, sales_columns, reference_date) -> None:
        analysis = analyze_dataset_sync(sales_rows, sales_columns, reference_date=reference_date)

        assert analysis.rowCount == len(sales_rows)
        assert analysis.rfm.available
        assert analysis.model_dump()['marketBasket']['available'] is True
