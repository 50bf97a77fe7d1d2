"""
Test suite for the ML engine: forecasting, k-means clustering, concentration
risk and regression.

The tests verify:
1. Best-R² model selection and forecast shape
2. k-means invariants and seed reproducibility
3. Concentration buckets and the largest-client share
4. Dependent column resolution and predictor ranking
5. Step isolation in analyze_all()
"""

import numpy as np
import pytest

from dashboard_analytics.core.config import Settings
from dashboard_analytics.models import ColumnType, ForecastMethod, RiskBucket
from dashboard_analytics.services import ml_engine
from dashboard_analytics.services.dataset import ensure_dataset
from dashboard_analytics.services.ml_engine import (
    NOTHING_PRODUCED_REASON,
    analyze_all,
    calculate_risk_scores,
    get_concentration_bucket,
    kmeans,
    multiple_regression,
    perform_clustering,
    predict_revenue,
)
from dashboard_analytics.tests.factories import make_columns


CLIENT_VALUE_COLUMNS = make_columns(('Cliente', ColumnType.CLIENT), ('Valor', ColumnType.CURRENCY))


def two_metric_dataset(n: int):
    rows = [{'Valor': 50 + (i * 37) % 200, 'Quantidade': 1 + i % 7} for i in range(n)]
    return ensure_dataset(rows, make_columns(('Valor', ColumnType.CURRENCY), ('Quantidade', ColumnType.NUMBER)))


# =============================================================================
# TEST CLASS: FORECASTING
# =============================================================================


class TestPredictRevenue:

    def test_linear_series_selects_linear_model(self) -> None:
        models = predict_revenue([100, 110, 120, 130, 140, 150])

        assert len(models) == 1
        model = models[0]
        assert model.method == ForecastMethod.LINEAR
        assert model.accuracy == pytest.approx(1.0)
        assert [p.month for p in model.predictions] == ['Mês +1', 'Mês +2', 'Mês +3']
        assert [p.periodIndex for p in model.predictions] == [6, 7, 8]
        assert [p.predicted for p in model.predictions] == pytest.approx([160, 170, 180])
        assert model.predictions[0].confidence == pytest.approx(100.0)

    def test_exponential_series_selects_exponential_model(self) -> None:
        models = predict_revenue([100 * 2 ** i for i in range(6)])

        assert models[0].method == ForecastMethod.EXPONENTIAL
        assert models[0].accuracy == pytest.approx(1.0)
        assert models[0].predictions[0].predicted == pytest.approx(6400)

    def test_zero_values_skip_exponential_fit(self) -> None:
        models = predict_revenue([0, 10, 20, 30])
        assert models[0].method == ForecastMethod.LINEAR

    def test_exponential_fit_rejects_non_positive_values(self) -> None:
        x = np.arange(3, dtype=float)
        with pytest.raises(ValueError):
            ml_engine._fit_exponential(x, np.array([1.0, 0.0, 2.0]))

    def test_predictions_are_never_negative(self) -> None:
        models = predict_revenue([30, 20, 10])
        assert all(p.predicted >= 0 for p in models[0].predictions)
        assert models[0].predictions[-1].predicted == 0.0

    @pytest.mark.parametrize('value', [5.0, 0.0, 1234.56])
    def test_flat_series_is_a_perfect_fit(self, value) -> None:
        model = predict_revenue([value] * 3)[0]

        assert model.method == ForecastMethod.LINEAR
        assert model.accuracy == 1.0
        assert model.predictions[0].confidence == 100.0
        assert [p.predicted for p in model.predictions] == pytest.approx([value] * 3)

    def test_too_few_periods(self) -> None:
        assert predict_revenue([100, 200]) == []

    def test_configured_horizon(self) -> None:
        settings = Settings(forecast_horizon=5)
        models = predict_revenue([1, 2, 3, 4], settings)
        assert len(models[0].predictions) == 5


# =============================================================================
# TEST CLASS: K-MEANS
# =============================================================================


class TestKMeans:

    def test_every_row_assigned_once(self) -> None:
        data = np.random.default_rng(7).random((30, 2))
        result = kmeans(data, 4, np.random.default_rng(1))

        assert result.labels.shape == (30,)
        assert set(result.labels.tolist()) <= {0, 1, 2, 3}
        assert result.centroids.shape == (4, 2)
        assert 1 <= result.iterations <= 50

    def test_same_seed_same_clusters(self) -> None:
        data = np.random.default_rng(7).random((40, 3))
        first = kmeans(data, 3, np.random.default_rng(123))
        second = kmeans(data, 3, np.random.default_rng(123))

        assert first.labels.tolist() == second.labels.tolist()
        np.testing.assert_allclose(first.centroids, second.centroids)

    def test_one_cluster_per_row(self) -> None:
        data = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
        result = kmeans(data, 3, np.random.default_rng(0))

        assert sorted(result.labels.tolist()) == [0, 1, 2]
        assert result.converged
        assert result.iterations == 1

    def test_single_cluster_centroid_is_mean(self) -> None:
        data = np.array([[0.0, 0.0], [2.0, 4.0]])
        result = kmeans(data, 1, np.random.default_rng(0))
        np.testing.assert_allclose(result.centroids[0], [1.0, 2.0])

    @pytest.mark.parametrize('k', [0, 4])
    def test_invalid_k(self, k) -> None:
        with pytest.raises(ValueError):
            kmeans(np.zeros((3, 2)), k, np.random.default_rng(0))


class TestPerformClustering:

    def test_partition_of_rows(self, sales_rows, sales_columns) -> None:
        dataset = ensure_dataset(sales_rows, sales_columns)
        clusters, summary = perform_clustering(dataset, [sales_columns[3], sales_columns[5]], random_state=3)

        assert summary.k == 5
        assert summary.columns == ['Valor', 'Quantidade']
        assert len(clusters) <= 5
        members = sorted(i for c in clusters for i in c.memberIndices)
        assert members == list(range(len(sales_rows)))
        assert sum(c.size for c in clusters) == len(sales_rows)
        assert all(c.name in ('Alto Valor', 'Médio Valor', 'Baixo Valor') for c in clusters)
        assert [c.id for c in clusters] == list(range(1, len(clusters) + 1))

    def test_reproducible_with_seed(self) -> None:
        dataset = two_metric_dataset(40)
        columns = list(dataset.columns)

        first, _ = perform_clustering(dataset, columns, random_state=11)
        second, _ = perform_clustering(dataset, columns, random_state=11)

        assert [c.memberIndices for c in first] == [c.memberIndices for c in second]

    def test_characteristics_describe_member_averages(self) -> None:
        dataset = two_metric_dataset(20)
        clusters, _ = perform_clustering(dataset, list(dataset.columns), random_state=0)

        for cluster in clusters:
            assert len(cluster.topFeatures) == 2
            assert cluster.characteristics[0].startswith('Média de ')

    def test_missing_cells_are_imputed(self) -> None:
        rows = [{'Valor': 10 * i, 'Quantidade': i % 3} for i in range(12)]
        rows[4]['Valor'] = 'n/d'
        dataset = ensure_dataset(rows, make_columns(('Valor', ColumnType.CURRENCY), ('Quantidade', ColumnType.NUMBER)))
        clusters, _ = perform_clustering(dataset, list(dataset.columns), random_state=0)

        assert sum(c.size for c in clusters) == 12

    def test_unparseable_columns_are_not_features(self) -> None:
        rows = [{'a': 'x', 'b': 'y', 'Valor': 10 * i, 'Quantidade': i % 4} for i in range(20)]
        columns = make_columns(
            ('a', ColumnType.NUMBER),
            ('b', ColumnType.NUMBER),
            ('Valor', ColumnType.CURRENCY),
            ('Quantidade', ColumnType.NUMBER),
        )
        clusters, summary = perform_clustering(ensure_dataset(rows, columns), columns, random_state=0)

        assert summary.columns == ['Valor', 'Quantidade']
        assert all(set(c.centroid) == {'Valor', 'Quantidade'} for c in clusters)

    def test_fewer_than_two_usable_columns(self) -> None:
        rows = [{'a': 'x', 'b': 'y'} for _ in range(20)]
        columns = make_columns(('a', ColumnType.NUMBER), ('b', ColumnType.NUMBER))

        assert perform_clustering(ensure_dataset(rows, columns), columns) == ([], None)

    @pytest.mark.parametrize('n', [5, 10])
    def test_too_few_rows(self, n) -> None:
        dataset = two_metric_dataset(n)
        assert perform_clustering(dataset, list(dataset.columns)) == ([], None)

    def test_single_numeric_column(self) -> None:
        dataset = two_metric_dataset(30)
        assert perform_clustering(dataset, [dataset.columns[0]]) == ([], None)


# =============================================================================
# TEST CLASS: CONCENTRATION RISK
# =============================================================================


class TestConcentrationRisk:

    @pytest.mark.parametrize('share, expected', [
        (60.0, RiskBucket.HIGH),
        (30.5, RiskBucket.HIGH),
        (30.0, RiskBucket.MEDIUM),
        (16.0, RiskBucket.MEDIUM),
        (15.0, RiskBucket.LOW),
    ])
    def test_buckets(self, share, expected) -> None:
        assert get_concentration_bucket(share) == expected

    def test_largest_client_share(self) -> None:
        rows = [
            {'Cliente': 'A', 'Valor': 400},
            {'Cliente': 'B', 'Valor': 300},
            {'Cliente': 'A', 'Valor': 200},
            {'Cliente': 'C', 'Valor': 100},
        ]
        risks = calculate_risk_scores(ensure_dataset(rows, CLIENT_VALUE_COLUMNS))

        assert len(risks) == 1
        assert risks[0].clientId == 'A'
        assert risks[0].score == pytest.approx(60.0)
        assert risks[0].risk == RiskBucket.HIGH
        assert risks[0].description == 'Cliente "A" representa 60.0% da receita'
        assert risks[0].recommendation == 'Diversifique sua base de clientes para reduzir risco'

    def test_requires_client_column(self) -> None:
        columns = make_columns(('Valor', ColumnType.CURRENCY))
        assert calculate_risk_scores(ensure_dataset([{'Valor': 1}], columns)) == []

    def test_zero_revenue(self) -> None:
        rows = [{'Cliente': 'A', 'Valor': 0}]
        assert calculate_risk_scores(ensure_dataset(rows, CLIENT_VALUE_COLUMNS)) == []


# =============================================================================
# TEST CLASS: REGRESSION
# =============================================================================


class TestMultipleRegression:

    def test_sales_column_is_dependent(self) -> None:
        rows = [
            {'Quantidade': q, 'Valor': q * 10, 'Desconto': (q * 3) % 5}
            for q in range(1, 11)
        ]
        columns = make_columns(
            ('Quantidade', ColumnType.NUMBER),
            ('Valor', ColumnType.CURRENCY),
            ('Desconto', ColumnType.NUMBER),
        )
        analysis = multiple_regression(ensure_dataset(rows, columns), columns)

        assert analysis.dependent == 'Valor'
        assert analysis.topPredictor.variable == 'Quantidade'
        assert analysis.topPredictor.correlation == pytest.approx(1.0)
        assert set(analysis.independent) == {'Quantidade', 'Desconto'}

    def test_keeps_top_three_predictors(self) -> None:
        columns = make_columns(*[(name, ColumnType.NUMBER) for name in ('a', 'b', 'c', 'd', 'e')])
        rows = [{'a': i, 'b': i, 'c': -i, 'd': i % 2, 'e': (i * 7) % 3} for i in range(12)]
        analysis = multiple_regression(ensure_dataset(rows, columns), columns)

        assert analysis.dependent == 'a'
        assert len(analysis.correlations) == 3
        assert analysis.independent[:2] in (['b', 'c'], ['c', 'b'])
        strengths = [c.strength for c in analysis.correlations]
        assert strengths == sorted(strengths, reverse=True)

    def test_predictors_without_shared_rows_are_skipped(self) -> None:
        rows = [{'Valor': i * 10, 'Quantidade': i, 'Frete': 'a combinar'} for i in range(1, 6)]
        columns = make_columns(
            ('Valor', ColumnType.CURRENCY),
            ('Quantidade', ColumnType.NUMBER),
            ('Frete', ColumnType.CURRENCY),
        )
        analysis = multiple_regression(ensure_dataset(rows, columns), columns)

        assert analysis.independent == ['Quantidade']

    def test_no_parseable_values(self) -> None:
        columns = make_columns(('a', ColumnType.NUMBER), ('b', ColumnType.NUMBER))
        dataset = ensure_dataset([{'a': 'x', 'b': 'y'}] * 20, columns)
        assert multiple_regression(dataset, columns) is None

    def test_needs_two_numeric_columns(self) -> None:
        columns = make_columns(('Valor', ColumnType.CURRENCY))
        assert multiple_regression(ensure_dataset([{'Valor': 1}], columns), columns) is None


# =============================================================================
# TEST CLASS: ANALYZE ALL
# =============================================================================


class TestAnalyzeAll:

    def test_sample_dataset(self, sales_rows, sales_columns) -> None:
        result = analyze_all(sales_rows, sales_columns, random_state=42)

        assert result.available
        assert len(result.predictions) == 1
        assert result.clusters
        assert result.clustering.k == 5
        assert result.riskScores[0].type == 'client_concentration'
        assert result.regressionAnalysis.dependent == 'Valor'
        types = [r.type for r in result.recommendations]
        assert types[:2] == ['forecast', 'segmentation']

    def test_reuses_existing_monthly_data(self) -> None:
        existing = {'monthlyData': [{'total': 100}, {'total': 200}, {'total': 300}]}
        result = analyze_all([{'Cliente': 'A', 'Valor': 10}], CLIENT_VALUE_COLUMNS, existing_analytics=existing)

        assert [p.predicted for p in result.predictions[0].predictions] == pytest.approx([400, 500, 600])

    def test_failing_step_is_isolated(self, monkeypatch, sales_rows, sales_columns) -> None:
        def broken(*args, **kwargs):
            raise RuntimeError('boom')

        monkeypatch.setattr(ml_engine, 'perform_clustering', broken)
        result = analyze_all(sales_rows, sales_columns)

        assert result.available
        assert result.clusters == []
        assert result.clustering is None
        assert result.predictions

    def test_unparseable_numeric_columns_produce_nothing(self) -> None:
        columns = make_columns(('a', ColumnType.NUMBER), ('b', ColumnType.NUMBER))
        result = analyze_all([{'a': 'x', 'b': 'y'}] * 20, columns)

        assert not result.available
        assert result.clusters == []
        assert result.reason == NOTHING_PRODUCED_REASON

    def test_nothing_produced(self) -> None:
        columns = make_columns(('Nome', ColumnType.TEXT))
        result = analyze_all([{'Nome': 'a'}], columns)

        assert not result.available
        assert result.reason == NOTHING_PRODUCED_REASON
