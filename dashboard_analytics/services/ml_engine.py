"""
Lightweight machine learning service: revenue forecasting, clustering and
client concentration risk.

Every step of analyze_all() is isolated: a step that raises is logged and left
out of the result, so one degenerate input never hides the others.

Forecasting:
    Monthly totals are fitted with three regressions over (period index,
    value): linear, exponential (log-linear, positive values only) and
    2nd-order polynomial. The model with the best R² is kept; a later model has
    to beat an earlier one by more than 1e-9 so the simpler model wins ties.
    Each model extrapolates three future periods.

Clustering:
    k = min(5, ceil(rows / 10)) over min-max normalized numeric columns.
    k-means uses an injected numpy Generator for the random initialization, so
    a fixed seed gives reproducible clusters.

Concentration Risk:
    Share of total revenue held by the single largest client.
    > 30% ALTO, > 15% MÉDIO, otherwise BAIXO.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from sklearn.metrics import r2_score, silhouette_score
from sklearn.preprocessing import MinMaxScaler

from dashboard_analytics.core.config import Settings, get_settings
from dashboard_analytics.models.enums import ColumnType, ForecastMethod, InsightPriority, RiskBucket
from dashboard_analytics.models.schemas import (
    ClusterFeature,
    ClusteringSummary,
    ClusterResult,
    ColumnMetadata,
    ConcentrationRisk,
    ForecastModel,
    ForecastPoint,
    Insight,
    MLResult,
    MonthlyAggregate,
    PredictorCorrelation,
    RegressionAnalysis,
)
from dashboard_analytics.services.column_roles import (
    SALES_VALUE_KEYWORDS,
    VALUE_KEYWORDS,
    find_column_by_type,
    find_numeric_columns,
    find_value_column,
    name_matches,
)
from dashboard_analytics.services.dataset import (
    ColumnsInput,
    Dataset,
    build_monthly_series,
    ensure_dataset,
    normalize_key,
    parse_number,
)
from dashboard_analytics.services.numeric import clamp, pearson_correlation, safe_divide

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

NOTHING_PRODUCED_REASON = 'Dados insuficientes para análises de machine learning'

# Later models must improve R² by more than this to replace an earlier one
R2_IMPROVEMENT_EPSILON = 1e-9

ROWS_PER_CLUSTER = 10
HIGH_VALUE_CENTROID = 0.66
MEDIUM_VALUE_CENTROID = 0.33
TOP_FEATURES = 3

MAX_PREDICTORS = 3

HIGH_ACCURACY_R2 = 0.8

CONCENTRATION_RECOMMENDATIONS = {
    RiskBucket.HIGH: 'Diversifique sua base de clientes para reduzir risco',
    RiskBucket.MEDIUM: 'Monitore a dependência dos principais clientes e amplie a carteira',
    RiskBucket.LOW: 'Concentração de clientes está saudável',
}


# =============================================================================
# Forecasting
# =============================================================================


@dataclass
class FittedModel:
    """Result of fitting one regression family."""
    method: ForecastMethod
    predict: Callable[[np.ndarray], np.ndarray]
    equation: str
    coefficients: List[float]


def _fit_linear(x: np.ndarray, y: np.ndarray) -> FittedModel:
    slope, intercept = np.polyfit(x, y, 1)
    return FittedModel(
        method=ForecastMethod.LINEAR,
        predict=lambda t: np.polyval([slope, intercept], t),
        equation=f'y = {slope:.2f}x + {intercept:.2f}',
        coefficients=[float(slope), float(intercept)],
    )


def _fit_exponential(x: np.ndarray, y: np.ndarray) -> FittedModel:
    if np.any(y <= 0):
        raise ValueError("Exponential fit requires strictly positive values")
    rate, log_scale = np.polyfit(x, np.log(y), 1)
    scale = math.exp(log_scale)
    return FittedModel(
        method=ForecastMethod.EXPONENTIAL,
        predict=lambda t: scale * np.exp(rate * np.asarray(t, dtype=float)),
        equation=f'y = {scale:.2f}e^({rate:.4f}x)',
        coefficients=[float(scale), float(rate)],
    )


def _fit_polynomial(x: np.ndarray, y: np.ndarray) -> FittedModel:
    coeffs = np.polyfit(x, y, 2)
    a, b, c = (float(v) for v in coeffs)
    return FittedModel(
        method=ForecastMethod.POLYNOMIAL,
        predict=lambda t: np.polyval(coeffs, t),
        equation=f'y = {a:.2f}x^2 + {b:.2f}x + {c:.2f}',
        coefficients=[a, b, c],
    )


# Evaluation order matters: ties keep the earlier (simpler) model
FORECAST_MODELS: Tuple[Callable[[np.ndarray, np.ndarray], FittedModel], ...] = (
    _fit_linear,
    _fit_exponential,
    _fit_polynomial,
)


def monthly_totals(monthly_data: Sequence[Any]) -> List[float]:
    """Totals of pre-aggregated months (MonthlyAggregate or dicts with total/revenue)."""
    totals = []
    for item in monthly_data:
        if isinstance(item, MonthlyAggregate):
            totals.append(item.total)
            continue
        raw = item.get('total', item.get('revenue'))
        totals.append(parse_number(raw) or 0.0)
    return totals


def _r_squared(y: np.ndarray, fitted: np.ndarray) -> float:
    """R² of a fit; on a flat series a matching fit scores 1 and anything else 0."""
    if np.ptp(y) == 0:
        return 1.0 if np.allclose(fitted, y) else 0.0
    return float(r2_score(y, fitted))


def predict_revenue(totals: Sequence[float], settings: Optional[Settings] = None) -> List[ForecastModel]:
    """
    Fit every regression family and keep the best one.

    Args:
        totals: Monthly totals in chronological order.
        settings: Minimum periods and forecast horizon.

    Returns:
        A list with the single best ForecastModel, or empty when there are too
        few periods or every fit failed.
    """
    settings = settings or get_settings()
    if len(totals) < settings.forecast_min_periods:
        return []

    y = np.asarray(totals, dtype=float)
    x = np.arange(len(y), dtype=float)
    future = np.arange(len(y), len(y) + settings.forecast_horizon, dtype=float)

    best: Optional[ForecastModel] = None
    for fit in FORECAST_MODELS:
        try:
            model = fit(x, y)
            fitted = model.predict(x)
            if not np.all(np.isfinite(fitted)):
                raise ValueError("Non-finite fitted values")
            r2 = _r_squared(y, fitted)
        except (ValueError, np.linalg.LinAlgError) as e:
            logger.warning(f"Forecast model {fit.__name__} failed: {e}")
            continue

        confidence = clamp(r2 * 100, 0.0, 100.0)
        forecast = ForecastModel(
            method=model.method,
            predictions=[
                ForecastPoint(
                    month=f'Mês +{i + 1}',
                    periodIndex=int(period),
                    predicted=max(0.0, float(value)) if math.isfinite(value) else 0.0,
                    confidence=confidence,
                )
                for i, (period, value) in enumerate(zip(future, model.predict(future)))
            ],
            accuracy=r2,
            equation=model.equation,
            coefficients=model.coefficients,
        )
        if best is None or r2 > best.accuracy + R2_IMPROVEMENT_EPSILON:
            best = forecast

    if best is None:
        return []
    logger.debug(f"Forecast: {best.method.value} selected with R²={best.accuracy:.4f}")
    return [best]


# =============================================================================
# Clustering
# =============================================================================


@dataclass
class KMeansResult:
    labels: np.ndarray
    centroids: np.ndarray
    iterations: int
    converged: bool


def kmeans(
    data: np.ndarray,
    k: int,
    rng: np.random.Generator,
    max_iterations: int = 50,
    tolerance: float = 0.001,
) -> KMeansResult:
    """
    Lloyd's k-means with random initialization.

    Initial centroids are k distinct rows drawn with ``rng``. Each iteration
    assigns every row to its nearest centroid (Euclidean) and moves centroids
    to their members' mean; a centroid without members stays where it is.
    Stops when every centroid moved less than ``tolerance`` or after
    ``max_iterations`` iterations.

    Args:
        data: (n, d) array.
        k: Number of clusters, 1 <= k <= n.
        rng: Random source; pass a seeded Generator for reproducible output.

    Returns:
        KMeansResult with one label per row.
    """
    n = len(data)
    if not 1 <= k <= n:
        raise ValueError(f"k must be between 1 and {n}, got {k}")

    centroids = data[rng.choice(n, size=k, replace=False)].astype(float)
    labels = np.zeros(n, dtype=int)
    iterations = 0
    converged = False

    while not converged and iterations < max_iterations:
        iterations += 1
        distances = np.linalg.norm(data[:, np.newaxis, :] - centroids[np.newaxis, :, :], axis=2)
        labels = distances.argmin(axis=1)

        updated = centroids.copy()
        for cluster in range(k):
            members = data[labels == cluster]
            if len(members):
                updated[cluster] = members.mean(axis=0)

        movement = np.linalg.norm(updated - centroids, axis=1)
        centroids = updated
        converged = bool(np.all(movement < tolerance))

    return KMeansResult(labels=labels, centroids=centroids, iterations=iterations, converged=converged)


def _cluster_name(dominant: float) -> str:
    if dominant > HIGH_VALUE_CENTROID:
        return 'Alto Valor'
    if dominant > MEDIUM_VALUE_CENTROID:
        return 'Médio Valor'
    return 'Baixo Valor'


def perform_clustering(
    dataset: Dataset,
    numeric_columns: Sequence[ColumnMetadata],
    random_state: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> Tuple[List[ClusterResult], Optional[ClusteringSummary]]:
    """
    Segment rows with k-means over normalized numeric columns.

    Columns without a single parseable cell are dropped; remaining missing
    cells are imputed with the column mean before min-max scaling.

    Returns:
        (clusters, summary); ([], None) when fewer than two usable numeric
        columns remain, there are too few rows, or k < 2.
    """
    settings = settings or get_settings()
    n = len(dataset)
    if len(numeric_columns) < 2 or n < settings.clustering_min_rows:
        return [], None

    k = min(settings.kmeans_max_clusters, math.ceil(n / ROWS_PER_CLUSTER))
    if k < 2:
        return [], None

    frame = dataset.numeric_frame([col.name for col in numeric_columns])
    frame = frame.dropna(axis=1, how='all')
    if frame.shape[1] < 2:
        logger.warning(f"Clustering skipped: {frame.shape[1]} numeric column(s) with parseable values")
        return [], None

    names = list(frame.columns)
    frame = frame.fillna(frame.mean())
    raw = frame.to_numpy(dtype=float)
    normalized = MinMaxScaler().fit_transform(raw)

    seed = settings.kmeans_random_seed if random_state is None else random_state
    result = kmeans(
        normalized,
        k,
        np.random.default_rng(seed),
        max_iterations=settings.kmeans_max_iterations,
        tolerance=settings.kmeans_tolerance,
    )

    clusters = []
    for cluster in range(k):
        member_mask = result.labels == cluster
        members = np.flatnonzero(member_mask)
        if len(members) == 0:
            continue

        centroid = result.centroids[cluster]
        averages = raw[member_mask].mean(axis=0)
        ranked = sorted(range(len(names)), key=lambda j: centroid[j], reverse=True)
        features = [
            ClusterFeature(column=names[j], average=float(averages[j]), normalizedCentroid=float(centroid[j]))
            for j in ranked[:TOP_FEATURES]
        ]

        clusters.append(ClusterResult(
            id=len(clusters) + 1,
            name=_cluster_name(float(centroid[ranked[0]])),
            size=len(members),
            percentage=round(len(members) / n * 100, 1),
            memberIndices=members.tolist(),
            centroid={name: float(value) for name, value in zip(names, centroid)},
            characteristics=[f'Média de {f.column}: {f.average:.2f}' for f in features],
            topFeatures=features,
        ))

    silhouette = None
    distinct = len(set(result.labels.tolist()))
    if 2 <= distinct < n:
        silhouette = float(silhouette_score(normalized, result.labels))

    logger.info(
        f"Clustering: k={k}, {len(clusters)} non-empty clusters, "
        f"{result.iterations} iterations (converged={result.converged})"
    )

    summary = ClusteringSummary(
        k=k,
        iterations=result.iterations,
        converged=result.converged,
        silhouetteScore=silhouette,
        columns=names,
    )
    return clusters, summary


# =============================================================================
# Concentration Risk
# =============================================================================


def get_concentration_bucket(share_pct: float, settings: Optional[Settings] = None) -> RiskBucket:
    settings = settings or get_settings()
    if share_pct > settings.concentration_high_pct:
        return RiskBucket.HIGH
    if share_pct > settings.concentration_medium_pct:
        return RiskBucket.MEDIUM
    return RiskBucket.LOW


def calculate_risk_scores(dataset: Dataset, settings: Optional[Settings] = None) -> List[ConcentrationRisk]:
    """Revenue share of the largest client; empty without client/revenue columns or revenue."""
    client_col = find_column_by_type(dataset.columns, ColumnType.CLIENT)
    value_col = find_value_column(dataset.columns, VALUE_KEYWORDS)
    if client_col is None or value_col is None:
        return []

    revenue_by_client: Dict[str, float] = {}
    for row in dataset.rows:
        client = normalize_key(row.get(client_col.name))
        value = parse_number(row.get(value_col.name))
        if client is None or value is None:
            continue
        revenue_by_client[client] = revenue_by_client.get(client, 0.0) + value

    total = sum(revenue_by_client.values())
    if not revenue_by_client or total <= 0:
        return []

    top_client, top_revenue = max(revenue_by_client.items(), key=lambda item: item[1])
    share = top_revenue / total * 100
    bucket = get_concentration_bucket(share, settings)

    return [ConcentrationRisk(
        clientId=top_client,
        score=share,
        risk=bucket,
        description=f'Cliente "{top_client}" representa {share:.1f}% da receita',
        recommendation=CONCENTRATION_RECOMMENDATIONS[bucket],
    )]


# =============================================================================
# Regression Analysis
# =============================================================================


def _find_dependent_column(numeric_columns: Sequence[ColumnMetadata]) -> ColumnMetadata:
    for keyword in SALES_VALUE_KEYWORDS:
        for col in numeric_columns:
            if name_matches(col.name, keyword):
                return col
    return numeric_columns[0]


def multiple_regression(
    dataset: Dataset,
    numeric_columns: Sequence[ColumnMetadata],
) -> Optional[RegressionAnalysis]:
    """
    Rank the other numeric columns as predictors of the sales value column.

    Correlations use rows where both cells parse; a predictor with fewer than
    two such rows is skipped. The top three predictors by absolute correlation
    are kept.

    Returns:
        None when fewer than two numeric columns exist or no predictor shares
        two parsed rows with the dependent column.
    """
    if len(numeric_columns) < 2:
        return None

    dependent = _find_dependent_column(numeric_columns)
    candidates = [col.name for col in numeric_columns if col.name != dependent.name]
    frame = dataset.numeric_frame([dependent.name] + candidates)

    correlations = []
    for name in candidates:
        pair = frame[[dependent.name, name]].dropna()
        if len(pair) < 2:
            continue
        r = pearson_correlation(pair[name].tolist(), pair[dependent.name].tolist())
        correlations.append(PredictorCorrelation(variable=name, correlation=r, strength=abs(r)))

    if not correlations:
        return None

    correlations.sort(key=lambda c: c.strength, reverse=True)
    correlations = correlations[:MAX_PREDICTORS]

    return RegressionAnalysis(
        dependent=dependent.name,
        independent=[c.variable for c in correlations],
        correlations=correlations,
        topPredictor=correlations[0],
    )


# =============================================================================
# Recommendations
# =============================================================================


def generate_ml_recommendations(
    predictions: List[ForecastModel],
    clusters: List[ClusterResult],
    risk_scores: List[ConcentrationRisk],
) -> List[Insight]:
    recommendations = []

    if predictions and predictions[0].predictions:
        model = predictions[0]
        rising = model.predictions[-1].predicted > model.predictions[0].predicted
        trend = 'crescimento' if rising else 'queda'
        recommendations.append(Insight(
            type='forecast',
            priority=InsightPriority.HIGH if model.accuracy > HIGH_ACCURACY_R2 else InsightPriority.MEDIUM,
            title=f'Tendência de {trend} identificada',
            description=f'Modelo {model.method.value} prevê {trend} nos próximos {len(model.predictions)} meses',
            confidence=f'{model.accuracy * 100:.1f}%',
            action='Prepare-se para aumento de demanda' if rising else 'Revise estratégias para reverter queda',
        ))

    if clusters:
        largest = max(clusters, key=lambda c: c.size)
        recommendations.append(Insight(
            type='segmentation',
            priority=InsightPriority.MEDIUM,
            title=f'{len(clusters)} segmentos identificados',
            description=f'Maior segmento: {largest.name} ({largest.percentage:.1f}%)',
            action='Personalize estratégias para cada segmento',
        ))

    high_risks = [r for r in risk_scores if r.risk == RiskBucket.HIGH]
    if high_risks:
        recommendations.append(Insight(
            type='risk',
            priority=InsightPriority.HIGH,
            title=f'{len(high_risks)} risco(s) alto(s) detectado(s)',
            description=high_risks[0].description,
            action=high_risks[0].recommendation,
        ))

    return recommendations


# =============================================================================
# Public Entry Point
# =============================================================================


def _resolve_monthly_totals(dataset: Dataset, existing_analytics: Optional[Mapping[str, Any]]) -> List[float]:
    if existing_analytics and existing_analytics.get('monthlyData'):
        return monthly_totals(existing_analytics['monthlyData'])

    date_col = find_column_by_type(dataset.columns, ColumnType.DATE)
    value_col = find_value_column(dataset.columns, VALUE_KEYWORDS)
    if value_col is None:
        numeric = find_numeric_columns(dataset.columns)
        value_col = numeric[0] if numeric else None
    if date_col is None or value_col is None:
        return []
    return [m.total for m in build_monthly_series(dataset.rows, date_col.name, value_col.name)]


def analyze_all(
    rows,
    columns: Optional[ColumnsInput] = None,
    existing_analytics: Optional[Mapping[str, Any]] = None,
    random_state: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> MLResult:
    """
    Run forecasting, clustering, concentration risk and regression analysis.

    Args:
        rows: Dataset or iterable of row mappings.
        columns: Column metadata.
        existing_analytics: Previously computed analytics; ``monthlyData`` is
            reused for forecasting when present.
        random_state: Seed for k-means initialization; defaults to
            ``kmeans_random_seed``.
        settings: Settings override.

    Returns:
        MLResult with whatever steps succeeded; unavailable when none produced
        anything.
    """
    settings = settings or get_settings()
    dataset = ensure_dataset(rows, columns)
    numeric_columns = find_numeric_columns(dataset.columns)

    predictions: List[ForecastModel] = []
    clusters: List[ClusterResult] = []
    clustering: Optional[ClusteringSummary] = None
    risk_scores: List[ConcentrationRisk] = []
    regression: Optional[RegressionAnalysis] = None

    try:
        predictions = predict_revenue(_resolve_monthly_totals(dataset, existing_analytics), settings)
    except Exception:
        logger.exception("Revenue forecast failed")

    try:
        clusters, clustering = perform_clustering(dataset, numeric_columns, random_state, settings)
    except Exception:
        logger.exception("Clustering failed")

    try:
        risk_scores = calculate_risk_scores(dataset, settings)
    except Exception:
        logger.exception("Concentration risk scoring failed")

    try:
        regression = multiple_regression(dataset, numeric_columns)
    except Exception:
        logger.exception("Regression analysis failed")

    if not (predictions or clusters or risk_scores or regression):
        logger.warning("ML analysis produced no results")
        return MLResult.unavailable(NOTHING_PRODUCED_REASON)

    logger.info(
        f"ML: {len(predictions)} forecast model(s), {len(clusters)} clusters, "
        f"{len(risk_scores)} risk score(s)"
    )

    return MLResult(
        predictions=predictions,
        clusters=clusters,
        clustering=clustering,
        riskScores=risk_scores,
        regressionAnalysis=regression,
        recommendations=generate_ml_recommendations(predictions, clusters, risk_scores),
    )
