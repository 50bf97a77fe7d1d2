"""
Time series analysis service for monthly value series.

Implements classical additive decomposition plus seasonality, pattern and
autocorrelation analysis over a monthly series of at least 12 periods.

Algorithm Overview:
1. Series: pre-aggregated monthly totals, or rows summed by calendar month
   (DATE column + first NUMBER/CURRENCY column), gap months filled with zero
2. Trend: centered moving average, window w = min(12, n // 2). Even windows use
   the classical 2×w weighting (half weight on both ends) so the average stays
   centered; near the edges the window shrinks symmetrically
3. Seasonal: average detrended value per phase (index mod min(12, n)),
   repeated over the whole series
4. Residual: value - trend - seasonal, so the three components add back to
   the series exactly
5. Seasonality strength over 12 calendar months, trend / volatility / cycle
   patterns and lagged autocorrelation

Usage:
    from dashboard_analytics.services.time_series import analyze_time_series

    result = analyze_time_series(rows, columns)
    print(result.seasonality.peakMonth)
"""

import logging
from typing import Any, List, Mapping, Optional, Sequence, Union

import numpy as np

from dashboard_analytics.core.config import Settings, get_settings
from dashboard_analytics.models.enums import (
    ColumnType,
    InsightPriority,
    PatternType,
    TrendDirection,
    VolatilityLevel,
)
from dashboard_analytics.models.schemas import (
    AutocorrelationLag,
    ColumnsUsed,
    Decomposition,
    Insight,
    MonthlyAggregate,
    SeasonalMonth,
    Seasonality,
    TimeSeriesMetrics,
    TimeSeriesPattern,
    TimeSeriesPoint,
    TimeSeriesResult,
)
from dashboard_analytics.services.column_roles import find_column_by_type, find_numeric_columns
from dashboard_analytics.services.dataset import (
    MONTH_ABBREVIATIONS,
    ColumnsInput,
    build_monthly_series,
    ensure_dataset,
    parse_number,
)
from dashboard_analytics.services.numeric import (
    mean,
    pearson_correlation,
    percent_change,
    safe_divide,
    std_dev,
    variance,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MISSING_COLUMNS_REASON = 'Colunas de Data e Valor necessárias'

MAX_TREND_WINDOW = 12
MAX_SEASONAL_PERIOD = 12
CALENDAR_MONTHS = 12

# Trend change (percent, first vs second half of the trend) worth reporting
TREND_CHANGE_PCT = 10.0

# Coefficient of variation (percent) buckets
HIGH_VOLATILITY_CV = 30.0
MODERATE_VOLATILITY_CV = 15.0

# Cycle: autocovariance at lag p must exceed this share of the variance
CYCLE_AUTOCOVARIANCE_RATIO = 0.7
MIN_CYCLE_PERIOD = 3

MAX_AUTOCORRELATION_LAG = 12
SIGNIFICANT_AUTOCORRELATION = 0.3

# Seasonality strength (percent) reported as an insight
STRONG_SEASONALITY_PCT = 20.0

MonthlyInput = Sequence[Union[MonthlyAggregate, Mapping[str, Any]]]


# =============================================================================
# Series Preparation
# =============================================================================


def prepare_from_monthly_data(monthly_data: MonthlyInput) -> List[TimeSeriesPoint]:
    """
    Convert pre-aggregated months into series points.

    Accepts MonthlyAggregate objects or dicts carrying ``total`` (or
    ``revenue`` / ``value``) and optionally ``month`` / ``label``.
    """
    series = []
    for index, item in enumerate(monthly_data):
        if isinstance(item, MonthlyAggregate):
            item = item.model_dump()
        value = None
        for key in ('total', 'revenue', 'value'):
            if item.get(key) is not None:
                value = parse_number(item.get(key))
                break
        month = item.get('month')
        series.append(TimeSeriesPoint(
            period=index,
            value=value or 0.0,
            label=item.get('label') or month or f'Período {index + 1}',
            month=month,
        ))
    return series


def prepare_from_rows(rows, date_column: str, value_column: str) -> List[TimeSeriesPoint]:
    return prepare_from_monthly_data(build_monthly_series(rows, date_column, value_column))


# =============================================================================
# Decomposition
# =============================================================================


def centered_moving_average(values: Sequence[float], window: int) -> List[float]:
    """
    Centered moving average with symmetric edge shrinking.

    For an odd window every full position averages ``window`` points. For an
    even window the average spans window + 1 points with half weight on both
    ends (the 2×w moving average). Positions closer than window // 2 to an
    edge use the widest symmetric window that fits.

    A linear series is reproduced exactly.

    Example:
        >>> centered_moving_average([1, 2, 3, 4, 5, 6], 2)
        [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
    """
    data = np.asarray(values, dtype=float)
    n = len(data)
    if window <= 1 or n == 0:
        return data.tolist()

    half = window // 2
    full_weights = np.ones(2 * half + 1)
    if window % 2 == 0:
        full_weights[0] = full_weights[-1] = 0.5
    full_weights /= full_weights.sum()

    trend = np.empty(n)
    for i in range(n):
        reach = min(i, n - 1 - i, half)
        segment = data[i - reach:i + reach + 1]
        if reach == half:
            trend[i] = float(np.dot(segment, full_weights))
        else:
            trend[i] = float(segment.mean())
    return trend.tolist()


def decompose_series(values: Sequence[float]) -> Decomposition:
    """
    Additive decomposition into trend, seasonal and residual components.

    Args:
        values: Series values in time order.

    Returns:
        Decomposition whose trend / seasonal / residual lists have the length
        of ``values`` and satisfy value == trend + seasonal + residual.
    """
    data = np.asarray(values, dtype=float)
    n = len(data)
    window = min(MAX_TREND_WINDOW, n // 2)
    period = max(1, min(MAX_SEASONAL_PERIOD, n))

    trend = np.asarray(centered_moving_average(data, window))
    detrended = data - trend

    phases = np.arange(n) % period
    indices = np.array([
        detrended[phases == phase].mean() if np.any(phases == phase) else 0.0
        for phase in range(period)
    ])
    seasonal = indices[phases]
    residual = data - trend - seasonal

    return Decomposition(
        window=window,
        seasonalPeriod=period,
        trend=trend.tolist(),
        seasonal=seasonal.tolist(),
        residual=residual.tolist(),
        seasonalIndices=indices.tolist(),
    )


# =============================================================================
# Seasonality, Patterns and Autocorrelation
# =============================================================================


def _calendar_phase(point: TimeSeriesPoint, index: int) -> int:
    if point.month:
        try:
            return int(point.month.split('-')[1]) - 1
        except (IndexError, ValueError):
            pass
    return index % CALENDAR_MONTHS


def analyze_seasonality(series: List[TimeSeriesPoint]) -> Optional[Seasonality]:
    """
    Average value per calendar month and the peak-to-valley strength.

    Calendar months come from each point's ``month`` key when present,
    otherwise from the position modulo 12. Strength is
    (peak avg - valley avg) / overall mean × 100, 0 when the mean is zero.
    """
    if len(series) < CALENDAR_MONTHS:
        return None

    overall = mean([p.value for p in series])
    sums = [0.0] * CALENDAR_MONTHS
    counts = [0] * CALENDAR_MONTHS
    for index, point in enumerate(series):
        phase = _calendar_phase(point, index)
        sums[phase] += point.value
        counts[phase] += 1

    pattern = []
    for phase in range(CALENDAR_MONTHS):
        avg = safe_divide(sums[phase], counts[phase])
        pattern.append(SeasonalMonth(
            month=MONTH_ABBREVIATIONS[phase],
            avgValue=avg,
            indexValue=avg / overall * 100 if overall > 0 else 100.0,
        ))

    observed = [pattern[phase] for phase in range(CALENDAR_MONTHS) if counts[phase] > 0]
    peak = max(observed, key=lambda m: m.avgValue)
    valley = min(observed, key=lambda m: m.avgValue)

    return Seasonality(
        pattern=pattern,
        peakMonth=peak.month,
        peakValue=peak.avgValue,
        valleyMonth=valley.month,
        valleyValue=valley.avgValue,
        seasonalityStrength=safe_divide(peak.avgValue - valley.avgValue, overall) * 100,
    )


def detect_cycle(values: Sequence[float]) -> int:
    """
    First period p in 3..n//3 whose mean-centered autocovariance exceeds 70%
    of the series variance, or 0 when none qualifies.
    """
    data = np.asarray(values, dtype=float)
    n = len(data)
    var = variance(data.tolist())
    if var == 0:
        return 0
    centered = data - data.mean()
    for period in range(MIN_CYCLE_PERIOD, n // 3 + 1):
        autocovariance = float(np.mean(centered[:-period] * centered[period:]))
        if autocovariance > var * CYCLE_AUTOCOVARIANCE_RATIO:
            return period
    return 0


def detect_patterns(values: Sequence[float], trend: Sequence[float]) -> List[TimeSeriesPattern]:
    """Trend, volatility and cycle patterns of the series."""
    patterns = []

    if len(trend) >= 2:
        half = len(trend) // 2
        change = percent_change(mean(trend[half:]), mean(trend[:half]))
        if abs(change) > TREND_CHANGE_PCT:
            rising = change > 0
            patterns.append(TimeSeriesPattern(
                type=PatternType.TREND,
                description='Tendência de crescimento' if rising else 'Tendência de queda',
                direction=TrendDirection.UP if rising else TrendDirection.DOWN,
                magnitudePct=abs(change),
                confidence=InsightPriority.HIGH,
            ))

    cv = safe_divide(std_dev(values), abs(mean(values))) * 100
    if cv > HIGH_VOLATILITY_CV:
        level, description = VolatilityLevel.HIGH, 'Alta volatilidade'
    elif cv > MODERATE_VOLATILITY_CV:
        level, description = VolatilityLevel.MODERATE, 'Volatilidade moderada'
    else:
        level, description = VolatilityLevel.LOW, 'Baixa volatilidade'
    patterns.append(TimeSeriesPattern(
        type=PatternType.VOLATILITY,
        description=description,
        level=level,
        coefficientOfVariation=cv,
        confidence=InsightPriority.HIGH,
    ))

    cycle = detect_cycle(values)
    if cycle > 0:
        patterns.append(TimeSeriesPattern(
            type=PatternType.CYCLE,
            description=f'Ciclo de {cycle} períodos detectado',
            length=cycle,
            confidence=InsightPriority.MEDIUM,
        ))

    return patterns


def calculate_autocorrelation(values: Sequence[float]) -> List[AutocorrelationLag]:
    """Pearson autocorrelation for lags 1..min(12, n // 3)."""
    data = list(values)
    max_lag = min(MAX_AUTOCORRELATION_LAG, len(data) // 3)
    lags = []
    for lag in range(1, max_lag + 1):
        r = pearson_correlation(data[:-lag], data[lag:])
        lags.append(AutocorrelationLag(lag=lag, value=r, significant=abs(r) > SIGNIFICANT_AUTOCORRELATION))
    return lags


# =============================================================================
# Insights and Metrics
# =============================================================================


def generate_time_series_insights(
    seasonality: Optional[Seasonality],
    patterns: List[TimeSeriesPattern],
) -> List[Insight]:
    insights = []

    trend = next((p for p in patterns if p.type == PatternType.TREND), None)
    if trend is not None:
        insights.append(Insight(
            type='timeseries_trend',
            priority=InsightPriority.HIGH,
            title=trend.description,
            description=f'Variação de {trend.magnitudePct:.1f}%',
            action=(
                'Capitalize na tendência positiva'
                if trend.direction == TrendDirection.UP
                else 'Implemente ações corretivas urgentes'
            ),
        ))

    if seasonality is not None and seasonality.seasonalityStrength > STRONG_SEASONALITY_PCT:
        insights.append(Insight(
            type='timeseries_seasonality',
            priority=InsightPriority.MEDIUM,
            title=f'Sazonalidade forte detectada ({seasonality.seasonalityStrength:.1f}%)',
            description=f'Pico em {seasonality.peakMonth}, vale em {seasonality.valleyMonth}',
            action='Prepare estoque e marketing para meses de pico',
        ))

    volatility = next((p for p in patterns if p.type == PatternType.VOLATILITY), None)
    if volatility is not None and volatility.level == VolatilityLevel.HIGH:
        insights.append(Insight(
            type='timeseries_volatility',
            priority=InsightPriority.MEDIUM,
            title=volatility.description,
            description=f'Coeficiente de variação: {volatility.coefficientOfVariation:.1f}%',
            action='Revisar estratégias para reduzir flutuações',
        ))

    return insights


def calculate_time_series_metrics(values: Sequence[float], trend: Sequence[float]) -> TimeSeriesMetrics:
    data = list(values)
    return TimeSeriesMetrics(
        periods=len(data),
        mean=mean(data),
        stdDev=std_dev(data),
        min=min(data),
        max=max(data),
        trendStrengthPct=percent_change(trend[-1], trend[0]) if len(trend) >= 2 else 0.0,
        autocorrelationLag1=pearson_correlation(data[:-1], data[1:]),
    )


# =============================================================================
# Public Entry Point
# =============================================================================


def analyze_time_series(
    rows=None,
    columns: Optional[ColumnsInput] = None,
    monthly_data: Optional[MonthlyInput] = None,
    settings: Optional[Settings] = None,
) -> TimeSeriesResult:
    """
    Decompose and characterize a monthly series.

    Args:
        rows: Dataset or iterable of row mappings (used when ``monthly_data``
            is not given).
        columns: Column metadata.
        monthly_data: Pre-aggregated months; takes precedence over rows.
        settings: Settings override.

    Returns:
        TimeSeriesResult; unavailable without date/value columns (when rows
        must be aggregated) or with fewer than the minimum number of periods.
    """
    settings = settings or get_settings()
    columns_used = None

    if monthly_data:
        series = prepare_from_monthly_data(monthly_data)
    else:
        dataset = ensure_dataset(rows if rows is not None else (), columns)
        date_col = find_column_by_type(dataset.columns, ColumnType.DATE)
        numeric_cols = find_numeric_columns(dataset.columns)
        if date_col is None or not numeric_cols:
            logger.warning("Time series unavailable: date or numeric column missing")
            return TimeSeriesResult.unavailable(MISSING_COLUMNS_REASON)
        value_col = numeric_cols[0]
        series = prepare_from_rows(dataset.rows, date_col.name, value_col.name)
        columns_used = ColumnsUsed(date=date_col.name, value=value_col.name)

    minimum = settings.time_series_min_periods
    if len(series) < minimum:
        logger.warning(f"Time series unavailable: {len(series)} periods (minimum {minimum})")
        return TimeSeriesResult.unavailable(
            f'Mínimo de {minimum} períodos necessários para análise temporal'
        )

    values = [p.value for p in series]
    decomposition = decompose_series(values)
    seasonality = analyze_seasonality(series)
    patterns = detect_patterns(values, decomposition.trend)

    logger.info(
        f"Time series: {len(series)} periods, window {decomposition.window}, "
        f"{len(patterns)} patterns"
    )

    return TimeSeriesResult(
        series=series,
        decomposition=decomposition,
        seasonality=seasonality,
        patterns=patterns,
        autocorrelation=calculate_autocorrelation(values),
        insights=generate_time_series_insights(seasonality, patterns),
        metrics=calculate_time_series_metrics(values, decomposition.trend),
        columnsUsed=columns_used,
    )
