"""
Correlation analysis service for numeric dataset columns.

This module computes the pairwise correlation matrix over every NUMBER and
CURRENCY column, buckets each coefficient into a strength label, attaches a
heuristic significance level and produces the symmetric heatmap consumed by
the dashboard.

Key Features:
- Pearson (default) or Spearman (Pearson over average ranks) coefficients
- Pairwise-complete observations: a row is used for a pair only when both
  cells parse as numbers
- Strength buckets: Muito Forte / Forte / Moderada / Fraca / Muito Fraca
- Heuristic p-value from the t statistic, bucketed against fixed critical values

Known approximation:
    pValue is NOT an exact hypothesis test. The t statistic
    t = r·sqrt(n-2)/sqrt(1-r²) is compared with 2.576 / 1.96 / 1.645 and mapped
    to 0.01 / 0.05 / 0.1, or 0.2 below all three. Dashboards have always
    displayed these bucketed values, so they are kept as-is.

Usage:
    from dashboard_analytics.services.correlation import analyze_correlations

    result = analyze_correlations(rows, columns)
    for pair in result.significant:
        print(pair.variable1, pair.variable2, pair.coefficient)
"""

import logging
import math
from itertools import combinations
from typing import List, Optional, Tuple

import pandas as pd

from dashboard_analytics.models.enums import (
    CorrelationDirection,
    CorrelationMethod,
    CorrelationStrength,
    InsightPriority,
)
from dashboard_analytics.models.schemas import (
    CorrelationHeatmap,
    CorrelationPair,
    CorrelationResult,
    Insight,
)
from dashboard_analytics.services.column_roles import find_numeric_columns
from dashboard_analytics.services.dataset import ColumnsInput, ensure_dataset
from dashboard_analytics.services.numeric import clamp

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

UNAVAILABLE_REASON = 'Mínimo de 2 colunas numéricas necessárias'

# (minimum |r|, label), checked top to bottom
STRENGTH_THRESHOLDS: Tuple[Tuple[float, CorrelationStrength], ...] = (
    (0.9, CorrelationStrength.VERY_STRONG),
    (0.7, CorrelationStrength.STRONG),
    (0.5, CorrelationStrength.MODERATE),
    (0.3, CorrelationStrength.WEAK),
)

# (critical |t|, p-value bucket); |t| above the critical value yields the bucket
P_VALUE_BUCKETS: Tuple[Tuple[float, float], ...] = (
    (2.576, 0.01),
    (1.96, 0.05),
    (1.645, 0.1),
)
P_VALUE_FLOOR_BUCKET = 0.2

# A pair is "significant" when |r| >= MIN_SIGNIFICANT_R and p <= MAX_SIGNIFICANT_P
MIN_SIGNIFICANT_R = 0.3
MAX_SIGNIFICANT_P = 0.05

# Threshold for strong positive / negative group insights
STRONG_CORRELATION = 0.7


# =============================================================================
# Coefficient Classification
# =============================================================================


def get_correlation_strength(coefficient: float) -> CorrelationStrength:
    """
    Strength label for a correlation coefficient.

    Example:
        >>> get_correlation_strength(-0.75)
        <CorrelationStrength.STRONG: 'Forte'>
    """
    magnitude = abs(coefficient)
    for threshold, label in STRENGTH_THRESHOLDS:
        if magnitude >= threshold:
            return label
    return CorrelationStrength.VERY_WEAK


def calculate_p_value(r: float, n: int) -> float:
    """
    Bucketed p-value approximation for a correlation coefficient.

    Args:
        r: Correlation coefficient.
        n: Number of paired observations.

    Returns:
        1.0 when n < 3; 0.01 for |r| = 1 (t is unbounded); otherwise one of
        0.01, 0.05, 0.1, 0.2 depending on |t|.
    """
    if n < 3:
        return 1.0
    if abs(r) >= 1:
        return P_VALUE_BUCKETS[0][1]

    t = r * math.sqrt(n - 2) / math.sqrt(1 - r * r)
    abs_t = abs(t)
    for critical, p_value in P_VALUE_BUCKETS:
        if abs_t > critical:
            return p_value
    return P_VALUE_FLOOR_BUCKET


def build_correlation_pair(variable1: str, variable2: str, r: float, n: int) -> CorrelationPair:
    return CorrelationPair(
        variable1=variable1,
        variable2=variable2,
        coefficient=r,
        strength=get_correlation_strength(r),
        direction=CorrelationDirection.POSITIVE if r >= 0 else CorrelationDirection.NEGATIVE,
        pValue=calculate_p_value(r, n),
        sampleSize=n,
    )


# =============================================================================
# Matrix Computation
# =============================================================================


def calculate_correlation_matrix(
    frame: pd.DataFrame,
    method: CorrelationMethod = CorrelationMethod.PEARSON,
) -> List[CorrelationPair]:
    """
    Correlation for every unordered pair of columns in ``frame``.

    pandas computes each coefficient on pairwise-complete observations; a pair
    with a constant column (zero denominator) or fewer than two shared rows
    yields 0.

    Args:
        frame: Parsed numeric frame (NaN for unparseable cells).
        method: Pearson or Spearman.

    Returns:
        Pairs sorted by |coefficient| descending (stable for ties).
    """
    names = list(frame.columns)
    coefficients = frame.corr(method=CorrelationMethod(method).value, min_periods=2)
    valid = frame.notna().astype(int)
    sample_sizes = valid.T.dot(valid)

    pairs = []
    for i, j in combinations(range(len(names)), 2):
        raw = coefficients.iat[i, j]
        r = 0.0 if pd.isna(raw) else clamp(float(raw), -1.0, 1.0)
        n = int(sample_sizes.iat[i, j])
        pairs.append(build_correlation_pair(names[i], names[j], r, n))

    pairs.sort(key=lambda pair: abs(pair.coefficient), reverse=True)
    return pairs


def find_significant_correlations(matrix: List[CorrelationPair]) -> List[CorrelationPair]:
    return [
        pair for pair in matrix
        if abs(pair.coefficient) >= MIN_SIGNIFICANT_R and pair.pValue <= MAX_SIGNIFICANT_P
    ]


def build_heatmap(matrix: List[CorrelationPair], labels: List[str]) -> CorrelationHeatmap:
    """Symmetric label × label matrix with 1 on the diagonal."""
    size = len(labels)
    index = {name: i for i, name in enumerate(labels)}
    data = [[1.0 if i == j else 0.0 for j in range(size)] for i in range(size)]
    for pair in matrix:
        i = index.get(pair.variable1)
        j = index.get(pair.variable2)
        if i is None or j is None:
            continue
        data[i][j] = pair.coefficient
        data[j][i] = pair.coefficient
    return CorrelationHeatmap(labels=labels, data=data)


# =============================================================================
# Insights
# =============================================================================


def generate_correlation_insights(significant: List[CorrelationPair]) -> List[Insight]:
    insights = []

    for index, pair in enumerate(significant[:3]):
        verb = 'aumenta' if pair.direction == CorrelationDirection.POSITIVE else 'diminui'
        insights.append(Insight(
            type='correlation',
            priority=InsightPriority.HIGH if index == 0 else InsightPriority.MEDIUM,
            title=f'Correlação {pair.strength.value}: {pair.variable1} e {pair.variable2}',
            description=(
                f'Quando {pair.variable1} aumenta, {pair.variable2} {verb} '
                f'(r={pair.coefficient:.3f})'
            ),
            action=f'Use {pair.variable1} como indicador preditivo de {pair.variable2}',
            confidence=f'p-value: {pair.pValue}',
        ))

    strong_negative = [p for p in significant if p.coefficient < -STRONG_CORRELATION]
    if strong_negative:
        first = strong_negative[0]
        insights.append(Insight(
            type='negative_correlation',
            priority=InsightPriority.HIGH,
            title=f'{len(strong_negative)} correlação(ões) negativa(s) forte(s)',
            description=f'{first.variable1} e {first.variable2} são inversamente relacionados',
            action='Analise trade-offs entre estas variáveis nas decisões estratégicas',
        ))

    strong_positive = [p for p in significant if p.coefficient > STRONG_CORRELATION]
    if strong_positive:
        insights.append(Insight(
            type='positive_correlation',
            priority=InsightPriority.MEDIUM,
            title=f'{len(strong_positive)} correlação(ões) positiva(s) forte(s)',
            description='Variáveis que se movem juntas podem ser otimizadas simultaneamente',
            action='Crie estratégias combinadas para estas variáveis',
        ))

    return insights


# =============================================================================
# Public Entry Point
# =============================================================================


def analyze_correlations(
    rows,
    columns: Optional[ColumnsInput] = None,
    method: CorrelationMethod = CorrelationMethod.PEARSON,
) -> CorrelationResult:
    """
    Analyze pairwise correlations between numeric columns.

    Args:
        rows: Dataset or iterable of row mappings.
        columns: Column metadata (ignored when ``rows`` is a Dataset that
            already carries it).
        method: 'pearson' or 'spearman'.

    Returns:
        CorrelationResult; unavailable when fewer than two NUMBER/CURRENCY
        columns exist.

    Example:
        >>> rows = [{"a": i, "b": 2 * i} for i in range(10)]
        >>> cols = [{"name": "a", "type": "NUMBER"}, {"name": "b", "type": "NUMBER"}]
        >>> analyze_correlations(rows, cols).matrix[0].coefficient
        1.0
    """
    dataset = ensure_dataset(rows, columns)
    method = CorrelationMethod(method)

    numeric_columns = find_numeric_columns(dataset.columns)
    if len(numeric_columns) < 2:
        logger.warning(
            f"Correlation analysis unavailable: {len(numeric_columns)} numeric column(s)"
        )
        return CorrelationResult.unavailable(UNAVAILABLE_REASON)

    names = [col.name for col in numeric_columns]
    frame = dataset.numeric_frame(names)

    matrix = calculate_correlation_matrix(frame, method)
    significant = find_significant_correlations(matrix)

    logger.info(
        f"Correlation ({method.value}): {len(matrix)} pairs over {len(names)} columns, "
        f"{len(significant)} significant"
    )

    return CorrelationResult(
        method=method,
        matrix=matrix,
        significant=significant,
        insights=generate_correlation_insights(significant),
        heatmap=build_heatmap(matrix, names),
        columnsAnalyzed=names,
    )
