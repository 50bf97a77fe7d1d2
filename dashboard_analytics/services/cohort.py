"""
Cohort retention analysis service.

Clients are grouped by the calendar month of their first purchase (the cohort
key, "YYYY-MM"). Every later transaction is placed in the period equal to the
number of calendar months since that first purchase, giving per-cohort
retention and revenue curves.

Key Features:
- Dense retention matrix (cohorts × periods), zero-filled up to the global
  maximum period
- Optional revenue matrix with revenue per client and average ticket per period
- Lifetime value per cohort: total revenue / clients active in period 0
- Retention trend over the averaged retention curve

Edge Cases:
- Rows with missing client or unparseable date are skipped
- Unparseable values count as zero revenue; the transaction still counts as
  activity
- Period index is clamped to >= 0
- Period 0 retention is always exactly 100%

Usage:
    from dashboard_analytics.services.cohort import analyze_cohorts

    result = analyze_cohorts(rows, columns)
    print(result.metrics.avgRetentionPeriod1)
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Set, Tuple

from dashboard_analytics.models.enums import ColumnType, InsightPriority, RetentionTrend
from dashboard_analytics.models.schemas import (
    Cohort,
    CohortLTV,
    CohortMetrics,
    CohortPeriod,
    CohortResult,
    ColumnsUsed,
    Insight,
    RetentionRow,
    RevenuePeriod,
    RevenueRow,
)
from dashboard_analytics.services.column_roles import (
    VALUE_KEYWORDS,
    find_column_by_type,
    find_value_column,
)
from dashboard_analytics.services.dataset import (
    ColumnsInput,
    ensure_dataset,
    month_key,
    months_between,
    normalize_key,
    parse_date,
    parse_number,
)
from dashboard_analytics.services.numeric import mean, safe_divide

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

UNAVAILABLE_REASON = 'Colunas de Cliente e Data são necessárias'

# Period-1 retention below this is flagged as high churn risk; above the
# excellent threshold it is praised
LOW_RETENTION_PCT = 30.0
EXCELLENT_RETENTION_PCT = 60.0

# Relative change (percent) between halves of the averaged retention curve
TREND_CHANGE_PCT = 10.0


# =============================================================================
# Cohort Builder
# =============================================================================


@dataclass
class _PeriodAccumulator:
    active_clients: Set[str] = field(default_factory=set)
    revenue: float = 0.0
    transactions: int = 0


class _CohortBuilder:
    """Accumulates one cohort's activity, then freezes it into a Cohort record."""

    def __init__(self, cohort_key: str):
        self.cohort_key = cohort_key
        self.cohort_date: Optional[date] = None
        self.clients: Set[str] = set()
        self.periods: Dict[int, _PeriodAccumulator] = {}

    def add(self, client: str, first_purchase: date, period_index: int, revenue: float) -> None:
        self.clients.add(client)
        if self.cohort_date is None or first_purchase < self.cohort_date:
            self.cohort_date = first_purchase
        period = self.periods.setdefault(period_index, _PeriodAccumulator())
        period.active_clients.add(client)
        period.revenue += revenue
        period.transactions += 1

    def build(self) -> Cohort:
        size = len(self.clients)
        periods = [
            CohortPeriod(
                periodIndex=index,
                activeClients=len(acc.active_clients),
                retentionPct=safe_divide(len(acc.active_clients), size) * 100,
                revenue=acc.revenue,
                transactions=acc.transactions,
            )
            for index, acc in sorted(self.periods.items())
        ]
        return Cohort(
            cohortKey=self.cohort_key,
            cohortDate=self.cohort_date,
            initialSize=size,
            periods=periods,
        )


def build_cohorts(
    rows,
    client_column: str,
    date_column: str,
    value_column: Optional[str] = None,
) -> List[Cohort]:
    """
    Group transactions into first-purchase cohorts.

    Two passes: the first finds each client's global first purchase, the
    second assigns every transaction to (cohort, period).

    Returns:
        Cohorts sorted chronologically by cohort key.
    """
    parsed: List[Tuple[str, date, float]] = []
    first_purchase: Dict[str, date] = {}

    for row in rows:
        client = normalize_key(row.get(client_column))
        purchase_date = parse_date(row.get(date_column))
        if client is None or purchase_date is None:
            continue
        revenue = 0.0
        if value_column is not None:
            revenue = parse_number(row.get(value_column)) or 0.0
        parsed.append((client, purchase_date, revenue))
        if client not in first_purchase or purchase_date < first_purchase[client]:
            first_purchase[client] = purchase_date

    builders: Dict[str, _CohortBuilder] = {}
    for client, purchase_date, revenue in parsed:
        first = first_purchase[client]
        key = month_key(first)
        builder = builders.setdefault(key, _CohortBuilder(key))
        builder.add(client, first, max(0, months_between(first, purchase_date)), revenue)

    return [builders[key].build() for key in sorted(builders)]


# =============================================================================
# Matrices
# =============================================================================


def _max_period(cohorts: List[Cohort]) -> int:
    return max((p.periodIndex for c in cohorts for p in c.periods), default=0)


def calculate_retention_matrix(cohorts: List[Cohort]) -> List[RetentionRow]:
    """Dense retention rows, zero-filled for periods a cohort never reached."""
    period_count = _max_period(cohorts) + 1
    matrix = []
    for cohort in cohorts:
        observed = {p.periodIndex: p for p in cohort.periods}
        matrix.append(RetentionRow(
            cohortKey=cohort.cohortKey,
            initialSize=cohort.initialSize,
            periods=[observed.get(i, CohortPeriod(periodIndex=i)) for i in range(period_count)],
        ))
    return matrix


def calculate_revenue_matrix(cohorts: List[Cohort]) -> List[RevenueRow]:
    """Dense revenue rows aligned with the retention matrix."""
    period_count = _max_period(cohorts) + 1
    matrix = []
    for cohort in cohorts:
        observed = {p.periodIndex: p for p in cohort.periods}
        periods = []
        for i in range(period_count):
            period = observed.get(i)
            revenue = period.revenue if period else 0.0
            transactions = period.transactions if period else 0
            periods.append(RevenuePeriod(
                periodIndex=i,
                revenue=revenue,
                revenuePerClient=safe_divide(revenue, cohort.initialSize),
                avgTransactionValue=safe_divide(revenue, transactions),
            ))
        matrix.append(RevenueRow(cohortKey=cohort.cohortKey, periods=periods))
    return matrix


def calculate_average_retention(matrix: List[RetentionRow]) -> List[float]:
    """
    Mean retention per period index over cohorts with positive retention.

    Zero-filled cells (cohorts too young to reach the period, or with no
    returning client) are left out of each mean; an index with no positive
    value averages to 0.
    """
    if not matrix:
        return []
    period_count = max(len(row.periods) for row in matrix)
    averages = []
    for i in range(period_count):
        values = [
            row.periods[i].retentionPct
            for row in matrix
            if i < len(row.periods) and row.periods[i].retentionPct > 0
        ]
        averages.append(mean(values))
    return averages


def calculate_retention_trend(average_retention: List[float]) -> RetentionTrend:
    """
    Compare the first and second half of the averaged retention curve.

    Period 0 (always 100%) is left out of the first half. A relative change
    beyond ±10% is reported as queda / crescimento.
    """
    if len(average_retention) < 3:
        return RetentionTrend.STABLE

    midpoint = math.ceil(len(average_retention) / 2)
    first_half = average_retention[1:midpoint]
    second_half = average_retention[midpoint:]
    if not first_half or not second_half:
        return RetentionTrend.STABLE

    avg_first = mean(first_half)
    avg_second = mean(second_half)
    if avg_first == 0:
        return RetentionTrend.GROWING if avg_second > 0 else RetentionTrend.STABLE

    change = (avg_second - avg_first) / avg_first * 100
    if change < -TREND_CHANGE_PCT:
        return RetentionTrend.DECLINING
    if change > TREND_CHANGE_PCT:
        return RetentionTrend.GROWING
    return RetentionTrend.STABLE


def calculate_ltv(revenue_matrix: List[RevenueRow], cohorts: List[Cohort]) -> List[CohortLTV]:
    """LTV per cohort = total revenue / clients active in period 0."""
    period0_active = {
        c.cohortKey: next((p.activeClients for p in c.periods if p.periodIndex == 0), 0)
        for c in cohorts
    }
    ltvs = []
    for row in revenue_matrix:
        total = sum(p.revenue for p in row.periods)
        ltvs.append(CohortLTV(
            cohortKey=row.cohortKey,
            ltv=safe_divide(total, period0_active.get(row.cohortKey, 0)),
            totalRevenue=total,
        ))
    return ltvs


# =============================================================================
# Insights and Metrics
# =============================================================================


def find_best_cohort(matrix: List[RetentionRow]) -> Optional[Tuple[str, float]]:
    """Cohort with the highest period-1 retention (first one wins ties)."""
    if not matrix:
        return None
    best = max(
        matrix,
        key=lambda row: row.periods[1].retentionPct if len(row.periods) > 1 else 0.0,
    )
    retention = best.periods[1].retentionPct if len(best.periods) > 1 else 0.0
    return best.cohortKey, retention


def generate_cohort_insights(
    matrix: List[RetentionRow],
    average_retention: List[float],
    trend: RetentionTrend,
    ltvs: List[CohortLTV],
) -> List[Insight]:
    insights = []

    if len(average_retention) >= 2:
        period1 = average_retention[1]
        if period1 < LOW_RETENTION_PCT:
            description = 'Retenção baixa - risco de churn elevado'
        elif period1 > EXCELLENT_RETENTION_PCT:
            description = 'Excelente retenção de clientes'
        else:
            description = 'Retenção moderada'
        insights.append(Insight(
            type='cohort_retention',
            priority=InsightPriority.HIGH if period1 < LOW_RETENTION_PCT else InsightPriority.MEDIUM,
            title=f'Retenção média no período 1: {period1:.1f}%',
            description=description,
            action=(
                'Implementar programa de engajamento imediato'
                if period1 < LOW_RETENTION_PCT
                else 'Manter estratégias de retenção atuais'
            ),
        ))

    if len(average_retention) >= 3 and trend != RetentionTrend.STABLE:
        declining = trend == RetentionTrend.DECLINING
        insights.append(Insight(
            type='cohort_trend',
            priority=InsightPriority.HIGH if declining else InsightPriority.MEDIUM,
            title=f'Tendência de retenção: {trend.value}',
            description=f'Retenção está em {trend.value} ao longo dos períodos',
            action=(
                'Revisar estratégias de engajamento e satisfação'
                if declining
                else 'Potencializar ações que estão funcionando'
            ),
        ))

    if len(matrix) > 1:
        cohort_key, retention = find_best_cohort(matrix)
        insights.append(Insight(
            type='cohort_best',
            priority=InsightPriority.MEDIUM,
            title=f'Melhor coorte: {cohort_key}',
            description=f'Retenção de {retention:.1f}% no período 1',
            action='Analisar o que tornou esta coorte especial e replicar',
        ))

    if ltvs:
        avg_ltv = mean([c.ltv for c in ltvs])
        best = max(ltvs, key=lambda c: c.ltv)
        insights.append(Insight(
            type='cohort_ltv',
            priority=InsightPriority.MEDIUM,
            title=f'LTV médio: R$ {avg_ltv:.2f}',
            description=f'Melhor coorte: {best.cohortKey} com LTV de R$ {best.ltv:.2f}',
            action='Foque em aumentar LTV através de upsell e retenção',
        ))

    return insights


def calculate_cohort_metrics(
    cohorts: List[Cohort],
    average_retention: List[float],
    trend: RetentionTrend,
    ltvs: List[CohortLTV],
) -> CohortMetrics:
    total_clients = sum(c.initialSize for c in cohorts)

    def period_avg(index: int) -> float:
        return average_retention[index] if index < len(average_retention) else 0.0

    return CohortMetrics(
        totalCohorts=len(cohorts),
        totalClients=total_clients,
        avgCohortSize=safe_divide(total_clients, len(cohorts)),
        avgRetentionPeriod1=period_avg(1),
        avgRetentionPeriod2=period_avg(2),
        avgRetentionPeriod3=period_avg(3),
        averageRetention=average_retention,
        retentionTrend=trend,
        avgLtv=mean([c.ltv for c in ltvs]) if ltvs else None,
    )


# =============================================================================
# Public Entry Point
# =============================================================================


def analyze_cohorts(rows, columns: Optional[ColumnsInput] = None) -> CohortResult:
    """
    Run the cohort retention analysis.

    Args:
        rows: Dataset or iterable of row mappings.
        columns: Column metadata.

    Returns:
        CohortResult; unavailable when the client or date column is missing
        or no row has both a client and a parseable date. The revenue matrix
        and LTV figures are present only when a value column is found.
    """
    dataset = ensure_dataset(rows, columns)

    client_col = find_column_by_type(dataset.columns, ColumnType.CLIENT)
    date_col = find_column_by_type(dataset.columns, ColumnType.DATE)
    value_col = find_value_column(dataset.columns, VALUE_KEYWORDS)

    if client_col is None or date_col is None:
        logger.warning("Cohort analysis unavailable: client or date column missing")
        return CohortResult.unavailable(UNAVAILABLE_REASON)

    value_name = value_col.name if value_col else None
    cohorts = build_cohorts(dataset.rows, client_col.name, date_col.name, value_name)
    if not cohorts:
        logger.warning("Cohort analysis unavailable: no rows with client and valid date")
        return CohortResult.unavailable(UNAVAILABLE_REASON)

    retention_matrix = calculate_retention_matrix(cohorts)
    revenue_matrix = calculate_revenue_matrix(cohorts) if value_col else None
    ltvs = calculate_ltv(revenue_matrix, cohorts) if revenue_matrix else []

    average_retention = calculate_average_retention(retention_matrix)
    trend = calculate_retention_trend(average_retention)

    logger.info(
        f"Cohorts: {len(cohorts)} cohorts, {len(average_retention)} periods, trend {trend.value}"
    )

    return CohortResult(
        cohorts=cohorts,
        retentionMatrix=retention_matrix,
        revenueMatrix=revenue_matrix,
        ltvByCohort=ltvs,
        insights=generate_cohort_insights(retention_matrix, average_retention, trend, ltvs),
        metrics=calculate_cohort_metrics(cohorts, average_retention, trend, ltvs),
        columnsUsed=ColumnsUsed(
            client=client_col.name,
            date=date_col.name,
            value=value_name,
        ),
    )
