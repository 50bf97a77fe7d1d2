"""
Churn risk scoring service.

Each client receives a 0-100 churn score built from behavioural signals,
compared with the population average:

    Component          Max pts   Rule
    -----------------  -------   ------------------------------------------------
    Recency              40      min(40, days_since_last / avg_days * 40)
    Frequency            30      max(0, 30 - frequency / avg_frequency * 30)
    Monetary             20      max(0, 20 - total_value / avg_value * 20)
    Value trend          10      10 if trend < -20%, 5 if trend < 0
    New but inactive     10      lifetime < 90 days and inactive > 30 days

A component whose population average is zero contributes nothing. The sum is
clamped to [0, 100] and rounded half-up.

"Now" for churn is the analysis date (wall clock by default), not the dataset's
latest purchase: churn measures real-world staleness, while RFM and cohort
analysis measure position within the dataset. Pass ``reference_date`` to pin
it (tests, re-running historical snapshots).

Usage:
    from dashboard_analytics.services.churn import analyze_churn

    result = analyze_churn(rows, columns, reference_date=date(2024, 6, 30))
    for prediction in result.atRisk:
        print(prediction.clientId, prediction.churnScore)
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Tuple

from dashboard_analytics.core.config import Settings, get_settings
from dashboard_analytics.models.enums import ChurnRiskLevel, ColumnType, InsightPriority
from dashboard_analytics.models.schemas import (
    ChurnMetrics,
    ChurnPrediction,
    ChurnResult,
    ColumnsUsed,
    Insight,
)
from dashboard_analytics.services.column_roles import (
    VALUE_KEYWORDS,
    find_column_by_type,
    find_value_column,
)
from dashboard_analytics.services.dataset import (
    ColumnsInput,
    ensure_dataset,
    normalize_key,
    parse_date,
    parse_number,
)
from dashboard_analytics.services.numeric import clamp, mean, round_half_up, safe_divide

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

UNAVAILABLE_REASON = 'Colunas de Cliente e Data são necessárias'

RECENCY_WEIGHT = 40.0
FREQUENCY_WEIGHT = 30.0
MONETARY_WEIGHT = 20.0
STEEP_DECLINE_POINTS = 10.0
MILD_DECLINE_POINTS = 5.0
NEW_INACTIVE_POINTS = 10.0

# Value trend (percent) below which the decline is considered steep
STEEP_DECLINE_PCT = -20.0

# New-but-inactive: lifetime shorter than this ...
NEW_CLIENT_MAX_LIFETIME_DAYS = 90
# ... and no purchase for longer than this
NEW_CLIENT_MAX_INACTIVE_DAYS = 30

# Purchase frequency is expressed per window of this many days
FREQUENCY_WINDOW_DAYS = 30

INDICATOR_LONG_INACTIVITY = 'Muito tempo desde última compra'
INDICATOR_LOW_FREQUENCY = 'Baixa frequência de compra'
INDICATOR_LOW_VALUE = 'Baixo valor total'
INDICATOR_VALUE_DECLINE = 'Tendência de queda no valor'
INDICATOR_NEW_INACTIVE = 'Cliente novo mas inativo'

RISK_RECOMMENDATIONS: Dict[ChurnRiskLevel, str] = {
    ChurnRiskLevel.HIGH: 'URGENTE: Contato imediato + desconto especial + atenção VIP',
    ChurnRiskLevel.MEDIUM: 'Re-engajamento: Email personalizado + oferta exclusiva',
    ChurnRiskLevel.LOW: 'Monitoramento: Newsletter + novidades',
    ChurnRiskLevel.MINIMAL: 'Manutenção: Continue o relacionamento normal',
}
ONBOARDING_SUFFIX = ' | Foque em onboarding'

AT_RISK_LEVELS = (ChurnRiskLevel.HIGH, ChurnRiskLevel.MEDIUM)


# =============================================================================
# Client Behaviour
# =============================================================================


@dataclass
class ClientBehavior:
    """Purchase history and derived behavioural metrics of one client."""
    client_id: str
    purchases: List[Tuple[date, float]] = field(default_factory=list)
    days_since_last_purchase: int = 0
    lifetime_days: int = 0
    total_value: float = 0.0
    avg_purchase_value: float = 0.0
    purchase_frequency: float = 0.0
    value_trend: float = 0.0

    @property
    def transaction_count(self) -> int:
        return len(self.purchases)


def calculate_value_trend(purchases: List[Tuple[date, float]]) -> float:
    """
    Percent change of the average purchase value, second half vs first half.

    Purchases are sorted by date (stable) and split at len // 2. Returns 0 when
    the first half is empty or its average is not positive.

    Example:
        >>> from datetime import date
        >>> calculate_value_trend([(date(2024, 1, 1), 100), (date(2024, 2, 1), 50)])
        -50.0
    """
    ordered = sorted(purchases, key=lambda p: p[0])
    half = len(ordered) // 2
    first_half = [value for _, value in ordered[:half]]
    second_half = [value for _, value in ordered[half:]]
    if not first_half or not second_half:
        return 0.0
    avg_first = mean(first_half)
    if avg_first <= 0:
        return 0.0
    return (mean(second_half) - avg_first) / avg_first * 100


def analyze_client_behavior(
    rows,
    client_column: str,
    date_column: str,
    value_column: Optional[str],
    reference_date: date,
) -> List[ClientBehavior]:
    """
    Build behavioural profiles per client.

    Without a value column every purchase weighs 1. Unparseable values
    count as 0 so the purchase still counts towards frequency.
    """
    clients: Dict[str, ClientBehavior] = {}
    for row in rows:
        client = normalize_key(row.get(client_column))
        purchase_date = parse_date(row.get(date_column))
        if client is None or purchase_date is None:
            continue
        if value_column is None:
            value = 1.0
        else:
            value = parse_number(row.get(value_column)) or 0.0
        behavior = clients.setdefault(client, ClientBehavior(client_id=client))
        behavior.purchases.append((purchase_date, value))

    for behavior in clients.values():
        dates = [d for d, _ in behavior.purchases]
        behavior.total_value = sum(v for _, v in behavior.purchases)
        behavior.days_since_last_purchase = (reference_date - max(dates)).days
        behavior.lifetime_days = (reference_date - min(dates)).days
        behavior.avg_purchase_value = behavior.total_value / behavior.transaction_count
        behavior.purchase_frequency = (
            behavior.transaction_count / (behavior.lifetime_days / FREQUENCY_WINDOW_DAYS)
            if behavior.lifetime_days > 0
            else 0.0
        )
        behavior.value_trend = calculate_value_trend(behavior.purchases)

    return list(clients.values())


# =============================================================================
# Scoring
# =============================================================================


def get_risk_level(score: float, settings: Optional[Settings] = None) -> ChurnRiskLevel:
    """Map a churn score to its risk level using the configured thresholds."""
    settings = settings or get_settings()
    if score >= settings.churn_high_threshold:
        return ChurnRiskLevel.HIGH
    if score >= settings.churn_medium_threshold:
        return ChurnRiskLevel.MEDIUM
    if score >= settings.churn_low_threshold:
        return ChurnRiskLevel.LOW
    return ChurnRiskLevel.MINIMAL


def get_churn_recommendation(risk_level: ChurnRiskLevel, indicators: List[str]) -> str:
    recommendation = RISK_RECOMMENDATIONS[risk_level]
    if INDICATOR_NEW_INACTIVE in indicators:
        recommendation += ONBOARDING_SUFFIX
    return recommendation


def score_client(
    behavior: ClientBehavior,
    avg_days_since: float,
    avg_frequency: float,
    avg_value: float,
) -> Tuple[float, List[str]]:
    """
    Weighted churn score of one client against population averages.

    Returns:
        Tuple of (unclamped score, triggered indicator strings).
    """
    score = 0.0
    indicators: List[str] = []

    if avg_days_since > 0:
        ratio = behavior.days_since_last_purchase / avg_days_since
        score += min(RECENCY_WEIGHT, max(0.0, ratio * RECENCY_WEIGHT))
        if behavior.days_since_last_purchase > avg_days_since * 2:
            indicators.append(INDICATOR_LONG_INACTIVITY)

    if avg_frequency > 0:
        ratio = behavior.purchase_frequency / avg_frequency
        score += max(0.0, FREQUENCY_WEIGHT - ratio * FREQUENCY_WEIGHT)
        if behavior.purchase_frequency < avg_frequency * 0.5:
            indicators.append(INDICATOR_LOW_FREQUENCY)

    if avg_value > 0:
        ratio = behavior.total_value / avg_value
        score += max(0.0, MONETARY_WEIGHT - ratio * MONETARY_WEIGHT)
        if behavior.total_value < avg_value * 0.3:
            indicators.append(INDICATOR_LOW_VALUE)

    if behavior.value_trend < STEEP_DECLINE_PCT:
        score += STEEP_DECLINE_POINTS
        indicators.append(INDICATOR_VALUE_DECLINE)
    elif behavior.value_trend < 0:
        score += MILD_DECLINE_POINTS

    if (
        behavior.lifetime_days < NEW_CLIENT_MAX_LIFETIME_DAYS
        and behavior.days_since_last_purchase > NEW_CLIENT_MAX_INACTIVE_DAYS
    ):
        score += NEW_INACTIVE_POINTS
        indicators.append(INDICATOR_NEW_INACTIVE)

    return score, indicators


def calculate_churn_scores(
    behaviors: List[ClientBehavior],
    settings: Optional[Settings] = None,
) -> List[ChurnPrediction]:
    """
    Score every client and sort predictions by churn score (highest first).
    """
    settings = settings or get_settings()
    avg_days_since = mean([b.days_since_last_purchase for b in behaviors])
    avg_frequency = mean([b.purchase_frequency for b in behaviors])
    avg_value = mean([b.total_value for b in behaviors])

    predictions = []
    for behavior in behaviors:
        raw_score, indicators = score_client(behavior, avg_days_since, avg_frequency, avg_value)
        bounded_score = clamp(raw_score, 0.0, 100.0)
        churn_score = round_half_up(bounded_score)
        # Levels compare the unrounded score: 69.5 reports 70 but stays MÉDIO
        risk_level = get_risk_level(bounded_score, settings)
        predictions.append(ChurnPrediction(
            clientId=behavior.client_id,
            churnScore=churn_score,
            riskLevel=risk_level,
            indicators=indicators,
            recommendation=get_churn_recommendation(risk_level, indicators),
            daysSinceLastPurchase=behavior.days_since_last_purchase,
            lifetimeDays=behavior.lifetime_days,
            totalValue=behavior.total_value,
            avgPurchaseValue=behavior.avg_purchase_value,
            purchaseFrequency=behavior.purchase_frequency,
            valueTrend=behavior.value_trend,
            transactionCount=behavior.transaction_count,
        ))

    predictions.sort(key=lambda p: p.churnScore, reverse=True)
    return predictions


# =============================================================================
# Insights and Metrics
# =============================================================================


def find_top_indicator(at_risk: List[ChurnPrediction]) -> Optional[Tuple[str, int]]:
    """Most frequent indicator among at-risk clients (first seen wins ties)."""
    counts = Counter(indicator for p in at_risk for indicator in p.indicators)
    if not counts:
        return None
    return counts.most_common(1)[0]


def generate_churn_insights(
    predictions: List[ChurnPrediction],
    at_risk: List[ChurnPrediction],
) -> List[Insight]:
    insights = []
    total = len(predictions)
    high_risk = [p for p in predictions if p.riskLevel == ChurnRiskLevel.HIGH]
    medium_count = sum(1 for p in predictions if p.riskLevel == ChurnRiskLevel.MEDIUM)

    if high_risk:
        pct = safe_divide(len(high_risk), total) * 100
        value = sum(p.totalValue for p in high_risk)
        insights.append(Insight(
            type='churn_high_risk',
            priority=InsightPriority.CRITICAL,
            title=f'{len(high_risk)} cliente(s) em ALTO risco de churn ({pct:.1f}%)',
            description=f'Representam R$ {value:.2f} em valor total',
            action='Campanha de retenção urgente necessária',
        ))

    top_indicator = find_top_indicator(at_risk)
    if top_indicator is not None:
        indicator, count = top_indicator
        insights.append(Insight(
            type='churn_indicator',
            priority=InsightPriority.HIGH,
            title=f'Principal indicador: {indicator}',
            description=f'Afeta {count} cliente(s)',
            action='Atue para resolver este problema específico',
        ))

    churn_rate = safe_divide(len(high_risk) + medium_count, total) * 100
    if churn_rate > 30:
        description = 'Taxa acima do aceitável'
    elif churn_rate > 15:
        description = 'Taxa moderada - monitorar'
    else:
        description = 'Taxa saudável'
    insights.append(Insight(
        type='churn_rate',
        priority=InsightPriority.HIGH if churn_rate > 30 else InsightPriority.MEDIUM,
        title=f'Taxa de churn estimada: {churn_rate:.1f}%',
        description=description,
        action=(
            'Revisão completa da estratégia de retenção'
            if churn_rate > 30
            else 'Mantenha ações preventivas'
        ),
    ))

    return insights


def calculate_churn_metrics(
    predictions: List[ChurnPrediction],
    at_risk: List[ChurnPrediction],
    reference_date: date,
) -> ChurnMetrics:
    total = len(predictions)
    by_level = Counter(p.riskLevel for p in predictions)
    high = by_level[ChurnRiskLevel.HIGH]
    medium = by_level[ChurnRiskLevel.MEDIUM]
    top_indicator = find_top_indicator(at_risk)

    return ChurnMetrics(
        totalClients=total,
        highRiskCount=high,
        highRiskPct=safe_divide(high, total) * 100,
        mediumRiskCount=medium,
        mediumRiskPct=safe_divide(medium, total) * 100,
        lowRiskCount=by_level[ChurnRiskLevel.LOW],
        minimalRiskCount=by_level[ChurnRiskLevel.MINIMAL],
        churnRate=safe_divide(high + medium, total) * 100,
        avgChurnScore=mean([p.churnScore for p in predictions]),
        topIndicator=top_indicator[0] if top_indicator else None,
        referenceDate=reference_date,
    )


# =============================================================================
# Public Entry Point
# =============================================================================


def analyze_churn(
    rows,
    columns: Optional[ColumnsInput] = None,
    reference_date: Optional[date] = None,
    settings: Optional[Settings] = None,
) -> ChurnResult:
    """
    Score churn risk for every client.

    Args:
        rows: Dataset or iterable of row mappings.
        columns: Column metadata.
        reference_date: "Now" for inactivity; defaults to today's date.
        settings: Threshold overrides; defaults to get_settings().

    Returns:
        ChurnResult; unavailable when the client or date column is missing or
        no row has both a client and a parseable date.
    """
    dataset = ensure_dataset(rows, columns)
    reference_date = reference_date or date.today()

    client_col = find_column_by_type(dataset.columns, ColumnType.CLIENT)
    date_col = find_column_by_type(dataset.columns, ColumnType.DATE)
    value_col = find_value_column(dataset.columns, VALUE_KEYWORDS)

    if client_col is None or date_col is None:
        logger.warning("Churn analysis unavailable: client or date column missing")
        return ChurnResult.unavailable(UNAVAILABLE_REASON)

    value_name = value_col.name if value_col else None
    behaviors = analyze_client_behavior(
        dataset.rows, client_col.name, date_col.name, value_name, reference_date
    )
    if not behaviors:
        logger.warning("Churn analysis unavailable: no rows with client and valid date")
        return ChurnResult.unavailable(UNAVAILABLE_REASON)

    predictions = calculate_churn_scores(behaviors, settings)
    at_risk = [p for p in predictions if p.riskLevel in AT_RISK_LEVELS]

    logger.info(
        f"Churn: {len(predictions)} clients scored, {len(at_risk)} at risk "
        f"(reference date {reference_date.isoformat()})"
    )

    return ChurnResult(
        predictions=predictions,
        atRisk=at_risk,
        insights=generate_churn_insights(predictions, at_risk),
        metrics=calculate_churn_metrics(predictions, at_risk, reference_date),
        columnsUsed=ColumnsUsed(
            client=client_col.name,
            date=date_col.name,
            value=value_name,
        ),
    )
