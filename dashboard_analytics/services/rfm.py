"""
RFM (Recency, Frequency, Monetary) customer segmentation service.

This module scores every client on three behavioural axes, classifies each
score triple into one of eleven named segments and summarizes the segments
for the dashboard.

Algorithm Overview:
1. Resolve the CLIENT, DATE and sales-value CURRENCY columns
2. Aggregate valid purchases (parseable date, value > 0) per client
3. recency = days between the dataset's latest purchase date (across ALL
   clients) and the client's last purchase; frequency = purchase count;
   monetary = sum of purchase values
4. Quintile-score each metric over the full client population
5. Classify (R, F, M) through the ordered SEGMENT_RULES table
6. Aggregate segments, generate insights and summary metrics

Quintile Scoring:
    Clients are stable-sorted best-first for each metric (recency ascending,
    frequency and monetary descending). With width = ceil(n / 5), the client at
    position idx gets score 5 - idx // width, clamped to [1, 5]. The same
    formula applies for n < 5, so small populations only use the upper scores.

Usage:
    from dashboard_analytics.services.rfm import analyze_rfm

    result = analyze_rfm(rows, columns)
    if result.available:
        print(result.metrics.topSegment)
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional, Tuple

from dashboard_analytics.models.enums import ColumnType, InsightPriority, RFMSegment
from dashboard_analytics.models.schemas import (
    ClientRFMProfile,
    ColumnsUsed,
    Insight,
    RFMMetrics,
    RFMResult,
    RFMSegmentSummary,
)
from dashboard_analytics.services.column_roles import (
    SALES_VALUE_KEYWORDS,
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
from dashboard_analytics.services.numeric import mean, safe_divide

logger = logging.getLogger(__name__)


# =============================================================================
# Segment Definitions
# =============================================================================

UNAVAILABLE_REASON = 'Colunas necessárias não encontradas (Cliente, Data, Valor)'
NO_PURCHASES_REASON = 'Nenhuma compra válida encontrada (cliente, data e valor positivo)'

SEGMENT_DESCRIPTIONS: Dict[RFMSegment, str] = {
    RFMSegment.CHAMPIONS: 'Melhores clientes',
    RFMSegment.LOYAL_CUSTOMERS: 'Clientes fiéis',
    RFMSegment.POTENTIAL_LOYALISTS: 'Potencial de fidelização',
    RFMSegment.RECENT_CUSTOMERS: 'Clientes recentes',
    RFMSegment.PROMISING: 'Promissores',
    RFMSegment.NEEDS_ATTENTION: 'Precisa atenção',
    RFMSegment.ABOUT_TO_SLEEP: 'Prestes a perder',
    RFMSegment.AT_RISK: 'Em risco',
    RFMSegment.CANNOT_LOSE: 'Não pode perder',
    RFMSegment.HIBERNATING: 'Hibernando',
    RFMSegment.LOST: 'Perdidos',
}

SEGMENT_RECOMMENDATIONS: Dict[RFMSegment, str] = {
    RFMSegment.CHAMPIONS: 'Recompense! Ofereça VIP, early access, pré-vendas',
    RFMSegment.LOYAL_CUSTOMERS: 'Upsell produtos premium. Peça reviews e referências',
    RFMSegment.POTENTIAL_LOYALISTS: 'Programa de fidelidade. Ofertas personalizadas',
    RFMSegment.RECENT_CUSTOMERS: 'Onboarding forte. Segunda compra em até 30 dias',
    RFMSegment.PROMISING: 'Engajamento frequente. Ofertas especiais limitadas',
    RFMSegment.NEEDS_ATTENTION: 'Re-engajamento. Pesquisa de satisfação. Promoções',
    RFMSegment.ABOUT_TO_SLEEP: 'Promoções agressivas. Lembrete de benefícios',
    RFMSegment.AT_RISK: 'Recuperação urgente. Desconto especial. Contato direto',
    RFMSegment.CANNOT_LOSE: 'Atenção VIP. Gestor de contas dedicado. Benefícios exclusivos',
    RFMSegment.HIBERNATING: 'Campanha de reativação. Ofertas irresistíveis',
    RFMSegment.LOST: 'Campanha win-back. Pesquisa de saída. Nova proposta de valor',
}

ScorePredicate = Callable[[int, int, int], bool]

# Ordered decision table over (R, F, M); first match wins, LOST is the fallback.
# CANNOT_LOSE is checked before AT_RISK because its condition is a strict subset
# of AT_RISK's. ABOUT_TO_SLEEP only covers R = 3; clients with R <= 2 and
# F <= 2 are HIBERNATING (M >= 2) or LOST.
SEGMENT_RULES: Tuple[Tuple[ScorePredicate, RFMSegment], ...] = (
    (lambda r, f, m: r >= 4 and f >= 4 and m >= 4, RFMSegment.CHAMPIONS),
    (lambda r, f, m: r >= 3 and f >= 4 and m >= 4, RFMSegment.LOYAL_CUSTOMERS),
    (lambda r, f, m: r >= 4 and f >= 2 and m >= 2, RFMSegment.POTENTIAL_LOYALISTS),
    (lambda r, f, m: r >= 4 and f <= 2, RFMSegment.RECENT_CUSTOMERS),
    (lambda r, f, m: r >= 3 and f <= 2 and m <= 2, RFMSegment.PROMISING),
    (lambda r, f, m: r >= 3 and f >= 3 and m >= 3, RFMSegment.NEEDS_ATTENTION),
    (lambda r, f, m: r <= 2 and f >= 4 and m >= 4, RFMSegment.CANNOT_LOSE),
    (lambda r, f, m: r <= 2 and f >= 3 and m >= 3, RFMSegment.AT_RISK),
    (lambda r, f, m: r <= 2 and f <= 2 and m >= 2, RFMSegment.HIBERNATING),
    (lambda r, f, m: r == 3 and f <= 2, RFMSegment.ABOUT_TO_SLEEP),
)

RISK_SEGMENTS = (RFMSegment.AT_RISK, RFMSegment.CANNOT_LOSE, RFMSegment.ABOUT_TO_SLEEP)
NEW_SEGMENTS = (RFMSegment.RECENT_CUSTOMERS, RFMSegment.PROMISING)


# =============================================================================
# Aggregation
# =============================================================================


@dataclass
class _ClientPurchases:
    """Mutable per-client accumulator used while scanning rows."""
    first_purchase: date
    last_purchase: date
    count: int = 0
    total: float = 0.0

    def add(self, purchase_date: date, value: float) -> None:
        self.first_purchase = min(self.first_purchase, purchase_date)
        self.last_purchase = max(self.last_purchase, purchase_date)
        self.count += 1
        self.total += value


@dataclass
class RFMRecord:
    """Raw RFM metrics of one client before scoring."""
    client_id: str
    recency: int
    frequency: int
    monetary: float
    first_purchase: date
    last_purchase: date
    scores: Dict[str, int] = field(default_factory=dict)


def calculate_rfm(
    rows,
    client_column: str,
    date_column: str,
    value_column: str,
) -> Tuple[List[RFMRecord], Optional[date]]:
    """
    Aggregate raw recency / frequency / monetary metrics per client.

    The reference date is the latest parseable date in the whole dataset,
    including rows later excluded for a non-positive value.

    Args:
        rows: Dataset rows.
        client_column: CLIENT column name.
        date_column: DATE column name.
        value_column: Monetary column name.

    Returns:
        Tuple of (records in first-seen client order, reference date or None).
    """
    dates = [d for d in (parse_date(row.get(date_column)) for row in rows) if d is not None]
    if not dates:
        return [], None
    reference_date = max(dates)

    clients: Dict[str, _ClientPurchases] = {}
    for row in rows:
        client = normalize_key(row.get(client_column))
        purchase_date = parse_date(row.get(date_column))
        value = parse_number(row.get(value_column))
        if client is None or purchase_date is None or value is None or value <= 0:
            continue
        if client not in clients:
            clients[client] = _ClientPurchases(purchase_date, purchase_date)
        clients[client].add(purchase_date, value)

    records = [
        RFMRecord(
            client_id=client,
            recency=(reference_date - info.last_purchase).days,
            frequency=info.count,
            monetary=info.total,
            first_purchase=info.first_purchase,
            last_purchase=info.last_purchase,
        )
        for client, info in clients.items()
    ]
    return records, reference_date


# =============================================================================
# Scoring and Classification
# =============================================================================


def quintile_scores(values: List[float], higher_is_better: bool) -> List[int]:
    """
    Quintile score (1-5) for each value, in input order.

    Args:
        values: Metric value per client.
        higher_is_better: True for frequency / monetary, False for recency.

    Returns:
        Scores aligned with ``values``.

    Example:
        >>> quintile_scores([10, 50, 30, 20, 40], higher_is_better=True)
        [1, 5, 3, 2, 4]
    """
    n = len(values)
    if n == 0:
        return []
    width = math.ceil(n / 5)
    order = sorted(range(n), key=lambda i: -values[i] if higher_is_better else values[i])
    scores = [0] * n
    for position, index in enumerate(order):
        scores[index] = max(1, min(5, 5 - position // width))
    return scores


def assign_quintile_scores(records: List[RFMRecord]) -> List[RFMRecord]:
    """Attach recency / frequency / monetary scores to every record in place."""
    recency = quintile_scores([r.recency for r in records], higher_is_better=False)
    frequency = quintile_scores([r.frequency for r in records], higher_is_better=True)
    monetary = quintile_scores([r.monetary for r in records], higher_is_better=True)
    for record, r, f, m in zip(records, recency, frequency, monetary):
        record.scores = {'R': r, 'F': f, 'M': m}
    return records


def classify_segment(recency_score: int, frequency_score: int, monetary_score: int) -> RFMSegment:
    """
    Map an (R, F, M) score triple to its segment.

    Example:
        >>> classify_segment(5, 5, 5)
        <RFMSegment.CHAMPIONS: 'Champions'>
        >>> classify_segment(1, 5, 5)
        <RFMSegment.CANNOT_LOSE: 'Cannot Lose'>
    """
    for predicate, segment in SEGMENT_RULES:
        if predicate(recency_score, frequency_score, monetary_score):
            return segment
    return RFMSegment.LOST


def build_profiles(records: List[RFMRecord]) -> List[ClientRFMProfile]:
    profiles = []
    for record in records:
        r, f, m = record.scores['R'], record.scores['F'], record.scores['M']
        segment = classify_segment(r, f, m)
        profiles.append(ClientRFMProfile(
            clientId=record.client_id,
            recencyDays=record.recency,
            frequency=record.frequency,
            monetaryTotal=record.monetary,
            firstPurchaseDate=record.first_purchase,
            lastPurchaseDate=record.last_purchase,
            recencyScore=r,
            frequencyScore=f,
            monetaryScore=m,
            segment=segment,
            recommendation=SEGMENT_RECOMMENDATIONS[segment],
        ))
    return profiles


def summarize_segments(profiles: List[ClientRFMProfile]) -> List[RFMSegmentSummary]:
    """Per-segment aggregates, sorted by segment priority (Champions first)."""
    grouped: Dict[RFMSegment, List[ClientRFMProfile]] = {}
    for profile in profiles:
        grouped.setdefault(profile.segment, []).append(profile)

    summaries = []
    for segment in sorted(grouped, key=lambda s: s.priority):
        members = grouped[segment]
        total = sum(p.monetaryTotal for p in members)
        summaries.append(RFMSegmentSummary(
            segment=segment,
            description=SEGMENT_DESCRIPTIONS[segment],
            priority=segment.priority,
            count=len(members),
            totalMonetary=total,
            avgRecency=mean([p.recencyDays for p in members]),
            avgFrequency=mean([p.frequency for p in members]),
            avgMonetary=total / len(members),
            recommendation=SEGMENT_RECOMMENDATIONS[segment],
            clientIds=[p.clientId for p in members],
        ))
    return summaries


# =============================================================================
# Insights and Metrics
# =============================================================================


def generate_rfm_insights(segments: List[RFMSegmentSummary]) -> List[Insight]:
    """
    Ranked insights: value distribution, clients at risk, champions, new clients.
    """
    if not segments:
        return []

    insights = []
    total_clients = sum(s.count for s in segments)
    total_value = sum(s.totalMonetary for s in segments)

    def share(value: float) -> float:
        return safe_divide(value, total_value) * 100

    top_by_value = sorted(segments, key=lambda s: s.totalMonetary, reverse=True)[:3]
    insights.append(Insight(
        type='rfm_value',
        priority=InsightPriority.HIGH,
        title='Distribuição de Valor por Segmento',
        description='Top 3: ' + ', '.join(
            f'{s.segment.value} ({share(s.totalMonetary):.1f}%)' for s in top_by_value
        ),
        action=f'Foque em {top_by_value[0].segment.value} - {top_by_value[0].description}',
    ))

    at_risk = [s for s in segments if s.segment in RISK_SEGMENTS]
    if at_risk:
        risk_count = sum(s.count for s in at_risk)
        risk_value = sum(s.totalMonetary for s in at_risk)
        insights.append(Insight(
            type='rfm_risk',
            priority=InsightPriority.HIGH,
            title=f'{risk_count} clientes em risco',
            description=f'Representam {share(risk_value):.1f}% do valor total',
            action='Campanha de retenção urgente necessária',
        ))

    champions = next((s for s in segments if s.segment == RFMSegment.CHAMPIONS), None)
    if champions is not None:
        client_share = safe_divide(champions.count, total_clients) * 100
        insights.append(Insight(
            type='rfm_champions',
            priority=InsightPriority.MEDIUM,
            title=f'{champions.count} Champions identificados',
            description=(
                f'{client_share:.1f}% da base - {share(champions.totalMonetary):.1f}% do valor'
            ),
            action=champions.recommendation,
        ))

    new_segments = [s for s in segments if s.segment in NEW_SEGMENTS]
    if new_segments:
        new_count = sum(s.count for s in new_segments)
        insights.append(Insight(
            type='rfm_new',
            priority=InsightPriority.MEDIUM,
            title=f'{new_count} novos clientes promissores',
            description='Oportunidade de conversão em clientes fiéis',
            action='Implementar programa de onboarding e segunda compra',
        ))

    return insights


def calculate_rfm_metrics(
    profiles: List[ClientRFMProfile],
    segments: List[RFMSegmentSummary],
    reference_date: Optional[date] = None,
) -> RFMMetrics:
    total_value = sum(s.totalMonetary for s in segments)
    top = segments[0] if segments else None
    return RFMMetrics(
        totalClients=len(profiles),
        avgRecency=mean([p.recencyDays for p in profiles]),
        avgFrequency=mean([p.frequency for p in profiles]),
        avgMonetary=mean([p.monetaryTotal for p in profiles]),
        segmentCount=len(segments),
        topSegment=top.segment if top else None,
        valueConcentrationPct=safe_divide(top.totalMonetary, total_value) * 100 if top else 0.0,
        referenceDate=reference_date,
    )


# =============================================================================
# Public Entry Point
# =============================================================================


def analyze_rfm(rows, columns: Optional[ColumnsInput] = None) -> RFMResult:
    """
    Run the full RFM analysis.

    Args:
        rows: Dataset or iterable of row mappings.
        columns: Column metadata.

    Returns:
        RFMResult; unavailable when the client, date or value column is
        missing, or when no row yields a valid purchase.
    """
    dataset = ensure_dataset(rows, columns)

    client_col = find_column_by_type(dataset.columns, ColumnType.CLIENT)
    date_col = find_column_by_type(dataset.columns, ColumnType.DATE)
    value_col = find_value_column(dataset.columns, SALES_VALUE_KEYWORDS)

    if client_col is None or date_col is None or value_col is None:
        logger.warning(
            f"RFM unavailable: client={client_col and client_col.name}, "
            f"date={date_col and date_col.name}, value={value_col and value_col.name}"
        )
        return RFMResult.unavailable(UNAVAILABLE_REASON)

    records, reference_date = calculate_rfm(
        dataset.rows, client_col.name, date_col.name, value_col.name
    )
    if not records:
        logger.warning("RFM unavailable: no valid purchases")
        return RFMResult.unavailable(NO_PURCHASES_REASON)

    assign_quintile_scores(records)
    profiles = build_profiles(records)
    segments = summarize_segments(profiles)

    logger.info(
        f"RFM: {len(profiles)} clients in {len(segments)} segments "
        f"(reference date {reference_date.isoformat()})"
    )

    return RFMResult(
        scores=profiles,
        segments=segments,
        insights=generate_rfm_insights(segments),
        metrics=calculate_rfm_metrics(profiles, segments, reference_date),
        columnsUsed=ColumnsUsed(
            client=client_col.name,
            date=date_col.name,
            value=value_col.name,
        ),
    )
