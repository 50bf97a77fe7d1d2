"""
Market basket (association rule) analysis service.

Finds products frequently bought together and turns the strongest pairs into
cross-sell and bundle recommendations.

Algorithm Overview (bounded Apriori, itemsets of size 1 and 2 only):
1. Group product rows into transactions, keyed by (in priority order) an
   explicit order/invoice column, the DATE + CLIENT composite, or the row
   itself
2. Level 1: item support = transactions containing the item / transactions;
   keep items with support >= min_support
3. Level 2: count every pair of retained items per transaction; keep pairs
   with support >= min_support
4. For each pair (A, B) emit A ⇒ B and B ⇒ A:
   confidence = support(A,B) / support(A), lift = confidence / support(B);
   keep rules with confidence >= min_confidence
5. Rank by lift (ties: confidence, then item names)

Larger itemsets are never mined: pair rules carry the actionable cross-sell
signal and keep the work quadratic in the number of frequent items.

Usage:
    from dashboard_analytics.services.market_basket import analyze_market_basket

    result = analyze_market_basket(rows, columns)
    for combo in result.topCombos:
        print(combo.combo, combo.lift)
"""

import logging
from collections import Counter
from itertools import combinations
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

from dashboard_analytics.core.config import Settings, get_settings
from dashboard_analytics.models.enums import (
    ColumnType,
    InsightPriority,
    RiskBucket,
    TransactionKeySource,
)
from dashboard_analytics.models.schemas import (
    AssociationRule,
    BasketMetrics,
    BasketResult,
    ColumnMetadata,
    ColumnsUsed,
    Insight,
    TopCombo,
)
from dashboard_analytics.services.column_roles import (
    find_column_by_type,
    find_transaction_column,
)
from dashboard_analytics.services.dataset import (
    ColumnsInput,
    ensure_dataset,
    normalize_key,
    parse_date,
)
from dashboard_analytics.services.numeric import mean

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

NO_PRODUCT_REASON = 'Coluna de produto não identificada'

# Rules above this lift count as "strong"
STRONG_LIFT = 1.5

TOP_COMBO_LIMIT = 10
ANCHOR_MIN_RULES = 2
ANCHOR_LIMIT = 3
BUNDLE_MIN_RULES = 3

Transaction = Tuple[str, ...]


# =============================================================================
# Transactions
# =============================================================================


def resolve_transaction_key(
    columns: Sequence[ColumnMetadata],
    product_column: ColumnMetadata,
) -> Tuple[TransactionKeySource, Optional[str], Optional[str]]:
    """
    Decide how rows are grouped into transactions.

    Returns:
        Tuple of (source, first key column, second key column). For
        ``column`` only the first name is set; for ``date_client`` both are
        (date, client); for ``row`` neither.
    """
    explicit = find_transaction_column(columns, exclude=[product_column.name])
    if explicit is not None:
        return TransactionKeySource.COLUMN, explicit.name, None

    date_col = find_column_by_type(columns, ColumnType.DATE)
    client_col = find_column_by_type(columns, ColumnType.CLIENT)
    if date_col is not None and client_col is not None:
        return TransactionKeySource.DATE_CLIENT, date_col.name, client_col.name

    return TransactionKeySource.ROW, None, None


def _transaction_key(
    row,
    index: int,
    source: TransactionKeySource,
    first_column: Optional[str],
    second_column: Optional[str],
) -> Optional[Hashable]:
    if source == TransactionKeySource.COLUMN:
        return normalize_key(row.get(first_column))
    if source == TransactionKeySource.DATE_CLIENT:
        raw_date = row.get(first_column)
        day = parse_date(raw_date) or normalize_key(raw_date)
        client = normalize_key(row.get(second_column))
        if day is None and client is None:
            return None
        return (day, client)
    return index


def group_transactions(
    rows,
    product_column: str,
    source: TransactionKeySource,
    first_column: Optional[str] = None,
    second_column: Optional[str] = None,
) -> List[Transaction]:
    """
    Collect the distinct products of each transaction.

    Rows without a product, or without a transaction key when grouping by
    column or date+client, are skipped. Products keep first-seen order.

    Example:
        >>> rows = [{"p": "A", "o": 1}, {"p": "B", "o": 1}, {"p": "A", "o": 2}]
        >>> group_transactions(rows, "p", TransactionKeySource.COLUMN, "o")
        [('A', 'B'), ('A',)]
    """
    baskets: Dict[Hashable, Dict[str, None]] = {}
    skipped = 0
    for index, row in enumerate(rows):
        product = normalize_key(row.get(product_column))
        if product is None:
            continue
        key = _transaction_key(row, index, source, first_column, second_column)
        if key is None:
            skipped += 1
            continue
        baskets.setdefault(key, {})[product] = None

    if skipped:
        logger.debug(f"Market basket: {skipped} product rows without transaction key skipped")
    return [tuple(items) for items in baskets.values() if items]


# =============================================================================
# Frequent Itemsets and Rules
# =============================================================================


def count_items(transactions: List[Transaction]) -> Counter:
    """Number of transactions containing each item."""
    item_counts: Counter = Counter()
    for transaction in transactions:
        item_counts.update(set(transaction))
    return item_counts


def find_frequent_pairs(
    transactions: List[Transaction],
    frequent_items: Dict[str, float],
    min_support: float,
) -> Dict[Tuple[str, str], int]:
    """
    Count co-occurrences of frequent item pairs and keep those meeting min_support.

    Pairs are keyed in sorted item order.
    """
    n = len(transactions)
    pair_counts: Counter = Counter()
    for transaction in transactions:
        items = sorted(item for item in set(transaction) if item in frequent_items)
        if len(items) >= 2:
            pair_counts.update(combinations(items, 2))
    return {
        pair: count
        for pair, count in pair_counts.items()
        if count / n >= min_support
    }


def generate_association_rules(
    pair_counts: Dict[Tuple[str, str], int],
    item_supports: Dict[str, float],
    transaction_count: int,
    min_confidence: float,
) -> List[AssociationRule]:
    """
    Directional rules for every frequent pair.

    Args:
        pair_counts: Frequent pair -> co-occurrence count.
        item_supports: Support of each frequent item.
        transaction_count: Total transactions.
        min_confidence: Minimum confidence (fraction).

    Returns:
        Rules sorted by lift desc, confidence desc, then antecedent/consequent.
    """
    rules = []
    for (item_a, item_b), count in sorted(pair_counts.items()):
        support = count / transaction_count
        for antecedent, consequent in ((item_a, item_b), (item_b, item_a)):
            antecedent_support = item_supports.get(antecedent, 0.0)
            consequent_support = item_supports.get(consequent, 0.0)
            if antecedent_support <= 0 or consequent_support <= 0:
                continue
            confidence = support / antecedent_support
            if confidence < min_confidence:
                continue
            rules.append(AssociationRule(
                antecedent=[antecedent],
                consequent=[consequent],
                support=support,
                confidence=min(1.0, confidence),
                lift=confidence / consequent_support,
                count=count,
            ))

    rules.sort(key=lambda r: (-r.lift, -r.confidence, r.antecedent[0], r.consequent[0]))
    return rules


def find_top_combos(rules: List[AssociationRule]) -> List[TopCombo]:
    """First TOP_COMBO_LIMIT rules with lift > 1 (positive association)."""
    combos = []
    for rule in rules:
        if rule.lift <= 1:
            continue
        antecedent, consequent = rule.antecedent[0], rule.consequent[0]
        combos.append(TopCombo(
            combo=f'{antecedent} → {consequent}',
            antecedent=antecedent,
            consequent=consequent,
            lift=rule.lift,
            confidence=rule.confidence,
            support=rule.support,
            description=(
                f'{rule.confidence * 100:.0f}% dos clientes que compram {antecedent} '
                f'também compram {consequent}'
            ),
        ))
        if len(combos) == TOP_COMBO_LIMIT:
            break
    return combos


def find_anchor_products(rules: List[AssociationRule]) -> List[str]:
    """
    Products leading to other purchases.

    An anchor is the antecedent of at least two rules; anchors are ranked by
    cumulative lift and the top three returned.
    """
    stats: Dict[str, List[float]] = {}
    for rule in rules:
        entry = stats.setdefault(rule.antecedent[0], [0, 0.0])
        entry[0] += 1
        entry[1] += rule.lift

    anchors = [(product, total_lift) for product, (count, total_lift) in stats.items()
               if count >= ANCHOR_MIN_RULES]
    anchors.sort(key=lambda item: item[1], reverse=True)
    return [product for product, _ in anchors[:ANCHOR_LIMIT]]


# =============================================================================
# Insights and Metrics
# =============================================================================


def generate_market_basket_insights(
    rules: List[AssociationRule],
    top_combos: List[TopCombo],
    anchors: List[str],
) -> List[Insight]:
    if not top_combos:
        return [Insight(
            type='market_basket',
            priority=InsightPriority.LOW,
            title='Poucas associações fortes encontradas',
            description='Produtos parecem ser comprados independentemente',
            action='Considere criar combos ou promoções para incentivar compras múltiplas',
        )]

    top = top_combos[0]
    insights = [Insight(
        type='market_basket_top',
        priority=InsightPriority.HIGH,
        title=f'Combo forte: {top.combo}',
        description=top.description,
        action=f'Cross-sell: ofereça {top.consequent} para quem compra {top.antecedent}',
    )]

    if anchors:
        insights.append(Insight(
            type='market_basket_anchor',
            priority=InsightPriority.HIGH,
            title=f'{len(anchors)} produto(s) âncora identificado(s)',
            description=f'{anchors[0]} frequentemente leva à compra de outros produtos',
            action='Use como produto de entrada para aumentar ticket médio',
        ))

    if len(rules) >= BUNDLE_MIN_RULES:
        insights.append(Insight(
            type='market_basket_bundle',
            priority=InsightPriority.MEDIUM,
            title=f'{min(len(rules), 5)} combos recomendados para bundle',
            description='Produtos com alta afinidade podem ser vendidos juntos',
            action='Crie kits/combos promocionais baseados nestas associações',
        ))

    return insights


def calculate_market_basket_metrics(
    transactions: List[Transaction],
    frequent_items: Dict[str, float],
    rules: List[AssociationRule],
    source: TransactionKeySource,
) -> BasketMetrics:
    return BasketMetrics(
        totalTransactions=len(transactions),
        avgBasketSize=mean([len(t) for t in transactions]),
        frequentItems=len(frequent_items),
        rulesFound=len(rules),
        strongRules=sum(1 for r in rules if r.lift > STRONG_LIFT),
        topLift=rules[0].lift if rules else 0.0,
        crossSellPotential=RiskBucket.HIGH if rules else RiskBucket.LOW,
        transactionKeySource=source,
    )


# =============================================================================
# Public Entry Point
# =============================================================================


def analyze_market_basket(
    rows,
    columns: Optional[ColumnsInput] = None,
    min_support: Optional[float] = None,
    min_confidence: Optional[float] = None,
    settings: Optional[Settings] = None,
) -> BasketResult:
    """
    Mine two-item association rules from product transactions.

    Args:
        rows: Dataset or iterable of row mappings.
        columns: Column metadata.
        min_support: Minimum itemset support (fraction); defaults to settings.
        min_confidence: Minimum rule confidence (fraction); defaults to settings.
        settings: Settings override.

    Returns:
        BasketResult; unavailable without a PRODUCT column or with fewer than
        the minimum number of transactions.
    """
    settings = settings or get_settings()
    min_support = settings.basket_min_support if min_support is None else min_support
    min_confidence = settings.basket_min_confidence if min_confidence is None else min_confidence
    dataset = ensure_dataset(rows, columns)

    product_col = find_column_by_type(dataset.columns, ColumnType.PRODUCT)
    if product_col is None:
        logger.warning("Market basket unavailable: no product column")
        return BasketResult.unavailable(NO_PRODUCT_REASON)

    source, first_key, second_key = resolve_transaction_key(dataset.columns, product_col)
    transactions = group_transactions(dataset.rows, product_col.name, source, first_key, second_key)

    if len(transactions) < settings.basket_min_transactions:
        logger.warning(
            f"Market basket unavailable: {len(transactions)} transactions "
            f"(minimum {settings.basket_min_transactions})"
        )
        return BasketResult.unavailable(
            f'Mínimo de {settings.basket_min_transactions} transações necessárias'
        )

    n = len(transactions)
    item_counts = count_items(transactions)
    frequent_items = {
        item: count / n
        for item, count in item_counts.items()
        if count / n >= min_support
    }
    pair_counts = find_frequent_pairs(transactions, frequent_items, min_support)
    rules = generate_association_rules(pair_counts, frequent_items, n, min_confidence)
    top_combos = find_top_combos(rules)
    anchors = find_anchor_products(rules)

    logger.info(
        f"Market basket ({source.value}): {n} transactions, {len(frequent_items)} frequent items, "
        f"{len(pair_counts)} frequent pairs, {len(rules)} rules"
    )

    if source == TransactionKeySource.COLUMN:
        transaction_label = first_key
    elif source == TransactionKeySource.DATE_CLIENT:
        transaction_label = f'{first_key} + {second_key}'
    else:
        transaction_label = None

    return BasketResult(
        transactions=n,
        rules=rules,
        topCombos=top_combos,
        anchorProducts=anchors,
        insights=generate_market_basket_insights(rules, top_combos, anchors),
        metrics=calculate_market_basket_metrics(transactions, frequent_items, rules, source),
        columnsUsed=ColumnsUsed(product=product_col.name, transaction=transaction_label),
    )
