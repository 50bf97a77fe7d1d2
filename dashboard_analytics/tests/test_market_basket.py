"""
Test suite for market basket analysis (two-item association rules).

The tests verify:
1. Transaction key resolution (explicit column, date + client, row)
2. Support / confidence / lift arithmetic on hand-built baskets
3. Top combos, anchor products and insights
4. Unavailability rules
"""

from typing import List, Sequence

import pytest

from dashboard_analytics.models import ColumnType, RiskBucket, TransactionKeySource
from dashboard_analytics.services.market_basket import (
    NO_PRODUCT_REASON,
    analyze_market_basket,
    group_transactions,
    resolve_transaction_key,
)
from dashboard_analytics.tests.factories import make_columns


ORDER_COLUMNS = make_columns(('Pedido', ColumnType.TEXT), ('Produto', ColumnType.PRODUCT))


def basket_rows(baskets: Sequence[Sequence[str]]) -> List[dict]:
    """One row per (order, product) for the given baskets."""
    return [
        {'Pedido': f'P{index:03d}', 'Produto': product}
        for index, basket in enumerate(baskets)
        for product in basket
    ]


def eight_of_ten_baskets():
    """A and B co-occur in 8 of 10 transactions; each appears in 9."""
    return [['A', 'B']] * 8 + [['A'], ['B']]


# =============================================================================
# TEST CLASS: TRANSACTION GROUPING
# =============================================================================


class TestTransactionKey:

    def test_explicit_transaction_column(self, sales_columns) -> None:
        product = sales_columns[4]
        source, first, second = resolve_transaction_key(sales_columns, product)
        assert (source, first, second) == (TransactionKeySource.COLUMN, 'Pedido', None)

    def test_date_and_client_fallback(self) -> None:
        columns = make_columns(
            ('Data', ColumnType.DATE),
            ('Cliente', ColumnType.CLIENT),
            ('Produto', ColumnType.PRODUCT),
        )
        source, first, second = resolve_transaction_key(columns, columns[2])
        assert (source, first, second) == (TransactionKeySource.DATE_CLIENT, 'Data', 'Cliente')

    def test_row_fallback(self) -> None:
        columns = make_columns(('Produto', ColumnType.PRODUCT))
        assert resolve_transaction_key(columns, columns[0])[0] == TransactionKeySource.ROW

    def test_date_client_keys_normalize_date_formats(self) -> None:
        rows = [
            {'Data': '05/03/2024', 'Cliente': 'Ana', 'Produto': 'Café'},
            {'Data': '2024-03-05', 'Cliente': 'Ana', 'Produto': 'Pão'},
            {'Data': '2024-03-05', 'Cliente': 'Bia', 'Produto': 'Café'},
        ]
        transactions = group_transactions(rows, 'Produto', TransactionKeySource.DATE_CLIENT, 'Data', 'Cliente')
        assert transactions == [('Café', 'Pão'), ('Café',)]

    def test_duplicate_products_and_missing_keys(self) -> None:
        rows = [
            {'Pedido': '1', 'Produto': 'A'},
            {'Pedido': '1', 'Produto': 'A'},
            {'Pedido': '', 'Produto': 'B'},
            {'Pedido': '2', 'Produto': ''},
        ]
        transactions = group_transactions(rows, 'Produto', TransactionKeySource.COLUMN, 'Pedido')
        assert transactions == [('A',)]


# =============================================================================
# TEST CLASS: RULE METRICS
# =============================================================================


class TestAssociationRules:

    @pytest.mark.scenario
    def test_eight_of_ten_co_occurrence(self) -> None:
        result = analyze_market_basket(basket_rows(eight_of_ten_baskets()), ORDER_COLUMNS)
        rule = next(r for r in result.rules if r.antecedent == ['A'])

        assert rule.consequent == ['B']
        assert rule.support == pytest.approx(0.8)
        assert rule.confidence == pytest.approx(8 / 9)
        assert rule.lift == pytest.approx((8 / 9) / 0.9)
        assert rule.lift == pytest.approx(0.988, abs=1e-3)
        assert rule.count == 8

    @pytest.mark.scenario
    def test_negative_association_yields_no_combo(self) -> None:
        result = analyze_market_basket(basket_rows(eight_of_ten_baskets()), ORDER_COLUMNS)

        assert result.topCombos == []
        assert [i.type for i in result.insights] == ['market_basket']

    def test_confidence_equals_pair_support_over_antecedent_support(self, sales_rows, sales_columns) -> None:
        result = analyze_market_basket(sales_rows, sales_columns)
        transactions = group_transactions(sales_rows, 'Produto', TransactionKeySource.COLUMN, 'Pedido')
        n = len(transactions)

        assert result.rules
        for rule in result.rules:
            a, b = rule.antecedent[0], rule.consequent[0]
            support_a = sum(1 for t in transactions if a in t) / n
            support_ab = sum(1 for t in transactions if a in t and b in t) / n
            assert 0 <= rule.confidence <= 1
            assert rule.confidence == pytest.approx(support_ab / support_a)

    def test_rules_sorted_by_lift(self, sales_rows, sales_columns) -> None:
        lifts = [r.lift for r in analyze_market_basket(sales_rows, sales_columns).rules]
        assert lifts == sorted(lifts, reverse=True)

    def test_min_confidence_filters_rules(self) -> None:
        result = analyze_market_basket(basket_rows(eight_of_ten_baskets()), ORDER_COLUMNS, min_confidence=0.9)
        assert result.rules == []


# =============================================================================
# TEST CLASS: COMBOS, ANCHORS AND METRICS
# =============================================================================


class TestCombosAndAnchors:

    def test_strong_pair_becomes_top_combo(self) -> None:
        baskets = [['Café', 'Pão']] * 4 + [['Leite']] * 3 + [['Queijo']] * 3
        result = analyze_market_basket(basket_rows(baskets), ORDER_COLUMNS)

        assert result.topCombos[0].combo == 'Café → Pão'
        assert result.topCombos[0].lift == pytest.approx(2.5)
        assert result.topCombos[0].description == '100% dos clientes que compram Café também compram Pão'
        assert result.anchorProducts == []
        assert result.insights[0].type == 'market_basket_top'

    def test_anchor_products_and_bundle(self) -> None:
        baskets = [['A', 'B', 'C']] * 3 + [['D']] * 7
        result = analyze_market_basket(basket_rows(baskets), ORDER_COLUMNS)

        assert len(result.rules) == 6
        assert result.anchorProducts == ['A', 'B', 'C']
        assert [i.type for i in result.insights] == [
            'market_basket_top', 'market_basket_anchor', 'market_basket_bundle',
        ]
        assert result.metrics.strongRules == 6
        assert result.metrics.topLift == pytest.approx(1 / 0.3)
        assert result.metrics.crossSellPotential == RiskBucket.HIGH

    def test_metrics(self) -> None:
        result = analyze_market_basket(basket_rows(eight_of_ten_baskets()), ORDER_COLUMNS)

        assert result.transactions == 10
        assert result.metrics.totalTransactions == 10
        assert result.metrics.avgBasketSize == pytest.approx(1.8)
        assert result.metrics.frequentItems == 2
        assert result.metrics.transactionKeySource == TransactionKeySource.COLUMN
        assert result.columnsUsed.transaction == 'Pedido'


# =============================================================================
# TEST CLASS: UNAVAILABILITY
# =============================================================================


class TestUnavailable:

    def test_requires_product_column(self) -> None:
        columns = make_columns(('Pedido', ColumnType.TEXT))
        result = analyze_market_basket([{'Pedido': '1'}], columns)

        assert not result.available
        assert result.reason == NO_PRODUCT_REASON

    def test_requires_minimum_transactions(self) -> None:
        result = analyze_market_basket(basket_rows([['A', 'B']] * 9), ORDER_COLUMNS)

        assert not result.available
        assert result.reason == 'Mínimo de 10 transações necessárias'
