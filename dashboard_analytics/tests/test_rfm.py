"""
Test suite for RFM segmentation.

The tests verify:
1. Quintile scoring (best-first ordering, ties, populations under five)
2. Every segment of the decision table is reachable
3. The champion vs lost client scenario
4. Unavailability when required columns are missing
"""

from datetime import date

import pytest

from dashboard_analytics.models import ColumnType, RFMSegment
from dashboard_analytics.services.rfm import (
    NO_PURCHASES_REASON,
    UNAVAILABLE_REASON,
    analyze_rfm,
    calculate_rfm,
    classify_segment,
    quintile_scores,
)
from dashboard_analytics.tests.factories import client_date_value_columns, make_columns, make_purchases


def champion_vs_lost_rows():
    """
    Five clients with a hand-computed ranking.

    Reference date is 2024-06-30 (client C's last purchase).
    Expected scores (R, F, M): A (4, 5, 5), B (1, 1, 1), C (5, 3, 3),
    D (3, 2, 2), E (2, 4, 4).
    """
    return (
        make_purchases('A', date(2024, 6, 29), count=10, total_value=10000)
        + make_purchases('B', date(2023, 5, 27), count=1, total_value=50)
        + make_purchases('C', date(2024, 6, 30), count=3, total_value=900)
        + make_purchases('D', date(2024, 5, 1), count=2, total_value=500)
        + make_purchases('E', date(2024, 3, 1), count=4, total_value=2000)
    )


# =============================================================================
# TEST CLASS: QUINTILE SCORING
# =============================================================================


class TestQuintileScores:

    def test_higher_is_better(self) -> None:
        assert quintile_scores([10, 50, 30, 20, 40], higher_is_better=True) == [1, 5, 3, 2, 4]

    def test_lower_is_better(self) -> None:
        assert quintile_scores([10, 50, 30, 20, 40], higher_is_better=False) == [5, 1, 3, 4, 2]

    def test_small_population_uses_upper_scores(self) -> None:
        assert quintile_scores([1, 2, 3], higher_is_better=True) == [3, 4, 5]

    def test_ties_keep_input_order(self) -> None:
        assert quintile_scores([10, 10, 5], higher_is_better=True) == [5, 4, 3]

    def test_bucket_width_for_larger_population(self) -> None:
        scores = quintile_scores(list(range(7, 0, -1)), higher_is_better=True)
        assert scores == [5, 5, 4, 4, 3, 3, 2]

    def test_empty(self) -> None:
        assert quintile_scores([], higher_is_better=True) == []


# =============================================================================
# TEST CLASS: SEGMENT CLASSIFICATION
# =============================================================================


class TestClassifySegment:

    @pytest.mark.parametrize('scores, expected', [
        ((5, 5, 5), RFMSegment.CHAMPIONS),
        ((3, 5, 5), RFMSegment.LOYAL_CUSTOMERS),
        ((4, 3, 3), RFMSegment.POTENTIAL_LOYALISTS),
        ((4, 1, 1), RFMSegment.RECENT_CUSTOMERS),
        ((3, 1, 1), RFMSegment.PROMISING),
        ((3, 3, 3), RFMSegment.NEEDS_ATTENTION),
        ((3, 2, 3), RFMSegment.ABOUT_TO_SLEEP),
        ((1, 3, 3), RFMSegment.AT_RISK),
        ((1, 5, 5), RFMSegment.CANNOT_LOSE),
        ((2, 2, 2), RFMSegment.HIBERNATING),
        ((1, 1, 1), RFMSegment.LOST),
    ])
    def test_each_segment_is_reachable(self, scores, expected) -> None:
        assert classify_segment(*scores) == expected

    def test_every_score_triple_maps_to_a_segment(self) -> None:
        reached = {
            classify_segment(r, f, m)
            for r in range(1, 6) for f in range(1, 6) for m in range(1, 6)
        }
        assert reached == set(RFMSegment)


# =============================================================================
# TEST CLASS: AGGREGATION
# =============================================================================


class TestCalculateRfm:

    def test_reference_date_includes_rows_with_invalid_values(self) -> None:
        rows = [
            {'Cliente': 'A', 'Data': '2024-01-10', 'Valor': 100},
            {'Cliente': 'B', 'Data': '2024-02-10', 'Valor': 0},
        ]
        records, reference_date = calculate_rfm(rows, 'Cliente', 'Data', 'Valor')

        assert reference_date == date(2024, 2, 10)
        assert [r.client_id for r in records] == ['A']
        assert records[0].recency == 31

    def test_non_positive_and_unparseable_values_are_excluded(self) -> None:
        rows = [
            {'Cliente': 'A', 'Data': '2024-01-10', 'Valor': 'R$ 100,00'},
            {'Cliente': 'A', 'Data': '2024-01-11', 'Valor': '-5'},
            {'Cliente': 'A', 'Data': '2024-01-12', 'Valor': 'n/d'},
            {'Cliente': '', 'Data': '2024-01-12', 'Valor': '10'},
        ]
        records, _ = calculate_rfm(rows, 'Cliente', 'Data', 'Valor')

        assert len(records) == 1
        assert records[0].frequency == 1
        assert records[0].monetary == 100.0


# =============================================================================
# TEST CLASS: FULL ANALYSIS
# =============================================================================


class TestAnalyzeRfm:

    @pytest.mark.scenario
    def test_champion_and_lost_clients(self) -> None:
        result = analyze_rfm(champion_vs_lost_rows(), client_date_value_columns())
        profiles = {p.clientId: p for p in result.scores}

        assert result.available
        assert (profiles['A'].recencyScore, profiles['A'].frequencyScore, profiles['A'].monetaryScore) == (4, 5, 5)
        assert profiles['A'].segment == RFMSegment.CHAMPIONS
        assert (profiles['B'].recencyScore, profiles['B'].frequencyScore, profiles['B'].monetaryScore) == (1, 1, 1)
        assert profiles['B'].segment in (RFMSegment.LOST, RFMSegment.HIBERNATING)
        assert profiles['B'].recencyDays == 400

    @pytest.mark.scenario
    def test_segments_sorted_by_priority(self) -> None:
        result = analyze_rfm(champion_vs_lost_rows(), client_date_value_columns())

        assert [s.segment for s in result.segments] == [
            RFMSegment.CHAMPIONS,
            RFMSegment.POTENTIAL_LOYALISTS,
            RFMSegment.PROMISING,
            RFMSegment.CANNOT_LOSE,
            RFMSegment.LOST,
        ]
        assert result.segments[0].clientIds == ['A']

    @pytest.mark.scenario
    def test_metrics_and_insights(self) -> None:
        result = analyze_rfm(champion_vs_lost_rows(), client_date_value_columns())

        assert result.metrics.totalClients == 5
        assert result.metrics.topSegment == RFMSegment.CHAMPIONS
        assert result.metrics.referenceDate == date(2024, 6, 30)
        assert result.metrics.valueConcentrationPct == pytest.approx(10000 / 13450 * 100)
        assert [i.type for i in result.insights] == ['rfm_value', 'rfm_risk', 'rfm_champions', 'rfm_new']
        assert result.columnsUsed.value == 'Valor'

    def test_scores_always_in_range(self, sales_rows, sales_columns) -> None:
        result = analyze_rfm(sales_rows, sales_columns)

        assert result.available
        assert len(result.scores) == 6
        for profile in result.scores:
            for score in (profile.recencyScore, profile.frequencyScore, profile.monetaryScore):
                assert 1 <= score <= 5

    def test_missing_value_column_is_unavailable(self) -> None:
        columns = make_columns(('Cliente', ColumnType.CLIENT), ('Data', ColumnType.DATE))
        result = analyze_rfm([{'Cliente': 'A', 'Data': '2024-01-01'}], columns)

        assert not result.available
        assert result.reason == UNAVAILABLE_REASON

    def test_value_column_must_be_currency(self) -> None:
        columns = make_columns(
            ('Cliente', ColumnType.CLIENT),
            ('Data', ColumnType.DATE),
            ('Valor', ColumnType.NUMBER),
        )
        assert not analyze_rfm([], columns).available

    def test_no_valid_purchases(self) -> None:
        rows = [{'Cliente': 'A', 'Data': '2024-01-01', 'Valor': -10}]
        result = analyze_rfm(rows, client_date_value_columns())

        assert not result.available
        assert result.reason == NO_PURCHASES_REASON
