"""
Geographic distribution service.

Rows are located in a Brazilian state (UF) and city using the location
columns of the dataset, then aggregated by state, macro-region and city.

Key Features:
- State resolution from UF codes or state names (case and accent
  insensitive, partial names accepted)
- UF fallback: without a state column, the first two-letter UF code found
  in any other location column ("Campinas - SP") locates the row
- Region roll-up of the state breakdown
- Top 20 cities by revenue
- Geographic diversity: 100 minus the Herfindahl index of state shares,
  normalized to 0-100

Edge Cases:
- Rows without a recognizable state are left out of the state and region
  breakdowns; the city breakdown reads its own column independently
- Unparseable revenue cells count as zero; without a revenue column every
  breakdown is ordered by row count
- A dataset whose location columns hold nothing recognizable is reported as
  unavailable

Usage:
    from dashboard_analytics.services.geo import analyze_geo

    result = analyze_geo(rows, columns)
    print(result.metrics.geographicDiversity)
"""

import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from dashboard_analytics.models.enums import BrazilRegion, InsightPriority
from dashboard_analytics.models.schemas import (
    CityDistribution,
    ColumnMetadata,
    ColumnsUsed,
    GeoMetrics,
    GeoResult,
    Insight,
    RegionDistribution,
    StateDistribution,
)
from dashboard_analytics.services.column_roles import (
    CITY_KEYWORDS,
    STATE_KEYWORDS,
    VALUE_KEYWORDS,
    find_geo_columns,
    find_keyword_column,
    find_value_column,
)
from dashboard_analytics.services.dataset import ColumnsInput, ensure_dataset, normalize_key, parse_number
from dashboard_analytics.services.numeric import safe_divide

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

NO_GEO_COLUMN_REASON = 'Nenhuma coluna geográfica identificada (cidade, estado, CEP, região)'
NO_LOCATION_REASON = 'Nenhuma localização reconhecida nos dados'

# UF -> (state name, region)
BRAZILIAN_STATES: Dict[str, Tuple[str, BrazilRegion]] = {
    'AC': ('Acre', BrazilRegion.NORTE),
    'AL': ('Alagoas', BrazilRegion.NORDESTE),
    'AP': ('Amapá', BrazilRegion.NORTE),
    'AM': ('Amazonas', BrazilRegion.NORTE),
    'BA': ('Bahia', BrazilRegion.NORDESTE),
    'CE': ('Ceará', BrazilRegion.NORDESTE),
    'DF': ('Distrito Federal', BrazilRegion.CENTRO_OESTE),
    'ES': ('Espírito Santo', BrazilRegion.SUDESTE),
    'GO': ('Goiás', BrazilRegion.CENTRO_OESTE),
    'MA': ('Maranhão', BrazilRegion.NORDESTE),
    'MT': ('Mato Grosso', BrazilRegion.CENTRO_OESTE),
    'MS': ('Mato Grosso do Sul', BrazilRegion.CENTRO_OESTE),
    'MG': ('Minas Gerais', BrazilRegion.SUDESTE),
    'PA': ('Pará', BrazilRegion.NORTE),
    'PB': ('Paraíba', BrazilRegion.NORDESTE),
    'PR': ('Paraná', BrazilRegion.SUL),
    'PE': ('Pernambuco', BrazilRegion.NORDESTE),
    'PI': ('Piauí', BrazilRegion.NORDESTE),
    'RJ': ('Rio de Janeiro', BrazilRegion.SUDESTE),
    'RN': ('Rio Grande do Norte', BrazilRegion.NORDESTE),
    'RS': ('Rio Grande do Sul', BrazilRegion.SUL),
    'RO': ('Rondônia', BrazilRegion.NORTE),
    'RR': ('Roraima', BrazilRegion.NORTE),
    'SC': ('Santa Catarina', BrazilRegion.SUL),
    'SP': ('São Paulo', BrazilRegion.SUDESTE),
    'SE': ('Sergipe', BrazilRegion.NORDESTE),
    'TO': ('Tocantins', BrazilRegion.NORTE),
}

TOTAL_STATES = len(BRAZILIAN_STATES)
MAX_CITIES = 20

# Insight thresholds (percent of located rows)
STATE_CONCENTRATION_PCT = 40.0
TOP_CITY_PCT = 15.0

# Shortest free text accepted as a fragment of a state name ("Catarina")
MIN_PARTIAL_NAME_LENGTH = 4

_UF_TOKEN_RE = re.compile(r'\b([A-Z]{2})\b')


# =============================================================================
# State Resolution
# =============================================================================


def _fold(text: str) -> str:
    """Upper-case, accent-free form used for name comparison."""
    decomposed = unicodedata.normalize('NFKD', text)
    return ''.join(ch for ch in decomposed if not unicodedata.combining(ch)).upper().strip()


_FOLDED_NAMES: Dict[str, str] = {_fold(name): uf for uf, (name, _) in BRAZILIAN_STATES.items()}


def normalize_state(value) -> Optional[str]:
    """
    Resolve a raw cell to a UF code.

    Tries, in order: an exact UF code, an exact state name, the longest
    state name contained in the text, then a state name containing the text
    (at least four characters). Case and accents are ignored.

    Example:
        >>> normalize_state('sao paulo')
        'SP'
        >>> normalize_state('Mato Grosso do Sul - Campo Grande')
        'MS'
    """
    text = normalize_key(value)
    if text is None:
        return None

    folded = _fold(text)
    if folded in BRAZILIAN_STATES:
        return folded
    if folded in _FOLDED_NAMES:
        return _FOLDED_NAMES[folded]

    contained = [name for name in _FOLDED_NAMES if name in folded]
    if contained:
        return _FOLDED_NAMES[max(contained, key=len)]

    if len(folded) >= MIN_PARTIAL_NAME_LENGTH:
        for name, uf in _FOLDED_NAMES.items():
            if folded in name:
                return uf
    return None


def extract_uf(value) -> Optional[str]:
    """First upper-case two-letter token of the text that is a UF code."""
    text = normalize_key(value)
    if text is None:
        return None
    for token in _UF_TOKEN_RE.findall(text):
        if token in BRAZILIAN_STATES:
            return token
    return None


# =============================================================================
# Aggregation
# =============================================================================


@dataclass
class _Tally:
    count: int = 0
    revenue: float = 0.0

    def add(self, revenue: float) -> None:
        self.count += 1
        self.revenue += revenue


def _row_revenue(row: Mapping, value_column: Optional[str]) -> float:
    if value_column is None:
        return 0.0
    return parse_number(row.get(value_column)) or 0.0


def _ranked(tallies: Dict[str, _Tally]) -> List[Tuple[str, _Tally]]:
    return sorted(tallies.items(), key=lambda item: (-item[1].revenue, -item[1].count))


def _shares(tally: _Tally, total_count: int, total_revenue: float) -> Tuple[float, float]:
    percentage = safe_divide(tally.count, total_count) * 100
    revenue_percentage = safe_divide(tally.revenue, total_revenue) * 100 if total_revenue > 0 else 0.0
    return percentage, revenue_percentage


def locate_row_state(
    row: Mapping,
    state_column: Optional[str],
    fallback_columns: Sequence[str],
) -> Optional[str]:
    """UF of a row: the state column when present, else a UF token in the other location columns."""
    if state_column is not None:
        return normalize_state(row.get(state_column))
    for name in fallback_columns:
        uf = extract_uf(row.get(name))
        if uf is not None:
            return uf
    return None


def analyze_by_state(
    rows: Iterable[Mapping],
    state_column: Optional[str],
    fallback_columns: Sequence[str],
    value_column: Optional[str],
) -> List[StateDistribution]:
    """
    Rows and revenue per state, highest revenue first (row count breaks ties).

    Percentages are shares of the rows that could be located.
    """
    tallies: Dict[str, _Tally] = {}
    for row in rows:
        uf = locate_row_state(row, state_column, fallback_columns)
        if uf is None:
            continue
        tallies.setdefault(uf, _Tally()).add(_row_revenue(row, value_column))

    total_count = sum(t.count for t in tallies.values())
    total_revenue = sum(t.revenue for t in tallies.values())

    distribution = []
    for uf, tally in _ranked(tallies):
        name, region = BRAZILIAN_STATES[uf]
        percentage, revenue_percentage = _shares(tally, total_count, total_revenue)
        distribution.append(StateDistribution(
            state=uf,
            stateName=name,
            region=region,
            count=tally.count,
            revenue=tally.revenue,
            percentage=percentage,
            revenuePercentage=revenue_percentage,
        ))
    return distribution


def analyze_by_region(by_state: Sequence[StateDistribution]) -> List[RegionDistribution]:
    """Roll the state breakdown up into macro-regions."""
    tallies: Dict[str, _Tally] = {}
    states: Dict[str, List[str]] = {}
    for entry in by_state:
        tally = tallies.setdefault(entry.region.value, _Tally())
        tally.count += entry.count
        tally.revenue += entry.revenue
        states.setdefault(entry.region.value, []).append(entry.state)

    total_count = sum(t.count for t in tallies.values())
    total_revenue = sum(t.revenue for t in tallies.values())

    distribution = []
    for region, tally in _ranked(tallies):
        percentage, revenue_percentage = _shares(tally, total_count, total_revenue)
        distribution.append(RegionDistribution(
            region=BrazilRegion(region),
            states=states[region],
            stateCount=len(states[region]),
            count=tally.count,
            revenue=tally.revenue,
            percentage=percentage,
            revenuePercentage=revenue_percentage,
        ))
    return distribution


def analyze_by_city(
    rows: Iterable[Mapping],
    city_column: Optional[str],
    value_column: Optional[str],
) -> List[CityDistribution]:
    """Top MAX_CITIES cities by revenue; city names are compared after trimming."""
    if city_column is None:
        return []

    tallies: Dict[str, _Tally] = {}
    for row in rows:
        city = normalize_key(row.get(city_column))
        if city is None:
            continue
        tallies.setdefault(city, _Tally()).add(_row_revenue(row, value_column))

    total_count = sum(t.count for t in tallies.values())
    total_revenue = sum(t.revenue for t in tallies.values())

    distribution = []
    for city, tally in _ranked(tallies)[:MAX_CITIES]:
        percentage, revenue_percentage = _shares(tally, total_count, total_revenue)
        distribution.append(CityDistribution(
            city=city,
            count=tally.count,
            revenue=tally.revenue,
            percentage=percentage,
            revenuePercentage=revenue_percentage,
        ))
    return distribution


# =============================================================================
# Metrics and Insights
# =============================================================================


def calculate_diversity_index(by_state: Sequence[StateDistribution]) -> float:
    """
    Geographic diversity on a 0-100 scale.

    HHI is the sum of squared state shares (in percent), so a single state
    gives 10000 and diversity 0. Rounded to one decimal.

    Example:
        Two states at 50% each: HHI = 5000, diversity = 50.0
    """
    if not by_state:
        return 0.0
    hhi = sum(entry.percentage ** 2 for entry in by_state)
    max_hhi = 100.0 ** 2
    return round(max(0.0, (max_hhi - hhi) / max_hhi * 100), 1)


def calculate_geo_metrics(
    by_state: Sequence[StateDistribution],
    by_region: Sequence[RegionDistribution],
) -> GeoMetrics:
    top_state = by_state[0] if by_state else None
    top_region = by_region[0] if by_region else None
    return GeoMetrics(
        statesCovered=len(by_state),
        regionsCovered=len(by_region),
        topState=top_state.stateName if top_state else None,
        topStatePercentage=round(top_state.percentage, 1) if top_state else None,
        topRegion=top_region.region if top_region else None,
        topRegionPercentage=round(top_region.percentage, 1) if top_region else None,
        geographicDiversity=calculate_diversity_index(by_state),
    )


def generate_geo_insights(
    by_state: Sequence[StateDistribution],
    by_region: Sequence[RegionDistribution],
    by_city: Sequence[CityDistribution],
) -> List[Insight]:
    insights = []

    if by_state:
        top = by_state[0]
        concentrated = top.percentage > STATE_CONCENTRATION_PCT
        insights.append(Insight(
            type='geo_concentration_state',
            priority=InsightPriority.HIGH if concentrated else InsightPriority.MEDIUM,
            title=f'{top.stateName} concentra {top.percentage:.1f}% das operações',
            description=f'Receita: R$ {top.revenue:.2f} ({top.revenuePercentage:.1f}%)',
            action=(
                'Alta concentração - considere diversificação geográfica'
                if concentrated
                else 'Explore oportunidades neste estado líder'
            ),
        ))

    if by_region:
        top_region = by_region[0]
        insights.append(Insight(
            type='geo_region',
            priority=InsightPriority.MEDIUM,
            title=f'Região {top_region.region.value} domina com {top_region.percentage:.1f}%',
            description=f'Abrange {top_region.stateCount} estado(s)',
            action='Fortaleça presença nas outras regiões para balancear portfólio',
        ))

    covered = len(by_state)
    if covered < TOTAL_STATES:
        insights.append(Insight(
            type='geo_opportunity',
            priority=InsightPriority.MEDIUM,
            title=f'{TOTAL_STATES - covered} estados ainda não cobertos',
            description=f'Operando em {covered} de {TOTAL_STATES} estados',
            action='Oportunidade de expansão geográfica',
        ))

    if by_city and by_city[0].percentage > TOP_CITY_PCT:
        insights.append(Insight(
            type='geo_city',
            priority=InsightPriority.MEDIUM,
            title=f'{by_city[0].city} é o principal município',
            description=f'{by_city[0].percentage:.1f}% das operações',
            action='Mercado prioritário - investir em marketing local',
        ))

    return insights


# =============================================================================
# Entry Point
# =============================================================================


def _column_name(column: Optional[ColumnMetadata]) -> Optional[str]:
    return column.name if column else None


def analyze_geo(rows, columns: Optional[ColumnsInput] = None) -> GeoResult:
    """
    Run the geographic distribution analysis.

    Args:
        rows: Dataset or iterable of row mappings.
        columns: Column metadata.

    Returns:
        GeoResult; unavailable when no column looks geographic or when no
        row yields a state or a city.
    """
    dataset = ensure_dataset(rows, columns)

    geo_columns = find_geo_columns(dataset.columns)
    if not geo_columns:
        logger.warning("Geo analysis unavailable: no location column")
        return GeoResult.unavailable(NO_GEO_COLUMN_REASON)

    value_name = _column_name(find_value_column(dataset.columns, VALUE_KEYWORDS))
    state_name = _column_name(find_keyword_column(geo_columns, STATE_KEYWORDS))
    city_name = _column_name(find_keyword_column(geo_columns, CITY_KEYWORDS))
    fallback_names = [col.name for col in geo_columns]

    by_state = analyze_by_state(dataset.rows, state_name, fallback_names, value_name)
    by_region = analyze_by_region(by_state)
    by_city = analyze_by_city(dataset.rows, city_name, value_name)

    if not by_state and not by_city:
        logger.warning(f"Geo analysis unavailable: nothing recognized in {fallback_names}")
        return GeoResult.unavailable(NO_LOCATION_REASON)

    metrics = calculate_geo_metrics(by_state, by_region)
    logger.info(
        f"Geo: {metrics.statesCovered} states, {metrics.regionsCovered} regions, "
        f"{len(by_city)} cities, diversity {metrics.geographicDiversity}"
    )

    return GeoResult(
        byState=by_state,
        byRegion=by_region,
        byCity=by_city,
        insights=generate_geo_insights(by_state, by_region, by_city),
        metrics=metrics,
        geoColumns=fallback_names,
        columnsUsed=ColumnsUsed(value=value_name, state=state_name, city=city_name),
    )
