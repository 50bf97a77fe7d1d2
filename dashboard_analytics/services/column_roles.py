"""
Column role resolution.

Analyzers locate the columns they need (client, date, value, product,
transaction id, location) from the semantic types supplied upstream and, secondarily,
from keywords in the column name. Each matcher is an ordered, explicit
function that returns the first matching ColumnMetadata or None.

Keyword lists are module constants so tests can pin them.
"""

import re
from typing import Iterable, List, Optional, Sequence, Tuple

from dashboard_analytics.models.enums import ColumnType
from dashboard_analytics.models.schemas import ColumnMetadata


# =============================================================================
# Keyword Lists
# =============================================================================

# Revenue-like CURRENCY columns used for cohort revenue, churn value and
# concentration risk. Tried in order; the first keyword with a match wins.
VALUE_KEYWORDS: Tuple[str, ...] = ("valor", "receita", "value", "revenue")

# Wider list for RFM monetary value and the regression dependent variable
SALES_VALUE_KEYWORDS: Tuple[str, ...] = (
    "valor", "receita", "venda", "value", "revenue", "sales",
)

# Order / invoice identifiers for market-basket grouping, in priority order
TRANSACTION_KEYWORDS: Tuple[str, ...] = (
    "pedido", "transacao", "transação", "order", "invoice", "transaction",
    "venda", "nota", "nf", "id",
)

# Keywords this short only match a whole token of the column name
# ("ID Pedido", "nf_numero"), never a substring ("Cidade", "Confiança").
WHOLE_TOKEN_KEYWORDS: Tuple[str, ...] = ("id", "nf", "uf", "cep")

# Types that can never identify a transaction
TRANSACTION_EXCLUDED_TYPES: Tuple[ColumnType, ...] = (
    ColumnType.CURRENCY,
    ColumnType.PERCENTAGE,
    ColumnType.DATE,
    ColumnType.BOOLEAN,
    ColumnType.CLIENT,
    ColumnType.PRODUCT,
    ColumnType.EMPLOYEE,
    ColumnType.SKU,
)

# Location columns: any of these marks a column as geographic; the state and
# city lists pick the column each breakdown reads
GEO_KEYWORDS: Tuple[str, ...] = (
    "cidade", "estado", "uf", "região", "regiao", "cep", "localidade",
    "municipio", "município",
)
GEO_EXCLUDED_TYPES: Tuple[ColumnType, ...] = (
    ColumnType.CURRENCY,
    ColumnType.PERCENTAGE,
    ColumnType.DATE,
)
STATE_KEYWORDS: Tuple[str, ...] = ("estado", "uf")
CITY_KEYWORDS: Tuple[str, ...] = ("cidade", "municipio", "município")

NUMERIC_TYPES: Tuple[ColumnType, ...] = (ColumnType.NUMBER, ColumnType.CURRENCY)

_TOKEN_SPLIT_RE = re.compile(r"[^0-9a-zà-ÿ]+")


# =============================================================================
# Matchers
# =============================================================================


def name_tokens(name: str) -> List[str]:
    """Lower-case alphanumeric tokens of a column name."""
    return [tok for tok in _TOKEN_SPLIT_RE.split(name.lower()) if tok]


def name_matches(name: str, keyword: str) -> bool:
    """True when ``keyword`` occurs in the column name (whole-token for short keywords)."""
    if keyword in WHOLE_TOKEN_KEYWORDS:
        return keyword in name_tokens(name)
    return keyword in name.lower()


def find_column_by_type(
    columns: Iterable[ColumnMetadata],
    column_type: ColumnType,
) -> Optional[ColumnMetadata]:
    """First column of the given semantic type, or None."""
    for col in columns:
        if col.type == column_type:
            return col
    return None


def find_numeric_columns(columns: Iterable[ColumnMetadata]) -> List[ColumnMetadata]:
    """NUMBER and CURRENCY columns, in dataset order."""
    return [col for col in columns if col.type in NUMERIC_TYPES]


def find_value_column(
    columns: Sequence[ColumnMetadata],
    keywords: Sequence[str] = VALUE_KEYWORDS,
    column_type: ColumnType = ColumnType.CURRENCY,
) -> Optional[ColumnMetadata]:
    """
    First column of ``column_type`` whose name contains a value keyword.

    Keywords are tried in order, so "Valor Total" wins over an earlier
    "Receita Bruta" column when "valor" precedes "receita".

    Example:
        >>> cols = [ColumnMetadata(name="Receita", type="CURRENCY")]
        >>> find_value_column(cols).name
        'Receita'
    """
    for keyword in keywords:
        for col in columns:
            if col.type == column_type and name_matches(col.name, keyword):
                return col
    return None


def find_transaction_column(
    columns: Sequence[ColumnMetadata],
    exclude: Iterable[str] = (),
) -> Optional[ColumnMetadata]:
    """
    Column identifying an order / invoice / transaction.

    Args:
        columns: Dataset columns.
        exclude: Column names that may not be used (e.g. the product column).

    Returns:
        The first column matching TRANSACTION_KEYWORDS in priority order, or
        None. Monetary, date and role columns are never candidates.
    """
    excluded_names = set(exclude)
    candidates = [
        col for col in columns
        if col.name not in excluded_names and col.type not in TRANSACTION_EXCLUDED_TYPES
    ]
    for keyword in TRANSACTION_KEYWORDS:
        for col in candidates:
            if name_matches(col.name, keyword):
                return col
    return None


def find_geo_columns(columns: Iterable[ColumnMetadata]) -> List[ColumnMetadata]:
    """Columns whose name carries a GEO_KEYWORDS term; monetary and date columns never qualify."""
    return [
        col for col in columns
        if col.type not in GEO_EXCLUDED_TYPES
        and any(name_matches(col.name, keyword) for keyword in GEO_KEYWORDS)
    ]


def find_keyword_column(
    columns: Sequence[ColumnMetadata],
    keywords: Sequence[str],
) -> Optional[ColumnMetadata]:
    """First column matching any of ``keywords``, scanning columns in order."""
    for col in columns:
        if any(name_matches(col.name, keyword) for keyword in keywords):
            return col
    return None
