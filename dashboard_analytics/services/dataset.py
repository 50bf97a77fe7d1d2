"""
Immutable dataset model and value parsing shared by every analyzer.

The upstream ingestion layer hands the core a list of row mappings plus a list
of ColumnMetadata. ``Dataset.from_records`` freezes both so analyzers running
concurrently can share them without copying.

Raw cell values arrive in many shapes: native numbers, locale-formatted
strings such as "R$ 1.234,56" or "12,5%", and dates in Brazilian or ISO
notation. ``parse_number`` and ``parse_date`` normalize them and return None
for anything unparseable, so callers skip malformed cells individually.

Usage:
    from dashboard_analytics.services.dataset import Dataset, parse_number

    dataset = Dataset.from_records(rows, columns)
    parse_number("R$ 1.234,56")  # 1234.56
"""

import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from dashboard_analytics.models.schemas import ColumnMetadata, MonthlyAggregate

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MONTH_ABBREVIATIONS: Tuple[str, ...] = (
    'Jan', 'Fev', 'Mar', 'Abr', 'Mai', 'Jun',
    'Jul', 'Ago', 'Set', 'Out', 'Nov', 'Dez',
)

# Currency markers, percent sign and any whitespace (including NBSP)
_NUMBER_NOISE_RE = re.compile(r"(R\$|US\$|\$|€|£|%|\s)")

# Tried in order; (pattern, field order)
_DATE_PATTERNS = (
    (re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$"), ("day", "month", "year")),
    (re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$"), ("year", "month", "day")),
    (re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$"), ("day", "month", "year")),
)


ColumnsInput = Iterable[Union[ColumnMetadata, Mapping[str, Any]]]


# =============================================================================
# Value Parsing
# =============================================================================


def parse_number(value: Any) -> Optional[float]:
    """
    Parse a raw cell into a float.

    Handles native numbers and locale-formatted strings. When both '.' and ','
    appear, the right-most one is the decimal separator. A single ',' is a
    decimal comma; repeated ',' or '.' are thousands separators.

    Args:
        value: Raw cell value (str, int, float, None).

    Returns:
        Parsed finite float, or None when empty/unparseable.

    Example:
        >>> parse_number("R$ 1.234,56")
        1234.56
        >>> parse_number("1,234.50")
        1234.5
        >>> parse_number("12,5%")
        12.5
        >>> parse_number("abc") is None
        True
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, np.integer, np.floating)):
        number = float(value)
        return number if math.isfinite(number) else None

    text = _NUMBER_NOISE_RE.sub("", str(value))
    if not text:
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]

    last_comma = text.rfind(",")
    last_dot = text.rfind(".")
    if last_comma != -1 and last_dot != -1:
        if last_comma > last_dot:
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif last_comma != -1:
        if text.count(",") > 1:
            text = text.replace(",", "")
        else:
            text = text.replace(",", ".")
    elif text.count(".") > 1:
        text = text.replace(".", "")

    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return -number if negative else number


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a raw cell into a calendar date.

    Formats are tried in order: DD/MM/YYYY, YYYY-MM-DD, DD-MM-YYYY, then
    pandas.to_datetime as the generic fallback (ISO timestamps, month names).
    A string that matches a pattern but names an impossible day
    (e.g. 31/02/2024) returns None rather than falling through.

    Example:
        >>> parse_date("05/03/2024")
        datetime.date(2024, 3, 5)
        >>> parse_date("2024-03-05")
        datetime.date(2024, 3, 5)
        >>> parse_date("31/02/2024") is None
        True
    """
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None

    for pattern, order in _DATE_PATTERNS:
        match = pattern.match(text)
        if match:
            parts = dict(zip(order, (int(g) for g in match.groups())))
            try:
                return date(parts["year"], parts["month"], parts["day"])
            except ValueError:
                return None

    try:
        parsed = pd.to_datetime(text, errors="coerce")
    except (ValueError, OverflowError, TypeError):
        return None
    if pd.isna(parsed):
        return None
    return parsed.date()


def month_key(value: date) -> str:
    """YYYY-MM key of a date."""
    return f"{value.year:04d}-{value.month:02d}"


def month_label(key: str) -> str:
    """Display label for a YYYY-MM key, e.g. '2024-03' -> 'Mar/2024'."""
    year, month = key.split("-")
    return f"{MONTH_ABBREVIATIONS[int(month) - 1]}/{year}"


def months_between(start: date, end: date) -> int:
    """Calendar months from ``start`` to ``end`` (negative when end is earlier)."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def normalize_key(value: Any) -> Optional[str]:
    """
    Identity key for client / product cells.

    Empty strings and missing values yield None so callers can skip the row.
    """
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    text = str(value).strip()
    return text or None


# =============================================================================
# Column Metadata
# =============================================================================


def coerce_columns(columns: ColumnsInput) -> Tuple[ColumnMetadata, ...]:
    """
    Validate column descriptions into ColumnMetadata instances.

    Accepts ColumnMetadata objects or plain dicts (as produced by the type
    detector's JSON output).

    Raises:
        pydantic.ValidationError: If a dict is missing ``name``.
    """
    return tuple(
        col if isinstance(col, ColumnMetadata) else ColumnMetadata.model_validate(col)
        for col in columns
    )


# =============================================================================
# Dataset
# =============================================================================


@dataclass(frozen=True)
class Dataset:
    """
    Ordered, read-only snapshot of rows and column metadata.

    Rows are stored as MappingProxyType views over private copies, so neither
    the caller nor an analyzer can mutate them after construction. Row index
    is stable for the lifetime of the object.

    Attributes:
        rows: Frozen row mappings in input order.
        columns: Validated column metadata in input order.
    """
    rows: Tuple[Mapping[str, Any], ...]
    columns: Tuple[ColumnMetadata, ...]

    @classmethod
    def from_records(
        cls,
        rows: Union["Dataset", Iterable[Mapping[str, Any]]],
        columns: Optional[ColumnsInput] = None,
    ) -> "Dataset":
        if isinstance(rows, Dataset):
            if columns is None:
                return rows
            return cls(rows=rows.rows, columns=coerce_columns(columns))
        frozen_rows = tuple(MappingProxyType(dict(row)) for row in rows)
        return cls(rows=frozen_rows, columns=coerce_columns(columns or ()))

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)

    def values(self, column: str) -> List[Any]:
        return [row.get(column) for row in self.rows]

    def numeric_frame(self, columns: Sequence[str]) -> pd.DataFrame:
        """
        Parsed numeric view of the given columns.

        Unparseable cells become NaN; the index is the row position.
        """
        data: Dict[str, List[float]] = {}
        for name in columns:
            parsed = (parse_number(v) for v in self.values(name))
            data[name] = [np.nan if v is None else v for v in parsed]
        return pd.DataFrame(data, columns=list(columns), dtype=float)


def ensure_dataset(rows: Any, columns: Optional[ColumnsInput] = None) -> Dataset:
    """Wrap raw rows/columns into a Dataset unless they already are one."""
    return Dataset.from_records(rows, columns)


# =============================================================================
# Monthly Aggregation
# =============================================================================


def build_monthly_series(
    rows: Iterable[Mapping[str, Any]],
    date_column: str,
    value_column: str,
    fill_gaps: bool = True,
) -> List[MonthlyAggregate]:
    """
    Aggregate a value column by calendar month.

    Rows with an unparseable date or value are skipped. Months between the
    first and last observed month with no rows are emitted with zero totals
    when ``fill_gaps`` is set, so the series has one point per month.

    Args:
        rows: Dataset rows.
        date_column: Name of the DATE column.
        value_column: Name of the numeric column to sum.
        fill_gaps: Insert empty months between observed ones.

    Returns:
        Month aggregates sorted chronologically.

    Example:
        >>> rows = [{"d": "2024-01-10", "v": "10"}, {"d": "2024-03-02", "v": "5"}]
        >>> [m.month for m in build_monthly_series(rows, "d", "v")]
        ['2024-01', '2024-02', '2024-03']
    """
    sums: Dict[Tuple[int, int], float] = {}
    counts: Dict[Tuple[int, int], int] = {}

    for row in rows:
        parsed_date = parse_date(row.get(date_column))
        value = parse_number(row.get(value_column))
        if parsed_date is None or value is None:
            continue
        key = (parsed_date.year, parsed_date.month)
        sums[key] = sums.get(key, 0.0) + value
        counts[key] = counts.get(key, 0) + 1

    if not sums:
        return []

    keys = sorted(sums)
    if fill_gaps:
        (first_year, first_month), (last_year, last_month) = keys[0], keys[-1]
        span = (last_year - first_year) * 12 + (last_month - first_month)
        keys = [
            (first_year + (first_month - 1 + offset) // 12, (first_month - 1 + offset) % 12 + 1)
            for offset in range(span + 1)
        ]

    series = []
    for year, month in keys:
        key = f"{year:04d}-{month:02d}"
        total = sums.get((year, month), 0.0)
        count = counts.get((year, month), 0)
        series.append(
            MonthlyAggregate(
                month=key,
                label=month_label(key),
                total=total,
                average=total / count if count else 0.0,
                count=count,
            )
        )

    logger.debug(f"Built monthly series with {len(series)} periods from column '{value_column}'")
    return series
