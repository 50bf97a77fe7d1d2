"""
Deterministic test data builders shared by the analyzer tests.
"""

from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence

from dashboard_analytics.models import ColumnMetadata, ColumnType


SAMPLE_CLIENTS = ['Ana', 'Bruno', 'Carla', 'Diego', 'Eva', 'Fabio']
SAMPLE_PRODUCTS = ['Café', 'Pão', 'Leite', 'Queijo']


def make_columns(*specs) -> List[ColumnMetadata]:
    """Build ColumnMetadata from (name, type) pairs."""
    return [ColumnMetadata(name=name, type=column_type) for name, column_type in specs]


def sales_column_metadata() -> List[ColumnMetadata]:
    """Column metadata matching make_sales_rows()."""
    return make_columns(
        ('Pedido', ColumnType.TEXT),
        ('Cliente', ColumnType.CLIENT),
        ('Data', ColumnType.DATE),
        ('Valor', ColumnType.CURRENCY),
        ('Produto', ColumnType.PRODUCT),
        ('Quantidade', ColumnType.NUMBER),
    )


def make_sales_rows(year: int = 2024, months: int = 12) -> List[Dict[str, Any]]:
    """
    Generate a deterministic sales dataset.

    Every month each client places one order with two distinct products;
    Diego, Eva and Fabio skip every third month. Values are written in
    Brazilian currency format ("R$ 150,50") to exercise number parsing.

    Args:
        year: Calendar year of the first month.
        months: Number of consecutive months (starting in January).

    Returns:
        List of row dicts keyed by column name.
    """
    rows = []
    order = 0
    for offset in range(months):
        month = offset + 1
        row_year = year + offset // 12
        row_month = offset % 12 + 1
        for index, client in enumerate(SAMPLE_CLIENTS):
            if index >= 3 and (month + index) % 3 == 0:
                continue
            order += 1
            value = 100 + month * 10 + index * 25
            for item in range(2):
                rows.append({
                    'Pedido': f'P{order:04d}',
                    'Cliente': client,
                    'Data': f'{5 + index:02d}/{row_month:02d}/{row_year}',
                    'Valor': f'R$ {value},{item * 50:02d}',
                    'Produto': SAMPLE_PRODUCTS[(month + index + item) % len(SAMPLE_PRODUCTS)],
                    'Quantidade': str(1 + (index + month + item) % 5),
                })
    return rows


def make_purchases(
    client: str,
    last_purchase: date,
    count: int,
    total_value: float,
    spacing_days: int = 7,
    values: Optional[Sequence[float]] = None,
) -> List[Dict[str, Any]]:
    """
    Rows for one client: ``count`` purchases ending at ``last_purchase``.

    Purchases are ``spacing_days`` apart. The total is split evenly unless
    explicit per-purchase ``values`` (oldest first) are given.
    """
    rows = []
    for i in range(count):
        purchase_date = last_purchase - timedelta(days=spacing_days * (count - 1 - i))
        value = values[i] if values is not None else total_value / count
        rows.append({
            'Cliente': client,
            'Data': purchase_date.isoformat(),
            'Valor': value,
        })
    return rows


def client_date_value_columns() -> List[ColumnMetadata]:
    return make_columns(
        ('Cliente', ColumnType.CLIENT),
        ('Data', ColumnType.DATE),
        ('Valor', ColumnType.CURRENCY),
    )
