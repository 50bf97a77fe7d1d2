"""
Enumeration definitions for the analytics core.

All enums inherit from both `str` and `Enum` so they serialize as plain strings
inside the Pydantic result models. Labels shown to dashboard users are kept in
Portuguese, matching the rest of the dashboard.
"""

from enum import Enum


class ColumnType(str, Enum):
    """
    Semantic column types produced by the upstream type detector.

    Analyzers locate their input roles (client, date, value, product) through
    these types. Lower-case input (e.g. ``"client"``) is accepted and mapped to
    the canonical upper-case member.
    """
    DATE = "DATE"
    NUMBER = "NUMBER"
    CURRENCY = "CURRENCY"
    PERCENTAGE = "PERCENTAGE"
    TEXT = "TEXT"
    CATEGORY = "CATEGORY"
    PRODUCT = "PRODUCT"
    EMPLOYEE = "EMPLOYEE"
    CLIENT = "CLIENT"
    SKU = "SKU"
    BOOLEAN = "BOOLEAN"
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            normalized = value.strip().upper()
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class InsightPriority(str, Enum):
    """
    Priority attached to every generated insight.

    Ordering (most to least urgent): CRÍTICA, ALTA, MÉDIA, BAIXA.
    """
    CRITICAL = "CRÍTICA"
    HIGH = "ALTA"
    MEDIUM = "MÉDIA"
    LOW = "BAIXA"


class RFMSegment(str, Enum):
    """
    The eleven RFM customer segments, declared in priority order.

    Priority 1 (Champions) is the most valuable group, 11 (Lost) the least.
    """
    CHAMPIONS = "Champions"
    LOYAL_CUSTOMERS = "Loyal Customers"
    POTENTIAL_LOYALISTS = "Potential Loyalists"
    RECENT_CUSTOMERS = "Recent Customers"
    PROMISING = "Promising"
    NEEDS_ATTENTION = "Needs Attention"
    ABOUT_TO_SLEEP = "About To Sleep"
    AT_RISK = "At Risk"
    CANNOT_LOSE = "Cannot Lose"
    HIBERNATING = "Hibernating"
    LOST = "Lost"

    @property
    def priority(self) -> int:
        return list(RFMSegment).index(self) + 1


class ChurnRiskLevel(str, Enum):
    """Churn risk level derived from the 0-100 churn score."""
    HIGH = "ALTO"
    MEDIUM = "MÉDIO"
    LOW = "BAIXO"
    MINIMAL = "MÍNIMO"


class RiskBucket(str, Enum):
    """Three-level bucket used for revenue concentration risk."""
    HIGH = "ALTO"
    MEDIUM = "MÉDIO"
    LOW = "BAIXO"


class CorrelationStrength(str, Enum):
    """
    Strength label for |r|.

    Thresholds: >= 0.9 Muito Forte, >= 0.7 Forte, >= 0.5 Moderada,
    >= 0.3 Fraca, otherwise Muito Fraca.
    """
    VERY_STRONG = "Muito Forte"
    STRONG = "Forte"
    MODERATE = "Moderada"
    WEAK = "Fraca"
    VERY_WEAK = "Muito Fraca"


class CorrelationDirection(str, Enum):
    POSITIVE = "positiva"
    NEGATIVE = "negativa"


class CorrelationMethod(str, Enum):
    PEARSON = "pearson"
    SPEARMAN = "spearman"


class RetentionTrend(str, Enum):
    """Direction of average cohort retention across periods."""
    DECLINING = "queda"
    GROWING = "crescimento"
    STABLE = "estável"


class TrendDirection(str, Enum):
    """Direction of a time-series trend component."""
    UP = "crescente"
    DOWN = "decrescente"


class VolatilityLevel(str, Enum):
    """Coefficient-of-variation bucket: > 30% alta, > 15% moderada."""
    HIGH = "alta"
    MODERATE = "moderada"
    LOW = "baixa"


class PatternType(str, Enum):
    TREND = "trend"
    VOLATILITY = "volatility"
    CYCLE = "cycle"


class ForecastMethod(str, Enum):
    """Regression families fitted by the revenue forecaster."""
    LINEAR = "Linear"
    EXPONENTIAL = "Exponencial"
    POLYNOMIAL = "Polinomial"


class TransactionKeySource(str, Enum):
    """
    How market-basket transactions were grouped.

    - column: explicit order / invoice / transaction column
    - date_client: composite of purchase date and client
    - row: one transaction per row (last resort)
    """
    COLUMN = "column"
    DATE_CLIENT = "date_client"
    ROW = "row"


class BrazilRegion(str, Enum):
    """IBGE macro-regions used to group states."""
    NORTE = "Norte"
    NORDESTE = "Nordeste"
    CENTRO_OESTE = "Centro-Oeste"
    SUDESTE = "Sudeste"
    SUL = "Sul"
