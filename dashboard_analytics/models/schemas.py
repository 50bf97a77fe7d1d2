"""
Pydantic result models for the analytics core.

This module provides type-safe, serializable records for every analyzer output,
plus the ColumnMetadata input model supplied by the upstream type detector.

Conventions:
- Field names are camelCase so results serialize straight into the dashboard's
  JSON contract.
- Every analyzer result derives from AnalysisResult and carries the
  ``available`` discriminant. ``AnalysisResult.unavailable(reason)`` builds a
  result whose payload fields all keep their empty defaults, so a failed
  analysis never carries partial data.
- Ratios and percentages are already denominator-guarded by the services; no
  model here ever holds NaN or infinity.

All models use Pydantic v2 syntax with field validation and examples.
"""

from datetime import date as DateType, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from dashboard_analytics.models.enums import (
    BrazilRegion,
    ChurnRiskLevel,
    ColumnType,
    CorrelationDirection,
    CorrelationMethod,
    CorrelationStrength,
    ForecastMethod,
    InsightPriority,
    PatternType,
    RetentionTrend,
    RFMSegment,
    RiskBucket,
    TransactionKeySource,
    TrendDirection,
    VolatilityLevel,
)


# =============================================================================
# Input Models
# =============================================================================


class ColumnMetadata(BaseModel):
    """
    Semantic description of one dataset column.

    Produced upstream by the column type detector and treated as read-only.
    Distribution statistics are only present for numeric columns.
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "name": "Valor Total",
                "type": "CURRENCY",
                "nullCount": 0,
                "uniqueCount": 182,
                "min": 12.5,
                "max": 9800.0,
                "mean": 1450.3,
                "median": 980.0,
                "stdDev": 1320.7,
            }
        },
    )

    name: str = Field(..., description="Column name as it appears in each row")
    type: ColumnType = Field(
        default=ColumnType.UNKNOWN,
        description="Semantic type (upper or lower case accepted)",
    )
    nullCount: int = Field(default=0, ge=0)
    uniqueCount: int = Field(default=0, ge=0)
    min: Optional[float] = None
    max: Optional[float] = None
    mean: Optional[float] = None
    median: Optional[float] = None
    stdDev: Optional[float] = None


class MonthlyAggregate(BaseModel):
    """One calendar month of a value column, summed over all rows."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "month": "2024-03",
                "label": "Mar/2024",
                "total": 15230.5,
                "average": 507.68,
                "count": 30,
            }
        }
    )

    month: str = Field(..., description="Month key in YYYY-MM format")
    label: str = Field(..., description="Display label, e.g. 'Mar/2024'")
    total: float = 0.0
    average: float = 0.0
    count: int = 0


# =============================================================================
# Shared Result Models
# =============================================================================


class Insight(BaseModel):
    """
    Human-readable finding produced by an analyzer.

    Titles, descriptions and actions are Portuguese because they are rendered
    as-is on the dashboard.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "type": "churn_high_risk",
                "priority": "CRÍTICA",
                "title": "3 cliente(s) em ALTO risco de churn (12.0%)",
                "description": "Representam R$ 18200.00 em valor total",
                "action": "Campanha de retenção urgente necessária",
            }
        }
    )

    type: str = Field(..., description="Machine-readable insight kind")
    priority: InsightPriority
    title: str
    description: str
    action: Optional[str] = None
    confidence: Optional[str] = Field(
        default=None,
        description="Free-text confidence note (e.g. 'p-value: 0.01', '93.2%')",
    )


class ColumnsUsed(BaseModel):
    """Names of the dataset columns an analyzer resolved for its roles."""

    client: Optional[str] = None
    date: Optional[str] = None
    value: Optional[str] = None
    product: Optional[str] = None
    transaction: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None


class AnalysisResult(BaseModel):
    """
    Base class of every analyzer result.

    ``available`` is False when required columns are missing or the sample is
    too small; ``reason`` then explains why in user-facing Portuguese.
    """

    available: bool = True
    reason: Optional[str] = None
    insights: List[Insight] = Field(default_factory=list)
    columnsUsed: Optional[ColumnsUsed] = None

    @classmethod
    def unavailable(cls, reason: str):
        return cls(available=False, reason=reason)


# =============================================================================
# RFM Segmentation
# =============================================================================


class ClientRFMProfile(BaseModel):
    """Recency / frequency / monetary profile and segment of one client."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "clientId": "Mercado Bom Preço",
                "recencyDays": 3,
                "frequency": 14,
                "monetaryTotal": 22840.0,
                "firstPurchaseDate": "2023-02-11",
                "lastPurchaseDate": "2024-05-28",
                "recencyScore": 5,
                "frequencyScore": 5,
                "monetaryScore": 4,
                "segment": "Champions",
                "recommendation": "Recompense! Ofereça VIP, early access, pré-vendas",
            }
        }
    )

    clientId: str
    recencyDays: int = Field(..., ge=0, description="Days between dataset max date and last purchase")
    frequency: int = Field(..., ge=1, description="Number of valid purchases")
    monetaryTotal: float
    firstPurchaseDate: DateType
    lastPurchaseDate: DateType
    recencyScore: int = Field(..., ge=1, le=5)
    frequencyScore: int = Field(..., ge=1, le=5)
    monetaryScore: int = Field(..., ge=1, le=5)
    segment: RFMSegment
    recommendation: str


class RFMSegmentSummary(BaseModel):
    """Aggregate figures for one RFM segment."""

    segment: RFMSegment
    description: str
    priority: int = Field(..., ge=1, le=11)
    count: int
    totalMonetary: float
    avgRecency: float
    avgFrequency: float
    avgMonetary: float
    recommendation: str
    clientIds: List[str] = Field(default_factory=list)


class RFMMetrics(BaseModel):
    totalClients: int
    avgRecency: float
    avgFrequency: float
    avgMonetary: float
    segmentCount: int
    topSegment: Optional[RFMSegment] = None
    valueConcentrationPct: float = Field(
        default=0.0,
        description="Share of total value held by the top-priority segment (0-100)",
    )
    referenceDate: Optional[DateType] = Field(
        default=None, description="Dataset max date used as 'now' for recency"
    )


class RFMResult(AnalysisResult):
    scores: List[ClientRFMProfile] = Field(default_factory=list)
    segments: List[RFMSegmentSummary] = Field(default_factory=list)
    metrics: Optional[RFMMetrics] = None


# =============================================================================
# Cohort Retention
# =============================================================================


class CohortPeriod(BaseModel):
    """Activity of one cohort in one month offset from its first purchase."""

    periodIndex: int = Field(..., ge=0)
    activeClients: int = 0
    retentionPct: float = Field(default=0.0, ge=0, le=100)
    revenue: float = 0.0
    transactions: int = 0


class Cohort(BaseModel):
    """
    Clients sharing the same first-purchase month.

    ``periods`` lists only the observed periods, sorted by index; the dense,
    zero-filled view lives in CohortResult.retentionMatrix.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "cohortKey": "2024-01",
                "cohortDate": "2024-01-03",
                "initialSize": 40,
                "periods": [
                    {"periodIndex": 0, "activeClients": 40, "retentionPct": 100.0,
                     "revenue": 12000.0, "transactions": 52},
                    {"periodIndex": 1, "activeClients": 18, "retentionPct": 45.0,
                     "revenue": 5100.0, "transactions": 21},
                ],
            }
        }
    )

    cohortKey: str = Field(..., description="YYYY-MM of the clients' first purchase")
    cohortDate: DateType = Field(..., description="Earliest first purchase in the cohort")
    initialSize: int
    periods: List[CohortPeriod] = Field(default_factory=list)


class RetentionRow(BaseModel):
    cohortKey: str
    initialSize: int
    periods: List[CohortPeriod] = Field(default_factory=list)


class RevenuePeriod(BaseModel):
    periodIndex: int
    revenue: float = 0.0
    revenuePerClient: float = 0.0
    avgTransactionValue: float = 0.0


class RevenueRow(BaseModel):
    cohortKey: str
    periods: List[RevenuePeriod] = Field(default_factory=list)


class CohortLTV(BaseModel):
    cohortKey: str
    ltv: float
    totalRevenue: float


class CohortMetrics(BaseModel):
    totalCohorts: int
    totalClients: int
    avgCohortSize: float
    avgRetentionPeriod1: float = 0.0
    avgRetentionPeriod2: float = 0.0
    avgRetentionPeriod3: float = 0.0
    averageRetention: List[float] = Field(
        default_factory=list, description="Mean positive retention per period index"
    )
    retentionTrend: RetentionTrend = RetentionTrend.STABLE
    avgLtv: Optional[float] = None


class CohortResult(AnalysisResult):
    cohorts: List[Cohort] = Field(default_factory=list)
    retentionMatrix: List[RetentionRow] = Field(default_factory=list)
    revenueMatrix: Optional[List[RevenueRow]] = None
    ltvByCohort: List[CohortLTV] = Field(default_factory=list)
    metrics: Optional[CohortMetrics] = None


# =============================================================================
# Churn Risk
# =============================================================================


class ChurnPrediction(BaseModel):
    """Behavioral profile and weighted churn score of one client."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "clientId": "Padaria Central",
                "churnScore": 78,
                "riskLevel": "ALTO",
                "indicators": ["Muito tempo desde última compra", "Baixo valor total"],
                "recommendation": "URGENTE: Contato imediato + desconto especial + atenção VIP",
                "daysSinceLastPurchase": 240,
                "lifetimeDays": 610,
                "totalValue": 820.0,
                "avgPurchaseValue": 205.0,
                "purchaseFrequency": 0.2,
                "valueTrend": -35.0,
                "transactionCount": 4,
            }
        }
    )

    clientId: str
    churnScore: int = Field(..., ge=0, le=100)
    riskLevel: ChurnRiskLevel
    indicators: List[str] = Field(default_factory=list)
    recommendation: str
    daysSinceLastPurchase: int
    lifetimeDays: int
    totalValue: float
    avgPurchaseValue: float
    purchaseFrequency: float = Field(..., description="Purchases per 30-day window")
    valueTrend: float = Field(..., description="% change of average purchase value, second vs first half")
    transactionCount: int


class ChurnMetrics(BaseModel):
    totalClients: int
    highRiskCount: int
    highRiskPct: float
    mediumRiskCount: int
    mediumRiskPct: float
    lowRiskCount: int
    minimalRiskCount: int
    churnRate: float = Field(..., description="Percentage of clients in ALTO or MÉDIO risk")
    avgChurnScore: float
    topIndicator: Optional[str] = None
    referenceDate: DateType


class ChurnResult(AnalysisResult):
    predictions: List[ChurnPrediction] = Field(default_factory=list)
    atRisk: List[ChurnPrediction] = Field(default_factory=list)
    metrics: Optional[ChurnMetrics] = None


# =============================================================================
# Market Basket
# =============================================================================


class AssociationRule(BaseModel):
    """
    Directional two-item association rule.

    support and confidence are fractions in [0, 1]; lift > 1 indicates a
    positive association.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "antecedent": ["Café"],
                "consequent": ["Pão de Queijo"],
                "support": 0.18,
                "confidence": 0.62,
                "lift": 2.4,
                "count": 36,
            }
        }
    )

    antecedent: List[str]
    consequent: List[str]
    support: float = Field(..., ge=0, le=1)
    confidence: float = Field(..., ge=0, le=1)
    lift: float = Field(..., ge=0)
    count: int = Field(..., ge=0, description="Transactions containing both items")


class TopCombo(BaseModel):
    combo: str = Field(..., description="'A → B' display string")
    antecedent: str
    consequent: str
    lift: float
    confidence: float
    support: float
    description: str


class BasketMetrics(BaseModel):
    totalTransactions: int
    avgBasketSize: float
    frequentItems: int
    rulesFound: int
    strongRules: int = Field(..., description="Rules with lift > 1.5")
    topLift: float = 0.0
    crossSellPotential: RiskBucket = RiskBucket.LOW
    transactionKeySource: TransactionKeySource


class BasketResult(AnalysisResult):
    transactions: int = 0
    rules: List[AssociationRule] = Field(default_factory=list)
    topCombos: List[TopCombo] = Field(default_factory=list)
    anchorProducts: List[str] = Field(default_factory=list)
    metrics: Optional[BasketMetrics] = None


# =============================================================================
# Correlation
# =============================================================================


class CorrelationPair(BaseModel):
    """
    Correlation between two numeric columns.

    pValue is a bucketed approximation (0.01 / 0.05 / 0.1 / 0.2) derived from
    the t statistic, not an exact hypothesis test.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "variable1": "Quantidade",
                "variable2": "Valor Total",
                "coefficient": 0.87,
                "strength": "Forte",
                "direction": "positiva",
                "pValue": 0.01,
                "sampleSize": 240,
            }
        }
    )

    variable1: str
    variable2: str
    coefficient: float = Field(..., ge=-1, le=1)
    strength: CorrelationStrength
    direction: CorrelationDirection
    pValue: float
    sampleSize: int


class CorrelationHeatmap(BaseModel):
    labels: List[str] = Field(default_factory=list)
    data: List[List[float]] = Field(default_factory=list)


class CorrelationResult(AnalysisResult):
    method: CorrelationMethod = CorrelationMethod.PEARSON
    matrix: List[CorrelationPair] = Field(default_factory=list)
    significant: List[CorrelationPair] = Field(default_factory=list)
    heatmap: Optional[CorrelationHeatmap] = None
    columnsAnalyzed: List[str] = Field(default_factory=list)


# =============================================================================
# Time Series
# =============================================================================


class TimeSeriesPoint(BaseModel):
    period: int
    value: float
    label: str
    month: Optional[str] = Field(default=None, description="YYYY-MM when known")


class Decomposition(BaseModel):
    """
    Additive decomposition: value = trend + seasonal + residual.

    trend, seasonal and residual have the length of the input series;
    seasonalIndices holds one value per phase of the seasonal period.
    """

    window: int
    seasonalPeriod: int
    trend: List[float] = Field(default_factory=list)
    seasonal: List[float] = Field(default_factory=list)
    residual: List[float] = Field(default_factory=list)
    seasonalIndices: List[float] = Field(default_factory=list)


class SeasonalMonth(BaseModel):
    month: str
    avgValue: float
    indexValue: float = Field(..., description="Month average relative to overall mean (100 = average)")


class Seasonality(BaseModel):
    pattern: List[SeasonalMonth] = Field(default_factory=list)
    peakMonth: str
    peakValue: float
    valleyMonth: str
    valleyValue: float
    seasonalityStrength: float


class TimeSeriesPattern(BaseModel):
    type: PatternType
    description: str
    confidence: InsightPriority
    direction: Optional[TrendDirection] = None
    magnitudePct: Optional[float] = None
    level: Optional[VolatilityLevel] = None
    coefficientOfVariation: Optional[float] = None
    length: Optional[int] = None


class AutocorrelationLag(BaseModel):
    lag: int
    value: float
    significant: bool


class TimeSeriesMetrics(BaseModel):
    periods: int
    mean: float
    stdDev: float
    min: float
    max: float
    trendStrengthPct: float
    autocorrelationLag1: float


class TimeSeriesResult(AnalysisResult):
    series: List[TimeSeriesPoint] = Field(default_factory=list)
    decomposition: Optional[Decomposition] = None
    seasonality: Optional[Seasonality] = None
    patterns: List[TimeSeriesPattern] = Field(default_factory=list)
    autocorrelation: List[AutocorrelationLag] = Field(default_factory=list)
    metrics: Optional[TimeSeriesMetrics] = None


# =============================================================================
# ML Engine
# =============================================================================


class ForecastPoint(BaseModel):
    month: str = Field(..., description="Relative label, e.g. 'Mês +1'")
    periodIndex: int
    predicted: float = Field(..., ge=0)
    confidence: float = Field(..., ge=0, le=100)


class ForecastModel(BaseModel):
    """Best-fitting revenue regression and its extrapolated periods."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "type": "revenue",
                "method": "Linear",
                "predictions": [
                    {"month": "Mês +1", "periodIndex": 12, "predicted": 1300.0, "confidence": 99.8}
                ],
                "accuracy": 0.998,
                "equation": "y = 100.0x + 100.0",
                "coefficients": [100.0, 100.0],
            }
        }
    )

    type: str = "revenue"
    method: ForecastMethod
    predictions: List[ForecastPoint] = Field(default_factory=list)
    accuracy: float = Field(..., description="Coefficient of determination (R²)")
    equation: str
    coefficients: List[float] = Field(default_factory=list)


class ClusterFeature(BaseModel):
    column: str
    average: float = Field(..., description="Raw (un-normalized) member average")
    normalizedCentroid: float


class ClusterResult(BaseModel):
    id: int
    name: str
    size: int
    percentage: float
    memberIndices: List[int] = Field(default_factory=list, description="Row indices in dataset order")
    centroid: Dict[str, float] = Field(default_factory=dict)
    characteristics: List[str] = Field(default_factory=list)
    topFeatures: List[ClusterFeature] = Field(default_factory=list)


class ClusteringSummary(BaseModel):
    k: int
    iterations: int
    converged: bool
    silhouetteScore: Optional[float] = None
    columns: List[str] = Field(default_factory=list)


class ConcentrationRisk(BaseModel):
    type: str = "client_concentration"
    clientId: str
    score: float = Field(..., description="Top client's share of total revenue (0-100)")
    risk: RiskBucket
    description: str
    recommendation: str


class PredictorCorrelation(BaseModel):
    variable: str
    correlation: float
    strength: float


class RegressionAnalysis(BaseModel):
    dependent: str
    independent: List[str] = Field(default_factory=list)
    correlations: List[PredictorCorrelation] = Field(default_factory=list)
    topPredictor: Optional[PredictorCorrelation] = None


class MLResult(AnalysisResult):
    predictions: List[ForecastModel] = Field(default_factory=list)
    clusters: List[ClusterResult] = Field(default_factory=list)
    clustering: Optional[ClusteringSummary] = None
    riskScores: List[ConcentrationRisk] = Field(default_factory=list)
    regressionAnalysis: Optional[RegressionAnalysis] = None
    recommendations: List[Insight] = Field(default_factory=list)


# =============================================================================
# Geographic Distribution
# =============================================================================


class StateDistribution(BaseModel):
    """Rows and revenue attributed to one Brazilian state."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "state": "SP",
                "stateName": "São Paulo",
                "region": "Sudeste",
                "count": 42,
                "revenue": 18250.0,
                "percentage": 52.5,
                "revenuePercentage": 61.3,
            }
        }
    )

    state: str = Field(..., description="Two-letter UF code")
    stateName: str
    region: BrazilRegion
    count: int = Field(..., ge=1)
    revenue: float = 0.0
    percentage: float = Field(..., ge=0, le=100, description="Share of located rows")
    revenuePercentage: float = 0.0


class RegionDistribution(BaseModel):
    region: BrazilRegion
    states: List[str] = Field(default_factory=list, description="UF codes seen in the region")
    stateCount: int
    count: int
    revenue: float = 0.0
    percentage: float = Field(..., ge=0, le=100)
    revenuePercentage: float = 0.0


class CityDistribution(BaseModel):
    city: str
    count: int
    revenue: float = 0.0
    percentage: float = Field(..., ge=0, le=100)
    revenuePercentage: float = 0.0


class GeoMetrics(BaseModel):
    statesCovered: int
    regionsCovered: int
    topState: Optional[str] = Field(default=None, description="Name of the state with most revenue")
    topStatePercentage: Optional[float] = None
    topRegion: Optional[BrazilRegion] = None
    topRegionPercentage: Optional[float] = None
    geographicDiversity: float = Field(
        default=0.0,
        ge=0,
        le=100,
        description="100 minus the normalized Herfindahl index of state shares (100 = fully spread)",
    )


class GeoResult(AnalysisResult):
    byState: List[StateDistribution] = Field(default_factory=list)
    byRegion: List[RegionDistribution] = Field(default_factory=list)
    byCity: List[CityDistribution] = Field(default_factory=list)
    metrics: Optional[GeoMetrics] = None
    geoColumns: List[str] = Field(default_factory=list, description="Columns recognized as geographic")


# =============================================================================
# Pipeline
# =============================================================================


class DashboardAnalysis(BaseModel):
    """Bundle of all analyzer results for one dataset snapshot."""

    rowCount: int
    generatedAt: datetime
    monthlyData: List[MonthlyAggregate] = Field(default_factory=list)
    rfm: RFMResult
    cohort: CohortResult
    churn: ChurnResult
    marketBasket: BasketResult
    correlation: CorrelationResult
    timeSeries: TimeSeriesResult
    ml: MLResult
    geo: GeoResult
