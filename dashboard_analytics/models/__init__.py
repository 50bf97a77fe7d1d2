"""
Models package: enums and Pydantic result schemas.

Usage:
    from dashboard_analytics.models import ColumnMetadata, ColumnType, RFMResult
"""

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
from dashboard_analytics.models.schemas import (
    AnalysisResult,
    AssociationRule,
    AutocorrelationLag,
    BasketMetrics,
    BasketResult,
    ChurnMetrics,
    ChurnPrediction,
    ChurnResult,
    ClientRFMProfile,
    ClusterFeature,
    ClusteringSummary,
    ClusterResult,
    Cohort,
    CohortLTV,
    CohortMetrics,
    CohortPeriod,
    CohortResult,
    ColumnMetadata,
    CityDistribution,
    ColumnsUsed,
    ConcentrationRisk,
    CorrelationHeatmap,
    CorrelationPair,
    CorrelationResult,
    DashboardAnalysis,
    Decomposition,
    ForecastModel,
    ForecastPoint,
    GeoMetrics,
    GeoResult,
    Insight,
    MLResult,
    MonthlyAggregate,
    PredictorCorrelation,
    RegionDistribution,
    RegressionAnalysis,
    RetentionRow,
    RevenuePeriod,
    RevenueRow,
    RFMMetrics,
    RFMResult,
    RFMSegmentSummary,
    SeasonalMonth,
    Seasonality,
    StateDistribution,
    TimeSeriesMetrics,
    TimeSeriesPattern,
    TimeSeriesPoint,
    TimeSeriesResult,
    TopCombo,
)

__all__ = [
    # Enums
    "BrazilRegion",
    "ChurnRiskLevel",
    "ColumnType",
    "CorrelationDirection",
    "CorrelationMethod",
    "CorrelationStrength",
    "ForecastMethod",
    "InsightPriority",
    "PatternType",
    "RetentionTrend",
    "RFMSegment",
    "RiskBucket",
    "TransactionKeySource",
    "TrendDirection",
    "VolatilityLevel",
    # Schemas
    "AnalysisResult",
    "AssociationRule",
    "AutocorrelationLag",
    "BasketMetrics",
    "BasketResult",
    "ChurnMetrics",
    "ChurnPrediction",
    "ChurnResult",
    "ClientRFMProfile",
    "ClusterFeature",
    "ClusteringSummary",
    "ClusterResult",
    "Cohort",
    "CohortLTV",
    "CohortMetrics",
    "CohortPeriod",
    "CohortResult",
    "ColumnMetadata",
    "CityDistribution",
    "ColumnsUsed",
    "ConcentrationRisk",
    "CorrelationHeatmap",
    "CorrelationPair",
    "CorrelationResult",
    "DashboardAnalysis",
    "Decomposition",
    "ForecastModel",
    "ForecastPoint",
    "GeoMetrics",
    "GeoResult",
    "Insight",
    "MLResult",
    "MonthlyAggregate",
    "PredictorCorrelation",
    "RegionDistribution",
    "RegressionAnalysis",
    "RetentionRow",
    "RevenuePeriod",
    "RevenueRow",
    "RFMMetrics",
    "RFMResult",
    "RFMSegmentSummary",
    "SeasonalMonth",
    "Seasonality",
    "StateDistribution",
    "TimeSeriesMetrics",
    "TimeSeriesPattern",
    "TimeSeriesPoint",
    "TimeSeriesResult",
    "TopCombo",
]
