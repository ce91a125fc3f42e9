from cost_guard.models.schemas import (
    AlertLevel,
    AWSCredentials,
    Budget,
    BudgetCreate,
    BudgetNotification,
    BudgetPeriod,
    BudgetUtilization,
    CacheStats,
    CostData,
    CSVExportRequest,
    CSVUploadResult,
    DailyCost,
    DemoCostData,
    DemoScenario,
    JSONExportRequest,
    NotificationSeverity,
    RegionCost,
    ServiceCost,
    ShareOptions,
    ShareRecord,
    ShareRequest,
    ShareStatistics,
    TagCost,
    Trend,
    UtilizationRequest,
)

__all__ = [
    "AlertLevel",
    "AWSCredentials",
    "Budget",
    "BudgetCreate",
    "BudgetNotification",
    "BudgetPeriod",
    "BudgetUtilization",
    "CacheStats",
    "CostData",
    "CSVExportRequest",
    "CSVUploadResult",
    "DailyCost",
    "DemoCostData",
    "DemoScenario",
    "JSONExportRequest",
    "NotificationSeverity",
    "RegionCost",
    "ServiceCost",
    "ShareOptions",
    "ShareRecord",
    "ShareRequest",
    "ShareStatistics",
    "TagCost",
    "Trend",
    "UtilizationRequest",
]
