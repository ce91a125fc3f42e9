from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum

from cost_guard.core.config import settings


class Trend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class AlertLevel(str, Enum):
    SAFE = "safe"
    WARNING = "warning"
    CRITICAL = "critical"
    OVER_BUDGET = "over_budget"


class NotificationSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class BudgetPeriod(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


# Cost model

class RegionCost(BaseModel):
    model_config = ConfigDict(frozen=True)

    region: str
    cost: float
    percentage: float


class TagCost(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    value: str
    cost: float
    percentage: float


class DailyCost(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: str
    cost: float


class ServiceCost(BaseModel):
    """Canonical per-service cost for one reporting window"""
    model_config = ConfigDict(frozen=True)

    service: str
    display_name: str
    total_cost: float
    currency: str = "USD"
    regions: List[RegionCost] = Field(default_factory=list)
    tags: List[TagCost] = Field(default_factory=list)
    daily_costs: List[DailyCost] = Field(default_factory=list)
    trend: Trend = Trend.STABLE


class CostData(BaseModel):
    services: List[ServiceCost]
    total_cost: float
    currency: str = "USD"
    last_updated: datetime


class CSVUploadResult(BaseModel):
    layout: str
    rows_processed: int
    cost_data: CostData


class AWSCredentials(BaseModel):
    access_key_id: str = Field(min_length=1)
    secret_access_key: str = Field(min_length=1)
    region: str = "us-east-1"


# Budgets

class BudgetCreate(BaseModel):
    account_id: str
    service: str
    amount: float
    currency: str = "USD"
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    alert_thresholds: List[float] = Field(default_factory=lambda: list(settings.DEFAULT_ALERT_THRESHOLDS))


class Budget(BudgetCreate):
    id: str
    created_at: datetime
    updated_at: datetime


class BudgetUtilization(BaseModel):
    service: str
    current_cost: float
    budget_amount: float
    utilization_percentage: float
    alert_level: AlertLevel
    projected_cost: Optional[float] = None
    budget_id: Optional[str] = None


class BudgetNotification(BaseModel):
    id: str
    budget_id: str
    service: str
    message: str
    severity: NotificationSeverity
    timestamp: datetime
    acknowledged: bool = False


# Sharing

class ShareOptions(BaseModel):
    expiration_hours: float = Field(default=settings.SHARE_DEFAULT_TTL_HOURS, gt=0)
    max_views: Optional[int] = Field(default=None, ge=1)
    include_data: bool = True
    password: Optional[str] = None


class ShareRecord(BaseModel):
    id: str
    snapshot: Dict[str, Any]
    options: ShareOptions
    created_at: datetime
    expires_at: datetime
    view_count: int = 0


class ShareStatistics(BaseModel):
    view_count: int
    max_views: Optional[int] = Field(default=None, ge=1)
    expires_at: datetime
    created_at: datetime


class CacheStats(BaseModel):
    keys: int
    hits: int
    misses: int


# Demo mode

class DemoScenario(BaseModel):
    id: str
    name: str
    description: str


class DemoCostData(CostData):
    scenario: str
    budget_utilizations: List[BudgetUtilization] = Field(default_factory=list)


# Request bodies

class UtilizationRequest(BaseModel):
    services: List[ServiceCost]


class ShareRequest(BaseModel):
    snapshot: Dict[str, Any]
    options: ShareOptions = Field(default_factory=ShareOptions)


class CSVExportRequest(BaseModel):
    services: List[ServiceCost]
    detailed: bool = False
    utilization: Dict[str, float] = Field(default_factory=dict)


class JSONExportRequest(BaseModel):
    snapshot: Dict[str, Any]
