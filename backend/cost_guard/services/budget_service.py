"""
Budget engine: budget storage, utilization, alert levels and notifications.
"""
import math
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from cost_guard.models.schemas import (
    AlertLevel,
    Budget,
    BudgetCreate,
    BudgetNotification,
    BudgetUtilization,
    NotificationSeverity,
    ServiceCost,
)
from cost_guard.services.metrics_service import metrics_service

logger = structlog.get_logger(__name__)

DEFAULT_ALERT_THRESHOLDS = (50.0, 80.0, 100.0)
PROJECTION_WINDOW_DAYS = 7
PROJECTION_MONTH_DAYS = 30


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BudgetStore(ABC):
    """Storage contract for budgets; swap in a persistent store without touching callers"""

    @abstractmethod
    def get(self, budget_id: str) -> Optional[Budget]:
        ...

    @abstractmethod
    def find(self, account_id: str, service: str) -> Optional[Budget]:
        ...

    @abstractmethod
    def list_for_account(self, account_id: str) -> List[Budget]:
        ...

    @abstractmethod
    def all(self) -> List[Budget]:
        ...

    @abstractmethod
    def put(self, budget: Budget) -> Budget:
        ...

    @abstractmethod
    def delete(self, budget_id: str) -> bool:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class InMemoryBudgetStore(BudgetStore):
    """Budgets keyed by id with a secondary (account_id, service) index"""

    def __init__(self):
        self._budgets: Dict[str, Budget] = {}
        self._index: Dict[Tuple[str, str], str] = {}

    def get(self, budget_id: str) -> Optional[Budget]:
        return self._budgets.get(budget_id)

    def find(self, account_id: str, service: str) -> Optional[Budget]:
        budget_id = self._index.get((account_id, service))
        return self._budgets.get(budget_id) if budget_id else None

    def list_for_account(self, account_id: str) -> List[Budget]:
        return [budget for budget in self._budgets.values() if budget.account_id == account_id]

    def all(self) -> List[Budget]:
        return list(self._budgets.values())

    def put(self, budget: Budget) -> Budget:
        self._budgets[budget.id] = budget
        self._index[(budget.account_id, budget.service)] = budget.id
        return budget

    def delete(self, budget_id: str) -> bool:
        budget = self._budgets.pop(budget_id, None)
        if budget is None:
            return False
        self._index.pop((budget.account_id, budget.service), None)
        return True

    def clear(self) -> None:
        self._budgets.clear()
        self._index.clear()


class NotificationStore:
    """Append-only list of notifications; only acknowledgment mutates entries"""

    def __init__(self):
        self._notifications: List[BudgetNotification] = []

    def extend(self, notifications: Sequence[BudgetNotification]) -> None:
        self._notifications.extend(notifications)

    def all(self) -> List[BudgetNotification]:
        return list(self._notifications)

    def find(self, notification_id: str) -> Optional[BudgetNotification]:
        return next((n for n in self._notifications if n.id == notification_id), None)

    def clear(self) -> None:
        self._notifications.clear()


def _threshold(thresholds: Sequence[float], index: int) -> float:
    # Missing or zero entries fall back to the default breakpoint
    if index < len(thresholds) and thresholds[index]:
        return thresholds[index]
    return DEFAULT_ALERT_THRESHOLDS[index]


def determine_alert_level(utilization_percentage: float, thresholds: Sequence[float]) -> AlertLevel:
    """Map a utilization percentage onto an alert level.

    The first two breakpoints both map to WARNING, so the lowest configured
    threshold is not distinguishable from the middle one.
    """
    if utilization_percentage >= 100:
        return AlertLevel.OVER_BUDGET
    if utilization_percentage >= _threshold(thresholds, 2):
        return AlertLevel.CRITICAL
    if utilization_percentage >= _threshold(thresholds, 1):
        return AlertLevel.WARNING
    if utilization_percentage >= _threshold(thresholds, 0):
        return AlertLevel.WARNING
    return AlertLevel.SAFE


def calculate_projected_cost(service: ServiceCost) -> float:
    """Linear month-end projection from the mean day-over-day change of the last week"""
    current_cost = service.total_cost
    daily_costs = service.daily_costs

    if len(daily_costs) < 2:
        return current_cost

    recent = daily_costs[-PROJECTION_WINDOW_DAYS:]
    deltas = [recent[i].cost - recent[i - 1].cost for i in range(1, len(recent))]
    avg_daily_growth = sum(deltas) / len(deltas)

    days_remaining = PROJECTION_MONTH_DAYS - len(daily_costs)
    return current_cost + avg_daily_growth * days_remaining


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def build_alert_message(utilization: BudgetUtilization) -> str:
    percentage = _round_half_up(utilization.utilization_percentage)
    service = utilization.service.upper()
    amounts = f"(${utilization.current_cost:.2f} / ${utilization.budget_amount:.2f})"

    if utilization.alert_level == AlertLevel.OVER_BUDGET:
        return f"{service} has exceeded budget by {percentage - 100}% {amounts}"
    elif utilization.alert_level == AlertLevel.CRITICAL:
        return f"{service} is at {percentage}% of budget, approaching the limit {amounts}"
    else:
        return f"{service} is at {percentage}% of budget {amounts}"


class BudgetService:
    """Budget upserts, utilization and the account-scoped notification feed"""

    def __init__(
        self,
        store: Optional[BudgetStore] = None,
        notifications: Optional[NotificationStore] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store or InMemoryBudgetStore()
        self.notifications = notifications or NotificationStore()
        self._clock = clock
        self._lock = threading.RLock()

    def _now_after(self, previous: Optional[datetime] = None) -> datetime:
        now = self._clock()
        if previous is not None and now <= previous:
            now = previous + timedelta(microseconds=1)
        return now

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex

    # Budgets

    def get_budgets(self, account_id: str) -> List[Budget]:
        with self._lock:
            return self.store.list_for_account(account_id)

    def get_budget(self, budget_id: str) -> Optional[Budget]:
        with self._lock:
            return self.store.get(budget_id)

    def get_budget_by_service(self, account_id: str, service: str) -> Optional[Budget]:
        with self._lock:
            return self.store.find(account_id, service)

    def save_budget(self, budget_input: BudgetCreate) -> Budget:
        """Create or update the budget for (account_id, service)"""
        with self._lock:
            existing = self.store.find(budget_input.account_id, budget_input.service)
            fields = budget_input.model_dump()

            if existing:
                budget = Budget(
                    **fields,
                    id=existing.id,
                    created_at=existing.created_at,
                    updated_at=self._now_after(existing.updated_at),
                )
                logger.info("Budget updated", budget_id=budget.id,
                            account_id=budget.account_id, service=budget.service)
            else:
                now = self._clock()
                budget = Budget(**fields, id=self._new_id(), created_at=now, updated_at=now)
                logger.info("Budget created", budget_id=budget.id,
                            account_id=budget.account_id, service=budget.service)

            return self.store.put(budget)

    def delete_budget(self, budget_id: str) -> bool:
        with self._lock:
            deleted = self.store.delete(budget_id)
        if deleted:
            logger.info("Budget deleted", budget_id=budget_id)
        return deleted

    # Utilization

    def calculate_utilization(self, services: Sequence[ServiceCost], account_id: str) -> List[BudgetUtilization]:
        utilizations: List[BudgetUtilization] = []

        with self._lock:
            for service in services:
                budget = self.store.find(account_id, service.service)

                if budget and budget.amount > 0:
                    utilization_percentage = (service.total_cost / budget.amount) * 100
                    utilizations.append(BudgetUtilization(
                        service=service.service,
                        current_cost=service.total_cost,
                        budget_amount=budget.amount,
                        utilization_percentage=utilization_percentage,
                        alert_level=determine_alert_level(utilization_percentage, budget.alert_thresholds),
                        projected_cost=calculate_projected_cost(service),
                        budget_id=budget.id,
                    ))
                else:
                    utilizations.append(BudgetUtilization(
                        service=service.service,
                        current_cost=service.total_cost,
                        budget_amount=budget.amount if budget else 0.0,
                        utilization_percentage=0.0,
                        alert_level=AlertLevel.SAFE,
                        budget_id=budget.id if budget else None,
                    ))

        return utilizations

    # Notifications

    def generate_alerts(self, utilizations: Sequence[BudgetUtilization]) -> List[BudgetNotification]:
        """Create a notification for every utilization above the safe level.

        Every call appends; repeated calls for the same window produce new
        entries.
        """
        alerts: List[BudgetNotification] = []

        with self._lock:
            for utilization in utilizations:
                if utilization.alert_level == AlertLevel.SAFE:
                    continue

                budget = self._budget_for(utilization)
                if budget is None:
                    continue

                severity = (
                    NotificationSeverity.CRITICAL
                    if utilization.alert_level in (AlertLevel.CRITICAL, AlertLevel.OVER_BUDGET)
                    else NotificationSeverity.WARNING
                )
                alerts.append(BudgetNotification(
                    id=self._new_id(),
                    budget_id=budget.id,
                    service=utilization.service,
                    message=build_alert_message(utilization),
                    severity=severity,
                    timestamp=self._clock(),
                    acknowledged=False,
                ))

            self.notifications.extend(alerts)

        for alert in alerts:
            metrics_service.record_budget_alert(alert.severity.value)
        if alerts:
            logger.info("Budget alerts generated", count=len(alerts))
        return alerts

    def _budget_for(self, utilization: BudgetUtilization) -> Optional[Budget]:
        if utilization.budget_id:
            return self.store.get(utilization.budget_id)
        # Unscoped utilization: first budget for the service wins
        return next(
            (budget for budget in self.store.all() if budget.service == utilization.service),
            None,
        )

    def get_notifications(self, account_id: str) -> List[BudgetNotification]:
        with self._lock:
            budget_ids = {budget.id for budget in self.store.list_for_account(account_id)}
            return [n for n in self.notifications.all() if n.budget_id in budget_ids]

    def acknowledge_notification(self, notification_id: str) -> bool:
        with self._lock:
            notification = self.notifications.find(notification_id)
            if notification is None:
                return False
            notification.acknowledged = True
            return True

    def clear(self) -> None:
        with self._lock:
            self.store.clear()
            self.notifications.clear()
