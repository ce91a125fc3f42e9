import pytest

from cost_guard.models.schemas import (
    AlertLevel,
    BudgetCreate,
    BudgetUtilization,
    DailyCost,
    NotificationSeverity,
    ServiceCost,
)
from cost_guard.services.budget_service import (
    build_alert_message,
    calculate_projected_cost,
    determine_alert_level,
)


def _service(name, total, daily=()):
    return ServiceCost(
        service=name,
        display_name=name.upper(),
        total_cost=total,
        daily_costs=[DailyCost(date=f"2024-11-{i:02d}", cost=c) for i, c in enumerate(daily, start=1)],
    )


def _budget(account_id="acct", service="ec2", amount=1000.0, thresholds=None):
    fields = {"account_id": account_id, "service": service, "amount": amount}
    if thresholds is not None:
        fields["alert_thresholds"] = thresholds
    return BudgetCreate(**fields)


class TestAlertLevels:
    @pytest.mark.parametrize("percentage,expected", [
        (0, AlertLevel.SAFE),
        (49.99, AlertLevel.SAFE),
        (50, AlertLevel.WARNING),
        (79, AlertLevel.WARNING),
        (80, AlertLevel.WARNING),
        (99.9, AlertLevel.WARNING),
        (100, AlertLevel.OVER_BUDGET),
        (250, AlertLevel.OVER_BUDGET),
    ])
    def test_default_thresholds(self, percentage, expected):
        assert determine_alert_level(percentage, [50, 80, 100]) == expected

    def test_lower_critical_threshold(self):
        assert determine_alert_level(95, [50, 80, 90]) == AlertLevel.CRITICAL
        assert determine_alert_level(85, [50, 80, 90]) == AlertLevel.WARNING

    def test_missing_thresholds_fall_back_to_defaults(self):
        assert determine_alert_level(60, []) == AlertLevel.WARNING
        assert determine_alert_level(40, [0, 0, 0]) == AlertLevel.SAFE


class TestProjection:
    def test_projects_mean_daily_growth_over_remaining_days(self):
        service = _service("ec2", 60.0, daily=[10.0, 20.0, 30.0])
        # +10/day average, 27 days left in a 30-day month
        assert calculate_projected_cost(service) == pytest.approx(60.0 + 10.0 * 27)

    def test_uses_only_the_last_week(self):
        service = _service("ec2", 100.0, daily=[100.0, 0.0] + [5.0] * 7)
        assert calculate_projected_cost(service) == pytest.approx(100.0)

    def test_single_point_returns_current_cost(self):
        assert calculate_projected_cost(_service("ec2", 42.0, daily=[42.0])) == 42.0


class TestBudgetStorage:
    def test_save_twice_preserves_identity(self, budget_service):
        first = budget_service.save_budget(_budget(amount=1000))
        second = budget_service.save_budget(_budget(amount=1500))

        assert second.id == first.id
        assert second.created_at == first.created_at
        assert second.amount == 1500
        # The injected clock does not move between saves
        assert second.updated_at > first.updated_at
        assert len(budget_service.get_budgets("acct")) == 1

    def test_lookups_are_account_scoped(self, budget_service):
        budget_service.save_budget(_budget(account_id="a", service="ec2"))
        budget_service.save_budget(_budget(account_id="a", service="s3"))
        budget_service.save_budget(_budget(account_id="b", service="ec2"))

        assert {b.service for b in budget_service.get_budgets("a")} == {"ec2", "s3"}
        assert budget_service.get_budget_by_service("b", "ec2").account_id == "b"
        assert budget_service.get_budget_by_service("b", "s3") is None

    def test_delete(self, budget_service):
        budget = budget_service.save_budget(_budget())

        assert budget_service.delete_budget(budget.id)
        assert not budget_service.delete_budget(budget.id)
        assert budget_service.get_budget(budget.id) is None
        assert budget_service.get_budget_by_service("acct", "ec2") is None


class TestUtilizationAndAlerts:
    def test_over_budget_raises_critical_alert(self, budget_service):
        budget = budget_service.save_budget(_budget(amount=1000, thresholds=[50, 80, 100]))

        utilizations = budget_service.calculate_utilization([_service("ec2", 1200.0)], "acct")

        assert len(utilizations) == 1
        assert utilizations[0].utilization_percentage == pytest.approx(120.0)
        assert utilizations[0].alert_level == AlertLevel.OVER_BUDGET
        assert utilizations[0].budget_id == budget.id

        alerts = budget_service.generate_alerts(utilizations)

        assert len(alerts) == 1
        assert alerts[0].severity == NotificationSeverity.CRITICAL
        assert "exceeded budget" in alerts[0].message
        assert alerts[0].budget_id == budget.id
        assert not alerts[0].acknowledged

    def test_services_without_budget_are_safe(self, budget_service):
        utilizations = budget_service.calculate_utilization([_service("lambda", 50.0)], "acct")

        assert utilizations[0].alert_level == AlertLevel.SAFE
        assert utilizations[0].utilization_percentage == 0
        assert utilizations[0].budget_amount == 0
        assert budget_service.generate_alerts(utilizations) == []

    def test_zero_amount_budget_is_safe(self, budget_service):
        budget_service.save_budget(_budget(amount=0))
        utilizations = budget_service.calculate_utilization([_service("ec2", 10.0)], "acct")

        assert utilizations[0].alert_level == AlertLevel.SAFE
        assert utilizations[0].utilization_percentage == 0

    def test_warning_alert(self, budget_service):
        budget_service.save_budget(_budget(amount=100))
        utilizations = budget_service.calculate_utilization([_service("ec2", 65.0)], "acct")
        alerts = budget_service.generate_alerts(utilizations)

        assert alerts[0].severity == NotificationSeverity.WARNING
        assert alerts[0].message == "EC2 is at 65% of budget ($65.00 / $100.00)"

    def test_notifications_are_scoped_to_the_account(self, budget_service):
        budget_service.save_budget(_budget(account_id="a", amount=100))
        budget_service.save_budget(_budget(account_id="b", amount=100))

        utilizations = budget_service.calculate_utilization([_service("ec2", 150.0)], "a")
        budget_service.generate_alerts(utilizations)

        assert len(budget_service.get_notifications("a")) == 1
        assert budget_service.get_notifications("b") == []

    def test_repeated_generation_appends(self, budget_service):
        budget_service.save_budget(_budget(amount=100))
        utilizations = budget_service.calculate_utilization([_service("ec2", 150.0)], "acct")

        budget_service.generate_alerts(utilizations)
        budget_service.generate_alerts(utilizations)

        assert len(budget_service.get_notifications("acct")) == 2

    def test_acknowledge(self, budget_service):
        budget_service.save_budget(_budget(amount=100))
        alerts = budget_service.generate_alerts(
            budget_service.calculate_utilization([_service("ec2", 150.0)], "acct")
        )

        assert budget_service.acknowledge_notification(alerts[0].id)
        assert budget_service.get_notifications("acct")[0].acknowledged
        assert not budget_service.acknowledge_notification("does-not-exist")


class TestAlertMessages:
    def _utilization(self, level, percentage, cost=1200.0, amount=1000.0):
        return BudgetUtilization(
            service="ec2",
            current_cost=cost,
            budget_amount=amount,
            utilization_percentage=percentage,
            alert_level=level,
        )

    def test_over_budget_message(self):
        message = build_alert_message(self._utilization(AlertLevel.OVER_BUDGET, 120.0))
        assert message == "EC2 has exceeded budget by 20% ($1200.00 / $1000.00)"

    def test_critical_message(self):
        message = build_alert_message(self._utilization(AlertLevel.CRITICAL, 92.5, cost=925.0))
        assert message == "EC2 is at 93% of budget, approaching the limit ($925.00 / $1000.00)"
