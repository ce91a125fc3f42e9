"""
Demo mode: a fixed set of services and budgets for account ``demo``.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Callable, List, Optional

import structlog

from cost_guard.core.config import settings
from cost_guard.core.exceptions import UnknownScenarioError
from cost_guard.models.schemas import BudgetCreate, BudgetPeriod, DemoCostData, DemoScenario, ServiceCost
from cost_guard.services.aggregation import ServiceCostBuilder, build_services, total_cost_of
from cost_guard.services.budget_service import BudgetService

logger = structlog.get_logger(__name__)

REGION_SPLIT = (
    ('us-east-1', 0.4),
    ('us-west-2', 0.3),
    ('eu-west-1', 0.2),
    ('ap-northeast-1', 0.1),
)

# Last seven days of each service. ``previous_week`` scales them to get the
# week before, which drives the trend.
DEMO_SERVICES = [
    {
        'service': 'ec2', 'display_name': 'EC2', 'total_cost': 1250.0, 'regional': True,
        'tags': [('Environment', 'Production', 0.6), ('Environment', 'Staging', 0.3),
                 ('Environment', 'Development', 0.1)],
        'daily': [120, 135, 98, 156, 189, 234, 318], 'previous_week': 0.7,
    },
    {
        'service': 's3', 'display_name': 'S3', 'total_cost': 340.0, 'regional': True,
        'tags': [('DataType', 'Media', 0.5), ('DataType', 'Backup', 0.3), ('DataType', 'Logs', 0.2)],
        'daily': [45, 48, 52, 49, 51, 47, 48], 'previous_week': 1.0,
    },
    {
        'service': 'rds', 'display_name': 'RDS', 'total_cost': 890.0, 'regional': True,
        'tags': [('Application', 'WebApp', 0.5), ('Application', 'Analytics', 0.3),
                 ('Application', 'Reporting', 0.2)],
        'daily': [125, 118, 132, 128, 135, 142, 110], 'previous_week': 0.85,
    },
    {
        'service': 'lambda', 'display_name': 'Lambda', 'total_cost': 156.0, 'regional': True,
        'tags': [('Function', 'API', 0.5), ('Function', 'Processing', 0.3), ('Function', 'Triggers', 0.2)],
        'daily': [18, 22, 19, 25, 21, 23, 28], 'previous_week': 1.0,
    },
    {
        'service': 'cloudfront', 'display_name': 'CloudFront', 'total_cost': 2100.0, 'regional': False,
        'tags': [('Content', 'Static', 0.5), ('Content', 'Dynamic', 0.3), ('Content', 'Streaming', 0.2)],
        'daily': [280, 295, 310, 325, 340, 365, 185], 'previous_week': 0.75,
    },
    {
        'service': 'route53', 'display_name': 'Route 53', 'total_cost': 45.0, 'regional': False,
        'tags': [('Domain', 'Production', 0.6), ('Domain', 'Staging', 0.3), ('Domain', 'Development', 0.1)],
        'daily': [6.2, 6.5, 6.1, 6.8, 6.4, 6.7, 6.3], 'previous_week': 1.0,
    },
    {
        'service': 'vpc', 'display_name': 'VPC', 'total_cost': 234.0, 'regional': True,
        'tags': [('Environment', 'Production', 0.6), ('Environment', 'Staging', 0.3),
                 ('Environment', 'Development', 0.1)],
        'daily': [32, 35, 31, 38, 34, 36, 28], 'previous_week': 1.0,
    },
]

DEMO_BUDGETS = {
    'ec2': 1500.0,
    's3': 1000.0,
    'rds': 1200.0,
    'lambda': 600.0,
    'cloudfront': 1500.0,
    'dynamodb': 800.0,
}

DEMO_SCENARIOS = [
    DemoScenario(id='normal', name='Normal Usage',
                 description='Typical month; only the CDN runs past its budget'),
    DemoScenario(id='over_budget', name='Over Budget',
                 description='Spend up across the board, several services over budget'),
    DemoScenario(id='cost_spike', name='Cost Spike',
                 description='Compute and CDN spend jumps over the last three days'),
]

# scenario -> (cost multiplier, spiked services, spike multiplier)
SCENARIO_RULES = {
    'normal': (1.0, (), 1.0),
    'over_budget': (1.3, (), 1.0),
    'cost_spike': (1.0, ('ec2', 'lambda', 'cloudfront'), 3.0),
}
SPIKE_DAYS = 3


def build_demo_services(scenario: str = 'normal', today: Optional[date] = None) -> List[ServiceCost]:
    """Build the canned services for a scenario, with daily costs ending yesterday"""
    if scenario not in SCENARIO_RULES:
        raise UnknownScenarioError(f"Unknown demo scenario: {scenario}")

    multiplier, spiked, spike_multiplier = SCENARIO_RULES[scenario]
    end = (today or date.today()) - timedelta(days=1)
    builders = []

    for entry in DEMO_SERVICES:
        builder = ServiceCostBuilder(entry['display_name'], entry['service'])
        recent = [cost * multiplier for cost in entry['daily']]
        previous = [cost * entry['previous_week'] for cost in recent]

        extra = 0.0
        if entry['service'] in spiked:
            for index in range(len(recent) - SPIKE_DAYS, len(recent)):
                extra += recent[index] * (spike_multiplier - 1)
                recent[index] *= spike_multiplier

        total = entry['total_cost'] * multiplier + extra
        builder.add_cost(total)

        days = previous + recent
        for offset, cost in enumerate(days):
            day = end - timedelta(days=len(days) - 1 - offset)
            builder.add_daily_cost(day.isoformat(), cost)

        if entry['regional']:
            for region, share in REGION_SPLIT:
                builder.add_region_cost(region, total * share)
        for key, value, share in entry['tags']:
            builder.add_tag_cost(key, value, total * share)

        builders.append(builder)

    return build_services(builders)


class DemoDataService:
    """Serves demo cost data and keeps the demo account's budgets in place"""

    def __init__(
        self,
        budget_service: BudgetService,
        account_id: str = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        self.budget_service = budget_service
        self.account_id = account_id or settings.DEMO_ACCOUNT_ID
        self._clock = clock

    def get_demo_scenarios(self) -> List[DemoScenario]:
        return list(DEMO_SCENARIOS)

    def initialize_demo_budgets(self) -> int:
        """Replace every budget of the demo account with the canned set"""
        for budget in self.budget_service.get_budgets(self.account_id):
            self.budget_service.delete_budget(budget.id)

        for service, amount in DEMO_BUDGETS.items():
            self.budget_service.save_budget(BudgetCreate(
                account_id=self.account_id,
                service=service,
                amount=amount,
                currency='USD',
                period=BudgetPeriod.MONTHLY,
                alert_thresholds=list(settings.DEFAULT_ALERT_THRESHOLDS),
            ))

        logger.info("Demo budgets initialized", account_id=self.account_id, count=len(DEMO_BUDGETS))
        return len(DEMO_BUDGETS)

    def get_demo_data(self, scenario: str = 'normal') -> DemoCostData:
        """Demo services with budget utilization; raises alerts like a live fetch would"""
        now = self._clock()
        services = build_demo_services(scenario, today=now.date())

        if not self.budget_service.get_budgets(self.account_id):
            self.initialize_demo_budgets()

        utilizations = self.budget_service.calculate_utilization(services, self.account_id)
        self.budget_service.generate_alerts(utilizations)

        logger.info("Demo data generated", scenario=scenario, services=len(services))
        return DemoCostData(
            services=services,
            total_cost=total_cost_of(services),
            currency='USD',
            last_updated=now,
            scenario=scenario,
            budget_utilizations=utilizations,
        )
