"""
Cost aggregation: regional/tag/daily rollups and trend classification.

The ingestion layer feeds raw amounts into a ``ServiceCostBuilder`` per
service; ``build()`` produces the immutable ``ServiceCost`` that the budget
engine and the exporters consume.
"""
from collections import OrderedDict
from typing import Dict, Iterable, List, Sequence, Tuple

from cost_guard.models.schemas import DailyCost, RegionCost, ServiceCost, TagCost, Trend

TREND_WINDOW_DAYS = 7
TREND_THRESHOLD_PERCENT = 10.0
MIN_BREAKDOWN_COST = 0.01


def calculate_trend(daily_costs: Sequence[DailyCost]) -> Trend:
    """Classify a chronologically sorted daily series as increasing/decreasing/stable.

    Compares the mean of the most recent 7 points with the mean of the 7
    points before them. A change above +10% is increasing, below -10% is
    decreasing.
    """
    if len(daily_costs) < 2:
        return Trend.STABLE

    costs = [day.cost for day in daily_costs]
    recent = costs[-TREND_WINDOW_DAYS:]
    older = costs[-2 * TREND_WINDOW_DAYS:-TREND_WINDOW_DAYS]

    if not recent or not older:
        return Trend.STABLE

    recent_avg = sum(recent) / len(recent)
    older_avg = sum(older) / len(older)

    change_percent = ((recent_avg - older_avg) / older_avg) * 100 if older_avg != 0 else 0.0

    if change_percent > TREND_THRESHOLD_PERCENT:
        return Trend.INCREASING
    if change_percent < -TREND_THRESHOLD_PERCENT:
        return Trend.DECREASING
    return Trend.STABLE


def percentage_of(cost: float, total: float) -> float:
    return (cost / total) * 100 if total != 0 else 0.0


def build_region_breakdown(region_totals: Dict[str, float], service_total: float) -> List[RegionCost]:
    """Turn accumulated per-region amounts into a sorted breakdown.

    Credits booked outside any region can leave the service total below the
    sum of its regional charges; regions that would push the breakdown past
    the total are left out so the breakdown never exceeds the service.
    """
    ranked = sorted(
        ((region, cost) for region, cost in region_totals.items() if cost >= MIN_BREAKDOWN_COST),
        key=lambda item: item[1],
        reverse=True,
    )
    breakdown: List[RegionCost] = []
    allocated = 0.0
    for region, cost in ranked:
        if allocated + cost > service_total + 1e-6:
            continue
        allocated += cost
        breakdown.append(RegionCost(region=region, cost=cost, percentage=percentage_of(cost, service_total)))
    return breakdown


def build_tag_breakdown(tag_totals: Dict[Tuple[str, str], float], service_total: float) -> List[TagCost]:
    """Turn accumulated (key, value) amounts into a sorted breakdown"""
    breakdown = [
        TagCost(key=key, value=value, cost=cost, percentage=percentage_of(cost, service_total))
        for (key, value), cost in tag_totals.items()
        if cost >= MIN_BREAKDOWN_COST
    ]
    breakdown.sort(key=lambda item: item.cost, reverse=True)
    return breakdown


def merge_daily_costs(points: Iterable[Tuple[str, float]]) -> List[DailyCost]:
    """Sum repeated dates and sort ascending by ISO date string"""
    totals: Dict[str, float] = {}
    for day, cost in points:
        totals[day] = totals.get(day, 0.0) + cost
    return [DailyCost(date=day, cost=totals[day]) for day in sorted(totals)]


class ServiceCostBuilder:
    """Accumulates raw amounts for a single service"""

    def __init__(self, display_name: str, service: str, currency: str = "USD"):
        self.display_name = display_name
        self.service = service
        self.currency = currency
        self.total_cost = 0.0
        self.region_totals: Dict[str, float] = OrderedDict()
        self.tag_totals: Dict[Tuple[str, str], float] = OrderedDict()
        self.daily_points: List[Tuple[str, float]] = []

    def add_cost(self, cost: float) -> None:
        self.total_cost += cost

    def add_region_cost(self, region: str, cost: float) -> None:
        self.region_totals[region] = self.region_totals.get(region, 0.0) + cost

    def add_tag_cost(self, key: str, value: str, cost: float) -> None:
        self.tag_totals[(key, value)] = self.tag_totals.get((key, value), 0.0) + cost

    def add_daily_cost(self, day: str, cost: float) -> None:
        self.daily_points.append((day, cost))

    def build(self) -> ServiceCost:
        daily_costs = merge_daily_costs(self.daily_points)
        return ServiceCost(
            service=self.service,
            display_name=self.display_name,
            total_cost=self.total_cost,
            currency=self.currency,
            regions=build_region_breakdown(self.region_totals, self.total_cost),
            tags=build_tag_breakdown(self.tag_totals, self.total_cost),
            daily_costs=daily_costs,
            trend=calculate_trend(daily_costs),
        )


def build_services(builders: Iterable[ServiceCostBuilder]) -> List[ServiceCost]:
    """Build every accumulated service, dropping those with a non-positive total"""
    return [builder.build() for builder in builders if builder.total_cost > 0]


def total_cost_of(services: Sequence[ServiceCost]) -> float:
    return float(sum(service.total_cost for service in services))
