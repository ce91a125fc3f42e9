from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest
from botocore.exceptions import ClientError

from cost_guard.services.aws_client import AWSClientManager, AWSCostExplorer
from cost_guard.services.budget_service import BudgetService
from cost_guard.services.cache_service import CacheService
from cost_guard.services.cost_service import CostService
from cost_guard.services.share_service import ShareService


class FakeClock:
    """Manually advanced clock usable for both monotonic seconds and datetimes"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 11, 19, 12, 0, tzinfo=timezone.utc)
        self.seconds = 1000.0

    def __call__(self) -> datetime:
        return self.now

    def monotonic(self) -> float:
        return self.seconds

    def advance(self, **kwargs) -> None:
        delta = timedelta(**kwargs)
        self.now += delta
        self.seconds += delta.total_seconds()


class FakeClient:
    """Stands in for a boto3 client; each call pops the next scripted outcome"""

    def __init__(self, outcomes: Optional[Sequence[Any]] = None):
        self.outcomes: List[Any] = list(outcomes or [])
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    def _next(self, operation: str, params: Dict[str, Any]) -> Any:
        self.calls.append((operation, params))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def get_cost_and_usage(self, **params):
        return self._next("get_cost_and_usage", params)

    def get_dimension_values(self, **params):
        return self._next("get_dimension_values", params)

    def get_caller_identity(self, **params):
        return self._next("get_caller_identity", params)


class FakeSession:
    def __init__(self, ce: FakeClient, sts: Optional[FakeClient] = None):
        self.ce = ce
        self.sts = sts or FakeClient([{
            "Account": "123456789012",
            "Arn": "arn:aws:iam::123456789012:user/cost-reader",
            "UserId": "AIDAEXAMPLE",
        }])

    def client(self, service: str, region_name: Optional[str] = None):
        return self.sts if service == "sts" else self.ce


def make_client_error(code: str, message: str = "", operation: str = "GetCostAndUsage") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def make_ce_response(groups: Sequence[Tuple[Sequence[str], Any]], start: str = "2024-11-01") -> Dict[str, Any]:
    return {
        "ResultsByTime": [{
            "TimePeriod": {"Start": start, "End": start},
            "Groups": [
                {"Keys": list(keys), "Metrics": {"BlendedCost": {"Amount": str(amount), "Unit": "USD"}}}
                for keys, amount in groups
            ],
        }]
    }


def make_daily_ce_response(days: Dict[str, Sequence[Tuple[str, Any]]]) -> Dict[str, Any]:
    return {
        "ResultsByTime": [
            {
                "TimePeriod": {"Start": day, "End": day},
                "Groups": [
                    {"Keys": [service], "Metrics": {"BlendedCost": {"Amount": str(amount), "Unit": "USD"}}}
                    for service, amount in groups
                ],
            }
            for day, groups in days.items()
        ]
    }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def client_error():
    return make_client_error


@pytest.fixture
def ce_response():
    return make_ce_response


@pytest.fixture
def daily_ce_response():
    return make_daily_ce_response


@pytest.fixture
def make_explorer():
    """Build an explorer over a scripted Cost Explorer client, without retry delay"""

    def _make(outcomes: Sequence[Any] = (), sts: Optional[FakeClient] = None):
        ce = FakeClient(outcomes)
        session = FakeSession(ce, sts)
        manager = AWSClientManager(session_factory=lambda **kwargs: session)
        explorer = AWSCostExplorer(manager, retry_delay=0)
        return explorer, ce, session

    return _make


@pytest.fixture
def budget_service(clock) -> BudgetService:
    return BudgetService(clock=clock)


@pytest.fixture
def share_service(clock) -> ShareService:
    return ShareService(cache=CacheService(name="shares", clock=clock.monotonic), clock=clock)


@pytest.fixture
def cost_service(make_explorer, clock) -> CostService:
    explorer, _, _ = make_explorer()
    return CostService(explorer, cache=CacheService(name="cost_data", clock=clock.monotonic), clock=clock)
