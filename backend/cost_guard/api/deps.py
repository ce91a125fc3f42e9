from datetime import datetime, timezone
from typing import Any

from fastapi import Request

from cost_guard.services.budget_service import BudgetService
from cost_guard.services.cost_service import CostService
from cost_guard.services.demo_data_service import DemoDataService
from cost_guard.services.share_service import ShareService


def create_api_response(
    success: bool = True,
    data: Any = None,
    message: str = None,
    error: str = None,
    **kwargs
) -> dict:
    """Create standardized API response"""
    response = {
        "success": success,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if data is not None:
        response["data"] = data

    if message:
        response["message"] = message

    if error:
        response["error"] = error

    if kwargs:
        response.update(kwargs)

    return response


# Services are built once per app in create_app() and live on app.state

def get_cost_service(request: Request) -> CostService:
    return request.app.state.cost_service


def get_budget_service(request: Request) -> BudgetService:
    return request.app.state.budget_service


def get_share_service(request: Request) -> ShareService:
    return request.app.state.share_service


def get_demo_service(request: Request) -> DemoDataService:
    return request.app.state.demo_service
