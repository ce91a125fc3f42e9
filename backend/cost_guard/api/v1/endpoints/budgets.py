from fastapi import APIRouter, Depends, HTTPException

from cost_guard.api.deps import create_api_response, get_budget_service, get_demo_service
from cost_guard.models.schemas import BudgetCreate, UtilizationRequest
from cost_guard.services.budget_service import BudgetService
from cost_guard.services.demo_data_service import DemoDataService

router = APIRouter()

# Literal paths are declared before the /{account_id}/{service} catch-all


@router.post("/demo/initialize")
def initialize_demo_budgets(demo_service: DemoDataService = Depends(get_demo_service)):
    count = demo_service.initialize_demo_budgets()
    return create_api_response(data={"budgets": count}, message="Demo budgets initialized")


@router.patch("/notifications/{notification_id}/acknowledge")
def acknowledge_notification(
    notification_id: str,
    budget_service: BudgetService = Depends(get_budget_service)
):
    if not budget_service.acknowledge_notification(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return create_api_response(message="Notification acknowledged")


@router.post("")
def save_budget(
    budget_input: BudgetCreate,
    budget_service: BudgetService = Depends(get_budget_service)
):
    """Create the budget for (account_id, service), or update it in place"""
    budget = budget_service.save_budget(budget_input)
    return create_api_response(data=budget.model_dump(mode="json"), message="Budget saved successfully")


@router.delete("/{budget_id}")
def delete_budget(budget_id: str, budget_service: BudgetService = Depends(get_budget_service)):
    if not budget_service.delete_budget(budget_id):
        raise HTTPException(status_code=404, detail="Budget not found")
    return create_api_response(message="Budget deleted successfully")


@router.get("/{account_id}")
def get_budgets(account_id: str, budget_service: BudgetService = Depends(get_budget_service)):
    budgets = budget_service.get_budgets(account_id)
    return create_api_response(data=[budget.model_dump(mode="json") for budget in budgets])


@router.get("/{account_id}/notifications")
def get_notifications(account_id: str, budget_service: BudgetService = Depends(get_budget_service)):
    notifications = budget_service.get_notifications(account_id)
    return create_api_response(data=[n.model_dump(mode="json") for n in notifications])


@router.post("/{account_id}/utilization")
def calculate_utilization(
    account_id: str,
    request: UtilizationRequest,
    budget_service: BudgetService = Depends(get_budget_service)
):
    """Evaluate the given services against the account's budgets and raise alerts"""
    utilizations = budget_service.calculate_utilization(request.services, account_id)
    alerts = budget_service.generate_alerts(utilizations)
    return create_api_response(data={
        "utilizations": [u.model_dump(mode="json") for u in utilizations],
        "alerts": [alert.model_dump(mode="json") for alert in alerts],
    })


@router.get("/{account_id}/{service}")
def get_budget_by_service(
    account_id: str,
    service: str,
    budget_service: BudgetService = Depends(get_budget_service)
):
    budget = budget_service.get_budget_by_service(account_id, service)
    if budget is None:
        raise HTTPException(status_code=404, detail="Budget not found")
    return create_api_response(data=budget.model_dump(mode="json"))
