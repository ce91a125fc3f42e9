from fastapi import APIRouter

from cost_guard.api.v1.endpoints import budgets, costs, exports

api_router = APIRouter()

api_router.include_router(costs.router, prefix="/cost", tags=["cost"])
api_router.include_router(budgets.router, prefix="/budget", tags=["budget"])
api_router.include_router(exports.router, prefix="/export", tags=["export"])
