from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import asyncio
import structlog
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

from cost_guard.api.deps import create_api_response
from cost_guard.api.v1.api import api_router
from cost_guard.core.config import settings
from cost_guard.core.exceptions import AccessDeniedError, CostGuardError
from cost_guard.core.logging import configure_logging
from cost_guard.middleware.monitoring import MonitoringMiddleware
from cost_guard.services.aws_client import AWSClientManager, AWSCostExplorer
from cost_guard.services.budget_service import BudgetService
from cost_guard.services.cost_service import CostService
from cost_guard.services.demo_data_service import DemoDataService
from cost_guard.services.metrics_service import metrics_service
from cost_guard.services.share_service import ShareService

configure_logging()
logger = structlog.get_logger(__name__)


async def share_cleanup_worker(share_service: ShareService, interval: float):
    """Background task that evicts expired shares"""
    while True:
        try:
            await asyncio.sleep(interval)
            share_service.cleanup_expired_shares()
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error("Share cleanup error", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting AWS Cost Guard API", version=settings.VERSION, environment=settings.ENVIRONMENT)

    cleanup_task = asyncio.create_task(
        share_cleanup_worker(app.state.share_service, settings.SHARE_CLEANUP_INTERVAL_SECONDS)
    )

    yield

    logger.info("Shutting down AWS Cost Guard API")

    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass


def _error_response(status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=create_api_response(success=False, error=error, **extra)
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CostGuardError)
    async def cost_guard_error_handler(request: Request, exc: CostGuardError):
        if exc.status_code >= 500:
            metrics_service.record_error(error_type=type(exc).__name__, component="api")

        extra = {"code": exc.code}
        if isinstance(exc, AccessDeniedError):
            extra["organization_member"] = exc.organization_member

        logger.warning("Request rejected",
                       path=request.url.path,
                       error_type=type(exc).__name__,
                       status_code=exc.status_code,
                       error=exc.message)
        return _error_response(exc.status_code, exc.message, **extra)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error_response(400, "Invalid request data", details=jsonable_encoder(exc.errors()))


def create_app(
    cost_service: CostService = None,
    budget_service: BudgetService = None,
    share_service: ShareService = None,
    demo_service: DemoDataService = None
) -> FastAPI:
    """Build the API with one set of services held on app.state"""
    if settings.SENTRY_DSN and not settings.DEBUG:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            integrations=[FastApiIntegration()],
            traces_sample_rate=0.1,
            environment=settings.ENVIRONMENT,
        )

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="AWS cost ingestion, budget alerting and shareable cost snapshots",
        openapi_url=f"{settings.API_PREFIX}/openapi.json" if settings.DEBUG else None,
        docs_url=f"{settings.API_PREFIX}/docs" if settings.DEBUG else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    budget_service = budget_service or BudgetService()
    app.state.budget_service = budget_service
    app.state.cost_service = cost_service or CostService(AWSCostExplorer(AWSClientManager()))
    app.state.share_service = share_service or ShareService()
    app.state.demo_service = demo_service or DemoDataService(budget_service)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MonitoringMiddleware, slow_request_threshold=2.0)

    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.API_PREFIX)

    @app.get("/")
    async def root():
        return create_api_response(
            data={
                "name": settings.PROJECT_NAME,
                "version": settings.VERSION,
                "environment": settings.ENVIRONMENT,
                "status": "running",
                "endpoints": {
                    "health": "/health",
                    "metrics": "/metrics",
                    "cost": f"{settings.API_PREFIX}/cost",
                    "budget": f"{settings.API_PREFIX}/budget",
                    "export": f"{settings.API_PREFIX}/export",
                },
            },
            message="Welcome to the AWS Cost Guard API"
        )

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint for load balancers and monitoring"""
        return create_api_response(
            data={
                "status": "healthy",
                "version": settings.VERSION,
                "aws_validated": request.app.state.cost_service.explorer.is_validated,
                "active_shares": request.app.state.share_service.get_cache_stats().keys,
            },
            message="AWS Cost Guard API is running"
        )

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint"""
        return metrics_service.export_metrics()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "cost_guard.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
