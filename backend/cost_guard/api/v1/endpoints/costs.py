from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from cost_guard.api.deps import create_api_response, get_cost_service, get_demo_service
from cost_guard.core.config import settings
from cost_guard.core.exceptions import CostGuardError, InvalidCredentialsError
from cost_guard.models.schemas import AWSCredentials
from cost_guard.services.cost_service import CostService
from cost_guard.services.demo_data_service import DemoDataService

logger = structlog.get_logger(__name__)

router = APIRouter()


async def _read_upload(csv_file: UploadFile) -> bytes:
    buffer = await csv_file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(buffer) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB."
        )
    return buffer


@router.get("/demo")
def get_demo_data(
    scenario: str = Query("normal"),
    demo_service: DemoDataService = Depends(get_demo_service)
):
    """Canned cost data for the demo account; also evaluates demo budgets"""
    data = demo_service.get_demo_data(scenario)
    return create_api_response(
        data=data.model_dump(mode="json"),
        message="Demo data retrieved successfully"
    )


@router.get("/demo/scenarios")
def get_demo_scenarios(demo_service: DemoDataService = Depends(get_demo_service)):
    scenarios = demo_service.get_demo_scenarios()
    return create_api_response(
        data=[scenario.model_dump() for scenario in scenarios],
        message="Demo scenarios retrieved successfully"
    )


@router.post("/validate-credentials")
async def validate_credentials(
    credentials: AWSCredentials,
    cost_service: CostService = Depends(get_cost_service)
):
    """Validate AWS credentials and keep the session for subsequent cost calls"""
    try:
        identity = await cost_service.validate_credentials(credentials)
    except InvalidCredentialsError as e:
        return JSONResponse(
            status_code=e.status_code,
            content=create_api_response(
                success=False,
                data={"valid": False},
                error=e.message,
                code=e.code
            )
        )

    return create_api_response(
        data={"valid": True, **identity},
        message="AWS credentials validated successfully"
    )


@router.get("/aws")
async def get_aws_cost_data(
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD, inclusive"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD, exclusive"),
    cost_service: CostService = Depends(get_cost_service)
):
    if bool(start_date) != bool(end_date):
        raise HTTPException(status_code=400, detail="start_date and end_date must be given together")

    cost_data = await cost_service.get_cost_data(start_date, end_date)
    return create_api_response(
        data=cost_data.model_dump(mode="json"),
        message="AWS cost data retrieved successfully"
    )


@router.get("/aws/services")
async def get_available_services(cost_service: CostService = Depends(get_cost_service)):
    services = await cost_service.get_available_services()
    return create_api_response(
        data=services,
        message="Available AWS services retrieved successfully"
    )


@router.post("/aws/refresh")
def refresh_cost_data(cost_service: CostService = Depends(get_cost_service)):
    cleared = cost_service.refresh_cost_data()
    return create_api_response(
        data={"refreshed": True, "entries_cleared": cleared},
        message="Cost data cache cleared, next request will fetch fresh data"
    )


@router.get("/aws/cache-stats")
def get_cache_stats(cost_service: CostService = Depends(get_cost_service)):
    return create_api_response(
        data=cost_service.get_cache_stats().model_dump(),
        message="Cache statistics retrieved successfully"
    )


@router.get("/aws/test-connection")
async def test_connection(cost_service: CostService = Depends(get_cost_service)):
    connected = await cost_service.test_connection()
    return JSONResponse(
        status_code=200 if connected else 503,
        content=create_api_response(
            success=connected,
            data={"connected": connected},
            message="AWS connection successful" if connected else "AWS connection failed"
        )
    )


@router.post("/upload-csv")
async def upload_csv(
    csv_file: UploadFile = File(..., alias="csvFile"),
    cost_service: CostService = Depends(get_cost_service)
):
    """Ingest a Cost Explorer CSV export"""
    buffer = await _read_upload(csv_file)
    result = cost_service.process_csv_upload(buffer)

    logger.info("CSV upload processed",
                filename=csv_file.filename,
                layout=result.layout,
                rows=result.rows_processed)

    return create_api_response(
        data=result.cost_data.model_dump(mode="json"),
        message=f"CSV processed successfully. {result.rows_processed} rows processed.",
        layout=result.layout
    )


@router.post("/validate-csv")
async def validate_csv(
    csv_file: UploadFile = File(..., alias="csvFile"),
    cost_service: CostService = Depends(get_cost_service)
):
    """Detect the CSV layout without ingesting the file"""
    buffer = await _read_upload(csv_file)
    try:
        layout = cost_service.validate_csv(buffer)
    except CostGuardError as e:
        return JSONResponse(
            status_code=e.status_code,
            content=create_api_response(
                success=False,
                data={"valid": False},
                error=e.message
            )
        )

    return create_api_response(
        data={"valid": True, "format": layout.value},
        message="CSV format is valid"
    )
