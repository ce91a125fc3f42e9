from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from typing import Optional
import structlog

from cost_guard.api.deps import create_api_response, get_share_service
from cost_guard.models.schemas import CSVExportRequest, JSONExportRequest, ShareRequest
from cost_guard.services.export_service import generate_csv, generate_detailed_csv, generate_json_export
from cost_guard.services.share_service import ShareService, is_valid_share_id

logger = structlog.get_logger(__name__)

router = APIRouter()


def _require_share_id(share_id: str) -> str:
    if not is_valid_share_id(share_id):
        raise HTTPException(status_code=400, detail="Invalid share ID format")
    return share_id


@router.post("/share")
def create_share(request: ShareRequest, share_service: ShareService = Depends(get_share_service)):
    """Store a snapshot behind a time-boxed link"""
    record = share_service.create_shareable_link(request.snapshot, request.options)
    return create_api_response(data={
        "id": record.id,
        "expires_at": record.expires_at.isoformat(),
        "created_at": record.created_at.isoformat(),
        "max_views": record.options.max_views,
    })


@router.get("/share/{share_id}")
def get_share(
    share_id: str,
    password: Optional[str] = Query(None),
    share_service: ShareService = Depends(get_share_service)
):
    record = share_service.get_shared_data(_require_share_id(share_id), password)
    return create_api_response(data={
        "snapshot": record.snapshot,
        "view_count": record.view_count,
        "expires_at": record.expires_at.isoformat(),
        "created_at": record.created_at.isoformat(),
    })


@router.get("/share/{share_id}/stats")
def get_share_stats(share_id: str, share_service: ShareService = Depends(get_share_service)):
    stats = share_service.get_share_statistics(_require_share_id(share_id))
    return create_api_response(data=stats.model_dump(mode="json"))


@router.post("/csv")
def export_csv(request: CSVExportRequest):
    if request.detailed:
        content = generate_detailed_csv(request.services, request.utilization)
    else:
        content = generate_csv(request.services, request.utilization)

    logger.info("CSV export generated", services=len(request.services), detailed=request.detailed)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="cost-data.csv"'}
    )


@router.post("/json")
def export_json(request: JSONExportRequest):
    content = generate_json_export(request.snapshot)
    return Response(
        content=content,
        media_type="application/json",
        headers={"Content-Disposition": 'attachment; filename="cost-snapshot.json"'}
    )


@router.get("/stats")
def get_export_stats(share_service: ShareService = Depends(get_share_service)):
    active_shares = share_service.get_all_active_shares()
    return create_api_response(data={
        "cache": share_service.get_cache_stats().model_dump(),
        "active_shares": len(active_shares),
        "shares": [
            {
                "id": share.id,
                "created_at": share.created_at.isoformat(),
                "expires_at": share.expires_at.isoformat(),
                "view_count": share.view_count,
                "max_views": share.options.max_views,
                "has_password": bool(share.options.password),
            }
            for share in active_shares
        ],
    })


@router.delete("/cleanup")
def cleanup_expired_shares(share_service: ShareService = Depends(get_share_service)):
    deleted_count = share_service.cleanup_expired_shares()
    return create_api_response(data={
        "deleted_count": deleted_count,
        "message": f"Cleaned up {deleted_count} expired shares",
    })
