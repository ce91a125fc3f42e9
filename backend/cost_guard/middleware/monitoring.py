import time
import uuid
from typing import Callable
import structlog
from fastapi import Request, Response
from fastapi.routing import Match
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from cost_guard.services.metrics_service import metrics_service

logger = structlog.get_logger(__name__)


class MonitoringMiddleware(BaseHTTPMiddleware):
    """Request IDs, timing, Prometheus request metrics and access logs"""

    def __init__(self, app: ASGIApp, slow_request_threshold: float = 1.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold
        # Bodies or query strings here carry secrets
        self.sensitive_endpoints = {
            '/api/cost/validate-credentials',
            '/api/export/share/{share_id}',
        }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()
        endpoint = self._get_endpoint_name(request)
        method = request.method

        log_context = {
            "request_id": request_id,
            "method": method,
            "endpoint": endpoint,
            "client_ip": self._get_client_ip(request),
        }

        logger.info("Request started", **log_context)

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time

            metrics_service.record_http_request(
                method=method,
                endpoint=endpoint,
                status_code=500,
                duration=duration
            )
            metrics_service.record_error(
                error_type=type(e).__name__,
                component="api"
            )

            log_context.update({
                "error": str(e),
                "error_type": type(e).__name__,
                "duration_ms": round(duration * 1000, 2)
            })
            logger.error("Request failed", **log_context)
            raise

        duration = time.time() - start_time

        metrics_service.record_http_request(
            method=method,
            endpoint=endpoint,
            status_code=response.status_code,
            duration=duration
        )

        log_context.update({
            "status_code": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        })

        if endpoint in self.sensitive_endpoints:
            logger.info("Sensitive request completed",
                        request_id=request_id,
                        method=method,
                        endpoint="[SENSITIVE]",
                        status_code=response.status_code,
                        duration_ms=round(duration * 1000, 2))
        else:
            logger.info("Request completed", **log_context)

        if duration > self.slow_request_threshold:
            logger.warning("Slow request detected",
                           request_id=request_id,
                           method=method,
                           endpoint=endpoint,
                           duration_ms=round(duration * 1000, 2),
                           threshold_ms=round(self.slow_request_threshold * 1000, 2))

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response

    def _get_endpoint_name(self, request: Request) -> str:
        """Route template for the request, so path parameters don't explode label cardinality"""
        scope = {"type": "http", "path": request.url.path, "method": request.method}
        for route in request.app.routes:
            match, _ = route.matches(scope)
            if match == Match.FULL:
                return getattr(route, "path", request.url.path)
        return request.url.path

    def _get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        return request.client.host if request.client else "unknown"
