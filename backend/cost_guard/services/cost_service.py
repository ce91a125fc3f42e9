from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

import structlog

from cost_guard.core.config import settings
from cost_guard.core.exceptions import CostGuardError, NotValidatedError
from cost_guard.models.schemas import AWSCredentials, CacheStats, CostData, CSVUploadResult
from cost_guard.services.aggregation import total_cost_of
from cost_guard.services.aws_client import AWSCostExplorer
from cost_guard.services.cache_service import CacheService
from cost_guard.services.ingestion import (
    CSVLayout,
    detect_csv_layout,
    ingest_cost_explorer,
    ingest_csv_bytes,
    read_csv_headers,
)
from cost_guard.services.metrics_service import metrics_service

logger = structlog.get_logger(__name__)


class CostService:
    """Cost data from Cost Explorer (cached) or from uploaded CSV exports"""

    def __init__(
        self,
        explorer: AWSCostExplorer,
        cache: Optional[CacheService] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        self.explorer = explorer
        self.cache = cache or CacheService(name="cost_data", default_ttl=settings.COST_CACHE_TTL_SECONDS)
        self._clock = clock

    def _default_window(self) -> Tuple[str, str]:
        end_date = self._clock().date()
        start_date = end_date - timedelta(days=settings.DEFAULT_LOOKBACK_DAYS)
        return start_date.isoformat(), end_date.isoformat()

    async def validate_credentials(self, credentials: AWSCredentials) -> dict:
        identity = await self.explorer.client_manager.validate_credentials(credentials)
        # Cached data belongs to the previous session
        self.cache.flush()
        return identity

    async def get_cost_data(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> CostData:
        """Fetch and normalize cost data for the window, serving from cache when possible"""
        if not self.explorer.is_validated:
            raise NotValidatedError()

        account_id = self.explorer.account_id or "default"
        cached = self.cache.get_cached_cost_data(account_id, start_date, end_date)
        if cached is not None:
            logger.debug("Serving cost data from cache", account_id=account_id)
            return cached

        start, end = (start_date, end_date) if start_date and end_date else self._default_window()
        logger.info("Fetching cost data from Cost Explorer", account_id=account_id, start=start, end=end)

        service_response = await self.explorer.get_cost_and_usage(
            start, end,
            granularity='MONTHLY',
            group_by=[{'Type': 'DIMENSION', 'Key': 'SERVICE'}]
        )
        regional_response = await self.explorer.get_cost_and_usage(
            start, end,
            granularity='MONTHLY',
            group_by=[
                {'Type': 'DIMENSION', 'Key': 'REGION'},
                {'Type': 'DIMENSION', 'Key': 'SERVICE'}
            ]
        )
        daily_response = await self.explorer.get_cost_and_usage(
            start, end,
            granularity='DAILY',
            group_by=[{'Type': 'DIMENSION', 'Key': 'SERVICE'}]
        )

        services = ingest_cost_explorer(service_response, regional_response, daily_response)
        cost_data = CostData(
            services=services,
            total_cost=total_cost_of(services),
            currency='USD',
            last_updated=self._clock(),
        )

        self.cache.cache_cost_data(account_id, start_date, end_date, cost_data,
                                   ttl=settings.COST_CACHE_TTL_SECONDS)
        logger.info("Cost data refreshed",
                    account_id=account_id,
                    services=len(services),
                    total_cost=round(cost_data.total_cost, 2))
        return cost_data

    def refresh_cost_data(self) -> int:
        """Drop every cached window; the next read goes to Cost Explorer"""
        cleared = self.cache.flush()
        logger.info("Cost data cache cleared", entries=cleared)
        return cleared

    def get_cache_stats(self) -> CacheStats:
        return self.cache.get_stats()

    async def get_available_services(self) -> List[str]:
        """Service names with usage in the last lookback window; empty on any failure"""
        if not self.explorer.is_validated:
            return []

        start, end = self._default_window()
        try:
            response = await self.explorer.get_dimension_values('SERVICE', start, end)
        except CostGuardError as e:
            logger.error("Failed to get available services", error=str(e))
            return []

        return [item['Value'] for item in response.get('DimensionValues', []) if item.get('Value')]

    async def test_connection(self) -> bool:
        return await self.explorer.test_connection()

    # CSV uploads

    def validate_csv(self, buffer: bytes) -> CSVLayout:
        """Detect the layout of an upload without ingesting it"""
        return detect_csv_layout(read_csv_headers(buffer))

    def process_csv_upload(self, buffer: bytes) -> CSVUploadResult:
        try:
            layout, services, rows_processed = ingest_csv_bytes(buffer)
        except CostGuardError as e:
            metrics_service.record_csv_ingestion("unknown", "error")
            logger.warning("CSV upload rejected", error=e.message)
            raise

        metrics_service.record_csv_ingestion(layout.value, "success")
        return CSVUploadResult(
            layout=layout.value,
            rows_processed=rows_processed,
            cost_data=CostData(
                services=services,
                total_cost=total_cost_of(services),
                currency='USD',
                last_updated=self._clock(),
            ),
        )
