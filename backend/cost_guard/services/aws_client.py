import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)
from typing import Optional, Dict, Any, List, Callable
import structlog
from datetime import date, timedelta
import asyncio
from concurrent.futures import ThreadPoolExecutor
import functools
import time

from cost_guard.core.config import settings
from cost_guard.core.exceptions import (
    AccessDeniedError,
    AWSServiceError,
    AWSTimeoutError,
    CostGuardError,
    InvalidCredentialsError,
    NotValidatedError,
    RetryableAWSError,
    ThrottledError,
)
from cost_guard.models.schemas import AWSCredentials
from cost_guard.services.metrics_service import metrics_service

logger = structlog.get_logger(__name__)

ACCESS_DENIED_CODES = {'AccessDeniedException', 'AccessDenied', 'UnauthorizedOperation'}
THROTTLING_CODES = {'ThrottlingException', 'Throttling', 'TooManyRequestsException', 'LimitExceededException'}
TIMEOUT_CODES = {'RequestTimeout', 'RequestTimeoutException'}
INVALID_CREDENTIAL_CODES = {
    'InvalidClientTokenId', 'SignatureDoesNotMatch', 'UnrecognizedClientException',
    'ExpiredToken', 'ExpiredTokenException', 'InvalidAccessKeyId', 'AuthFailure',
}

ORGANIZATION_MEMBER_MESSAGE = (
    "This AWS account is a member account in an AWS Organization and does not have "
    "Cost Explorer access. Please use the management/payer account or request Cost "
    "Explorer permissions from your organization administrator."
)

AWS_CALL_ERRORS = (ClientError, BotoCoreError, ConnectionError)


def translate_aws_error(error: Exception) -> CostGuardError:
    """Map boto3/botocore failures onto the application error taxonomy"""
    if isinstance(error, CostGuardError):
        return error

    if isinstance(error, ClientError):
        error_code = error.response.get('Error', {}).get('Code', 'Unknown')
        error_message = error.response.get('Error', {}).get('Message', str(error))

        if error_code in INVALID_CREDENTIAL_CODES:
            return InvalidCredentialsError()
        if error_code in ACCESS_DENIED_CODES:
            if 'Payer account' in error_message and 'linked account' in error_message:
                return AccessDeniedError(ORGANIZATION_MEMBER_MESSAGE, organization_member=True)
            return AccessDeniedError()
        if error_code in THROTTLING_CODES:
            return ThrottledError(error_message)
        if error_code in TIMEOUT_CODES:
            return AWSTimeoutError(error_message)
        return AWSServiceError(f"Failed to retrieve cost data from AWS: {error_message}")

    if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
        return InvalidCredentialsError()
    if isinstance(error, (ReadTimeoutError, ConnectTimeoutError, TimeoutError)):
        return AWSTimeoutError(str(error))
    if isinstance(error, (ConnectionClosedError, ConnectionResetError)):
        return RetryableAWSError(f"Connection reset: {error}")

    return AWSServiceError(f"Failed to retrieve cost data from AWS: {error}")


class AWSClientManager:
    """Holds the boto3 session for the currently validated credentials"""

    def __init__(self, session_factory: Callable[..., Any] = boto3.Session):
        self._session_factory = session_factory
        self._session = None
        self.account_id: Optional[str] = None
        self._executor = ThreadPoolExecutor(max_workers=2)

    @property
    def is_validated(self) -> bool:
        return self._session is not None

    def _build_session(self, credentials: AWSCredentials):
        return self._session_factory(
            aws_access_key_id=credentials.access_key_id,
            aws_secret_access_key=credentials.secret_access_key,
            region_name=credentials.region or settings.AWS_REGION
        )

    def get_client(self, service: str, region: Optional[str] = None) -> Any:
        """Get AWS client for the validated session"""
        if self._session is None:
            raise NotValidatedError()
        if region:
            return self._session.client(service, region_name=region)
        return self._session.client(service)

    async def validate_credentials(self, credentials: AWSCredentials) -> Dict[str, Any]:
        """Check credentials against STS and check Cost Explorer access.

        A Cost Explorer access denial is logged but does not fail validation;
        member accounts of an organization often lack it.
        """
        def _validate_sync():
            session = self._build_session(credentials)
            identity = session.client('sts').get_caller_identity()

            cost_explorer_access = True
            try:
                ce_client = session.client('ce', region_name=settings.COST_EXPLORER_REGION)
                end_date = date.today()
                ce_client.get_cost_and_usage(
                    TimePeriod={
                        'Start': (end_date - timedelta(days=1)).isoformat(),
                        'End': end_date.isoformat()
                    },
                    Granularity='DAILY',
                    Metrics=['BlendedCost']
                )
            except ClientError as e:
                if e.response.get('Error', {}).get('Code') != 'AccessDeniedException':
                    raise
                cost_explorer_access = False
                logger.warning("Cost Explorer access denied; account may be an organization member "
                               "or lack Cost Explorer permissions",
                               account_id=identity.get('Account'))

            return session, identity, cost_explorer_access

        loop = asyncio.get_event_loop()
        try:
            session, identity, cost_explorer_access = await loop.run_in_executor(self._executor, _validate_sync)
        except AWS_CALL_ERRORS as e:
            self.clear()
            logger.error("AWS credential validation failed", error=str(e))
            raise translate_aws_error(e) from e

        self._session = session
        self.account_id = identity.get('Account')
        logger.info("AWS credentials validated", account_id=self.account_id)

        return {
            'account_id': identity.get('Account'),
            'arn': identity.get('Arn'),
            'user_id': identity.get('UserId'),
            'cost_explorer_access': cost_explorer_access
        }

    def clear(self):
        """Forget the validated session"""
        self._session = None
        self.account_id = None
        logger.info("Cleared AWS session")


class AWSCostExplorer:
    """AWS Cost Explorer service wrapper with a single bounded retry"""

    def __init__(
        self,
        client_manager: AWSClientManager,
        retry_delay: float = None,
        max_attempts: int = 2
    ):
        self.client_manager = client_manager
        self.executor = ThreadPoolExecutor(max_workers=settings.AWS_MAX_WORKERS)
        self.retry_delay = settings.AWS_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.max_attempts = max_attempts

    @property
    def is_validated(self) -> bool:
        return self.client_manager.is_validated

    @property
    def account_id(self) -> Optional[str]:
        return self.client_manager.account_id

    async def _call(self, operation: str, **params) -> Dict[str, Any]:
        """Invoke a Cost Explorer operation, retrying once on transient failures"""
        client = self.client_manager.get_client('ce', region=settings.COST_EXPLORER_REGION)
        method = functools.partial(getattr(client, operation), **params)
        loop = asyncio.get_event_loop()

        for attempt in range(1, self.max_attempts + 1):
            started = time.perf_counter()
            try:
                response = await loop.run_in_executor(self.executor, method)
                metrics_service.record_aws_api_call('ce', operation, 'success', time.perf_counter() - started)
                return response
            except AWS_CALL_ERRORS as e:
                metrics_service.record_aws_api_call('ce', operation, 'error', time.perf_counter() - started)
                error = translate_aws_error(e)

                if isinstance(error, RetryableAWSError) and attempt < self.max_attempts:
                    logger.warning("Retrying Cost Explorer call",
                                   operation=operation,
                                   attempt=attempt,
                                   error=str(e))
                    metrics_service.record_aws_retry('ce', operation)
                    await asyncio.sleep(self.retry_delay)
                    continue

                logger.error("Cost Explorer call failed",
                             operation=operation,
                             attempt=attempt,
                             error_type=type(error).__name__,
                             error=str(e))
                raise error from e

        raise AWSServiceError(f"Cost Explorer call {operation} exhausted retries")

    async def get_cost_and_usage(
        self,
        start_date: str,
        end_date: str,
        granularity: str = 'DAILY',
        metrics: List[str] = None,
        group_by: List[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """Get cost and usage data from AWS Cost Explorer"""
        params = {
            'TimePeriod': {
                'Start': start_date,
                'End': end_date
            },
            'Granularity': granularity,
            'Metrics': metrics or ['BlendedCost']
        }

        if group_by:
            params['GroupBy'] = group_by

        return await self._call('get_cost_and_usage', **params)

    async def get_dimension_values(
        self,
        dimension: str,
        start_date: str,
        end_date: str
    ) -> Dict[str, Any]:
        """Get dimension values (e.g., services, regions)"""
        return await self._call(
            'get_dimension_values',
            TimePeriod={
                'Start': start_date,
                'End': end_date
            },
            Dimension=dimension,
            Context='COST_AND_USAGE'
        )

    async def test_connection(self) -> bool:
        """Make a minimal Cost Explorer call to verify the session still works"""
        if not self.is_validated:
            return False

        end_date = date.today()
        try:
            await self.get_cost_and_usage(
                start_date=(end_date - timedelta(days=1)).isoformat(),
                end_date=end_date.isoformat(),
                granularity='DAILY'
            )
            return True
        except CostGuardError as e:
            logger.error("AWS connection test failed", error=str(e))
            return False
