from typing import Optional


class CostGuardError(Exception):
    """Base class for errors surfaced to the API boundary"""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


# Ingestion

class EmptySourceError(CostGuardError):
    """The cost source contains no data"""
    status_code = 400
    code = "empty_source"


class UnsupportedFormatError(CostGuardError):
    """Unsupported CSV format. Please use a Cost Explorer export."""
    status_code = 400
    code = "unsupported_format"


# AWS boundary

class NotValidatedError(CostGuardError):
    """AWS credentials not validated. Please validate credentials first."""
    status_code = 401
    code = "not_validated"


class InvalidCredentialsError(CostGuardError):
    """Invalid AWS credentials or insufficient permissions"""
    status_code = 401
    code = "invalid_credentials"


class AccessDeniedError(CostGuardError):
    """Access denied to AWS Cost Explorer. Please check your IAM permissions for Cost Explorer access."""
    status_code = 403
    code = "access_denied"

    def __init__(self, message: Optional[str] = None, organization_member: bool = False):
        super().__init__(message)
        self.organization_member = organization_member


class RetryableAWSError(CostGuardError):
    """Transient AWS failure"""
    status_code = 503
    code = "aws_unavailable"


class ThrottledError(RetryableAWSError):
    """AWS Cost Explorer throttled the request"""
    status_code = 429
    code = "throttled"


class AWSTimeoutError(RetryableAWSError):
    """AWS Cost Explorer request timed out"""
    status_code = 504
    code = "timeout"


class AWSServiceError(CostGuardError):
    """Failed to retrieve cost data from AWS"""
    status_code = 502
    code = "aws_error"


# Share cache

class ShareNotFoundError(CostGuardError):
    """Shared data not found or expired"""
    status_code = 404
    code = "not_found"


class InvalidPasswordError(CostGuardError):
    """Invalid password"""
    status_code = 401
    code = "invalid_password"


class ViewLimitExceededError(CostGuardError):
    """Maximum view limit reached"""
    status_code = 429
    code = "view_limit_exceeded"


# Demo mode

class UnknownScenarioError(CostGuardError):
    """Unknown demo scenario"""
    status_code = 400
    code = "unknown_scenario"
