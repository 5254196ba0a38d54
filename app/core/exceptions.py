"""
Custom exception classes and error handlers
Provides consistent error responses across the application
"""

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from typing import Any, Dict, Optional

class ReferralHubException(HTTPException):
    """Base exception class for the referral workflow"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code

class ValidationError(ReferralHubException):
    """422 Malformed input (non-positive deal amount, missing target)"""

    def __init__(self, detail: str, error_code: str = "VALIDATION_ERROR"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )

class NotFoundError(ReferralHubException):
    """404 Referenced referral or member does not exist"""

    def __init__(self, detail: str = "Not found", error_code: str = "NOT_FOUND"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code=error_code
        )

class StateConflictError(ReferralHubException):
    """409 Transition not allowed from the current state"""

    def __init__(self, detail: str, error_code: str = "STATE_CONFLICT"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code=error_code
        )

class DuplicateReferralError(StateConflictError):
    """A pending referral between the same pair already exists"""

    def __init__(self, detail: str = "A pending referral to this member already exists"):
        super().__init__(detail=detail, error_code="DUPLICATE_PENDING_REFERRAL")

class AuthorizationError(ReferralHubException):
    """403 Actor is not permitted to perform the action"""

    def __init__(self, detail: str = "Forbidden", error_code: str = "FORBIDDEN"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code=error_code
        )

class VerificationFailure(ReferralHubException):
    """502 Finance gateway reported a mismatch or could not be reached"""

    def __init__(self, detail: str, error_code: str = "VERIFICATION_FAILED", retryable: bool = True):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=detail,
            error_code=error_code
        )
        self.retryable = retryable

class EncryptionFailure(ReferralHubException):
    """500 Envelope could not be decrypted"""

    def __init__(self, detail: str = "Sensitive payload could not be decrypted", error_code: str = "ENCRYPTION_FAILURE"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code=error_code
        )

class ConfigurationError(ReferralHubException):
    """500 Required operator configuration is missing"""

    def __init__(self, detail: str, error_code: str = "CONFIGURATION_ERROR"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code=error_code
        )

async def referral_exception_handler(request: Request, exc: ReferralHubException) -> JSONResponse:
    """Render domain errors with their stable error code"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error_code": exc.error_code},
        headers=exc.headers,
    )
