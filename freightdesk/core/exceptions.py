# freightdesk/core/exceptions.py
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class DomainError(HTTPException):
    """Base for typed failures surfaced to callers"""
    error_code = "domain_error"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context = context
        super().__init__(
            status_code=self.http_status,
            detail={"error_code": self.error_code, "message": message, **context},
        )


class NotFound(DomainError):
    error_code = "not_found"
    http_status = status.HTTP_404_NOT_FOUND


class InvalidTransition(DomainError):
    error_code = "invalid_transition"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, action: str, current_status: str, message: Optional[str] = None):
        self.action = action
        self.current_status = current_status
        super().__init__(
            message or f"Cannot {action} a request in status '{current_status}'",
            action=action,
            current_status=current_status,
        )


class AlreadyAssigned(DomainError):
    error_code = "already_assigned"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, reference_code: str, message: Optional[str] = None):
        super().__init__(
            message or f"Request {reference_code} was already assigned",
            reference_code=reference_code,
        )


class AlreadyClaimed(DomainError):
    error_code = "already_claimed"
    http_status = status.HTTP_409_CONFLICT


class ValidationError(DomainError):
    error_code = "validation_error"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class PermissionDenied(DomainError):
    error_code = "forbidden"
    http_status = status.HTTP_403_FORBIDDEN


def error_payload(exc: DomainError) -> Dict[str, Any]:
    return {"success": False, **exc.detail}
