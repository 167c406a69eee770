"""Custom exception classes for the HTTP layer."""

from typing import Any

from fastapi import HTTPException


class AppException(HTTPException):
    """Base application exception with structured error response."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_details = details or {}
        super().__init__(
            status_code=status_code,
            detail={
                "error": {
                    "code": code,
                    "message": message,
                    "details": self.error_details,
                }
            },
        )


class NotFoundError(AppException):
    """Resource not found exception."""

    def __init__(
        self,
        resource: str,
        resource_id: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            code=f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} with ID {resource_id} not found",
            status_code=404,
            details=details,
        )


class TaskNotFoundError(NotFoundError):
    """Analysis task not found exception."""

    def __init__(self, task_id: str) -> None:
        super().__init__(resource="Task", resource_id=task_id)


class ValidationError(AppException):
    """Validation error exception."""

    def __init__(
        self,
        message: str = "Invalid request data",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=422,
            details=details,
        )


class ServiceUnavailableError(AppException):
    """A dependency (store, queue, inference backend) is unavailable."""

    def __init__(
        self,
        message: str = "Service temporarily unavailable",
        code: str = "SERVICE_UNAVAILABLE",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=503,
            details=details,
        )


class InternalError(AppException):
    """Internal server error exception."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        correlation_id: str | None = None,
    ) -> None:
        details = {}
        if correlation_id:
            details["correlationId"] = correlation_id
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
            details=details,
        )
