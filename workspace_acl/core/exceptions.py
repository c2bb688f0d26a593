"""
Custom Exceptions
Permission-core exception classes
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class AppException(Exception):
    """Base application exception"""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: str = "app_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Error payload for the application layer"""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp,
        }


class ValidationException(AppException):
    """Validation error exception"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code="validation_error",
            status_code=400,
            details=details,
        )


class ForbiddenException(AppException):
    """Caller lacks the required permission level"""

    def __init__(
        self,
        message: str = "Permission denied",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code="forbidden",
            status_code=403,
            details=details,
        )


class NotFoundException(AppException):
    """Resource not found exception"""

    def __init__(
        self,
        resource: str = "Resource",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=f"{resource} not found",
            code="not_found",
            status_code=404,
            details=details,
        )


class InvalidMoveException(AppException):
    """A move would place a node under itself or its own descendant"""

    def __init__(
        self,
        message: str = "Cannot move a file into itself or one of its descendants",
        file_id: Optional[int] = None,
        target_parent_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if file_id is not None:
            details["file_id"] = file_id
        if target_parent_id is not None:
            details["target_parent_id"] = target_parent_id
        super().__init__(
            message=message,
            code="invalid_move",
            status_code=409,
            details=details,
        )


class CorruptHierarchyException(AppException):
    """Traversal found a cycle or exceeded the depth bound"""

    def __init__(
        self,
        message: str,
        file_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if file_id is not None:
            details["file_id"] = file_id
        super().__init__(
            message=message,
            code="corrupt_hierarchy",
            status_code=500,
            details=details,
        )


class RebuildFailedException(AppException):
    """Effective permission rebuild could not complete"""

    retryable = True

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if user_id is not None:
            details["user_id"] = user_id
        super().__init__(
            message=message,
            code="rebuild_failed",
            status_code=503,
            details=details,
        )


class OperationTimeoutException(AppException):
    """A bounded operation did not finish in time"""

    retryable = True

    def __init__(
        self,
        message: str = "Operation timed out",
        operation: Optional[str] = None,
        timeout: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if operation:
            details["operation"] = operation
        if timeout is not None:
            details["timeout"] = timeout
        super().__init__(
            message=message,
            code="timeout",
            status_code=504,
            details=details,
        )
