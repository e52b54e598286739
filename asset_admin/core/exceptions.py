"""
Custom exceptions for the application.
"""
from typing import Any, Dict, Optional


class ServiceException(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, code: str = "SERVICE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(self.message)


class NotFoundError(ServiceException):
    """Exception raised when a resource is not found."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, "NOT_FOUND")


class ValidationError(ServiceException):
    """Exception raised when validation fails."""

    def __init__(self, message: str = "Validation failed"):
        super().__init__(message, "VALIDATION_ERROR")


class ConflictError(ServiceException):
    """
    Exception raised when an operation is refused by a safety rule.

    The code tells callers which rule fired (``COUNT_EXCEEDED``,
    ``CONFIRMATION_REQUIRED``, ``REFERENCED``, ``NAME_COLLISION``,
    ``PROTECTED_DESTINATION``). ``details`` carries structured context such
    as the referencing entities.
    """

    def __init__(
        self,
        message: str = "Operation conflicts with current state",
        code: str = "CONFLICT",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code)
        self.details = details or {}


class PhysicalIOError(ServiceException):
    """Exception raised when the storage backend fails."""

    def __init__(self, message: str = "Storage operation failed", path: Optional[str] = None):
        super().__init__(message, "PHYSICAL_IO_ERROR")
        self.path = path


class PartialBatchFailure(ServiceException):
    """Exception raised when some items of a batch operation failed."""

    def __init__(self, report):
        super().__init__(
            f"{report.failed} of {report.total} items failed during {report.operation}",
            "PARTIAL_FAILURE"
        )
        self.report = report


class InternalError(ServiceException):
    """Exception raised for internal server errors."""

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message, "INTERNAL_ERROR")
