"""
SheetChat - Custom Exceptions.

Centralized exception handling with standardized error responses.
Every error carries a stable machine-readable code so callers (HTTP clients,
the model reading a tool result, the stream consumer) can branch on it.
"""

from typing import Any
from uuid import UUID


class SheetChatException(Exception):
    """Base exception for SheetChat application."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
        request_id: UUID | None = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        self.request_id = request_id
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        """Error payload as fed back to the model or rendered in a response."""
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


# =============================================================================
# HTTP-facing
# =============================================================================


class NotFoundException(SheetChatException):
    """Raised when a resource is not found."""

    def __init__(self, resource_type: str, resource_id: str | UUID):
        super().__init__(
            code="NOT_FOUND",
            message=f"{resource_type} not found: {resource_id}",
            status_code=404,
            details={"resource_type": resource_type, "resource_id": str(resource_id)},
        )


class ConflictException(SheetChatException):
    """Raised when an operation conflicts with current state."""

    def __init__(self, message: str, code: str = "CONFLICT", details: dict[str, Any] | None = None):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class ValidationException(SheetChatException):
    """Raised for request validation errors."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR", errors: list[dict[str, Any]] | None = None):
        super().__init__(
            code=code,
            message=message,
            status_code=400,
            details={"errors": errors} if errors else None,
        )


class TurnInProgressException(ConflictException):
    """Raised when a conversation already has a running turn."""

    def __init__(self, conversation_id: str):
        super().__init__(
            message=f"Conversation {conversation_id} already has a turn in progress",
            code="TURN_IN_PROGRESS",
            details={"conversation_id": conversation_id},
        )


class FileInUseException(ConflictException):
    """Raised when a file cannot be deleted because a query is reading it."""

    def __init__(self, file_ids: list[str]):
        super().__init__(
            message=f"File(s) currently being read: {', '.join(file_ids)}",
            code="FILE_IN_USE",
            details={"file_ids": file_ids},
        )


# =============================================================================
# Tool calls (recovered locally: fed back to the model)
# =============================================================================


class ToolValidationException(SheetChatException):
    """Raised when a tool call does not match its declared parameter contract."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        function_name: str | None = None,
        errors: list[str] | None = None,
    ):
        details: dict[str, Any] = {}
        if function_name:
            details["function"] = function_name
        if errors:
            details["errors"] = errors
        super().__init__(
            code=code,
            message=message,
            status_code=400,
            details=details or None,
        )
        self.errors = errors or []


class ToolExecutionException(SheetChatException):
    """Raised when a validated operation fails deterministically."""

    def __init__(self, code: str, message: str, status_code: int = 400, details: dict[str, Any] | None = None):
        super().__init__(
            code=code,
            message=message,
            status_code=status_code,
            details=details,
        )


class FileNotFoundException(ToolExecutionException):
    """Raised when a file_id does not resolve to an uploaded file."""

    def __init__(self, file_id: str):
        super().__init__(
            code="FILE_NOT_FOUND",
            message=f"File not found: {file_id}",
            status_code=404,
            details={"file_id": file_id},
        )


class SheetNotFoundException(ToolExecutionException):
    """Raised when a sheet_name does not exist in the file."""

    def __init__(self, file_id: str, sheet_name: str, available: list[str]):
        super().__init__(
            code="SHEET_NOT_FOUND",
            message=f"Sheet '{sheet_name}' not found in file {file_id}",
            status_code=404,
            details={"file_id": file_id, "sheet_name": sheet_name, "available_sheets": available},
        )


class ColumnNotFoundException(ToolExecutionException):
    """Raised when an operation references unknown columns."""

    def __init__(self, missing: list[str], available: list[str]):
        super().__init__(
            code="COLUMN_NOT_FOUND",
            message=f"Unknown column(s): {', '.join(missing)}",
            details={"missing": missing, "available_columns": available},
        )


class InvalidFilterException(ToolExecutionException):
    """Raised when a filter condition is invalid or uses unsupported operators."""

    def __init__(self, message: str = "Invalid filter specification.", code: str = "INVALID_FILTER", details: dict[str, Any] | None = None):
        super().__init__(
            code=code,
            message=message,
            details=details,
        )


class TypeMismatchException(ToolExecutionException):
    """Raised when a comparison or aggregation does not fit the column type."""

    def __init__(self, message: str = "Type mismatch while executing operation.", details: dict[str, Any] | None = None):
        super().__init__(
            code="TYPE_MISMATCH",
            message=message,
            details=details,
        )


# =============================================================================
# Turn termination
# =============================================================================


class UpstreamException(SheetChatException):
    """Raised when the model provider fails. Never retried inside a turn."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            code=code,
            message=message,
            status_code=502,
            details=details,
        )


class IterationCapExceededException(SheetChatException):
    """Raised when the model keeps requesting tools past the iteration cap."""

    def __init__(self, max_iterations: int):
        super().__init__(
            code="ITERATION_CAP_EXCEEDED",
            message=f"Model did not produce a final answer within {max_iterations} iterations",
            status_code=500,
            details={"max_iterations": max_iterations},
        )


class TurnCancelledException(SheetChatException):
    """Raised when the caller cancels a running turn."""

    def __init__(self, message: str = "Turn cancelled by caller"):
        super().__init__(
            code="CANCELLED",
            message=message,
            status_code=499,
        )
