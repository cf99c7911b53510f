"""Custom exceptions for the Zettel Graph engine.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001

    # Graph errors (2xxx)
    GRAPH_BUILD_FAILED = 2001

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002

    # Search errors (5xxx)
    SEARCH_FAILED = 5001
    SIMILARITY_UNSUPPORTED = 5101
    SIMILARITY_FAILED = 5102
    EMBEDDING_UNAVAILABLE = 5103

    # Request lifecycle errors (8xxx)
    OPERATION_CANCELLED = 8001


class ZettelGraphError(Exception):
    """Base exception for all Zettel Graph errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.GRAPH_BUILD_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NoteNotFoundError(ZettelGraphError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id},
        )
        self.note_id = note_id


class StorageError(ZettelGraphError):
    """Raised for storage/persistence errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class SearchError(ZettelGraphError):
    """Raised for search-related errors."""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        code: ErrorCode = ErrorCode.SEARCH_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if query:
            details["query"] = query[:100]  # Truncate for safety
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.query = query
        self.original_error = original_error


class SimilarityUnsupportedError(SearchError):
    """Raised when the active store cannot answer nearest-neighbour queries."""

    def __init__(self, message: str = "Similarity search is not supported by the active store"):
        super().__init__(message, code=ErrorCode.SIMILARITY_UNSUPPORTED)


class OperationCancelledError(ZettelGraphError):
    """Raised when a caller cancels an in-flight request."""

    def __init__(self, operation: str):
        super().__init__(
            f"Operation '{operation}' was cancelled",
            code=ErrorCode.OPERATION_CANCELLED,
            details={"operation": operation},
        )
        self.operation = operation
