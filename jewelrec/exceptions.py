"""Custom exceptions for JewelRec.

Defines specific exception types for better error handling and reporting.
"""

from typing import Any, Dict, Optional


class JewelRecException(Exception):
    """Base exception for JewelRec errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize exception.

        Args:
            message: Human-readable error message
            status_code: HTTP status code a transport layer should map this to
            details: Additional error details for debugging
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class DataFetchError(JewelRecException):
    """Raised when a data feed cannot be read or returns malformed rows."""

    def __init__(self, source: str, error: Exception):
        message = f"Failed to fetch from {source}: {str(error)}"
        super().__init__(
            message=message,
            status_code=503,
            details={
                "source": source,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )


class UnauthorizedError(JewelRecException):
    """Raised when a caller without privileges triggers a restricted action."""

    def __init__(self, action: str, caller_id: Optional[str] = None):
        message = f"Caller {caller_id or 'anonymous'} is not allowed to {action}"
        super().__init__(
            message=message,
            status_code=403,
            details={"action": action, "caller_id": caller_id},
        )


class RecommendationError(JewelRecException):
    """Raised when recommendation generation fails."""

    def __init__(
        self,
        user_id: Optional[str],
        product_id: Optional[str],
        error: Exception,
    ):
        message = (
            f"Failed to generate recommendations for user {user_id}, "
            f"product {product_id}: {str(error)}"
        )
        super().__init__(
            message=message,
            status_code=500,
            details={
                "user_id": user_id,
                "product_id": product_id,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )


class RecomputeInProgressError(JewelRecException):
    """Raised when a non-blocking recompute finds another one running."""

    def __init__(self):
        super().__init__(
            message="A similarity recomputation is already running",
            status_code=409,
        )
