"""Custom exception hierarchy for the reconciler."""

from typing import Any, Optional


class ReconcilerError(Exception):
    """Base exception for all reconciler errors."""

    def __init__(
        self,
        message: str,
        *,
        correlation_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        """Initialize reconciler error.

        Args:
            message: Error message
            correlation_id: Optional correlation ID for tracing (usually the job id)
            context: Optional context dictionary with additional details
        """
        super().__init__(message)
        self.message = message
        self.correlation_id = correlation_id
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message."""
        parts = [self.message]
        if self.correlation_id:
            parts.append(f"[correlation_id={self.correlation_id}]")
        if self.context:
            parts.append(f"[context={self.context}]")
        return " ".join(parts)


class ConfigurationError(ReconcilerError):
    """Configuration-related errors."""

    pass


class DatabaseError(ReconcilerError):
    """Database-related errors."""

    pass


class TransactionError(ReconcilerError):
    """Transaction-related errors."""

    pass


class VerificationError(ReconcilerError):
    """Captured rows and storage results disagree."""

    pass
