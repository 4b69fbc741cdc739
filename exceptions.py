"""
Exception hierarchy for spendwise.

Everything the application raises on purpose derives from SpendwiseError, so
the CLI and the monitoring pass can report failures uniformly while callers
still catch the narrower subclasses they care about.
"""

from typing import Optional


class SpendwiseError(Exception):
    """
    Root of the spendwise exception tree.

    Attributes:
        message: Human-readable description
        details: Context values (IDs, paths, limits) rendered into str()
        original_error: Lower-level exception this one wraps, if any
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        if not self.details:
            return self.message
        context = ", ".join(f"{key}={value}" for key, value in self.details.items())
        return f"{self.message} ({context})"


class ConfigError(SpendwiseError):
    """Raised when configuration loading or validation fails."""
    pass


class DatabaseError(SpendwiseError):
    """Raised when database operations fail."""
    pass


class UserSetupError(SpendwiseError):
    """Raised when provisioning a user's defaults fails."""
    pass


class CategoryError(SpendwiseError):
    """Raised when a category cannot be created, changed or deleted."""
    pass


class ExpenseError(SpendwiseError):
    """Raised when expense recording or retrieval fails."""
    pass


class BudgetError(SpendwiseError):
    """Raised when budget management operations fail."""
    pass


class InvalidBudgetError(BudgetError):
    """Raised when a budget violates its invariants (amount <= 0 or start > end)."""
    pass


class LookupFailureError(SpendwiseError):
    """Raised when a spending, preference or notification lookup fails."""
    pass


class NotificationError(SpendwiseError):
    """Raised when notification operations fail."""
    pass


class NotificationCreationError(NotificationError):
    """Raised when a notification cannot be persisted."""
    pass


class PreferenceError(NotificationError):
    """Raised when notification preferences are invalid or cannot be saved."""
    pass


class BudgetMonitoringError(SpendwiseError):
    """Raised when a monitoring pass finished with per-budget failures."""
    pass


class ReceiptProcessingError(SpendwiseError):
    """Raised when a receipt upload cannot be processed."""
    pass


class RecognitionError(ReceiptProcessingError):
    """Raised when the text recognition collaborator fails."""
    pass


class StorageError(ReceiptProcessingError):
    """Raised when storing a receipt image fails."""
    pass
