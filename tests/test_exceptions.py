"""
Unit tests for the unified exception hierarchy.

Tests exception creation, attributes, string representations, and error context.
"""

import pytest
from exceptions import (
    SpendwiseError,
    ConfigError,
    DatabaseError,
    UserSetupError,
    CategoryError,
    ExpenseError,
    BudgetError,
    InvalidBudgetError,
    LookupFailureError,
    NotificationError,
    NotificationCreationError,
    PreferenceError,
    BudgetMonitoringError,
    ReceiptProcessingError,
    RecognitionError,
    StorageError,
)


class TestSpendwiseError:
    """Test base SpendwiseError class."""

    def test_basic_exception_creation(self):
        """Test creating a basic SpendwiseError."""
        error = SpendwiseError("Test error message")
        assert str(error) == "Test error message"
        assert error.message == "Test error message"
        assert error.details == {}
        assert error.original_error is None

    def test_exception_with_details(self):
        """Test creating exception with details dictionary."""
        details = {"budget_id": 7, "user_id": 3}
        error = SpendwiseError("Check failed", details=details)
        assert error.details == details
        assert str(error) == "Check failed (budget_id=7, user_id=3)"

    def test_exception_with_original_error(self):
        """Test creating exception with original error chaining."""
        original = ValueError("Original error")
        error = SpendwiseError("Wrapped error", original_error=original)
        assert error.original_error is original

    def test_can_be_raised_and_caught_as_exception(self):
        with pytest.raises(Exception) as exc_info:
            raise SpendwiseError("boom")
        assert isinstance(exc_info.value, SpendwiseError)


class TestExceptionHierarchy:
    """Test specific exception subclasses."""

    @pytest.mark.parametrize(
        "error_class",
        [
            ConfigError,
            DatabaseError,
            UserSetupError,
            CategoryError,
            ExpenseError,
            BudgetError,
            LookupFailureError,
            NotificationError,
            BudgetMonitoringError,
            ReceiptProcessingError,
        ],
    )
    def test_direct_subclasses(self, error_class):
        error = error_class("message", details={"key": "value"})
        assert isinstance(error, SpendwiseError)
        assert error.details["key"] == "value"

    def test_invalid_budget_is_budget_error(self):
        error = InvalidBudgetError("Budget amount must be positive", details={"amount": -5})
        assert isinstance(error, BudgetError)
        assert "amount=-5" in str(error)

    def test_notification_errors(self):
        assert issubclass(NotificationCreationError, NotificationError)
        assert issubclass(PreferenceError, NotificationError)

    def test_receipt_errors(self):
        original = TimeoutError("vision service timed out")
        error = RecognitionError("Failed to recognize receipt text", original_error=original)
        assert isinstance(error, ReceiptProcessingError)
        assert error.original_error is original
        assert issubclass(StorageError, ReceiptProcessingError)

    def test_catch_all_with_base_class(self):
        """Callers can handle every project error through the base class."""
        for error_class in (ConfigError, LookupFailureError, StorageError):
            with pytest.raises(SpendwiseError):
                raise error_class("failure")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
