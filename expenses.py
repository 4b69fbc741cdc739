"""
Expense recording module.

Provides the CRUD and paged listing operations for a user's expenses.
Budget spending totals and analytics read from the rows written here.
"""

import logging
import math
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from database_ops import DatabaseManager, Expense, PaymentMethod, to_utc_datetime, utc_now
from exceptions import ExpenseError

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
UPDATABLE_FIELDS = frozenset({
    "amount", "expense_date", "category_id", "description", "merchant", "payment_method", "receipt_url",
})


def coerce_payment_method(value: Union[None, str, PaymentMethod]) -> Optional[PaymentMethod]:
    """
    Convert a payment method name or value into a PaymentMethod.

    Args:
        value: PaymentMethod, its name/value (any case), or None

    Returns:
        PaymentMethod or None

    Raises:
        ExpenseError: If the value names no known payment method
    """
    if value is None or isinstance(value, PaymentMethod):
        return value
    key = str(value).strip().upper().replace(" ", "_")
    if not key:
        return None
    try:
        return PaymentMethod[key]
    except KeyError:
        raise ExpenseError(
            f"Unknown payment method: {value}",
            details={"allowed": [m.value for m in PaymentMethod]}
        ) from None


def _validate_amount(amount) -> float:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ExpenseError("Expense amount must be a number", details={"amount": amount}) from None
    if not math.isfinite(value) or value <= 0:
        raise ExpenseError("Expense amount must be positive", details={"amount": amount})
    return value


def _parse_expense_date(value: Union[date, datetime, str]) -> datetime:
    if isinstance(value, str):
        try:
            return to_utc_datetime(date.fromisoformat(value))
        except ValueError:
            raise ExpenseError("Invalid expense date", details={"date": value}) from None
    return to_utc_datetime(value)


class ExpenseManager:
    """
    Manages expense records.

    Every query is scoped to a single user.
    """

    def __init__(self, db_manager: DatabaseManager):
        """
        Initialize the expense manager.

        Args:
            db_manager: DatabaseManager instance
        """
        self.db_manager = db_manager
        logger.info("Expense manager initialized")

    def add_expense(
        self,
        user_id: int,
        amount: float,
        expense_date: Optional[Union[date, datetime, str]] = None,
        category_id: Optional[int] = None,
        description: str = "",
        merchant: Optional[str] = None,
        payment_method: Union[None, str, PaymentMethod] = None,
        receipt_url: Optional[str] = None,
    ) -> Expense:
        """
        Record a new expense.

        Args:
            user_id: Owning user
            amount: Positive amount
            expense_date: Date/datetime or ISO date string (defaults to now)
            category_id: Optional category
            description: Free-text description
            merchant: Optional merchant name
            payment_method: Optional payment method
            receipt_url: Optional stored receipt location

        Returns:
            Created Expense object

        Raises:
            ExpenseError: If validation or the database write fails
        """
        amount = _validate_amount(amount)
        when = utc_now() if expense_date is None else _parse_expense_date(expense_date)
        method = coerce_payment_method(payment_method)

        session = self.db_manager.get_session()
        try:
            expense = Expense(
                user_id=user_id,
                amount=amount,
                date=when,
                category_id=category_id,
                description=description or "",
                merchant=merchant,
                payment_method=method,
                receipt_url=receipt_url,
            )
            session.add(expense)
            session.commit()
            session.refresh(expense)
            session.expunge(expense)
            logger.info(f"Recorded expense {expense.id} for user {user_id}: {amount:.2f}")
            return expense
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to record expense: {e}")
            raise ExpenseError("Failed to record expense", details={"user_id": user_id}, original_error=e) from e
        finally:
            session.close()

    @staticmethod
    def _filtered_query(
        session,
        user_id: int,
        start: Optional[Union[date, datetime]] = None,
        end: Optional[Union[date, datetime]] = None,
        category_id: Optional[int] = None,
        payment_method: Union[None, str, PaymentMethod] = None,
    ):
        query = session.query(Expense).filter(Expense.user_id == user_id)
        if start is not None:
            query = query.filter(Expense.date >= to_utc_datetime(start))
        if end is not None:
            query = query.filter(Expense.date <= to_utc_datetime(end, end_of_day=True))
        if category_id is not None:
            query = query.filter(Expense.category_id == category_id)
        method = coerce_payment_method(payment_method)
        if method is not None:
            query = query.filter(Expense.payment_method == method)
        return query

    def get_expenses(
        self,
        user_id: int,
        start: Optional[Union[date, datetime]] = None,
        end: Optional[Union[date, datetime]] = None,
        category_id: Optional[int] = None,
        limit: Optional[int] = None,
        payment_method: Union[None, str, PaymentMethod] = None,
        offset: int = 0,
    ) -> List[Expense]:
        """
        List a user's expenses, newest first.

        Args:
            user_id: Owning user
            start: Optional inclusive lower bound on date
            end: Optional inclusive upper bound on date
            category_id: Optional category filter
            limit: Optional maximum number of rows
            payment_method: Optional payment method filter
            offset: Rows to skip before the first returned row

        Returns:
            List of Expense objects
        """
        session = self.db_manager.get_session()
        try:
            query = self._filtered_query(session, user_id, start, end, category_id, payment_method)
            query = query.order_by(Expense.date.desc(), Expense.id.desc())
            if offset:
                query = query.offset(offset)
            if limit:
                query = query.limit(limit)
            return query.all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to get expenses for user {user_id}: {e}")
            raise ExpenseError("Failed to get expenses", details={"user_id": user_id}, original_error=e) from e
        finally:
            session.close()

    def get_expenses_page(
        self,
        user_id: int,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        **filters: Any,
    ) -> Dict[str, Any]:
        """
        Get one page of a user's expenses, newest first.

        Args:
            user_id: Owning user
            page: 1-based page number (values below 1 become 1)
            limit: Page size, clamped to 1..100
            **filters: start, end, category_id and payment_method as for get_expenses

        Returns:
            Dictionary with expenses and pagination (page, limit, total, total_pages)
        """
        page = max(1, int(page or 1))
        limit = min(MAX_PAGE_SIZE, max(1, int(limit or DEFAULT_PAGE_SIZE)))

        session = self.db_manager.get_session()
        try:
            total = self._filtered_query(session, user_id, **filters).count()
        except SQLAlchemyError as e:
            logger.error(f"Failed to count expenses for user {user_id}: {e}")
            raise ExpenseError("Failed to count expenses", details={"user_id": user_id}, original_error=e) from e
        finally:
            session.close()

        expenses = self.get_expenses(user_id, limit=limit, offset=(page - 1) * limit, **filters)
        return {
            "expenses": expenses,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit),
            },
        }

    def get_latest_expense(self, user_id: int) -> Optional[Expense]:
        """Return the user's most recent expense, or None."""
        expenses = self.get_expenses(user_id, limit=1)
        return expenses[0] if expenses else None

    def update_expense(self, user_id: int, expense_id: int, **changes: Any) -> Optional[Expense]:
        """
        Change fields of one of the user's expenses.

        Accepted keys are amount, expense_date, category_id, description,
        merchant, payment_method and receipt_url; each is validated the same
        way add_expense validates it.

        Args:
            user_id: Owning user
            expense_id: Expense ID
            **changes: Fields to change

        Returns:
            Updated Expense, or None if the expense does not exist for this user

        Raises:
            ExpenseError: For unknown fields, invalid values or database failures
        """
        unknown = sorted(set(changes) - UPDATABLE_FIELDS)
        if unknown:
            raise ExpenseError("Unknown expense fields", details={"fields": unknown})

        values: Dict[str, Any] = {}
        for key, value in changes.items():
            if key == "amount":
                values["amount"] = _validate_amount(value)
            elif key == "expense_date":
                values["date"] = _parse_expense_date(value)
            elif key == "payment_method":
                values["payment_method"] = coerce_payment_method(value)
            elif key == "description":
                values["description"] = value or ""
            else:
                values[key] = value

        session = self.db_manager.get_session()
        try:
            expense = (
                session.query(Expense)
                .filter(Expense.id == expense_id, Expense.user_id == user_id)
                .first()
            )
            if expense is None:
                logger.warning(f"Expense {expense_id} not found for user {user_id}")
                return None
            for key, value in values.items():
                setattr(expense, key, value)
            session.commit()
            session.refresh(expense)
            session.expunge(expense)
            logger.info(f"Updated expense {expense_id}: {sorted(values)}")
            return expense
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to update expense {expense_id}: {e}")
            raise ExpenseError("Failed to update expense", details={"expense_id": expense_id}, original_error=e) from e
        finally:
            session.close()

    def delete_expense(self, user_id: int, expense_id: int) -> bool:
        """
        Delete one of the user's expenses.

        Args:
            user_id: Owning user
            expense_id: Expense ID

        Returns:
            True if deleted, False if the expense does not exist for this user
        """
        session = self.db_manager.get_session()
        try:
            expense = (
                session.query(Expense)
                .filter(Expense.id == expense_id, Expense.user_id == user_id)
                .first()
            )
            if expense is None:
                logger.warning(f"Expense {expense_id} not found for user {user_id}")
                return False
            session.delete(expense)
            session.commit()
            logger.info(f"Deleted expense {expense_id}")
            return True
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to delete expense {expense_id}: {e}")
            raise ExpenseError("Failed to delete expense", details={"expense_id": expense_id}, original_error=e) from e
        finally:
            session.close()
