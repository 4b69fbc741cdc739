"""
Budgeting module for period budgets and utilization evaluation.

This module provides budget CRUD, the spending total for a budget window and
the pure evaluator that classifies utilization into alert tiers.
"""

import calendar
import enum
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, List, Optional, Tuple, Union

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from database_ops import (
    Budget,
    BudgetPeriod,
    DatabaseManager,
    Expense,
    ensure_utc,
    to_utc_datetime,
    utc_now,
)
from exceptions import BudgetError, InvalidBudgetError, LookupFailureError

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_BUDGET_THRESHOLD = 80


class AlertTier(enum.Enum):
    """Classification of budget utilization."""
    NONE = "none"
    WARNING = "warning"
    EXCEEDED = "exceeded"


@dataclass(frozen=True)
class BudgetEvaluation:
    """
    Result of evaluating a budget against its spending.

    Attributes:
        budget_id: Evaluated budget (None for unsaved budgets)
        amount: Budget limit
        spent: Total spent in the window
        remaining: amount - spent (negative once over budget)
        percentage: spent / amount * 100, unrounded
        over_budget: True when spent > amount
        tier: AlertTier for the configured threshold
        threshold: WARNING threshold used, in percent
    """
    budget_id: Optional[int]
    amount: float
    spent: float
    remaining: float
    percentage: float
    over_budget: bool
    tier: AlertTier
    threshold: float


def validate_budget(budget: Any) -> None:
    """
    Check the budget invariants: amount > 0 and start <= end.

    Args:
        budget: Object with amount, start_date and end_date attributes

    Raises:
        InvalidBudgetError: If an invariant is violated
    """
    budget_id = getattr(budget, "id", None)
    raw_amount = getattr(budget, "amount", None)
    try:
        amount = float(raw_amount)
    except (TypeError, ValueError):
        raise InvalidBudgetError(
            "Budget amount must be a number",
            details={"budget_id": budget_id, "amount": raw_amount}
        ) from None
    if not math.isfinite(amount) or amount <= 0:
        raise InvalidBudgetError(
            "Budget amount must be positive",
            details={"budget_id": budget_id, "amount": raw_amount}
        )

    start = getattr(budget, "start_date", None)
    end = getattr(budget, "end_date", None)
    if start is not None and end is not None and ensure_utc(start) > ensure_utc(end):
        raise InvalidBudgetError(
            "Budget start date is after its end date",
            details={"budget_id": budget_id, "start_date": start, "end_date": end}
        )


def classify_utilization(percentage: float, threshold: float = DEFAULT_BUDGET_THRESHOLD) -> AlertTier:
    """
    Map a utilization percentage to an alert tier.

    EXCEEDED takes precedence: 100% exactly is EXCEEDED regardless of threshold.
    """
    if percentage >= 100:
        return AlertTier.EXCEEDED
    if percentage >= threshold:
        return AlertTier.WARNING
    return AlertTier.NONE


def evaluate_budget(
    budget: Any,
    spent: float,
    threshold: float = DEFAULT_BUDGET_THRESHOLD
) -> BudgetEvaluation:
    """
    Evaluate spending against a budget.

    Pure function of its inputs; nothing is persisted.

    Args:
        budget: Budget (or any object with id, amount, start_date, end_date)
        spent: Non-negative total spent inside the budget window
        threshold: WARNING trigger point in percent (1..100)

    Returns:
        BudgetEvaluation

    Raises:
        InvalidBudgetError: If the budget violates its invariants
        ValueError: If spent is negative or threshold is out of range
    """
    validate_budget(budget)

    if isinstance(threshold, bool) or not 1 <= threshold <= 100:
        raise ValueError(f"Budget threshold must be between 1 and 100, got {threshold!r}")
    spent = float(spent)
    if not math.isfinite(spent) or spent < 0:
        raise ValueError(f"Spent total must be a non-negative number, got {spent!r}")

    amount = float(budget.amount)
    percentage = (spent / amount) * 100

    return BudgetEvaluation(
        budget_id=getattr(budget, "id", None),
        amount=amount,
        spent=spent,
        remaining=amount - spent,
        percentage=percentage,
        over_budget=spent > amount,
        tier=classify_utilization(percentage, threshold),
        threshold=threshold,
    )


def coerce_period(period: Union[str, BudgetPeriod]) -> BudgetPeriod:
    """
    Convert a period name into a BudgetPeriod.

    Raises:
        BudgetError: If the name is not a known period
    """
    if isinstance(period, BudgetPeriod):
        return period
    try:
        return BudgetPeriod[str(period).strip().upper()]
    except KeyError:
        raise BudgetError(
            f"Unknown budget period: {period}",
            details={"allowed": [p.name for p in BudgetPeriod]}
        ) from None


def get_budget_period(
    period: Union[str, BudgetPeriod],
    base_date: Optional[Union[date, datetime]] = None
) -> Tuple[datetime, datetime]:
    """
    Get the window of the period containing base_date.

    Weeks run Monday to Sunday; months, quarters and years are calendar based.

    Args:
        period: Period kind
        base_date: Date inside the desired period (defaults to today, UTC)

    Returns:
        Tuple of (start at 00:00 UTC, end at 23:59:59.999999 UTC)
    """
    period = coerce_period(period)
    if base_date is None:
        base = utc_now().date()
    elif isinstance(base_date, datetime):
        base = ensure_utc(base_date).date()
    else:
        base = base_date

    if period is BudgetPeriod.WEEKLY:
        start = base - timedelta(days=base.weekday())
        end = start + timedelta(days=6)
    elif period is BudgetPeriod.MONTHLY:
        start = base.replace(day=1)
        end = base.replace(day=calendar.monthrange(base.year, base.month)[1])
    elif period is BudgetPeriod.QUARTERLY:
        first_month = 3 * ((base.month - 1) // 3) + 1
        last_month = first_month + 2
        start = date(base.year, first_month, 1)
        end = date(base.year, last_month, calendar.monthrange(base.year, last_month)[1])
    else:
        start = date(base.year, 1, 1)
        end = date(base.year, 12, 31)

    return to_utc_datetime(start), to_utc_datetime(end, end_of_day=True)


class BudgetManager:
    """
    Manages budgets and their spending totals.

    Provides functionality to create period budgets, list the active ones and
    compute how much has been spent inside each budget window.
    """

    def __init__(self, db_manager: DatabaseManager):
        """
        Initialize the budget manager.

        Args:
            db_manager: DatabaseManager instance
        """
        self.db_manager = db_manager
        logger.info("Budget manager initialized")

    @staticmethod
    def _detach(session, budget: Budget) -> Budget:
        """Load the category relationship and expunge the budget from the session."""
        _ = budget.category
        session.expunge(budget)
        return budget

    def create_budget(
        self,
        user_id: int,
        amount: float,
        period: Union[str, BudgetPeriod] = BudgetPeriod.MONTHLY,
        category_id: Optional[int] = None,
        base_date: Optional[Union[date, datetime]] = None
    ) -> Budget:
        """
        Create a budget for the period containing base_date.

        Args:
            user_id: Owning user
            amount: Spending limit (must be positive)
            period: Period kind
            category_id: Optional category scope (None = overall budget)
            base_date: Date inside the period (defaults to today)

        Returns:
            Created Budget object

        Raises:
            InvalidBudgetError: If amount is not positive
            BudgetError: If an identical active budget exists or the write fails
        """
        period = coerce_period(period)
        try:
            amount = float(amount)
        except (TypeError, ValueError):
            raise InvalidBudgetError("Budget amount must be a number", details={"amount": amount}) from None
        if not math.isfinite(amount) or amount <= 0:
            raise InvalidBudgetError("Budget amount must be positive", details={"amount": amount})

        period_start, period_end = get_budget_period(period, base_date)
        session = self.db_manager.get_session()

        try:
            existing = session.query(Budget).filter(
                Budget.user_id == user_id,
                Budget.category_id.is_(None) if category_id is None else Budget.category_id == category_id,
                Budget.period == period,
                Budget.is_active.is_(True),
                Budget.start_date == period_start,
                Budget.end_date == period_end,
            ).first()

            if existing:
                logger.warning(
                    f"Budget already exists for user {user_id}, category {category_id}, "
                    f"period {period_start.date()} to {period_end.date()}"
                )
                raise BudgetError(
                    "Budget already exists for this period and category",
                    details={"budget_id": existing.id}
                )

            budget = Budget(
                user_id=user_id,
                category_id=category_id,
                amount=amount,
                period=period,
                start_date=period_start,
                end_date=period_end,
                is_active=True,
            )
            session.add(budget)
            session.commit()
            session.refresh(budget)

            logger.info(
                f"Created {period.value} budget {budget.id} for user {user_id}: "
                f"{amount:.2f} ({period_start.date()} to {period_end.date()})"
            )
            return self._detach(session, budget)

        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to create budget: {e}")
            raise BudgetError("Failed to create budget", details={"user_id": user_id}, original_error=e) from e
        finally:
            session.close()

    def get_budget(self, budget_id: int) -> Optional[Budget]:
        """
        Get a budget by ID.

        Args:
            budget_id: Budget ID

        Returns:
            Budget object or None if not found
        """
        session = self.db_manager.get_session()
        try:
            budget = session.get(Budget, budget_id)
            if budget is None:
                return None
            return self._detach(session, budget)
        except SQLAlchemyError as e:
            logger.error(f"Failed to get budget {budget_id}: {e}")
            raise BudgetError("Failed to get budget", details={"budget_id": budget_id}, original_error=e) from e
        finally:
            session.close()

    def get_budgets(
        self,
        user_id: int,
        active_only: bool = False,
        now: Optional[datetime] = None
    ) -> List[Budget]:
        """
        Get a user's budgets, newest first.

        Args:
            user_id: Owning user
            active_only: Only budgets that are active and not yet ended
            now: Reference time for active_only (defaults to now)

        Returns:
            List of Budget objects
        """
        session = self.db_manager.get_session()
        try:
            query = session.query(Budget).filter(Budget.user_id == user_id)
            if active_only:
                reference = ensure_utc(now) if now else utc_now()
                query = query.filter(Budget.is_active.is_(True), Budget.end_date >= reference)
            budgets = query.order_by(Budget.created_at.desc(), Budget.id.desc()).all()
            return [self._detach(session, budget) for budget in budgets]
        except SQLAlchemyError as e:
            logger.error(f"Failed to get budgets for user {user_id}: {e}")
            raise BudgetError("Failed to get budgets", details={"user_id": user_id}, original_error=e) from e
        finally:
            session.close()

    def get_active_budgets(self, now: Optional[datetime] = None) -> List[Budget]:
        """
        Get every active budget across all users whose window has not ended.

        Args:
            now: Reference time (defaults to now)

        Returns:
            List of Budget objects ordered by ID
        """
        reference = ensure_utc(now) if now else utc_now()
        session = self.db_manager.get_session()
        try:
            budgets = session.query(Budget).filter(
                Budget.is_active.is_(True),
                Budget.end_date >= reference
            ).order_by(Budget.id).all()
            logger.debug(f"Found {len(budgets)} active budgets")
            return [self._detach(session, budget) for budget in budgets]
        except SQLAlchemyError as e:
            logger.error(f"Failed to get active budgets: {e}")
            raise BudgetError("Failed to get active budgets", original_error=e) from e
        finally:
            session.close()

    def calculate_budget_spending(self, budget: Budget) -> float:
        """
        Calculate total spending for a budget window.

        Sums the owner's expenses dated within [start_date, end_date],
        restricted to the budget's category when it has one.

        Args:
            budget: Budget object

        Returns:
            Total spent (0.0 when there are no expenses)

        Raises:
            LookupFailureError: If the database query fails
        """
        session = self.db_manager.get_session()
        try:
            query = session.query(func.coalesce(func.sum(Expense.amount), 0.0)).filter(
                Expense.user_id == budget.user_id,
                Expense.date >= ensure_utc(budget.start_date),
                Expense.date <= ensure_utc(budget.end_date),
            )
            if budget.category_id is not None:
                query = query.filter(Expense.category_id == budget.category_id)
            total = query.scalar()
            return float(total or 0.0)
        except SQLAlchemyError as e:
            logger.error(f"Failed to calculate spending for budget {budget.id}: {e}")
            raise LookupFailureError(
                "Failed to calculate budget spending",
                details={"budget_id": budget.id},
                original_error=e
            ) from e
        finally:
            session.close()

    def get_budget_status(
        self,
        budget: Budget,
        threshold: float = DEFAULT_BUDGET_THRESHOLD
    ) -> BudgetEvaluation:
        """
        Evaluate a budget against its current spending.

        Args:
            budget: Budget object
            threshold: WARNING threshold in percent

        Returns:
            BudgetEvaluation
        """
        return evaluate_budget(budget, self.calculate_budget_spending(budget), threshold)

    def get_budgets_with_status(
        self,
        user_id: int,
        active_only: bool = True,
        threshold: float = DEFAULT_BUDGET_THRESHOLD,
        now: Optional[datetime] = None
    ) -> List[Tuple[Budget, BudgetEvaluation]]:
        """
        Pair each of a user's budgets with its evaluation.

        Args:
            user_id: Owning user
            active_only: Only active, unexpired budgets
            threshold: WARNING threshold in percent
            now: Reference time for active_only

        Returns:
            List of (Budget, BudgetEvaluation) tuples
        """
        return [
            (budget, self.get_budget_status(budget, threshold))
            for budget in self.get_budgets(user_id, active_only=active_only, now=now)
        ]

    def update_budget(
        self,
        budget_id: int,
        amount: Optional[float] = None,
        is_active: Optional[bool] = None
    ) -> Optional[Budget]:
        """
        Update a budget's amount and/or active flag.

        Args:
            budget_id: Budget ID
            amount: New spending limit (must be positive)
            is_active: New active flag

        Returns:
            Updated Budget object, or None if not found

        Raises:
            InvalidBudgetError: If amount is not a positive number
        """
        if amount is not None:
            try:
                amount = float(amount)
            except (TypeError, ValueError):
                raise InvalidBudgetError("Budget amount must be a number", details={"amount": amount}) from None
            if not math.isfinite(amount) or amount <= 0:
                raise InvalidBudgetError("Budget amount must be positive", details={"amount": amount})

        session = self.db_manager.get_session()
        try:
            budget = session.get(Budget, budget_id)
            if budget is None:
                logger.warning(f"Budget {budget_id} not found")
                return None

            if amount is not None:
                budget.amount = amount
            if is_active is not None:
                budget.is_active = bool(is_active)
            budget.updated_at = utc_now()

            session.commit()
            session.refresh(budget)
            logger.info(f"Updated budget {budget_id}")
            return self._detach(session, budget)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to update budget {budget_id}: {e}")
            raise BudgetError("Failed to update budget", details={"budget_id": budget_id}, original_error=e) from e
        finally:
            session.close()

    def deactivate_budget(self, budget_id: int) -> bool:
        """
        Mark a budget inactive so monitoring ignores it.

        Args:
            budget_id: Budget ID

        Returns:
            True if the budget was found and deactivated
        """
        return self.update_budget(budget_id, is_active=False) is not None

    def delete_budget(self, budget_id: int) -> bool:
        """
        Delete a budget.

        Args:
            budget_id: Budget ID

        Returns:
            True if deleted, False if not found
        """
        session = self.db_manager.get_session()
        try:
            budget = session.get(Budget, budget_id)
            if budget is None:
                logger.warning(f"Budget {budget_id} not found")
                return False
            session.delete(budget)
            session.commit()
            logger.info(f"Deleted budget {budget_id}")
            return True
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to delete budget {budget_id}: {e}")
            raise BudgetError("Failed to delete budget", details={"budget_id": budget_id}, original_error=e) from e
        finally:
            session.close()
