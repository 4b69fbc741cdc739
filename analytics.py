"""
Spending analytics for summaries and reports.

Aggregates a user's expenses over a window into category breakdowns and the
totals used by the weekly summary notification.
"""

import logging
from datetime import datetime
from typing import Any, Dict

import pandas as pd
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from database_ops import Category, DatabaseManager, Expense, ensure_utc
from exceptions import LookupFailureError

# Configure logging
logger = logging.getLogger(__name__)

BREAKDOWN_COLUMNS = ['category', 'total', 'count', 'percentage']


class SpendingAnalytics:
    """
    Analytics engine for expense aggregation.

    Queries are grouped in SQL and shaped with pandas.
    """

    def __init__(self, db_manager: DatabaseManager):
        """
        Initialize the analytics engine.

        Args:
            db_manager: DatabaseManager instance
        """
        self.db_manager = db_manager
        logger.info("Spending analytics initialized")

    def get_category_breakdown(self, user_id: int, start: datetime, end: datetime) -> pd.DataFrame:
        """
        Get spending breakdown by category.

        Args:
            user_id: Owning user
            start: Inclusive window start
            end: Inclusive window end

        Returns:
            DataFrame with columns: category, total, count, percentage

        Raises:
            LookupFailureError: If the database query fails
        """
        session = self.db_manager.get_session()

        try:
            results = (
                session.query(
                    func.coalesce(Category.name, 'Uncategorized').label('category'),
                    func.sum(Expense.amount).label('total'),
                    func.count(Expense.id).label('count'),
                )
                .select_from(Expense)
                .outerjoin(Category, Expense.category_id == Category.id)
                .filter(
                    Expense.user_id == user_id,
                    Expense.date >= ensure_utc(start),
                    Expense.date <= ensure_utc(end),
                )
                .group_by('category')
                .all()
            )

            if not results:
                return pd.DataFrame(columns=BREAKDOWN_COLUMNS)

            df = pd.DataFrame(results, columns=['category', 'total', 'count'])
            df['total'] = df['total'].astype(float)

            total_sum = df['total'].sum()
            df['percentage'] = (df['total'] / total_sum * 100) if total_sum > 0 else 0.0

            df = df.sort_values(['total', 'category'], ascending=[False, True]).reset_index(drop=True)

            logger.info(f"Generated category breakdown with {len(df)} categories for user {user_id}")
            return df

        except SQLAlchemyError as e:
            logger.error(f"Failed to get category breakdown: {e}", exc_info=True)
            raise LookupFailureError(
                "Failed to get category breakdown",
                details={"user_id": user_id},
                original_error=e
            ) from e
        finally:
            session.close()

    def get_period_summary(self, user_id: int, start: datetime, end: datetime, top_n: int = 3) -> Dict[str, Any]:
        """
        Summarize spending over a window.

        Args:
            user_id: Owning user
            start: Inclusive window start
            end: Inclusive window end
            top_n: Number of top categories to include

        Returns:
            Dictionary with total_spent, transaction_count and top_categories
            (a list of {'name', 'amount'} dictionaries, largest first)
        """
        df = self.get_category_breakdown(user_id, start, end)
        if df.empty:
            return {'total_spent': 0.0, 'transaction_count': 0, 'top_categories': []}

        top = df.head(top_n)
        return {
            'total_spent': float(df['total'].sum()),
            'transaction_count': int(df['count'].sum()),
            'top_categories': [
                {'name': row.category, 'amount': float(row.total)}
                for row in top.itertuples(index=False)
            ],
        }
