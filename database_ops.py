"""
Database operations module for expense, budget and notification storage.

This module handles database connections, schema creation and the ORM models
using SQLAlchemy. Supports SQLite by default with easy migration to other
databases.
"""

import enum
import logging
from datetime import UTC, date, datetime, time
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from exceptions import DatabaseError

# Configure logging
logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone awareness.

    All timestamps in the database are stored in UTC.

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(UTC)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to timezone-aware UTC.

    SQLite drops tzinfo on round-trip, so naive values read back from the
    database are treated as UTC.

    Args:
        value: Datetime (naive or aware) or None

    Returns:
        Aware UTC datetime, or None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_utc_datetime(value: Union[date, datetime], end_of_day: bool = False) -> datetime:
    """
    Convert a date or datetime into an aware UTC datetime.

    Args:
        value: Calendar date or datetime
        end_of_day: For plain dates, use 23:59:59.999999 instead of midnight

    Returns:
        Aware UTC datetime
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    moment = time.max if end_of_day else time.min
    return datetime.combine(value, moment, tzinfo=UTC)


# Base class for declarative models
Base = declarative_base()


class BudgetPeriod(enum.Enum):
    """Enumeration of budget period kinds."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class NotificationType(enum.Enum):
    """Enumeration of notification kinds."""
    BUDGET_WARNING = "budget_warning"
    BUDGET_EXCEEDED = "budget_exceeded"
    EXPENSE_REMINDER = "expense_reminder"
    WEEKLY_SUMMARY = "weekly_summary"
    MONTHLY_SUMMARY = "monthly_summary"
    ACHIEVEMENT = "achievement"
    SYSTEM = "system"


class NotificationPriority(enum.Enum):
    """Enumeration of notification priorities."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class PaymentMethod(enum.Enum):
    """Closed set of payment methods an expense can record."""
    CASH = "CASH"
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    UPI = "UPI"
    WALLET = "WALLET"
    NET_BANKING = "NET_BANKING"


DEFAULT_NOTIFICATION_PREFERENCES: Dict[str, Any] = {
    "budget_alerts": True,
    "budget_threshold": 80,
    "daily_digest": False,
    "weekly_report": True,
    "expense_reminders": True,
    "email_alerts": True,
    "push_alerts": False,
}


class User(Base):
    """
    SQLAlchemy model representing an application user.

    Identity and authentication live outside this project; a user row only
    anchors per-user ownership of categories, expenses, budgets and
    notifications.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    categories = relationship("Category", back_populates="user", cascade="all, delete-orphan")
    notification_preference = relationship(
        "NotificationPreference",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        """String representation of the user."""
        return f"<User(id={self.id}, email='{self.email}')>"


class Category(Base):
    """
    SQLAlchemy model representing a user's expense category.

    Attributes:
        id: Auto-incrementing primary key
        user_id: Owning user
        name: Category name (unique per user)
        icon: Display icon
        color: Display color (hex)
        is_default: True when created by user provisioning
    """

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    icon = Column(String(16), nullable=True)
    color = Column(String(16), nullable=True)
    is_default = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    user = relationship("User", back_populates="categories")

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )

    def __repr__(self) -> str:
        """String representation of the category."""
        return f"<Category(id={self.id}, user_id={self.user_id}, name='{self.name}')>"


class Expense(Base):
    """
    SQLAlchemy model representing a recorded expense.

    Attributes:
        id: Auto-incrementing primary key
        user_id: Owning user
        category_id: Optional category
        amount: Positive expense amount
        date: When the expense happened (UTC)
        description: Free-text description
        merchant: Optional merchant name
        payment_method: Optional PaymentMethod
        receipt_url: Optional stored receipt image location
    """

    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    amount = Column(Float, nullable=False)
    date = Column(DateTime(timezone=True), nullable=False, index=True)
    description = Column(String(500), nullable=False, default="")
    merchant = Column(String(200), nullable=True)
    payment_method = Column(Enum(PaymentMethod), nullable=True)
    receipt_url = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    category = relationship("Category", lazy="joined")

    __table_args__ = (
        Index('idx_expense_user_date', 'user_id', 'date'),
        Index('idx_expense_user_category_date', 'user_id', 'category_id', 'date'),
    )

    def __repr__(self) -> str:
        """String representation of the expense."""
        return (
            f"<Expense(id={self.id}, user_id={self.user_id}, date={self.date}, "
            f"amount={self.amount})>"
        )


class Budget(Base):
    """
    SQLAlchemy model representing a spending limit.

    A budget without a category is an overall budget covering every expense
    of its owner inside the window.

    Attributes:
        id: Auto-incrementing primary key
        user_id: Owning user
        category_id: Optional category scope
        amount: Spending limit (> 0)
        period: BudgetPeriod kind
        start_date: Start of the active window
        end_date: End of the active window
        is_active: False once deactivated
    """

    __tablename__ = "budgets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    amount = Column(Float, nullable=False)
    period = Column(Enum(BudgetPeriod), nullable=False, default=BudgetPeriod.MONTHLY)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    category = relationship("Category", lazy="joined")

    @property
    def category_name(self) -> str:
        """Category name, or 'Overall' for an unscoped budget."""
        return self.category.name if self.category is not None else "Overall"

    def __repr__(self) -> str:
        """String representation of the budget."""
        return (
            f"<Budget(id={self.id}, user_id={self.user_id}, category_id={self.category_id}, "
            f"amount={self.amount}, period={self.start_date} to {self.end_date})>"
        )


class Notification(Base):
    """
    SQLAlchemy model representing a notification shown to a user.

    For budget notifications related_id holds the triggering budget id and is
    the deduplication key together with type.
    """

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(Enum(NotificationType), nullable=False, index=True)
    priority = Column(Enum(NotificationPriority), nullable=False, default=NotificationPriority.MEDIUM)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    related_id = Column(String(64), nullable=True)
    related_type = Column(String(50), nullable=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)

    __table_args__ = (
        Index('idx_notification_related', 'related_id', 'type', 'created_at'),
        Index('idx_notification_user_read', 'user_id', 'is_read'),
    )

    def __repr__(self) -> str:
        """String representation of the notification."""
        return (
            f"<Notification(id={self.id}, user_id={self.user_id}, type={self.type.value}, "
            f"related_id={self.related_id}, created_at={self.created_at})>"
        )


class NotificationPreference(Base):
    """SQLAlchemy model holding one user's notification settings."""

    __tablename__ = "notification_preferences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    budget_alerts = Column(Boolean, nullable=False, default=True)
    budget_threshold = Column(Integer, nullable=False, default=80)
    daily_digest = Column(Boolean, nullable=False, default=False)
    weekly_report = Column(Boolean, nullable=False, default=True)
    expense_reminders = Column(Boolean, nullable=False, default=True)
    email_alerts = Column(Boolean, nullable=False, default=True)
    push_alerts = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    user = relationship("User", back_populates="notification_preference")

    def to_dict(self) -> Dict[str, Any]:
        """Return the preference flags as a plain dictionary."""
        return {key: getattr(self, key) for key in DEFAULT_NOTIFICATION_PREFERENCES}

    def __repr__(self) -> str:
        return (
            f"<NotificationPreference(user_id={self.user_id}, budget_alerts={self.budget_alerts}, "
            f"budget_threshold={self.budget_threshold})>"
        )


class DatabaseManager:
    """
    Manages database connections and sessions.

    This class handles database initialization and session management and
    provides the user lookups shared by the managers built on top of it.
    """

    def __init__(self, connection_string: str):
        """
        Initialize the database manager.

        Args:
            connection_string: SQLAlchemy connection string (e.g., 'sqlite:///data/spendwise.db')

        Raises:
            DatabaseError: If database connection fails
        """
        try:
            self.engine = create_engine(connection_string, echo=False)
            self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
            logger.info(f"Database manager initialized with connection: {connection_string}")
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database: {e}")
            raise DatabaseError(
                "Failed to initialize database",
                details={"connection_string": connection_string},
                original_error=e
            ) from e

    def create_tables(self) -> None:
        """
        Create all database tables if they don't exist.

        Raises:
            DatabaseError: If table creation fails
        """
        try:
            Base.metadata.create_all(self.engine)
            logger.info("Database tables created/verified successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create database tables: {e}")
            raise DatabaseError("Failed to create database tables", original_error=e) from e

    def get_session(self) -> Session:
        """
        Get a new database session.

        Returns:
            SQLAlchemy session object

        Note:
            Caller is responsible for closing the session.
        """
        return self.SessionLocal()

    def get_user(self, user_id: int, session: Optional[Session] = None) -> Optional[User]:
        """
        Get a user by ID.

        Args:
            user_id: User ID
            session: Optional existing session (creates new one if None)

        Returns:
            User object or None if not found
        """
        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            return session.get(User, user_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to get user {user_id}: {e}")
            raise DatabaseError("Failed to get user", details={"user_id": user_id}, original_error=e) from e
        finally:
            if close_session:
                session.close()

    def get_user_by_email(self, email: str, session: Optional[Session] = None) -> Optional[User]:
        """
        Get a user by email address (case-insensitive).

        Args:
            email: Email address
            session: Optional existing session (creates new one if None)

        Returns:
            User object or None if not found
        """
        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            return session.query(User).filter(User.email == email.strip().lower()).first()
        except SQLAlchemyError as e:
            logger.error(f"Failed to get user by email: {e}")
            raise DatabaseError("Failed to get user by email", original_error=e) from e
        finally:
            if close_session:
                session.close()

    def get_all_users(self, session: Optional[Session] = None) -> List[User]:
        """
        Get all users with their notification preference loaded.

        Args:
            session: Optional existing session (creates new one if None)

        Returns:
            List of User objects
        """
        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            users = session.query(User).order_by(User.id).all()
            for user in users:
                # Load the preference before the session closes
                _ = user.notification_preference
            return users
        except SQLAlchemyError as e:
            logger.error(f"Failed to get users: {e}")
            raise DatabaseError("Failed to get users", original_error=e) from e
        finally:
            if close_session:
                session.close()

    def close(self) -> None:
        """Close the database engine connection."""
        if hasattr(self, 'engine'):
            self.engine.dispose()
            logger.info("Database connection closed")
