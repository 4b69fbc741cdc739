"""
User provisioning for spendwise.

Creates a user's starting state (the default category table and default
notification preferences) and manages the user's custom categories.
Provisioning is safe to call repeatedly.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from database_ops import (
    DEFAULT_NOTIFICATION_PREFERENCES,
    Budget,
    Category,
    DatabaseManager,
    Expense,
    NotificationPreference,
    User,
)
from exceptions import CategoryError, UserSetupError

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: List[Dict[str, str]] = [
    {"name": "Food & Dining", "icon": "🍽️", "color": "#FF6B6B"},
    {"name": "Transportation", "icon": "🚗", "color": "#4ECDC4"},
    {"name": "Shopping", "icon": "🛍️", "color": "#45B7D1"},
    {"name": "Bills & Utilities", "icon": "💡", "color": "#96CEB4"},
    {"name": "Entertainment", "icon": "🎬", "color": "#FECA57"},
    {"name": "Healthcare", "icon": "🏥", "color": "#FF9FF3"},
    {"name": "Education", "icon": "📚", "color": "#54A0FF"},
    {"name": "Personal Care", "icon": "💅", "color": "#A29BFE"},
    {"name": "Groceries", "icon": "🛒", "color": "#FD79A8"},
    {"name": "EMI", "icon": "🏦", "color": "#636E72"},
    {"name": "Investments", "icon": "📈", "color": "#00B894"},
    {"name": "Others", "icon": "📋", "color": "#B2BEC3"},
]


def ensure_user_setup(db_manager: DatabaseManager, email: str, name: Optional[str] = None) -> User:
    """
    Make sure a user exists with default categories and preferences.

    Args:
        db_manager: DatabaseManager instance
        email: User email (stored lowercase)
        name: Optional display name, used only when creating the user

    Returns:
        The provisioned User

    Raises:
        UserSetupError: If the email is empty or the database write fails
    """
    normalized_email = (email or "").strip().lower()
    if not normalized_email:
        raise UserSetupError("Cannot set up a user without an email address")

    session = db_manager.get_session()
    try:
        user = session.query(User).filter(User.email == normalized_email).first()
        if user is None:
            user = User(email=normalized_email, name=name)
            session.add(user)
            session.flush()
            logger.info(f"Created user {user.id} ({normalized_email})")

        category_count = session.query(Category).filter(Category.user_id == user.id).count()
        if category_count == 0:
            for template in DEFAULT_CATEGORIES:
                session.add(Category(user_id=user.id, is_default=True, **template))
            logger.info(f"Created {len(DEFAULT_CATEGORIES)} default categories for user {user.id}")

        preference = (
            session.query(NotificationPreference)
            .filter(NotificationPreference.user_id == user.id)
            .first()
        )
        if preference is None:
            session.add(NotificationPreference(user_id=user.id, **DEFAULT_NOTIFICATION_PREFERENCES))
            logger.info(f"Created default notification preferences for user {user.id}")

        session.commit()
        return user
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to set up user '{normalized_email}': {e}")
        raise UserSetupError(
            "Failed to set up user",
            details={"email": normalized_email},
            original_error=e
        ) from e
    finally:
        session.close()


def get_categories(db_manager: DatabaseManager, user_id: int) -> List[Category]:
    """
    Return a user's categories ordered by name.

    Args:
        db_manager: DatabaseManager instance
        user_id: Owning user

    Returns:
        List of Category objects
    """
    session = db_manager.get_session()
    try:
        return (
            session.query(Category)
            .filter(Category.user_id == user_id)
            .order_by(Category.name)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to get categories for user {user_id}: {e}")
        raise UserSetupError("Failed to get categories", details={"user_id": user_id}, original_error=e) from e
    finally:
        session.close()


def find_category(db_manager: DatabaseManager, user_id: int, name: str) -> Optional[Category]:
    """
    Look up one of a user's categories by name (case-insensitive).

    Args:
        db_manager: DatabaseManager instance
        user_id: Owning user
        name: Category name

    Returns:
        Category or None if not found
    """
    key = (name or "").strip().casefold()
    if not key:
        return None
    for category in get_categories(db_manager, user_id):
        if category.name.casefold() == key:
            return category
    return None


CATEGORY_NAME_MAX_LENGTH = 50
CUSTOM_CATEGORY_ICON = "🏷️"


def _clean_category_name(name: Optional[str]) -> str:
    cleaned = " ".join((name or "").split())
    if not cleaned:
        raise CategoryError("Category name is required")
    if len(cleaned) > CATEGORY_NAME_MAX_LENGTH:
        raise CategoryError(
            f"Category name must be at most {CATEGORY_NAME_MAX_LENGTH} characters",
            details={"name": cleaned}
        )
    return cleaned


def _name_taken(session, user_id: int, name: str, exclude_id: Optional[int] = None) -> bool:
    query = session.query(Category.id, Category.name).filter(Category.user_id == user_id)
    key = name.casefold()
    return any(row.name.casefold() == key and row.id != exclude_id for row in query.all())


def _owned_category(session, user_id: int, category_id: int) -> Optional[Category]:
    return (
        session.query(Category)
        .filter(Category.id == category_id, Category.user_id == user_id)
        .first()
    )


def create_category(
    db_manager: DatabaseManager,
    user_id: int,
    name: str,
    icon: Optional[str] = None,
    color: Optional[str] = None
) -> Category:
    """
    Create a custom category for a user.

    Args:
        db_manager: DatabaseManager instance
        user_id: Owning user
        name: Category name, unique per user ignoring case
        icon: Optional display icon
        color: Optional hex color; picked from the default palette when omitted

    Returns:
        Created Category

    Raises:
        CategoryError: If the name is empty, too long or already used
    """
    cleaned = _clean_category_name(name)

    session = db_manager.get_session()
    try:
        if _name_taken(session, user_id, cleaned):
            raise CategoryError("Category with this name already exists", details={"name": cleaned})

        if not color:
            custom_count = (
                session.query(Category)
                .filter(Category.user_id == user_id, Category.is_default.is_(False))
                .count()
            )
            color = DEFAULT_CATEGORIES[custom_count % len(DEFAULT_CATEGORIES)]["color"]

        category = Category(
            user_id=user_id,
            name=cleaned,
            icon=icon or CUSTOM_CATEGORY_ICON,
            color=color,
            is_default=False,
        )
        session.add(category)
        session.commit()
        session.refresh(category)
        session.expunge(category)
        logger.info(f"Created category {category.id} '{cleaned}' for user {user_id}")
        return category
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to create category '{cleaned}': {e}")
        raise CategoryError(
            "Failed to create category",
            details={"user_id": user_id, "name": cleaned},
            original_error=e
        ) from e
    finally:
        session.close()


def update_category(
    db_manager: DatabaseManager,
    user_id: int,
    category_id: int,
    name: Optional[str] = None,
    icon: Optional[str] = None,
    color: Optional[str] = None
) -> Optional[Category]:
    """
    Rename or restyle one of the user's custom categories.

    Returns:
        Updated Category, or None if the user has no such category

    Raises:
        CategoryError: For default categories, invalid or duplicate names
    """
    session = db_manager.get_session()
    try:
        category = _owned_category(session, user_id, category_id)
        if category is None:
            logger.warning(f"Category {category_id} not found for user {user_id}")
            return None
        if category.is_default:
            raise CategoryError("Cannot modify default categories", details={"category_id": category_id})

        if name is not None:
            cleaned = _clean_category_name(name)
            if _name_taken(session, user_id, cleaned, exclude_id=category.id):
                raise CategoryError("Category with this name already exists", details={"name": cleaned})
            category.name = cleaned
        if icon is not None:
            category.icon = icon
        if color is not None:
            category.color = color

        session.commit()
        session.refresh(category)
        session.expunge(category)
        logger.info(f"Updated category {category_id}")
        return category
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to update category {category_id}: {e}")
        raise CategoryError(
            "Failed to update category",
            details={"category_id": category_id},
            original_error=e
        ) from e
    finally:
        session.close()


def delete_category(db_manager: DatabaseManager, user_id: int, category_id: int) -> bool:
    """
    Delete one of the user's custom categories.

    A category still referenced by expenses or budgets is kept.

    Returns:
        True if deleted, False if the user has no such category

    Raises:
        CategoryError: For default categories or categories still in use
    """
    session = db_manager.get_session()
    try:
        category = _owned_category(session, user_id, category_id)
        if category is None:
            logger.warning(f"Category {category_id} not found for user {user_id}")
            return False
        if category.is_default:
            raise CategoryError("Cannot delete default categories", details={"category_id": category_id})

        expense_count = session.query(Expense).filter(Expense.category_id == category_id).count()
        if expense_count:
            raise CategoryError(
                "Cannot delete category with existing expenses",
                details={"category_id": category_id, "expenses": expense_count}
            )
        budget_count = session.query(Budget).filter(Budget.category_id == category_id).count()
        if budget_count:
            raise CategoryError(
                "Cannot delete category with existing budgets",
                details={"category_id": category_id, "budgets": budget_count}
            )

        session.delete(category)
        session.commit()
        logger.info(f"Deleted category {category_id}")
        return True
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to delete category {category_id}: {e}")
        raise CategoryError(
            "Failed to delete category",
            details={"category_id": category_id},
            original_error=e
        ) from e
    finally:
        session.close()
