from datetime import UTC, date, datetime
from types import SimpleNamespace

import pytest

from database_ops import DatabaseManager
from user_setup import ensure_user_setup

# Mid-June 2024 keeps every fixture inside the June monthly window.
JUNE_BASE = date(2024, 6, 12)
JUNE_NOW = datetime(2024, 6, 20, 12, 0, tzinfo=UTC)


@pytest.fixture()
def db_manager(tmp_path):
    """Provide a DatabaseManager backed by a throwaway SQLite file."""
    manager = DatabaseManager(f"sqlite:///{(tmp_path / 'test.db').as_posix()}")
    manager.create_tables()
    try:
        yield manager
    finally:
        manager.close()


@pytest.fixture()
def user(db_manager):
    """A provisioned user with default categories and preferences."""
    return ensure_user_setup(db_manager, "Asha@Example.com", "Asha")


def make_budget(
    budget_id=1,
    amount=1000.0,
    user_id=1,
    category_name="Groceries",
    start=datetime(2024, 6, 1, tzinfo=UTC),
    end=datetime(2024, 6, 30, 23, 59, 59, tzinfo=UTC),
    is_active=True,
):
    """Build a plain stand-in for a Budget row."""
    return SimpleNamespace(
        id=budget_id,
        user_id=user_id,
        amount=amount,
        category_name=category_name,
        start_date=start,
        end_date=end,
        is_active=is_active,
    )
