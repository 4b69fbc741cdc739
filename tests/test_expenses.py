"""
Unit tests for user provisioning and expense recording.
"""

from datetime import UTC, date, datetime

import pytest

from database_ops import NotificationPreference, PaymentMethod
from budgeting import BudgetManager
from exceptions import CategoryError, ExpenseError, UserSetupError
from expenses import ExpenseManager, coerce_payment_method
from user_setup import (
    DEFAULT_CATEGORIES,
    create_category,
    delete_category,
    ensure_user_setup,
    find_category,
    get_categories,
    update_category,
)


class TestUserSetup:
    """Tests for default user provisioning."""

    def test_creates_user_with_defaults(self, db_manager, user):
        categories = get_categories(db_manager, user.id)

        assert user.email == "asha@example.com"
        assert user.name == "Asha"
        assert len(categories) == len(DEFAULT_CATEGORIES)
        assert all(category.is_default for category in categories)

    def test_setup_is_idempotent(self, db_manager, user):
        again = ensure_user_setup(db_manager, " ASHA@example.com ", "Someone Else")

        assert again.id == user.id
        assert again.name == "Asha"
        assert len(get_categories(db_manager, user.id)) == len(DEFAULT_CATEGORIES)
        session = db_manager.get_session()
        try:
            assert session.query(NotificationPreference).filter_by(user_id=user.id).count() == 1
        finally:
            session.close()

    def test_empty_email_rejected(self, db_manager):
        with pytest.raises(UserSetupError):
            ensure_user_setup(db_manager, "   ")

    def test_find_category_is_case_insensitive(self, db_manager, user):
        category = find_category(db_manager, user.id, "  food & DINING ")

        assert category is not None
        assert category.name == "Food & Dining"
        assert find_category(db_manager, user.id, "Yachts") is None
        assert find_category(db_manager, user.id, "") is None


class TestCustomCategories:
    """Tests for creating, changing and deleting custom categories."""

    def test_create_category(self, db_manager, user):
        category = create_category(db_manager, user.id, "  Pet   Care ", icon="🐾")

        assert category.id is not None
        assert category.name == "Pet Care"
        assert category.icon == "🐾"
        assert category.color == DEFAULT_CATEGORIES[0]["color"]
        assert category.is_default is False
        assert find_category(db_manager, user.id, "pet care").id == category.id

    def test_duplicate_name_rejected_ignoring_case(self, db_manager, user):
        with pytest.raises(CategoryError):
            create_category(db_manager, user.id, "groceries")

    def test_same_name_allowed_for_other_user(self, db_manager, user):
        create_category(db_manager, user.id, "Pet Care")
        other = ensure_user_setup(db_manager, "ravi@example.com")

        assert create_category(db_manager, other.id, "Pet Care").user_id == other.id

    @pytest.mark.parametrize("name", ["", "   ", "x" * 51])
    def test_invalid_name_rejected(self, db_manager, user, name):
        with pytest.raises(CategoryError):
            create_category(db_manager, user.id, name)

    def test_update_category(self, db_manager, user):
        category = create_category(db_manager, user.id, "Pet Care")

        updated = update_category(db_manager, user.id, category.id, name="Pets", color="#123456")

        assert updated.name == "Pets"
        assert updated.color == "#123456"
        assert updated.icon == category.icon

    def test_update_rejects_default_and_duplicates(self, db_manager, user):
        groceries = find_category(db_manager, user.id, "Groceries")
        category = create_category(db_manager, user.id, "Pet Care")

        with pytest.raises(CategoryError):
            update_category(db_manager, user.id, groceries.id, name="Food")
        with pytest.raises(CategoryError):
            update_category(db_manager, user.id, category.id, name="SHOPPING")
        assert update_category(db_manager, user.id, category.id, name="pet care").name == "pet care"

    def test_update_is_scoped_to_owner(self, db_manager, user):
        category = create_category(db_manager, user.id, "Pet Care")
        other = ensure_user_setup(db_manager, "ravi@example.com")

        assert update_category(db_manager, other.id, category.id, name="Mine") is None

    def test_delete_unused_category(self, db_manager, user):
        category = create_category(db_manager, user.id, "Pet Care")

        assert delete_category(db_manager, user.id, category.id) is True
        assert delete_category(db_manager, user.id, category.id) is False
        assert find_category(db_manager, user.id, "Pet Care") is None

    def test_delete_refuses_category_with_expenses(self, db_manager, user):
        category = create_category(db_manager, user.id, "Pet Care")
        ExpenseManager(db_manager).add_expense(user.id, 500, category_id=category.id)

        with pytest.raises(CategoryError) as exc_info:
            delete_category(db_manager, user.id, category.id)
        assert exc_info.value.details["expenses"] == 1
        assert find_category(db_manager, user.id, "Pet Care") is not None

    def test_delete_refuses_category_with_budgets(self, db_manager, user):
        category = create_category(db_manager, user.id, "Pet Care")
        BudgetManager(db_manager).create_budget(user.id, 2000, category_id=category.id)

        with pytest.raises(CategoryError):
            delete_category(db_manager, user.id, category.id)

    def test_delete_refuses_default_category(self, db_manager, user):
        groceries = find_category(db_manager, user.id, "Groceries")

        with pytest.raises(CategoryError):
            delete_category(db_manager, user.id, groceries.id)


class TestExpenseManager:
    """Tests for expense CRUD."""

    @pytest.fixture()
    def manager(self, db_manager):
        return ExpenseManager(db_manager)

    def test_add_expense(self, manager, db_manager, user):
        groceries = find_category(db_manager, user.id, "Groceries")

        expense = manager.add_expense(
            user_id=user.id,
            amount="450.5",
            expense_date="2024-06-12",
            category_id=groceries.id,
            description="Weekly vegetables",
            merchant="BigBasket",
            payment_method="upi",
        )

        assert expense.id is not None
        assert expense.amount == 450.5
        assert expense.date.date() == date(2024, 6, 12)
        assert expense.payment_method is PaymentMethod.UPI
        assert manager.get_expenses(user.id)[0].category.name == "Groceries"

    @pytest.mark.parametrize("amount", [0, -10, "abc", None])
    def test_invalid_amount_rejected(self, manager, user, amount):
        with pytest.raises(ExpenseError):
            manager.add_expense(user_id=user.id, amount=amount)

    def test_invalid_date_rejected(self, manager, user):
        with pytest.raises(ExpenseError):
            manager.add_expense(user_id=user.id, amount=10, expense_date="12/06/2024")

    def test_get_expenses_filters_and_orders(self, manager, user):
        manager.add_expense(user.id, 100, expense_date=date(2024, 6, 1))
        manager.add_expense(user.id, 200, expense_date=date(2024, 6, 15))
        manager.add_expense(user.id, 300, expense_date=date(2024, 7, 2))

        june = manager.get_expenses(
            user.id,
            start=datetime(2024, 6, 1, tzinfo=UTC),
            end=date(2024, 6, 30),
        )

        assert [expense.amount for expense in june] == [200, 100]
        assert manager.get_latest_expense(user.id).amount == 300
        assert len(manager.get_expenses(user.id, limit=2)) == 2

    def test_expenses_scoped_to_user(self, manager, db_manager, user):
        other = ensure_user_setup(db_manager, "ravi@example.com")
        manager.add_expense(other.id, 75)

        assert manager.get_expenses(user.id) == []
        assert manager.get_latest_expense(user.id) is None

    def test_filter_by_payment_method(self, manager, user):
        manager.add_expense(user.id, 100, payment_method="UPI")
        manager.add_expense(user.id, 200, payment_method="CASH")
        manager.add_expense(user.id, 300, payment_method="upi")

        upi = manager.get_expenses(user.id, payment_method=PaymentMethod.UPI)

        assert sorted(expense.amount for expense in upi) == [100, 300]
        assert len(manager.get_expenses(user.id, payment_method="cash")) == 1

    def test_pagination(self, manager, user):
        for day in range(1, 8):
            manager.add_expense(user.id, day * 10, expense_date=date(2024, 6, day), payment_method="CASH")
        manager.add_expense(user.id, 999, expense_date=date(2024, 6, 8), payment_method="UPI")

        first = manager.get_expenses_page(user.id, page=1, limit=3, payment_method="CASH")
        last = manager.get_expenses_page(user.id, page=3, limit=3, payment_method="CASH")

        assert [expense.amount for expense in first["expenses"]] == [70, 60, 50]
        assert first["pagination"] == {"page": 1, "limit": 3, "total": 7, "total_pages": 3}
        assert [expense.amount for expense in last["expenses"]] == [10]

    def test_pagination_clamps_page_and_limit(self, manager, user):
        manager.add_expense(user.id, 10)

        page = manager.get_expenses_page(user.id, page=0, limit=500)

        assert page["pagination"]["page"] == 1
        assert page["pagination"]["limit"] == 100
        assert len(page["expenses"]) == 1

    def test_update_expense(self, manager, db_manager, user):
        expense = manager.add_expense(user.id, 100, expense_date="2024-06-01", description="Lunch")
        transport = find_category(db_manager, user.id, "Transportation")

        updated = manager.update_expense(
            user.id,
            expense.id,
            amount="125.50",
            expense_date="2024-06-02",
            category_id=transport.id,
            payment_method="wallet",
            merchant="Rapido",
        )

        assert updated.amount == 125.5
        assert updated.date.date() == date(2024, 6, 2)
        assert updated.payment_method is PaymentMethod.WALLET
        assert updated.merchant == "Rapido"
        assert updated.description == "Lunch"
        assert manager.get_expenses(user.id, category_id=transport.id)[0].id == expense.id

    def test_update_expense_is_scoped_to_owner(self, manager, db_manager, user):
        expense = manager.add_expense(user.id, 100)
        other = ensure_user_setup(db_manager, "ravi@example.com")

        assert manager.update_expense(other.id, expense.id, amount=1) is None
        assert manager.get_latest_expense(user.id).amount == 100

    @pytest.mark.parametrize(
        "changes",
        [{"amount": 0}, {"expense_date": "June 2nd"}, {"payment_method": "barter"}, {"user_id": 2}],
    )
    def test_update_expense_validates(self, manager, user, changes):
        expense = manager.add_expense(user.id, 100)

        with pytest.raises(ExpenseError):
            manager.update_expense(user.id, expense.id, **changes)

    def test_delete_expense(self, manager, db_manager, user):
        expense = manager.add_expense(user.id, 60)
        other = ensure_user_setup(db_manager, "ravi@example.com")

        assert manager.delete_expense(other.id, expense.id) is False
        assert manager.delete_expense(user.id, expense.id) is True
        assert manager.get_expenses(user.id) == []


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, None),
        ("", None),
        ("credit card", PaymentMethod.CREDIT_CARD),
        ("NET_BANKING", PaymentMethod.NET_BANKING),
        (PaymentMethod.CASH, PaymentMethod.CASH),
    ],
)
def test_coerce_payment_method(value, expected):
    assert coerce_payment_method(value) is expected


def test_coerce_unknown_payment_method():
    with pytest.raises(ExpenseError):
        coerce_payment_method("barter")
