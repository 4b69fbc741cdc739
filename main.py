"""
Main module for the spendwise command-line interface.

Wires configuration, logging and the database to the expense, budget,
notification and receipt commands. The check-budgets and run-jobs commands
are meant to be invoked periodically by an external scheduler.
"""

import argparse
import logging
import mimetypes
import sys
from pathlib import Path

from budget_monitoring import BudgetMonitor, format_percentage
from budgeting import BudgetManager
from config_manager import load_config
from database_ops import DEFAULT_NOTIFICATION_PREFERENCES, BudgetPeriod, DatabaseManager, PaymentMethod
from exceptions import SpendwiseError
from expenses import ExpenseManager
from notifications import NotificationManager
from receipt_extraction import extract_receipt_fields
from receipt_processing import ReceiptProcessor, StaticTextRecognizer
from user_setup import (
    create_category,
    delete_category,
    ensure_user_setup,
    find_category,
    get_categories,
    update_category,
)
from utils import ensure_data_dir, resolve_connection_string, resolve_log_path

# Configure module-level logger
logger = logging.getLogger(__name__)

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(config: dict) -> None:
    """
    Configure logging based on config settings.

    An unknown level name falls back to INFO with a warning.

    Args:
        config: Configuration dictionary with logging settings
    """
    log_config = config.get("logging", {})
    level_name = str(log_config.get("level", "INFO")).upper()
    log_level = logging.getLevelName(level_name)
    invalid_level = not isinstance(log_level, int)
    if invalid_level:
        log_level = logging.INFO
    log_format = log_config.get("format", DEFAULT_LOG_FORMAT)
    log_file = log_config.get("file")

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        try:
            log_path = resolve_log_path(log_file)
        except OSError as exc:
            raise RuntimeError(f"Unable to prepare log file path '{log_file}': {exc}") from exc
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=handlers,
        force=True
    )
    if invalid_level:
        logger.warning(f"Unknown log level '{level_name}', using INFO")


def _on_off(value: str) -> bool:
    return value == "on"


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all commands."""
    parser = argparse.ArgumentParser(
        description="Personal expense tracking with budget alerts",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # User command
    user_parser = subparsers.add_parser("user", help="Provision users")
    user_subparsers = user_parser.add_subparsers(dest="user_action", help="User actions")
    user_setup = user_subparsers.add_parser("setup", help="Create a user with default categories and preferences")
    user_setup.add_argument("--email", required=True, help="User email")
    user_setup.add_argument("--name", help="Display name")

    # Expense command
    expense_parser = subparsers.add_parser("expense", aliases=["exp"], help="Record and list expenses")
    expense_subparsers = expense_parser.add_subparsers(dest="expense_action", help="Expense actions")
    exp_add = expense_subparsers.add_parser("add", help="Record an expense")
    exp_add.add_argument("--user-id", type=int, required=True, help="Owning user ID")
    exp_add.add_argument("--amount", type=float, required=True, help="Amount spent")
    exp_add.add_argument("--category", help="Category name")
    exp_add.add_argument("--date", help="Expense date (YYYY-MM-DD, default: today)")
    exp_add.add_argument("--description", default="", help="Description")
    exp_add.add_argument("--merchant", help="Merchant name")
    exp_add.add_argument(
        "--payment-method",
        choices=[method.value for method in PaymentMethod],
        help="Payment method"
    )
    exp_list = expense_subparsers.add_parser("list", help="List expenses, newest first")
    exp_list.add_argument("--user-id", type=int, required=True, help="Owning user ID")
    exp_list.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    exp_list.add_argument("--limit", type=int, default=20, help="Page size (default: 20)")
    exp_list.add_argument("--category", help="Only this category")
    exp_list.add_argument(
        "--payment-method",
        choices=[method.value for method in PaymentMethod],
        help="Only this payment method"
    )
    exp_update = expense_subparsers.add_parser("update", help="Change an expense")
    exp_update.add_argument("--user-id", type=int, required=True, help="Owning user ID")
    exp_update.add_argument("--id", type=int, required=True, help="Expense ID")
    exp_update.add_argument("--amount", type=float, help="New amount")
    exp_update.add_argument("--category", help="New category name")
    exp_update.add_argument("--date", help="New date (YYYY-MM-DD)")
    exp_update.add_argument("--description", help="New description")
    exp_update.add_argument("--merchant", help="New merchant")
    exp_update.add_argument(
        "--payment-method",
        choices=[method.value for method in PaymentMethod],
        help="New payment method"
    )
    exp_delete = expense_subparsers.add_parser("delete", help="Delete an expense")
    exp_delete.add_argument("--user-id", type=int, required=True, help="Owning user ID")
    exp_delete.add_argument("--id", type=int, required=True, help="Expense ID")

    # Category command
    cat_parser = subparsers.add_parser("category", aliases=["cat"], help="Manage categories")
    cat_subparsers = cat_parser.add_subparsers(dest="category_action", help="Category actions")
    cat_list = cat_subparsers.add_parser("list", help="List categories")
    cat_list.add_argument("--user-id", type=int, required=True, help="Owning user ID")
    cat_add = cat_subparsers.add_parser("add", help="Create a custom category")
    cat_add.add_argument("--user-id", type=int, required=True, help="Owning user ID")
    cat_add.add_argument("--name", required=True, help="Category name")
    cat_add.add_argument("--icon", help="Display icon")
    cat_add.add_argument("--color", help="Display color (hex)")
    cat_update = cat_subparsers.add_parser("update", help="Rename or restyle a custom category")
    cat_update.add_argument("--user-id", type=int, required=True, help="Owning user ID")
    cat_update.add_argument("--id", type=int, required=True, help="Category ID")
    cat_update.add_argument("--name", help="New name")
    cat_update.add_argument("--icon", help="New icon")
    cat_update.add_argument("--color", help="New color (hex)")
    cat_delete = cat_subparsers.add_parser("delete", help="Delete an unused custom category")
    cat_delete.add_argument("--user-id", type=int, required=True, help="Owning user ID")
    cat_delete.add_argument("--id", type=int, required=True, help="Category ID")

    # Budget command
    budget_parser = subparsers.add_parser("budget", aliases=["bud"], help="Manage budgets")
    budget_subparsers = budget_parser.add_subparsers(dest="budget_action", help="Budget actions")
    bud_create = budget_subparsers.add_parser("create", help="Create a budget")
    bud_create.add_argument("--user-id", type=int, required=True, help="Owning user ID")
    bud_create.add_argument("--amount", type=float, required=True, help="Spending limit")
    bud_create.add_argument(
        "--period",
        choices=[period.value for period in BudgetPeriod],
        default=BudgetPeriod.MONTHLY.value,
        help="Budget period (default: monthly)"
    )
    bud_create.add_argument("--category", help="Category name (omit for an overall budget)")
    bud_list = budget_subparsers.add_parser("list", help="List budgets")
    bud_list.add_argument("--user-id", type=int, required=True, help="Owning user ID")
    bud_list.add_argument("--all", action="store_true", help="Include inactive and ended budgets")
    bud_status = budget_subparsers.add_parser("status", help="Show budget utilization")
    bud_status.add_argument("--user-id", type=int, required=True, help="Owning user ID")
    bud_deactivate = budget_subparsers.add_parser("deactivate", help="Deactivate a budget")
    bud_deactivate.add_argument("--id", type=int, required=True, help="Budget ID")

    # Notifications command
    notif_parser = subparsers.add_parser("notifications", aliases=["notif"], help="Manage notifications")
    notif_subparsers = notif_parser.add_subparsers(dest="notification_action", help="Notification actions")
    notif_list = notif_subparsers.add_parser("list", help="List notifications")
    notif_list.add_argument("--user-id", type=int, required=True, help="Recipient user ID")
    notif_list.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    notif_list.add_argument("--limit", type=int, default=10, help="Page size (default: 10)")
    notif_list.add_argument("--unread", action="store_true", help="Only unread notifications")
    notif_read = notif_subparsers.add_parser("read", help="Mark notifications as read")
    notif_read.add_argument("--user-id", type=int, required=True, help="Recipient user ID")
    read_target = notif_read.add_mutually_exclusive_group(required=True)
    read_target.add_argument("--ids", type=int, nargs="+", help="Notification IDs")
    read_target.add_argument("--all", action="store_true", help="Mark every notification read")
    notif_delete = notif_subparsers.add_parser("delete", help="Delete notifications")
    notif_delete.add_argument("--user-id", type=int, required=True, help="Recipient user ID")
    delete_target = notif_delete.add_mutually_exclusive_group(required=True)
    delete_target.add_argument("--id", type=int, help="Notification ID")
    delete_target.add_argument("--all", action="store_true", help="Delete every notification")

    # Preferences command
    pref_parser = subparsers.add_parser("preferences", aliases=["prefs"], help="Notification preferences")
    pref_subparsers = pref_parser.add_subparsers(dest="preference_action", help="Preference actions")
    pref_show = pref_subparsers.add_parser("show", help="Show preferences")
    pref_show.add_argument("--user-id", type=int, required=True, help="User ID")
    pref_set = pref_subparsers.add_parser("set", help="Change preferences")
    pref_set.add_argument("--user-id", type=int, required=True, help="User ID")
    for key, default in DEFAULT_NOTIFICATION_PREFERENCES.items():
        flag = "--" + key.replace("_", "-")
        if isinstance(default, bool):
            pref_set.add_argument(flag, dest=key, choices=["on", "off"], help=f"Turn {key} on or off")
        else:
            pref_set.add_argument(flag, dest=key, type=int, help=f"New {key} value")

    # Monitoring commands
    check_parser = subparsers.add_parser("check-budgets", help="Run the budget monitoring pass")
    check_parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit non-zero if any budget failed to check"
    )
    subparsers.add_parser("run-jobs", help="Run budget checks, expense reminders and weekly summaries")

    # Receipt command
    receipt_parser = subparsers.add_parser("receipt", help="Receipt extraction")
    receipt_subparsers = receipt_parser.add_subparsers(dest="receipt_action", help="Receipt actions")
    rec_extract = receipt_subparsers.add_parser("extract", help="Extract fields from recognized receipt text")
    rec_extract.add_argument("--file", required=True, help="Text file with recognized receipt text")
    rec_scan = receipt_subparsers.add_parser("scan", help="Process a receipt image with pre-recognized text")
    rec_scan.add_argument("--user-id", type=int, required=True, help="Uploading user ID")
    rec_scan.add_argument("--image", required=True, help="Receipt image file")
    rec_scan.add_argument("--text-file", required=True, help="Text file with the recognized receipt text")
    rec_scan.add_argument("--save", action="store_true", help="Record an expense when an amount was found")

    return parser


def main(argv=None):
    """Main entry point for the application."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Handle case where no command is provided
    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Load configuration
    try:
        config = load_config(Path(args.config))
    except SpendwiseError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    # Ensure data directory exists before logging/database work
    try:
        ensure_data_dir(config)
    except OSError as exc:
        print(f"Failed to prepare data directory: {exc}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    # Receipt extraction needs no database
    if args.command == "receipt" and args.receipt_action == "extract":
        handle_receipt_extract_command(args, config)
        return

    connection_string = resolve_connection_string(config)
    try:
        db_manager = DatabaseManager(connection_string)
        db_manager.create_tables()
    except SpendwiseError as e:
        logger.error(f"Failed to open database: {e}")
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    handlers = {
        "user": handle_user_command,
        "expense": handle_expense_command,
        "exp": handle_expense_command,
        "category": handle_category_command,
        "cat": handle_category_command,
        "budget": handle_budget_command,
        "bud": handle_budget_command,
        "notifications": handle_notifications_command,
        "notif": handle_notifications_command,
        "preferences": handle_preferences_command,
        "prefs": handle_preferences_command,
        "check-budgets": handle_check_budgets_command,
        "run-jobs": handle_run_jobs_command,
        "receipt": handle_receipt_scan_command,
    }

    try:
        handlers[args.command](args, config, db_manager)
    except SpendwiseError as e:
        logger.error(f"{args.command} command failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        db_manager.close()


def _require_action(action, name: str) -> None:
    if not action:
        print(f"Missing {name} action", file=sys.stderr)
        sys.exit(1)


def _resolve_category_id(db_manager: DatabaseManager, user_id: int, name):
    if not name:
        return None
    category = find_category(db_manager, user_id, name)
    if category is None:
        print(f"Unknown category '{name}' for user {user_id}", file=sys.stderr)
        sys.exit(1)
    return category.id


def handle_user_command(args: argparse.Namespace, config: dict, db_manager: DatabaseManager) -> None:
    """Handle user provisioning."""
    _require_action(args.user_action, "user")
    user = ensure_user_setup(db_manager, args.email, args.name)
    print(f"User {user.id} ready: {user.email}")


def handle_expense_command(args: argparse.Namespace, config: dict, db_manager: DatabaseManager) -> None:
    """
    Handle expense commands.

    Args:
        args: Parsed command-line arguments
        config: Configuration dictionary
        db_manager: DatabaseManager instance
    """
    _require_action(args.expense_action, "expense")
    expense_manager = ExpenseManager(db_manager)
    symbol = config.get("currency_symbol", "₹")

    if args.expense_action == "add":
        expense = expense_manager.add_expense(
            user_id=args.user_id,
            amount=args.amount,
            expense_date=args.date,
            category_id=_resolve_category_id(db_manager, args.user_id, args.category),
            description=args.description,
            merchant=args.merchant,
            payment_method=args.payment_method,
        )
        print(f"Recorded expense {expense.id}: {symbol}{expense.amount:,.2f}")

    elif args.expense_action == "list":
        page = expense_manager.get_expenses_page(
            args.user_id,
            page=args.page,
            limit=args.limit,
            category_id=_resolve_category_id(db_manager, args.user_id, args.category),
            payment_method=args.payment_method,
        )
        expenses = page["expenses"]
        if not expenses:
            print("No expenses found.")
            return
        pagination = page["pagination"]
        print("\n" + "=" * 90)
        print(f"EXPENSES (page {pagination['page']} of {pagination['total_pages']}, {pagination['total']} total)")
        print("=" * 90)
        print(f"{'ID':<6} {'Date':<12} {'Category':<20} {'Amount':>12}  {'Description'}")
        print("-" * 90)
        for expense in expenses:
            category = expense.category.name if expense.category else "Uncategorized"
            print(
                f"{expense.id:<6} {expense.date.date().isoformat():<12} {category:<20} "
                f"{symbol}{expense.amount:>11,.2f}  {expense.description}"
            )
        print("=" * 90)

    elif args.expense_action == "update":
        changes = {
            key: value
            for key, value in (
                ("amount", args.amount),
                ("expense_date", args.date),
                ("description", args.description),
                ("merchant", args.merchant),
                ("payment_method", args.payment_method),
            )
            if value is not None
        }
        if args.category:
            changes["category_id"] = _resolve_category_id(db_manager, args.user_id, args.category)
        if not changes:
            print("No expense changes given", file=sys.stderr)
            sys.exit(1)
        expense = expense_manager.update_expense(args.user_id, args.id, **changes)
        if expense is None:
            print(f"Expense {args.id} not found", file=sys.stderr)
            sys.exit(1)
        print(f"Updated expense {expense.id}: {symbol}{expense.amount:,.2f}")

    elif args.expense_action == "delete":
        if expense_manager.delete_expense(args.user_id, args.id):
            print(f"Deleted expense {args.id}")
        else:
            print(f"Expense {args.id} not found", file=sys.stderr)
            sys.exit(1)


def handle_category_command(args: argparse.Namespace, config: dict, db_manager: DatabaseManager) -> None:
    """Handle category listing and custom category management."""
    _require_action(args.category_action, "category")

    if args.category_action == "list":
        categories = get_categories(db_manager, args.user_id)
        if not categories:
            print("No categories found.")
            return
        print(f"\n{'ID':<6} {'Name':<30} {'Color':<10} {'Type'}")
        print("-" * 60)
        for category in categories:
            label = f"{category.icon or ''} {category.name}".strip()
            kind = "default" if category.is_default else "custom"
            print(f"{category.id:<6} {label:<30} {category.color or '':<10} {kind}")

    elif args.category_action == "add":
        category = create_category(db_manager, args.user_id, args.name, icon=args.icon, color=args.color)
        print(f"Created category {category.id}: {category.name}")

    elif args.category_action == "update":
        category = update_category(
            db_manager, args.user_id, args.id, name=args.name, icon=args.icon, color=args.color
        )
        if category is None:
            print(f"Category {args.id} not found", file=sys.stderr)
            sys.exit(1)
        print(f"Updated category {category.id}: {category.name}")

    elif args.category_action == "delete":
        if delete_category(db_manager, args.user_id, args.id):
            print(f"Deleted category {args.id}")
        else:
            print(f"Category {args.id} not found", file=sys.stderr)
            sys.exit(1)


def handle_budget_command(args: argparse.Namespace, config: dict, db_manager: DatabaseManager) -> None:
    """
    Handle budget management commands.

    Args:
        args: Parsed command-line arguments
        config: Configuration dictionary
        db_manager: DatabaseManager instance
    """
    _require_action(args.budget_action, "budget")
    budget_manager = BudgetManager(db_manager)
    symbol = config.get("currency_symbol", "₹")

    if args.budget_action == "create":
        budget = budget_manager.create_budget(
            user_id=args.user_id,
            amount=args.amount,
            period=args.period,
            category_id=_resolve_category_id(db_manager, args.user_id, args.category),
        )
        print(
            f"Created {budget.period.value} budget {budget.id} for '{budget.category_name}': "
            f"{symbol}{budget.amount:,.2f} ({budget.start_date.date()} to {budget.end_date.date()})"
        )

    elif args.budget_action == "list":
        budgets = budget_manager.get_budgets(args.user_id, active_only=not args.all)
        if not budgets:
            print("No budgets found.")
            return
        print("\n" + "=" * 90)
        print("BUDGETS")
        print("=" * 90)
        print(f"{'ID':<5} {'Category':<20} {'Period':<10} {'Amount':>14}  {'Window':<26} {'Active'}")
        print("-" * 90)
        for bud in budgets:
            window = f"{bud.start_date.date()} to {bud.end_date.date()}"
            print(
                f"{bud.id:<5} {bud.category_name:<20} {bud.period.value:<10} "
                f"{symbol}{bud.amount:>13,.2f}  {window:<26} {'yes' if bud.is_active else 'no'}"
            )
        print("=" * 90)

    elif args.budget_action == "status":
        threshold = NotificationManager(db_manager).get_alert_preferences(args.user_id).budget_threshold
        statuses = budget_manager.get_budgets_with_status(args.user_id, threshold=threshold)
        if not statuses:
            print("No active budgets found.")
            return
        print("\n" + "=" * 90)
        print("BUDGET STATUS")
        print("=" * 90)
        print(f"{'Category':<20} {'Budget':>14} {'Spent':>14} {'Remaining':>14} {'Used %':>9}  {'Alert'}")
        print("-" * 90)
        for bud, status in statuses:
            print(
                f"{bud.category_name:<20} {symbol}{status.amount:>13,.2f} {symbol}{status.spent:>13,.2f} "
                f"{symbol}{status.remaining:>13,.2f} {status.percentage:>8.1f}%  {status.tier.value}"
            )
        print("=" * 90)

    elif args.budget_action == "deactivate":
        if budget_manager.deactivate_budget(args.id):
            print(f"Deactivated budget {args.id}")
        else:
            print(f"Budget {args.id} not found", file=sys.stderr)
            sys.exit(1)


def handle_notifications_command(args: argparse.Namespace, config: dict, db_manager: DatabaseManager) -> None:
    """Handle notification listing, read-marking and deletion."""
    _require_action(args.notification_action, "notifications")
    manager = NotificationManager(db_manager)

    if args.notification_action == "list":
        page = manager.get_notifications(
            args.user_id,
            page=args.page,
            limit=args.limit,
            unread_only=args.unread
        )
        pagination = page["pagination"]
        print(
            f"\nNotifications (page {pagination['page']} of {max(pagination['total_pages'], 1)}, "
            f"{page['unread_count']} unread)"
        )
        print("-" * 90)
        for notification in page["notifications"]:
            marker = " " if notification.is_read else "*"
            print(
                f"{marker} [{notification.id}] {notification.created_at:%Y-%m-%d %H:%M} "
                f"{notification.priority.value:<7} {notification.title}"
            )
            print(f"    {notification.message}")
        if not page["notifications"]:
            print("No notifications.")

    elif args.notification_action == "read":
        if args.all:
            count = manager.mark_all_read(args.user_id)
        else:
            count = manager.mark_as_read(args.user_id, args.ids)
        print(f"Marked {count} notification(s) as read")

    elif args.notification_action == "delete":
        if args.all:
            count = manager.delete_all_notifications(args.user_id)
            print(f"Deleted {count} notification(s)")
        elif manager.delete_notification(args.user_id, args.id):
            print(f"Deleted notification {args.id}")
        else:
            print(f"Notification {args.id} not found", file=sys.stderr)
            sys.exit(1)


def handle_preferences_command(args: argparse.Namespace, config: dict, db_manager: DatabaseManager) -> None:
    """Handle notification preference commands."""
    _require_action(args.preference_action, "preferences")
    manager = NotificationManager(db_manager)

    if args.preference_action == "set":
        changes = {}
        for key, default in DEFAULT_NOTIFICATION_PREFERENCES.items():
            value = getattr(args, key)
            if value is None:
                continue
            changes[key] = _on_off(value) if isinstance(default, bool) else value
        if not changes:
            print("No preference changes given", file=sys.stderr)
            sys.exit(1)
        preference = manager.update_preferences(args.user_id, **changes)
    else:
        preference = manager.get_preferences(args.user_id)

    print(f"\nNotification preferences for user {args.user_id}")
    print("-" * 40)
    for key, value in preference.to_dict().items():
        shown = ("on" if value else "off") if isinstance(value, bool) else value
        print(f"{key:<20} {shown}")


def handle_check_budgets_command(args: argparse.Namespace, config: dict, db_manager: DatabaseManager) -> None:
    """
    Run the budget monitoring pass.

    With --strict, exits with status 2 when any budget failed to check.
    """
    monitor = BudgetMonitor(db_manager, config)
    result = monitor.check_budgets_and_notify()

    print(
        f"Checked {len(result.evaluations)} budget(s): {len(result.alerts)} alert(s) sent, "
        f"{len(result.skipped)} skipped, {len(result.errors)} error(s)"
    )
    for alert in result.alerts:
        print(f"  {alert.tier.value:<8} {alert.category_name}: {format_percentage(alert.percentage)} used")
    for failure in result.errors:
        print(f"  FAILED {failure}", file=sys.stderr)

    if args.strict and result.errors:
        sys.exit(2)


def handle_run_jobs_command(args: argparse.Namespace, config: dict, db_manager: DatabaseManager) -> None:
    """Run every scheduled job once."""
    summary = BudgetMonitor(db_manager, config).run_scheduled_jobs()
    print(
        f"Jobs finished at {summary['timestamp']}: {summary['budget_alerts']} budget alert(s), "
        f"{summary['expense_reminders']} reminder(s), {summary['weekly_summaries']} weekly summary(ies)"
    )
    for failure in summary["budget_errors"]:
        print(f"  FAILED {failure}", file=sys.stderr)
    if not summary["success"]:
        sys.exit(2)


def _read_text(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        print(f"Cannot read {path}: {e}", file=sys.stderr)
        sys.exit(1)


def _print_extraction(data, symbol: str) -> None:
    fields = data.to_dict()
    if not fields:
        print("No fields could be extracted; enter the expense manually.")
        return
    print("\nExtracted receipt fields")
    print("-" * 40)
    if data.amount is not None:
        print(f"{'amount':<16} {symbol}{data.amount:,.2f}")
    for key in ("date", "merchant", "payment_method", "description"):
        if key in fields:
            print(f"{key:<16} {fields[key]}")
    print(f"{'confidence':<16} {data.confidence.overall:.2f}")


def handle_receipt_extract_command(args: argparse.Namespace, config: dict) -> None:
    """Extract fields from a recognized-text file without touching the database."""
    data = extract_receipt_fields(_read_text(args.file))
    _print_extraction(data, config.get("currency_symbol", "₹"))


def handle_receipt_scan_command(args: argparse.Namespace, config: dict, db_manager: DatabaseManager) -> None:
    """Process a receipt image, store it and optionally record the expense."""
    _require_action(args.receipt_action, "receipt")
    image_path = Path(args.image)
    try:
        image_bytes = image_path.read_bytes()
    except OSError as e:
        print(f"Cannot read {image_path}: {e}", file=sys.stderr)
        sys.exit(1)
    mime_type = mimetypes.guess_type(image_path.name)[0] or "application/octet-stream"

    processor = ReceiptProcessor.from_config(StaticTextRecognizer(_read_text(args.text_file)), config)
    result = processor.process(image_bytes, image_path.name, mime_type, args.user_id)

    print(f"Stored receipt at {result.image_url}")
    _print_extraction(result.extracted_data, config.get("currency_symbol", "₹"))
    if result.needs_manual_entry:
        print("Some fields are missing; complete them when recording the expense.")

    if args.save:
        draft = result.to_expense_draft()
        if "amount" not in draft:
            print("No amount found; expense not recorded.", file=sys.stderr)
            sys.exit(1)
        expense = ExpenseManager(db_manager).add_expense(user_id=args.user_id, **draft)
        print(f"Recorded expense {expense.id}")


if __name__ == "__main__":
    main()
