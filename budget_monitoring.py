"""
Budget monitoring and scheduled notification jobs.

The monitoring pass evaluates every active budget, applies the owner's alert
preferences, suppresses repeats of recent alerts and emits WARNING/EXCEEDED
notifications. Failures are isolated per budget and reported with the
results. The scheduled jobs add expense reminders and weekly summaries.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from analytics import SpendingAnalytics
from budgeting import (
    DEFAULT_BUDGET_THRESHOLD,
    AlertTier,
    BudgetEvaluation,
    BudgetManager,
    evaluate_budget,
)
from config_manager import get_monitoring_settings
from database_ops import (
    DatabaseManager,
    NotificationPriority,
    NotificationType,
    ensure_utc,
    utc_now,
)
from exceptions import (
    BudgetMonitoringError,
    LookupFailureError,
    NotificationCreationError,
    SpendwiseError,
)
from expenses import ExpenseManager
from notifications import (
    DEDUP_WINDOW_HOURS,
    AlertPreferences,
    NotificationManager,
    notification_type_for_tier,
    should_emit,
)

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY_SYMBOL = "₹"

SpendingLookup = Callable[[Any], float]
PreferencesLookup = Callable[[Any], Optional[Any]]
NotificationSink = Callable[[Dict[str, Any]], Any]
NotificationLookup = Callable[[Any, NotificationType], Iterable[Any]]


@dataclass(frozen=True)
class BudgetAlert:
    """An alert emitted by the monitoring pass."""
    budget_id: Any
    user_id: Any
    category_name: str
    spent: float
    budget: float
    percentage: float
    tier: AlertTier
    notification_id: Optional[Any] = None


@dataclass(frozen=True)
class BudgetCheckFailure:
    """A budget whose check failed, with the error that stopped it."""
    budget_id: Any
    user_id: Any
    error: Exception

    def __str__(self) -> str:
        return f"budget {self.budget_id}: {type(self.error).__name__}: {self.error}"


@dataclass
class MonitoringResult:
    """
    Outcome of one monitoring pass.

    Attributes:
        alerts: Alerts actually emitted (after deduplication)
        evaluations: Evaluation per budget ID for every budget that was evaluated
        skipped: IDs of budgets skipped (inactive, ended, or alerts disabled)
        errors: Per-budget failures
    """
    alerts: List[BudgetAlert] = field(default_factory=list)
    evaluations: Dict[Any, BudgetEvaluation] = field(default_factory=dict)
    skipped: List[Any] = field(default_factory=list)
    errors: List[BudgetCheckFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        """
        Raise if any budget failed during the pass.

        Raises:
            BudgetMonitoringError: Carrying the failures in details
        """
        if self.errors:
            raise BudgetMonitoringError(
                f"Budget check failed for {len(self.errors)} budget(s)",
                details={"failures": [str(failure) for failure in self.errors]},
                original_error=self.errors[0].error
            )


def _format_money(value: float, symbol: str) -> str:
    return f"{symbol}{value:,.2f}"


def format_percentage(percentage: float) -> str:
    """Render a utilization percentage rounded down, so 99.6% reads as 99%."""
    return f"{math.floor(percentage)}%"


def build_alert_notification(
    budget: Any,
    evaluation: BudgetEvaluation,
    currency_symbol: str = DEFAULT_CURRENCY_SYMBOL
) -> Dict[str, Any]:
    """
    Build the notification payload for a WARNING or EXCEEDED evaluation.

    The keys match NotificationManager.create_notification's arguments.

    Args:
        budget: Budget that triggered the alert
        evaluation: Its evaluation (tier WARNING or EXCEEDED)
        currency_symbol: Symbol prefixed to amounts

    Returns:
        Notification payload dictionary
    """
    notification_type = notification_type_for_tier(evaluation.tier)
    name = getattr(budget, "category_name", None) or "Overall"
    spent = _format_money(evaluation.spent, currency_symbol)
    amount = _format_money(evaluation.amount, currency_symbol)
    percentage = format_percentage(evaluation.percentage)

    if evaluation.tier is AlertTier.EXCEEDED:
        overage = evaluation.spent - evaluation.amount
        if overage > 0:
            opening = (
                f"You've exceeded your {name} budget by "
                f"{_format_money(overage, currency_symbol)}!"
            )
        else:
            opening = f"You've reached your {name} budget!"
        title = f"Budget Exceeded: {name}"
        message = f"{opening} Spent {spent} of {amount} ({percentage})"
        priority = NotificationPriority.HIGH
    else:
        title = f"Budget Alert: {name}"
        message = (
            f"You've used {percentage} of your {name} budget. "
            f"{_format_money(evaluation.remaining, currency_symbol)} remaining."
        )
        priority = NotificationPriority.MEDIUM

    return {
        "user_id": budget.user_id,
        "notification_type": notification_type,
        "priority": priority,
        "title": title,
        "message": message,
        "related_id": budget.id,
        "related_type": "budget",
        "metadata": {
            "category_name": name,
            "spent": evaluation.spent,
            "budget": evaluation.amount,
            "remaining": evaluation.remaining,
            "percentage": evaluation.percentage,
        },
    }


def _is_monitored(budget: Any, reference: datetime) -> bool:
    if not getattr(budget, "is_active", True):
        return False
    end_date = getattr(budget, "end_date", None)
    return end_date is None or ensure_utc(end_date) >= reference


def _lookup(description: str, func: Callable, *args: Any) -> Any:
    """Call a collaborator lookup, converting unexpected failures to LookupFailureError."""
    try:
        return func(*args)
    except SpendwiseError:
        raise
    except Exception as e:
        raise LookupFailureError(f"{description} failed", original_error=e) from e


def _check_budget(
    budget: Any,
    result: MonitoringResult,
    spending_lookup: SpendingLookup,
    preferences_lookup: PreferencesLookup,
    notification_sink: NotificationSink,
    notification_lookup: NotificationLookup,
    window_hours: float,
    default_threshold: float,
    reference: datetime,
    currency_symbol: str,
) -> Optional[BudgetAlert]:
    preferences = _lookup("Preference lookup", preferences_lookup, budget.user_id) or AlertPreferences()
    if not preferences.budget_alerts:
        logger.debug(f"Budget alerts disabled for user {budget.user_id}; skipping budget {budget.id}")
        result.skipped.append(budget.id)
        return None
    threshold = preferences.budget_threshold or default_threshold

    spent = _lookup("Spending lookup", spending_lookup, budget)
    evaluation = evaluate_budget(budget, spent, threshold)
    result.evaluations[budget.id] = evaluation

    if evaluation.tier is AlertTier.NONE:
        return None

    notification_type = notification_type_for_tier(evaluation.tier)
    existing = _lookup("Notification lookup", notification_lookup, budget.id, notification_type)
    if not should_emit(existing, notification_type, budget.id, window_hours, reference):
        logger.debug(f"Recent {notification_type.value} exists for budget {budget.id}; not re-sending")
        return None

    payload = build_alert_notification(budget, evaluation, currency_symbol)
    try:
        created = notification_sink(payload)
    except NotificationCreationError:
        raise
    except Exception as e:
        raise NotificationCreationError(
            "Failed to create budget notification",
            details={"budget_id": budget.id},
            original_error=e
        ) from e

    return BudgetAlert(
        budget_id=budget.id,
        user_id=budget.user_id,
        category_name=payload["metadata"]["category_name"],
        spent=evaluation.spent,
        budget=evaluation.amount,
        percentage=evaluation.percentage,
        tier=evaluation.tier,
        notification_id=getattr(created, "id", None),
    )


def run_budget_check(
    active_budgets: Iterable[Any],
    spending_lookup: SpendingLookup,
    preferences_lookup: PreferencesLookup,
    notification_sink: NotificationSink,
    notification_lookup: NotificationLookup,
    window_hours: float = DEDUP_WINDOW_HOURS,
    default_threshold: float = DEFAULT_BUDGET_THRESHOLD,
    now: Optional[datetime] = None,
    currency_symbol: str = DEFAULT_CURRENCY_SYMBOL,
) -> MonitoringResult:
    """
    Run one monitoring pass over the given budgets.

    Budgets are checked sequentially and independently: an error for one
    budget is recorded in the result and the pass moves on to the next.

    Args:
        active_budgets: Budgets to check (inactive or ended ones are skipped)
        spending_lookup: budget -> total spent in its window
        preferences_lookup: user_id -> object with budget_alerts and
            budget_threshold, or None for the defaults
        notification_sink: payload dict -> created notification
        notification_lookup: (related_id, NotificationType) -> recent notifications
        window_hours: Dedup lookback window in hours
        default_threshold: WARNING threshold when the user has none set
        now: Reference time (defaults to now)
        currency_symbol: Symbol used in notification messages

    Returns:
        MonitoringResult with emitted alerts, evaluations, skips and errors
    """
    reference = ensure_utc(now) if now else utc_now()
    result = MonitoringResult()

    for budget in active_budgets:
        budget_id = getattr(budget, "id", None)
        if not _is_monitored(budget, reference):
            logger.debug(f"Budget {budget_id} is inactive or ended; skipping")
            result.skipped.append(budget_id)
            continue

        try:
            alert = _check_budget(
                budget,
                result,
                spending_lookup,
                preferences_lookup,
                notification_sink,
                notification_lookup,
                window_hours,
                default_threshold,
                reference,
                currency_symbol,
            )
        except Exception as e:
            failure = BudgetCheckFailure(budget_id, getattr(budget, "user_id", None), e)
            logger.error(f"Budget check failed for {failure}")
            result.errors.append(failure)
            continue

        if alert is not None:
            logger.info(
                f"Emitted {alert.tier.value} alert for budget {alert.budget_id} "
                f"({alert.percentage:.1f}% used)"
            )
            result.alerts.append(alert)

    logger.info(
        f"Budget check complete: {len(result.evaluations)} evaluated, {len(result.alerts)} alerts, "
        f"{len(result.skipped)} skipped, {len(result.errors)} errors"
    )
    return result


class BudgetMonitor:
    """
    Wires the monitoring pass and the scheduled jobs to the database.

    Intended to be invoked periodically by an external scheduler.
    """

    def __init__(self, db_manager: DatabaseManager, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the budget monitor.

        Args:
            db_manager: DatabaseManager instance
            config: Optional loaded configuration (monitoring policy, currency)
        """
        self.db_manager = db_manager
        self.settings = get_monitoring_settings(config)
        self.currency_symbol = (config or {}).get("currency_symbol", DEFAULT_CURRENCY_SYMBOL)
        self.budget_manager = BudgetManager(db_manager)
        self.notification_manager = NotificationManager(db_manager)
        self.expense_manager = ExpenseManager(db_manager)
        self.analytics = SpendingAnalytics(db_manager)
        logger.info("Budget monitor initialized")

    def check_budgets_and_notify(self, now: Optional[datetime] = None) -> MonitoringResult:
        """
        Run the monitoring pass over every active budget.

        Args:
            now: Reference time (defaults to now)

        Returns:
            MonitoringResult
        """
        reference = ensure_utc(now) if now else utc_now()
        window_hours = float(self.settings["dedup_window_hours"])
        since = reference - timedelta(hours=window_hours)

        def notification_lookup(related_id: Any, notification_type: NotificationType) -> List[Any]:
            return self.notification_manager.find_recent_notifications(related_id, notification_type, since)

        def notification_sink(payload: Dict[str, Any]) -> Any:
            return self.notification_manager.create_notification(**payload, created_at=reference)

        budgets = self.budget_manager.get_active_budgets(reference)
        return run_budget_check(
            budgets,
            spending_lookup=self.budget_manager.calculate_budget_spending,
            preferences_lookup=self.notification_manager.get_alert_preferences,
            notification_sink=notification_sink,
            notification_lookup=notification_lookup,
            window_hours=window_hours,
            default_threshold=self.settings["default_budget_threshold"],
            now=reference,
            currency_symbol=self.currency_symbol,
        )

    def check_expense_reminders(self, now: Optional[datetime] = None) -> int:
        """
        Remind users who have not recorded an expense for a while.

        A user gets a reminder when reminders are enabled, their latest expense
        is at least reminder_inactivity_days old and no reminder was sent in
        the last 24 hours. Users without any expense are not reminded.

        Args:
            now: Reference time (defaults to now)

        Returns:
            Number of reminders created
        """
        reference = ensure_utc(now) if now else utc_now()
        inactivity_days = int(self.settings["reminder_inactivity_days"])
        sent = 0

        for user in self.db_manager.get_all_users():
            preference = user.notification_preference
            if preference is None or not preference.expense_reminders:
                continue
            try:
                latest = self.expense_manager.get_latest_expense(user.id)
                if latest is None:
                    continue

                days_since = (reference - ensure_utc(latest.date)).days
                if days_since < inactivity_days:
                    continue

                if self.notification_manager.has_recent_user_notification(
                    user.id, NotificationType.EXPENSE_REMINDER, reference - timedelta(hours=24)
                ):
                    continue

                self.notification_manager.create_notification(
                    user_id=user.id,
                    notification_type=NotificationType.EXPENSE_REMINDER,
                    priority=NotificationPriority.LOW,
                    title="Track Your Expenses",
                    message=(
                        f"You haven't tracked any expenses in {days_since} days. Stay on top of your "
                        f"spending by adding your recent transactions."
                    ),
                    metadata={"days_since_last_expense": days_since},
                    created_at=reference,
                )
                sent += 1
            except SpendwiseError as e:
                logger.error(f"Expense reminder failed for user {user.id}: {e}")

        logger.info(f"Sent {sent} expense reminders")
        return sent

    def generate_weekly_summary(self, user_id: int, now: Optional[datetime] = None):
        """
        Create a weekly spending summary notification for a user.

        Args:
            user_id: Recipient
            now: End of the seven-day window (defaults to now)

        Returns:
            Created Notification
        """
        reference = ensure_utc(now) if now else utc_now()
        summary = self.analytics.get_period_summary(user_id, reference - timedelta(days=7), reference)

        symbol = self.currency_symbol
        top = ", ".join(
            f"{category['name']} ({_format_money(category['amount'], symbol)})"
            for category in summary["top_categories"]
        ) or "none"
        message = (
            f"You spent {_format_money(summary['total_spent'], symbol)} across "
            f"{summary['transaction_count']} transactions this week. Top categories: {top}"
        )

        return self.notification_manager.create_notification(
            user_id=user_id,
            notification_type=NotificationType.WEEKLY_SUMMARY,
            priority=NotificationPriority.LOW,
            title="Your Weekly Spending Summary",
            message=message,
            metadata=summary,
            created_at=reference,
        )

    def run_scheduled_jobs(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Run every periodic job once.

        Budget monitoring and expense reminders run on every invocation;
        weekly summaries run only on the configured weekday for users who
        enabled weekly reports and got no summary in the last 24 hours.

        Args:
            now: Reference time (defaults to now)

        Returns:
            Dictionary summarizing what ran
        """
        reference = ensure_utc(now) if now else utc_now()

        monitoring = self.check_budgets_and_notify(reference)
        reminders = self.check_expense_reminders(reference)

        summaries = 0
        if reference.weekday() == int(self.settings["weekly_summary_weekday"]):
            for user in self.db_manager.get_all_users():
                preference = user.notification_preference
                if preference is None or not preference.weekly_report:
                    continue
                try:
                    if self.notification_manager.has_recent_user_notification(
                        user.id, NotificationType.WEEKLY_SUMMARY, reference - timedelta(hours=24)
                    ):
                        continue
                    self.generate_weekly_summary(user.id, reference)
                    summaries += 1
                except SpendwiseError as e:
                    logger.error(f"Weekly summary failed for user {user.id}: {e}")

        logger.info(
            f"Scheduled jobs finished: {len(monitoring.alerts)} budget alerts, "
            f"{reminders} reminders, {summaries} weekly summaries"
        )
        return {
            "success": monitoring.ok,
            "timestamp": reference.isoformat(),
            "budget_alerts": len(monitoring.alerts),
            "budget_errors": [str(failure) for failure in monitoring.errors],
            "expense_reminders": reminders,
            "weekly_summaries": summaries,
        }
