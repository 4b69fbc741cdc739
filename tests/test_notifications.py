"""
Unit tests for notification storage, preferences and alert deduplication.
"""

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from budgeting import AlertTier
from database_ops import NotificationPriority, NotificationType
from exceptions import NotificationCreationError, NotificationError, PreferenceError
from notifications import (
    AlertPreferences,
    NotificationManager,
    notification_type_for_tier,
    should_emit,
)

NOW = datetime(2024, 6, 20, 12, 0, tzinfo=UTC)


def _existing(kind, related_id, hours_ago):
    return SimpleNamespace(id=99, type=kind, related_id=related_id, created_at=NOW - timedelta(hours=hours_ago))


class TestShouldEmit:
    """Tests for the dedup decision."""

    def test_emits_when_nothing_exists(self):
        assert should_emit([], NotificationType.BUDGET_WARNING, 7, now=NOW) is True

    def test_suppresses_same_type_inside_window(self):
        existing = [_existing(NotificationType.BUDGET_WARNING, "7", hours_ago=23)]

        assert should_emit(existing, NotificationType.BUDGET_WARNING, 7, now=NOW) is False

    def test_window_edge_is_inclusive(self):
        existing = [_existing(NotificationType.BUDGET_WARNING, 7, hours_ago=24)]

        assert should_emit(existing, AlertTier.WARNING, 7, now=NOW) is False

    def test_emits_after_window_passes(self):
        existing = [_existing(NotificationType.BUDGET_WARNING, 7, hours_ago=25)]

        assert should_emit(existing, NotificationType.BUDGET_WARNING, 7, now=NOW) is True

    def test_escalation_to_exceeded_is_not_suppressed(self):
        existing = [_existing(NotificationType.BUDGET_WARNING, 7, hours_ago=1)]

        assert should_emit(existing, NotificationType.BUDGET_EXCEEDED, 7, now=NOW) is True

    def test_other_budget_does_not_suppress(self):
        existing = [_existing(NotificationType.BUDGET_EXCEEDED, 8, hours_ago=1)]

        assert should_emit(existing, AlertTier.EXCEEDED, 7, now=NOW) is True

    def test_custom_window(self):
        existing = [_existing(NotificationType.BUDGET_WARNING, 7, hours_ago=5)]

        assert should_emit(existing, "BUDGET_WARNING", 7, window_hours=4, now=NOW) is True
        assert should_emit(existing, "BUDGET_WARNING", 7, window_hours=6, now=NOW) is False

    def test_naive_created_at_treated_as_utc(self):
        naive = SimpleNamespace(
            type="BUDGET_WARNING", related_id="7", created_at=datetime(2024, 6, 20, 10, 0)
        )

        assert should_emit([naive], NotificationType.BUDGET_WARNING, 7, now=NOW) is False

    def test_unknown_existing_types_are_ignored(self):
        existing = [SimpleNamespace(type="carrier_pigeon", related_id=7, created_at=NOW)]

        assert should_emit(existing, NotificationType.BUDGET_WARNING, 7, now=NOW) is True

    @pytest.mark.parametrize("window", [0, -1])
    def test_non_positive_window_raises(self, window):
        with pytest.raises(ValueError):
            should_emit([], NotificationType.BUDGET_WARNING, 7, window_hours=window, now=NOW)


def test_notification_type_for_tier():
    assert notification_type_for_tier(AlertTier.WARNING) is NotificationType.BUDGET_WARNING
    assert notification_type_for_tier(AlertTier.EXCEEDED) is NotificationType.BUDGET_EXCEEDED
    with pytest.raises(ValueError):
        notification_type_for_tier(AlertTier.NONE)


class TestNotificationManager:
    """Database-backed notification tests."""

    @pytest.fixture()
    def manager(self, db_manager):
        return NotificationManager(db_manager)

    def _create(self, manager, user_id, title="Hello", **kwargs):
        kwargs.setdefault("notification_type", NotificationType.SYSTEM)
        return manager.create_notification(user_id=user_id, title=title, message=f"{title} message", **kwargs)

    def test_create_notification_assigns_id_and_timestamp(self, manager, user):
        notification = self._create(
            manager,
            user.id,
            notification_type="budget_exceeded",
            priority="high",
            related_id=5,
            related_type="budget",
            metadata={"spent": 1200.0},
        )

        assert notification.id is not None
        assert notification.created_at is not None
        assert notification.type is NotificationType.BUDGET_EXCEEDED
        assert notification.priority is NotificationPriority.HIGH
        assert notification.related_id == "5"
        assert notification.meta == {"spent": 1200.0}
        assert notification.is_read is False

    def test_create_notification_validates(self, manager, user):
        with pytest.raises(NotificationCreationError):
            manager.create_notification(user.id, NotificationType.SYSTEM, "", "message")
        with pytest.raises(NotificationCreationError):
            manager.create_notification(user.id, "not_a_type", "Title", "message")

    def test_creation_error_is_notification_error(self, manager, user):
        with pytest.raises(NotificationError):
            manager.create_notification(user.id, NotificationType.SYSTEM, "Title", "")

    def test_find_recent_notifications(self, manager, user):
        self._create(
            manager, user.id, notification_type=NotificationType.BUDGET_WARNING,
            related_id=3, created_at=NOW - timedelta(hours=2)
        )
        self._create(
            manager, user.id, notification_type=NotificationType.BUDGET_WARNING,
            related_id=3, created_at=NOW - timedelta(hours=30)
        )
        self._create(
            manager, user.id, notification_type=NotificationType.BUDGET_EXCEEDED,
            related_id=3, created_at=NOW - timedelta(hours=1)
        )

        recent = manager.find_recent_notifications(3, NotificationType.BUDGET_WARNING, NOW - timedelta(hours=24))

        assert len(recent) == 1
        assert should_emit(recent, NotificationType.BUDGET_WARNING, 3, now=NOW) is False

    def test_pagination_and_unread_count(self, manager, user):
        for index in range(12):
            self._create(manager, user.id, title=f"Note {index}", created_at=NOW + timedelta(minutes=index))

        first = manager.get_notifications(user.id, page=1, limit=5)
        last = manager.get_notifications(user.id, page=3, limit=5)

        assert [n.title for n in first["notifications"]] == [f"Note {i}" for i in range(11, 6, -1)]
        assert first["pagination"] == {"page": 1, "limit": 5, "total": 12, "total_pages": 3}
        assert len(last["notifications"]) == 2
        assert first["unread_count"] == 12

    def test_mark_read_is_scoped_to_owner(self, manager, user, db_manager):
        from user_setup import ensure_user_setup

        other = ensure_user_setup(db_manager, "ravi@example.com")
        mine = self._create(manager, user.id)
        theirs = self._create(manager, other.id)

        assert manager.mark_as_read(user.id, [mine.id, theirs.id]) == 1
        assert manager.get_notifications(user.id)["unread_count"] == 0
        assert manager.get_notifications(other.id)["unread_count"] == 1
        assert manager.get_notifications(user.id, unread_only=True)["notifications"] == []

    def test_mark_all_read(self, manager, user):
        self._create(manager, user.id)
        self._create(manager, user.id)

        assert manager.mark_all_read(user.id) == 2
        assert manager.mark_all_read(user.id) == 0

    def test_delete(self, manager, user):
        first = self._create(manager, user.id)
        self._create(manager, user.id)
        self._create(manager, user.id)

        assert manager.delete_notification(user.id, first.id) is True
        assert manager.delete_notification(user.id, first.id) is False
        assert manager.delete_all_notifications(user.id) == 2

    def test_cleanup_read_notifications(self, manager, user):
        old = self._create(manager, user.id, created_at=NOW - timedelta(days=45))
        self._create(manager, user.id, created_at=NOW - timedelta(days=45))
        manager.mark_as_read(user.id, [old.id])

        assert manager.cleanup_read_notifications(older_than_days=30, now=NOW) == 1
        assert manager.get_notifications(user.id)["pagination"]["total"] == 1


class TestPreferences:
    """Tests for notification preferences."""

    def test_defaults_created_on_setup(self, db_manager, user):
        preference = NotificationManager(db_manager).get_preferences(user.id)

        assert preference.budget_alerts is True
        assert preference.budget_threshold == 80
        assert preference.weekly_report is True

    def test_alert_preferences_default_without_row(self, db_manager):
        assert NotificationManager(db_manager).get_alert_preferences(12345) == AlertPreferences(True, 80)

    def test_update_preferences(self, db_manager, user):
        manager = NotificationManager(db_manager)
        manager.update_preferences(user.id, budget_alerts=False, budget_threshold=65)

        assert manager.get_alert_preferences(user.id) == AlertPreferences(False, 65)

    @pytest.mark.parametrize(
        "changes",
        [
            {"budget_threshold": 0},
            {"budget_threshold": 101},
            {"budget_threshold": "high"},
            {"budget_alerts": "yes"},
            {"sms_alerts": True},
        ],
    )
    def test_invalid_preferences_rejected(self, db_manager, user, changes):
        with pytest.raises(PreferenceError):
            NotificationManager(db_manager).update_preferences(user.id, **changes)
