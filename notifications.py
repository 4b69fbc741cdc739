"""
Notification module for alert storage, user preferences and deduplication.

This module stores notifications, manages per-user notification preferences
and decides whether a candidate budget alert repeats one already emitted
inside the lookback window.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from budgeting import DEFAULT_BUDGET_THRESHOLD, AlertTier
from database_ops import (
    DEFAULT_NOTIFICATION_PREFERENCES,
    DatabaseManager,
    Notification,
    NotificationPreference,
    NotificationPriority,
    NotificationType,
    ensure_utc,
    utc_now,
)
from exceptions import (
    LookupFailureError,
    NotificationCreationError,
    NotificationError,
    PreferenceError,
)

# Configure logging
logger = logging.getLogger(__name__)

DEDUP_WINDOW_HOURS = 24
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 50

_TIER_NOTIFICATION_TYPES = {
    AlertTier.WARNING: NotificationType.BUDGET_WARNING,
    AlertTier.EXCEEDED: NotificationType.BUDGET_EXCEEDED,
}


@dataclass(frozen=True)
class AlertPreferences:
    """The two preference values budget monitoring reads."""
    budget_alerts: bool = True
    budget_threshold: int = DEFAULT_BUDGET_THRESHOLD


def notification_type_for_tier(tier: AlertTier) -> NotificationType:
    """
    Map an alert tier to its notification type.

    Raises:
        ValueError: For AlertTier.NONE, which never produces a notification
    """
    try:
        return _TIER_NOTIFICATION_TYPES[tier]
    except KeyError:
        raise ValueError(f"Alert tier {tier} has no notification type") from None


def _coerce_notification_type(value: Union[str, AlertTier, NotificationType]) -> NotificationType:
    if isinstance(value, NotificationType):
        return value
    if isinstance(value, AlertTier):
        return notification_type_for_tier(value)
    key = str(value).strip().upper()
    if key in AlertTier.__members__:
        return notification_type_for_tier(AlertTier[key])
    try:
        return NotificationType[key]
    except KeyError:
        raise NotificationError(
            f"Unknown notification type: {value}",
            details={"allowed": [t.name for t in NotificationType]}
        ) from None


def should_emit(
    existing_notifications: Iterable[Any],
    candidate_type: Union[str, AlertTier, NotificationType],
    related_id: Any,
    window_hours: float = DEDUP_WINDOW_HOURS,
    now: Optional[datetime] = None
) -> bool:
    """
    Decide whether a candidate alert should be emitted.

    The alert is suppressed when a notification of the same type for the same
    related entity was created within the last window_hours. WARNING and
    EXCEEDED are distinct types, so escalating from one to the other inside
    the window still emits.

    Args:
        existing_notifications: Notifications with type, related_id and created_at
        candidate_type: NotificationType or AlertTier of the candidate
        related_id: ID of the triggering entity (the budget ID)
        window_hours: Lookback window in hours
        now: Reference time (defaults to now)

    Returns:
        True to emit, False to suppress

    Raises:
        ValueError: If window_hours is not positive
    """
    if not window_hours or window_hours <= 0:
        raise ValueError(f"Dedup window must be positive, got {window_hours!r}")

    candidate = _coerce_notification_type(candidate_type)
    reference = ensure_utc(now) if now else utc_now()
    cutoff = reference - timedelta(hours=window_hours)
    related_key = str(related_id)

    for notification in existing_notifications:
        try:
            existing_type = _coerce_notification_type(notification.type)
        except (NotificationError, ValueError):
            continue
        if existing_type is not candidate:
            continue
        if str(notification.related_id) != related_key:
            continue
        created_at = ensure_utc(notification.created_at)
        if created_at is not None and created_at >= cutoff:
            logger.debug(
                f"Suppressing {candidate.value} for {related_key}: "
                f"notification {getattr(notification, 'id', None)} created at {created_at}"
            )
            return False
    return True


class NotificationManager:
    """
    Manages notifications and notification preferences.

    All user-facing queries are scoped to the owning user.
    """

    def __init__(self, db_manager: DatabaseManager):
        """
        Initialize the notification manager.

        Args:
            db_manager: DatabaseManager instance
        """
        self.db_manager = db_manager
        logger.info("Notification manager initialized")

    def create_notification(
        self,
        user_id: int,
        notification_type: Union[str, NotificationType],
        title: str,
        message: str,
        priority: Union[str, NotificationPriority] = NotificationPriority.MEDIUM,
        related_id: Optional[Any] = None,
        related_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> Notification:
        """
        Persist a notification.

        Args:
            user_id: Recipient
            notification_type: Notification kind
            title: Short title
            message: Message text
            priority: Priority (defaults to MEDIUM)
            related_id: Optional ID of the triggering entity
            related_type: Optional type name of the triggering entity
            metadata: Optional JSON-serializable details
            created_at: Creation time (defaults to now)

        Returns:
            Created Notification with id and created_at assigned

        Raises:
            NotificationCreationError: If validation or the database write fails
        """
        if not title or not message:
            raise NotificationCreationError("Notification title and message are required")
        try:
            kind = _coerce_notification_type(notification_type)
            if not isinstance(priority, NotificationPriority):
                priority = NotificationPriority[str(priority).strip().upper()]
        except (NotificationError, KeyError) as e:
            raise NotificationCreationError(
                "Invalid notification type or priority",
                details={"type": notification_type, "priority": priority},
                original_error=e
            ) from e

        session = self.db_manager.get_session()
        try:
            notification = Notification(
                user_id=user_id,
                type=kind,
                priority=priority,
                title=title,
                message=message,
                related_id=str(related_id) if related_id is not None else None,
                related_type=related_type,
                meta=metadata,
                created_at=ensure_utc(created_at) if created_at else utc_now(),
            )
            session.add(notification)
            session.commit()
            session.refresh(notification)
            session.expunge(notification)
            logger.info(
                f"Created {kind.value} notification {notification.id} for user {user_id}"
            )
            return notification
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to create notification for user {user_id}: {e}")
            raise NotificationCreationError(
                "Failed to create notification",
                details={"user_id": user_id, "type": kind.value},
                original_error=e
            ) from e
        finally:
            session.close()

    def find_recent_notifications(
        self,
        related_id: Any,
        notification_type: Union[str, AlertTier, NotificationType],
        since: datetime
    ) -> List[Notification]:
        """
        Find notifications for a related entity and type created at or after since.

        Args:
            related_id: ID of the triggering entity
            notification_type: Notification kind
            since: Lower bound on created_at

        Returns:
            List of Notification objects, newest first

        Raises:
            LookupFailureError: If the database query fails
        """
        kind = _coerce_notification_type(notification_type)
        session = self.db_manager.get_session()
        try:
            return session.query(Notification).filter(
                Notification.related_id == str(related_id),
                Notification.type == kind,
                Notification.created_at >= ensure_utc(since),
            ).order_by(Notification.created_at.desc()).all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to look up recent notifications for {related_id}: {e}")
            raise LookupFailureError(
                "Failed to look up recent notifications",
                details={"related_id": related_id, "type": kind.value},
                original_error=e
            ) from e
        finally:
            session.close()

    def has_recent_user_notification(
        self,
        user_id: int,
        notification_type: Union[str, NotificationType],
        since: datetime
    ) -> bool:
        """
        Check whether the user received a notification of this type since the given time.

        Raises:
            LookupFailureError: If the database query fails
        """
        kind = _coerce_notification_type(notification_type)
        session = self.db_manager.get_session()
        try:
            return session.query(Notification.id).filter(
                Notification.user_id == user_id,
                Notification.type == kind,
                Notification.created_at >= ensure_utc(since),
            ).first() is not None
        except SQLAlchemyError as e:
            logger.error(f"Failed to look up recent {kind.value} for user {user_id}: {e}")
            raise LookupFailureError(
                "Failed to look up recent notifications",
                details={"user_id": user_id, "type": kind.value},
                original_error=e
            ) from e
        finally:
            session.close()

    def get_notifications(
        self,
        user_id: int,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        unread_only: bool = False,
        notification_type: Optional[Union[str, NotificationType]] = None,
    ) -> Dict[str, Any]:
        """
        Get a page of a user's notifications, newest first.

        Args:
            user_id: Recipient
            page: 1-based page number (values below 1 become 1)
            limit: Page size, clamped to 1..50
            unread_only: Only unread notifications
            notification_type: Optional type filter

        Returns:
            Dictionary with notifications, pagination and unread_count
        """
        page = max(1, int(page or 1))
        limit = min(MAX_PAGE_SIZE, max(1, int(limit or DEFAULT_PAGE_SIZE)))

        session = self.db_manager.get_session()
        try:
            query = session.query(Notification).filter(Notification.user_id == user_id)
            if unread_only:
                query = query.filter(Notification.is_read.is_(False))
            if notification_type is not None:
                query = query.filter(Notification.type == _coerce_notification_type(notification_type))

            total = query.count()
            notifications = (
                query.order_by(Notification.created_at.desc(), Notification.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            unread_count = session.query(Notification).filter(
                Notification.user_id == user_id,
                Notification.is_read.is_(False)
            ).count()

            return {
                "notifications": notifications,
                "pagination": {
                    "page": page,
                    "limit": limit,
                    "total": total,
                    "total_pages": math.ceil(total / limit),
                },
                "unread_count": unread_count,
            }
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch notifications for user {user_id}: {e}")
            raise NotificationError(
                "Failed to fetch notifications",
                details={"user_id": user_id},
                original_error=e
            ) from e
        finally:
            session.close()

    def _mark_read(self, user_id: int, notification_ids: Optional[List[int]]) -> int:
        session = self.db_manager.get_session()
        try:
            query = session.query(Notification).filter(
                Notification.user_id == user_id,
                Notification.is_read.is_(False)
            )
            if notification_ids is not None:
                query = query.filter(Notification.id.in_(notification_ids))
            updated = query.update(
                {Notification.is_read: True, Notification.read_at: utc_now()},
                synchronize_session=False
            )
            session.commit()
            logger.info(f"Marked {updated} notifications read for user {user_id}")
            return updated
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to mark notifications read for user {user_id}: {e}")
            raise NotificationError(
                "Failed to update notifications",
                details={"user_id": user_id},
                original_error=e
            ) from e
        finally:
            session.close()

    def mark_as_read(self, user_id: int, notification_ids: List[int]) -> int:
        """
        Mark the given notifications read; IDs owned by other users are ignored.

        Args:
            user_id: Recipient
            notification_ids: Notification IDs

        Returns:
            Number of notifications updated
        """
        if not notification_ids:
            return 0
        return self._mark_read(user_id, list(notification_ids))

    def mark_all_read(self, user_id: int) -> int:
        """Mark every unread notification of the user read and return the count."""
        return self._mark_read(user_id, None)

    def delete_notification(self, user_id: int, notification_id: int) -> bool:
        """
        Delete one of the user's notifications.

        Args:
            user_id: Recipient
            notification_id: Notification ID

        Returns:
            True if deleted, False if it does not exist for this user
        """
        session = self.db_manager.get_session()
        try:
            notification = session.query(Notification).filter(
                Notification.id == notification_id,
                Notification.user_id == user_id
            ).first()
            if notification is None:
                logger.warning(f"Notification {notification_id} not found for user {user_id}")
                return False
            session.delete(notification)
            session.commit()
            logger.info(f"Deleted notification {notification_id}")
            return True
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to delete notification {notification_id}: {e}")
            raise NotificationError(
                "Failed to delete notification",
                details={"notification_id": notification_id},
                original_error=e
            ) from e
        finally:
            session.close()

    def delete_all_notifications(self, user_id: int) -> int:
        """Delete all of a user's notifications and return how many were removed."""
        session = self.db_manager.get_session()
        try:
            deleted = session.query(Notification).filter(
                Notification.user_id == user_id
            ).delete(synchronize_session=False)
            session.commit()
            logger.info(f"Deleted {deleted} notifications for user {user_id}")
            return deleted
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to delete notifications for user {user_id}: {e}")
            raise NotificationError(
                "Failed to delete notifications",
                details={"user_id": user_id},
                original_error=e
            ) from e
        finally:
            session.close()

    def cleanup_read_notifications(self, older_than_days: int = 30, now: Optional[datetime] = None) -> int:
        """
        Bulk-delete read notifications older than the given age.

        Args:
            older_than_days: Minimum age in days
            now: Reference time (defaults to now)

        Returns:
            Number of notifications deleted
        """
        reference = ensure_utc(now) if now else utc_now()
        cutoff = reference - timedelta(days=older_than_days)
        session = self.db_manager.get_session()
        try:
            deleted = session.query(Notification).filter(
                Notification.is_read.is_(True),
                Notification.created_at < cutoff
            ).delete(synchronize_session=False)
            session.commit()
            logger.info(f"Cleaned up {deleted} read notifications older than {older_than_days} days")
            return deleted
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to clean up notifications: {e}")
            raise NotificationError("Failed to clean up notifications", original_error=e) from e
        finally:
            session.close()

    def _find_preference(self, session, user_id: int) -> Optional[NotificationPreference]:
        return session.query(NotificationPreference).filter(
            NotificationPreference.user_id == user_id
        ).first()

    def get_preferences(self, user_id: int) -> NotificationPreference:
        """
        Get a user's notification preferences, creating the defaults if absent.

        Args:
            user_id: Owning user

        Returns:
            NotificationPreference object
        """
        session = self.db_manager.get_session()
        try:
            preference = self._find_preference(session, user_id)
            if preference is None:
                preference = NotificationPreference(user_id=user_id, **DEFAULT_NOTIFICATION_PREFERENCES)
                session.add(preference)
                session.commit()
                session.refresh(preference)
                logger.info(f"Created default notification preferences for user {user_id}")
            session.expunge(preference)
            return preference
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to get notification preferences for user {user_id}: {e}")
            raise PreferenceError(
                "Failed to get notification preferences",
                details={"user_id": user_id},
                original_error=e
            ) from e
        finally:
            session.close()

    def get_alert_preferences(self, user_id: int) -> AlertPreferences:
        """
        Read the budget alert settings of a user without creating a row.

        Args:
            user_id: Owning user

        Returns:
            AlertPreferences (defaults when the user has no preference row)

        Raises:
            LookupFailureError: If the database query fails
        """
        session = self.db_manager.get_session()
        try:
            preference = self._find_preference(session, user_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to read alert preferences for user {user_id}: {e}")
            raise LookupFailureError(
                "Failed to read alert preferences",
                details={"user_id": user_id},
                original_error=e
            ) from e
        finally:
            session.close()

        if preference is None:
            return AlertPreferences()
        return AlertPreferences(
            budget_alerts=bool(preference.budget_alerts),
            budget_threshold=preference.budget_threshold or DEFAULT_BUDGET_THRESHOLD,
        )

    @staticmethod
    def validate_preferences(changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate a preference update.

        Args:
            changes: Mapping of preference names to new values

        Returns:
            The validated changes

        Raises:
            PreferenceError: On unknown keys, non-boolean flags or a threshold outside 1..100
        """
        unknown = sorted(set(changes) - set(DEFAULT_NOTIFICATION_PREFERENCES))
        if unknown:
            raise PreferenceError("Unknown notification preferences", details={"keys": unknown})

        for key, value in changes.items():
            if key == "budget_threshold":
                if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 100:
                    raise PreferenceError(
                        "budget_threshold must be an integer between 1 and 100",
                        details={"budget_threshold": value}
                    )
            elif not isinstance(value, bool):
                raise PreferenceError(f"{key} must be a boolean", details={key: value})
        return changes

    def update_preferences(self, user_id: int, **changes: Any) -> NotificationPreference:
        """
        Update (or create) a user's notification preferences.

        Args:
            user_id: Owning user
            **changes: Preference values to set

        Returns:
            Updated NotificationPreference object

        Raises:
            PreferenceError: If validation or the database write fails
        """
        self.validate_preferences(changes)

        session = self.db_manager.get_session()
        try:
            preference = self._find_preference(session, user_id)
            if preference is None:
                values = dict(DEFAULT_NOTIFICATION_PREFERENCES)
                values.update(changes)
                preference = NotificationPreference(user_id=user_id, **values)
                session.add(preference)
            else:
                for key, value in changes.items():
                    setattr(preference, key, value)
                preference.updated_at = utc_now()
            session.commit()
            session.refresh(preference)
            session.expunge(preference)
            logger.info(f"Updated notification preferences for user {user_id}: {sorted(changes)}")
            return preference
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to update notification preferences for user {user_id}: {e}")
            raise PreferenceError(
                "Failed to update notification preferences",
                details={"user_id": user_id},
                original_error=e
            ) from e
        finally:
            session.close()
