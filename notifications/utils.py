"""
Utility functions for creating and managing notifications
"""
from typing import Optional, Dict, Any
from django.db import transaction
from django.db.models import Q
from .models import Notification, NotificationRead, NotificationType
from users.models import User
import logging

logger = logging.getLogger(__name__)


def create_notification(
    user: Optional[User] = None,
    notification_type: str = None,
    title: str = None,
    message: str = None,
    data: Optional[Dict[str, Any]] = None,
    related_object_type: Optional[str] = None,
    related_object_id: Optional[str] = None,
    is_broadcast: bool = False,
    broadcast_target: Optional[str] = None,
) -> Notification:
    """
    Create a notification with proper validation

    Args:
        user: Target user for personal notifications
        notification_type: Type from NotificationType choices
        title: Notification title
        message: Notification message
        data: Additional data as dict
        related_object_type: Type of related object (e.g., 'ShareEvent')
        related_object_id: ID of related object
        is_broadcast: Whether this is a broadcast notification
        broadcast_target: Target audience for broadcast ('all', 'verified', etc.)

    Returns:
        Created Notification instance
    """
    if not is_broadcast and not user:
        raise ValueError("User is required for personal notifications")

    if is_broadcast and user:
        raise ValueError("User should not be set for broadcast notifications")

    if notification_type not in NotificationType.values:
        raise ValueError(f"Unknown notification type {notification_type}")

    notification = Notification.objects.create(
        user=user,
        notification_type=notification_type,
        title=title,
        message=message,
        data=data or {},
        related_object_type=related_object_type,
        related_object_id=related_object_id,
        is_broadcast=is_broadcast,
        broadcast_target=broadcast_target,
    )
    logger.info(f"Created {notification_type} notification {notification.id} for {user.id if user else 'broadcast'}")
    return notification


def notify_safely(user_id, notification_type, title='', message='', data=None):
    """
    Fire-and-forget notification for reward paths.

    Runs in its own savepoint and never raises, so a failed notification
    cannot roll back the reward that triggered it.
    """
    try:
        user = User.objects.filter(pk=user_id).first()
        if user is None:
            logger.warning(f"Skipping {notification_type} notification: user {user_id} not found")
            return None
        with transaction.atomic():
            return create_notification(
                user=user,
                notification_type=notification_type,
                title=title,
                message=message,
                data=data,
            )
    except Exception as e:
        logger.error(f"Error creating {notification_type} notification for user {user_id}: {e}", exc_info=True)
        return None


def get_user_notifications(user, include_broadcasts=True):
    query = Q(user=user)
    if include_broadcasts:
        query |= Q(is_broadcast=True)
    return Notification.objects.filter(query)


def mark_as_read(user, notification_ids=None):
    """Mark the given (or all visible) notifications read. Returns how many were newly marked."""
    notifications = get_user_notifications(user)
    if notification_ids is not None:
        notifications = notifications.filter(id__in=notification_ids)
    already_read = NotificationRead.objects.filter(user=user).values('notification_id')
    unread = list(notifications.exclude(id__in=already_read))
    NotificationRead.objects.bulk_create(
        [NotificationRead(notification=n, user=user) for n in unread],
        ignore_conflicts=True,
    )
    return len(unread)


def get_unread_count(user):
    already_read = NotificationRead.objects.filter(user=user).values('notification_id')
    return get_user_notifications(user).exclude(id__in=already_read).count()
