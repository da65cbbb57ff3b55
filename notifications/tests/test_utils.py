from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase

from notifications.models import Notification
from notifications.utils import (
    create_notification,
    get_unread_count,
    mark_as_read,
    notify_safely,
)

User = get_user_model()


class CreateNotificationTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username='reader', password='testpass123')

    def test_personal_notification(self):
        notification = create_notification(
            user=self.user,
            notification_type='badge_earned',
            title="Badge unlocked",
            message="Nice",
            data={'badge_id': 1},
        )

        self.assertEqual(notification.user, self.user)
        self.assertEqual(notification.data, {'badge_id': 1})

    def test_validation(self):
        with self.assertRaises(ValueError):
            create_notification(notification_type='system', title="t", message="m")
        with self.assertRaises(ValueError):
            create_notification(user=self.user, notification_type='system', title="t", message="m", is_broadcast=True)
        with self.assertRaises(ValueError):
            create_notification(user=self.user, notification_type='made_up', title="t", message="m")

    def test_read_tracking_includes_broadcasts(self):
        create_notification(user=self.user, notification_type='system', title="a", message="a")
        create_notification(notification_type='announcement', title="b", message="b", is_broadcast=True)

        self.assertEqual(get_unread_count(self.user), 2)
        self.assertEqual(mark_as_read(self.user), 2)
        self.assertEqual(mark_as_read(self.user), 0)
        self.assertEqual(get_unread_count(self.user), 0)


class NotifySafelyTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username='safe', password='testpass123')

    def test_creates_notification(self):
        notification = notify_safely(self.user.pk, 'share_rewarded', title="Share verified", message="+10 XP")

        self.assertEqual(notification.notification_type, 'share_rewarded')

    def test_failures_are_swallowed(self):
        with patch('notifications.utils.create_notification', side_effect=RuntimeError("down")):
            self.assertIsNone(notify_safely(self.user.pk, 'share_rewarded', title="t", message="m"))

        self.assertFalse(Notification.objects.exists())

    def test_unknown_user(self):
        self.assertIsNone(notify_safely(999999, 'system', title="t", message="m"))
