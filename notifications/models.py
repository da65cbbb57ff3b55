from django.db import models
from django.contrib.auth import get_user_model

User = get_user_model()


class NotificationType(models.TextChoices):
    # Rewards
    SHARE_REWARDED = 'share_rewarded', 'Share Rewarded'
    BADGE_EARNED = 'badge_earned', 'Badge Earned'
    TOURNAMENT_RESULT = 'tournament_result', 'Tournament Result'

    # Referrals
    REFERRAL_JOINED = 'referral_joined', 'Referral Joined'
    REFERRAL_COMPLETED = 'referral_completed', 'Referral Completed'

    # Payouts
    PAYOUT_REQUESTED = 'payout_requested', 'Payout Requested'
    PAYOUT_COMPLETED = 'payout_completed', 'Payout Completed'
    PAYOUT_FAILED = 'payout_failed', 'Payout Failed'

    # Account related
    SECURITY_ALERT = 'security_alert', 'Security Alert'

    # General
    SYSTEM = 'system', 'System Notification'
    ANNOUNCEMENT = 'announcement', 'Announcement'


class Notification(models.Model):
    # For personalized notifications (1:1)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='notifications', null=True, blank=True)

    # For broadcast notifications (announcements)
    is_broadcast = models.BooleanField(default=False)
    broadcast_target = models.CharField(max_length=50, null=True, blank=True, help_text="Target audience: 'all', 'verified', etc.")

    notification_type = models.CharField(max_length=50, choices=NotificationType.choices)
    title = models.CharField(max_length=200)
    message = models.TextField()

    data = models.JSONField(default=dict, blank=True)

    # For linking to specific objects
    related_object_type = models.CharField(max_length=50, null=True, blank=True)
    related_object_id = models.CharField(max_length=100, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', '-created_at'], name='notif_user_created_idx'),
            models.Index(fields=['is_broadcast', '-created_at'], name='notif_broadcast_idx'),
        ]

    def __str__(self):
        if self.is_broadcast:
            return f"BROADCAST: {self.notification_type} - {self.title}"
        return f"{self.notification_type} - {self.title} - {self.user.username if self.user else 'No user'}"


class NotificationRead(models.Model):
    """Track which users have read which notifications"""
    notification = models.ForeignKey(Notification, on_delete=models.CASCADE, related_name='reads')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='notification_reads')
    read_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['notification', 'user'], name='unique_notification_read')
        ]
