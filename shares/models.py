import uuid
from datetime import timedelta

from django.conf import settings
from django.db import models
from django.utils import timezone

from users.exceptions import ValidationError
from users.models import SoftDeleteModel


def default_share_expiry():
    return timezone.now() + timedelta(hours=24)


class ShareEvent(SoftDeleteModel):
    """One generated share link and, once verified, the reward it paid out.

    A verified share is an audit record: after verification only the fraud
    fields may change.
    """

    STATUS_PENDING = 'pending'
    STATUS_VERIFIED = 'verified'
    STATUS_REJECTED = 'rejected'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_VERIFIED, 'Verified'),
        (STATUS_REJECTED, 'Rejected'),
    ]

    SHARE_TYPE_CHOICES = [
        ('regular', 'Regular'),
        ('tournament', 'Tournament'),
    ]

    CHANNEL_CHOICES = [
        ('whatsapp', 'WhatsApp'),
        ('telegram', 'Telegram'),
        ('sms', 'SMS'),
        ('email', 'Email'),
        ('facebook', 'Facebook'),
        ('twitter', 'Twitter'),
        ('instagram', 'Instagram'),
        ('linkedin', 'LinkedIn'),
        ('discord', 'Discord'),
        ('other', 'Other'),
    ]

    FRAUD_FIELDS = frozenset({'fraud_score', 'fraud_flags', 'updated_at'})

    tracking_id = models.UUIDField(default=uuid.uuid4, unique=True, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='share_events'
    )
    app = models.ForeignKey('catalog.App', on_delete=models.CASCADE, related_name='share_events')
    tournament = models.ForeignKey(
        'tournaments.Tournament',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='share_events'
    )
    share_type = models.CharField(max_length=20, choices=SHARE_TYPE_CHOICES, default='regular')
    channel = models.CharField(max_length=20, choices=CHANNEL_CHOICES, default='other')
    share_url = models.URLField(max_length=500, blank=True, default='')

    # Client metadata used by the fraud probes
    device_info = models.JSONField(default=dict, blank=True)
    device_fingerprint = models.CharField(max_length=64, blank=True, default='', db_index=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    country = models.CharField(max_length=10, blank=True, default='')
    user_agent = models.TextField(blank=True, default='')
    click_count = models.PositiveIntegerField(default=0)
    conversion_count = models.PositiveIntegerField(default=0)

    validation_status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING,
        db_index=True
    )
    rejection_reason = models.CharField(max_length=50, blank=True, default='')
    verified_at = models.DateTimeField(null=True, blank=True, db_index=True)
    expires_at = models.DateTimeField(default=default_share_expiry)

    # Reward outcome
    base_xp = models.PositiveIntegerField(default=0)
    base_points = models.PositiveIntegerField(default=0)
    xp_awarded = models.PositiveIntegerField(default=0)
    points_awarded = models.PositiveIntegerField(default=0)
    reward_breakdown = models.JSONField(default=dict, blank=True)

    fraud_score = models.PositiveSmallIntegerField(default=0)
    fraud_flags = models.JSONField(default=list, blank=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'app', 'created_at'], name='share_user_app_idx'),
            models.Index(fields=['app', 'created_at'], name='share_app_created_idx'),
            models.Index(fields=['user', 'validation_status', 'verified_at'], name='share_user_verified_idx'),
        ]

    def __str__(self):
        return f"Share {self.tracking_id} by {self.user_id} ({self.validation_status})"

    @property
    def is_verified(self):
        return self.validation_status == self.STATUS_VERIFIED

    @property
    def total_rewards(self):
        return {'xp': self.xp_awarded, 'points': self.points_awarded}

    def save(self, *args, **kwargs):
        if not self._state.adding and self.pk:
            stored_verified = ShareEvent.all_objects.filter(
                pk=self.pk, validation_status=self.STATUS_VERIFIED
            ).exists()
            if stored_verified:
                update_fields = kwargs.get('update_fields')
                if update_fields is None:
                    kwargs['update_fields'] = list(self.FRAUD_FIELDS)
                elif not set(update_fields) <= self.FRAUD_FIELDS:
                    raise ValidationError(
                        "Verified shares only accept fraud updates",
                        fields=sorted(set(update_fields) - self.FRAUD_FIELDS),
                    )
        super().save(*args, **kwargs)
