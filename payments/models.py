import secrets
import string

from django.conf import settings
from django.db import models

from users.models import SoftDeleteModel


def generate_payout_reference():
    """Generate a unique payout reference"""
    return ''.join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(12))


class Payout(SoftDeleteModel):
    """A request to convert Points into cash. Settlement happens outside the engine."""

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('pending_review', 'Pending Review'),
        ('processing', 'Processing'),
        ('completed', 'Completed'),
        ('failed', 'Failed'),
        ('blocked', 'Blocked'),
        ('cancelled', 'Cancelled'),
    ]

    METHOD_CHOICES = [
        ('stripe', 'Stripe'),
        ('paypal', 'PayPal'),
        ('bank_transfer', 'Bank Transfer'),
        ('crypto', 'Crypto'),
    ]

    # Statuses holding debited points that settlement has not finished with
    IN_FLIGHT_STATUSES = ('pending', 'pending_review', 'processing')

    # Detail key that identifies the destination account per method
    ACCOUNT_KEYS = {
        'stripe': 'card_token',
        'paypal': 'email',
        'bank_transfer': 'account_number',
        'crypto': 'wallet_address',
    }

    reference = models.CharField(
        max_length=32,
        unique=True,
        default=generate_payout_reference,
        editable=False
    )
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='payouts')
    points = models.PositiveIntegerField(help_text='Points debited from the user')
    fee_points = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    amount = models.DecimalField(max_digits=12, decimal_places=2, default=0, help_text='Cash value after fees')
    method = models.CharField(max_length=20, choices=METHOD_CHOICES)
    details = models.JSONField(default=dict, blank=True)
    country = models.CharField(max_length=10, blank=True, default='')
    ip_address = models.GenericIPAddressField(null=True, blank=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending', db_index=True)
    fraud_score = models.PositiveSmallIntegerField(default=0)
    fraud_flags = models.JSONField(default=list, blank=True)
    failure_reason = models.TextField(blank=True, default='')
    external_transaction_id = models.CharField(max_length=128, blank=True, default='')
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'status'], name='payout_user_status_idx'),
            models.Index(fields=['status', 'created_at'], name='payout_status_created_idx'),
        ]

    def __str__(self):
        return f"Payout {self.reference} - {self.points} pts ({self.status})"

    @property
    def account_key(self):
        details = self.details or {}
        return str(details.get('account') or details.get(self.ACCOUNT_KEYS.get(self.method, ''), '') or '')

    @property
    def is_final(self):
        return self.status not in self.IN_FLIGHT_STATUSES
