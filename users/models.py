import secrets
import string

from django.contrib.auth.models import AbstractUser, UserManager
from django.db import models
from django.utils import timezone


class SoftDeleteManager(models.Manager):
    """Manager that filters out soft-deleted objects by default"""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)

    def with_deleted(self):
        """Return queryset including soft-deleted objects"""
        return super().get_queryset()

    def only_deleted(self):
        """Return queryset with only soft-deleted objects"""
        return super().get_queryset().filter(deleted_at__isnull=False)


class SoftDeleteModel(models.Model):
    """Base model with soft delete functionality"""

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)
    deleted_at = models.DateTimeField(null=True, blank=True, help_text="Soft delete timestamp")

    objects = SoftDeleteManager()
    all_objects = models.Manager()  # Access to all objects including deleted

    class Meta:
        abstract = True

    def soft_delete(self):
        """Soft delete the object"""
        self.deleted_at = timezone.now()
        self.save(update_fields=['deleted_at'])

    def restore(self):
        """Restore a soft-deleted object"""
        self.deleted_at = None
        self.save(update_fields=['deleted_at'])

    @property
    def is_deleted(self):
        """Check if object is soft-deleted"""
        return self.deleted_at is not None


class SoftDeleteUserManager(UserManager):
    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits


class User(AbstractUser, SoftDeleteModel):
    """Platform user and the XP/Points ledger owned by the rewards engine.

    Balance columns are only ever changed through ``users.ledger`` which
    applies conditional ``F()`` updates; never assign them and call ``save()``.
    """

    LEDGER_FIELDS = frozenset({
        'current_xp',
        'current_points',
        'total_xp_earned',
        'total_points_earned',
        'user_level',
        'sharing_streak_days',
        'longest_sharing_streak',
        'last_share_date',
        'total_apps_shared',
        'total_badges_earned',
        'total_tournaments_participated',
        'total_tournaments_won',
        'total_payouts_received',
        'referral_count',
        'total_referrals_completed',
        'total_referral_earnings_xp',
        'total_referral_earnings_points',
    })

    region = models.CharField(
        max_length=10,
        default='GLOBAL',
        help_text="ISO region/country code used for tournament eligibility"
    )

    # Balances
    current_xp = models.PositiveBigIntegerField(default=0)
    current_points = models.PositiveBigIntegerField(default=0)
    total_xp_earned = models.PositiveBigIntegerField(default=0)
    total_points_earned = models.PositiveBigIntegerField(default=0)
    user_level = models.PositiveIntegerField(default=1)

    # Sharing stats
    total_apps_shared = models.PositiveIntegerField(default=0)
    sharing_streak_days = models.PositiveIntegerField(default=0)
    longest_sharing_streak = models.PositiveIntegerField(default=0)
    last_share_date = models.DateField(null=True, blank=True)

    # Badges / tournaments / payouts
    total_badges_earned = models.PositiveIntegerField(default=0)
    total_tournaments_participated = models.PositiveIntegerField(default=0)
    total_tournaments_won = models.PositiveIntegerField(default=0)
    total_payouts_received = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    # Referrals
    referral_code = models.CharField(max_length=20, unique=True, blank=True, null=True)
    referral_count = models.PositiveIntegerField(default=0)
    total_referrals_completed = models.PositiveIntegerField(default=0)
    total_referral_earnings_xp = models.PositiveBigIntegerField(default=0)
    total_referral_earnings_points = models.PositiveBigIntegerField(default=0)

    last_activity_at = models.DateTimeField(null=True, blank=True, db_index=True)

    objects = SoftDeleteUserManager()
    all_objects = UserManager()

    groups = models.ManyToManyField(
        'auth.Group',
        verbose_name='groups',
        blank=True,
        help_text='The groups this user belongs to.',
        related_name='custom_user_set',
        related_query_name='custom_user',
    )
    user_permissions = models.ManyToManyField(
        'auth.Permission',
        verbose_name='user permissions',
        blank=True,
        help_text='Specific permissions for this user.',
        related_name='custom_user_set',
        related_query_name='custom_user',
    )

    def __str__(self):
        return self.username or self.email or f"user {self.pk}"

    def save(self, *args, **kwargs):
        if not self.referral_code:
            self.referral_code = self.generate_referral_code()
        if not self._state.adding and kwargs.get('update_fields') is None:
            # A stale instance must never overwrite balances credited elsewhere
            kwargs['update_fields'] = [
                field.name
                for field in self._meta.concrete_fields
                if not field.primary_key and field.name not in self.LEDGER_FIELDS
            ]
        super().save(*args, **kwargs)

    def generate_referral_code(self):
        prefix = ''.join(ch for ch in (self.username or '').upper() if ch.isalnum())[:3] or 'ING'
        while True:
            suffix = ''.join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(6))
            code = f"{prefix}{suffix}"
            if not User.all_objects.filter(referral_code=code).exists():
                return code

    @property
    def badge_ids(self):
        """Set of badge ids currently held by the user."""
        return set(self.user_badges.values_list('badge_id', flat=True))
