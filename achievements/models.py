"""
Consolidated models for the achievements app: badges and referrals
"""
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Tuple

from django.conf import settings
from django.db import models, transaction
from django.db.models import Count, F, Sum
from django.utils import timezone
from django.utils.text import slugify

from users.engine_settings import engine_setting
from users.exceptions import AlreadyAwarded, NotEligible, ValidationError
from users.models import SoftDeleteManager, SoftDeleteModel
from users.utils import round_half_up


class Badge(SoftDeleteModel):
    """Badge definition. Only ``users_achieved_count`` changes after creation."""

    CLASSIFICATION_CHOICES = [
        ('achievement', 'Achievement'),
        ('milestone', 'Milestone'),
        ('special_event', 'Special Event'),
        ('seasonal', 'Seasonal'),
        ('referral', 'Referral'),
        ('tournament', 'Tournament'),
    ]

    CRITERIA_CHOICES = [
        ('xp_threshold', 'XP Threshold'),
        ('points_earned', 'Points Earned'),
        ('shares_count', 'Shares Count'),
        ('tournaments_won', 'Tournaments Won'),
        ('streak_days', 'Streak Days'),
        ('referrals_count', 'Referrals Count'),
        ('level_reached', 'Level Reached'),
        ('consecutive_days', 'Consecutive Days'),
        ('category_diversity', 'Category Diversity'),
        ('app_diversity', 'App Diversity'),
        ('total_payouts', 'Total Payouts'),
        ('badge_count', 'Badge Count'),
    ]

    OPERATOR_CHOICES = [
        ('>=', '>='),
        ('==', '=='),
        ('<=', '<='),
        ('>', '>'),
        ('<', '<'),
        ('!=', '!='),
    ]

    RARITY_CHOICES = [
        ('common', 'Common'),
        ('rare', 'Rare'),
        ('epic', 'Epic'),
        ('legendary', 'Legendary'),
        ('mythic', 'Mythic'),
    ]

    # Stat consulted for each criteria type
    CRITERIA_STATS = {
        'xp_threshold': 'current_xp',
        'points_earned': 'total_points_earned',
        'shares_count': 'total_apps_shared',
        'tournaments_won': 'total_tournaments_won',
        'streak_days': 'sharing_streak_days',
        'referrals_count': 'successful_referrals_count',
        'level_reached': 'user_level',
        'consecutive_days': 'sharing_streak_days',
        'category_diversity': 'unique_categories_shared',
        'app_diversity': 'unique_apps_shared',
        'total_payouts': 'total_payouts_received',
        'badge_count': 'total_badges_earned',
    }

    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=255, unique=True)
    classification = models.CharField(max_length=20, choices=CLASSIFICATION_CHOICES, default='achievement')
    description = models.TextField(blank=True, default='')
    icon_url = models.URLField(blank=True, default='')

    criteria_type = models.CharField(max_length=30, choices=CRITERIA_CHOICES)
    threshold_value = models.PositiveIntegerField()
    threshold_operator = models.CharField(max_length=2, choices=OPERATOR_CHOICES, default='>=')

    rarity = models.CharField(max_length=10, choices=RARITY_CHOICES, default='common')
    xp_reward = models.PositiveIntegerField(default=0)
    points_reward = models.PositiveIntegerField(default=0)
    users_achieved_count = models.PositiveIntegerField(default=0)

    is_active = models.BooleanField(default=True)
    is_hidden = models.BooleanField(default=False)
    seasonal_start = models.DateTimeField(null=True, blank=True)
    seasonal_end = models.DateTimeField(null=True, blank=True)
    prerequisite_badges = models.ManyToManyField(
        'self',
        symmetrical=False,
        related_name='unlocks',
        blank=True
    )
    exclusive_with = models.ManyToManyField('self', blank=True)

    class Meta:
        ordering = ['threshold_value', 'id']
        indexes = [
            models.Index(fields=['is_active', 'criteria_type'], name='badge_active_criteria_idx'),
            models.Index(fields=['is_active', 'rarity'], name='badge_active_rarity_idx'),
        ]

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if self.threshold_value is not None and self.threshold_value < 1:
            raise ValidationError("Threshold value must be at least 1", threshold_value=self.threshold_value)
        if not self.slug:
            base_slug = slugify(self.name)
            slug = base_slug
            counter = 1
            while Badge.all_objects.filter(slug=slug).exclude(pk=self.pk).exists():
                slug = f"{base_slug}-{counter}"
                counter += 1
            self.slug = slug
        if not self._state.adding and kwargs.get('update_fields') is None:
            kwargs['update_fields'] = [
                field.name
                for field in self._meta.concrete_fields
                if not field.primary_key and field.name != 'users_achieved_count'
            ]
        super().save(*args, **kwargs)

    @property
    def criteria(self):
        return {
            'type': self.criteria_type,
            'threshold_value': self.threshold_value,
            'operator': self.threshold_operator,
        }

    @property
    def is_seasonal(self):
        return self.seasonal_start is not None and self.seasonal_end is not None

    def is_available(self, now=None):
        if not self.is_active:
            return False
        if self.is_seasonal:
            now = now or timezone.now()
            return self.seasonal_start <= now <= self.seasonal_end
        return True

    def get_current_value(self, stats):
        stat = self.CRITERIA_STATS.get(self.criteria_type)
        if stat is None:
            return 0
        default = 1 if stat == 'user_level' else 0
        return stats.get(stat) or default

    def evaluate_threshold(self, value):
        target = self.threshold_value
        return {
            '>=': value >= target,
            '==': value == target,
            '<=': value <= target,
            '>': value > target,
            '<': value < target,
            '!=': value != target,
        }.get(self.threshold_operator, value >= target)

    def progress_percentage(self, value):
        return min(100.0, float(value) / self.threshold_value * 100)


class UserBadge(models.Model):
    """A badge held by a user. The unique pair is the only re-award guard."""

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='user_badges')
    badge = models.ForeignKey(Badge, on_delete=models.PROTECT, related_name='holders')
    earned_at = models.DateTimeField(default=timezone.now)
    xp_awarded = models.PositiveIntegerField(default=0)
    points_awarded = models.PositiveIntegerField(default=0)
    achievement_value = models.BigIntegerField(default=0)
    trigger = models.CharField(max_length=50, blank=True, default='')
    achievement_context = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ['-earned_at']
        constraints = [
            models.UniqueConstraint(fields=['user', 'badge'], name='unique_user_badge'),
        ]

    def __str__(self):
        return f"{self.user_id} - {self.badge_id}"


class BadgeProgress(models.Model):
    """Side-effect free progress snapshot for a badge the user does not hold yet"""

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='badge_progress')
    badge = models.ForeignKey(Badge, on_delete=models.CASCADE, related_name='progress_records')
    current_value = models.BigIntegerField(default=0)
    percentage_complete = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    last_updated = models.DateTimeField(default=timezone.now)
    milestone_notifications_sent = models.JSONField(default=list, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['user', 'badge'], name='unique_badge_progress'),
        ]
        indexes = [
            models.Index(fields=['user', '-percentage_complete'], name='badge_progress_user_idx'),
        ]


def default_min_shares():
    return engine_setting('REFERRAL_MIN_SHARES')


def default_min_xp_earned():
    return engine_setting('REFERRAL_MIN_XP')


def default_min_points_earned():
    return engine_setting('REFERRAL_MIN_POINTS')


def default_min_days_active():
    return engine_setting('REFERRAL_MIN_DAYS_ACTIVE')


def default_referrer_bonus_xp():
    return engine_setting('REFERRER_BONUS_XP')


def default_referrer_bonus_points():
    return engine_setting('REFERRER_BONUS_POINTS')


def default_referred_bonus_xp():
    return engine_setting('REFERRED_BONUS_XP')


def default_referred_bonus_points():
    return engine_setting('REFERRED_BONUS_POINTS')


def default_referral_expiry():
    return timezone.now() + timedelta(days=engine_setting('REFERRAL_EXPIRY_DAYS'))


@dataclass(frozen=True)
class EligibilityReport:
    is_valid: bool
    errors: Tuple[str, ...] = ()


class UserReferralManager(SoftDeleteManager):
    def by_referrer(self, referrer_id, status=None, limit=50):
        qs = self.get_queryset().filter(referrer_id=referrer_id)
        if status:
            qs = qs.filter(status=status)
        return qs.order_by('-created_at')[:limit]

    def pending(self, limit=100):
        return self.get_queryset().filter(status=UserReferral.PENDING).order_by('created_at')[:limit]

    def expired(self, now=None):
        now = now or timezone.now()
        return self.get_queryset().filter(status=UserReferral.PENDING, expires_at__lt=now)

    def suspicious(self, limit=100):
        return self.get_queryset().filter(is_suspicious=True).order_by('-fraud_score')[:limit]

    def unrewarded(self, side='referrer', limit=100):
        if side not in ('referrer', 'referred'):
            raise ValidationError(f"Unknown referral side {side}", side=side)
        return (
            self.get_queryset()
            .filter(status=UserReferral.ACTIVE, **{f'{side}_rewarded': False})
            .order_by('activation_date')[:limit]
        )

    def statistics(self, referrer_id=None):
        qs = self.get_queryset()
        if referrer_id is not None:
            qs = qs.filter(referrer_id=referrer_id)
        rows = qs.values('status').annotate(
            count=Count('id'),
            total_rewards=Sum(F('referrer_bonus_xp') + F('referrer_bonus_points')),
        )
        return {row['status']: {'count': row['count'], 'total_rewards': row['total_rewards'] or 0} for row in rows}


class UserReferral(SoftDeleteModel):
    """Referral lifecycle: pending -> active -> completed | expired | fraudulent.

    Status, reward flags and fraud data are never written by a plain
    ``save()``; they only move through guarded conditional updates so two
    racing requests cannot both pay out or both transition the same row.
    """

    PENDING = 'pending'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    EXPIRED = 'expired'
    FRAUDULENT = 'fraudulent'

    STATUS_CHOICES = [
        (PENDING, 'Pending'),
        (ACTIVE, 'Active'),
        (COMPLETED, 'Completed'),
        (EXPIRED, 'Expired'),
        (FRAUDULENT, 'Fraudulent'),
    ]

    TERMINAL_STATUSES = frozenset({COMPLETED, EXPIRED, FRAUDULENT})

    TRANSITIONS = {
        PENDING: {ACTIVE, EXPIRED, FRAUDULENT},
        ACTIVE: {COMPLETED, FRAUDULENT},
        COMPLETED: set(),
        EXPIRED: set(),
        FRAUDULENT: set(),
    }

    SOURCE_CHOICES = [
        ('email', 'Email'),
        ('whatsapp', 'WhatsApp'),
        ('telegram', 'Telegram'),
        ('social_media', 'Social Media'),
        ('direct_link', 'Direct Link'),
        ('qr_code', 'QR Code'),
        ('other', 'Other'),
    ]

    GUARDED_FIELDS = frozenset({
        'status',
        'activation_date',
        'completion_date',
        'referrer_rewarded',
        'referrer_rewarded_at',
        'referred_rewarded',
        'referred_rewarded_at',
        'fraud_score',
        'fraud_flags',
        'is_suspicious',
        'reviewed_by',
        'reviewed_at',
        'version',
    })

    PROGRESS_FIELDS = ('shares_completed', 'xp_earned', 'points_earned', 'days_active')

    referrer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='referrals_made')
    referred = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='referred_by')
    referral_code = models.CharField(max_length=20)
    source = models.CharField(max_length=20, choices=SOURCE_CHOICES, default='direct_link')
    channel = models.CharField(max_length=100, blank=True, default='')

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING, db_index=True)
    signup_date = models.DateTimeField(default=timezone.now)
    activation_date = models.DateTimeField(null=True, blank=True)
    completion_date = models.DateTimeField(null=True, blank=True)

    # Activation criteria
    min_shares = models.PositiveIntegerField(default=default_min_shares)
    min_xp_earned = models.PositiveIntegerField(default=default_min_xp_earned)
    min_points_earned = models.PositiveIntegerField(default=default_min_points_earned)
    min_days_active = models.PositiveIntegerField(default=default_min_days_active)

    # Activation progress
    shares_completed = models.PositiveIntegerField(default=0)
    xp_earned = models.PositiveIntegerField(default=0)
    points_earned = models.PositiveIntegerField(default=0)
    days_active = models.PositiveIntegerField(default=0)
    last_activity_date = models.DateTimeField(null=True, blank=True)

    # Rewards
    referrer_bonus_xp = models.PositiveIntegerField(default=default_referrer_bonus_xp)
    referrer_bonus_points = models.PositiveIntegerField(default=default_referrer_bonus_points)
    referred_bonus_xp = models.PositiveIntegerField(default=default_referred_bonus_xp)
    referred_bonus_points = models.PositiveIntegerField(default=default_referred_bonus_points)
    referrer_rewarded = models.BooleanField(default=False)
    referrer_rewarded_at = models.DateTimeField(null=True, blank=True)
    referred_rewarded = models.BooleanField(default=False)
    referred_rewarded_at = models.DateTimeField(null=True, blank=True)

    # Fraud detection
    fraud_score = models.PositiveSmallIntegerField(default=0)
    fraud_flags = models.JSONField(default=list, blank=True)
    is_suspicious = models.BooleanField(default=False, db_index=True)
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='reviewed_referrals'
    )
    reviewed_at = models.DateTimeField(null=True, blank=True)

    metadata = models.JSONField(default=dict, blank=True)
    expires_at = models.DateTimeField(default=default_referral_expiry, db_index=True)
    version = models.PositiveIntegerField(default=0)

    objects = UserReferralManager()

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['referrer', '-created_at'], name='referral_referrer_idx'),
            models.Index(fields=['status', '-created_at'], name='referral_status_idx'),
        ]

    def __str__(self):
        return f"{self.referrer_id} -> {self.referred_id} ({self.status})"

    def save(self, *args, **kwargs):
        if self._state.adding:
            if self.status == self.PENDING and self.can_be_activated:
                self.status = self.ACTIVE
                self.activation_date = timezone.now()
            super().save(*args, **kwargs)
            return
        if kwargs.get('update_fields') is None:
            kwargs['update_fields'] = [
                field.name
                for field in self._meta.concrete_fields
                if not field.primary_key and field.name not in self.GUARDED_FIELDS
            ]
        super().save(*args, **kwargs)
        self.activate_if_ready()

    # Derived values

    @property
    def activation_criteria(self):
        return {
            'min_shares': self.min_shares,
            'min_xp_earned': self.min_xp_earned,
            'min_points_earned': self.min_points_earned,
            'min_days_active': self.min_days_active,
        }

    @property
    def activation_progress(self):
        return {
            'shares_completed': self.shares_completed,
            'xp_earned': self.xp_earned,
            'points_earned': self.points_earned,
            'days_active': self.days_active,
            'last_activity_date': self.last_activity_date,
        }

    @property
    def age_days(self):
        return (timezone.now() - self.created_at).days

    @property
    def days_until_expiration(self):
        if not self.expires_at:
            return None
        seconds = (self.expires_at - timezone.now()).total_seconds()
        return max(0, math.ceil(seconds / 86400))

    @property
    def is_expired(self):
        return bool(self.expires_at) and timezone.now() > self.expires_at

    @staticmethod
    def _ratio(value, target):
        if target <= 0:
            return 100.0
        return min(100.0, value / target * 100)

    @property
    def activation_percentage(self):
        # Each metric is capped before averaging so one lagging metric cannot zero the rest
        ratios = (
            self._ratio(self.shares_completed, self.min_shares),
            self._ratio(self.xp_earned, self.min_xp_earned),
            self._ratio(self.points_earned, self.min_points_earned),
            self._ratio(self.days_active, self.min_days_active),
        )
        return int(round_half_up(sum(ratios) / 4))

    @property
    def criteria_met(self):
        return (
            self.shares_completed >= self.min_shares
            and self.xp_earned >= self.min_xp_earned
            and self.points_earned >= self.min_points_earned
            and self.days_active >= self.min_days_active
        )

    @property
    def can_be_activated(self):
        return self.status == self.PENDING and not self.is_expired and self.criteria_met

    # State machine

    def can_transition_to(self, status):
        return status in self.TRANSITIONS.get(self.status, set())

    def _guarded_update(self, guard, **changes):
        changes.setdefault('updated_at', timezone.now())
        changes['version'] = F('version') + 1
        updated = UserReferral.objects.filter(pk=self.pk, **guard).update(**changes)
        self.refresh_from_db()
        return bool(updated)

    def _transition(self, status, **extra):
        if status not in self.TRANSITIONS:
            raise ValidationError(f"Unknown referral status {status}", status=status)
        if self.status in self.TERMINAL_STATUSES:
            raise NotEligible(
                f"Referral {self.pk} is already {self.status}",
                code='referral_terminal',
                status=self.status,
            )
        if not self.can_transition_to(status):
            raise NotEligible(
                f"Referral {self.pk} cannot move from {self.status} to {status}",
                code='invalid_transition',
            )
        current = self.status
        if not self._guarded_update({'status': current}, status=status, **extra):
            raise NotEligible(f"Referral {self.pk} changed concurrently", code='stale_referral')
        return self

    def activate_if_ready(self):
        """Flip pending -> active when every criterion is met. Returns True on the flip."""
        if not self.can_be_activated:
            return False
        return self._guarded_update({'status': self.PENDING}, status=self.ACTIVE, activation_date=timezone.now())

    def update_progress(self, **updates):
        unknown = set(updates) - set(self.PROGRESS_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown progress fields: {sorted(unknown)}")
        for name, value in updates.items():
            if value is not None:
                if value < 0:
                    raise ValidationError(f"{name} cannot be negative", field=name)
                setattr(self, name, value)
        self.last_activity_date = timezone.now()
        # save() flips pending -> active once every criterion is met
        self.save(update_fields=list(self.PROGRESS_FIELDS) + ['last_activity_date', 'updated_at'])
        return self

    def mark_as_fraudulent(self, fraud_score, fraud_flags, reviewed_by=None):
        extra = {
            'fraud_score': int(max(0, min(100, fraud_score))),
            'fraud_flags': list(fraud_flags or []),
            'is_suspicious': True,
        }
        if reviewed_by is not None:
            extra['reviewed_by'] = reviewed_by
            extra['reviewed_at'] = timezone.now()
        return self._transition(self.FRAUDULENT, **extra)

    def flag_for_review(self, fraud_score, fraud_flags):
        """Record a suspicious score without leaving the current status."""
        if self.status in self.TERMINAL_STATUSES:
            raise NotEligible(f"Referral {self.pk} is already {self.status}", code='referral_terminal')
        self._guarded_update(
            {'status': self.status},
            fraud_score=int(max(0, min(100, fraud_score))),
            fraud_flags=list(fraud_flags or []),
            is_suspicious=True,
        )
        return self

    def record_fraud_score(self, fraud_score, fraud_flags=()):
        self._guarded_update({}, fraud_score=int(max(0, min(100, fraud_score))), fraud_flags=list(fraud_flags))
        return self

    def _award(self, side, user_id, xp, points, **credit_flags):
        from users.ledger import credit_user

        flag = f'{side}_rewarded'
        with transaction.atomic():
            flipped = UserReferral.objects.filter(
                pk=self.pk,
                status=self.ACTIVE,
                **{flag: False},
            ).update(**{
                flag: True,
                f'{flag}_at': timezone.now(),
                'version': F('version') + 1,
                'updated_at': timezone.now(),
            })
            if not flipped:
                self.refresh_from_db()
                if getattr(self, flag):
                    raise AlreadyAwarded(f"{side.capitalize()} bonus already awarded", referral_id=self.pk)
                raise NotEligible("Referral must be active to award bonus", code='referral_not_active',
                                  status=self.status)
            credit_user(user_id, xp, points, source=f"referral:{self.pk}:{side}", **credit_flags)
        self.refresh_from_db()
        return self

    def award_referrer_bonus(self):
        return self._award(
            'referrer', self.referrer_id, self.referrer_bonus_xp, self.referrer_bonus_points,
            referral_earnings=True, referral_completed=True,
        )

    def award_referred_bonus(self):
        return self._award('referred', self.referred_id, self.referred_bonus_xp, self.referred_bonus_points)

    def complete_referral(self):
        if self.status != self.ACTIVE:
            raise NotEligible("Referral must be active to complete", code='referral_not_active', status=self.status)
        return self._transition(self.COMPLETED, completion_date=timezone.now())

    def process_both_rewards(self):
        """Referrer bonus, then referred bonus, then completion. Safe to retry after a partial failure."""
        if not self.referrer_rewarded:
            self.award_referrer_bonus()
        if not self.referred_rewarded:
            self.award_referred_bonus()
        self.complete_referral()
        return {
            'referrer_bonus': {'xp': self.referrer_bonus_xp, 'points': self.referrer_bonus_points},
            'referred_bonus': {'xp': self.referred_bonus_xp, 'points': self.referred_bonus_points},
        }

    def validate_eligibility(self) -> EligibilityReport:
        errors = []
        if self.status != self.PENDING:
            errors.append('not_pending')
        if self.is_expired:
            errors.append('expired')
        if self.is_suspicious:
            errors.append('suspicious')
        if not self.criteria_met:
            errors.append('criteria_not_met')
        return EligibilityReport(is_valid=not errors, errors=tuple(errors))

    def get_summary(self):
        return {
            'id': self.pk,
            'referrer_id': self.referrer_id,
            'referred_id': self.referred_id,
            'referral_code': self.referral_code,
            'status': self.status,
            'activation_percentage': self.activation_percentage,
            'can_be_activated': self.can_be_activated,
            'age_days': self.age_days,
            'days_until_expiration': self.days_until_expiration,
            'is_expired': self.is_expired,
            'activation_criteria': self.activation_criteria,
            'activation_progress': self.activation_progress,
            'rewards': {
                'referrer_bonus': {'xp': self.referrer_bonus_xp, 'points': self.referrer_bonus_points},
                'referred_bonus': {'xp': self.referred_bonus_xp, 'points': self.referred_bonus_points},
                'referrer_rewarded': self.referrer_rewarded,
                'referrer_rewarded_at': self.referrer_rewarded_at,
                'referred_rewarded': self.referred_rewarded,
                'referred_rewarded_at': self.referred_rewarded_at,
            },
            'fraud_detection': {
                'fraud_score': self.fraud_score,
                'fraud_flags': list(self.fraud_flags),
                'is_suspicious': self.is_suspicious,
            },
            'created_at': self.created_at,
            'activation_date': self.activation_date,
            'completion_date': self.completion_date,
        }
