"""
Catalog of shareable apps and their categories.
"""
from decimal import Decimal

from django.db import models, transaction
from django.db.models import ExpressionWrapper, F, Sum
from django.utils import timezone
from django.utils.text import slugify

from users.exceptions import LimitExceeded, NotFound
from users.models import SoftDeleteModel


class Category(SoftDeleteModel):
    """Grouping used for catalog browsing and the diversity bonus"""

    name = models.CharField(max_length=100, unique=True)
    slug = models.SlugField(max_length=100, unique=True)
    description = models.TextField(blank=True, default='')
    color = models.CharField(max_length=7, default='#3B82F6')
    is_active = models.BooleanField(default=True)
    sort_order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['sort_order', 'name']
        verbose_name_plural = 'categories'

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = slugify(self.name)
        super().save(*args, **kwargs)


class App(SoftDeleteModel):
    """A promotable app with its reward, share-rule and budget configuration.

    Running totals (``total_shared``, ``total_*_allocated``,
    ``total_*_spent``) are only moved by ``record_share_allocation`` which
    refuses any debit that would take ``total_points_spent`` past
    ``budget_total``.
    """

    RUNNING_TOTAL_FIELDS = frozenset({
        'total_shared',
        'total_xp_allocated',
        'total_points_allocated',
        'total_xp_spent',
        'total_points_spent',
    })

    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=200, unique=True)
    description = models.TextField(blank=True, default='')
    host_identifier = models.CharField(
        max_length=100,
        blank=True,
        default='',
        help_text="External identifier of the host that funds this app"
    )
    categories = models.ManyToManyField(Category, related_name='apps', blank=True)
    geo_availability = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)
    is_featured = models.BooleanField(default=False)

    # Base rewards
    app_xp = models.PositiveIntegerField(default=0)
    app_points = models.PositiveIntegerField(default=0)

    # Share rules
    daily_user_limit = models.PositiveIntegerField(default=10)
    daily_global_limit = models.PositiveIntegerField(default=1000)
    cooldown_minutes = models.PositiveIntegerField(default=30)
    min_user_level = models.PositiveIntegerField(default=1)

    # Monetization
    budget_total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('10000'))
    budget_daily = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('1000'))
    cost_per_xp = models.DecimalField(max_digits=10, decimal_places=4, default=Decimal('0.01'))
    cost_per_point = models.DecimalField(max_digits=10, decimal_places=4, default=Decimal('0.1'))

    # Running totals
    total_shared = models.PositiveIntegerField(default=0)
    total_xp_allocated = models.PositiveBigIntegerField(default=0)
    total_points_allocated = models.PositiveBigIntegerField(default=0)
    total_xp_spent = models.PositiveBigIntegerField(default=0)
    total_points_spent = models.PositiveBigIntegerField(default=0)

    class Meta:
        ordering = ['-is_featured', 'name']

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = slugify(self.name)
        if not self._state.adding and kwargs.get('update_fields') is None:
            # Config edits never clobber totals moved by concurrent allocations
            kwargs['update_fields'] = [
                field.name
                for field in self._meta.concrete_fields
                if not field.primary_key and field.name not in self.RUNNING_TOTAL_FIELDS
            ]
        super().save(*args, **kwargs)

    @property
    def share_rules(self):
        return {
            'daily_user_limit': self.daily_user_limit,
            'daily_global_limit': self.daily_global_limit,
            'cooldown_minutes': self.cooldown_minutes,
            'min_user_level': self.min_user_level,
        }

    @property
    def monetization_config(self):
        return {
            'budget_total': self.budget_total,
            'budget_daily': self.budget_daily,
            'cost_per_xp': self.cost_per_xp,
            'cost_per_point': self.cost_per_point,
        }

    @property
    def category_ids(self):
        return set(self.categories.values_list('id', flat=True))

    @property
    def remaining_budget(self):
        return max(Decimal('0'), self.budget_total - self.total_points_spent)

    @property
    def cost_per_share(self):
        return self.app_xp * self.cost_per_xp + self.app_points * self.cost_per_point

    def has_sufficient_budget(self):
        return self.remaining_budget >= self.cost_per_share

    def daily_points_spent(self, day=None):
        """Points awarded by verified shares of this app on ``day`` (UTC)."""
        day = day or timezone.now().date()
        spent = self.share_events.filter(
            validation_status='verified',
            verified_at__date=day,
        ).aggregate(total=Sum('points_awarded'))['total']
        return spent or 0

    def daily_remaining_budget(self, day=None):
        return max(Decimal('0'), self.budget_daily - self.daily_points_spent(day))

    def get_performance_metrics(self):
        return {
            'total_shares': self.total_shared,
            'total_xp_distributed': self.total_xp_allocated,
            'total_points_distributed': self.total_points_allocated,
            'total_cost': self.total_points_spent,
            'average_reward_per_share': (
                (self.total_xp_allocated + self.total_points_allocated) / self.total_shared
                if self.total_shared else 0
            ),
            'budget_utilization': (
                float(self.total_points_spent / self.budget_total * 100)
                if self.budget_total > 0 else 0
            ),
        }


def record_share_allocation(app_id, xp_awarded, points_awarded):
    """Book a verified share against the app budget.

    Raises ``LimitExceeded('app_budget_exhausted')`` instead of letting
    ``total_points_spent`` exceed ``budget_total``.
    """
    xp_awarded = int(xp_awarded)
    points_awarded = int(points_awarded)
    ceiling = ExpressionWrapper(
        F('budget_total') - points_awarded,
        output_field=models.DecimalField(max_digits=16, decimal_places=2),
    )
    with transaction.atomic():
        updated = App.objects.filter(pk=app_id, total_points_spent__lte=ceiling).update(
            total_shared=F('total_shared') + 1,
            total_xp_allocated=F('total_xp_allocated') + xp_awarded,
            total_points_allocated=F('total_points_allocated') + points_awarded,
            total_xp_spent=F('total_xp_spent') + xp_awarded,
            total_points_spent=F('total_points_spent') + points_awarded,
        )
        if not updated:
            if not App.objects.filter(pk=app_id).exists():
                raise NotFound(f"App {app_id} not found", entity='app', entity_id=app_id)
            raise LimitExceeded(
                "App budget cannot cover this share",
                code='app_budget_exhausted',
                app_id=app_id,
                points=points_awarded,
            )
