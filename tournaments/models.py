from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone

from users.models import SoftDeleteModel


class Tournament(SoftDeleteModel):
    """Time-boxed competition that boosts rewards for shares of listed apps"""

    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('scheduled', 'Scheduled'),
        ('live', 'Live'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    ]

    CATEGORY_CHOICES = [
        ('weekly_challenge', 'Weekly Challenge'),
        ('seasonal', 'Seasonal'),
        ('app_launch', 'App Launch'),
        ('special_event', 'Special Event'),
        ('regional', 'Regional'),
    ]

    SCORING_CHOICES = [
        ('shares_count', 'Shares Count'),
        ('xp_earned', 'XP Earned'),
        ('points_earned', 'Points Earned'),
        ('weighted_score', 'Weighted Score'),
    ]

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    category = models.CharField(max_length=30, choices=CATEGORY_CHOICES, default='weekly_challenge')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft', db_index=True)

    start_date = models.DateTimeField()
    end_date = models.DateTimeField()
    registration_deadline = models.DateTimeField(null=True, blank=True)

    apps = models.ManyToManyField('catalog.App', related_name='tournaments')
    eligible_regions = models.JSONField(default=list, blank=True)
    max_participants = models.PositiveIntegerField(default=1000)
    min_user_level = models.PositiveIntegerField(default=1)

    scoring_method = models.CharField(max_length=20, choices=SCORING_CHOICES, default='shares_count')
    score_multiplier = models.DecimalField(
        max_digits=4,
        decimal_places=2,
        default=Decimal('1.00'),
        help_text="Multiplier applied to the raw leaderboard score"
    )
    reward_multiplier = models.DecimalField(
        max_digits=4,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Share reward multiplier; empty uses the engine default"
    )

    total_participants = models.PositiveIntegerField(default=0)
    total_shares = models.PositiveIntegerField(default=0)
    total_xp_allocated = models.PositiveBigIntegerField(default=0)
    total_points_allocated = models.PositiveBigIntegerField(default=0)

    class Meta:
        ordering = ['-start_date']
        indexes = [
            models.Index(fields=['status', 'start_date', 'end_date'], name='tourn_status_window_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.status})"

    @property
    def regions(self):
        return self.eligible_regions or ['GLOBAL']

    def is_live(self, now=None):
        now = now or timezone.now()
        return self.status == 'live' and self.start_date <= now <= self.end_date

    def registration_open(self, now=None):
        if self.status not in ('scheduled', 'live'):
            return False
        now = now or timezone.now()
        if self.registration_deadline and now > self.registration_deadline:
            return False
        return now <= self.end_date

    def progress_percentage(self, now=None):
        now = now or timezone.now()
        total = (self.end_date - self.start_date).total_seconds()
        if total <= 0:
            return 0
        elapsed = (now - self.start_date).total_seconds()
        return min(100.0, max(0.0, elapsed / total * 100))

    def is_region_eligible(self, region):
        regions = self.regions
        return 'GLOBAL' in regions or region in regions

    def includes_app(self, app_id):
        return self.apps.filter(pk=app_id).exists()

    def update_status(self, now=None):
        """Advance scheduled → live → completed based on the time window."""
        now = now or timezone.now()
        target = None
        if self.status == 'scheduled' and self.start_date <= now:
            target = 'completed' if now > self.end_date else 'live'
        elif self.status == 'live' and now > self.end_date:
            target = 'completed'
        if target is None:
            return False

        moved = Tournament.objects.filter(pk=self.pk, status=self.status).update(
            status=target, updated_at=now
        )
        if moved:
            self.status = target
        return bool(moved)


class TournamentParticipant(SoftDeleteModel):
    STATUS_CHOICES = [
        ('registered', 'Registered'),
        ('active', 'Active'),
        ('disqualified', 'Disqualified'),
        ('withdrawn', 'Withdrawn'),
    ]
    COMPETING_STATUSES = ('registered', 'active')

    tournament = models.ForeignKey(Tournament, on_delete=models.CASCADE, related_name='participants')
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='tournament_entries'
    )
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='registered')
    registered_at = models.DateTimeField(default=timezone.now)

    shares_count = models.PositiveIntegerField(default=0)
    xp_earned = models.PositiveBigIntegerField(default=0)
    points_earned = models.PositiveBigIntegerField(default=0)
    total_score = models.PositiveBigIntegerField(default=0, db_index=True)
    last_scored_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-total_score', 'registered_at']
        constraints = [
            models.UniqueConstraint(fields=['tournament', 'user'], name='unique_tournament_participant'),
        ]

    def __str__(self):
        return f"{self.user_id} in {self.tournament_id}: {self.total_score}"
