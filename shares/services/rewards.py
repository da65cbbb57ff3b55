"""
Share reward calculation.

Each bonus is a pure function of a frozen snapshot, so the same user/app/
tournament state always yields the same breakdown. Only the ``build_*``
helpers and the ``calculate_*_share_rewards`` entry points touch the
database.

Regular share, applied in this order:
    1. veteran multiplier on the base (level >= 10, x1.10, rounded)
    2. streak bonus from the veteran-adjusted base (streak >= 7 days)
    3. first-time-app bonus from the veteran-adjusted base
    4. flat category-diversity bonus

Tournament share, on top of the regular total:
    multiplier bonus, rank performance bonus, tournament streak bonus.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, FrozenSet, Optional

from django.db.models.functions import TruncDate
from django.utils import timezone

from users.engine_settings import engine_setting
from users.utils import round_half_up

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Amounts:
    xp: int = 0
    points: int = 0

    def __add__(self, other):
        return Amounts(self.xp + other.xp, self.points + other.points)


ZERO = Amounts()


@dataclass(frozen=True)
class UserSnapshot:
    user_id: int
    user_level: int
    sharing_streak_days: int
    region: str = 'GLOBAL'
    prior_verified_app_shares: int = 0
    shared_category_ids: FrozenSet[int] = frozenset()


@dataclass(frozen=True)
class AppSnapshot:
    app_id: int
    app_xp: int
    app_points: int
    category_ids: FrozenSet[int] = frozenset()


@dataclass(frozen=True)
class TournamentSnapshot:
    tournament_id: int
    reward_multiplier: Decimal
    participant_rank: Optional[int]
    total_participants: int
    unique_active_days: int


@dataclass(frozen=True)
class RewardResult:
    success: bool
    total_xp: int = 0
    total_points: int = 0
    share_type: str = 'regular'
    tournament_id: Optional[int] = None
    reason: Optional[str] = None
    breakdown: Dict = field(default_factory=dict)

    @classmethod
    def failure(cls, reason):
        return cls(success=False, reason=reason)


@dataclass(frozen=True)
class ShareTypeDecision:
    share_type: str
    reason: Optional[str] = None
    tournament: object = None
    auto_detected: bool = False


# ---------------------------------------------------------------------------
# Pure bonus functions
# ---------------------------------------------------------------------------

def veteran_adjusted_base(base: Amounts, user: UserSnapshot) -> Amounts:
    if user.user_level < engine_setting('VETERAN_MIN_LEVEL'):
        return base
    multiplier = engine_setting('VETERAN_MULTIPLIER')
    return Amounts(
        round_half_up(base.xp * multiplier),
        round_half_up(base.points * multiplier),
    )


def streak_bonus(base: Amounts, user: UserSnapshot) -> Amounts:
    if user.sharing_streak_days < engine_setting('STREAK_MIN_DAYS'):
        return ZERO
    return Amounts(
        round_half_up(base.xp * engine_setting('STREAK_XP_RATE')),
        round_half_up(base.points * engine_setting('STREAK_POINTS_RATE')),
    )


def first_time_bonus(base: Amounts, user: UserSnapshot) -> Amounts:
    if user.prior_verified_app_shares > 0:
        return ZERO
    return Amounts(
        round_half_up(base.xp * engine_setting('FIRST_SHARE_XP_RATE')),
        round_half_up(base.points * engine_setting('FIRST_SHARE_POINTS_RATE')),
    )


def diversity_bonus(app: AppSnapshot, user: UserSnapshot) -> Amounts:
    if len(user.shared_category_ids) < engine_setting('DIVERSITY_MIN_CATEGORIES'):
        return ZERO
    if not (app.category_ids - user.shared_category_ids):
        return ZERO
    return Amounts(engine_setting('DIVERSITY_BONUS_XP'), engine_setting('DIVERSITY_BONUS_POINTS'))


def tournament_multiplier_bonus(regular_total: Amounts, tournament: TournamentSnapshot) -> Amounts:
    extra = tournament.reward_multiplier - Decimal('1')
    return Amounts(
        round_half_up(regular_total.xp * extra),
        round_half_up(regular_total.points * extra),
    )


def performance_bonus(regular_total: Amounts, tournament: TournamentSnapshot) -> Amounts:
    rank = tournament.participant_rank
    if rank is None or tournament.total_participants <= 0:
        return ZERO
    if rank <= tournament.total_participants * engine_setting('TOURNAMENT_TOP_TIER_FRACTION'):
        xp_rate = engine_setting('TOURNAMENT_TOP_TIER_XP_RATE')
        points_rate = engine_setting('TOURNAMENT_TOP_TIER_POINTS_RATE')
    elif rank <= tournament.total_participants * engine_setting('TOURNAMENT_SECOND_TIER_FRACTION'):
        xp_rate = engine_setting('TOURNAMENT_SECOND_TIER_XP_RATE')
        points_rate = engine_setting('TOURNAMENT_SECOND_TIER_POINTS_RATE')
    else:
        return ZERO
    return Amounts(
        round_half_up(regular_total.xp * xp_rate),
        round_half_up(regular_total.points * points_rate),
    )


def tournament_streak_bonus(tournament: TournamentSnapshot) -> Amounts:
    days = tournament.unique_active_days
    if days < engine_setting('TOURNAMENT_STREAK_MIN_DAYS'):
        return ZERO
    return Amounts(
        engine_setting('TOURNAMENT_STREAK_XP_PER_DAY') * days,
        engine_setting('TOURNAMENT_STREAK_POINTS_PER_DAY') * days,
    )


def calculate_regular_rewards(user: UserSnapshot, app: AppSnapshot) -> RewardResult:
    base = veteran_adjusted_base(Amounts(app.app_xp, app.app_points), user)
    streak = streak_bonus(base, user)
    first_time = first_time_bonus(base, user)
    diversity = diversity_bonus(app, user)
    total = base + streak + first_time + diversity
    return RewardResult(
        success=True,
        total_xp=total.xp,
        total_points=total.points,
        share_type='regular',
        breakdown={
            'base_xp': base.xp,
            'base_points': base.points,
            'streak_bonus_xp': streak.xp,
            'streak_bonus_points': streak.points,
            'first_time_bonus_xp': first_time.xp,
            'first_time_bonus_points': first_time.points,
            'diversity_bonus_xp': diversity.xp,
            'diversity_bonus_points': diversity.points,
        },
    )


def calculate_tournament_rewards(
    user: UserSnapshot, app: AppSnapshot, tournament: TournamentSnapshot
) -> RewardResult:
    regular = calculate_regular_rewards(user, app)
    regular_total = Amounts(regular.total_xp, regular.total_points)
    multiplier = tournament_multiplier_bonus(regular_total, tournament)
    performance = performance_bonus(regular_total, tournament)
    streak = tournament_streak_bonus(tournament)
    total = regular_total + multiplier + performance + streak

    breakdown = dict(regular.breakdown)
    breakdown.update({
        'regular_total_xp': regular_total.xp,
        'regular_total_points': regular_total.points,
        'tournament_xp_bonus': multiplier.xp,
        'tournament_points_bonus': multiplier.points,
        'performance_bonus_xp': performance.xp,
        'performance_bonus_points': performance.points,
        'tournament_streak_xp': streak.xp,
        'tournament_streak_points': streak.points,
        'participant_rank': tournament.participant_rank,
        'total_participants': tournament.total_participants,
    })
    return RewardResult(
        success=True,
        total_xp=total.xp,
        total_points=total.points,
        share_type='tournament',
        tournament_id=tournament.tournament_id,
        breakdown=breakdown,
    )


# ---------------------------------------------------------------------------
# Snapshot builders
# ---------------------------------------------------------------------------

def build_app_snapshot(app) -> AppSnapshot:
    return AppSnapshot(
        app_id=app.pk,
        app_xp=app.app_xp,
        app_points=app.app_points,
        category_ids=frozenset(app.category_ids),
    )


def build_user_snapshot(user, app, exclude_share_id=None) -> UserSnapshot:
    from catalog.models import Category
    from shares.models import ShareEvent

    verified = ShareEvent.objects.filter(user_id=user.pk, validation_status=ShareEvent.STATUS_VERIFIED)
    if exclude_share_id is not None:
        verified = verified.exclude(pk=exclude_share_id)

    shared_app_ids = verified.values('app_id').distinct()
    shared_category_ids = frozenset(
        Category.objects.filter(apps__in=shared_app_ids).values_list('id', flat=True).distinct()
    )
    return UserSnapshot(
        user_id=user.pk,
        user_level=user.user_level,
        sharing_streak_days=user.sharing_streak_days,
        region=user.region,
        prior_verified_app_shares=verified.filter(app_id=app.pk).count(),
        shared_category_ids=shared_category_ids,
    )


def build_tournament_snapshot(tournament, user_id, exclude_share_id=None) -> TournamentSnapshot:
    from shares.models import ShareEvent
    from tournaments.models import TournamentParticipant
    from tournaments.services import get_participant_rank

    participant_count = tournament.participants.filter(
        status__in=TournamentParticipant.COMPETING_STATUSES
    ).count()
    days = (
        ShareEvent.objects.filter(
            tournament_id=tournament.pk,
            user_id=user_id,
            validation_status=ShareEvent.STATUS_VERIFIED,
            verified_at__isnull=False,
        )
        .exclude(pk=exclude_share_id)
        .annotate(day=TruncDate('verified_at'))
        .values_list('day', flat=True)
        .distinct()
    )
    multiplier = tournament.reward_multiplier
    if multiplier is None:
        multiplier = engine_setting('TOURNAMENT_DEFAULT_MULTIPLIER')
    return TournamentSnapshot(
        tournament_id=tournament.pk,
        reward_multiplier=Decimal(str(multiplier)),
        participant_rank=get_participant_rank(tournament.pk, user_id),
        total_participants=tournament.total_participants or participant_count,
        unique_active_days=len(set(days)),
    )


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def determine_share_type(user, app, tournament_id=None, now: Optional[datetime] = None) -> ShareTypeDecision:
    """Decide whether a share counts for a tournament.

    With an explicit ``tournament_id`` the tournament must be live, list the
    app and have the user registered and region-eligible. Without one, the
    first live tournament that satisfies the same rules is picked.
    """
    from tournaments.models import Tournament
    from tournaments.services import is_user_registered

    now = now or timezone.now()
    try:
        if tournament_id is not None:
            tournament = Tournament.objects.filter(pk=tournament_id).first()
            if tournament is None:
                return ShareTypeDecision('regular', reason='tournament_not_found')
            if not tournament.is_live(now):
                return ShareTypeDecision('regular', reason='tournament_not_active')
            if not tournament.includes_app(app.pk):
                return ShareTypeDecision('regular', reason='app_not_in_tournament')
            if not is_user_registered(tournament.pk, user.pk):
                return ShareTypeDecision('regular', reason='user_not_registered')
            if not tournament.is_region_eligible(user.region):
                return ShareTypeDecision('regular', reason='region_not_eligible')
            return ShareTypeDecision('tournament', tournament=tournament)

        candidates = Tournament.objects.filter(
            status='live',
            start_date__lte=now,
            end_date__gte=now,
            apps=app,
        ).order_by('start_date', 'pk')
        for tournament in candidates:
            if is_user_registered(tournament.pk, user.pk) and tournament.is_region_eligible(user.region):
                return ShareTypeDecision('tournament', tournament=tournament, auto_detected=True)
        return ShareTypeDecision('regular')
    except Exception:
        logger.error("Error determining share type for user %s app %s", user.pk, app.pk, exc_info=True)
        return ShareTypeDecision('regular', reason='system_error')


def calculate_regular_share_rewards(user_id, app_id, verification=None, exclude_share_id=None) -> RewardResult:
    from catalog.models import App
    from users.models import User

    try:
        app = App.objects.filter(pk=app_id).first()
        if app is None:
            return RewardResult.failure('app_not_found')
        user = User.objects.filter(pk=user_id).first()
        if user is None:
            return RewardResult.failure('user_not_found')
        return calculate_regular_rewards(
            build_user_snapshot(user, app, exclude_share_id),
            build_app_snapshot(app),
        )
    except Exception:
        logger.error("Error calculating regular share rewards for user %s app %s", user_id, app_id, exc_info=True)
        return RewardResult.failure('system_error')


def calculate_tournament_share_rewards(
    user_id, app_id, tournament_id, verification=None, exclude_share_id=None
) -> RewardResult:
    from catalog.models import App
    from tournaments.models import Tournament
    from users.models import User

    try:
        app = App.objects.filter(pk=app_id).first()
        if app is None:
            return RewardResult.failure('app_not_found')
        user = User.objects.filter(pk=user_id).first()
        if user is None:
            return RewardResult.failure('user_not_found')
        tournament = Tournament.objects.filter(pk=tournament_id).first()
        if tournament is None:
            return RewardResult.failure('tournament_not_found')
        return calculate_tournament_rewards(
            build_user_snapshot(user, app, exclude_share_id),
            build_app_snapshot(app),
            build_tournament_snapshot(tournament, user.pk, exclude_share_id),
        )
    except Exception:
        logger.error(
            "Error calculating tournament share rewards for user %s app %s tournament %s",
            user_id, app_id, tournament_id, exc_info=True,
        )
        return RewardResult.failure('system_error')


def calculate_share_rewards(user_id, app_id, tournament_id=None, verification=None, now=None,
                            exclude_share_id=None) -> RewardResult:
    """Route a share to the regular or tournament calculator."""
    from catalog.models import App
    from users.models import User

    app = App.objects.filter(pk=app_id).first()
    if app is None:
        return RewardResult.failure('app_not_found')
    user = User.objects.filter(pk=user_id).first()
    if user is None:
        return RewardResult.failure('user_not_found')

    decision = determine_share_type(user, app, tournament_id, now=now)
    if decision.share_type == 'tournament':
        return calculate_tournament_share_rewards(
            user_id, app_id, decision.tournament.pk, verification, exclude_share_id
        )
    return calculate_regular_share_rewards(user_id, app_id, verification, exclude_share_id)
