"""
Badge evaluation.

A badge is awarded at most once per user: the ``UserBadge`` unique pair is
the guard, so a racing second grant fails on insert and never credits the
badge rewards twice. Progress reporting reads the same stats snapshot and
never writes anything but ``BadgeProgress`` rows.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from catalog.models import Category
from shares.models import ShareEvent
from users.exceptions import AlreadyAwarded, NotEligible, NotFound
from users.ledger import credit_user
from users.models import User

from ..models import Badge, BadgeProgress, UserBadge

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BadgeEligibility:
    eligible: bool
    reason: str
    current_value: int = 0
    required_value: int = 0
    progress_percentage: float = 0.0


def build_user_stats(user) -> Dict:
    """Snapshot of the counters badge criteria are evaluated against."""
    verified = ShareEvent.objects.filter(user_id=user.pk, validation_status=ShareEvent.STATUS_VERIFIED)
    return {
        'current_xp': user.current_xp,
        'current_points': user.current_points,
        'user_level': user.user_level,
        'total_xp_earned': user.total_xp_earned,
        'total_points_earned': user.total_points_earned,
        'total_apps_shared': user.total_apps_shared,
        'total_tournaments_won': user.total_tournaments_won,
        'sharing_streak_days': user.sharing_streak_days,
        'successful_referrals_count': user.total_referrals_completed,
        'total_badges_earned': user.total_badges_earned,
        'total_payouts_received': int(user.total_payouts_received),
        'unique_apps_shared': verified.values('app_id').distinct().count(),
        'unique_categories_shared': Category.objects.filter(
            apps__share_events__in=verified
        ).distinct().count(),
    }


def check_badge_eligibility(user, badge, trigger=None, stats=None, held: Optional[Set[int]] = None,
                            now=None) -> BadgeEligibility:
    """Decide whether ``user`` qualifies for ``badge`` right now. No side effects."""
    if not badge.is_active:
        return BadgeEligibility(False, 'badge_inactive')
    held = user.badge_ids if held is None else held
    if badge.pk in held:
        return BadgeEligibility(False, 'already_earned')
    if badge.is_seasonal and not badge.is_available(now):
        return BadgeEligibility(False, 'outside_seasonal_period')
    if any(prereq not in held for prereq in badge.prerequisite_badges.values_list('id', flat=True)):
        return BadgeEligibility(False, 'prerequisite_missing')
    if any(other in held for other in badge.exclusive_with.values_list('id', flat=True)):
        return BadgeEligibility(False, 'exclusive_conflict')

    stats = build_user_stats(user) if stats is None else stats
    value = badge.get_current_value(stats)
    eligible = badge.evaluate_threshold(value)
    return BadgeEligibility(
        eligible=eligible,
        reason='eligible' if eligible else 'threshold_not_met',
        current_value=value,
        required_value=badge.threshold_value,
        progress_percentage=badge.progress_percentage(value),
    )


def grant_badge(user_id, badge_id, trigger='system_grant', context=None, stats=None, now=None):
    """Award a badge and credit its rewards. Returns ``(UserBadge, LedgerEntry)``."""
    user = User.objects.filter(pk=user_id).first()
    if user is None:
        raise NotFound(f"User {user_id} not found", entity='user', entity_id=user_id)
    badge = Badge.objects.filter(pk=badge_id).first()
    if badge is None:
        raise NotFound(f"Badge {badge_id} not found", entity='badge', entity_id=badge_id)

    eligibility = check_badge_eligibility(user, badge, trigger, stats, now=now)
    if eligibility.reason == 'already_earned':
        raise AlreadyAwarded(f"Badge {badge_id} already held by user {user_id}", badge_id=badge_id)
    if not eligibility.eligible:
        raise NotEligible(f"User {user_id} does not qualify for badge {badge_id}", code=eligibility.reason)

    with transaction.atomic():
        try:
            with transaction.atomic():
                user_badge = UserBadge.objects.create(
                    user_id=user_id,
                    badge=badge,
                    earned_at=now or timezone.now(),
                    xp_awarded=badge.xp_reward,
                    points_awarded=badge.points_reward,
                    achievement_value=eligibility.current_value,
                    trigger=trigger or '',
                    achievement_context=context or {},
                )
        except IntegrityError:
            raise AlreadyAwarded(f"Badge {badge_id} already held by user {user_id}", badge_id=badge_id)
        entry = credit_user(
            user_id, badge.xp_reward, badge.points_reward,
            source=f"badge:{badge.pk}", badge_earned=True,
        )
        Badge.objects.filter(pk=badge.pk).update(users_achieved_count=F('users_achieved_count') + 1)

    logger.info("Granted badge %s to user %s (trigger=%s)", badge.slug, user_id, trigger)
    return user_badge, entry


def evaluate_user_badges(user_id, trigger='system', context=None, now=None) -> List[Badge]:
    """Grant every active badge the user now qualifies for and refresh progress.

    Passes repeat until nothing new is granted so badges unlocked by an
    earlier grant (prerequisites, badge counts, level) are picked up in the
    same call.
    """
    user = User.objects.filter(pk=user_id).first()
    if user is None:
        raise NotFound(f"User {user_id} not found", entity='user', entity_id=user_id)

    stats = build_user_stats(user)
    held = user.badge_ids
    awarded = []
    candidates = list(Badge.objects.filter(is_active=True).exclude(pk__in=held))

    granted_in_pass = True
    while granted_in_pass:
        granted_in_pass = False
        for badge in candidates:
            if badge.pk in held:
                continue
            if not check_badge_eligibility(user, badge, trigger, stats, held, now).eligible:
                continue
            try:
                _, entry = grant_badge(user_id, badge.pk, trigger, context, stats, now)
            except (AlreadyAwarded, NotEligible):
                logger.warning("Skipped badge %s for user %s: granted concurrently", badge.pk, user_id)
                held.add(badge.pk)
                continue
            held.add(badge.pk)
            awarded.append(badge)
            granted_in_pass = True
            stats.update(
                current_xp=entry.current_xp,
                current_points=entry.current_points,
                user_level=entry.user_level,
                total_xp_earned=stats['total_xp_earned'] + badge.xp_reward,
                total_points_earned=stats['total_points_earned'] + badge.points_reward,
                total_badges_earned=stats['total_badges_earned'] + 1,
            )

    update_badge_progress(user, stats, held, now=now)
    return awarded


def update_badge_progress(user, stats=None, held=None, now=None):
    """Upsert ``BadgeProgress`` for every active badge the user does not hold."""
    stats = build_user_stats(user) if stats is None else stats
    held = user.badge_ids if held is None else held
    now = now or timezone.now()
    updated = 0
    for badge in Badge.objects.filter(is_active=True).exclude(pk__in=held):
        value = badge.get_current_value(stats)
        BadgeProgress.objects.update_or_create(
            user=user,
            badge=badge,
            defaults={
                'current_value': value,
                'percentage_complete': round(badge.progress_percentage(value), 2),
                'last_updated': now,
            },
        )
        updated += 1
    return updated


def find_next_closest_badges(user, stats=None, limit=5):
    stats = build_user_stats(user) if stats is None else stats
    closest = []
    for badge in Badge.objects.filter(is_active=True).exclude(pk__in=user.badge_ids):
        value = badge.get_current_value(stats)
        progress = badge.progress_percentage(value)
        if progress >= 50:
            closest.append({
                'badge_id': badge.pk,
                'badge_name': badge.name,
                'badge_icon': badge.icon_url,
                'rarity': badge.rarity,
                'progress_percentage': progress,
                'current_value': value,
                'threshold_value': badge.threshold_value,
            })
    closest.sort(key=lambda item: item['progress_percentage'], reverse=True)
    return closest[:limit]
