"""
Guarded balance mutations for the XP/Points ledger.

All writes are single conditional UPDATE statements built from ``F()``
expressions so concurrent credits never lose increments and a debit can never
take a balance below zero. Callers that need to pair a credit with another
guarded write (a referral flag flip, a share verification, a budget debit)
wrap both in ``transaction.atomic()``.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from users.exceptions import LimitExceeded, NotFound, ValidationError
from users.models import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    user_id: int
    xp: int
    points: int
    source: str
    current_xp: int
    current_points: int
    user_level: int
    level_changed: bool


def calculate_user_level(xp: int) -> int:
    """Level curve: 1 + floor(sqrt(xp / 100))."""
    if xp <= 0:
        return 1
    # isqrt on the integer quotient equals floor(sqrt(xp / 100)) without float error
    return 1 + math.isqrt(int(xp) // 100)


def _apply_level(user_id: int) -> tuple[User, bool]:
    user = User.objects.only('id', 'current_xp', 'current_points', 'user_level').get(pk=user_id)
    new_level = calculate_user_level(user.current_xp)
    # Levels only move up automatically; the guard keeps racing writers monotonic
    changed = User.objects.filter(pk=user_id, user_level__lt=new_level).update(user_level=new_level) > 0
    if changed:
        user.user_level = new_level
    return user, changed


def credit_user(
    user_id: int,
    xp: int,
    points: int,
    *,
    source: str,
    referral_earnings: bool = False,
    referral_completed: bool = False,
    badge_earned: bool = False,
) -> LedgerEntry:
    """Credit XP/Points to a user and bump the matching lifetime counters."""
    xp = int(xp)
    points = int(points)
    if xp < 0 or points < 0:
        raise ValidationError("Credits must be non-negative", xp=xp, points=points)

    updates = {
        'current_xp': F('current_xp') + xp,
        'current_points': F('current_points') + points,
        'total_xp_earned': F('total_xp_earned') + xp,
        'total_points_earned': F('total_points_earned') + points,
        'last_activity_at': timezone.now(),
    }
    if referral_earnings:
        updates['total_referral_earnings_xp'] = F('total_referral_earnings_xp') + xp
        updates['total_referral_earnings_points'] = F('total_referral_earnings_points') + points
    if referral_completed:
        updates['total_referrals_completed'] = F('total_referrals_completed') + 1
    if badge_earned:
        updates['total_badges_earned'] = F('total_badges_earned') + 1

    with transaction.atomic():
        if not User.objects.filter(pk=user_id).update(**updates):
            raise NotFound(f"User {user_id} not found", entity='user', entity_id=user_id)
        user, level_changed = _apply_level(user_id)

    logger.info(
        "Credited user %s with %s XP / %s points (source=%s, level=%s)",
        user_id, xp, points, source, user.user_level,
    )
    return LedgerEntry(
        user_id=user_id,
        xp=xp,
        points=points,
        source=source,
        current_xp=user.current_xp,
        current_points=user.current_points,
        user_level=user.user_level,
        level_changed=level_changed,
    )


def adjust_balance(user_id: int, xp_delta: int, points_delta: int, *, reason: str) -> LedgerEntry:
    """Explicit admin adjustment or refund.

    Negative deltas are allowed but guarded so a balance never drops below
    zero. Lifetime ``total_*_earned`` counters are never touched.
    """
    if not reason:
        raise ValidationError("An adjustment reason is required")
    xp_delta = int(xp_delta)
    points_delta = int(points_delta)

    guard = {}
    if xp_delta < 0:
        guard['current_xp__gte'] = -xp_delta
    if points_delta < 0:
        guard['current_points__gte'] = -points_delta

    with transaction.atomic():
        updated = User.objects.filter(pk=user_id, **guard).update(
            current_xp=F('current_xp') + xp_delta,
            current_points=F('current_points') + points_delta,
        )
        if not updated:
            if not User.objects.filter(pk=user_id).exists():
                raise NotFound(f"User {user_id} not found", entity='user', entity_id=user_id)
            raise LimitExceeded("Insufficient balance for adjustment", code='insufficient_balance')
        user = User.objects.only('id', 'current_xp', 'current_points', 'user_level').get(pk=user_id)

    logger.warning(
        "Adjusted balance for user %s by %s XP / %s points: %s",
        user_id, xp_delta, points_delta, reason,
    )
    return LedgerEntry(
        user_id=user_id,
        xp=xp_delta,
        points=points_delta,
        source=f"adjustment:{reason}",
        current_xp=user.current_xp,
        current_points=user.current_points,
        user_level=user.user_level,
        level_changed=False,
    )


def debit_points(user_id: int, points: int, *, reason: str) -> LedgerEntry:
    """Spend points (payouts). Fails with ``LimitExceeded`` when the balance is short."""
    points = int(points)
    if points <= 0:
        raise ValidationError("Debit amount must be positive", points=points)
    return adjust_balance(user_id, 0, -points, reason=reason)
