"""
Sharing streak bookkeeping.

A streak counts consecutive calendar days (UTC) with at least one verified
share. Sharing again the next day extends it; a gap of two or more days
starts over at 1 when the user shares, or 0 when the daily reset finds no
share for yesterday.
"""
import logging
from datetime import date, timedelta
from typing import Optional

from django.db.models import F
from django.db.models.functions import Greatest

from users.exceptions import NotFound
from users.models import User

logger = logging.getLogger(__name__)


def next_streak_value(current_streak: int, last_share_date: Optional[date], share_day: date) -> int:
    if last_share_date is None:
        return 1
    if last_share_date == share_day:
        return max(current_streak, 1)
    if last_share_date == share_day - timedelta(days=1):
        return current_streak + 1
    if last_share_date > share_day:
        # Late verification of an older share never rewinds the streak
        return current_streak
    return 1


def update_sharing_streak(user_id: int, share_day: date) -> dict:
    """Record a verified share on ``share_day`` and return the new streak state."""
    user = User.objects.filter(pk=user_id).only(
        'id', 'sharing_streak_days', 'longest_sharing_streak', 'last_share_date'
    ).first()
    if user is None:
        raise NotFound(f"User {user_id} not found", entity='user', entity_id=user_id)

    new_streak = next_streak_value(user.sharing_streak_days, user.last_share_date, share_day)
    last_share_date = max(user.last_share_date, share_day) if user.last_share_date else share_day

    # Compare-and-set on the snapshot we derived the streak from
    updated = User.objects.filter(
        pk=user_id,
        sharing_streak_days=user.sharing_streak_days,
        last_share_date=user.last_share_date,
    ).update(
        sharing_streak_days=new_streak,
        longest_sharing_streak=Greatest(F('longest_sharing_streak'), new_streak),
        last_share_date=last_share_date,
    )
    if not updated:
        logger.warning("Streak snapshot for user %s changed concurrently; retrying", user_id)
        return update_sharing_streak(user_id, share_day)

    return {
        'current_streak': new_streak,
        'longest_streak': max(user.longest_sharing_streak, new_streak),
        'last_share_date': last_share_date,
    }


def reset_stale_streaks(today: date) -> int:
    """Zero the streak of every user whose last share is older than yesterday."""
    yesterday = today - timedelta(days=1)
    reset = User.objects.filter(
        sharing_streak_days__gt=0,
        last_share_date__lt=yesterday,
    ).update(sharing_streak_days=0)
    logger.info("Reset %s stale sharing streaks (cutoff %s)", reset, yesterday)
    return reset
