"""
Pre-reward gate for share attempts.

Checks run in a fixed order and the first failure wins. Nothing here writes
to the database.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Optional

from django.utils import timezone

from catalog.models import App
from users.models import User

from ..models import ShareEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShareLimitResult:
    valid: bool
    reason: Optional[str] = None

    def __bool__(self):
        return self.valid


def _day_bounds(now):
    start = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
    return start, start + timedelta(days=1)


class ShareLimitValidator:
    """Rate, cooldown, level and budget checks for one user/app pair."""

    def __init__(self, now=None):
        self.now = now or timezone.now()

    def validate(self, user_id, app_id) -> ShareLimitResult:
        try:
            return self._validate(user_id, app_id)
        except Exception:
            logger.error("Error validating share limits for user %s app %s", user_id, app_id, exc_info=True)
            return ShareLimitResult(False, 'system_error')

    def _validate(self, user_id, app_id) -> ShareLimitResult:
        user = User.objects.filter(pk=user_id).first()
        if user is None:
            return ShareLimitResult(False, 'user_not_found')

        app = App.objects.filter(pk=app_id).first()
        if app is None:
            return ShareLimitResult(False, 'app_not_found')
        if not app.is_active:
            return ShareLimitResult(False, 'app_inactive')

        day_start, day_end = _day_bounds(self.now)
        todays_app_shares = ShareEvent.objects.filter(
            app_id=app.pk,
            created_at__gte=day_start,
            created_at__lt=day_end,
        ).exclude(validation_status=ShareEvent.STATUS_REJECTED)

        if todays_app_shares.filter(user_id=user.pk).count() >= app.daily_user_limit:
            return ShareLimitResult(False, 'user_daily_limit_exceeded')

        if todays_app_shares.count() >= app.daily_global_limit:
            return ShareLimitResult(False, 'global_daily_limit_exceeded')

        last_share = (
            ShareEvent.objects.filter(user_id=user.pk, app_id=app.pk)
            .order_by('-created_at')
            .values_list('created_at', flat=True)
            .first()
        )
        if last_share is not None and self.now - last_share < timedelta(minutes=app.cooldown_minutes):
            return ShareLimitResult(False, 'cooldown_active')

        if user.user_level < app.min_user_level:
            return ShareLimitResult(False, 'level_too_low')

        if not app.has_sufficient_budget():
            return ShareLimitResult(False, 'app_budget_exhausted')

        if app.daily_remaining_budget(self.now.date()) < app.cost_per_share:
            return ShareLimitResult(False, 'app_daily_budget_exhausted')

        return ShareLimitResult(True)


def validate_share_limits(user_id, app_id, now=None) -> ShareLimitResult:
    return ShareLimitValidator(now=now).validate(user_id, app_id)
