from decimal import Decimal, ROUND_HALF_UP

from django.utils import timezone

from .models import User


def round_half_up(value):
    """Round to the nearest integer with halves going up (2.5 -> 3).

    Python's ``round`` uses banker's rounding, which would turn a 27.5 XP
    bonus into 28 but a 2.5 Points bonus into 2.
    """
    return int(Decimal(str(value)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def touch_user_activity(user_id, when=None):
    """Update a user's last_activity_at without loading the row."""
    when = when or timezone.now()
    if user_id:
        User.objects.filter(id=user_id).update(last_activity_at=when)
