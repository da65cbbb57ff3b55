"""
Celery tasks for referral maintenance
"""
import logging

from celery import shared_task
from django.utils import timezone

from users.tasks import ensure_db_connection_closed

logger = logging.getLogger(__name__)


@shared_task(name='achievements.expire_referrals')
@ensure_db_connection_closed
def expire_referrals():
    """
    Hourly sweep that expires pending referrals past their deadline.

    Only touches rows still pending, so overlapping runs are harmless.
    """
    from achievements.services.referrals import expire_referrals as run_sweep

    try:
        expired = run_sweep(timezone.now())
        logger.info("Referral expiry sweep completed: %s expired", expired)
        return expired
    except Exception as e:
        logger.error(f"Error expiring referrals: {str(e)}", exc_info=True)
        raise
