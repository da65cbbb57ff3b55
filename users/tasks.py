"""
Celery tasks for scheduled user ledger maintenance
"""
import logging
from functools import wraps

from celery import shared_task
from django.db import connection
from django.utils import timezone

logger = logging.getLogger(__name__)


def ensure_db_connection_closed(func):
    """Decorator to ensure database connections are properly closed after task execution"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        finally:
            # Explicitly close database connections to prevent accumulation
            connection.close()
    return wrapper


@shared_task(name='users.reset_stale_sharing_streaks')
@ensure_db_connection_closed
def reset_stale_sharing_streaks():
    """
    Daily task that zeroes sharing streaks broken by a missed day.

    Scheduled in config/celery.py just after midnight UTC.
    """
    from users.streaks import reset_stale_streaks

    try:
        logger.info("Starting stale sharing streak reset...")
        reset = reset_stale_streaks(timezone.now().date())
        logger.info("Stale sharing streak reset completed: %s users", reset)
        return reset
    except Exception as e:
        logger.error(f"Error resetting sharing streaks: {str(e)}", exc_info=True)
        raise
