"""
Celery tasks for tournament lifecycle
"""
import logging

from celery import shared_task
from django.utils import timezone

from users.tasks import ensure_db_connection_closed

logger = logging.getLogger(__name__)


@shared_task(name='tournaments.refresh_statuses')
@ensure_db_connection_closed
def refresh_tournament_statuses():
    """Advance scheduled and live tournaments whose window has moved on."""
    from tournaments.services import refresh_tournament_statuses as run_refresh

    try:
        changed = run_refresh(timezone.now())
        logger.info("Tournament status refresh completed: %s changed", changed)
        return changed
    except Exception as e:
        logger.error(f"Error refreshing tournament statuses: {str(e)}", exc_info=True)
        raise
