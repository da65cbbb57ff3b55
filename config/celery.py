import os

from celery import Celery
from celery.schedules import crontab

# set the default Django settings module for the 'celery' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('ingain')

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
# - namespace='CELERY' means all celery-related configuration keys
#   should have a `CELERY_` prefix.
app.config_from_object('django.conf:settings', namespace='CELERY')

# Load task modules from all registered Django app configs.
app.autodiscover_tasks()

app.conf.beat_schedule.update({
    'expire-pending-referrals': {
        'task': 'achievements.expire_referrals',
        'schedule': crontab(minute=5),  # Hourly
    },
    'refresh-tournament-statuses': {
        'task': 'tournaments.refresh_statuses',
        'schedule': crontab(minute='*/15'),
    },
    'reset-stale-sharing-streaks': {
        'task': 'users.reset_stale_sharing_streaks',
        'schedule': crontab(hour=0, minute=10),  # Just after midnight UTC
    },
})

# Ensure DB connections are properly managed around every Celery task
from celery import signals  # noqa: E402
from django.db import close_old_connections, connections  # noqa: E402


@signals.task_prerun.connect
def _celery_prerun_close_stale_conns(*args, **kwargs):
    # Drop any stale/dangling DB connections before the task starts
    close_old_connections()


@signals.task_postrun.connect
def _celery_postrun_close_all_conns(*args, **kwargs):
    for conn in connections.all():
        conn.close()
