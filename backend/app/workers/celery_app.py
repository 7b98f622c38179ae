"""
Celery application instance and configuration.
"""

from celery import Celery
from celery.signals import worker_process_init

from app.core.config import settings
from app.core.logging import setup_logging

# Create Celery application
celery_app = Celery(
    "airena",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

# Configure Celery
celery_app.conf.update(
    task_serializer=settings.CELERY_TASK_SERIALIZER,
    result_serializer=settings.CELERY_RESULT_SERIALIZER,
    accept_content=settings.celery_accept_content_list,
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=settings.CELERY_ENABLE_UTC,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    result_expires=3600,  # 1 hour
    worker_prefetch_multiplier=1,  # Syncs are long; don't hoard them
)

# Task routing
celery_app.conf.task_routes = {
    'arena.*': {'queue': 'arena'},
}


@worker_process_init.connect
def configure_worker_logging(**kwargs):
    setup_logging()


# Auto-discover tasks from app.tasks
celery_app.autodiscover_tasks(['app.tasks'])
