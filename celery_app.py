"""Celery configuration for background title generation."""
from celery import Celery

from settings import CELERY_BROKER_URL, CELERY_RESULT_BACKEND

# Create Celery instance
celery = Celery(
    'branching_chat',
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=['services.titles']  # Include task modules
)

# Configure Celery
celery.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    result_expires=3600,  # Results expire after 1 hour
    task_track_started=True,
    task_time_limit=5 * 60,  # 5 minutes hard limit
    task_soft_time_limit=4 * 60,  # 4 minutes soft limit
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    task_routes={'titles.*': {'queue': 'titles'}},  # Run workers with -Q titles
)

# Retry configuration
celery.conf.task_default_retry_delay = 30
celery.conf.task_max_retries = 2

if __name__ == '__main__':
    celery.start()
