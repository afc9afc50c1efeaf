# range_controller/tasks/celery_app.py
import os

from celery import Celery

from range_controller.config import settings

# support env overrides but fall back to settings
REDIS_BROKER = os.getenv("CELERY_BROKER_URL") or settings.redis_url
CELERY_BACKEND = os.getenv("CELERY_RESULT_BACKEND") or settings.redis_url

# modules that define tasks, imported by workers at startup
INCLUDE_MODULES = [
    "range_controller.cloning.tasks",
]

celery_app = Celery(
    "range_tasks",
    broker=REDIS_BROKER,
    backend=CELERY_BACKEND,
    include=INCLUDE_MODULES,
)

# alias for `celery -A range_controller.tasks.celery_app.celery worker`
celery = celery_app

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_time_limit=3600,
    broker_connection_retry_on_startup=True,
)
