"""
Celery application configuration.

Configures Celery for background canonical backfills with Redis as the broker.
"""
from celery import Celery
from celery.signals import worker_process_init

from invoice_canon.config import get_settings
from invoice_canon.logging_config import configure_logging

# Redis URL for Celery broker and result backend
REDIS_URL = get_settings().redis_url

# Create Celery application
celery_app = Celery(
    "invoice_canon",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=["invoice_canon.tasks.canonical_tasks"],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,  # Acknowledge after task completes (not before)
    task_reject_on_worker_lost=True,  # Requeue if worker dies
    task_time_limit=1800,  # 30 minute hard limit
    task_soft_time_limit=1740,  # 29 minute soft limit (allows cleanup)

    # Result settings
    result_expires=86400,  # Results expire after 24 hours

    # Worker settings
    worker_prefetch_multiplier=1,  # Process one task at a time
    worker_concurrency=2,

    # Retry settings
    task_default_retry_delay=60,  # 1 minute between retries
    task_max_retries=3,
)

celery_app.conf.task_routes = {
    "invoice_canon.tasks.canonical_tasks.run_canonical_backfill": {"queue": "canonical_backfill"},
}


@worker_process_init.connect
def _init_worker_logging(**kwargs) -> None:
    configure_logging()
