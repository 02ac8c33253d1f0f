from celery import Celery

from core.config import settings

EMAIL_QUEUE = "emails"

# Redis is both broker and result backend
celery_app = Celery(
    "shop_backend",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["tasks.email_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=60 * 60 * 24,
    timezone="UTC",
    enable_utc=True,
    # Order and password emails run on their own queue
    task_routes={"tasks.email_tasks.*": {"queue": EMAIL_QUEUE}},
    task_default_queue=EMAIL_QUEUE,
    # Redelivered if the worker dies mid-send
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=2 * 60,
    task_soft_time_limit=90,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=500,
    broker_connection_retry_on_startup=True,
    # Publishing fails fast; send_email falls back to direct SMTP
    broker_transport_options={"max_retries": 1, "interval_start": 0, "interval_step": 0.2},
)
