"""Celery application configuration.

Features:
- Redis as broker and result backend
- Task routing by queue
- Scheduled tasks via Celery Beat
"""

from celery import Celery
from celery.signals import worker_process_init

from bracket.config import get_settings
from bracket.logging_config import configure_logging
from bracket.middleware.sentry import init_sentry
from bracket.tasks.schedules import CELERY_BEAT_SCHEDULE, CELERY_TASK_ROUTES

settings = get_settings()

# Use DB 1 for broker, DB 2 for results
REDIS_BASE_URL = settings.redis_url.rsplit("/", 1)[0]

celery_app = Celery(
    "bracket_tasks",
    broker=f"{REDIS_BASE_URL}/1",
    backend=f"{REDIS_BASE_URL}/2",
    include=[
        "bracket.tasks.tournament",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    timezone="UTC",
    enable_utc=True,

    task_routes=CELERY_TASK_ROUTES,

    # A job lost with its worker is redelivered; advancement is idempotent
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    result_expires=86400,  # 24 hours

    beat_schedule=CELERY_BEAT_SCHEDULE,

    task_default_retry_delay=settings.advancement_backoff_seconds[0],
    task_max_retries=settings.advancement_max_retries,
)


if settings.app_env == "development":
    celery_app.conf.update(
        task_always_eager=False,  # Set to True to run tasks synchronously
        task_eager_propagates=True,
    )


@worker_process_init.connect
def _init_worker_process(**kwargs) -> None:
    configure_logging(log_level=settings.log_level, app_env=settings.app_env)
    init_sentry()
