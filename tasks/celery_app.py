"""
tasks/celery_app.py
Celery application for out-of-band rating repair.

Worker (ratings queue):
    celery -A tasks.celery_app worker -Q ratings --loglevel=info

Beat (periodic full repair):
    celery -A tasks.celery_app beat --loglevel=info
"""

from celery import Celery

from config.settings import settings

RATINGS_QUEUE = "ratings"

celery_app = Celery(
    "lumera_marketplace",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["tasks.rating_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Recomputes are idempotent, so redelivery after a worker crash is safe
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    result_expires=3600,
    task_routes={"tasks.rating_tasks.*": {"queue": RATINGS_QUEUE}},
)

celery_app.conf.beat_schedule = {
    "repair-all-ratings": {
        "task": "tasks.rating_tasks.repair_all_ratings",
        "schedule": settings.RATING_REPAIR_INTERVAL_SECONDS,
    },
}
