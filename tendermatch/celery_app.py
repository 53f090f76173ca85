# tendermatch/celery_app.py
from celery import Celery
from tendermatch.config import settings

celery_app = Celery(
    "tendermatch",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["tendermatch.tasks"],
)

celery_app.conf.task_routes = {
    "tendermatch.tasks.sync_tenders_task": {"queue": settings.celery_queue},
    "tendermatch.tasks.refresh_recommendations_task": {"queue": settings.celery_queue},
}

celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    task_soft_time_limit=60 * 30,
)

celery_app.conf.beat_schedule = {
    "sync-tenders": {
        "task": "tendermatch.tasks.sync_tenders_task",
        "schedule": settings.tender_sync_interval_minutes * 60,
    },
    "refresh-recommendations": {
        "task": "tendermatch.tasks.refresh_recommendations_task",
        "schedule": settings.recommendation_refresh_interval_minutes * 60,
    },
}
