"""
Celery Application — background recalculation for the production ERP.
Batch work (refreshing cached product costs after fund or price changes)
runs here, off the FastAPI request path.
"""
from celery import Celery

from erp.config import CELERY_BROKER_URL, CELERY_RESULT_BACKEND

BROKER_URL = CELERY_BROKER_URL or "redis://localhost:6379/0"

celery_app = Celery(
    "production_erp",
    broker=BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=["erp.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Europe/Moscow",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_soft_time_limit=300,   # 5 minutes soft limit
    task_time_limit=600,        # 10 minutes hard limit
    result_expires=3600,        # Results expire after 1 hour
)
