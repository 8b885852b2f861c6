"""
Configuración de Celery para tareas asíncronas.
"""

from celery import Celery
from celery.schedules import crontab

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "dmp_access",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Europe/Paris",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

# ── Tareas periódicas (Celery Beat) ──────────────────
celery_app.conf.beat_schedule = {
    "purge-old-access-notifications": {
        "task": "notifications.purge_old_notifications",
        "schedule": crontab(hour=3, minute=0, day_of_week=0),
    },
}

# Módulos de tareas registrados en el worker
celery_app.conf.include = [
    "app.tasks.notification_tasks",
    "app.tasks.audit_tasks",
]
