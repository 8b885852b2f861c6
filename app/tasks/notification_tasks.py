"""
Tareas Celery para la entrega de notificaciones de acceso al DMP.
Cada notificación queda registrada en access_notifications.
"""

import asyncio
import logging

from app.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    name="notifications.deliver_access_notification",
)
def deliver_access_notification_task(self, payload: dict):
    """Persiste y envía (in-app o SMS) una notificación de acceso."""

    async def _deliver():
        from app.database import async_session_factory
        from app.services.notification_service import (
            NotificationDeliveryError,
            deliver_notification,
        )

        async with async_session_factory() as db:
            try:
                notification = await deliver_notification(db, payload)
            except NotificationDeliveryError as e:
                # Persistir el estado `failed` antes de reintentar
                await db.commit()
                payload["notification_id"] = str(e.notification_id)
                raise
            await db.commit()
            logger.info(
                f"Notificación {notification.notification_type.value} entregada "
                f"({notification.channel.value}, {notification.status.value})"
            )

    try:
        asyncio.run(_deliver())
    except Exception as exc:
        logger.error(f"Error entregando notificación de acceso: {exc}")
        raise self.retry(exc=exc, args=(payload,))


@celery_app.task(name="notifications.purge_old_notifications")
def purge_old_notifications():
    """
    Task periódico (cron semanal): elimina notificaciones más antiguas que
    NOTIFICATION_RETENTION_DAYS. El audit log de accesos no se purga.
    """

    async def _purge() -> int:
        from app.config import get_settings
        from app.database import async_session_factory
        from app.services.notification_service import purge_old_notifications as purge

        settings = get_settings()
        async with async_session_factory() as db:
            deleted = await purge(db, settings.NOTIFICATION_RETENTION_DAYS)
            await db.commit()
        return deleted

    deleted = asyncio.run(_purge())
    logger.info(f"Purgadas {deleted} notificaciones de acceso")
    return deleted
