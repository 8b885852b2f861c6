"""
Reintento de escritura del audit log de accesos.
Se encola cuando la escritura síncrona de un AccessEvent falla.
"""

import asyncio
import logging

from app.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=5,
    default_retry_delay=30,
    name="audit.write_access_event",
)
def write_access_event_task(self, payload: dict):
    """Inserta el AccessEvent serializado en `payload`."""

    async def _write():
        from app.database import async_session_factory
        from app.services.audit_service import log_event

        async with async_session_factory() as db:
            entry = await log_event(db, payload)
            await db.commit()
            return entry.id

    try:
        event_id = asyncio.run(_write())
    except Exception as exc:
        logger.critical(f"Reintento de auditoría fallido ({payload.get('action')}): {exc}")
        raise self.retry(exc=exc)

    logger.info(f"AccessEvent {event_id} registrado en reintento ({payload.get('action')})")
