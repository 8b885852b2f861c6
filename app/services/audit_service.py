"""
Servicio de Audit Log de accesos: registra cada intento de acceso y cada
transición de autorización.
INSERT-only, nunca se modifica ni elimina.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.pagination import paginate
from app.database import independent_session
from app.models.access_event import AccessEvent, EventOutcome
from app.models.authorization import Authorization, visible_to_patient
from app.services.effects import AuditEffect, RequestContext

logger = logging.getLogger(__name__)


def _sanitize_for_json(data: dict | None) -> dict | None:
    """Convierte tipos no serializables (date, datetime, UUID, Decimal, Enum) a strings."""
    if data is None:
        return None
    sanitized = {}
    for key, value in data.items():
        if isinstance(value, (date, datetime)):
            sanitized[key] = value.isoformat()
        elif isinstance(value, UUID):
            sanitized[key] = str(value)
        elif isinstance(value, Decimal):
            sanitized[key] = float(value)
        elif isinstance(value, Enum):
            sanitized[key] = value.value
        elif isinstance(value, dict):
            sanitized[key] = _sanitize_for_json(value)
        elif isinstance(value, list):
            sanitized[key] = [
                _sanitize_for_json(item) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            sanitized[key] = value
    return sanitized


def effect_to_payload(effect: AuditEffect, context: RequestContext | None = None) -> dict:
    """Serializa un AuditEffect (JSON-safe) para reintento vía Celery."""
    context = context or RequestContext()
    return _sanitize_for_json({
        "action": effect.action,
        "outcome": effect.outcome,
        "resource_type": effect.resource_type,
        "resource_id": effect.resource_id,
        "authorization_id": effect.authorization_id,
        "professional_id": effect.professional_id,
        "patient_id": effect.patient_id,
        "system_user_id": effect.system_user_id,
        "error_code": effect.error_code,
        "error_message": effect.error_message,
        "details": effect.details,
        "ip_address": context.ip_address,
        "user_agent": context.user_agent,
    })


def _entry_from_payload(payload: dict) -> AccessEvent:
    def _uuid(key: str) -> UUID | None:
        value = payload.get(key)
        return UUID(value) if value else None

    return AccessEvent(
        action=payload["action"],
        outcome=EventOutcome(payload["outcome"]),
        resource_type=payload["resource_type"],
        resource_id=str(payload["resource_id"]),
        authorization_id=_uuid("authorization_id"),
        professional_id=_uuid("professional_id"),
        patient_id=_uuid("patient_id"),
        system_user_id=_uuid("system_user_id"),
        error_code=payload.get("error_code"),
        error_message=payload.get("error_message"),
        details=payload.get("details"),
        ip_address=payload.get("ip_address"),
        user_agent=payload.get("user_agent"),
    )


async def log_event(db: AsyncSession, payload: dict) -> AccessEvent:
    """Inserta un registro de auditoría inmutable (flush, sin commit)."""
    entry = _entry_from_payload(payload)
    db.add(entry)
    await db.flush()
    return entry


async def record_event(
    db: AsyncSession,
    effect: AuditEffect,
    context: RequestContext | None = None,
) -> AccessEvent | None:
    """
    Escribe el evento en su propia transacción, independiente de la sesión
    del llamador. Un fallo de escritura nunca se propaga: se registra en el
    log (CRITICAL si el acceso fue concedido) y se reintenta vía Celery.
    """
    payload = effect_to_payload(effect, context)
    try:
        async with independent_session(db) as audit_db:
            entry = await log_event(audit_db, payload)
            await audit_db.commit()
            return entry
    except Exception as e:
        # asyncpg lanza OSError si la conexión falla, no SQLAlchemyError
        log = logger.critical if effect.is_allow_path else logger.error
        log(f"No se pudo registrar el evento de acceso {effect.action.value}: {e!r} | payload={payload}")

    _enqueue_retry(payload)
    return None


def _enqueue_retry(payload: dict) -> None:
    try:
        from app.tasks.audit_tasks import write_access_event_task

        write_access_event_task.delay(payload)
    except Exception:
        logger.exception(f"No se pudo encolar el reintento de auditoría: {payload}")


async def get_access_history(
    db: AsyncSession,
    *,
    patient_id: UUID | None = None,
    professional_id: UUID | None = None,
    action: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    patient_view: bool = False,
    page: int = 1,
    size: int = 20,
) -> dict:
    """
    Consulta paginada del historial de accesos, más recientes primero.
    `patient_view` oculta los eventos ligados a autorizaciones creadas con
    la notificación al paciente suprimida (flag guardado en cada una).
    """
    query = select(AccessEvent).where(AccessEvent.deleted_at.is_(None))

    if patient_id:
        query = query.where(AccessEvent.patient_id == patient_id)
    if professional_id:
        query = query.where(AccessEvent.professional_id == professional_id)
    if action:
        query = query.where(AccessEvent.action == action)
    if date_from:
        query = query.where(AccessEvent.created_at >= date_from)
    if date_to:
        query = query.where(AccessEvent.created_at <= date_to)

    if patient_view:
        query = query.outerjoin(
            Authorization, AccessEvent.authorization_id == Authorization.id
        ).where(visible_to_patient())

    query = query.order_by(AccessEvent.created_at.desc(), AccessEvent.id)
    return await paginate(db, query, page, size)
