"""
Notificaciones de acceso al DMP.

El canal se inyecta en el dispatcher de efectos: en producción encola una
tarea Celery por notificación; en tests se reemplaza por un canal en memoria.
La tarea persiste la notificación (in-app) y la envía por SMS si el
destinatario tiene teléfono registrado.
"""

import logging
from datetime import timedelta
from typing import Protocol
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import decrypt_pii
from app.core.timeutils import utcnow
from app.models.access_notification import (
    AccessNotification,
    NotificationChannelKind,
    NotificationStatus,
    NotificationType,
)
from app.models.authorization import ActorKind
from app.models.patient import Patient
from app.models.professional import Professional
from app.services.effects import Recipient
from app.services.sms_service import SMSError, send_sms

logger = logging.getLogger(__name__)

_PROCESSED_STATUSES = (
    NotificationStatus.SENT,
    NotificationStatus.SIMULATED,
    NotificationStatus.FAILED,
)


class NotificationDeliveryError(Exception):
    """Fallo de entrega; la fila queda en `failed` y se reutiliza en el reintento."""

    def __init__(self, notification_id: UUID, message: str):
        self.notification_id = notification_id
        self.message = message
        super().__init__(message)


class NotificationChannel(Protocol):
    def notify(self, recipient: Recipient, notification_type: NotificationType, message: str, metadata: dict) -> None:
        ...


class CeleryNotificationChannel:
    """Encola la entrega; nunca bloquea la request."""

    def notify(self, recipient: Recipient, notification_type: NotificationType, message: str, metadata: dict) -> None:
        from app.tasks.notification_tasks import deliver_access_notification_task

        deliver_access_notification_task.delay(
            build_payload(recipient, notification_type, message, metadata)
        )


def build_payload(
    recipient: Recipient,
    notification_type: NotificationType,
    message: str,
    metadata: dict,
) -> dict:
    return {
        "recipient_kind": recipient.kind.value,
        "recipient_id": str(recipient.id),
        "notification_type": notification_type.value,
        "message": message,
        "metadata": metadata,
    }


async def _recipient_phone(db: AsyncSession, kind: ActorKind, recipient_id: UUID) -> str | None:
    model = Patient if kind is ActorKind.PATIENT else Professional
    result = await db.execute(select(model.phone).where(model.id == recipient_id))
    encrypted = result.scalar_one_or_none()
    return decrypt_pii(encrypted) if encrypted else None


async def deliver_notification(db: AsyncSession, payload: dict) -> AccessNotification:
    """
    Persiste la notificación y la envía por SMS cuando hay teléfono.
    Sin teléfono queda como notificación in-app (status=sent).
    Un error de Twilio se registra en la fila y se propaga para reintento.
    """
    kind = ActorKind(payload["recipient_kind"])
    recipient_id = UUID(payload["recipient_id"])
    metadata = payload.get("metadata") or {}
    authorization_id = metadata.get("authorization_id")

    notification = None
    if payload.get("notification_id"):
        notification = await db.get(AccessNotification, UUID(payload["notification_id"]))
    if notification is None:
        notification = AccessNotification(
            recipient_kind=kind,
            recipient_id=recipient_id,
            authorization_id=UUID(authorization_id) if authorization_id else None,
            notification_type=NotificationType(payload["notification_type"]),
            message=payload["message"],
            payload=metadata,
        )
        db.add(notification)

    phone = None
    if kind is not ActorKind.SYSTEM:
        phone = await _recipient_phone(db, kind, recipient_id)

    if not phone:
        notification.channel = NotificationChannelKind.IN_APP
        notification.status = NotificationStatus.SENT
        notification.sent_at = utcnow()
        await db.flush()
        logger.info(f"Notificación in-app {notification.notification_type.value} para {kind.value} {recipient_id}")
        return notification

    notification.channel = NotificationChannelKind.SMS
    try:
        result = await send_sms(phone, notification.message)
    except SMSError as e:
        notification.status = NotificationStatus.FAILED
        notification.error_message = e.message
        await db.flush()
        raise NotificationDeliveryError(notification.id, e.message) from e

    notification.provider_sid = result.get("sid")
    notification.status = (
        NotificationStatus.SIMULATED
        if result.get("status") == "simulated"
        else NotificationStatus.SENT
    )
    notification.sent_at = utcnow()
    await db.flush()
    return notification


async def purge_old_notifications(db: AsyncSession, retention_days: int) -> int:
    """
    Borra notificaciones ya procesadas (enviadas, simuladas o fallidas) más
    antiguas que la retención. Las pendientes se conservan. El audit log no
    se toca.
    """
    cutoff = utcnow() - timedelta(days=retention_days)
    result = await db.execute(
        delete(AccessNotification).where(
            AccessNotification.created_at < cutoff,
            AccessNotification.status.in_(_PROCESSED_STATUSES),
        )
    )
    return result.rowcount or 0

