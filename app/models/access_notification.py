"""
Modelo AccessNotification — Historial de notificaciones de acceso al DMP
(solicitudes, respuestas, revocaciones, accesos de urgencia).
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.timeutils import utcnow
from app.database import Base, JSONType
from app.models.authorization import ActorKind


class NotificationType(str, enum.Enum):
    """Tipos de notificación de acceso."""
    ACCESS_REQUEST = "access_request"
    ACCESS_GRANTED = "access_granted"
    ACCESS_REFUSED = "access_refused"
    ACCESS_REVOKED = "access_revoked"
    EMERGENCY_ACCESS = "emergency_access"
    SECRET_ACCESS = "secret_access"
    ACCESS_DEACTIVATED = "access_deactivated"


class NotificationChannelKind(str, enum.Enum):
    """Canal de entrega."""
    IN_APP = "in_app"
    SMS = "sms"


class NotificationStatus(str, enum.Enum):
    """Estados de entrega."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SIMULATED = "simulated"


def _enum(cls: type[enum.Enum], name: str) -> Enum:
    return Enum(cls, name=name, values_callable=lambda e: [x.value for x in e])


class AccessNotification(Base):
    __tablename__ = "access_notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    recipient_kind: Mapped[ActorKind] = mapped_column(
        _enum(ActorKind, "actorkind"), nullable=False,
    )
    recipient_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    authorization_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("authorizations.id")
    )

    notification_type: Mapped[NotificationType] = mapped_column(
        _enum(NotificationType, "notificationtype"), nullable=False,
    )
    channel: Mapped[NotificationChannelKind] = mapped_column(
        _enum(NotificationChannelKind, "notificationchannel"),
        nullable=False, default=NotificationChannelKind.IN_APP,
    )
    status: Mapped[NotificationStatus] = mapped_column(
        _enum(NotificationStatus, "notificationstatus"),
        nullable=False, default=NotificationStatus.PENDING,
    )

    message: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict | None] = mapped_column(
        JSONType, comment="Metadatos de la notificación (tipo de acceso, duración...)"
    )
    provider_sid: Mapped[str | None] = mapped_column(
        String(50), comment="SID del mensaje en Twilio"
    )
    error_message: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_notification_recipient", "recipient_kind", "recipient_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AccessNotification {self.notification_type.value} to={self.recipient_id} status={self.status.value}>"
