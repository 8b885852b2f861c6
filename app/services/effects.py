"""
Efectos secundarios de una transición: auditoría y notificaciones.
Las reglas los devuelven como datos; el dispatcher los ejecuta después del
commit de la escritura autoritativa.
"""

from dataclasses import dataclass, field
from uuid import UUID

from app.models.access_event import AccessAction, EventOutcome
from app.models.access_notification import NotificationType
from app.models.authorization import ActorKind


@dataclass(frozen=True)
class RequestContext:
    """Metadata de red de la request que originó la acción."""
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class AuditEffect:
    action: AccessAction
    outcome: EventOutcome
    resource_type: str
    resource_id: str
    authorization_id: UUID | None = None
    professional_id: UUID | None = None
    patient_id: UUID | None = None
    system_user_id: UUID | None = None
    error_code: str | None = None
    error_message: str | None = None
    details: dict | None = None

    @property
    def is_allow_path(self) -> bool:
        return self.outcome is EventOutcome.SUCCESS


@dataclass(frozen=True)
class Recipient:
    kind: ActorKind
    id: UUID


@dataclass(frozen=True)
class NotifyEffect:
    recipient: Recipient
    notification_type: NotificationType
    message: str
    metadata: dict = field(default_factory=dict)


Effect = AuditEffect | NotifyEffect
