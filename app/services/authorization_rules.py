"""
Reglas del ciclo de vida de una autorización.

Funciones puras: cada transición calcula todos sus campos derivados de una
vez y devuelve los efectos (auditoría, notificaciones) que se ejecutan
después del commit. Ninguna toca la base de datos.

    pending ──accept──▶ active ──revoke──▶ denied
       │
       └──refuse / revoke──▶ denied

`expired` e `inactive` solo se escriben por procesos explícitos
(`expire_grant`, `deactivate_grant`); la vigencia se calcula en lectura.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from app.auth.actors import Actor, PatientActor, ProfessionalActor, SystemActor
from app.core.exceptions import InvalidStateException, ValidationException
from app.core.timeutils import as_utc
from app.models.access_event import AccessAction, EventOutcome
from app.models.access_notification import NotificationType
from app.models.authorization import (
    AccessType,
    ActorKind,
    Authorization,
    AuthorizationStatus,
)
from app.models.patient import Patient
from app.models.professional import Professional
from app.schemas.authorization import (
    EmergencyConditions,
    SecretConditions,
    dump_conditions,
    parse_conditions,
)
from app.services import notification_messages as messages
from app.services.effects import AuditEffect, Effect, NotifyEffect, Recipient


# ── Vigencia ─────────────────────────────────────────

class LiveStatus(str, enum.Enum):
    """Clasificación en lectura de una autorización almacenada."""
    ACTIVE = "active"
    PENDING = "pending"
    REVOKED = "revoked"
    EXPIRED = "expired"
    NOT_STARTED = "not_started"


def is_authorised(authorization: Authorization, now: datetime) -> bool:
    """
    Verificación de vigencia. Nunca muta estado: se llama en cada emisión
    de token y en cada lectura del dossier.
    """
    if authorization.status != AuthorizationStatus.ACTIVE:
        return False
    now = as_utc(now)
    end_at = as_utc(authorization.end_at)
    start_at = as_utc(authorization.start_at)
    if end_at is not None and now > end_at:
        return False
    if start_at is not None and now < start_at:
        return False
    return True


def classify(authorization: Authorization, now: datetime) -> LiveStatus:
    status = authorization.status
    if status == AuthorizationStatus.PENDING:
        return LiveStatus.PENDING
    if status in (AuthorizationStatus.DENIED, AuthorizationStatus.INACTIVE):
        return LiveStatus.REVOKED
    if status == AuthorizationStatus.EXPIRED:
        return LiveStatus.EXPIRED

    now = as_utc(now)
    end_at = as_utc(authorization.end_at)
    start_at = as_utc(authorization.start_at)
    if end_at is not None and now > end_at:
        return LiveStatus.EXPIRED
    if start_at is not None and now < start_at:
        return LiveStatus.NOT_STARTED
    return LiveStatus.ACTIVE


# ── Política de accesos excepcionales ────────────────

@dataclass(frozen=True)
class OverridePolicy:
    """Duración y notificación al paciente, configurables por separado."""
    access_type: AccessType
    duration: timedelta
    notify_patient: bool
    action: AccessAction
    notification_type: NotificationType


@dataclass
class Transition:
    authorization: Authorization
    effects: list[Effect] = field(default_factory=list)


# ── Helpers ──────────────────────────────────────────

def _actor_fields(actor: Actor | None) -> tuple[ActorKind, UUID | None]:
    if actor is None:
        return ActorKind.SYSTEM, None
    if isinstance(actor, (PatientActor, ProfessionalActor, SystemActor)):
        return actor.kind, actor.id
    raise TypeError(f"Actor no soportado: {actor!r}")


def _audit(
    authorization: Authorization,
    action: AccessAction,
    actor: Actor | None = None,
    *,
    outcome: EventOutcome = EventOutcome.SUCCESS,
    details: dict | None = None,
) -> AuditEffect:
    return AuditEffect(
        action=action,
        outcome=outcome,
        resource_type="authorization",
        resource_id=str(authorization.id),
        authorization_id=authorization.id,
        professional_id=authorization.professional_id,
        patient_id=authorization.patient_id,
        system_user_id=actor.user_id if isinstance(actor, SystemActor) else None,
        details={"access_type": authorization.access_type.value, **(details or {})},
    )


def _metadata(authorization: Authorization, **extra) -> dict:
    return {
        "authorization_id": str(authorization.id),
        "access_type": authorization.access_type.value,
        **extra,
    }


def _notify_professional(
    authorization: Authorization, notification_type: NotificationType, message: str
) -> NotifyEffect:
    return NotifyEffect(
        recipient=Recipient(kind=ActorKind.PROFESSIONAL, id=authorization.professional_id),
        notification_type=notification_type,
        message=message,
        metadata=_metadata(authorization, patient_id=str(authorization.patient_id)),
    )


def _notify_patient(
    authorization: Authorization, notification_type: NotificationType, message: str
) -> NotifyEffect:
    return NotifyEffect(
        recipient=Recipient(kind=ActorKind.PATIENT, id=authorization.patient_id),
        notification_type=notification_type,
        message=message,
        metadata=_metadata(authorization, professional_id=str(authorization.professional_id)),
    )


def patient_notifications_disabled(authorization: Authorization) -> bool:
    conditions = parse_conditions(authorization.conditions)
    return conditions is not None and conditions.notification_disabled


def _require_pending(authorization: Authorization) -> None:
    if authorization.status != AuthorizationStatus.PENDING:
        raise InvalidStateException(
            "La solicitud ya fue procesada", code="already_processed"
        )


# ── Transiciones ─────────────────────────────────────

def new_pending_request(
    professional: Professional,
    patient: Patient,
    reason: str | None,
    now: datetime,
) -> Transition:
    """Solicitud estándar: queda `pending` hasta que el paciente responda."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationException("El motivo de la solicitud es obligatorio", code="reason_required")

    authorization = Authorization(
        id=uuid.uuid4(),
        professional_id=professional.id,
        patient_id=patient.id,
        access_type=AccessType.READ_STANDARD,
        status=AuthorizationStatus.PENDING,
        start_at=now,
        end_at=None,
        requested_reason=reason,
        granted_by_kind=ActorKind.PROFESSIONAL,
        granted_by_id=professional.id,
    )
    return Transition(
        authorization=authorization,
        effects=[
            _audit(authorization, AccessAction.REQUEST_STANDARD, ProfessionalActor(professional.id)),
            _notify_patient(
                authorization,
                NotificationType.ACCESS_REQUEST,
                messages.access_request(professional.display_name, reason),
            ),
        ],
    )


def activate_grant(authorization: Authorization, patient: PatientActor, now: datetime) -> Transition:
    """Aceptación del paciente: pending → active, sin fecha de fin."""
    _require_pending(authorization)
    authorization.status = AuthorizationStatus.ACTIVE
    authorization.validated_at = now
    authorization.start_at = authorization.start_at or now
    authorization.end_at = None
    authorization.granted_by_kind = ActorKind.PATIENT
    authorization.granted_by_id = patient.patient_id
    return Transition(
        authorization=authorization,
        effects=[
            _audit(authorization, AccessAction.PATIENT_ACCEPT, patient),
            _notify_professional(
                authorization, NotificationType.ACCESS_GRANTED, messages.access_granted()
            ),
        ],
    )


def deny_grant(
    authorization: Authorization,
    patient: PatientActor,
    comment: str | None,
    now: datetime,
) -> Transition:
    """Rechazo del paciente: pending → denied."""
    _require_pending(authorization)
    authorization.status = AuthorizationStatus.DENIED
    authorization.revoked_at = now
    authorization.revocation_reason = (comment or "").strip() or "Solicitud rechazada por el paciente"
    authorization.granted_by_kind = ActorKind.PATIENT
    authorization.granted_by_id = patient.patient_id
    return Transition(
        authorization=authorization,
        effects=[
            _audit(authorization, AccessAction.PATIENT_REFUSE, patient),
            _notify_professional(
                authorization,
                NotificationType.ACCESS_REFUSED,
                messages.access_refused(authorization.revocation_reason),
            ),
        ],
    )


def revoke_grant(
    authorization: Authorization,
    actor: PatientActor | ProfessionalActor,
    reason: str | None,
    now: datetime,
) -> Transition:
    """Revocación por el paciente titular o el profesional solicitante."""
    if authorization.status not in (AuthorizationStatus.PENDING, AuthorizationStatus.ACTIVE):
        raise InvalidStateException(
            "La autorización ya no está vigente", code="not_revocable"
        )

    kind, actor_id = _actor_fields(actor)
    default_reason = (
        "Revocada por el paciente" if isinstance(actor, PatientActor)
        else "Revocada por el profesional"
    )
    authorization.status = AuthorizationStatus.DENIED
    authorization.revoked_at = now
    authorization.revocation_reason = (reason or "").strip() or default_reason
    authorization.granted_by_kind = kind
    authorization.granted_by_id = actor_id

    effects: list[Effect] = [_audit(authorization, AccessAction.REVOKE, actor)]
    message = messages.access_revoked(authorization.revocation_reason)
    if isinstance(actor, PatientActor):
        effects.append(
            _notify_professional(authorization, NotificationType.ACCESS_REVOKED, message)
        )
    elif not patient_notifications_disabled(authorization):
        effects.append(
            _notify_patient(authorization, NotificationType.ACCESS_REVOKED, message)
        )
    return Transition(authorization=authorization, effects=effects)


def new_override_grant(
    policy: OverridePolicy,
    professional: Professional,
    patient: Patient,
    justification: str | None,
    now: datetime,
) -> Transition:
    """
    Acceso de urgencia o confidencial: nace `active` con ventana fija,
    sin fase `pending`. Siempre auditado; la notificación al paciente
    depende solo de `policy.notify_patient`.
    """
    justification = (justification or "").strip()
    if not justification:
        raise ValidationException(
            "La justificación es obligatoria para un acceso excepcional",
            code="justification_required",
        )

    if policy.access_type == AccessType.READ_EMERGENCY:
        conditions = EmergencyConditions(
            justification=justification,
            notification_disabled=not policy.notify_patient,
        )
    elif policy.access_type == AccessType.READ_SECRET:
        conditions = SecretConditions(notification_disabled=not policy.notify_patient)
    else:
        raise ValueError(f"Tipo de acceso sin política de excepción: {policy.access_type}")

    authorization = Authorization(
        id=uuid.uuid4(),
        professional_id=professional.id,
        patient_id=patient.id,
        access_type=policy.access_type,
        status=AuthorizationStatus.ACTIVE,
        start_at=now,
        end_at=now + policy.duration,
        requested_reason=justification,
        granted_by_kind=ActorKind.SYSTEM,
        granted_by_id=None,
        conditions=dump_conditions(conditions),
    )

    effects: list[Effect] = [
        _audit(
            authorization,
            policy.action,
            ProfessionalActor(professional.id),
            details={
                "justification": justification,
                "duration_seconds": int(policy.duration.total_seconds()),
                "patient_notified": policy.notify_patient,
            },
        )
    ]
    if policy.notify_patient:
        effects.append(
            _notify_patient(
                authorization,
                policy.notification_type,
                messages.exceptional_access(professional.display_name, policy.duration),
            )
        )
    return Transition(authorization=authorization, effects=effects)


def expire_grant(authorization: Authorization, now: datetime) -> Transition:
    """Materializa `expired` en un grant activo cuya ventana ya terminó."""
    if classify(authorization, now) != LiveStatus.EXPIRED or authorization.status != AuthorizationStatus.ACTIVE:
        raise InvalidStateException("La autorización sigue vigente", code="still_active")
    authorization.status = AuthorizationStatus.EXPIRED
    authorization.granted_by_kind = ActorKind.SYSTEM
    authorization.granted_by_id = None
    return Transition(
        authorization=authorization,
        effects=[_audit(authorization, AccessAction.EXPIRE)],
    )


def deactivate_grant(
    authorization: Authorization,
    actor: SystemActor | None,
    reason: str,
    now: datetime,
    *,
    notify_professional: bool = True,
) -> Transition:
    """Desactivación administrativa: pending/active → inactive."""
    if authorization.status not in (AuthorizationStatus.PENDING, AuthorizationStatus.ACTIVE):
        raise InvalidStateException(
            "La autorización ya no está vigente", code="not_revocable"
        )
    authorization.status = AuthorizationStatus.INACTIVE
    authorization.revoked_at = now
    authorization.revocation_reason = reason
    authorization.granted_by_kind = ActorKind.SYSTEM
    authorization.granted_by_id = actor.user_id if actor else None

    effects: list[Effect] = [
        _audit(authorization, AccessAction.DEACTIVATE, actor, details={"reason": reason})
    ]
    if notify_professional:
        effects.append(
            _notify_professional(
                authorization,
                NotificationType.ACCESS_DEACTIVATED,
                messages.access_deactivated(reason),
            )
        )
    return Transition(authorization=authorization, effects=effects)


def soft_delete(
    authorization: Authorization,
    actor: SystemActor,
    reason: str | None,
    now: datetime,
) -> Transition:
    """Tombstone: la fila se conserva para la auditoría."""
    if authorization.deleted_at is not None:
        raise InvalidStateException("La autorización ya fue eliminada", code="already_deleted")
    authorization.deleted_at = now
    return Transition(
        authorization=authorization,
        effects=[
            _audit(authorization, AccessAction.DELETE, actor, details={"reason": reason})
        ],
    )


def request_conflict_effect(
    professional_id: UUID,
    patient_id: UUID,
    existing_id: UUID | None,
) -> AuditEffect:
    """Intento fallido de solicitud duplicada."""
    return AuditEffect(
        action=AccessAction.REQUEST_STANDARD,
        outcome=EventOutcome.FAILURE,
        resource_type="authorization" if existing_id else "patient",
        resource_id=str(existing_id or patient_id),
        authorization_id=existing_id,
        professional_id=professional_id,
        patient_id=patient_id,
        error_code="already_requested",
        error_message="Solicitud pendiente o autorización activa existente",
    )
