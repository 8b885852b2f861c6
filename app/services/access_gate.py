"""
Control de acceso al dossier médico.

Cada llamada a `check_and_log` produce exactamente un AccessEvent, sea
concedida o denegada, y cada motivo de denegación es distinguible en el
audit log. El paciente siempre puede leer su propio dossier; esa lectura
también queda registrada.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import CredentialsException
from app.core.timeutils import utcnow
from app.models.access_event import AccessAction, EventOutcome
from app.models.authorization import Authorization
from app.services import audit_service
from app.services.authorization_rules import LiveStatus, classify
from app.services.capability_token_service import CapabilityClaims, validate_token
from app.services.effects import AuditEffect, RequestContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceRef:
    """Recurso clínico solicitado y paciente al que pertenece."""
    resource_type: str
    resource_id: str
    patient_id: UUID


@dataclass(frozen=True)
class CapabilityClaim:
    """Profesional que presenta un token de capacidad."""
    token: str
    professional_id: UUID


@dataclass(frozen=True)
class PatientSelfClaim:
    patient_id: UUID


AccessClaim = CapabilityClaim | PatientSelfClaim


class DenyReason(str, enum.Enum):
    TOKEN_INVALID = "token_invalid"
    TOKEN_EXPIRED = "token_expired"
    GRANT_MISSING = "grant_missing"
    GRANT_REVOKED = "grant_revoked"
    GRANT_EXPIRED = "grant_expired"
    SCOPE_MISMATCH = "scope_mismatch"
    NOT_OWNER = "not_owner"


_DENY_ACTIONS = {
    DenyReason.TOKEN_INVALID: AccessAction.DENY_TOKEN_INVALID,
    DenyReason.TOKEN_EXPIRED: AccessAction.DENY_TOKEN_EXPIRED,
    DenyReason.GRANT_MISSING: AccessAction.DENY_GRANT_MISSING,
    DenyReason.GRANT_REVOKED: AccessAction.DENY_GRANT_REVOKED,
    DenyReason.GRANT_EXPIRED: AccessAction.DENY_GRANT_EXPIRED,
    DenyReason.SCOPE_MISMATCH: AccessAction.DENY_SCOPE_MISMATCH,
    DenyReason.NOT_OWNER: AccessAction.DENY_NOT_OWNER,
}


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: DenyReason | None = None
    authorization: Authorization | None = None
    claims: CapabilityClaims | None = None
    self_access: bool = False


async def _load_authorization(db: AsyncSession, authorization_id: UUID) -> Authorization | None:
    result = await db.execute(
        select(Authorization)
        .where(
            Authorization.id == authorization_id,
            Authorization.deleted_at.is_(None),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _decide_capability(
    db: AsyncSession,
    claim: CapabilityClaim,
    resource: ResourceRef,
    now: datetime,
) -> AccessDecision:
    try:
        claims = validate_token(claim.token)
    except CredentialsException as e:
        reason = DenyReason.TOKEN_EXPIRED if e.code == "token_expired" else DenyReason.TOKEN_INVALID
        return AccessDecision(allowed=False, reason=reason)

    if claims.professional_id != claim.professional_id:
        return AccessDecision(allowed=False, reason=DenyReason.TOKEN_INVALID, claims=claims)
    if claims.patient_id != resource.patient_id:
        return AccessDecision(allowed=False, reason=DenyReason.SCOPE_MISMATCH, claims=claims)

    # El token no basta: la autorización se vuelve a verificar en cada lectura
    authorization = await _load_authorization(db, claims.authorization_id)
    if (
        authorization is None
        or authorization.professional_id != claims.professional_id
        or authorization.patient_id != claims.patient_id
    ):
        return AccessDecision(allowed=False, reason=DenyReason.GRANT_MISSING, claims=claims)

    status = classify(authorization, now)
    if status == LiveStatus.ACTIVE:
        return AccessDecision(allowed=True, authorization=authorization, claims=claims)
    if status == LiveStatus.EXPIRED:
        reason = DenyReason.GRANT_EXPIRED
    elif status == LiveStatus.REVOKED:
        reason = DenyReason.GRANT_REVOKED
    else:
        # pending o todavía no iniciada
        reason = DenyReason.GRANT_MISSING
    return AccessDecision(allowed=False, reason=reason, authorization=authorization, claims=claims)


def _decision_effect(
    claim: AccessClaim,
    resource: ResourceRef,
    decision: AccessDecision,
) -> AuditEffect:
    if isinstance(claim, PatientSelfClaim):
        action = AccessAction.RECORD_READ_SELF if decision.allowed else _DENY_ACTIONS[decision.reason]
        professional_id = None
    else:
        action = AccessAction.RECORD_READ if decision.allowed else _DENY_ACTIONS[decision.reason]
        professional_id = claim.professional_id

    details = {"requested_patient_id": str(resource.patient_id)}
    if isinstance(claim, PatientSelfClaim):
        details["caller_patient_id"] = str(claim.patient_id)
    if decision.claims is not None:
        details["jti"] = decision.claims.jti
        details["token_access_type"] = decision.claims.access_type.value
    if decision.authorization is not None:
        details["access_type"] = decision.authorization.access_type.value

    return AuditEffect(
        action=action,
        outcome=EventOutcome.SUCCESS if decision.allowed else EventOutcome.FAILURE,
        resource_type=resource.resource_type,
        resource_id=resource.resource_id,
        authorization_id=decision.authorization.id if decision.authorization else None,
        professional_id=professional_id,
        patient_id=resource.patient_id,
        error_code=decision.reason.value if decision.reason else None,
        error_message=None if decision.allowed else "Acceso denegado",
        details=details,
    )


async def check_and_log(
    db: AsyncSession,
    claim: AccessClaim,
    resource: ResourceRef,
    *,
    context: RequestContext | None = None,
    now: datetime | None = None,
) -> AccessDecision:
    """
    Decide el acceso a `resource` y registra exactamente un evento.
    Nunca lanza por una denegación: el llamador traduce la decisión.
    """
    now = now or utcnow()

    if isinstance(claim, PatientSelfClaim):
        if claim.patient_id == resource.patient_id:
            decision = AccessDecision(allowed=True, self_access=True)
        else:
            decision = AccessDecision(allowed=False, reason=DenyReason.NOT_OWNER)
    elif isinstance(claim, CapabilityClaim):
        decision = await _decide_capability(db, claim, resource, now)
    else:
        raise TypeError(f"Credencial de acceso no soportada: {claim!r}")

    await audit_service.record_event(db, _decision_effect(claim, resource, decision), context)

    if not decision.allowed:
        logger.info(
            f"Acceso denegado a {resource.resource_type} {resource.resource_id}: "
            f"{decision.reason.value}"
        )
    return decision
