"""
Accesos excepcionales: urgencia y confidencial ("bris de glace").

Sin consentimiento previo del paciente. La autorización nace activa con
una ventana fija y siempre queda registrada en el audit log. La
notificación al paciente se decide por configuración, por tipo de acceso.

Un nuevo acceso excepcional del mismo tipo sobre el mismo par
profesional/paciente desactiva el anterior aún vigente.
"""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.timeutils import utcnow
from app.models.access_event import AccessAction
from app.models.access_notification import NotificationType
from app.models.authorization import AccessType, Authorization, AuthorizationStatus
from app.services import authorization_rules as rules
from app.services.authorization_rules import OverridePolicy
from app.services.directory_service import find_patient, find_professional
from app.services.effect_dispatcher import EffectDispatcher
from app.services.effects import RequestContext

settings = get_settings()
logger = logging.getLogger(__name__)


def emergency_policy() -> OverridePolicy:
    return OverridePolicy(
        access_type=AccessType.READ_EMERGENCY,
        duration=timedelta(hours=settings.EMERGENCY_ACCESS_DURATION_HOURS),
        notify_patient=settings.EMERGENCY_NOTIFY_PATIENT,
        action=AccessAction.GRANT_EMERGENCY,
        notification_type=NotificationType.EMERGENCY_ACCESS,
    )


def secret_policy() -> OverridePolicy:
    return OverridePolicy(
        access_type=AccessType.READ_SECRET,
        duration=timedelta(hours=settings.SECRET_ACCESS_DURATION_HOURS),
        notify_patient=settings.SECRET_NOTIFY_PATIENT,
        action=AccessAction.GRANT_SECRET,
        notification_type=NotificationType.SECRET_ACCESS,
    )


async def _live_overrides(
    db: AsyncSession,
    access_type: AccessType,
    professional_id: UUID,
    patient_id: UUID,
    now: datetime,
) -> list[Authorization]:
    result = await db.execute(
        select(Authorization)
        .where(
            Authorization.professional_id == professional_id,
            Authorization.patient_id == patient_id,
            Authorization.access_type == access_type,
            Authorization.status == AuthorizationStatus.ACTIVE,
            Authorization.deleted_at.is_(None),
        )
        .with_for_update(key_share=True)
        .execution_options(populate_existing=True)
    )
    return [a for a in result.scalars().all() if rules.is_authorised(a, now)]


async def _grant_override(
    db: AsyncSession,
    dispatcher: EffectDispatcher,
    policy: OverridePolicy,
    *,
    professional_id: UUID,
    patient_id: UUID,
    justification: str | None,
    context: RequestContext | None,
    now: datetime | None,
) -> Authorization:
    now = now or utcnow()
    professional = await find_professional(db, professional_id)
    patient = await find_patient(db, patient_id)
    transition = rules.new_override_grant(policy, professional, patient, justification, now)

    effects = []
    for previous in await _live_overrides(db, policy.access_type, professional.id, patient.id, now):
        superseded = rules.deactivate_grant(
            previous,
            None,
            "Reemplazada por un nuevo acceso excepcional",
            now,
            notify_professional=False,
        )
        effects.extend(superseded.effects)

    db.add(transition.authorization)
    await db.commit()

    logger.warning(
        f"Acceso excepcional {policy.access_type.value} {transition.authorization.id}: "
        f"profesional={professional_id} paciente={patient_id} "
        f"hasta {transition.authorization.end_at.isoformat()}"
    )
    await dispatcher.dispatch(db, effects + transition.effects, context)
    return transition.authorization


async def grant_emergency_access(
    db: AsyncSession,
    dispatcher: EffectDispatcher,
    *,
    professional_id: UUID,
    patient_id: UUID,
    justification: str | None,
    context: RequestContext | None = None,
    now: datetime | None = None,
) -> Authorization:
    """Acceso de urgencia: 24h, el paciente es notificado."""
    return await _grant_override(
        db,
        dispatcher,
        emergency_policy(),
        professional_id=professional_id,
        patient_id=patient_id,
        justification=justification,
        context=context,
        now=now,
    )


async def grant_secret_access(
    db: AsyncSession,
    dispatcher: EffectDispatcher,
    *,
    professional_id: UUID,
    patient_id: UUID,
    reason: str | None,
    context: RequestContext | None = None,
    now: datetime | None = None,
) -> Authorization:
    """Acceso confidencial: 2h, sin notificación al paciente por defecto."""
    return await _grant_override(
        db,
        dispatcher,
        secret_policy(),
        professional_id=professional_id,
        patient_id=patient_id,
        justification=reason,
        context=context,
        now=now,
    )
