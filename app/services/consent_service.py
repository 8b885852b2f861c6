"""
Flujo de consentimiento: solicitud estándar, respuesta del paciente y
revocación.

Cada operación valida, aplica la transición pura, confirma la escritura y
recién entonces despacha los efectos (auditoría y notificaciones).
"""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.auth.actors import PatientActor, ProfessionalActor
from app.auth.rbac import owns_authorization
from app.core.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
)
from app.core.pagination import paginate
from app.core.timeutils import utcnow
from app.models.authorization import (
    AccessType,
    Authorization,
    AuthorizationStatus,
    visible_to_patient,
)
from app.schemas.authorization import ConsentDecision
from app.services import authorization_rules as rules
from app.services import capability_token_service
from app.services.capability_token_service import IssuedToken
from app.services.directory_service import find_patient, find_professional
from app.services.effect_dispatcher import EffectDispatcher
from app.services.effects import RequestContext

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (AuthorizationStatus.PENDING, AuthorizationStatus.ACTIVE)


# ── Consultas ────────────────────────────────────────

async def get_authorization(
    db: AsyncSession,
    authorization_id: UUID,
    *,
    for_update: bool = False,
) -> Authorization:
    """Autorización no eliminada por ID o NotFoundException."""
    query = select(Authorization).where(
        Authorization.id == authorization_id,
        Authorization.deleted_at.is_(None),
    ).execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update(key_share=True)
    result = await db.execute(query)
    authorization = result.scalar_one_or_none()
    if authorization is None:
        raise NotFoundException("Autorización", "Autorización no encontrada")
    return authorization


async def _find_open_standard(
    db: AsyncSession, professional_id: UUID, patient_id: UUID
) -> Authorization | None:
    result = await db.execute(
        select(Authorization)
        .where(
            Authorization.professional_id == professional_id,
            Authorization.patient_id == patient_id,
            Authorization.access_type == AccessType.READ_STANDARD,
            Authorization.status.in_(_OPEN_STATUSES),
            Authorization.deleted_at.is_(None),
        )
        .with_for_update(key_share=True)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _live_filter(now: datetime):
    """Condición SQL equivalente a `is_authorised` en `now`."""
    return (
        (Authorization.status == AuthorizationStatus.ACTIVE)
        & Authorization.deleted_at.is_(None)
        & or_(Authorization.end_at.is_(None), Authorization.end_at >= now)
        & or_(Authorization.start_at.is_(None), Authorization.start_at <= now)
    )


async def has_access(
    db: AsyncSession,
    professional_id: UUID,
    patient_id: UUID,
    now: datetime | None = None,
) -> Authorization | None:
    """Autorización vigente del profesional sobre el paciente, si existe."""
    now = now or utcnow()
    result = await db.execute(
        select(Authorization)
        .where(
            Authorization.professional_id == professional_id,
            Authorization.patient_id == patient_id,
            _live_filter(now),
        )
        .order_by(Authorization.end_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_pending_requests(
    db: AsyncSession,
    patient_id: UUID,
    *,
    page: int = 1,
    size: int = 20,
) -> dict:
    query = (
        select(Authorization)
        .where(
            Authorization.patient_id == patient_id,
            Authorization.status == AuthorizationStatus.PENDING,
            Authorization.deleted_at.is_(None),
        )
        .order_by(Authorization.created_at.desc())
    )
    return await paginate(db, query, page, size)


async def list_active_grants(
    db: AsyncSession,
    *,
    professional_id: UUID | None = None,
    patient_id: UUID | None = None,
    patient_view: bool = False,
    now: datetime | None = None,
    page: int = 1,
    size: int = 20,
) -> dict:
    """
    Autorizaciones vigentes en `now` (por profesional o por paciente).
    `patient_view` oculta las creadas con la notificación al paciente suprimida.
    """
    now = now or utcnow()
    query = select(Authorization).where(_live_filter(now))
    if professional_id:
        query = query.where(Authorization.professional_id == professional_id)
    if patient_id:
        query = query.where(Authorization.patient_id == patient_id)
    if patient_view:
        query = query.where(visible_to_patient())
    query = query.order_by(Authorization.created_at.desc())
    return await paginate(db, query, page, size)


# ── Solicitud estándar ───────────────────────────────

async def request_access(
    db: AsyncSession,
    dispatcher: EffectDispatcher,
    *,
    professional_id: UUID,
    patient_id: UUID,
    reason: str | None,
    context: RequestContext | None = None,
    now: datetime | None = None,
) -> Authorization:
    """
    Crea una solicitud `pending`. Como máximo una solicitud estándar abierta
    (pending o active) por par profesional/paciente: la comprobación y la
    inserción son atómicas gracias al índice único parcial.
    """
    now = now or utcnow()
    professional = await find_professional(db, professional_id)
    patient = await find_patient(db, patient_id)
    transition = rules.new_pending_request(professional, patient, reason, now)

    existing = await _find_open_standard(db, professional.id, patient.id)
    if existing is not None:
        if rules.classify(existing, now) == rules.LiveStatus.EXPIRED:
            # Grant vencido: se materializa `expired` para liberar el par
            expired = rules.expire_grant(existing, now)
            transition.effects[:0] = expired.effects
        else:
            await dispatcher.dispatch(
                db,
                [rules.request_conflict_effect(professional_id, patient_id, existing.id)],
                context,
            )
            raise ConflictException(
                "Ya existe una solicitud pendiente o una autorización activa",
                code="already_requested",
            )

    db.add(transition.authorization)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning(
            f"Solicitud concurrente rechazada: profesional={professional_id} paciente={patient_id}"
        )
        await dispatcher.dispatch(
            db,
            [rules.request_conflict_effect(professional_id, patient_id, None)],
            context,
        )
        raise ConflictException(
            "Ya existe una solicitud pendiente o una autorización activa",
            code="already_requested",
        )

    logger.info(
        f"Solicitud de acceso {transition.authorization.id}: "
        f"profesional={professional_id} paciente={patient_id}"
    )
    await dispatcher.dispatch(db, transition.effects, context)
    return transition.authorization


# ── Respuesta del paciente ───────────────────────────

async def respond_to_request(
    db: AsyncSession,
    dispatcher: EffectDispatcher,
    *,
    authorization_id: UUID,
    patient_id: UUID,
    decision: ConsentDecision,
    comment: str | None = None,
    context: RequestContext | None = None,
    now: datetime | None = None,
) -> tuple[Authorization, IssuedToken | None]:
    """
    Aceptación o rechazo de una solicitud pendiente. Cada solicitud admite
    una sola respuesta; una segunda da InvalidStateException sin mutar nada.
    Al aceptar se emite también un token de capacidad para el profesional.
    """
    now = now or utcnow()
    patient = PatientActor(patient_id=patient_id)

    authorization = await get_authorization(db, authorization_id, for_update=True)
    if authorization.patient_id != patient_id:
        raise NotFoundException("Autorización", "Autorización no encontrada")

    if decision == ConsentDecision.ACCEPT:
        transition = rules.activate_grant(authorization, patient, now)
    else:
        transition = rules.deny_grant(authorization, patient, comment, now)

    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        raise InvalidStateException(
            "La solicitud ya fue procesada", code="already_processed"
        )

    logger.info(f"Autorización {authorization.id} → {authorization.status.value} por el paciente")
    await dispatcher.dispatch(db, transition.effects, context)

    issued = None
    if authorization.status == AuthorizationStatus.ACTIVE:
        issued = await capability_token_service.issue_and_record(
            db, dispatcher, authorization, context=context, now=now
        )
    return authorization, issued


# ── Revocación ───────────────────────────────────────

async def revoke_authorization(
    db: AsyncSession,
    dispatcher: EffectDispatcher,
    *,
    authorization_id: UUID,
    actor: PatientActor | ProfessionalActor,
    reason: str | None = None,
    context: RequestContext | None = None,
    now: datetime | None = None,
) -> Authorization:
    """Revocación por el paciente titular o por el profesional solicitante."""
    now = now or utcnow()
    authorization = await get_authorization(db, authorization_id, for_update=True)
    if not owns_authorization(actor, authorization):
        raise ForbiddenException(
            "No puede revocar una autorización ajena", code="not_owner"
        )

    transition = rules.revoke_grant(authorization, actor, reason, now)
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        raise InvalidStateException(
            "La autorización fue modificada por otra operación", code="concurrent_update"
        )

    logger.info(f"Autorización {authorization.id} revocada por {actor.kind.value} {actor.id}")
    await dispatcher.dispatch(db, transition.effects, context)
    return authorization


async def get_token_for_authorization(
    db: AsyncSession,
    dispatcher: EffectDispatcher,
    *,
    authorization_id: UUID,
    professional_id: UUID,
    context: RequestContext | None = None,
    now: datetime | None = None,
) -> IssuedToken:
    """Nuevo token de capacidad para una autorización propia y vigente."""
    authorization = await get_authorization(db, authorization_id)
    if not owns_authorization(ProfessionalActor(professional_id), authorization):
        raise ForbiddenException(
            "La autorización pertenece a otro profesional", code="not_owner"
        )
    return await capability_token_service.issue_and_record(
        db, dispatcher, authorization, context=context, now=now
    )
