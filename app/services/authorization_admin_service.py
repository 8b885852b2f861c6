"""
Operaciones administrativas sobre autorizaciones (actor sistema):
desactivación masiva al dar de baja a un profesional y soft delete.
"""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.auth.actors import SystemActor
from app.core.exceptions import InvalidStateException
from app.core.timeutils import utcnow
from app.models.authorization import Authorization, AuthorizationStatus
from app.services import authorization_rules as rules
from app.services.consent_service import get_authorization
from app.services.directory_service import find_professional
from app.services.effect_dispatcher import EffectDispatcher
from app.services.effects import RequestContext

logger = logging.getLogger(__name__)


async def deactivate_professional_grants(
    db: AsyncSession,
    dispatcher: EffectDispatcher,
    *,
    professional_id: UUID,
    actor: SystemActor,
    reason: str,
    deactivate_professional: bool = True,
    context: RequestContext | None = None,
    now: datetime | None = None,
) -> int:
    """
    Pasa a `inactive` todas las autorizaciones abiertas del profesional
    y, opcionalmente, lo da de baja en el directorio.
    Devuelve la cantidad de autorizaciones desactivadas.
    """
    now = now or utcnow()
    professional = await find_professional(db, professional_id)

    result = await db.execute(
        select(Authorization)
        .where(
            Authorization.professional_id == professional.id,
            Authorization.status.in_((AuthorizationStatus.PENDING, AuthorizationStatus.ACTIVE)),
            Authorization.deleted_at.is_(None),
        )
        .with_for_update(key_share=True)
        .execution_options(populate_existing=True)
    )
    effects = []
    count = 0
    for authorization in result.scalars().all():
        transition = rules.deactivate_grant(authorization, actor, reason, now)
        effects.extend(transition.effects)
        count += 1

    if deactivate_professional:
        professional.is_active = False

    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        raise InvalidStateException(
            "Una autorización fue modificada durante la desactivación",
            code="concurrent_update",
        )

    logger.warning(
        f"Profesional {professional_id} desactivado por {actor.user_id}: "
        f"{count} autorizaciones → inactive"
    )
    await dispatcher.dispatch(db, effects, context)
    return count


async def soft_delete_authorization(
    db: AsyncSession,
    dispatcher: EffectDispatcher,
    *,
    authorization_id: UUID,
    actor: SystemActor,
    reason: str | None = None,
    context: RequestContext | None = None,
    now: datetime | None = None,
) -> Authorization:
    """Marca la autorización como eliminada. La fila se conserva."""
    now = now or utcnow()
    authorization = await get_authorization(db, authorization_id, for_update=True)
    transition = rules.soft_delete(authorization, actor, reason, now)
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        raise InvalidStateException(
            "La autorización fue modificada por otra operación", code="concurrent_update"
        )

    logger.info(f"Autorización {authorization_id} eliminada (soft) por {actor.user_id}")
    await dispatcher.dispatch(db, transition.effects, context)
    return authorization
