"""
Dependencies de FastAPI: actor autenticado, contexto de request y
dispatcher de efectos.
"""

from uuid import UUID

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.actors import Actor, PatientActor, ProfessionalActor, actor_from_claims
from app.auth.jwt import TokenType, decode_session_token
from app.core.exceptions import CredentialsException, ForbiddenException, NotFoundException
from app.database import get_db
from app.services.directory_service import find_patient, find_professional
from app.services.effect_dispatcher import EffectDispatcher
from app.services.effects import RequestContext
from app.services.notification_service import CeleryNotificationChannel, NotificationChannel

# ── Security scheme ──────────────────────────────────
security = HTTPBearer()


# ── Actor actual ─────────────────────────────────────
async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """
    Dependency que:
    1. Decodifica el JWT de sesión del header Authorization
    2. Construye la variante de actor según el claim `kind`
    3. Verifica que el paciente o profesional siga activo en el directorio
    """
    try:
        payload = decode_session_token(credentials.credentials)
    except jwt.InvalidTokenError:
        raise CredentialsException("Token inválido o expirado")

    if payload.get("type", TokenType.ACCESS) != TokenType.ACCESS:
        raise CredentialsException("Tipo de token inválido")

    try:
        actor = actor_from_claims(payload["kind"], UUID(payload["sub"]))
    except ValueError:
        raise CredentialsException("Token con claims inválidos")

    try:
        if isinstance(actor, PatientActor):
            await find_patient(db, actor.patient_id)
        elif isinstance(actor, ProfessionalActor):
            await find_professional(db, actor.professional_id)
    except NotFoundException:
        raise CredentialsException("Usuario no encontrado o inactivo")

    return actor


# ── Factory de dependency por tipo de actor ──────────
def require_actor(*allowed: type):
    """
    Factory que crea un dependency que verifica la variante del actor.

    Uso:
        @router.post("/requests")
        async def endpoint(actor: ProfessionalActor = Depends(require_actor(ProfessionalActor))):
            ...
    """

    async def _check_actor(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not isinstance(actor, allowed):
            raise ForbiddenException(
                "Operación no permitida para este tipo de usuario",
                code="actor_not_allowed",
            )
        return actor

    return _check_actor


# ── Contexto de request ──────────────────────────────
def get_request_context(request: Request) -> RequestContext:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    elif request.client:
        ip_address = request.client.host
    else:
        ip_address = None
    return RequestContext(
        ip_address=ip_address,
        user_agent=request.headers.get("User-Agent"),
    )


# ── Efectos ──────────────────────────────────────────
def get_notification_channel() -> NotificationChannel:
    return CeleryNotificationChannel()


def get_dispatcher(
    notifier: NotificationChannel = Depends(get_notification_channel),
) -> EffectDispatcher:
    return EffectDispatcher(notifier)
