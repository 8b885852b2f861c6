"""
Tokens de capacidad DMP.

Un token corto (JWT HS256) que prueba que un profesional tiene una
autorización vigente sobre el dossier de un paciente. El TTL depende del
tipo de acceso y se fija al emitir:

    read_standard  → 8h
    read_emergency → 1h
    read_secret    → 2h

El token no sustituye a la verificación de vigencia: el control de acceso
vuelve a leer la autorización en cada lectura del dossier.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from app.config import get_settings
from app.core.exceptions import CredentialsException, InvalidStateException
from app.core.timeutils import utcnow
from app.models.access_event import AccessAction, EventOutcome
from app.models.authorization import AccessType, Authorization
from app.services.authorization_rules import is_authorised
from app.services.effects import AuditEffect, RequestContext

settings = get_settings()
logger = logging.getLogger(__name__)

TOKEN_TYPE = "dmp_access"


@dataclass(frozen=True)
class IssuedToken:
    token: str
    ttl_seconds: int
    jti: str
    expires_at: datetime


@dataclass(frozen=True)
class CapabilityClaims:
    professional_id: UUID
    patient_id: UUID
    authorization_id: UUID
    access_type: AccessType
    jti: str
    expires_at: datetime


def _secret() -> str:
    secret = settings.DMP_TOKEN_SECRET
    if not secret or secret == "your-dmp-token-secret-here":
        raise RuntimeError(
            "DMP_TOKEN_SECRET no configurado. Genera uno con scripts/generate_keys.py"
        )
    return secret


def token_ttl(access_type: AccessType) -> timedelta:
    if access_type == AccessType.READ_EMERGENCY:
        return timedelta(hours=settings.DMP_TOKEN_TTL_EMERGENCY_HOURS)
    if access_type == AccessType.READ_SECRET:
        return timedelta(hours=settings.DMP_TOKEN_TTL_SECRET_HOURS)
    return timedelta(hours=settings.DMP_TOKEN_TTL_STANDARD_HOURS)


def issue_token(authorization: Authorization, now: datetime | None = None) -> IssuedToken:
    """
    Firma un token para una autorización vigente.
    Lanza InvalidStateException si la autorización no está vigente en `now`.
    """
    now = now or utcnow()
    if not is_authorised(authorization, now):
        raise InvalidStateException(
            "La autorización no está vigente", code="authorization_not_active"
        )

    ttl = token_ttl(authorization.access_type)
    expires_at = now + ttl
    jti = str(uuid.uuid4())
    payload = {
        "sub": str(authorization.professional_id),
        "patient_id": str(authorization.patient_id),
        "authorization_id": str(authorization.id),
        "access_type": authorization.access_type.value,
        "type": TOKEN_TYPE,
        "jti": jti,
        "iat": now,
        "exp": expires_at,
    }
    token = jwt.encode(payload, _secret(), algorithm=settings.DMP_TOKEN_ALGORITHM)
    return IssuedToken(
        token=token,
        ttl_seconds=int(ttl.total_seconds()),
        jti=jti,
        expires_at=expires_at,
    )


def validate_token(token: str) -> CapabilityClaims:
    """
    Verifica firma, expiración y forma del token.
    `code` distingue token expirado (token_expired) de inválido (token_invalid).
    """
    try:
        payload = jwt.decode(
            token,
            _secret(),
            algorithms=[settings.DMP_TOKEN_ALGORITHM],
            options={"require": ["sub", "exp", "jti"]},
        )
    except jwt.ExpiredSignatureError:
        raise CredentialsException("Token de acceso DMP expirado", code="token_expired")
    except jwt.InvalidTokenError as e:
        logger.warning(f"Token DMP inválido: {e}")
        raise CredentialsException("Token de acceso DMP inválido")

    if payload.get("type") != TOKEN_TYPE:
        raise CredentialsException("Tipo de token inválido")

    try:
        return CapabilityClaims(
            professional_id=UUID(payload["sub"]),
            patient_id=UUID(payload["patient_id"]),
            authorization_id=UUID(payload["authorization_id"]),
            access_type=AccessType(payload["access_type"]),
            jti=payload["jti"],
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
    except (KeyError, ValueError, TypeError):
        raise CredentialsException("Token de acceso DMP malformado")


def token_issued_effect(authorization: Authorization, issued: IssuedToken) -> AuditEffect:
    return AuditEffect(
        action=AccessAction.TOKEN_ISSUED,
        outcome=EventOutcome.SUCCESS,
        resource_type="capability_token",
        resource_id=str(authorization.id),
        authorization_id=authorization.id,
        professional_id=authorization.professional_id,
        patient_id=authorization.patient_id,
        details={
            "jti": issued.jti,
            "ttl_seconds": issued.ttl_seconds,
            "access_type": authorization.access_type.value,
        },
    )


async def issue_and_record(
    db,
    dispatcher,
    authorization: Authorization,
    *,
    context: RequestContext | None = None,
    now: datetime | None = None,
) -> IssuedToken:
    """Emite el token y registra la emisión en el audit log."""
    issued = issue_token(authorization, now)
    await dispatcher.dispatch(db, [token_issued_effect(authorization, issued)], context)
    return issued
