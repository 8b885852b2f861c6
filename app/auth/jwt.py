"""
JWT de sesión con RS256 (claves asimétricas).
Identifican al actor (paciente, profesional o sistema) en cada request.
La emisión pertenece al subsistema de credenciales; aquí se expone
`create_session_token` para ese subsistema y para los tests.
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from app.config import get_settings
from app.models.authorization import ActorKind

settings = get_settings()


class TokenType:
    ACCESS = "access"


def create_session_token(
    subject_id: UUID,
    kind: ActorKind,
    extra_claims: dict | None = None,
) -> str:
    """Crea un access token JWT RS256 (corta duración)."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(subject_id),
        "kind": kind.value,
        "type": TokenType.ACCESS,
        "iat": now,
        "exp": now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    if extra_claims:
        payload.update(extra_claims)

    return jwt.encode(
        payload,
        settings.jwt_private_key,
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_session_token(token: str) -> dict:
    """
    Decodifica y verifica un token de sesión.
    Lanza jwt.InvalidTokenError si el token es inválido o expirado.
    """
    return jwt.decode(
        token,
        settings.jwt_public_key,
        algorithms=[settings.JWT_ALGORITHM],
        options={"require": ["sub", "kind", "exp"]},
    )
