"""
Schemas para Authorization — solicitudes, respuestas del paciente y
accesos excepcionales.
Incluye la unión etiquetada de `conditions` por tipo de acceso.
"""

import enum
from datetime import datetime
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from app.models.authorization import AccessType, ActorKind, AuthorizationStatus


# ── Condiciones de acceso excepcional ────────────────

class EmergencyConditions(BaseModel):
    type: Literal["emergency"] = "emergency"
    justification: str
    notification_disabled: bool = False


class SecretConditions(BaseModel):
    type: Literal["secret"] = "secret"
    notification_disabled: bool = True


OverrideConditions = Annotated[
    Union[EmergencyConditions, SecretConditions],
    Field(discriminator="type"),
]

_conditions_adapter: TypeAdapter = TypeAdapter(OverrideConditions)


def parse_conditions(raw: dict | None) -> EmergencyConditions | SecretConditions | None:
    """Convierte el JSON almacenado en la variante tipada (None si no hay)."""
    if not raw:
        return None
    return _conditions_adapter.validate_python(raw)


def dump_conditions(conditions: EmergencyConditions | SecretConditions) -> dict:
    return conditions.model_dump()


# ── Requests ─────────────────────────────────────────

class AccessRequestCreate(BaseModel):
    """Solicitud de acceso estándar (requiere consentimiento del paciente)."""
    patient_id: UUID
    reason: str = Field(..., max_length=500, description="Motivo de la solicitud")

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        return v.strip()


class EmergencyAccessCreate(BaseModel):
    patient_id: UUID
    justification: str = Field(
        "", max_length=1000,
        description="Justificación obligatoria del acceso de urgencia",
    )


class SecretAccessCreate(BaseModel):
    patient_id: UUID
    reason: str = Field(
        "", max_length=1000,
        description="Motivo obligatorio del acceso confidencial",
    )


class ConsentDecision(str, enum.Enum):
    ACCEPT = "accept"
    REFUSE = "refuse"


class ConsentResponseRequest(BaseModel):
    """Respuesta del paciente a una solicitud pendiente."""
    decision: ConsentDecision
    comment: str | None = Field(None, max_length=500)


class RevokeRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class DeactivateRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


# ── Responses ────────────────────────────────────────

class AuthorizationResponse(BaseModel):
    id: UUID
    professional_id: UUID | None = None
    patient_id: UUID | None = None
    access_type: AccessType
    status: AuthorizationStatus
    start_at: datetime | None = None
    end_at: datetime | None = None
    requested_reason: str | None = None
    revocation_reason: str | None = None
    revoked_at: datetime | None = None
    validated_at: datetime | None = None
    granted_by_kind: ActorKind | None = None
    granted_by_id: UUID | None = None
    conditions: dict | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuthorizationListResponse(BaseModel):
    """Respuesta paginada de autorizaciones (más recientes primero)."""
    items: list[AuthorizationResponse]
    total: int
    page: int
    size: int
    pages: int


class CapabilityTokenResponse(BaseModel):
    token: str
    token_type: str = "dmp_access"
    expires_in: int = Field(..., description="TTL en segundos")
    expires_at: datetime


class GrantResponse(BaseModel):
    """Autorización actualizada y, si quedó activa, su token de capacidad."""
    authorization: AuthorizationResponse
    dmp_token: CapabilityTokenResponse | None = None


class AccessCheckResponse(BaseModel):
    """Vigencia del acceso de un profesional al dossier de un paciente."""
    patient_id: UUID
    has_access: bool
    authorization: AuthorizationResponse | None = None
