"""
Schemas para el historial de accesos (AccessEvent) y el resultado del
control de acceso a un dossier.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from app.models.access_event import EventOutcome
from app.models.authorization import AccessType


class AccessEventResponse(BaseModel):
    id: UUID
    action: str
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
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PatientAccessEventResponse(BaseModel):
    """Vista del paciente: sin códigos de error internos ni metadata de red."""
    id: UUID
    action: str
    outcome: EventOutcome
    professional_id: UUID | None = None
    authorization_id: UUID | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AccessEventListResponse(BaseModel):
    items: list[AccessEventResponse]
    total: int
    page: int
    size: int
    pages: int


class PatientAccessEventListResponse(BaseModel):
    items: list[PatientAccessEventResponse]
    total: int
    page: int
    size: int
    pages: int


class RecordAccessResponse(BaseModel):
    """Sobre de la decisión de acceso; el contenido clínico lo sirve otro módulo."""
    patient_id: UUID
    access: str = "granted"
    access_type: AccessType | None = None
    authorization_id: UUID | None = None
    self_access: bool = False
