"""
Endpoints del profesional de salud: solicitudes de acceso, accesos
excepcionales (urgencia / confidencial) y tokens de capacidad DMP.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.actors import ProfessionalActor
from app.auth.dependencies import get_dispatcher, get_request_context, require_actor
from app.database import get_db
from app.schemas.access_event import AccessEventListResponse
from app.schemas.authorization import (
    AccessCheckResponse,
    AccessRequestCreate,
    AuthorizationListResponse,
    AuthorizationResponse,
    CapabilityTokenResponse,
    EmergencyAccessCreate,
    GrantResponse,
    RevokeRequest,
    SecretAccessCreate,
)
from app.services import audit_service, capability_token_service, consent_service, override_service
from app.services.capability_token_service import IssuedToken
from app.services.effect_dispatcher import EffectDispatcher
from app.services.effects import RequestContext

router = APIRouter()

require_professional = require_actor(ProfessionalActor)


def _token_response(issued: IssuedToken) -> CapabilityTokenResponse:
    return CapabilityTokenResponse(
        token=issued.token,
        expires_in=issued.ttl_seconds,
        expires_at=issued.expires_at,
    )


@router.post("/requests", response_model=AuthorizationResponse, status_code=201)
async def request_access(
    data: AccessRequestCreate,
    actor: ProfessionalActor = Depends(require_professional),
    db: AsyncSession = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    context: RequestContext = Depends(get_request_context),
):
    """
    Solicita acceso estándar al dossier de un paciente.
    Queda `pending` hasta que el paciente acepte o rechace.
    409 `already_requested` si ya hay una solicitud abierta para el par.
    """
    return await consent_service.request_access(
        db,
        dispatcher,
        professional_id=actor.professional_id,
        patient_id=data.patient_id,
        reason=data.reason,
        context=context,
    )


@router.post("/emergency", response_model=GrantResponse, status_code=201)
async def grant_emergency_access(
    data: EmergencyAccessCreate,
    actor: ProfessionalActor = Depends(require_professional),
    db: AsyncSession = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    context: RequestContext = Depends(get_request_context),
):
    """
    Acceso de urgencia sin consentimiento previo (24h).
    Justificación obligatoria. El paciente es notificado.
    """
    authorization = await override_service.grant_emergency_access(
        db,
        dispatcher,
        professional_id=actor.professional_id,
        patient_id=data.patient_id,
        justification=data.justification,
        context=context,
    )
    issued = await capability_token_service.issue_and_record(
        db, dispatcher, authorization, context=context
    )
    return GrantResponse(
        authorization=AuthorizationResponse.model_validate(authorization),
        dmp_token=_token_response(issued),
    )


@router.post("/secret", response_model=GrantResponse, status_code=201)
async def grant_secret_access(
    data: SecretAccessCreate,
    actor: ProfessionalActor = Depends(require_professional),
    db: AsyncSession = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    context: RequestContext = Depends(get_request_context),
):
    """
    Acceso confidencial (2h). Motivo obligatorio.
    Por defecto el paciente NO es notificado; siempre queda auditado.
    """
    authorization = await override_service.grant_secret_access(
        db,
        dispatcher,
        professional_id=actor.professional_id,
        patient_id=data.patient_id,
        reason=data.reason,
        context=context,
    )
    issued = await capability_token_service.issue_and_record(
        db, dispatcher, authorization, context=context
    )
    return GrantResponse(
        authorization=AuthorizationResponse.model_validate(authorization),
        dmp_token=_token_response(issued),
    )


@router.get("/authorizations/active", response_model=AuthorizationListResponse)
async def list_active_authorizations(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    actor: ProfessionalActor = Depends(require_professional),
    db: AsyncSession = Depends(get_db),
):
    """Autorizaciones vigentes del profesional (todos los tipos)."""
    return await consent_service.list_active_grants(
        db, professional_id=actor.professional_id, page=page, size=size
    )


@router.get("/check/{patient_id}", response_model=AccessCheckResponse)
async def check_access(
    patient_id: UUID,
    actor: ProfessionalActor = Depends(require_professional),
    db: AsyncSession = Depends(get_db),
):
    """
    Indica si el profesional tiene hoy una autorización vigente sobre el
    paciente. Solo consulta: no emite token ni escribe en el audit log.
    """
    authorization = await consent_service.has_access(db, actor.professional_id, patient_id)
    return AccessCheckResponse(
        patient_id=patient_id,
        has_access=authorization is not None,
        authorization=AuthorizationResponse.model_validate(authorization) if authorization else None,
    )


@router.get("/authorizations/{authorization_id}/token", response_model=CapabilityTokenResponse)
async def get_capability_token(
    authorization_id: UUID,
    actor: ProfessionalActor = Depends(require_professional),
    db: AsyncSession = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    context: RequestContext = Depends(get_request_context),
):
    """
    Emite un nuevo token de capacidad para una autorización vigente.
    TTL: 8h estándar, 1h urgencia, 2h confidencial.
    """
    issued = await consent_service.get_token_for_authorization(
        db,
        dispatcher,
        authorization_id=authorization_id,
        professional_id=actor.professional_id,
        context=context,
    )
    return _token_response(issued)


@router.delete("/authorizations/{authorization_id}", response_model=AuthorizationResponse)
async def revoke_authorization(
    authorization_id: UUID,
    data: RevokeRequest | None = None,
    actor: ProfessionalActor = Depends(require_professional),
    db: AsyncSession = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    context: RequestContext = Depends(get_request_context),
):
    """Retira una solicitud o autorización propia."""
    return await consent_service.revoke_authorization(
        db,
        dispatcher,
        authorization_id=authorization_id,
        actor=actor,
        reason=data.reason if data else None,
        context=context,
    )


@router.get("/history", response_model=AccessEventListResponse)
async def get_my_access_history(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    action: str | None = Query(None, description="Filtrar por acción"),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    actor: ProfessionalActor = Depends(require_professional),
    db: AsyncSession = Depends(get_db),
):
    """Historial de accesos realizados por el profesional."""
    return await audit_service.get_access_history(
        db,
        professional_id=actor.professional_id,
        action=action,
        date_from=date_from,
        date_to=date_to,
        page=page,
        size=size,
    )
