"""
Endpoints del paciente: solicitudes pendientes, consentimiento,
autorizaciones sobre su dossier e historial de accesos.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.actors import PatientActor
from app.auth.dependencies import get_dispatcher, get_request_context, require_actor
from app.database import get_db
from app.schemas.access_event import PatientAccessEventListResponse
from app.schemas.authorization import (
    AuthorizationListResponse,
    AuthorizationResponse,
    ConsentResponseRequest,
    RevokeRequest,
)
from app.services import audit_service, consent_service
from app.services.effect_dispatcher import EffectDispatcher
from app.services.effects import RequestContext

router = APIRouter()

require_patient = require_actor(PatientActor)


@router.get("/pending", response_model=AuthorizationListResponse)
async def list_pending_requests(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    actor: PatientActor = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
):
    """Solicitudes de acceso pendientes de respuesta."""
    return await consent_service.list_pending_requests(
        db, actor.patient_id, page=page, size=size
    )


@router.patch("/{authorization_id}/response", response_model=AuthorizationResponse)
async def respond_to_request(
    authorization_id: UUID,
    data: ConsentResponseRequest,
    actor: PatientActor = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    context: RequestContext = Depends(get_request_context),
):
    """
    Acepta o rechaza una solicitud pendiente. Una sola respuesta por
    solicitud: 409 `already_processed` si ya fue respondida.

    El token emitido al aceptar pertenece al profesional y no se entrega
    al paciente. El profesional obtiene uno propio en
    `GET /access/authorizations/{id}/token`; el emitido aquí queda solo
    en el audit log (`token_issued`) y expira con su TTL.
    """
    authorization, _ = await consent_service.respond_to_request(
        db,
        dispatcher,
        authorization_id=authorization_id,
        patient_id=actor.patient_id,
        decision=data.decision,
        comment=data.comment,
        context=context,
    )
    return authorization


@router.get("/authorizations", response_model=AuthorizationListResponse)
async def list_my_authorizations(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    actor: PatientActor = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
):
    """Autorizaciones vigentes sobre el dossier del paciente."""
    return await consent_service.list_active_grants(
        db,
        patient_id=actor.patient_id,
        patient_view=True,
        page=page,
        size=size,
    )


@router.delete("/authorizations/{authorization_id}", response_model=AuthorizationResponse)
async def revoke_authorization(
    authorization_id: UUID,
    data: RevokeRequest | None = None,
    actor: PatientActor = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    context: RequestContext = Depends(get_request_context),
):
    """Revoca una autorización sobre el propio dossier."""
    return await consent_service.revoke_authorization(
        db,
        dispatcher,
        authorization_id=authorization_id,
        actor=actor,
        reason=data.reason if data else None,
        context=context,
    )


@router.get("/history", response_model=PatientAccessEventListResponse)
async def get_my_access_history(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    actor: PatientActor = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
):
    """Quién accedió al dossier y cuándo."""
    return await audit_service.get_access_history(
        db,
        patient_id=actor.patient_id,
        date_from=date_from,
        date_to=date_to,
        patient_view=True,
        page=page,
        size=size,
    )
