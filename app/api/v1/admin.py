"""
Endpoints administrativos (actor sistema): consulta del audit log de
accesos, baja de profesionales y eliminación lógica de autorizaciones.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.actors import SystemActor
from app.auth.dependencies import get_dispatcher, get_request_context, require_actor
from app.database import get_db
from app.schemas.access_event import AccessEventListResponse
from app.schemas.authorization import AuthorizationResponse, DeactivateRequest, RevokeRequest
from app.services import audit_service, authorization_admin_service
from app.services.effect_dispatcher import EffectDispatcher
from app.services.effects import RequestContext

router = APIRouter()

require_system = require_actor(SystemActor)


@router.get("/events", response_model=AccessEventListResponse)
async def list_access_events(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    patient_id: UUID | None = Query(None),
    professional_id: UUID | None = Query(None),
    action: str | None = Query(None, description="Filtrar por acción"),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    actor: SystemActor = Depends(require_system),
    db: AsyncSession = Depends(get_db),
):
    """Audit log completo de accesos (incluye accesos confidenciales)."""
    return await audit_service.get_access_history(
        db,
        patient_id=patient_id,
        professional_id=professional_id,
        action=action,
        date_from=date_from,
        date_to=date_to,
        page=page,
        size=size,
    )


@router.post("/professionals/{professional_id}/deactivate")
async def deactivate_professional(
    professional_id: UUID,
    data: DeactivateRequest,
    actor: SystemActor = Depends(require_system),
    db: AsyncSession = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    context: RequestContext = Depends(get_request_context),
):
    """Da de baja al profesional y desactiva todas sus autorizaciones abiertas."""
    count = await authorization_admin_service.deactivate_professional_grants(
        db,
        dispatcher,
        professional_id=professional_id,
        actor=actor,
        reason=data.reason,
        context=context,
    )
    return {"professional_id": str(professional_id), "deactivated": count}


@router.delete("/authorizations/{authorization_id}", response_model=AuthorizationResponse)
async def delete_authorization(
    authorization_id: UUID,
    data: RevokeRequest | None = None,
    actor: SystemActor = Depends(require_system),
    db: AsyncSession = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    context: RequestContext = Depends(get_request_context),
):
    """Eliminación lógica. La fila y sus eventos se conservan."""
    return await authorization_admin_service.soft_delete_authorization(
        db,
        dispatcher,
        authorization_id=authorization_id,
        actor=actor,
        reason=data.reason if data else None,
        context=context,
    )
