"""
Lectura del dossier médico (DMP) a través del control de acceso.

El profesional presenta su token de capacidad en `X-DMP-Access-Token`;
el paciente accede a su propio dossier sin token. Toda lectura, concedida
o denegada, queda registrada. La denegación es genérica para el cliente:
el motivo detallado solo figura en el audit log.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.actors import Actor, PatientActor, ProfessionalActor
from app.auth.dependencies import get_request_context, require_actor
from app.core.exceptions import ForbiddenException
from app.database import get_db
from app.schemas.access_event import RecordAccessResponse
from app.services import access_gate
from app.services.access_gate import CapabilityClaim, PatientSelfClaim, ResourceRef
from app.services.effects import RequestContext

router = APIRouter()


@router.get("/{patient_id}", response_model=RecordAccessResponse)
async def read_record(
    patient_id: UUID,
    x_dmp_access_token: str | None = Header(None, alias="X-DMP-Access-Token"),
    actor: Actor = Depends(require_actor(PatientActor, ProfessionalActor)),
    db: AsyncSession = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    """Verifica el acceso al dossier del paciente y registra la lectura."""
    if isinstance(actor, PatientActor):
        claim = PatientSelfClaim(patient_id=actor.patient_id)
    else:
        claim = CapabilityClaim(
            token=x_dmp_access_token or "",
            professional_id=actor.professional_id,
        )

    resource = ResourceRef(
        resource_type="medical_record",
        resource_id=str(patient_id),
        patient_id=patient_id,
    )
    decision = await access_gate.check_and_log(db, claim, resource, context=context)
    if not decision.allowed:
        raise ForbiddenException("Acceso denegado", code="access_denied")

    authorization = decision.authorization
    return RecordAccessResponse(
        patient_id=patient_id,
        access_type=authorization.access_type if authorization else None,
        authorization_id=authorization.id if authorization else None,
        self_access=decision.self_access,
    )
