"""
Reglas de propiedad sobre autorizaciones por tipo de actor.
Los permisos por endpoint se resuelven con `require_actor` (dependencies).
"""

from app.auth.actors import Actor, PatientActor, ProfessionalActor, SystemActor
from app.models.authorization import Authorization


def owns_authorization(actor: Actor, authorization: Authorization) -> bool:
    """
    El profesional es dueño de su propia solicitud; el paciente, de las
    autorizaciones sobre su dossier. El sistema no es dueño de ninguna.
    """
    if isinstance(actor, ProfessionalActor):
        return authorization.professional_id == actor.professional_id
    if isinstance(actor, PatientActor):
        return authorization.patient_id == actor.patient_id
    if isinstance(actor, SystemActor):
        return False
    raise TypeError(f"Actor no soportado: {actor!r}")
