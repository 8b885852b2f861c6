"""
Actores del sistema como variantes cerradas.
Cada variante lleva solo los campos que le corresponden; los permisos se
deciden por tipo (isinstance), nunca comparando cadenas de rol.
"""

from dataclasses import dataclass
from uuid import UUID

from app.models.authorization import ActorKind


@dataclass(frozen=True)
class PatientActor:
    patient_id: UUID

    @property
    def kind(self) -> ActorKind:
        return ActorKind.PATIENT

    @property
    def id(self) -> UUID:
        return self.patient_id


@dataclass(frozen=True)
class ProfessionalActor:
    professional_id: UUID

    @property
    def kind(self) -> ActorKind:
        return ActorKind.PROFESSIONAL

    @property
    def id(self) -> UUID:
        return self.professional_id


@dataclass(frozen=True)
class SystemActor:
    user_id: UUID

    @property
    def kind(self) -> ActorKind:
        return ActorKind.SYSTEM

    @property
    def id(self) -> UUID:
        return self.user_id


Actor = PatientActor | ProfessionalActor | SystemActor


def actor_from_claims(kind: str, subject: UUID) -> Actor:
    """Construye la variante a partir de los claims del token de sesión."""
    actor_kind = ActorKind(kind)
    if actor_kind is ActorKind.PATIENT:
        return PatientActor(patient_id=subject)
    if actor_kind is ActorKind.PROFESSIONAL:
        return ProfessionalActor(professional_id=subject)
    if actor_kind is ActorKind.SYSTEM:
        return SystemActor(user_id=subject)
    raise ValueError(f"Tipo de actor no soportado: {kind}")
