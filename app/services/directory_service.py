"""
Directorio de pacientes y profesionales.
Resuelve identificadores en cada ruta de concesión o excepción.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException
from app.models.patient import Patient
from app.models.professional import Professional


async def find_patient(db: AsyncSession, patient_id: UUID) -> Patient:
    """Paciente activo por ID o NotFoundException."""
    result = await db.execute(
        select(Patient).where(
            Patient.id == patient_id,
            Patient.is_active.is_(True),
        )
    )
    patient = result.scalar_one_or_none()
    if patient is None:
        raise NotFoundException("Paciente")
    return patient


async def find_professional(db: AsyncSession, professional_id: UUID) -> Professional:
    """Profesional activo por ID o NotFoundException."""
    result = await db.execute(
        select(Professional).where(
            Professional.id == professional_id,
            Professional.is_active.is_(True),
        )
    )
    professional = result.scalar_one_or_none()
    if professional is None:
        raise NotFoundException("Profesional de salud")
    return professional
