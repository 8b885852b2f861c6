"""
Modelo Patient — Entrada del directorio de pacientes.
Solo los campos que el subsistema de autorizaciones necesita:
identidad y canales de contacto para notificaciones.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.timeutils import utcnow
from app.database import Base


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )

    # ── Identidad ────────────────────────────────────
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    record_number: Mapped[str | None] = mapped_column(
        String(50), unique=True, comment="Número de dossier médico"
    )

    # ── Contacto (PII cifrado) ───────────────────────
    phone: Mapped[str | None] = mapped_column(
        String(255), comment="Cifrado con Fernet"
    )
    email: Mapped[str | None] = mapped_column(
        String(255), comment="Cifrado con Fernet"
    )

    # ── Estado ───────────────────────────────────────
    is_active: Mapped[bool] = mapped_column(default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Patient {self.full_name}>"
