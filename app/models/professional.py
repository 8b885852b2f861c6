"""
Modelo Professional — Profesionales de salud que solicitan acceso al DMP.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.timeutils import utcnow
from app.database import Base


class Professional(Base):
    __tablename__ = "professionals"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )

    # ── Datos profesionales ──────────────────────────
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    license_number: Mapped[str | None] = mapped_column(
        String(20), unique=True, comment="Número de colegiatura / ADELI"
    )
    specialty: Mapped[str | None] = mapped_column(
        String(100), comment="Especialidad médica"
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
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def display_name(self) -> str:
        return f"Dr. {self.full_name}"

    def __repr__(self) -> str:
        return f"<Professional {self.full_name} ({self.specialty or '-'})>"
