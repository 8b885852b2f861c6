"""
Modelo Authorization — Autorización de acceso de un profesional al DMP
de un paciente.

Ciclo de vida: pending → {active, denied} (una sola vez) y active → denied
(revocación). `inactive` y `expired` se escriben solo por procesos
administrativos explícitos; la vigencia real se calcula en lectura.
Nunca se elimina físicamente (soft delete vía `deleted_at`).
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.timeutils import utcnow
from app.database import Base, JSONType


class AccessType(str, enum.Enum):
    """Tipos de acceso al dossier médico."""
    READ_STANDARD = "read_standard"
    READ_EMERGENCY = "read_emergency"
    READ_SECRET = "read_secret"


class AuthorizationStatus(str, enum.Enum):
    """Estados almacenados de una autorización."""
    PENDING = "pending"
    ACTIVE = "active"
    DENIED = "denied"
    INACTIVE = "inactive"
    EXPIRED = "expired"


class ActorKind(str, enum.Enum):
    """Quién ejecutó la última transición."""
    PATIENT = "patient"
    PROFESSIONAL = "professional"
    SYSTEM = "system"


# Garantía atómica de "una sola solicitud estándar abierta por par"
_OPEN_STANDARD_WHERE = text(
    "access_type = 'read_standard' "
    "AND status IN ('pending', 'active') "
    "AND deleted_at IS NULL"
)


def _enum(cls: type[enum.Enum], name: str) -> Enum:
    return Enum(cls, name=name, values_callable=lambda e: [x.value for x in e])


class Authorization(Base):
    __tablename__ = "authorizations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    professional_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("professionals.id"), index=True,
        comment="Profesional que solicita o recibe el acceso"
    )
    patient_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("patients.id"), index=True,
        comment="Paciente titular del dossier"
    )

    # ── Tipo y estado ────────────────────────────────
    access_type: Mapped[AccessType] = mapped_column(
        _enum(AccessType, "accesstype"), nullable=False,
    )
    status: Mapped[AuthorizationStatus] = mapped_column(
        _enum(AuthorizationStatus, "authorizationstatus"),
        nullable=False, default=AuthorizationStatus.PENDING,
    )

    # ── Ventana de vigencia ──────────────────────────
    start_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        comment="Inicio de vigencia (por defecto, la fecha de creación)"
    )
    end_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        comment="Fin de vigencia. NULL = abierto hasta revocación (solo estándar)"
    )

    # ── Motivos ──────────────────────────────────────
    requested_reason: Mapped[str | None] = mapped_column(Text)
    revocation_reason: Mapped[str | None] = mapped_column(Text)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    validated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), comment="Aceptación por el paciente"
    )

    # ── Quién accionó la última transición ───────────
    granted_by_kind: Mapped[ActorKind | None] = mapped_column(
        _enum(ActorKind, "actorkind")
    )
    granted_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)

    conditions: Mapped[dict | None] = mapped_column(
        JSONType,
        comment='Metadatos de acceso excepcional: {"type": "emergency", "justification": "..."}'
    )

    # ── Control de concurrencia optimista ────────────
    version_id: Mapped[int] = mapped_column(nullable=False)

    # ── Timestamps ───────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), comment="Tombstone: excluido de las consultas normales"
    )

    # ── Relaciones ───────────────────────────────────
    professional: Mapped["Professional | None"] = relationship("Professional")  # noqa: F821
    patient: Mapped["Patient | None"] = relationship("Patient")  # noqa: F821

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        Index(
            "uq_authorization_open_standard",
            "professional_id",
            "patient_id",
            unique=True,
            postgresql_where=_OPEN_STANDARD_WHERE,
            sqlite_where=_OPEN_STANDARD_WHERE,
        ),
        Index("idx_authorization_pair", "professional_id", "patient_id"),
        Index("idx_authorization_patient_status", "patient_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Authorization {self.access_type.value} [{self.status.value}] {self.id}>"


def visible_to_patient():
    """
    Filtro SQL de la vista del paciente: excluye las autorizaciones creadas
    con la notificación al paciente suprimida. Se lee el flag guardado en
    `conditions` al crearlas, no la configuración actual. Una fila sin
    condiciones (estándar, o sin autorización en un outer join) es visible.
    """
    disabled = Authorization.conditions["notification_disabled"].as_boolean()
    return func.coalesce(disabled, False).is_(False)
