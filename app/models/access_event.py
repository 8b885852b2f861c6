"""
Modelo AccessEvent — Registro de auditoría de accesos INMUTABLE.
INSERT-only: una fila por intento de acceso o acción administrativa.
Solo admite soft delete por políticas de retención, nunca borrado físico.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.timeutils import utcnow
from app.database import Base, JSONType


class AccessAction(str, enum.Enum):
    """Acciones registradas. Cada rama del control de acceso es distinguible."""
    REQUEST_STANDARD = "request_standard"
    PATIENT_ACCEPT = "patient_accept"
    PATIENT_REFUSE = "patient_refuse"
    REVOKE = "revoke"
    GRANT_EMERGENCY = "grant_emergency"
    GRANT_SECRET = "grant_secret"
    TOKEN_ISSUED = "token_issued"
    EXPIRE = "expire"
    DEACTIVATE = "deactivate"
    DELETE = "delete"
    # ── Lecturas del dossier (Access Gate) ───────────
    RECORD_READ = "record_read"
    RECORD_READ_SELF = "record_read_self"
    DENY_TOKEN_INVALID = "deny_token_invalid"
    DENY_TOKEN_EXPIRED = "deny_token_expired"
    DENY_GRANT_MISSING = "deny_grant_missing"
    DENY_GRANT_REVOKED = "deny_grant_revoked"
    DENY_GRANT_EXPIRED = "deny_grant_expired"
    DENY_SCOPE_MISMATCH = "deny_scope_mismatch"
    DENY_NOT_OWNER = "deny_not_owner"


class EventOutcome(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class AccessEvent(Base):
    __tablename__ = "access_events"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )

    # ── Datos del evento ─────────────────────────────
    action: Mapped[str] = mapped_column(
        String(40), nullable=False, index=True,
        comment="request_standard, grant_emergency, record_read, deny_*, etc."
    )
    outcome: Mapped[EventOutcome] = mapped_column(
        Enum(EventOutcome, name="eventoutcome", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    resource_type: Mapped[str] = mapped_column(
        String(50), nullable=False,
        comment="authorization, medical_record, capability_token"
    )
    resource_id: Mapped[str] = mapped_column(
        String(36), nullable=False,
        comment="UUID del recurso afectado"
    )
    authorization_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("authorizations.id"), index=True
    )

    # ── Actor (solo el subconjunto relevante) ────────
    professional_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("professionals.id"), index=True
    )
    patient_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("patients.id"), index=True
    )
    system_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)

    # ── Resultado ────────────────────────────────────
    error_code: Mapped[str | None] = mapped_column(String(50))
    error_message: Mapped[str | None] = mapped_column(Text)
    details: Mapped[dict | None] = mapped_column(JSONType)

    # ── Metadata de la request ───────────────────────
    ip_address: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)

    # ── Timestamp inmutable ──────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), comment="Solo por política de retención"
    )

    __table_args__ = (
        Index("idx_access_event_patient_created", "patient_id", "created_at"),
        Index("idx_access_event_professional_created", "professional_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AccessEvent {self.action} [{self.outcome.value}] on {self.resource_type} {self.resource_id}>"
