"""create_dmp_access_tables

Revision ID: 7d2e9c41b0a3
Revises:
Create Date: 2026-10-19 09:12:44.503118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '7d2e9c41b0a3'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


access_type = postgresql.ENUM('read_standard', 'read_emergency', 'read_secret', name='accesstype', create_type=False)
authorization_status = postgresql.ENUM('pending', 'active', 'denied', 'inactive', 'expired', name='authorizationstatus', create_type=False)
actor_kind = postgresql.ENUM('patient', 'professional', 'system', name='actorkind', create_type=False)
event_outcome = postgresql.ENUM('success', 'failure', name='eventoutcome', create_type=False)
notification_type = postgresql.ENUM(
    'access_request', 'access_granted', 'access_refused', 'access_revoked',
    'emergency_access', 'secret_access', 'access_deactivated',
    name='notificationtype', create_type=False,
)
notification_channel = postgresql.ENUM('in_app', 'sms', name='notificationchannel', create_type=False)
notification_status = postgresql.ENUM('pending', 'sent', 'failed', 'simulated', name='notificationstatus', create_type=False)

_ENUMS = (
    access_type, authorization_status, actor_kind, event_outcome,
    notification_type, notification_channel, notification_status,
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in _ENUMS:
        enum_type.create(bind, checkfirst=True)

    # 1. Directorio
    op.create_table('patients',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('record_number', sa.String(length=50), nullable=True, comment='Número de dossier médico'),
        sa.Column('phone', sa.String(length=255), nullable=True, comment='Cifrado con Fernet'),
        sa.Column('email', sa.String(length=255), nullable=True, comment='Cifrado con Fernet'),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('record_number')
    )
    op.create_table('professionals',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('license_number', sa.String(length=20), nullable=True, comment='Número de colegiatura / ADELI'),
        sa.Column('specialty', sa.String(length=100), nullable=True, comment='Especialidad médica'),
        sa.Column('phone', sa.String(length=255), nullable=True, comment='Cifrado con Fernet'),
        sa.Column('email', sa.String(length=255), nullable=True, comment='Cifrado con Fernet'),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('license_number')
    )

    # 2. Autorizaciones
    op.create_table('authorizations',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('professional_id', sa.UUID(), nullable=True, comment='Profesional que solicita o recibe el acceso'),
        sa.Column('patient_id', sa.UUID(), nullable=True, comment='Paciente titular del dossier'),
        sa.Column('access_type', access_type, nullable=False),
        sa.Column('status', authorization_status, nullable=False),
        sa.Column('start_at', sa.DateTime(timezone=True), nullable=True, comment='Inicio de vigencia (por defecto, la fecha de creación)'),
        sa.Column('end_at', sa.DateTime(timezone=True), nullable=True, comment='Fin de vigencia. NULL = abierto hasta revocación (solo estándar)'),
        sa.Column('requested_reason', sa.Text(), nullable=True),
        sa.Column('revocation_reason', sa.Text(), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('validated_at', sa.DateTime(timezone=True), nullable=True, comment='Aceptación por el paciente'),
        sa.Column('granted_by_kind', actor_kind, nullable=True),
        sa.Column('granted_by_id', sa.UUID(), nullable=True),
        sa.Column('conditions', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Metadatos de acceso excepcional: {"type": "emergency", "justification": "..."}'),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True, comment='Tombstone: excluido de las consultas normales'),
        sa.ForeignKeyConstraint(['patient_id'], ['patients.id'], ),
        sa.ForeignKeyConstraint(['professional_id'], ['professionals.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_authorizations_patient_id'), 'authorizations', ['patient_id'], unique=False)
    op.create_index(op.f('ix_authorizations_professional_id'), 'authorizations', ['professional_id'], unique=False)
    op.create_index('idx_authorization_pair', 'authorizations', ['professional_id', 'patient_id'], unique=False)
    op.create_index('idx_authorization_patient_status', 'authorizations', ['patient_id', 'status'], unique=False)
    # Una sola solicitud estándar abierta por par profesional/paciente
    op.create_index(
        'uq_authorization_open_standard', 'authorizations', ['professional_id', 'patient_id'],
        unique=True,
        postgresql_where=sa.text(
            "access_type = 'read_standard' "
            "AND status IN ('pending', 'active') "
            "AND deleted_at IS NULL"
        ),
    )

    # 3. Audit log de accesos
    op.create_table('access_events',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('action', sa.String(length=40), nullable=False, comment='request_standard, grant_emergency, record_read, deny_*, etc.'),
        sa.Column('outcome', event_outcome, nullable=False),
        sa.Column('resource_type', sa.String(length=50), nullable=False, comment='authorization, medical_record, capability_token'),
        sa.Column('resource_id', sa.String(length=36), nullable=False, comment='UUID del recurso afectado'),
        sa.Column('authorization_id', sa.UUID(), nullable=True),
        sa.Column('professional_id', sa.UUID(), nullable=True),
        sa.Column('patient_id', sa.UUID(), nullable=True),
        sa.Column('system_user_id', sa.UUID(), nullable=True),
        sa.Column('error_code', sa.String(length=50), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True, comment='Solo por política de retención'),
        sa.ForeignKeyConstraint(['authorization_id'], ['authorizations.id'], ),
        sa.ForeignKeyConstraint(['patient_id'], ['patients.id'], ),
        sa.ForeignKeyConstraint(['professional_id'], ['professionals.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_access_events_action'), 'access_events', ['action'], unique=False)
    op.create_index(op.f('ix_access_events_authorization_id'), 'access_events', ['authorization_id'], unique=False)
    op.create_index(op.f('ix_access_events_patient_id'), 'access_events', ['patient_id'], unique=False)
    op.create_index(op.f('ix_access_events_professional_id'), 'access_events', ['professional_id'], unique=False)
    op.create_index('idx_access_event_patient_created', 'access_events', ['patient_id', 'created_at'], unique=False)
    op.create_index('idx_access_event_professional_created', 'access_events', ['professional_id', 'created_at'], unique=False)

    # 4. Notificaciones
    op.create_table('access_notifications',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('recipient_kind', actor_kind, nullable=False),
        sa.Column('recipient_id', sa.UUID(), nullable=False),
        sa.Column('authorization_id', sa.UUID(), nullable=True),
        sa.Column('notification_type', notification_type, nullable=False),
        sa.Column('channel', notification_channel, nullable=False),
        sa.Column('status', notification_status, nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Metadatos de la notificación (tipo de acceso, duración...)'),
        sa.Column('provider_sid', sa.String(length=50), nullable=True, comment='SID del mensaje en Twilio'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['authorization_id'], ['authorizations.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_notification_recipient', 'access_notifications', ['recipient_kind', 'recipient_id', 'created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_notification_recipient', table_name='access_notifications')
    op.drop_table('access_notifications')

    op.drop_index('idx_access_event_professional_created', table_name='access_events')
    op.drop_index('idx_access_event_patient_created', table_name='access_events')
    op.drop_index(op.f('ix_access_events_professional_id'), table_name='access_events')
    op.drop_index(op.f('ix_access_events_patient_id'), table_name='access_events')
    op.drop_index(op.f('ix_access_events_authorization_id'), table_name='access_events')
    op.drop_index(op.f('ix_access_events_action'), table_name='access_events')
    op.drop_table('access_events')

    op.drop_index('uq_authorization_open_standard', table_name='authorizations')
    op.drop_index('idx_authorization_patient_status', table_name='authorizations')
    op.drop_index('idx_authorization_pair', table_name='authorizations')
    op.drop_index(op.f('ix_authorizations_professional_id'), table_name='authorizations')
    op.drop_index(op.f('ix_authorizations_patient_id'), table_name='authorizations')
    op.drop_table('authorizations')

    op.drop_table('professionals')
    op.drop_table('patients')

    bind = op.get_bind()
    for enum_type in reversed(_ENUMS):
        enum_type.drop(bind, checkfirst=True)
