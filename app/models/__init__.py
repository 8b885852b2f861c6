"""
Modelos SQLAlchemy — exportar todos para que Alembic los detecte.
"""

from app.models.patient import Patient
from app.models.professional import Professional
from app.models.authorization import (
    AccessType,
    ActorKind,
    Authorization,
    AuthorizationStatus,
)
from app.models.access_event import AccessAction, AccessEvent, EventOutcome
from app.models.access_notification import (
    AccessNotification,
    NotificationChannelKind,
    NotificationStatus,
    NotificationType,
)

__all__ = [
    "Patient",
    "Professional",
    "AccessType",
    "ActorKind",
    "Authorization",
    "AuthorizationStatus",
    "AccessAction",
    "AccessEvent",
    "EventOutcome",
    "AccessNotification",
    "NotificationChannelKind",
    "NotificationStatus",
    "NotificationType",
]
