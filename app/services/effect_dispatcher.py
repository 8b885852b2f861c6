"""
Ejecuta los efectos de una transición después del commit.

Ningún fallo de efecto revierte ni invalida la transición ya confirmada:
la auditoría se reintenta vía Celery y las notificaciones se registran en
el log y se descartan.
"""

import logging
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from app.services import audit_service
from app.services.effects import AuditEffect, Effect, NotifyEffect, RequestContext
from app.services.notification_service import NotificationChannel

logger = logging.getLogger(__name__)


class EffectDispatcher:
    def __init__(self, notifier: NotificationChannel):
        self.notifier = notifier

    async def dispatch(
        self,
        db: AsyncSession,
        effects: Iterable[Effect],
        context: RequestContext | None = None,
    ) -> None:
        for effect in effects:
            if isinstance(effect, AuditEffect):
                await audit_service.record_event(db, effect, context)
            elif isinstance(effect, NotifyEffect):
                self._notify(effect)
            else:
                raise TypeError(f"Efecto no soportado: {effect!r}")

    def _notify(self, effect: NotifyEffect) -> None:
        try:
            self.notifier.notify(
                effect.recipient,
                effect.notification_type,
                effect.message,
                effect.metadata,
            )
        except Exception:
            logger.exception(
                f"Fallo al notificar {effect.notification_type.value} a "
                f"{effect.recipient.kind.value} {effect.recipient.id}"
            )
