"""
Tests de entrega de notificaciones de acceso y del dispatcher de efectos.
"""

import logging
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from app.auth.actors import PatientActor
from app.core.timeutils import utcnow
from app.models.access_event import AccessAction, EventOutcome
from app.models.access_notification import (
    AccessNotification,
    NotificationChannelKind,
    NotificationStatus,
    NotificationType,
)
from app.models.authorization import ActorKind
from app.services import audit_service, notification_service
from app.services.effect_dispatcher import EffectDispatcher
from app.services.effects import AuditEffect, NotifyEffect, Recipient
from app.services.notification_service import (
    NotificationDeliveryError,
    build_payload,
    deliver_notification,
    purge_old_notifications,
)
from app.services.sms_service import SMSError, mask_phone, normalize_phone


def _payload(kind: ActorKind, recipient_id, notification_type=NotificationType.ACCESS_REQUEST):
    return build_payload(
        Recipient(kind=kind, id=recipient_id),
        notification_type,
        "Un profesional solicita acceso a su dossier",
        {"professional_name": "Dra. Bernard"},
    )


class TestDeliverNotification:
    async def test_in_app_without_phone(self, db_session, patient):
        notification = await deliver_notification(db_session, _payload(ActorKind.PATIENT, patient.id))
        await db_session.commit()

        assert notification.channel == NotificationChannelKind.IN_APP
        assert notification.status == NotificationStatus.SENT
        assert notification.sent_at is not None
        assert notification.recipient_id == patient.id

    async def test_sms_simulated_with_phone(self, db_session, other_patient):
        notification = await deliver_notification(
            db_session, _payload(ActorKind.PATIENT, other_patient.id, NotificationType.EMERGENCY_ACCESS)
        )

        assert notification.channel == NotificationChannelKind.SMS
        assert notification.status == NotificationStatus.SIMULATED
        assert notification.provider_sid == "SIMULATED"

    async def test_sms_failure_marks_row_and_raises(self, db_session, other_patient, monkeypatch):
        async def _broken_send(phone, message):
            raise SMSError("Error Twilio (21211): número inválido")

        monkeypatch.setattr(notification_service, "send_sms", _broken_send)

        with pytest.raises(NotificationDeliveryError) as exc:
            await deliver_notification(db_session, _payload(ActorKind.PATIENT, other_patient.id))

        failed = await db_session.get(AccessNotification, exc.value.notification_id)
        assert failed.status == NotificationStatus.FAILED
        assert "21211" in failed.error_message

    async def test_retry_reuses_failed_row(self, db_session, other_patient, monkeypatch):
        async def _broken_send(phone, message):
            raise SMSError("timeout")

        monkeypatch.setattr(notification_service, "send_sms", _broken_send)
        payload = _payload(ActorKind.PATIENT, other_patient.id)
        with pytest.raises(NotificationDeliveryError) as exc:
            await deliver_notification(db_session, payload)
        await db_session.commit()
        monkeypatch.undo()

        payload["notification_id"] = str(exc.value.notification_id)
        notification = await deliver_notification(db_session, payload)
        await db_session.commit()

        assert notification.id == exc.value.notification_id
        assert notification.status == NotificationStatus.SIMULATED
        total = await db_session.execute(select(func.count()).select_from(AccessNotification))
        assert total.scalar_one() == 1


class TestPhoneFormat:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("06 12 34 56 78", "+33612345678"),
            ("06.12.34.56.78", "+33612345678"),
            ("0033612345678", "+33612345678"),
            ("+33 6 12 34 56 78", "+33612345678"),
            ("33612345678", "+33612345678"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_phone(raw) == expected

    def test_mask_keeps_last_digits(self):
        assert mask_phone("+33612345678") == "***5678"


class TestPurge:
    @staticmethod
    def _notification(patient, message, status, age_days=0):
        return AccessNotification(
            recipient_kind=ActorKind.PATIENT,
            recipient_id=patient.id,
            notification_type=NotificationType.ACCESS_REQUEST,
            message=message,
            status=status,
            created_at=utcnow() - timedelta(days=age_days),
        )

    async def test_purges_only_old_processed_notifications(self, db_session, patient):
        db_session.add_all([
            self._notification(patient, "antigua enviada", NotificationStatus.SENT, 120),
            self._notification(patient, "antigua fallida", NotificationStatus.FAILED, 120),
            self._notification(patient, "antigua pendiente", NotificationStatus.PENDING, 120),
            self._notification(patient, "reciente", NotificationStatus.SENT),
        ])
        await db_session.commit()

        deleted = await purge_old_notifications(db_session, retention_days=90)
        await db_session.commit()

        assert deleted == 2
        result = await db_session.execute(select(AccessNotification.message))
        assert sorted(result.scalars().all()) == ["antigua pendiente", "reciente"]


class TestEffectDispatcher:
    async def test_notifier_failure_is_logged_not_raised(self, db_session, patient, count_events, caplog):
        class BrokenNotifier:
            def notify(self, recipient, notification_type, message, metadata):
                raise ConnectionError("broker caído")

        dispatcher = EffectDispatcher(BrokenNotifier())
        effects = [
            NotifyEffect(
                recipient=Recipient(kind=ActorKind.PATIENT, id=patient.id),
                notification_type=NotificationType.ACCESS_REVOKED,
                message="Acceso revocado",
                metadata={},
            ),
            AuditEffect(
                action=AccessAction.REVOKE,
                outcome=EventOutcome.SUCCESS,
                resource_type="authorization",
                resource_id=str(uuid4()),
                patient_id=patient.id,
            ),
        ]

        with caplog.at_level(logging.ERROR, logger="app.services.effect_dispatcher"):
            await dispatcher.dispatch(db_session, effects)

        # La auditoría posterior se escribe igual
        assert await count_events(AccessAction.REVOKE) == 1
        assert any("access_revoked" in r.getMessage() for r in caplog.records)

    async def test_audit_outage_does_not_stop_notifications(
        self, db_session, notifier, dispatcher, patient, monkeypatch
    ):
        async def _unreachable_log_event(db, payload):
            raise ConnectionRefusedError(111, "Connection refused")

        monkeypatch.setattr(audit_service, "log_event", _unreachable_log_event)
        monkeypatch.setattr(audit_service, "_enqueue_retry", lambda payload: None)

        recipient = Recipient(kind=ActorKind.PROFESSIONAL, id=uuid4())
        await dispatcher.dispatch(
            db_session,
            [
                AuditEffect(
                    action=AccessAction.PATIENT_ACCEPT,
                    outcome=EventOutcome.SUCCESS,
                    resource_type="authorization",
                    resource_id=str(uuid4()),
                    patient_id=patient.id,
                ),
                NotifyEffect(recipient, NotificationType.ACCESS_GRANTED, "Acceso concedido", {}),
            ],
        )

        (sent,) = notifier.to(ActorKind.PROFESSIONAL)
        assert sent["notification_type"] == NotificationType.ACCESS_GRANTED

    async def test_effects_in_order(self, db_session, notifier, dispatcher, patient):
        recipient = Recipient(kind=ActorKind.PATIENT, id=patient.id)
        await dispatcher.dispatch(
            db_session,
            [
                NotifyEffect(recipient, NotificationType.ACCESS_REQUEST, "uno", {}),
                NotifyEffect(recipient, NotificationType.ACCESS_GRANTED, "dos", {}),
            ],
        )
        assert [n["message"] for n in notifier.sent] == ["uno", "dos"]

    async def test_unknown_effect_rejected(self, db_session, dispatcher):
        with pytest.raises(TypeError):
            await dispatcher.dispatch(db_session, [PatientActor(uuid4())])
