"""
Tests del flujo de consentimiento: solicitud, respuesta del paciente,
revocación y unicidad de la solicitud estándar abierta.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.auth.actors import PatientActor, ProfessionalActor
from app.core.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from app.core.timeutils import utcnow
from app.models.access_event import AccessAction, EventOutcome
from app.models.access_notification import NotificationType
from app.models.authorization import ActorKind, Authorization, AuthorizationStatus
from app.schemas.authorization import ConsentDecision
from app.services import consent_service


async def _request(db, dispatcher, professional, patient, **kwargs):
    return await consent_service.request_access(
        db,
        dispatcher,
        professional_id=professional.id,
        patient_id=patient.id,
        reason=kwargs.pop("reason", "Seguimiento cardiológico"),
        **kwargs,
    )


async def _respond(db, dispatcher, authorization, decision, patient_id=None, **kwargs):
    return await consent_service.respond_to_request(
        db,
        dispatcher,
        authorization_id=authorization.id,
        patient_id=patient_id or authorization.patient_id,
        decision=decision,
        **kwargs,
    )


# ── RequestAccess ────────────────────────────────────

class TestRequestAccess:
    async def test_creates_pending_and_notifies_patient(
        self, db_session, dispatcher, notifier, professional, patient, count_events
    ):
        a = await _request(db_session, dispatcher, professional, patient)

        assert a.status == AuthorizationStatus.PENDING
        assert a.professional_id == professional.id
        assert a.patient_id == patient.id
        assert a.requested_reason == "Seguimiento cardiológico"

        (sent,) = notifier.to(ActorKind.PATIENT)
        assert sent["notification_type"] == NotificationType.ACCESS_REQUEST
        assert sent["recipient"].id == patient.id
        assert await count_events(AccessAction.REQUEST_STANDARD, outcome=EventOutcome.SUCCESS) == 1

    async def test_duplicate_open_request_conflicts(
        self, db_session, dispatcher, professional, patient, count_events
    ):
        await _request(db_session, dispatcher, professional, patient)

        with pytest.raises(ConflictException) as exc:
            await _request(db_session, dispatcher, professional, patient)

        assert exc.value.code == "already_requested"
        assert await count_events(AccessAction.REQUEST_STANDARD, outcome=EventOutcome.FAILURE) == 1

    async def test_conflicts_while_active(self, db_session, dispatcher, professional, patient):
        a = await _request(db_session, dispatcher, professional, patient)
        await _respond(db_session, dispatcher, a, ConsentDecision.ACCEPT)

        with pytest.raises(ConflictException):
            await _request(db_session, dispatcher, professional, patient)

    async def test_new_request_allowed_after_refusal(self, db_session, dispatcher, professional, patient):
        first = await _request(db_session, dispatcher, professional, patient)
        await _respond(db_session, dispatcher, first, ConsentDecision.REFUSE)

        second = await _request(db_session, dispatcher, professional, patient)
        assert second.id != first.id
        assert second.status == AuthorizationStatus.PENDING

    async def test_lapsed_grant_is_expired_on_new_request(
        self, db_session, dispatcher, professional, patient, count_events
    ):
        first = await _request(db_session, dispatcher, professional, patient)
        await _respond(db_session, dispatcher, first, ConsentDecision.ACCEPT)
        first.end_at = utcnow() - timedelta(minutes=5)
        await db_session.commit()

        second = await _request(db_session, dispatcher, professional, patient)

        refreshed = await consent_service.get_authorization(db_session, first.id)
        assert refreshed.status == AuthorizationStatus.EXPIRED
        assert second.status == AuthorizationStatus.PENDING
        assert await count_events(AccessAction.EXPIRE) == 1

    async def test_other_professional_can_request_same_patient(
        self, db_session, dispatcher, professional, other_professional, patient
    ):
        await _request(db_session, dispatcher, professional, patient)
        a = await _request(db_session, dispatcher, other_professional, patient)
        assert a.status == AuthorizationStatus.PENDING

    async def test_blank_reason_rejected(self, db_session, dispatcher, professional, patient):
        with pytest.raises(ValidationException):
            await _request(db_session, dispatcher, professional, patient, reason="   ")

    async def test_unknown_patient(self, db_session, dispatcher, professional, other_professional):
        with pytest.raises(NotFoundException):
            await consent_service.request_access(
                db_session,
                dispatcher,
                professional_id=professional.id,
                patient_id=other_professional.id,
                reason="Control",
            )

    async def test_inactive_professional(self, db_session, dispatcher, professional, patient):
        professional.is_active = False
        await db_session.commit()

        with pytest.raises(NotFoundException):
            await _request(db_session, dispatcher, professional, patient)

    async def test_concurrent_requests_single_winner(
        self, session_factory, dispatcher, professional, patient, db_session
    ):
        async def attempt():
            async with session_factory() as session:
                try:
                    await _request(session, dispatcher, professional, patient)
                    return "created"
                except ConflictException:
                    return "conflict"

        results = await asyncio.gather(attempt(), attempt())

        assert sorted(results) == ["conflict", "created"]
        open_count = await db_session.execute(
            select(func.count()).select_from(Authorization).where(
                Authorization.professional_id == professional.id,
                Authorization.patient_id == patient.id,
                Authorization.status.in_((AuthorizationStatus.PENDING, AuthorizationStatus.ACTIVE)),
            )
        )
        assert open_count.scalar_one() == 1


# ── RespondToRequest ─────────────────────────────────

class TestRespondToRequest:
    async def test_accept_activates_and_issues_token(
        self, db_session, dispatcher, notifier, professional, patient, count_events
    ):
        a = await _request(db_session, dispatcher, professional, patient)

        updated, issued = await _respond(db_session, dispatcher, a, ConsentDecision.ACCEPT)

        assert updated.status == AuthorizationStatus.ACTIVE
        assert updated.validated_at is not None
        assert updated.end_at is None
        assert updated.granted_by_kind == ActorKind.PATIENT
        assert issued is not None
        assert issued.ttl_seconds == 8 * 3600

        (sent,) = notifier.to(ActorKind.PROFESSIONAL)
        assert sent["notification_type"] == NotificationType.ACCESS_GRANTED
        assert await count_events(AccessAction.PATIENT_ACCEPT) == 1
        assert await count_events(AccessAction.TOKEN_ISSUED) == 1
        assert await consent_service.has_access(db_session, professional.id, patient.id)

    async def test_refuse(self, db_session, dispatcher, notifier, professional, patient):
        a = await _request(db_session, dispatcher, professional, patient)

        updated, issued = await _respond(
            db_session, dispatcher, a, ConsentDecision.REFUSE, comment="Prefiero otro médico"
        )

        assert updated.status == AuthorizationStatus.DENIED
        assert updated.revocation_reason == "Prefiero otro médico"
        assert updated.revoked_at is not None
        assert issued is None
        (sent,) = notifier.to(ActorKind.PROFESSIONAL)
        assert sent["notification_type"] == NotificationType.ACCESS_REFUSED
        assert not await consent_service.has_access(db_session, professional.id, patient.id)

    async def test_second_response_rejected(self, db_session, dispatcher, professional, patient):
        a = await _request(db_session, dispatcher, professional, patient)
        await _respond(db_session, dispatcher, a, ConsentDecision.ACCEPT)
        validated_at = a.validated_at

        with pytest.raises(InvalidStateException) as exc:
            await _respond(db_session, dispatcher, a, ConsentDecision.REFUSE)

        assert exc.value.code == "already_processed"
        current = await consent_service.get_authorization(db_session, a.id)
        assert current.status == AuthorizationStatus.ACTIVE
        assert current.validated_at == validated_at

    async def test_other_patient_cannot_respond(
        self, db_session, dispatcher, professional, patient, other_patient
    ):
        a = await _request(db_session, dispatcher, professional, patient)

        with pytest.raises(NotFoundException):
            await _respond(
                db_session, dispatcher, a, ConsentDecision.ACCEPT, patient_id=other_patient.id
            )


# ── RevokeAuthorization ──────────────────────────────

class TestRevokeAuthorization:
    async def test_patient_revokes_active(
        self, db_session, dispatcher, notifier, professional, patient, count_events
    ):
        a = await _request(db_session, dispatcher, professional, patient)
        await _respond(db_session, dispatcher, a, ConsentDecision.ACCEPT)
        notifier.sent.clear()

        revoked = await consent_service.revoke_authorization(
            db_session,
            dispatcher,
            authorization_id=a.id,
            actor=PatientActor(patient.id),
            reason="Cambio de médico",
        )

        assert revoked.status == AuthorizationStatus.DENIED
        assert revoked.revocation_reason == "Cambio de médico"
        (sent,) = notifier.to(ActorKind.PROFESSIONAL)
        assert sent["notification_type"] == NotificationType.ACCESS_REVOKED
        assert await count_events(AccessAction.REVOKE) == 1
        assert not await consent_service.has_access(db_session, professional.id, patient.id)

    async def test_professional_withdraws_pending(self, db_session, dispatcher, professional, patient):
        a = await _request(db_session, dispatcher, professional, patient)

        revoked = await consent_service.revoke_authorization(
            db_session,
            dispatcher,
            authorization_id=a.id,
            actor=ProfessionalActor(professional.id),
        )
        assert revoked.status == AuthorizationStatus.DENIED

    async def test_foreign_professional_forbidden(
        self, db_session, dispatcher, professional, other_professional, patient
    ):
        a = await _request(db_session, dispatcher, professional, patient)

        with pytest.raises(ForbiddenException):
            await consent_service.revoke_authorization(
                db_session,
                dispatcher,
                authorization_id=a.id,
                actor=ProfessionalActor(other_professional.id),
            )

    async def test_revoke_twice_invalid_state(self, db_session, dispatcher, professional, patient):
        a = await _request(db_session, dispatcher, professional, patient)
        actor = PatientActor(patient.id)
        await consent_service.revoke_authorization(
            db_session, dispatcher, authorization_id=a.id, actor=actor
        )

        with pytest.raises(InvalidStateException):
            await consent_service.revoke_authorization(
                db_session, dispatcher, authorization_id=a.id, actor=actor
            )


# ── Concurrencia optimista ───────────────────────────

async def _reload(session_factory, authorization_id) -> Authorization:
    async with session_factory() as session:
        return await session.get(Authorization, authorization_id)


class TestOptimisticLocking:
    async def test_accept_loses_to_concurrent_withdrawal(
        self, db_session, session_factory, dispatcher, interleave_after_load, professional, patient, count_events
    ):
        a = await _request(db_session, dispatcher, professional, patient)

        async def withdraw():
            async with session_factory() as session:
                await consent_service.revoke_authorization(
                    session,
                    dispatcher,
                    authorization_id=a.id,
                    actor=ProfessionalActor(professional.id),
                    reason="Paciente derivado",
                )

        interleave_after_load(consent_service, withdraw)

        with pytest.raises(InvalidStateException) as exc:
            await _respond(db_session, dispatcher, a, ConsentDecision.ACCEPT)

        assert exc.value.code == "already_processed"
        stored = await _reload(session_factory, a.id)
        assert stored.status == AuthorizationStatus.DENIED
        assert stored.revocation_reason == "Paciente derivado"
        assert stored.validated_at is None
        assert stored.version_id == 2
        assert await count_events(AccessAction.PATIENT_ACCEPT) == 0
        assert await count_events(AccessAction.TOKEN_ISSUED) == 0

    async def test_revoke_loses_to_concurrent_revoke(
        self, db_session, session_factory, dispatcher, interleave_after_load, professional, patient, count_events
    ):
        a = await _request(db_session, dispatcher, professional, patient)
        await _respond(db_session, dispatcher, a, ConsentDecision.ACCEPT)

        async def professional_revokes():
            async with session_factory() as session:
                await consent_service.revoke_authorization(
                    session,
                    dispatcher,
                    authorization_id=a.id,
                    actor=ProfessionalActor(professional.id),
                    reason="Fin del tratamiento",
                )

        interleave_after_load(consent_service, professional_revokes)

        with pytest.raises(InvalidStateException) as exc:
            await consent_service.revoke_authorization(
                db_session,
                dispatcher,
                authorization_id=a.id,
                actor=PatientActor(patient.id),
                reason="Cambio de médico",
            )

        assert exc.value.code == "concurrent_update"
        stored = await _reload(session_factory, a.id)
        assert stored.status == AuthorizationStatus.DENIED
        assert stored.revocation_reason == "Fin del tratamiento"
        assert await count_events(AccessAction.REVOKE) == 1


# ── Consultas ────────────────────────────────────────

class TestQueries:
    async def test_pending_and_active_listings(
        self, db_session, dispatcher, professional, other_professional, patient
    ):
        first = await _request(db_session, dispatcher, professional, patient)
        await _request(db_session, dispatcher, other_professional, patient)

        pending = await consent_service.list_pending_requests(db_session, patient.id)
        assert pending["total"] == 2

        await _respond(db_session, dispatcher, first, ConsentDecision.ACCEPT)
        pending = await consent_service.list_pending_requests(db_session, patient.id)
        active = await consent_service.list_active_grants(db_session, patient_id=patient.id)
        assert pending["total"] == 1
        assert active["total"] == 1
        assert active["items"][0].id == first.id

    async def test_token_for_foreign_authorization_forbidden(
        self, db_session, dispatcher, professional, other_professional, patient
    ):
        a = await _request(db_session, dispatcher, professional, patient)
        await _respond(db_session, dispatcher, a, ConsentDecision.ACCEPT)

        with pytest.raises(ForbiddenException):
            await consent_service.get_token_for_authorization(
                db_session,
                dispatcher,
                authorization_id=a.id,
                professional_id=other_professional.id,
            )

    async def test_token_for_pending_invalid_state(self, db_session, dispatcher, professional, patient):
        a = await _request(db_session, dispatcher, professional, patient)

        with pytest.raises(InvalidStateException):
            await consent_service.get_token_for_authorization(
                db_session,
                dispatcher,
                authorization_id=a.id,
                professional_id=professional.id,
            )
