"""
Tests del servicio de tokens de capacidad DMP.
"""

from datetime import timedelta
from uuid import uuid4

import jwt
import pytest

from app.config import get_settings
from app.core.exceptions import CredentialsException, InvalidStateException
from app.core.timeutils import utcnow
from app.models.access_event import AccessAction
from app.models.authorization import AccessType, Authorization, AuthorizationStatus
from app.services import capability_token_service, override_service
from app.services.capability_token_service import TOKEN_TYPE, issue_token, token_ttl, validate_token

settings = get_settings()


def _grant(access_type=AccessType.READ_STANDARD, **overrides) -> Authorization:
    now = utcnow()
    fields = {
        "id": uuid4(),
        "professional_id": uuid4(),
        "patient_id": uuid4(),
        "access_type": access_type,
        "status": AuthorizationStatus.ACTIVE,
        "start_at": now - timedelta(days=2),
        "end_at": None,
    }
    fields.update(overrides)
    return Authorization(**fields)


class TestTokenTTL:
    def test_ttl_per_access_type(self):
        assert token_ttl(AccessType.READ_STANDARD) == timedelta(hours=8)
        assert token_ttl(AccessType.READ_EMERGENCY) == timedelta(hours=1)
        assert token_ttl(AccessType.READ_SECRET) == timedelta(hours=2)

    def test_issued_ttl_matches_type(self):
        for access_type, hours in (
            (AccessType.READ_STANDARD, 8),
            (AccessType.READ_EMERGENCY, 1),
            (AccessType.READ_SECRET, 2),
        ):
            issued = issue_token(_grant(access_type))
            assert issued.ttl_seconds == hours * 3600


class TestIssueAndValidate:
    def test_claims_round_trip(self):
        grant = _grant(AccessType.READ_EMERGENCY)
        issued = issue_token(grant)

        claims = validate_token(issued.token)
        assert claims.professional_id == grant.professional_id
        assert claims.patient_id == grant.patient_id
        assert claims.authorization_id == grant.id
        assert claims.access_type == AccessType.READ_EMERGENCY
        assert claims.jti == issued.jti

    def test_each_token_has_unique_jti(self):
        grant = _grant()
        assert issue_token(grant).jti != issue_token(grant).jti

    def test_standard_token_expires_after_8h(self):
        issued_at = utcnow() - timedelta(hours=8, seconds=1)
        issued = issue_token(_grant(), now=issued_at)

        with pytest.raises(CredentialsException) as exc:
            validate_token(issued.token)
        assert exc.value.code == "token_expired"

    def test_standard_token_valid_before_8h(self):
        issued_at = utcnow() - timedelta(hours=7, minutes=59)
        issued = issue_token(_grant(), now=issued_at)
        assert validate_token(issued.token).jti == issued.jti

    def test_tampered_token_rejected(self):
        issued = issue_token(_grant())
        header, payload, signature = issued.token.split(".")
        tampered = f"{header}.{payload}.{signature[::-1]}"

        with pytest.raises(CredentialsException) as exc:
            validate_token(tampered)
        assert exc.value.code == "token_invalid"

    def test_foreign_secret_rejected(self):
        forged = jwt.encode(
            {"sub": str(uuid4()), "exp": utcnow() + timedelta(hours=1), "jti": "x", "type": TOKEN_TYPE},
            "another-secret",
            algorithm="HS256",
        )
        with pytest.raises(CredentialsException):
            validate_token(forged)

    def test_wrong_token_type_rejected(self):
        token = jwt.encode(
            {"sub": str(uuid4()), "exp": utcnow() + timedelta(hours=1), "jti": "x", "type": "access"},
            settings.DMP_TOKEN_SECRET,
            algorithm=settings.DMP_TOKEN_ALGORITHM,
        )
        with pytest.raises(CredentialsException):
            validate_token(token)

    def test_malformed_claims_rejected(self):
        token = jwt.encode(
            {"sub": "no-es-uuid", "exp": utcnow() + timedelta(hours=1), "jti": "x", "type": TOKEN_TYPE},
            settings.DMP_TOKEN_SECRET,
            algorithm=settings.DMP_TOKEN_ALGORITHM,
        )
        with pytest.raises(CredentialsException):
            validate_token(token)


class TestIssueRequiresLiveGrant:
    @pytest.mark.parametrize(
        "status",
        [
            AuthorizationStatus.PENDING,
            AuthorizationStatus.DENIED,
            AuthorizationStatus.INACTIVE,
            AuthorizationStatus.EXPIRED,
        ],
    )
    def test_not_active(self, status):
        with pytest.raises(InvalidStateException):
            issue_token(_grant(status=status))

    def test_lapsed_window(self):
        with pytest.raises(InvalidStateException):
            issue_token(_grant(end_at=utcnow() - timedelta(seconds=1)))

    def test_placeholder_secret_refused(self, monkeypatch):
        monkeypatch.setattr(settings, "DMP_TOKEN_SECRET", "your-dmp-token-secret-here")
        with pytest.raises(RuntimeError):
            issue_token(_grant())


class TestIssueAndRecord:
    async def test_token_issuance_is_audited(self, db_session, dispatcher, count_events, professional, patient):
        grant = await override_service.grant_secret_access(
            db_session,
            dispatcher,
            professional_id=professional.id,
            patient_id=patient.id,
            reason="Consulta confidencial",
        )
        issued = await capability_token_service.issue_and_record(db_session, dispatcher, grant)

        assert issued.ttl_seconds == 2 * 3600
        assert await count_events(AccessAction.TOKEN_ISSUED, authorization_id=grant.id) == 1
