"""
Fixtures compartidas para Pytest.
Configura entorno, base de datos de test, directorio y clientes HTTP.
"""

import os
import tempfile
from collections.abc import AsyncGenerator
from pathlib import Path
from uuid import uuid4

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

# ── Entorno de test (antes de importar app.*) ────────
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"


def _write_test_keys() -> tuple[str, str]:
    keys_dir = Path(tempfile.mkdtemp(prefix="dmp-test-keys-"))
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_path = keys_dir / "private.pem"
    public_path = keys_dir / "public.pem"
    private_path.write_bytes(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    public_path.write_bytes(
        private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    return str(private_path), str(public_path)


_private_path, _public_path = _write_test_keys()
os.environ.update({
    "APP_ENV": "test",
    "DEBUG": "false",
    "DATABASE_URL": TEST_DATABASE_URL,
    "JWT_PRIVATE_KEY_PATH": _private_path,
    "JWT_PUBLIC_KEY_PATH": _public_path,
    "FERNET_KEY": Fernet.generate_key().decode(),
    "DMP_TOKEN_SECRET": "test-dmp-token-secret-0123456789abcdef",
})

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from app.auth.dependencies import get_notification_channel  # noqa: E402
from app.auth.jwt import create_session_token  # noqa: E402
from app.core.security import encrypt_pii  # noqa: E402
from app.database import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models.authorization import ActorKind  # noqa: E402
from app.models.patient import Patient  # noqa: E402
from app.models.professional import Professional  # noqa: E402
from app.services.effect_dispatcher import EffectDispatcher  # noqa: E402

# ── Engine de test (SQLite async) ────────────────────
# NullPool: cada sesión abre su propia conexión (necesario para los tests
# de concurrencia y para la transacción propia del audit log)
test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
test_session_factory = async_sessionmaker(
    test_engine, class_=AsyncSession, expire_on_commit=False
)


class RecordingNotifier:
    """Canal de notificación en memoria."""

    def __init__(self):
        self.sent: list[dict] = []

    def notify(self, recipient, notification_type, message, metadata):
        self.sent.append({
            "recipient": recipient,
            "notification_type": notification_type,
            "message": message,
            "metadata": metadata,
        })

    def to(self, kind: ActorKind) -> list[dict]:
        return [n for n in self.sent if n["recipient"].kind is kind]


@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Crea y destruye las tablas para cada test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provee una sesión de DB de test."""
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def dispatcher(notifier: RecordingNotifier) -> EffectDispatcher:
    return EffectDispatcher(notifier)


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession, notifier: RecordingNotifier
) -> AsyncGenerator[AsyncClient, None]:
    """Cliente HTTP de test que usa la DB de test y el canal en memoria."""

    async def _get_test_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_notification_channel] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Directorio ───────────────────────────────────────

@pytest_asyncio.fixture
async def patient(db_session: AsyncSession) -> Patient:
    """Paciente de test, sin teléfono (notificaciones in-app)."""
    patient = Patient(
        id=uuid4(),
        first_name="Camille",
        last_name="Durand",
        record_number="DMP-0001",
        email=encrypt_pii("camille@example.com"),
    )
    db_session.add(patient)
    await db_session.commit()
    return patient


@pytest_asyncio.fixture
async def other_patient(db_session: AsyncSession) -> Patient:
    patient = Patient(
        id=uuid4(),
        first_name="Louis",
        last_name="Martin",
        record_number="DMP-0002",
        phone=encrypt_pii("+33612345678"),
    )
    db_session.add(patient)
    await db_session.commit()
    return patient


@pytest_asyncio.fixture
async def professional(db_session: AsyncSession) -> Professional:
    professional = Professional(
        id=uuid4(),
        first_name="Hélène",
        last_name="Bernard",
        license_number="10001234567",
        specialty="Cardiología",
    )
    db_session.add(professional)
    await db_session.commit()
    return professional


@pytest_asyncio.fixture
async def other_professional(db_session: AsyncSession) -> Professional:
    professional = Professional(
        id=uuid4(),
        first_name="Marc",
        last_name="Petit",
        license_number="10007654321",
        specialty="Medicina general",
    )
    db_session.add(professional)
    await db_session.commit()
    return professional


# ── Headers de sesión ────────────────────────────────

def auth_headers(subject_id, kind: ActorKind) -> dict:
    token = create_session_token(subject_id, kind)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def patient_headers(patient: Patient) -> dict:
    return auth_headers(patient.id, ActorKind.PATIENT)


@pytest.fixture
def professional_headers(professional: Professional) -> dict:
    return auth_headers(professional.id, ActorKind.PROFESSIONAL)


@pytest.fixture
def system_headers() -> dict:
    return auth_headers(uuid4(), ActorKind.SYSTEM)


@pytest.fixture
def make_headers():
    return auth_headers


@pytest.fixture
def count_events(db_session: AsyncSession):
    """Cuenta filas de access_events (opcionalmente por acción)."""
    from sqlalchemy import func, select

    from app.models.access_event import AccessEvent

    async def _count(action=None, **filters) -> int:
        query = select(func.count()).select_from(AccessEvent)
        if action is not None:
            query = query.where(AccessEvent.action == action.value)
        for field, value in filters.items():
            query = query.where(getattr(AccessEvent, field) == value)
        result = await db_session.execute(query)
        return result.scalar_one()

    return _count


@pytest.fixture
def session_factory():
    """Factory de sesiones independientes (una conexión cada una)."""
    return test_session_factory


@pytest.fixture
def interleave_after_load(monkeypatch):
    """
    La primera lectura de la autorización en `module` deja que `competitor`
    confirme su propia transición antes de seguir: el llamador queda con una
    versión vieja de la fila en memoria.
    """

    def _interleave(module, competitor):
        original = module.get_authorization
        state = {"ran": False}

        async def load_then_compete(db, authorization_id, **kwargs):
            authorization = await original(db, authorization_id, **kwargs)
            if not state["ran"]:
                state["ran"] = True
                await competitor()
            return authorization

        monkeypatch.setattr(module, "get_authorization", load_then_compete)

    return _interleave
