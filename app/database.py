"""
Base de datos del servicio de acceso DMP (SQLAlchemy 2.0 async).

PostgreSQL en producción; los tests corren sobre SQLite (aiosqlite).
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings

settings = get_settings()


def _engine_options(url: str) -> dict:
    options: dict = {"echo": settings.DEBUG}
    if not url.startswith("sqlite"):
        options.update(
            pool_pre_ping=True,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )
    return options


# ── Engine async ─────────────────────────────────────
engine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

# ── Session factory ──────────────────────────────────
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Detalles de eventos y condiciones: JSONB en PostgreSQL, JSON en SQLite
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ── Base declarativa ─────────────────────────────────
class Base(DeclarativeBase):
    pass


# ── Dependency: sesión de DB ─────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency de FastAPI que provee una sesión de base de datos.
    Los servicios confirman explícitamente cada transición de estado;
    el commit final cubre las lecturas y cualquier escritura pendiente.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def independent_session(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Sesión sobre la misma conexión lógica (bind) que `db` pero con su propia
    transacción: lo que confirme no depende del commit o rollback de `db`.
    """
    async with AsyncSession(bind=db.bind, expire_on_commit=False) as session:
        yield session
