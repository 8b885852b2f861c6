"""
Alembic env.py del servicio de acceso DMP (SQLAlchemy async).

La URL sale de `Settings.DATABASE_URL`; alembic.ini no la fija.
"""

import asyncio
import logging
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from app.config import get_settings
from app.database import Base

# Registra las tablas del directorio, autorizaciones, eventos y notificaciones
import app.models  # noqa: F401

settings = get_settings()

# ── Alembic Config ───────────────────────────────────
config = context.config
config.set_main_option("sqlalchemy.url", settings.DATABASE_URL)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")
target_metadata = Base.metadata


def _configure_options(url: str) -> dict:
    options = {
        "target_metadata": target_metadata,
        "compare_type": True,
        "process_revision_directives": _skip_empty_revision,
    }
    # SQLite no soporta ALTER completo: los cambios de columnas van en batch
    if url.startswith("sqlite"):
        options["render_as_batch"] = True
    return options


def _skip_empty_revision(context, revision, directives) -> None:
    """No generar archivos vacíos con `alembic revision --autogenerate`."""
    if getattr(config.cmd_opts, "autogenerate", False):
        script = directives[0]
        if script.upgrade_ops.is_empty():
            directives[:] = []
            logger.info("Sin cambios en el esquema de acceso DMP, no se genera revisión")


# ── Modo offline (solo SQL) ──────────────────────────
def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_options(url),
    )

    with context.begin_transaction():
        context.run_migrations()


# ── Modo online (engine async) ───────────────────────
def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        **_configure_options(str(connection.engine.url)),
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
