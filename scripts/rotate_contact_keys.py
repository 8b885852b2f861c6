"""
Script de data migration: re-cifra teléfono y email del directorio con la
FERNET_KEY vigente.

Pasos de una rotación:
    1. Mover la clave actual a FERNET_PREVIOUS_KEYS y poner la nueva en FERNET_KEY.
    2. Ejecutar este script.
    3. Quitar la clave anterior de FERNET_PREVIOUS_KEYS.

Uso:
    python scripts/rotate_contact_keys.py
"""

import asyncio
import sys
from pathlib import Path

# Agregar el directorio raíz al path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from cryptography.fernet import InvalidToken
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import rotate_pii
from app.database import async_session_factory, engine
from app.models.patient import Patient
from app.models.professional import Professional

CONTACT_FIELDS = ("phone", "email")


async def rotate_model(db: AsyncSession, model) -> tuple[int, int]:
    """Devuelve (filas procesadas, campos ilegibles)."""
    result = await db.execute(select(model))
    rows = result.scalars().all()

    processed = 0
    unreadable = 0
    for row in rows:
        for field in CONTACT_FIELDS:
            value = getattr(row, field)
            if not value:
                continue
            try:
                setattr(row, field, rotate_pii(value))
            except InvalidToken:
                unreadable += 1
                print(f"  ILEGIBLE: {model.__name__} {row.id} campo {field}")
        processed += 1

    return processed, unreadable


async def rotate_contact_keys() -> None:
    async with async_session_factory() as db:
        totals = {}
        for model in (Patient, Professional):
            totals[model.__name__] = await rotate_model(db, model)
        await db.commit()

    await engine.dispose()

    print("\nResultados:")
    for name, (processed, unreadable) in totals.items():
        print(f"  {name}: {processed} procesados, {unreadable} campos ilegibles")

    if any(unreadable for _, unreadable in totals.values()):
        print(
            "\n⚠ Hay campos que ninguna clave descifra. No quites claves de"
            "\n  FERNET_PREVIOUS_KEYS hasta revisarlos."
        )


if __name__ == "__main__":
    asyncio.run(rotate_contact_keys())
