"""
Cifrado de los datos de contacto del directorio (teléfono, email) con Fernet.

FERNET_PREVIOUS_KEYS permite rotar la clave: se cifra siempre con
FERNET_KEY y se descifra probando también las claves anteriores.
"""

import logging

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from app.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# ── Cifrado de PII (Fernet) ─────────────────────────
_fernet: MultiFernet | None = None


def _get_fernet() -> MultiFernet:
    global _fernet
    if _fernet is None:
        if settings.FERNET_KEY == "your-fernet-key-here":
            raise RuntimeError(
                "FERNET_KEY no configurada. Genera una con: "
                "python scripts/generate_keys.py y ponla en .env"
            )
        keys = [settings.FERNET_KEY, *settings.fernet_previous_keys]
        _fernet = MultiFernet([Fernet(key.encode()) for key in keys])
    return _fernet


def encrypt_pii(value: str | None) -> str | None:
    """Cifra un dato de contacto con la clave vigente."""
    if not value:
        return value
    return _get_fernet().encrypt(value.encode()).decode()


def decrypt_pii(encrypted_value: str | None) -> str | None:
    """
    Descifra un dato de contacto. Si ninguna clave lo descifra devuelve
    None: el destinatario queda sin canal SMS y se notifica in-app.
    """
    if not encrypted_value:
        return encrypted_value
    try:
        return _get_fernet().decrypt(encrypted_value.encode()).decode()
    except InvalidToken:
        logger.error("Dato de contacto ilegible con las claves Fernet configuradas")
        return None


def rotate_pii(encrypted_value: str | None) -> str | None:
    """Re-cifra un valor con la clave vigente (tras cambiar FERNET_KEY)."""
    if not encrypted_value:
        return encrypted_value
    return _get_fernet().rotate(encrypted_value.encode()).decode()
