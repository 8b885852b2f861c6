"""
Canal SMS (Twilio) para las notificaciones de acceso al DMP.

Se usa solo cuando el destinatario tiene teléfono registrado; si no,
la notificación queda in-app. Sin credenciales reales el envío se simula.

Docs SMS: https://www.twilio.com/docs/sms/api/message-resource
"""

import asyncio
import logging
import re

from app.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

_PLACEHOLDER_SID = "your-twilio-account-sid"
_PLACEHOLDER_TOKEN = "your-twilio-auth-token"


class SMSError(Exception):
    """Error de comunicación con Twilio SMS API."""

    def __init__(self, message: str, sid: str | None = None):
        self.message = message
        self.sid = sid
        super().__init__(message)


def is_simulated() -> bool:
    """True si Twilio no tiene credenciales reales configuradas."""
    account_sid = settings.TWILIO_ACCOUNT_SID
    auth_token = settings.TWILIO_AUTH_TOKEN
    return account_sid in ("", _PLACEHOLDER_SID) or auth_token in ("", _PLACEHOLDER_TOKEN)


def normalize_phone(phone_number: str) -> str:
    """
    Lleva el número a formato E.164. Los números nacionales (0612345678)
    reciben el prefijo SMS_DEFAULT_COUNTRY_CODE.
    """
    digits = re.sub(r"[\s.\-()]", "", phone_number)
    if digits.startswith("+"):
        return digits
    if digits.startswith("00"):
        return f"+{digits[2:]}"
    if digits.startswith("0"):
        return f"{settings.SMS_DEFAULT_COUNTRY_CODE}{digits[1:]}"
    return f"+{digits}"


def mask_phone(phone_number: str) -> str:
    """Solo los últimos 4 dígitos van a los logs."""
    return f"***{phone_number[-4:]}"


def _create_message(to: str, body: str):
    from twilio.rest import Client

    client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
    return client.messages.create(body=body, from_=settings.TWILIO_PHONE_NUMBER, to=to)


async def send_sms(phone_number: str, message: str) -> dict:
    """
    Envía un SMS. El cliente de Twilio es síncrono: la llamada corre en un
    hilo para no bloquear el event loop.

    Returns:
        dict con sid y status del mensaje.
    """
    to = normalize_phone(phone_number)

    # ── Modo simulación (sin credenciales) ───────────
    if is_simulated():
        logger.info(f"[SIMULATED SMS] To: {mask_phone(to)} | Message: {message[:80]}")
        return {"sid": "SIMULATED", "status": "simulated"}

    from twilio.base.exceptions import TwilioRestException

    try:
        twilio_message = await asyncio.to_thread(_create_message, to, message)
    except TwilioRestException as e:
        logger.error(f"Twilio error ({e.code}) enviando a {mask_phone(to)}: {e.msg}")
        raise SMSError(f"Error Twilio ({e.code}): {e.msg}")
    except Exception as e:
        logger.error(f"Error inesperado enviando SMS a {mask_phone(to)}: {e}")
        raise SMSError(f"Error enviando SMS: {str(e)}")

    logger.info(f"SMS enviado a {mask_phone(to)} | SID: {twilio_message.sid} | Status: {twilio_message.status}")
    return {"sid": twilio_message.sid, "status": twilio_message.status}
