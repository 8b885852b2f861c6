"""
Plantillas de texto de las notificaciones de acceso al DMP.
Mensajes cortos: se envían también por SMS (máximo 1600 caracteres).
"""

from datetime import timedelta


def _hours(duration: timedelta) -> str:
    hours = int(duration.total_seconds() // 3600)
    return f"{hours} hora" if hours == 1 else f"{hours} horas"


def access_request(professional_name: str, reason: str) -> str:
    return (
        f"{professional_name} solicita acceso a su dossier médico. "
        f"Motivo: {reason}. Responda desde su espacio de paciente."
    )


def access_granted() -> str:
    return "El paciente aceptó su solicitud de acceso al dossier médico."


def access_refused(reason: str | None) -> str:
    message = "El paciente rechazó su solicitud de acceso al dossier médico."
    if reason:
        message += f" Motivo: {reason}"
    return message


def access_revoked(reason: str | None) -> str:
    message = "Se revocó una autorización de acceso al dossier médico."
    if reason:
        message += f" Motivo: {reason}"
    return message


def exceptional_access(professional_name: str, duration: timedelta) -> str:
    return (
        f"{professional_name} accedió a su dossier médico en modo excepcional "
        f"por un máximo de {_hours(duration)}. El acceso queda registrado."
    )


def access_deactivated(reason: str | None) -> str:
    message = "Una autorización de acceso fue desactivada por administración."
    if reason:
        message += f" Motivo: {reason}"
    return message
