"""
Helpers de fecha/hora. Todo el subsistema trabaja en UTC con datetimes aware.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Normaliza a UTC aware. SQLite devuelve datetimes naive (ya en UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
