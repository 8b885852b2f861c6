"""
Excepciones HTTP personalizadas para la API.
Cada una lleva un `code` estable para que el cliente distinga los casos
("ya solicitado", "solicitud ya procesada", etc.).
"""

from fastapi import HTTPException, status


class CredentialsException(HTTPException):
    """Token inválido, alterado o expirado (401)."""

    def __init__(self, detail: str = "Credenciales inválidas", code: str = "token_invalid"):
        self.code = code
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenException(HTTPException):
    """Error de permisos insuficientes (403)."""

    def __init__(
        self,
        detail: str = "No tiene permisos para realizar esta acción",
        code: str = "forbidden",
    ):
        self.code = code
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )


class NotFoundException(HTTPException):
    """Recurso no encontrado (404)."""

    def __init__(self, resource: str = "Recurso", detail: str | None = None):
        self.code = "not_found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail or f"{resource} no encontrado",
        )


class ConflictException(HTTPException):
    """Conflicto de datos (409) — ej: solicitud de acceso duplicada."""

    def __init__(self, detail: str = "El recurso ya existe", code: str = "conflict"):
        self.code = code
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
        )


class InvalidStateException(HTTPException):
    """Transición no permitida desde el estado actual (409)."""

    def __init__(
        self,
        detail: str = "La operación no es válida en el estado actual",
        code: str = "invalid_state",
    ):
        self.code = code
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
        )


class ValidationException(HTTPException):
    """Error de validación de negocio (422)."""

    def __init__(self, detail: str = "Error de validación", code: str = "invalid_argument"):
        self.code = code
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
        )
