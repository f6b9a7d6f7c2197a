"""
Excepciones relacionadas con autenticación de los disparadores de sync.
"""
from scouter_sync.shared.exceptions.base import AppException


class ForbiddenException(AppException):
    """Excepción para acceso prohibido."""

    def __init__(self, message: str = "Acceso prohibido"):
        super().__init__(
            message=message,
            status_code=403,
            error_code="FORBIDDEN"
        )


class InvalidSharedSecretException(ForbiddenException):
    """El header X-Secret falta o no coincide con SYNC_SHARED_SECRET."""

    def __init__(self):
        super().__init__(message="Secreto compartido inválido o ausente")
        self.error_code = "INVALID_SHARED_SECRET"
