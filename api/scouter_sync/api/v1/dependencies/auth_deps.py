"""
Dependencias de autenticación de los disparadores de sync.
"""
import hmac
from typing import Optional

from fastapi import Depends, Header
from loguru import logger

from scouter_sync.core.config import Settings, get_settings
from scouter_sync.shared.exceptions.auth import InvalidSharedSecretException


def verify_shared_secret(
    x_secret: Optional[str] = Header(default=None, alias="X-Secret"),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Compara el header X-Secret con SYNC_SHARED_SECRET.

    Si el secreto no está configurado, ningún request pasa: el disparo
    queda bloqueado antes de hacer cualquier trabajo.

    Raises:
        InvalidSharedSecretException: header ausente, vacío o distinto (403)
    """
    expected = settings.SYNC_SHARED_SECRET
    if not expected:
        logger.warning("SYNC_SHARED_SECRET no configurado; disparo rechazado")
        raise InvalidSharedSecretException()
    if not x_secret or not hmac.compare_digest(x_secret.encode(), expected.encode()):
        logger.warning("Disparo de sync con secreto inválido")
        raise InvalidSharedSecretException()
