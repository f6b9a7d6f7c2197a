"""
Dependencias para inyeccion de casos de uso.
"""
from fastapi import Depends

from scouter_sync.application.use_cases.sync_use_cases import SyncUseCases
from scouter_sync.core.config import Settings, SyncSettings, get_settings


def get_sync_settings(settings: Settings = Depends(get_settings)) -> SyncSettings:
    """
    Configuración del motor, construida por request.

    Returns:
        SyncSettings: valor inmutable con URLs, credenciales y parametros
    """
    return SyncSettings.from_settings(settings)


def get_sync_use_cases(
    sync_settings: SyncSettings = Depends(get_sync_settings)
) -> SyncUseCases:
    """
    Dependencia para obtener los casos de uso de sincronizacion.

    Args:
        sync_settings: Configuracion del motor

    Returns:
        SyncUseCases: Instancia de casos de uso de sync
    """
    return SyncUseCases(sync_settings)
