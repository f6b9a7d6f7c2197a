"""
Excepciones del motor de sincronización Gestão <-> TabuladorMax.

Taxonomía:
- ConnectivityError: store inaccesible o timeout. Fatal para la corrida actual.
- SchemaError: tabla/columna esperada no existe o cambió de nombre.
- TableDiscoveryError: ningún candidato de nombre de tabla respondió.
- RemoteAccessError: el store remoto rechazó las credenciales (401/403).
- RecordMappingError: registro de origen malformado. Se salta y se cuenta.
- UpsertConflictError: violación de constraint en el destino. Falla el lote.
- SyncConfigError: configuración incompleta (URL, credenciales).
"""
from typing import Any, Optional

from scouter_sync.shared.exceptions.base import AppException


class SyncException(AppException):
    """Excepción base del pipeline de sincronización."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "SYNC_ERROR",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=status_code,
            error_code=error_code,
            details=details,
        )


class SyncConfigError(SyncException):
    """Falta configuración obligatoria del pipeline."""

    def __init__(self, message: str, missing: Optional[list[str]] = None):
        super().__init__(
            message=message,
            error_code="SYNC_CONFIG_ERROR",
            details={"missing": missing or []},
        )


class ConnectivityError(SyncException):
    """El store no respondió (red, DNS, timeout, 5xx agotados)."""

    def __init__(self, store: str, message: str):
        super().__init__(
            message=f"{store}: {message}",
            status_code=503,
            error_code="STORE_UNREACHABLE",
            details={"store": store},
        )
        self.store = store


class SchemaError(SyncException):
    """Tabla o columna esperada no existe en el store."""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[dict[str, Any]] = None):
        merged = {"code": code}
        merged.update(details or {})
        super().__init__(message=message, error_code="SCHEMA_ERROR", details=merged)
        self.code = code


class RemoteAccessError(SyncException):
    """El store remoto rechazó la credencial de servicio."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(
            message=message,
            status_code=502,
            error_code="REMOTE_ACCESS_DENIED",
            details={"code": code},
        )
        self.code = code


class TableDiscoveryError(SchemaError):
    """
    Ningún nombre candidato de tabla respondió sin error.

    `attempts` conserva cada intento (nombre, código, mensaje, duración) para
    que el diagnóstico sea accionable.
    """

    def __init__(self, attempts: list[dict[str, Any]]):
        tried = ", ".join(
            f"{a['table_name']} ({a.get('error_code') or 'sin código'}: {a.get('error')})"
            for a in attempts
        )
        super().__init__(
            message=f"No se encontró la tabla de leads en el remoto. Intentos: {tried}",
            code="TABLE_NOT_FOUND",
            details={"attempts": attempts},
        )
        self.attempts = attempts


class RecordMappingError(SyncException):
    """Registro de origen malformado (id ausente, fecha inválida, tipo inesperado)."""

    def __init__(self, record_id: Optional[str], message: str):
        super().__init__(
            message=f"Registro {record_id or '<sin id>'}: {message}",
            status_code=422,
            error_code="RECORD_MAPPING_ERROR",
            details={"record_id": record_id},
        )
        self.record_id = record_id


class UpsertConflictError(SyncException):
    """El destino rechazó el lote (constraint, tipo de columna, payload inválido)."""

    def __init__(self, destination: str, message: str, code: Optional[str] = None):
        super().__init__(
            message=f"{destination}: {message}",
            status_code=409,
            error_code="UPSERT_CONFLICT",
            details={"destination": destination, "code": code},
        )
        self.destination = destination
        self.code = code
