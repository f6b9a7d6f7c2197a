"""
AuditLogger - Logging estructurado de las corridas de sincronización.

Complementa la tabla `sync_logs` con un archivo diario legible:
- sync_logs/: una línea por corrida (dirección, conteos, duración, errores)
- api_logs/: requests y responses de los disparadores HTTP
"""
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from scouter_sync.domain.entities.sync import SyncRunResult


class AuditLogger:
    """
    Gestor de logs de auditoria.

    Uso:
        # Al inicio de la app (o del script de cron)
        AuditLogger.initialize()

        # Al terminar una corrida
        AuditLogger.record_run(result, metadata={"table": "leads"})
    """

    # Rutas base para los logs
    BASE_LOG_DIR = Path("logs")
    SYNC_LOG_DIR = BASE_LOG_DIR / "sync_logs"
    API_LOG_DIR = BASE_LOG_DIR / "api_logs"

    # Formatos de timestamp
    FILE_TIMESTAMP_FORMAT = "%Y-%m-%d"

    # Máximo de errores volcados al archivo por corrida
    MAX_LOGGED_ERRORS = 20

    _initialized: bool = False

    @classmethod
    def initialize(cls) -> None:
        """
        Inicializa las carpetas y sinks de logs.
        Debe llamarse al inicio de la aplicacion.
        """
        if cls._initialized:
            return

        cls.SYNC_LOG_DIR.mkdir(parents=True, exist_ok=True)
        cls.API_LOG_DIR.mkdir(parents=True, exist_ok=True)

        today = datetime.now().strftime(cls.FILE_TIMESTAMP_FORMAT)

        logger.add(
            str(cls.SYNC_LOG_DIR / f"sync_{today}.log"),
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {message}",
            filter=lambda record: record["extra"].get("context") == "sync",
            rotation="1 day",
            retention="30 days",
            level="DEBUG",
        )
        logger.add(
            str(cls.API_LOG_DIR / f"api_{today}.log"),
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {message}",
            filter=lambda record: record["extra"].get("context") == "api",
            rotation="1 day",
            retention="30 days",
            level="DEBUG",
        )

        cls._initialized = True
        logger.info("AuditLogger inicializado")

    @classmethod
    def record_run(cls, result: SyncRunResult, metadata: Optional[Dict[str, Any]] = None) -> None:
        """
        Registra el resumen de una corrida.

        El nivel depende del resultado: info si no hubo fallas, warning si
        hubo fallas parciales, error si la corrida fue fatal.
        """
        log_data: Dict[str, Any] = {
            "type": "SYNC_RUN",
            "direction": result.direction,
            "success": result.success,
            "skipped": result.skipped,
            "records_read": result.records_read,
            "records_synced": result.records_synced,
            "records_inserted": result.records_inserted,
            "records_suppressed": result.records_suppressed,
            "records_failed": result.records_failed,
            "processing_time_ms": result.processing_time_ms,
            "started_at": result.started_at.isoformat(),
        }
        if result.checkpoint:
            log_data["checkpoint"] = result.checkpoint.isoformat()
        if result.errors:
            log_data["errors"] = result.errors[: cls.MAX_LOGGED_ERRORS]
        if metadata:
            log_data["metadata"] = metadata

        status = result.http_status()
        log_level = "info" if status == 200 else "warning" if status == 207 else "error"

        sync_logger = logger.bind(context="sync")
        getattr(sync_logger, log_level)(
            f"SYNC {result.direction} synced={result.records_synced} "
            f"failed={result.records_failed} ({result.processing_time_ms} ms)\n"
            f"{json.dumps(log_data, default=str)}"
        )

    @classmethod
    def log_request(cls, method: str, path: str, params: Optional[Dict] = None) -> None:
        """Registra la invocacion de un disparador HTTP."""
        api_logger = logger.bind(context="api")
        suffix = f" {json.dumps(params, default=str)}" if params else ""
        api_logger.info(f"REQUEST {method} {path}{suffix}")

    @classmethod
    def log_response(
        cls,
        method: str,
        path: str,
        status_code: int,
        duration_ms: Optional[float] = None,
    ) -> None:
        """Registra la respuesta de un disparador HTTP."""
        log_level = "info" if status_code < 400 else "warning" if status_code < 500 else "error"
        api_logger = logger.bind(context="api")
        duration = f" ({duration_ms:.0f} ms)" if duration_ms is not None else ""
        getattr(api_logger, log_level)(f"RESPONSE {status_code} {method} {path}{duration}")


# Alias para uso mas simple
audit = AuditLogger
