"""
CLI: disparadores de la sincronizacion Gestão <-> TabuladorMax.

Uso recomendado:
  - Ejecutar como job (cron/systemd timer), uno por capacidad.
  - Mismo contrato que los endpoints HTTP, sin pasar por el secreto compartido.

Variables de entorno requeridas:
  - DATABASE_URL (postgresql://... o postgres://...)
  - REMOTE_URL, REMOTE_SERVICE_KEY

Ejecución:
  python scripts/run_sync.py pull
  python scripts/run_sync.py push
  python scripts/run_sync.py queue
  python scripts/run_sync.py full-resync
  python scripts/run_sync.py health
  python scripts/run_sync.py geo-enrich --limit 100
  python scripts/run_sync.py schema

Código de salida: 0 si la corrida respondió 200, 1 si hubo fallas parciales
(207), 2 si falló en setup (500).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

# Permite ejecutar este script desde cualquier cwd sin configurar PYTHONPATH.
# La carpeta "api" contiene el paquete raíz `scouter_sync/`.
_API_ROOT = Path(__file__).resolve().parents[1]
if str(_API_ROOT) not in sys.path:
    sys.path.insert(0, str(_API_ROOT))

# Cargar variables desde .env si existe (api/.env o raíz del repo).
load_dotenv(_API_ROOT / ".env", override=False)
load_dotenv(_API_ROOT.parent / ".env", override=False)

from scouter_sync.application.use_cases.sync_use_cases import SyncUseCases
from scouter_sync.core.config import get_sync_settings
from scouter_sync.domain.entities.sync import SyncDirection
from scouter_sync.infrastructure.sync.pg_repository import SYNC_TABLES_DDL
from scouter_sync.shared.exceptions.sync import SyncException
from scouter_sync.shared.utils.audit_logger import AuditLogger

EXIT_CODES = {200: 0, 207: 1, 500: 2}


def _read_schema_sql() -> str:
    sql_path = _API_ROOT / "scouter_sync" / "infrastructure" / "sync" / "schema.sql"
    return sql_path.read_text(encoding="utf-8") + "\n" + SYNC_TABLES_DDL


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sincronización de leads Gestão <-> TabuladorMax")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("pull", help="TabuladorMax -> Gestão (incremental)")
    sub.add_parser("push", help="Gestão -> TabuladorMax (incremental)")
    sub.add_parser("queue", help="Drenar la cola de propagación")
    sub.add_parser("full-resync", help="Copia completa TabuladorMax -> Gestão")
    sub.add_parser("health", help="Health check de ambos stores")
    geo = sub.add_parser("geo-enrich", help="Completar coordenadas de leads")
    geo.add_argument("--limit", type=int, default=50)
    sub.add_parser("schema", help="Solo imprime el DDL recomendado (no ejecuta sync).")
    return parser


async def run_command(command: str, use_cases: SyncUseCases, limit: int = 50) -> tuple[dict, int]:
    if command in ("pull", "push"):
        dto, status = await use_cases.run_bidirectional(SyncDirection(command))
    elif command == "queue":
        dto, status = await use_cases.process_queue()
    elif command == "full-resync":
        dto, status = await use_cases.full_resync()
    elif command == "health":
        dto, status = await use_cases.check_health()
    elif command == "geo-enrich":
        dto, status = await use_cases.geo_enrich(limit)
    else:
        raise ValueError(f"Comando desconocido: {command}")
    return dto.model_dump(mode="json"), status


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "schema":
        print(_read_schema_sql())
        return 0

    AuditLogger.initialize()
    logger.info(f"Iniciando comando de sync: {args.command}")
    try:
        use_cases = SyncUseCases(get_sync_settings())
        body, status = asyncio.run(run_command(args.command, use_cases, getattr(args, "limit", 50)))
    except SyncException as e:
        logger.error(f"Comando {args.command} falló en setup: {e.message}")
        body, status = {"success": False, "errors": [e.message]}, 500
    print(json.dumps(body, ensure_ascii=False, indent=2))
    return EXIT_CODES.get(status, 2)


if __name__ == "__main__":
    raise SystemExit(main())
