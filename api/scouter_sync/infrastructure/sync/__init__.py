"""
Motor de sincronizacion bidireccional Gestão Scouter (local) <-> TabuladorMax (remoto).

Cada capacidad (pull, push, drenado de cola, full resync, health check,
geo enrich) se ejecuta como una unidad de trabajo independiente disparada
desde afuera (endpoint HTTP o cron). No hay scheduler en proceso.

Objetivos de diseño:
- Idempotencia: UPSERT por id estable, se puede re-ejecutar sin duplicar.
- Incremental: lectura por `updated_at >= checkpoint`, checkpoint monotono.
- Sin eco: filtro de procedencia (sync_source + last_synced_at) con ventana.
- Fallas parciales: un lote o registro malo no aborta la corrida.
"""
