"""Create the queue and instance tables in PostgreSQL."""

from __future__ import annotations

import logging
from pathlib import Path

from dungeonqueue.backend.config import BackendSettings, configure_logging, load_settings

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("db_schema.sql")
REQUIRED_TABLES = ("queue_entries", "instances", "parties")


def apply_schema(settings: BackendSettings, schema_path: Path = SCHEMA_PATH) -> list[str]:
    """Run the schema script and return the required tables now present."""
    if not settings.database_url:
        raise RuntimeError("DUNGEONQUEUE_DATABASE_URL is required for migration")

    import psycopg

    with psycopg.connect(
        settings.database_url,
        connect_timeout=max(1, int(settings.io_timeout_seconds)),
    ) as conn:
        with conn.cursor() as cur:
            cur.execute(schema_path.read_text(encoding="utf-8"))
            cur.execute(
                "SELECT table_name FROM information_schema.tables WHERE table_name = ANY(%s)",
                (list(REQUIRED_TABLES),),
            )
            present = sorted(row[0] for row in cur.fetchall())
        conn.commit()

    missing = [table for table in REQUIRED_TABLES if table not in present]
    if missing:
        raise RuntimeError(f"schema applied but tables are missing: {', '.join(missing)}")
    logger.info("Applied %s, tables present: %s", schema_path.name, ", ".join(present))
    return present


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    apply_schema(settings)


if __name__ == "__main__":
    main()
