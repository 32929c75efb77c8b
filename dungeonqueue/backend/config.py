"""Configuration helpers for backend runtime."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class BackendSettings:
    database_url: str | None
    host: str
    port: int
    queue_ttl_seconds: int
    sweep_interval_seconds: float
    io_timeout_seconds: float
    provision_workers: int
    log_level: str
    profile_store_factory: str | None = None


def load_settings() -> BackendSettings:
    return BackendSettings(
        database_url=os.getenv("DUNGEONQUEUE_DATABASE_URL"),
        host=os.getenv("DUNGEONQUEUE_HOST", "127.0.0.1"),
        port=int(os.getenv("DUNGEONQUEUE_PORT", "8000")),
        queue_ttl_seconds=int(os.getenv("DUNGEONQUEUE_QUEUE_TTL_SECONDS", "1800")),
        sweep_interval_seconds=float(os.getenv("DUNGEONQUEUE_SWEEP_INTERVAL_SECONDS", "15")),
        io_timeout_seconds=float(os.getenv("DUNGEONQUEUE_IO_TIMEOUT_SECONDS", "5")),
        provision_workers=int(os.getenv("DUNGEONQUEUE_PROVISION_WORKERS", "4")),
        log_level=os.getenv("DUNGEONQUEUE_LOG_LEVEL", "INFO").upper(),
        profile_store_factory=os.getenv("DUNGEONQUEUE_PROFILE_STORE") or None,
    )


def configure_logging(level: str = "INFO") -> None:
    """Install a root handler with the backend log format."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
