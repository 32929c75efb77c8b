"""Run the queue API with uvicorn."""

from __future__ import annotations

import uvicorn

from dungeonqueue.backend.config import configure_logging, load_settings


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "dungeonqueue.backend.api:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
