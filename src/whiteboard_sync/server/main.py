from __future__ import annotations

import logging

import uvicorn

from .app import create_app
from .config import get_settings


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger(__name__).info(
        "whiteboard-sync on %s:%s (health: /healthz, storage: %s)",
        settings.host,
        settings.port,
        settings.storage_dir,
    )
    # A failed bind is the one fatal condition; uvicorn exits non-zero on it.
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
