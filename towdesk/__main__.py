from __future__ import annotations

import logging

import uvicorn

from .config import configure_logging, settings

logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging()
    logger.info("Starting %s dispatch API on %s:%s", settings.app_name, settings.host, settings.port)
    # Logging is configured above; uvicorn must not replace it.
    uvicorn.run(
        "towdesk.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
        log_level=settings.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
