"""ASGI entrypoint: `uvicorn main:app` or `python main.py`."""
from __future__ import annotations

import logging

from bgchaos.app import create_app
from bgchaos.logs import configure_logging
from bgchaos.settings import settings

configure_logging(settings.log_level)
log = logging.getLogger("bgchaos.main")

app = create_app(settings)


def run() -> None:
    import uvicorn

    log.info("App listening on port %s", settings.port)
    log.info("APP_POOL: %s", settings.app_pool)
    log.info("RELEASE_ID: %s", settings.release_id)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
