"""Run the relay: pipeline, background loops and the HTTP API."""

from __future__ import annotations

import logging

import uvicorn

from fomo_relay.api import create_app
from fomo_relay.config import get_settings
from fomo_relay.pipeline import Pipeline

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting FOMO relay with settings: %s", settings.redacted_summary())

    app = create_app(Pipeline(settings))
    uvicorn.run(
        app,
        host=settings.api.host,
        port=settings.api.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
