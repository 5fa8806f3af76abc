import json
import logging
import os
from logging.config import dictConfig

from aiohttp import web
from pydantic import ValidationError

from town.muni.pigeon.app.config import Settings
from town.muni.pigeon.app.server import start_web_server

logger = logging.getLogger(__name__)


def configure_logging(debug: bool = False) -> None:
    """
    Configure logging from the JSON dictConfig file named by LOGGING_CONFIG_FILE, or log to stderr at DEBUG
    (debug mode) or INFO level.
    """
    logging_config_file = os.getenv("LOGGING_CONFIG_FILE", "")

    if len(logging_config_file) > 0:
        with open(logging_config_file) as fl:
            dictConfig(json.load(fl))
        return

    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO)


def load_settings() -> Settings:
    """
    Load settings from the environment, exiting with status 1 if they are invalid.

    The service DID has no default, so a deployment without DID set stops here.
    """
    try:
        return Settings()  # type: ignore
    except ValidationError as e:
        configure_logging()
        logger.error("Invalid configuration, refusing to start: %s", e)
        raise SystemExit(1) from e


def invoke():
    settings = load_settings()
    configure_logging(settings.debug)
    logger.info(
        "Serving %s on port %s with %s storage",
        settings.service_did,
        settings.http_port,
        settings.storage_backend,
    )
    web.run_app(start_web_server(settings), port=settings.http_port)


if __name__ == "__main__":
    invoke()
