"""Logging configuration for the application."""

import logging
import sys

from keystone.config import Settings

# Libraries that log request details (including credentials) at INFO/DEBUG
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "urllib3")


def setup_logging(settings: Settings) -> None:
    """Configure application logging.

    Sets up stdlib logging for libraries that do not go through Logfire.

    Args:
        settings: Application settings
    """
    if settings.debug:
        level = logging.DEBUG
    elif settings.environment == "test":
        level = logging.WARNING
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True,  # Override any existing configuration
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("keystone").setLevel(level)

    logger = logging.getLogger(__name__)
    logger.info(
        f"Logging configured: environment={settings.environment}, level={logging.getLevelName(level)}"
    )
