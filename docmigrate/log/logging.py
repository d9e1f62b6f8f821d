"""
Shared loguru logger.

Configured once at import time from ``settings.logging_config``. Structured
context is passed as keyword arguments and ends up in ``record["extra"]``:

    logger.info("Migration applied", event_type="migration_applied", migration_id="001_x")
"""

import sys

from loguru import logger

from docmigrate.core.config import settings

_PLAIN_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[app_name]}</cyan> | "
    "{message}"
)


def configure_logging(config: dict | None = None) -> None:
    """Replace loguru's default sink with one driven by the settings."""
    config = config or settings.logging_config

    logger.remove()
    logger.configure(extra={"app_name": config["app_name"]})

    if config["json_logs"]:
        logger.add(sys.stderr, level=config["log_level"], serialize=True)
    else:
        logger.add(sys.stderr, level=config["log_level"], format=_PLAIN_FORMAT)


configure_logging()

__all__ = ["logger", "configure_logging"]
