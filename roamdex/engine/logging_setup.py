"""Loguru sink configuration."""

import sys

from loguru import logger

from .config import LoggingConfig


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(config: LoggingConfig) -> None:
    """Replace the default sink with stderr plus an optional rotating file."""
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=config.level)

    if config.file:
        config.file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            config.file,
            rotation="1 day",
            retention="7 days",
            level="DEBUG"
        )
