"""
Logging configuration using loguru.

Text output for local runs, JSON lines when LOG_FORMAT=json.
"""

import sys

from loguru import logger

from app.core.config import get_settings


def _text_formatter(record: dict) -> str:
    base_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>"
    )

    if record["extra"]:
        base_format += " | {extra}"

    return base_format + "\n{exception}"


def setup_logging() -> None:
    settings = get_settings()

    logger.remove()

    level = settings.LOG_LEVEL.upper()

    if settings.LOG_FORMAT.lower() == "text":
        logger.add(
            sys.stdout,
            format=_text_formatter,
            level=level,
            colorize=True,
        )
    else:
        logger.add(
            sys.stdout,
            format="{message}",
            level=level,
            serialize=True,
        )

    logger.info(f"Logging configured (level={level}, format={settings.LOG_FORMAT})")
