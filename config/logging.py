# coding: utf-8
"""
Logging configuration with loguru for VEO3 Studio backend
"""
import logging
import sys
from pathlib import Path

from loguru import logger
import sentry_sdk

from config.config import LOG_LEVEL, ENVIRONMENT, SENTRY_DSN

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = {
    "aiohttp": logging.WARNING,
    "apscheduler": logging.WARNING,
    "asyncio": logging.WARNING,
    "passlib": logging.ERROR,
    "sqlalchemy.engine": logging.ERROR,
}


def setup_logging() -> None:
    """
    Setup loguru sinks: colored console, daily rotated files, Sentry for errors
    """
    logger.remove()

    logs_dir = Path(__file__).parent.parent / "logs"
    logs_dir.mkdir(exist_ok=True)

    logger.add(
        sys.stdout,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        level=LOG_LEVEL,
        colorize=True,
    )

    # All logs, rotated at midnight
    logger.add(
        logs_dir / "app_{time:YYYY-MM-DD}.log",
        format=LOG_FORMAT,
        level="DEBUG",
        rotation="00:00",
        retention="7 days",
        compression="zip",
        encoding="utf-8",
    )

    # Errors only, kept longer
    logger.add(
        logs_dir / "error_{time:YYYY-MM-DD}.log",
        format=LOG_FORMAT,
        level="ERROR",
        rotation="00:00",
        retention="30 days",
        compression="zip",
        encoding="utf-8",
    )

    if SENTRY_DSN:
        logger.add(sentry_sink, level="ERROR", format="{message}")

    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    logger.info(f"VEO3 backend initialized | Environment: {ENVIRONMENT} | Log level: {LOG_LEVEL}")


def sentry_sink(message):
    """
    Forward ERROR and CRITICAL records to Sentry
    """
    record = message.record

    if record["exception"]:
        sentry_sdk.capture_exception(record["exception"].value)
        return

    sentry_sdk.capture_message(
        record["message"],
        level="fatal" if record["level"].name == "CRITICAL" else "error",
        extras={
            "function": record["function"],
            "file": record["file"].path,
            "line": record["line"],
        },
    )
