"""Logger module for the order service."""

import sys
from typing import Optional

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def setup_logger(service_name: str, log_level: str = "INFO", log_file: Optional[str] = None):
    """Configure the shared loguru logger for the service.

    Args:
        service_name: Name bound to every record (e.g. 'scentshop-orders').
        log_level: Minimum level for all sinks.
        log_file: Optional path of a rotating log file.

    Returns:
        logger: The loguru logger bound with the service name.
    """
    # Remove any existing handlers
    logger.remove()

    logger.add(
        sys.stderr,
        level=log_level,
        format=LOG_FORMAT,
        colorize=True,
        enqueue=True,
        backtrace=True,
        diagnose=False,
    )

    if log_file:
        logger.add(
            log_file,
            level=log_level,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
            rotation="10 MB",
            retention="1 week",
            compression="gz",
        )

    return logger.bind(service=service_name)


__all__ = ["logger", "setup_logger"]
