"""
Logging setup for the BESS converter.

Console records go to stderr so that JSON printed by the CLI on stdout stays
machine readable. The optional file sink rotates and zips old logs. Records
emitted without a bound component are attributed to the converter itself.
"""

import sys
from pathlib import Path
from typing import List
from loguru import logger

from .config import LoggingConfig
from .logger_mixin import DEFAULT_COMPONENT, LoggerMixin, get_logger

__all__ = ["setup_logging", "get_logger", "LoggerMixin"]


def setup_logging(config: LoggingConfig) -> List[int]:
    """
    Replace all loguru sinks with the converter's console and file sinks.

    Args:
        config: Level, format and file settings

    Returns:
        Ids of the installed sinks
    """
    logger.remove()
    logger.configure(extra={"component": DEFAULT_COMPONENT})

    handler_ids = [
        logger.add(
            sys.stderr,
            level=config.level,
            format=config.format,
            backtrace=False,
            diagnose=False
        )
    ]

    if config.file_path:
        log_path = Path(config.file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler_ids.append(
            logger.add(
                log_path,
                level=config.level,
                format=config.format,
                rotation=config.rotation,
                retention=config.retention,
                compression="zip",
                encoding="utf-8",
                backtrace=True,
                diagnose=False
            )
        )

    get_logger().debug(f"Logging initialized at {config.level} ({len(handler_ids)} sink(s))")
    return handler_ids
