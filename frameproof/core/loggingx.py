"""Logger setup and timing helpers."""

import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from loguru import logger


def init_logger(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Initialize global logger configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file path for log output
    """
    # Remove default handler
    logger.remove()

    logger.add(
        sink=sys.stderr,
        level=level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        colorize=True
    )

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            sink=str(log_file),
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            rotation="10 MB",
            retention="30 days"
        )

    logger.info(f"Logger initialized with level: {level}")


@contextmanager
def log_duration(operation: str) -> Iterator[None]:
    """Log how long the wrapped block took, at DEBUG level.

    The duration is logged whether the block succeeds or raises.
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        logger.debug(f"Operation '{operation}' took {time.perf_counter() - start:.3f}s")
