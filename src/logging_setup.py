"""
Loguru sink configuration shared by the API and the CLI.
"""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from config import Settings, get_settings

CONSOLE_FORMAT = "<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"


def configure_logging(
    settings: Settings | None = None,
    console_level: str | None = None,
    log_to_file: bool = True,
) -> None:
    """
    Replace loguru's default sink with stderr plus an optional rotating file.

    Args:
        settings: Settings to read log_level / log_file from (cached settings if omitted)
        console_level: Override the stderr level (the CLI keeps it quieter)
        log_to_file: Set False to skip the file sink (tests, one-off commands)
    """
    settings = settings or get_settings()

    logger.remove()
    logger.add(
        sys.stderr,
        level=console_level or settings.log_level,
        format=CONSOLE_FORMAT,
    )

    if log_to_file and settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            level=settings.log_level,
            format=FILE_FORMAT,
            rotation="10 MB",
            retention=5,
            encoding="utf-8",
        )
