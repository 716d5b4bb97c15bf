"""Loguru sink setup shared by the gateway and batch commands."""

from __future__ import annotations

import sys

from loguru import logger


def setup_logging(level: str = "INFO", *, to_file: bool = False) -> None:
    """Replace the default loguru sink with stderr (and optionally a rotating file)."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )
    if to_file:
        from slacknote.utils.helpers import get_logs_path

        logger.add(
            get_logs_path() / "slacknote.log",
            level=level.upper(),
            rotation="10 MB",
            retention=5,
            encoding="utf-8",
        )
