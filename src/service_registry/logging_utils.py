"""
Logging setup for the registry API process.

The level and format come from `RegistrySettings` (`SERVICE_REGISTRY_LOG_LEVEL`
and `SERVICE_REGISTRY_LOG_FORMAT`). Library code only ever logs through
module-level loggers; configuring handlers is left to the process that
embeds the registry, or to `main` for the standalone server.
"""
from __future__ import annotations

import logging
import sys

from .config import RegistrySettings

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(settings: RegistrySettings, *, force: bool = False) -> None:
    """
    Sends registry and uvicorn logs to stdout at the configured level.

    Does nothing if the root logger already has handlers, unless `force`
    is set.

    Args:
        settings: Supplies `log_level` and `log_format`.
        force: Replace any handlers already attached to the root logger.
    """
    level = resolve_level(settings.log_level)
    logging.basicConfig(
        level=level,
        format=settings.log_format,
        datefmt=DATE_FORMAT,
        stream=sys.stdout,
        force=force,
    )
    # Each watch long-poll is an httpx request; keep them out of INFO output.
    logging.getLogger("httpx").setLevel(max(logging.WARNING, level))
