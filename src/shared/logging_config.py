"""Process-wide logging setup."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

from shared.constants import LOG_FORMAT

if TYPE_CHECKING:
    from domain.models import LoggingSettings


def setup_logging(settings: LoggingSettings | None = None) -> None:
    """Configure root logging: stdout always, plus a UTF-8 file when configured.

    Calling it again replaces previously installed handlers.
    """
    level_name = settings.level if settings is not None else 'INFO'
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings is not None and settings.file is not None:
        settings.file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(settings.file), encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, level_name),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
