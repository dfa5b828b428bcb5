#!/usr/bin/env python3
"""Logging setup and operator-facing console helpers."""

from __future__ import annotations

import logging
import sys
from typing import IO, Mapping, Optional

# Color codes for output
BLUE = '\033[94m'
CYAN = '\033[96m'
GREEN = '\033[92m'
YELLOW = '\033[93m'
RED = '\033[91m'
BOLD = '\033[1m'
DIM = '\033[2m'
RESET = '\033[0m'

SUCCESS = 25
logging.addLevelName(SUCCESS, 'SUCCESS')

LEVEL_COLORS = {
    logging.DEBUG: DIM,
    logging.INFO: BLUE,
    SUCCESS: GREEN,
    logging.WARNING: YELLOW,
    logging.ERROR: RED,
    logging.CRITICAL: RED,
}

LOG_FORMAT = '[%(levelname)s] %(message)s'

logger = logging.getLogger('grnctl')


def supports_colors(stream: IO[str], environ: Mapping[str, str]) -> bool:
    """Decide whether ANSI colors should be written to the given stream."""
    if environ.get('NO_COLOR'):
        return False
    if hasattr(stream, 'isatty') and stream.isatty():
        return True
    term = environ.get('TERM', '')
    if term.startswith(('xterm', 'screen', 'tmux')):
        return True
    return bool(environ.get('COLORTERM'))


class ColorFormatter(logging.Formatter):
    """Prefix records with a colored [LEVEL] tag."""

    def __init__(self, use_colors: bool) -> None:
        super().__init__(LOG_FORMAT)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if not self.use_colors:
            return message
        color = LEVEL_COLORS.get(record.levelno, '')
        tag = f"[{record.levelname}]"
        return message.replace(tag, f"{color}{tag}{RESET}", 1)


def configure_logging(
    log_level: str = "INFO",
    environ: Optional[Mapping[str, str]] = None,
    stream: Optional[IO[str]] = None,
) -> None:
    """
    Configure logging module with specified level.
    """
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
    }
    level = level_map.get(str(log_level).upper(), logging.INFO)

    stream = stream or sys.stderr
    handler = logging.StreamHandler(stream)
    handler.setFormatter(ColorFormatter(supports_colors(stream, environ or {})))

    logging.basicConfig(level=level, handlers=[handler], force=True)
    logger.setLevel(level)

    logger.debug(f"Logging configured: {str(log_level).upper()}")


def success(log: logging.Logger, msg: str) -> None:
    log.log(SUCCESS, msg)


def step(log: logging.Logger, msg: str) -> None:
    log.info(f"▶ {msg}")


def rule(log: logging.Logger, char: str = "=", width: int = 70) -> None:
    log.info(char * width)
