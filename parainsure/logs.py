"""Logging configuration using loguru: colored console or structured JSON."""

from __future__ import annotations

import logging
import sys

from loguru import logger


class _InterceptHandler(logging.Handler):
    """Route standard-library log records (web3, urllib3, sqlalchemy) through loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno  # type: ignore[assignment]

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


_PRETTY_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


def setup_logging(level: str = "INFO", fmt: str = "pretty", colored: bool = True) -> None:
    """Configure loguru sinks.

    Parameters
    ----------
    level : str
        Minimum level, e.g. ``"INFO"`` or ``"DEBUG"``.
    fmt : str
        ``"pretty"`` (colored console) or ``"structured"`` (JSON lines).
    colored : bool
        Colorize the pretty format.
    """
    logger.remove()

    level = level.upper()
    if fmt == "structured":
        logger.add(sys.stderr, level=level, serialize=True, colorize=False)
    else:
        logger.add(sys.stderr, level=level, format=_PRETTY_FORMAT, colorize=colored)

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)

    for noisy in ("urllib3", "web3", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info("Logging configured (level={}, format={})", level, fmt)
