"""Rotating file + console logging for the control plane."""

from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from .config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(cfg: LoggingConfig) -> logging.Logger:
    """Configure the ``linkwatch`` logger: one file per day, keep N days."""
    log_dir = Path(cfg.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("linkwatch")
    logger.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    fh = TimedRotatingFileHandler(
        log_dir / "linkwatch.log",
        when="midnight",
        backupCount=cfg.retention_days,
        utc=True,
    )
    fh.setFormatter(formatter)
    logger.addHandler(fh)

    ch = logging.StreamHandler()
    ch.setFormatter(formatter)
    logger.addHandler(ch)

    logger.propagate = False
    return logger
