"""
Upgrade Logger - File + console logging for upgrade runs
========================================================
Modules log through logging.getLogger(__name__); configure_logging() wires
the package logger once per process:

- Rotating file under <project>/<meta-dir>/logs/ngup.log (DEBUG)
- Stderr handler (INFO, DEBUG when verbose), keeping stdout for command output
- Format: [TIMESTAMP] [NAME] [LEVEL] message

Usage:
    from upgrade_factory.log import configure_logging

    configure_logging(project / ".ng-upgrade" / "logs", verbose=True)
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "upgrade_factory"
LOG_FILE = "ngup.log"
_FORMAT = "[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s"


def configure_logging(log_dir: Optional[Path] = None, verbose: bool = False) -> logging.Logger:
    """Attach file and stderr handlers to the package logger (idempotent)."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)
    console_level = logging.DEBUG if verbose else logging.INFO

    # Avoid duplicate handlers on repeated configure_logging() calls
    have_file = any(isinstance(h, RotatingFileHandler) for h in logger.handlers)
    stream = next(
        (h for h in logger.handlers
         if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)),
        None,
    )

    if log_dir is not None and not have_file:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(
            log_dir / LOG_FILE, maxBytes=10 * 1024 * 1024, backupCount=5,
        )
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(fh)

    if stream is None:
        sh = logging.StreamHandler(sys.stderr)
        sh.setLevel(console_level)
        sh.setFormatter(logging.Formatter(_FORMAT, datefmt="%H:%M:%S"))
        logger.addHandler(sh)
    else:
        stream.setLevel(console_level)

    return logger


def reset_logging() -> None:
    """Detach and close every handler (tests, re-configuration)."""
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
