"""
Logging setup for the Paillier client.
Every module logs through a child of the ``paillier_client`` logger.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

APP_LOGGER_NAME = "paillier_client"

DEFAULT_FORMAT = "%(asctime)s [%(levelname).4s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_LEVEL = os.getenv("PAILLIER_LOG_LEVEL", "WARNING")
LOG_FILE = os.getenv("PAILLIER_LOG_FILE")


def setup_logging(level: str = LOG_LEVEL, log_file: Optional[str] = LOG_FILE) -> None:
    """
    Configure the package root logger.

    Args:
        level: Default level name (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional path of a file that receives a copy of the output.
    """
    root = logging.getLogger(APP_LOGGER_NAME)

    # Re-running setup must not stack handlers
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    root.setLevel(getattr(logging, level.upper(), logging.WARNING))
    formatter = logging.Formatter(DEFAULT_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(log_path), encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """Return a logger namespaced under ``paillier_client.<name>``."""
    if name == APP_LOGGER_NAME or name.startswith(APP_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{APP_LOGGER_NAME}.{name}")
