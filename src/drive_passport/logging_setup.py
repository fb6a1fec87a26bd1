"""Console and rotating-file logging for the command line."""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE_MAX_BYTES = 1024 * 1024
LOG_BACKUP_COUNT = 3


def configure_logging(verbose: bool = False, log_file: Optional[Path] = None) -> logging.Logger:
    """
    Install handlers on the root logger.

    Args:
        verbose: Log DEBUG to the console instead of WARNING
        log_file: Rotating log file, written at INFO and above

    Returns:
        The root logger
    """
    root_logger = logging.getLogger()

    # Remove handlers from a previous call
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Keep HTTP connection chatter out of the trip log
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return root_logger
