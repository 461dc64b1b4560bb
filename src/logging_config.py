import logging
import sys
import os
from logging import Handler
from typing import Optional

from tqdm import tqdm

# Parent of every module logger (key_recovery.pipeline, key_recovery.cache, ...)
LOGGER_NAME = "key_recovery"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Silent until setup_logger attaches real handlers
logging.getLogger(LOGGER_NAME).addHandler(logging.NullHandler())


class TqdmLoggingHandler(Handler):
    """Console handler that prints through tqdm.write so source-history progress bars stay on one line."""

    def __init__(self, level=logging.NOTSET, stream=None):
        super().__init__(level)
        self.stream = stream

    def emit(self, record):
        try:
            tqdm.write(self.format(record), file=self.stream or sys.stderr)
            self.flush()
        except (KeyboardInterrupt, SystemExit):
            raise
        except Exception:
            self.handleError(record)


def get_logger(component: str) -> logging.Logger:
    """Child logger for one engine component, e.g. ``get_logger("cache")``."""
    return logging.getLogger(f"{LOGGER_NAME}.{component}")


def setup_logger(log_level_str: str, log_file_path: Optional[str], log_to_console: bool) -> logging.Logger:
    """
    Attaches handlers to the ``key_recovery`` logger.

    Calling it again replaces the previous handlers. Component loggers from
    :func:`get_logger` propagate here; nothing reaches the root logger.

    Args:
        log_level_str: Level name such as 'INFO' or 'DEBUG'; unknown names mean INFO.
        log_file_path: Log file, created with its directory; None or '' disables file logging.
        log_to_console: Also print records to stderr through tqdm.

    Returns:
        The ``key_recovery`` logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level_str.upper(), logging.INFO))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT)

    # --- File Handler ---
    if log_file_path:
        log_dir = os.path.dirname(log_file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path, encoding='utf-8')
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    # --- End File Handler ---

    # --- Console Handler ---
    if log_to_console:
        tqdm_handler = TqdmLoggingHandler()
        tqdm_handler.setFormatter(formatter)
        logger.addHandler(tqdm_handler)
    # --- End Console Handler ---

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    return logger
