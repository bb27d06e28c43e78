import logging
import sys

from src.config import DEFAULT_LOG_LEVEL

_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(logger_name, level=DEFAULT_LOG_LEVEL, log_file=None):
    """Configure logging to the console and, optionally, a file at DEBUG level"""

    formatter = logging.Formatter(_FORMAT)

    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.DEBUG)

    # Calling twice must not duplicate output
    if getattr(logger, "_avalanche_configured", False):
        for handler in logger.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
                handler.setLevel(level)
        return logger

    # Console handler (level and above)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # File handler (DEBUG and above)
    if log_file is not None:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger._avalanche_configured = True
    return logger


def get_logger(logger_name):
    """Logger under the ``src`` hierarchy, e.g. ``get_logger("avalanche.playback")``"""
    if logger_name.startswith("src."):
        return logging.getLogger(logger_name)
    return logging.getLogger(f"src.{logger_name}")
