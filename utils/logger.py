import logging
from logging.handlers import RotatingFileHandler

from config import Config

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_logger = None


def _level() -> int:
    level = logging.getLevelName((Config.LOG_LEVEL or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def get_logger():
    """Process-wide `linyone` logger: stderr always, plus a rotating file when LOG_FILE is set."""
    global _logger
    if _logger is not None:
        return _logger

    logger = logging.getLogger("linyone")
    logger.setLevel(_level())
    formatter = logging.Formatter(LOG_FORMAT)

    if not logger.handlers:
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        logger.addHandler(stream)

        if Config.LOG_FILE:
            try:
                rotating = RotatingFileHandler(Config.LOG_FILE, maxBytes=1_000_000, backupCount=5)
                rotating.setFormatter(formatter)
                logger.addHandler(rotating)
            except OSError as err:
                logger.warning(f"File logging disabled ({Config.LOG_FILE}): {err}")

    _logger = logger
    return logger


def log_exception(err: Exception, context: str = ""):
    """Log err with its traceback, prefixed by where it happened."""
    message = f"{context} {err}".strip()
    get_logger().error(message, exc_info=err)
