import logging
import sys

LOGGER_NAME = "retrieval_engine"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def resolve_level(log_level: str, debug: bool = False) -> int:
    """
    Map a LOG_LEVEL name onto a logging level. DEBUG=true always wins and an
    unknown name falls back to INFO.
    """
    if debug:
        return logging.DEBUG
    level = logging.getLevelName(log_level.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging() -> logging.Logger:
    """
    Sets up the package logger with a single stdout handler.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return logger
    logger.setLevel(logging.INFO)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console_handler)
    return logger


def configure_logging(settings) -> logging.Logger:
    """Apply LOG_LEVEL and DEBUG from `settings` to the package logger."""
    level = resolve_level(settings.LOG_LEVEL, settings.DEBUG)
    logger.setLevel(level)
    if level == logging.DEBUG:
        logger.debug(f"Debug logging enabled for {LOGGER_NAME}")
    return logger


logger = setup_logging()
