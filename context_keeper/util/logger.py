import logging

LOGGER_NAME = "context_keeper"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logger = logging.getLogger(LOGGER_NAME)


def configure_logging(level: str | int = "INFO") -> None:
    """Attaches a stream handler to the package logger. Safe to call more than once."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger.setLevel(level)
    if not any(getattr(h, "_context_keeper", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._context_keeper = True
        logger.addHandler(handler)
