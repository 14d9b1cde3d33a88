import logging
from logging.handlers import RotatingFileHandler
from core.config import config

# sources are fetched on worker threads; the thread name tells them apart
_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)-22s | %(name)s | %(message)s"


def level_from_name(name: str, default: int = logging.INFO) -> int:
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else default


def _build_handlers() -> list[logging.Handler]:
    formatter = logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    config.LOG_DIR.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        config.LOG_FILE,
        maxBytes=config.LOG_MAX_BYTES,
        backupCount=config.LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level_from_name(config.LOG_LEVEL))
    return [file_handler, console_handler]


_handlers = _build_handlers()


def get_logger(name: str) -> logging.Logger:
    """Module logger writing DEBUG and up to the rotating file and
    ``LOG_LEVEL`` and up to the console."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.setLevel(logging.DEBUG)
        for handler in _handlers:
            logger.addHandler(handler)
        logger.propagate = False
    return logger
