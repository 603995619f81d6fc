"""Logging for the mirror: one named logger, rotating file plus console."""

import logging
import os
from logging.handlers import RotatingFileHandler

LOGGER_NAME = "site_mirror"
LOG_FILE = "mirror.log"
# Jobs run on pool threads named mirror_N
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"
# httpx logs every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logger(log_dir: str = "logs", level: int = logging.INFO,
                 console: bool = True) -> logging.Logger:
    os.makedirs(log_dir, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if logger.handlers:
        return logger

    fmt = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    # 10MB per file, keep 5
    handlers = [RotatingFileHandler(
        os.path.join(log_dir, LOG_FILE),
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )]
    if console:
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(fmt)
        logger.addHandler(handler)

    return logger
