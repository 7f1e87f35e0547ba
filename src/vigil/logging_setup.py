from __future__ import annotations

import logging
import sys
import time
from logging.handlers import TimedRotatingFileHandler

from vigil.config import LoggingConfig

TRACE_LEVEL = 5
ROOT_LOGGER_NAME = "vigil"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

logging.addLevelName(TRACE_LEVEL, "TRACE")


def _formatter(config: LoggingConfig) -> logging.Formatter:
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    if config.utc:
        formatter.converter = time.gmtime
    return formatter


def _file_handler(config: LoggingConfig) -> logging.Handler:
    config.directory.mkdir(parents=True, exist_ok=True)
    path = config.directory / config.filename
    if config.daily_rotation:
        return TimedRotatingFileHandler(
            path,
            when="midnight",
            backupCount=config.retention_days,
            encoding="utf-8",
            utc=config.utc,
        )
    return logging.FileHandler(path, encoding="utf-8")


def setup_logging(config: LoggingConfig) -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    level = TRACE_LEVEL if config.level == "TRACE" else getattr(logging, config.level)
    logger.setLevel(level)

    formatter = _formatter(config)
    handlers: list[logging.Handler] = []
    # stdout is reserved for machine-readable command output.
    if config.output in {"console", "both"}:
        handlers.append(logging.StreamHandler(sys.stderr))
    if config.output in {"file", "both"}:
        handlers.append(_file_handler(config))
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
