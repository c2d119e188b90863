from contextvars import ContextVar, Token
from datetime import datetime
from typing import Dict
import os

from logging.handlers import RotatingFileHandler
import logging
import pytz


LOGGER_NAME = "cryptofolio"

# Fields of the request being served by the current task, stamped on every record.
request_context: ContextVar[Dict[str, str]] = ContextVar("request_context", default={})


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        context = request_context.get()
        record.request_id = context.get("request_id", "-")
        record.owner = context.get("owner", "-")
        return True


def bind_request_context(**fields: str) -> Token:
    """
    Add fields to the logging context of the current request.

    Returns the token to pass to ``request_context.reset`` once the
    request is done.
    """
    return request_context.set({**request_context.get(), **fields})


def setup_logging(log_file: str, timezone: str) -> logging.Logger:
    log_dir = os.path.dirname(log_file)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)

        file_handler = RotatingFileHandler(log_file, maxBytes=10485760, backupCount=10)
        file_handler.setLevel(logging.INFO)

        formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s", "function": "%(funcName)s", "source": "%(source)s", "request_id": "%(request_id)s", "owner": "%(owner)s"}',
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        formatter.converter = lambda timestamp: datetime.fromtimestamp(
            timestamp, tz=pytz.timezone(timezone)
        ).timetuple()

        for handler in (console_handler, file_handler):
            handler.setFormatter(formatter)
            handler.addFilter(RequestContextFilter())
            logger.addHandler(handler)

    return logger


def get_logger(source: str) -> logging.LoggerAdapter:
    logger = logging.getLogger(LOGGER_NAME)
    return logging.LoggerAdapter(logger, {"source": source})
