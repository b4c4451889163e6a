import logging
import sys
from pythonjsonlogger import jsonlogger

from core.config import settings

SERVICE_NAME = "knowledge-synthesis"
LOG_FORMAT = '%(asctime)s %(name)s %(levelname)s %(message)s'


def _json_formatter() -> jsonlogger.JsonFormatter:
    return jsonlogger.JsonFormatter(
        LOG_FORMAT,
        rename_fields={"asctime": "timestamp", "levelname": "level"},
        static_fields={"service": SERVICE_NAME},
    )


def get_logger(name: str) -> logging.Logger:
    """
    Returns a logger writing one JSON object per line to stdout.

    Fields passed through ``extra=`` become top-level keys, so they must not
    reuse LogRecord attribute names such as ``created`` or ``module``.
    """
    logger = logging.getLogger(name)

    # Already configured by an earlier import
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_json_formatter())
    logger.addHandler(handler)
    logger.propagate = False

    return logger
