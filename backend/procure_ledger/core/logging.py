"""Structured JSON logging configuration."""
import logging
import sys
from pythonjsonlogger import jsonlogger
from procure_ledger.core.config import settings

SERVICE_NAME = "procure-ledger"
LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def setup_logging() -> None:
    """JSON lines tagged with the service name in production, plain text in dev."""
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if settings.APP_ENV == "production":
        handler = logging.StreamHandler(sys.stdout)
        formatter = jsonlogger.JsonFormatter(
            LOG_FORMAT,
            rename_fields={"asctime": "timestamp", "levelname": "level"},
            static_fields={"service": SERVICE_NAME},
        )
        handler.setFormatter(formatter)
        logging.root.handlers = [handler]
        logging.root.setLevel(level)
    else:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    # SQL echo is controlled by DATABASE_ECHO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
