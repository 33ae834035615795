"""
Structured logging configuration.

structlog builds each event (name plus key/value fields, request context
from contextvars) and hands it to the stdlib root logger as ``extra``.
One python-json-logger formatter then renders both our events and
third-party records (uvicorn, sqlalchemy) as single-line JSON.

Money fields are passed as ``Decimal`` and rendered as exact strings, so a
due of 40.00 logs as ``"40.00"``, never ``40.0``.
"""
import logging
import sys
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, MutableMapping

import structlog
from pythonjsonlogger.json import JsonFormatter

from emi_ledger.config import get_settings


def json_default(obj: Any) -> Any:
    """Encode values the json module cannot."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


def add_service_context(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Stamp every event with the service name and environment."""
    settings = get_settings()
    event_dict.setdefault("service", settings.app_name)
    event_dict.setdefault("env", settings.app_env)
    return event_dict


def build_formatter() -> JsonFormatter:
    """JSON formatter shared by structlog events and stdlib records."""
    return JsonFormatter(
        "%(levelname)s %(name)s %(message)s",
        rename_fields={"levelname": "level", "name": "logger", "message": "event"},
        timestamp=True,
        json_default=json_default,
    )


def setup_logging() -> None:
    """
    Configure structured logging for the API, workers and tests.

    Safe to call more than once; the root handler is replaced each time.
    """
    settings = get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            add_service_context,
            structlog.stdlib.render_to_log_kwargs,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter())

    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level)

    # SQL statements only when database_echo asks for them
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        database_echo=settings.database_echo,
    )
