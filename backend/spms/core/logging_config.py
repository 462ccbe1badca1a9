"""
SPMS - Logging Configuration

Plain text in development, one JSON object per line in production.

Batch work (promotion, reconciliation) runs inside ``batch_context`` and each
unit of that batch inside ``entity_context``; both values are attached to
every record logged underneath them, so a single reconciliation run can be
followed across its concurrently running units.
"""

import json
import logging
import sys
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, List

from spms.core.config import settings


batch_id_var: ContextVar[str] = ContextVar('batch_id', default='')
entity_var: ContextVar[str] = ContextVar('entity', default='')

# LogRecord attributes that are not caller-supplied ``extra`` fields
_RECORD_ATTRS = frozenset(
    logging.LogRecord('', 0, '', 0, '', (), None).__dict__
) | {'message', 'asctime', 'batch_id', 'entity'}


def get_batch_id() -> str:
    """ID of the promotion / reconciliation run this code is part of"""
    return batch_id_var.get()


def get_entity() -> str:
    """The student or group a batch unit is working on, e.g. "student 3f2a..." """
    return entity_var.get()


@contextmanager
def batch_context(name: str) -> Iterator[str]:
    """Tag everything logged inside with a fresh ``<name>-<8 hex>`` batch id"""
    batch_id = f"{name}-{uuid.uuid4().hex[:8]}"
    token = batch_id_var.set(batch_id)
    try:
        yield batch_id
    finally:
        batch_id_var.reset(token)


@contextmanager
def entity_context(kind: str, entity_id: str) -> Iterator[None]:
    """Tag everything logged inside with the entity a batch unit handles"""
    token = entity_var.set(f"{kind} {entity_id}")
    try:
        yield
    finally:
        entity_var.reset(token)


class JSONFormatter(logging.Formatter):
    """One JSON document per record, for log aggregation in production"""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        if get_batch_id():
            payload["batch_id"] = get_batch_id()
        if get_entity():
            payload["entity"] = get_entity()

        extra = {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS and not k.startswith('_')}
        if extra:
            payload["extra"] = extra

        if record.exc_info and record.exc_info[0]:
            payload["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": "".join(traceback.format_exception(*record.exc_info)),
            }

        return json.dumps(payload, default=str)


class ContextualFormatter(logging.Formatter):
    """Text formatter that can reference %(batch_id)s and %(entity)s"""

    def format(self, record: logging.LogRecord) -> str:
        record.batch_id = get_batch_id() or '-'
        record.entity = get_entity() or '-'
        return super().format(record)


class SPMSLogger(logging.Logger):
    """Logger with helpers for the events batch jobs emit"""

    def log_batch_event(self, batch: str, event: str, duration_ms: float = None,
                        slow_ms: float = None, **counters) -> None:
        """
        Log batch progress. With ``duration_ms`` the event is a completion
        record, raised to WARNING when it took longer than ``slow_ms``.
        """
        level = logging.INFO
        message = f"Batch {batch}: {event}"
        if duration_ms is not None:
            message += f" in {duration_ms:.0f}ms"
            if slow_ms is not None and duration_ms > slow_ms:
                level = logging.WARNING
                message += f" (slower than {slow_ms:.0f}ms)"
        self.log(level, message, extra={"batch": batch, "batch_event": event,
                                        "duration_ms": duration_ms, **counters})

    def log_status_change(self, entity: str, entity_id: str, previous: str,
                          current: str, reason: str = None) -> None:
        """Log a persisted status transition"""
        suffix = f" ({reason})" if reason else ""
        self.info(
            f"{entity} {entity_id}: {previous} -> {current}{suffix}",
            extra={"status_from": previous, "status_to": current},
        )

    def log_unit_failure(self, error: Exception, kind: str, entity_id: str) -> None:
        """Log a batch unit that was rolled back and skipped"""
        self.error(
            f"Skipping {kind} {entity_id}: {type(error).__name__}: {error}",
            exc_info=error,
            extra={"error_type": type(error).__name__},
        )


def _handlers(console_formatter: logging.Formatter, file_formatter: logging.Formatter,
              backup_count: int) -> List[logging.Handler]:
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    console.setFormatter(console_formatter)
    handlers: List[logging.Handler] = [console]

    if settings.LOG_FILE:
        log_file = Path(settings.LOG_FILE)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=10485760, backupCount=backup_count)  # 10MB
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    return handlers


def setup_logging() -> SPMSLogger:
    """Configure the "spms" logger for the current environment"""
    logging.setLoggerClass(SPMSLogger)
    logger = logging.getLogger("spms")
    logger.__class__ = SPMSLogger
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    logger.handlers.clear()

    if settings.ENVIRONMENT == "production":
        json_formatter = JSONFormatter()
        handlers = _handlers(json_formatter, json_formatter, backup_count=10)
    else:
        handlers = _handlers(
            ContextualFormatter("%(levelname)-8s | %(message)s"),
            ContextualFormatter(
                "%(asctime)s | %(levelname)-8s | [%(batch_id)s] [%(entity)s] | "
                "%(funcName)s:%(lineno)d | %(message)s"
            ),
            backup_count=5,
        )
    for handler in handlers:
        logger.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.WARNING)

    return logger


logger: SPMSLogger = setup_logging()


__all__ = [
    'logger',
    'setup_logging',
    'batch_context',
    'entity_context',
    'get_batch_id',
    'get_entity',
    'JSONFormatter',
    'ContextualFormatter',
    'SPMSLogger',
]
