"""Structured logging configuration for KnowledgeQuery."""

import json
import logging
import time
import uuid
from typing import Callable
from contextvars import ContextVar
from functools import wraps

# Context variable for request tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')

PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class StructuredFormatter(logging.Formatter):
    """JSON-structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(''),
        }

        # Add extra fields
        if hasattr(record, 'duration_ms'):
            log_data['duration_ms'] = record.duration_ms
        if hasattr(record, 'operation'):
            log_data['operation'] = record.operation
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(level: str = "INFO", structured: bool = False) -> None:
    """Configure the root logger for CLI use."""
    handler = logging.StreamHandler()
    if structured:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def with_request_id(func: Callable) -> Callable:
    """Decorator to tag a pipeline operation with a request ID and log its duration."""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        # Nested operations keep the outer request ID
        outer = request_id_var.get('')
        token = request_id_var.set(outer or str(uuid.uuid4())[:8])
        start = time.perf_counter()

        try:
            return await func(*args, **kwargs)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            logger = logging.getLogger(func.__module__)
            logger.info(
                "Operation completed",
                extra={'duration_ms': round(duration_ms, 2), 'operation': func.__name__}
            )
            request_id_var.reset(token)

    return wrapper
