"""Centralized logging with trace and request context injection"""

import logging
import json
import sys
import os
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode


# Fields every record carries, filled from the bound request context
CONTEXT_FIELDS = ("request_id", "user_id", "tenant_id", "provider", "model")

_log_context: ContextVar[Dict[str, Any]] = ContextVar("airouter_log_context", default={})


def current_log_context() -> Dict[str, Any]:
    return dict(_log_context.get())


@contextmanager
def bind_log_context(**fields):
    """Attach request fields (user, tenant, provider...) to every log line in scope

    Nested bindings extend the outer one; None values are ignored.
    """
    merged = {**_log_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _log_context.set(merged)
    try:
        yield merged
    finally:
        _log_context.reset(token)


def _trace_ids() -> Dict[str, str]:
    span = trace.get_current_span()
    if span and span.is_recording():
        span_context = span.get_span_context()
        return {
            "trace_id": format(span_context.trace_id, '032x'),
            "span_id": format(span_context.span_id, '016x'),
        }
    return {"trace_id": "no-trace", "span_id": "no-span"}


class ConsoleFormatter(logging.Formatter):
    """HH:MM:SS | LEVEL | SERVICE | [request] message"""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'
    BOLD = '\033[1m'

    def format(self, record):
        color = self.COLORS.get(record.levelname)
        if color:
            level = f"{color}{self.BOLD}{record.levelname}{self.RESET}"
            service = f"{color}{self.BOLD}{record.name}{self.RESET}"
        else:
            level, service = record.levelname, record.name

        request_id = getattr(record, 'request_id', None)
        prefix = f"[{request_id}] " if request_id else ""
        line = f"{self.formatTime(record, '%H:%M:%S')} | {level:21s} | {service:20s} | {prefix}{record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class JsonFormatter(logging.Formatter):
    """One JSON object per record for log shippers"""

    def format(self, record):
        log_obj = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'service': record.name,
            'message': record.getMessage(),
            'trace_id': getattr(record, 'trace_id', None),
            'span_id': getattr(record, 'span_id', None),
        }
        for field in CONTEXT_FIELDS:
            log_obj[field] = getattr(record, field, None)
        if record.exc_info:
            log_obj['exception'] = self.formatException(record.exc_info)
        return json.dumps(log_obj, default=str)


def _log_level() -> int:
    # AIROUTER_LOG_LEVEL avoids clashing with the pydantic settings namespace
    return getattr(logging, os.getenv('AIROUTER_LOG_LEVEL', 'INFO').upper(), logging.INFO)


def _json_only() -> bool:
    return os.getenv('AIROUTER_LOG_JSON_ONLY', 'false').lower() == 'true'


class CentralizedLogger:
    """Named logger that stamps trace ids and the bound request context

    Console output goes to stdout, JSON to stderr;
    AIROUTER_LOG_JSON_ONLY=true keeps only the JSON stream.
    """

    def __init__(self, service_name: str):
        self.service_name = service_name
        self.logger = logging.getLogger(service_name)
        level = _log_level()
        self.logger.setLevel(level)

        # Loggers are process-wide; attach handlers only once per name
        if getattr(self.logger, "_airouter_configured", False):
            return

        if not _json_only():
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level)
            console_handler.setFormatter(ConsoleFormatter())
            self.logger.addHandler(console_handler)

        json_handler = logging.StreamHandler(sys.stderr)
        json_handler.setLevel(level)
        json_handler.setFormatter(JsonFormatter())
        self.logger.addHandler(json_handler)

        self.logger._airouter_configured = True

    def _extra(self, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        extra = {field: None for field in CONTEXT_FIELDS}
        extra.update(_log_context.get())
        extra.update(_trace_ids())
        extra.update(kwargs.get('extra') or {})
        kwargs['extra'] = extra
        return kwargs

    def _log(self, level: int, message: str, kwargs: Dict[str, Any]) -> None:
        self.logger.log(level, message, **self._extra(kwargs))

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, kwargs)

        span = trace.get_current_span()
        if span and span.is_recording():
            exc_info: Optional[Any] = kwargs.get('exc_info')
            if isinstance(exc_info, BaseException):
                span.record_exception(exc_info)
            span.set_status(Status(StatusCode.ERROR, message))

    def critical(self, message: str, **kwargs):
        self._log(logging.CRITICAL, message, kwargs)
