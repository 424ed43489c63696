"""Uvicorn logging configuration matching CentralizedLogger output"""

import logging
import os
import sys
from typing import Dict, Any, List

from .logger import CONTEXT_FIELDS, ConsoleFormatter, JsonFormatter, current_log_context, _trace_ids


class UvicornJsonFormatter(JsonFormatter):
    """JSON formatter for uvicorn and library records, which bypass CentralizedLogger"""

    def format(self, record):
        for key, value in _trace_ids().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        context = current_log_context()
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, context.get(field))
        return super().format(record)


def _handler_names() -> List[str]:
    json_only = os.getenv('AIROUTER_LOG_JSON_ONLY', 'false').lower() == 'true'
    return ["json"] if json_only else ["console", "json"]


def get_uvicorn_log_config() -> Dict[str, Any]:
    """Uvicorn log config: console on stdout plus JSON on stderr

    AIROUTER_LOG_JSON_ONLY=true drops the console handler for production.
    """
    handlers = _handler_names()
    level = os.getenv('AIROUTER_LOG_LEVEL', 'INFO').upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {"()": ConsoleFormatter},
            "json": {"()": UvicornJsonFormatter},
        },
        "handlers": {
            "console": {
                "formatter": "console",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
            "json": {
                "formatter": "json",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {
            name: {"handlers": handlers, "level": level, "propagate": False}
            for name in ("uvicorn", "uvicorn.error", "uvicorn.access")
        },
    }


def configure_otel_logging():
    """Quiet OpenTelemetry exporter warnings and emit them as JSON"""
    for logger_name in (
        'opentelemetry.exporter.otlp.proto.grpc.trace_exporter',
        'opentelemetry.exporter.otlp.proto.grpc.metric_exporter',
        'opentelemetry.sdk.trace.export',
        'opentelemetry.sdk.metrics.export',
    ):
        logger = logging.getLogger(logger_name)
        # Collector outages are transient; only errors are interesting
        logger.setLevel(logging.ERROR)
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(UvicornJsonFormatter())
            logger.addHandler(handler)
