"""Structured logging configuration."""
import logging
import sys
from pythonjsonlogger import jsonlogger
from opentelemetry import trace
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import Resource

from config import OTEL_EXPORTER_OTLP_ENDPOINT, SERVICE_NAME, TELEMETRY_ENABLED

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps each record with the service and trace context."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        ctx = trace.get_current_span().get_span_context()
        if ctx.is_valid:
            log_record['trace_id'] = format(ctx.trace_id, '032x')
            log_record['span_id'] = format(ctx.span_id, '016x')
            log_record['trace_flags'] = ctx.trace_flags

        log_record['service'] = SERVICE_NAME

        if 'message' in log_record:
            log_record['msg'] = log_record.pop('message')


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter(
        '%(levelname)s %(name)s %(message)s',
        rename_fields={'levelname': 'level'}
    ))
    return handler


def _otlp_handler(level: int) -> logging.Handler:
    """Ship log records to the collector alongside traces and metrics."""
    logger_provider = LoggerProvider(resource=Resource.create({
        "service.name": SERVICE_NAME,
        "deployment.environment": "demo"
    }))
    logger_provider.add_log_record_processor(
        BatchLogRecordProcessor(OTLPLogExporter(endpoint=OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True))
    )
    set_logger_provider(logger_provider)
    return LoggingHandler(level=level, logger_provider=logger_provider)


def setup_logging(level: int = logging.INFO):
    """
    Configure structured logging for the checkout service.

    JSON lines always go to stdout. When telemetry is enabled the same records
    are also exported over OTLP; a collector that cannot be reached only costs
    a warning.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.addHandler(_console_handler())

    if TELEMETRY_ENABLED:
        try:
            root_logger.addHandler(_otlp_handler(level))
            logging.info("OTLP logging handler configured")
        except Exception as e:
            logging.warning(f"Failed to configure OTLP logging handler: {e}")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
