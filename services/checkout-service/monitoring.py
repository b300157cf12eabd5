"""Monitoring and observability setup.

Tracing and metrics are exported over OTLP when ``TELEMETRY_ENABLED`` is
true. When disabled, no SDK providers are installed and every instrument
below resolves to the no-op implementation of the global OpenTelemetry API,
so callers can record unconditionally.

Exemplars are attached automatically to the histograms below when they are
recorded inside an active trace, linking e.g. a slow gateway call to the
checkout trace that made it.
"""
import logging
from opentelemetry import trace, metrics
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
import pyroscope

from config import (
    OTEL_EXPORTER_OTLP_ENDPOINT,
    PYROSCOPE_SERVER,
    SERVICE_NAME,
    TELEMETRY_ENABLED
)

logger = logging.getLogger(__name__)


def init_tracing() -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing.

    Returns:
        Tracer instance
    """
    if TELEMETRY_ENABLED:
        resource = Resource.create({"service.name": SERVICE_NAME})

        tracer_provider = TracerProvider(resource=resource)
        otlp_span_exporter = OTLPSpanExporter(
            endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
            insecure=True
        )
        tracer_provider.add_span_processor(BatchSpanProcessor(otlp_span_exporter))
        trace.set_tracer_provider(tracer_provider)

        logger.info(f"Tracing initialized with endpoint: {OTEL_EXPORTER_OTLP_ENDPOINT}")

    return trace.get_tracer(__name__)


def init_metrics() -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Returns:
        Meter instance
    """
    if TELEMETRY_ENABLED:
        resource = Resource.create({"service.name": SERVICE_NAME})

        otlp_metric_exporter = OTLPMetricExporter(
            endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
            insecure=True
        )
        otlp_metric_reader = PeriodicExportingMetricReader(
            otlp_metric_exporter,
            export_interval_millis=5000
        )

        meter_provider = MeterProvider(
            resource=resource,
            metric_readers=[otlp_metric_reader]
        )
        metrics.set_meter_provider(meter_provider)

        logger.info("Metrics initialized with OTLP exporter")

    return metrics.get_meter(__name__)


def init_profiling() -> None:
    """Initialize Pyroscope profiling."""
    if not TELEMETRY_ENABLED:
        return
    try:
        pyroscope.configure(
            application_name=SERVICE_NAME,
            server_address=PYROSCOPE_SERVER,
            tags={"env": "demo"}
        )
        logger.info(f"Profiling initialized with server: {PYROSCOPE_SERVER}")
    except Exception as e:
        logger.warning(f"Failed to initialize profiling: {e}")


# Initialize tracer and meter
tracer = init_tracing()
meter = init_metrics()

# Checkout workflow metrics
checkout_session_counter = meter.create_counter(
    "webstore.checkout.sessions",
    description="Checkout sessions opened with the payment gateway, by outcome",
    unit="1"
)

checkout_amount_histogram = meter.create_histogram(
    "webstore.checkout.amount",
    description="Amount charged per checkout session",
    unit="INR"
)

materialization_counter = meter.create_counter(
    "webstore.orders.materializations",
    description="Attempts to convert a paid reservation into an order, by trigger and outcome",
    unit="1"
)

stock_conflict_counter = meter.create_counter(
    "webstore.inventory.stock_conflicts",
    description="Materializations rolled back because stock ran out after payment",
    unit="1"
)

reservation_miss_counter = meter.create_counter(
    "webstore.reservations.misses",
    description="Confirmations that found no pending reservation (expired or consumed)",
    unit="1"
)

order_status_transition_counter = meter.create_counter(
    "webstore.orders.status_transitions",
    description="Order status changes",
    unit="1"
)

# Payment gateway metrics
gateway_duration_histogram = meter.create_histogram(
    "webstore.external.gateway.duration",
    description="Duration of payment gateway calls",
    unit="s"
)

webhook_events_counter = meter.create_counter(
    "webstore.webhooks.events",
    description="Payment gateway webhook deliveries, by type and outcome",
    unit="1"
)

webhook_signature_failures_counter = meter.create_counter(
    "webstore.webhooks.signature_failures",
    description="Webhook deliveries rejected for an invalid or missing signature",
    unit="1"
)

# Notification / fulfillment dispatch metrics
dispatch_counter = meter.create_counter(
    "webstore.dispatch.jobs",
    description="Fire-and-forget dispatch jobs, by job and outcome",
    unit="1"
)

dispatch_failures_counter = meter.create_counter(
    "webstore.dispatch.failures",
    description="Dispatch jobs that exhausted their retries",
    unit="1"
)

# Security monitoring metrics
auth_failures_counter = meter.create_counter(
    "webstore.auth.failures",
    description="Total number of authentication failures",
    unit="1"
)

auth_attempts_counter = meter.create_counter(
    "webstore.auth.attempts",
    description="Total number of authentication attempts",
    unit="1"
)
