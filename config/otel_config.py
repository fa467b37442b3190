"""
OpenTelemetry configuration for unified observability.
"""

import os
from opentelemetry import trace, metrics
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.sdk.resources import Resource

# Providers are process-wide; the Prometheus reader registers itself with the
# default prometheus_client registry and must only be created once.
_telemetry = None


def setup_opentelemetry():
    """
    Configure OpenTelemetry for traces and metrics.
    Returns the tracer, meter, and prometheus_reader instances.
    """
    global _telemetry
    if _telemetry is not None:
        return _telemetry

    # Create resource with service information
    resource = Resource.create({
        "service.name": os.getenv("OTEL_SERVICE_NAME", "track-service"),
        "service.version": os.getenv("OTEL_SERVICE_VERSION", "1.0.0"),
        "service.namespace": os.getenv("OTEL_SERVICE_NAMESPACE", "prod"),
        "deployment.environment": os.getenv("OTEL_DEPLOYMENT_ENVIRONMENT", "production"),
    })

    trace_provider = TracerProvider(resource=resource)

    # Add OTLP exporter for traces (if OTLP endpoint is configured)
    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(
            endpoint=f"{otlp_endpoint}/v1/traces",
            headers=_parse_headers(os.getenv("OTEL_EXPORTER_OTLP_HEADERS", "")),
        )
        trace_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
    elif os.getenv("OTEL_CONSOLE_EXPORTER", "true").lower() not in ("0", "false", "no", "off"):
        # Use console exporter for development/debugging
        trace_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("track_service")

    prometheus_reader = PrometheusMetricReader()
    metrics_provider = MeterProvider(
        resource=resource,
        metric_readers=[prometheus_reader],
    )
    metrics.set_meter_provider(metrics_provider)
    meter = metrics.get_meter("track_service")

    _telemetry = (tracer, meter, prometheus_reader)
    return _telemetry


def _parse_headers(raw):
    """Parse ``key=value,key2=value2`` as used by OTEL_EXPORTER_OTLP_HEADERS."""
    headers = {}
    for item in raw.split(","):
        if "=" in item:
            key, value = item.split("=", 1)
            headers[key.strip()] = value.strip()
    return headers


def get_otel_metrics(meter):
    """
    Create OpenTelemetry metrics instruments.
    """
    http_requests = meter.create_counter(
        name="http_requests_total",
        description="Total number of HTTP requests",
        unit="1",
    )

    http_request_duration = meter.create_histogram(
        name="http_request_duration_seconds",
        description="HTTP request duration in seconds",
        unit="s",
    )

    tracked_records = meter.create_counter(
        name="tracked_records_total",
        description="Total number of records appended to the track file",
        unit="1",
    )

    # Last counter value seen by this process
    counter_value = meter.create_histogram(
        name="counter_value",
        description="Counter value observed after a read or accumulation",
        unit="1",
    )

    # Redis connection status gauge
    redis_status = meter.create_up_down_counter(
        name="redis_connection_status",
        description="Redis connection status (1=connected, 0=disconnected)",
        unit="1",
    )

    redis_operations = meter.create_counter(
        name="redis_operations_total",
        description="Total number of Redis operations",
        unit="1",
    )

    redis_duration = meter.create_histogram(
        name="redis_operation_duration_seconds",
        description="Redis operation duration in seconds",
        unit="s",
    )

    return {
        "http_requests": http_requests,
        "http_request_duration": http_request_duration,
        "tracked_records": tracked_records,
        "counter_value": counter_value,
        "redis_status": redis_status,
        "redis_operations": redis_operations,
        "redis_duration": redis_duration,
    }
