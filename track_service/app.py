"""
Flask application for the track service with OpenTelemetry and Rate Limiting.
"""

import atexit
import logging
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager

from flask import Flask, jsonify, request
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from pythonjsonlogger.json import JsonFormatter

from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.instrumentation.flask import FlaskInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from config.otel_config import setup_opentelemetry, get_otel_metrics
from track_service.exceptions import InvalidPayloadError
from track_service.settings import Settings
from track_service.store import CounterStore, create_redis_client
from track_service.tracklog import TrackLog

logger = logging.getLogger("track_service")


def setup_logging(level="INFO"):
    """Configure structured JSON logging on the root logger (once per process)."""
    root = logging.getLogger()
    root.setLevel(level)
    if any(getattr(h, "_track_service", False) for h in root.handlers):
        return root

    log_handler = logging.StreamHandler(sys.stdout)
    formatter = JsonFormatter(
        '%(timestamp)s %(level)s %(name)s %(message)s',
        timestamp=True
    )
    log_handler.setFormatter(formatter)
    log_handler._track_service = True
    root.addHandler(log_handler)
    return root


def create_response_body(error=None):
    """Build the uniform response envelope."""
    body = {"success": error is None}
    if error is not None:
        body["reason"] = str(error)
    return body


def read_record():
    """Read the request body as a tracking record (JSON object or form fields)."""
    if request.is_json:
        data = request.get_json(silent=True)
        if data is None:
            if request.get_data():
                raise InvalidPayloadError("Request body is not valid JSON")
            return {}
        if not isinstance(data, dict):
            raise InvalidPayloadError("Tracking record must be a JSON object")
        return data
    return {
        key: values[0] if len(values) == 1 else values
        for key, values in request.form.lists()
    }


def has_count(record):
    """Whether the record asks for counter accumulation.

    Empty values (missing, None, "", 0, False, NaN) leave the counter untouched,
    so a counter that was never set keeps reading as null.
    """
    value = record.get("count")
    if value is None or value == "":
        return False
    if isinstance(value, (int, float)):
        return value == value and value != 0
    return True


def _call_in_context(ctx, fn, *args):
    token = otel_context.attach(ctx)
    try:
        return fn(*args)
    finally:
        otel_context.detach(token)


def create_app(settings=None, redis_client=None, track_log=None):
    """Create and configure the Flask application.

    ``redis_client`` and ``track_log`` are built from ``settings`` unless
    they are passed in.
    """
    if settings is None:
        settings = Settings()

    setup_logging(settings.log_level)
    tracer, meter, _ = setup_opentelemetry()
    otel_metrics = get_otel_metrics(meter)

    app = Flask(__name__)

    # Instrument Flask with OpenTelemetry
    FlaskInstrumentor().instrument_app(app)

    if redis_client is None:
        redis_client = create_redis_client(settings)
        RedisInstrumentor().instrument()
    if track_log is None:
        track_log = TrackLog.from_settings(settings)

    store = CounterStore(redis_client, key=settings.counter_key)
    executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="track")
    atexit.register(executor.shutdown)

    try:
        store.ping()
        otel_metrics["redis_status"].add(1)
        logger.info("Redis connection established", extra={
            "redis_host": settings.redis_host,
            "redis_port": settings.get('REDIS_PORT'),
        })
    except Exception as e:
        # Requests will report the store error until Redis becomes reachable.
        logger.error("Failed to connect to Redis", extra={"error": str(e)})
        otel_metrics["redis_status"].add(-1)

    limiter = Limiter(
        get_remote_address,
        app=app,
        storage_uri=settings.rate_limit_storage_uri,
        default_limits=settings.rate_limits,
        enabled=settings.rate_limit_enabled,
    )

    app.extensions["track_service"] = {
        "settings": settings,
        "store": store,
        "track_log": track_log,
        "executor": executor,
    }

    def record_request(method, endpoint, status, start_time):
        duration = time.time() - start_time
        otel_metrics["http_requests"].add(1, {"method": method, "endpoint": endpoint, "status": str(status)})
        otel_metrics["http_request_duration"].record(duration, {"method": method, "endpoint": endpoint})

    @contextmanager
    def redis_operation(operation):
        redis_start = time.time()
        status = "success"
        try:
            yield
        except Exception:
            status = "error"
            raise
        finally:
            otel_metrics["redis_operations"].add(1, {"operation": operation, "status": status})
            otel_metrics["redis_duration"].record(time.time() - redis_start, {"operation": operation})

    def append_record(record):
        with tracer.start_as_current_span("track.append") as span:
            span.set_attribute("track.file", track_log.path)
            line = track_log.append(record)
            otel_metrics["tracked_records"].add(1)
            return line

    def add_count(delta):
        with tracer.start_as_current_span("track.add_count") as span:
            with redis_operation("add_count"):
                total = store.add_count(delta)
            span.set_attribute("counter.value", total)
            otel_metrics["counter_value"].record(total)
            return total

    def run_together(*calls):
        """Run ``(fn, arg)`` pairs on the executor and wait for all of them.

        Every call runs to completion; the first failure is raised afterwards.
        """
        ctx = otel_context.get_current()
        futures = [executor.submit(_call_in_context, ctx, fn, arg) for fn, arg in calls]
        results = []
        error = None
        for future in futures:
            try:
                results.append(future.result())
            except Exception as e:
                results.append(None)
                if error is None:
                    error = e
        if error is not None:
            raise error
        return results

    def failure(error, method, endpoint, start_time, status=500):
        span = trace.get_current_span()
        span.set_status(trace.Status(trace.StatusCode.ERROR, str(error)))
        record_request(method, endpoint, status, start_time)
        return jsonify(create_response_body(error)), status

    @app.route('/track', methods=['POST'])
    def track():
        """Append the request params to the track file and accumulate `count`."""
        start_time = time.time()
        with tracer.start_as_current_span("track") as span:
            try:
                record = read_record()
            except InvalidPayloadError as e:
                logger.warning("Rejected tracking payload", extra={"error": str(e), "status": 400})
                return failure(e, "POST", "/track", start_time, status=400)

            try:
                if has_count(record):
                    _, total = run_together((append_record, record), (add_count, record["count"]))
                    span.set_attribute("counter.value", total)
                else:
                    append_record(record)
                    total = None
            except Exception as e:
                logger.error("Track failed", exc_info=True, extra={
                    "method": "POST",
                    "path": "/track",
                    "error": str(e),
                    "status": 500,
                    "trace_id": format(span.get_span_context().trace_id, "032x"),
                })
                return failure(e, "POST", "/track", start_time)

            record_request("POST", "/track", 200, start_time)
            logger.info("Record tracked", extra={
                "fields": sorted(record),
                "counter": total,
                "status": 200,
                "trace_id": format(span.get_span_context().trace_id, "032x"),
            })
            return jsonify(create_response_body()), 200

    @app.route('/count', methods=['GET'])
    def count():
        """Return the current counter value (null when it was never set)."""
        start_time = time.time()
        with tracer.start_as_current_span("count") as span:
            try:
                with redis_operation("get"):
                    value = store.get_count()
            except Exception as e:
                logger.error("Count fetch failed", exc_info=True, extra={
                    "method": "GET",
                    "path": "/count",
                    "error": str(e),
                    "status": 500,
                    "trace_id": format(span.get_span_context().trace_id, "032x"),
                })
                return failure(e, "GET", "/count", start_time)

            if value is not None:
                span.set_attribute("counter.value", value)
                otel_metrics["counter_value"].record(value)
            record_request("GET", "/count", 200, start_time)

            body = create_response_body()
            body["count"] = value
            return jsonify(body), 200

    @app.route('/health', methods=['GET'])
    @limiter.exempt
    def health_check():
        """Health check endpoint for Kubernetes probes."""
        try:
            store.ping()
            return jsonify({
                "status": "healthy",
                "redis": "connected"
            }), 200
        except Exception as e:
            logger.warning("Health check failed", extra={"error": str(e)})
            return jsonify({
                "status": "unhealthy",
                "redis": "disconnected",
                "error": str(e)
            }), 503

    @app.route('/metrics', methods=['GET'])
    @limiter.exempt
    def metrics_endpoint():
        """Prometheus metrics endpoint (OpenTelemetry + Prometheus client)."""
        # The PrometheusMetricReader registers with the default prometheus_client
        # registry, so generate_latest() includes the OpenTelemetry instruments.
        return generate_latest(), 200, {'Content-Type': CONTENT_TYPE_LATEST}

    @app.errorhandler(404)
    def not_found(error):
        otel_metrics["http_requests"].add(1, {"method": request.method, "endpoint": request.path, "status": "404"})
        return jsonify(create_response_body(f"The endpoint {request.path} does not exist")), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        otel_metrics["http_requests"].add(1, {"method": request.method, "endpoint": request.path, "status": "405"})
        return jsonify(create_response_body(
            f"Method {request.method} is not allowed for {request.path}"
        )), 405

    @app.errorhandler(429)
    def rate_limited(error):
        otel_metrics["http_requests"].add(1, {"method": request.method, "endpoint": request.path, "status": "429"})
        return jsonify(create_response_body(f"Rate limit exceeded: {error.description}")), 429

    return app
