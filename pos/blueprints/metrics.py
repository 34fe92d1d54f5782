"""
Prometheus metrics blueprint.

Exposes /metrics with HTTP request metrics plus the order and sync counters.
This endpoint should be restricted to internal network or monitoring systems only.
"""
from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY
import time
import os

metrics_bp = Blueprint('metrics', __name__)

# Check if running in multi-process mode (Gunicorn)
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY

_metric_registry = registry if not MULTIPROCESS_MODE else None

# HTTP Request Metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'http_status'],
    registry=_metric_registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=_metric_registry,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

# Domain metrics
pos_orders_placed_total = Counter(
    'pos_orders_placed_total',
    'Orders committed, by the store that accepted them',
    ['store'],
    registry=_metric_registry
)

pos_store_operations_total = Counter(
    'pos_store_operations_total',
    'Operations dispatched through the dual-store gateway',
    ['store', 'outcome'],
    registry=_metric_registry
)

pos_sync_replays_total = Counter(
    'pos_sync_replays_total',
    'Sync queue entries replayed',
    ['target', 'outcome'],
    registry=_metric_registry
)

pos_sync_online = Gauge(
    'pos_sync_online',
    '1 while the remote store is the active store',
    registry=_metric_registry,
    multiprocess_mode='liveall'
)

pos_sync_pending = Gauge(
    'pos_sync_pending',
    'Pending sync queue entries',
    ['target'],
    registry=_metric_registry,
    multiprocess_mode='liveall'
)


def setup_metrics_instrumentation(app):
    """Register before/after request hooks that time every request."""

    @app.before_request
    def before_request_metrics():
        g._prometheus_metrics_start_time = time.time()

    @app.after_request
    def after_request_metrics(response):
        start = getattr(g, '_prometheus_metrics_start_time', None)
        if start is not None:
            endpoint = request.endpoint or 'unknown'
            http_request_duration_seconds.labels(
                method=request.method,
                endpoint=endpoint
            ).observe(time.time() - start)
            http_requests_total.labels(
                method=request.method,
                endpoint=endpoint,
                http_status=response.status_code
            ).inc()
        return response


@metrics_bp.route('/metrics')
def metrics():
    """
    Prometheus metrics endpoint.

    Not authenticated: restrict it by network/firewall rules in production.
    """
    data = generate_latest(registry)
    return Response(data, mimetype=CONTENT_TYPE_LATEST)
