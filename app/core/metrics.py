"""Prometheus metrics for the pricing service"""
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest
import time
from functools import wraps
from typing import Callable

NAMESPACE = "pricing"

registry = CollectorRegistry()

# HTTP
request_count = Counter(
    'http_requests_total',
    'HTTP requests by route template and status',
    ['method', 'endpoint', 'status'],
    namespace=NAMESPACE,
    registry=registry
)

request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency by route template',
    ['method', 'endpoint'],
    namespace=NAMESPACE,
    registry=registry
)

# Store
db_operations = Counter(
    'db_operations_total',
    'Pricing store operations',
    ['operation', 'table', 'status'],
    namespace=NAMESPACE,
    registry=registry
)

db_query_duration = Histogram(
    'db_query_duration_seconds',
    'Pricing store operation latency',
    ['table', 'operation'],
    namespace=NAMESPACE,
    registry=registry
)

pricing_config_writes = Counter(
    'config_writes_total',
    'Pricing configuration writes by action and outcome',
    ['action', 'status'],
    namespace=NAMESPACE,
    registry=registry
)

# Cache
cache_hits = Counter(
    'cache_hits_total',
    'Active config cache hits',
    ['cache_key'],
    namespace=NAMESPACE,
    registry=registry
)

cache_misses = Counter(
    'cache_misses_total',
    'Active config cache misses',
    ['cache_key'],
    namespace=NAMESPACE,
    registry=registry
)

cache_errors = Counter(
    'cache_errors_total',
    'Cache backend failures that fell through to the store',
    ['operation'],
    namespace=NAMESPACE,
    registry=registry
)

# Quotes
quotes_computed = Counter(
    'quotes_computed_total',
    'Quotes computed (cache misses on the quote memo)',
    ['vehicle_type', 'delivery_type'],
    namespace=NAMESPACE,
    registry=registry
)

# Dependencies
redis_connected = Gauge(
    'redis_connected',
    'Redis connection status (1=connected, 0=disconnected)',
    namespace=NAMESPACE,
    registry=registry
)

db_connected = Gauge(
    'db_connected',
    'Database connection status (1=connected, 0=disconnected)',
    namespace=NAMESPACE,
    registry=registry
)


def track_db_operation(operation: str, table: str):
    """Count and time an async store call, labelled success or error."""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            status = 'error'
            try:
                result = await func(*args, **kwargs)
                status = 'success'
                return result
            finally:
                db_operations.labels(operation=operation, table=table, status=status).inc()
                db_query_duration.labels(table=table, operation=operation).observe(
                    time.perf_counter() - start_time
                )
        return wrapper
    return decorator


def get_metrics_text() -> str:
    return generate_latest(registry).decode('utf-8')
