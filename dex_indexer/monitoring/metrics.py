"""Prometheus metrics for sync progress, derivation, caching and the API"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST, start_http_server

# Sync Metrics
sync_last_block_height = Gauge(
    'sync_last_block_height',
    'Highest block height fully ingested'
)

sync_pages_ingested = Counter(
    'sync_pages_ingested_total',
    'Total number of upstream transaction pages ingested',
    ['mode']
)

sync_txs_ingested = Counter(
    'sync_txs_ingested_total',
    'Total number of transactions written to the store'
)

sync_txs_skipped = Counter(
    'sync_txs_skipped_total',
    'Total number of transactions skipped during ingestion',
    ['reason']
)

sync_errors = Counter(
    'sync_errors_total',
    'Total number of sync errors',
    ['stage', 'error_type']
)

sync_page_latency = Histogram(
    'sync_page_latency_seconds',
    'Time to ingest one upstream page in seconds',
    ['mode'],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)
)

upstream_request_latency = Histogram(
    'upstream_request_latency_seconds',
    'Upstream feed request latency in seconds',
    ['endpoint'],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0)
)

upstream_errors = Counter(
    'upstream_errors_total',
    'Total number of upstream feed errors',
    ['endpoint', 'error_type']
)

# Derivation Metrics
derived_rows_written = Counter(
    'derived_rows_written_total',
    'Total number of derived rows written',
    ['table']
)

dex_actions_ingested = Counter(
    'dex_actions_ingested_total',
    'Total number of DEX action rows written',
    ['action']
)

# Cache Metrics
query_cache_requests = Counter(
    'query_cache_requests_total',
    'Total number of height-bounded cache lookups',
    ['segment', 'result']
)

query_cache_generate_latency = Histogram(
    'query_cache_generate_latency_seconds',
    'Aggregate query generation latency in seconds',
    ['segment'],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 20.0)
)

# Database Performance Metrics
db_connection_pool_size = Gauge(
    'db_connection_pool_size',
    'Number of active database connections'
)

db_connection_pool_free = Gauge(
    'db_connection_pool_free',
    'Number of free database connections'
)

db_errors = Counter(
    'db_errors_total',
    'Total number of database errors',
    ['operation', 'error_type']
)

# API Performance Metrics
api_requests_total = Counter(
    'api_requests_total',
    'Total number of API requests',
    ['endpoint', 'method', 'status']
)

api_request_latency = Histogram(
    'api_request_latency_seconds',
    'API request latency in seconds',
    ['endpoint', 'method'],
    buckets=(0.01, 0.05, 0.1, 0.2, 0.5, 1.0, 2.0)
)

api_errors = Counter(
    'api_errors_total',
    'Total number of API errors',
    ['endpoint', 'error_type']
)

# Live Delivery Metrics
live_connections_active = Gauge(
    'live_connections_active',
    'Number of open long-poll and SSE requests',
    ['mechanism']
)

sse_frames_sent = Counter(
    'sse_frames_sent_total',
    'Total number of server-sent event frames written',
    ['event']
)


def get_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format.

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest()


def get_content_type() -> str:
    """
    Get the content type for Prometheus metrics.

    Returns:
        Content type string
    """
    return CONTENT_TYPE_LATEST


def start_metrics_server(port: int = 9090) -> None:
    """
    Start Prometheus metrics HTTP server.

    Args:
        port: Port to listen on (default 9090)
    """
    start_http_server(port)
