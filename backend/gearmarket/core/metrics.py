"""Prometheus collectors shared by the app and its middleware"""

from prometheus_client import Counter, Gauge, Histogram

HTTP_REQUESTS = Counter(
    "gearmarket_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
HTTP_LATENCY = Histogram(
    "gearmarket_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
AUTH_FAILURES = Counter(
    "gearmarket_auth_failures_total",
    "Rejected auth-flow requests by error class",
    ["error"],
)
RATE_LIMITED = Counter(
    "gearmarket_rate_limited_total",
    "Requests rejected by the abuse limiter",
    ["path"],
)
CLEANUP_WORKER_UP = Gauge(
    "gearmarket_cleanup_worker_up",
    "Credential cleanup worker liveness (1 running, 0 stopped)",
)
