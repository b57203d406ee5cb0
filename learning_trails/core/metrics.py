"""Prometheus metrics for the API and the generation worker.

Every metric the service exports is declared here so the inventory is
readable in one place; the owning modules import and update them.

Counters only go up, so dashboards use rate():

    rate(generation_jobs_total{result="failed"}[15m])

Gauges are snapshots (queue depth, in-flight requests).  Histograms are
used for durations so p95/p99 can be derived with histogram_quantile().

The worker runs in its own process and therefore has its own registry
contents; in a deployment it exposes them through the same exposition
format from whatever port the process supervisor scrapes.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Trail pipeline metrics
# ---------------------------------------------------------------------------

TRAILS_CREATED = Counter(
    "trails_created_total",
    "Trails created, by how their content was obtained",
    ["source"],  # "generated" or "cloned"
)

GENERATION_JOBS = Counter(
    "generation_jobs_total",
    "Generation job outcomes",
    ["result"],  # completed|retried|failed|discarded
)

LESSON_GENERATION_ATTEMPTS = Counter(
    "lesson_generation_attempts_total",
    "Calls to the content generator, by outcome",
    ["result"],  # success|error|fallback
)

GENERATION_DURATION = Histogram(
    "generation_duration_seconds",
    "Wall time to generate the content of one trail",
    # Lessons call an external generator with backoff between attempts,
    # so the range runs from seconds to several minutes.
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 1200],
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit" or "miss"
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],  # "trail.generation", "trail.notification"
)
