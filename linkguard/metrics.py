"""Prometheus metrics for LinkGuard."""

from prometheus_client import Counter, Histogram, Info

# Application info
app_info = Info("linkguard", "LinkGuard application info")
app_info.info({"version": "0.1.0", "name": "linkguard"})

# Extraction metrics
links_extracted_total = Counter(
    "links_extracted_total",
    "Total number of links extracted from content bodies",
    ["network"],
)

# Verification metrics
link_checks_total = Counter(
    "link_checks_total",
    "Total number of link verifications by outcome",
    ["network", "status", "source"],
)

link_check_errors_total = Counter(
    "link_check_errors_total",
    "Total number of verification failures mapped to UNKNOWN",
    ["network", "error_type"],
)

link_check_duration_seconds = Histogram(
    "link_check_duration_seconds",
    "Time spent verifying a single link",
    ["network"],
    buckets=[0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

# Cache metrics
link_cache_hits_total = Counter(
    "link_cache_hits_total",
    "Total number of verification cache hits",
)

link_cache_misses_total = Counter(
    "link_cache_misses_total",
    "Total number of verification cache misses",
)

link_cache_errors_total = Counter(
    "link_cache_errors_total",
    "Total number of swallowed cache backend errors",
    ["operation"],
)

link_cache_swept_total = Counter(
    "link_cache_swept_total",
    "Total number of expired cache entries deleted",
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler runs",
    ["job_type", "status"],
)


def record_link_check(network: str, status: str, from_cache: bool) -> None:
    """Record a link check outcome."""
    source = "cache" if from_cache else "live"
    link_checks_total.labels(network=network, status=status, source=source).inc()


def record_check_error(network: str, error_type: str) -> None:
    """Record a verification failure."""
    link_check_errors_total.labels(network=network, error_type=error_type).inc()


def record_cache_error(operation: str) -> None:
    """Record a swallowed cache backend error."""
    link_cache_errors_total.labels(operation=operation).inc()
