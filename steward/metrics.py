import os
from prometheus_client import CollectorRegistry, CONTENT_TYPE_LATEST, generate_latest, Counter, Gauge, Histogram

try:
    from prometheus_client import multiprocess
except Exception:  # pragma: no cover
    multiprocess = None  # type: ignore


def build_registry() -> CollectorRegistry:
    """Build a Prometheus registry, supporting multiprocess if PROMETHEUS_MULTIPROC_DIR is set."""
    registry = CollectorRegistry()
    mp_dir = os.getenv("PROMETHEUS_MULTIPROC_DIR")
    if mp_dir and multiprocess is not None:
        multiprocess.MultiProcessCollector(registry)
    return registry


REGISTRY: CollectorRegistry = build_registry()

# Webhook ingress metrics
webhook_requests_total = Counter(
    "webhook_requests_total",
    "Webhook requests received",
    labelnames=("event", "action", "code"),
    registry=REGISTRY,
)
webhook_invalid_signatures_total = Counter(
    "webhook_invalid_signatures_total",
    "Webhook requests with invalid HMAC signatures",
    registry=REGISTRY,
)
webhook_parse_failures_total = Counter(
    "webhook_parse_failures_total",
    "Webhook payload parse failures",
    labelnames=("event",),
    registry=REGISTRY,
)

# Evaluation metrics
evaluations_total = Counter(
    "evaluations_total",
    "Completed policy evaluations by outcome and veto reason",
    labelnames=("outcome", "reason"),
    registry=REGISTRY,
)
evaluation_errors_total = Counter(
    "evaluation_errors_total",
    "Evaluations aborted by a fatal error",
    labelnames=("error",),
    registry=REGISTRY,
)
evaluation_seconds = Histogram(
    "evaluation_seconds",
    "Time spent evaluating and executing one delivery",
    labelnames=("phase",),
    registry=REGISTRY,
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60),
)
config_resolutions_total = Counter(
    "config_resolutions_total",
    "Outcomes of resolving .steward.yml",
    labelnames=("result",),
    registry=REGISTRY,
)
advisory_comments_total = Counter(
    "advisory_comments_total",
    "Advisory comments about invalid configuration",
    labelnames=("kind", "result"),
    registry=REGISTRY,
)

# GitHub API metrics
github_api_requests_total = Counter(
    "github_api_requests_total",
    "Outbound GitHub API requests",
    labelnames=("endpoint", "status"),
    registry=REGISTRY,
)
github_api_latency_seconds = Histogram(
    "github_api_latency_seconds",
    "Latency of GitHub API requests",
    labelnames=("endpoint",),
    registry=REGISTRY,
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)
github_rate_limit_remaining = Gauge(
    "github_rate_limit_remaining",
    "GitHub REST API remaining requests",
    labelnames=("installation",),
    registry=REGISTRY,
)
github_rate_limit_reset = Gauge(
    "github_rate_limit_reset",
    "Epoch seconds when GitHub rate limit resets",
    labelnames=("installation",),
    registry=REGISTRY,
)
retries_total = Counter(
    "retries_total",
    "Retried GitHub API requests by reason",
    labelnames=("reason",),
    registry=REGISTRY,
)

# Merge behavior metrics
approvals_total = Counter(
    "approvals_total",
    "Approving reviews by result",
    labelnames=("result",),
    registry=REGISTRY,
)
merge_attempts_total = Counter(
    "merge_attempts_total",
    "Merge attempts by method and result",
    labelnames=("method", "result"),
    registry=REGISTRY,
)

# Build info (set from environment)
service_info = Gauge(
    "service_info",
    "Service build/version info labeled on 1",
    labelnames=("version",),
    registry=REGISTRY,
)
service_info.labels(version=os.getenv("SERVICE_VERSION", "dev")).set(1)


def metrics_response():
    data = generate_latest(REGISTRY)
    return CONTENT_TYPE_LATEST, data
