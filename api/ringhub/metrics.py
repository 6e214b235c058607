from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi.responses import Response

# Rate limit engine metrics
rate_limit_decisions = Counter(
    "ringhub_rate_limit_decisions_total",
    "Rate limit decisions by outcome",
    ["action", "tier", "outcome"],  # outcome: allowed | cooldown | quality_gate | rate_limit
)

rate_limit_check_duration = Histogram(
    "ringhub_rate_limit_check_duration_seconds",
    "Time to produce one rate limit decision",
    ["action"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)

store_errors = Counter(
    "ringhub_store_errors_total",
    "Store calls that failed and were resolved fail-open",
    ["store", "operation"],
)

review_flags_raised = Counter(
    "ringhub_review_flags_raised_total",
    "Actors flagged for human review due to action volume",
    ["action"],
)

cooldowns_applied = Counter(
    "ringhub_cooldowns_applied_total",
    "Cooldown penalties applied to actors",
)

action_records_pruned = Counter(
    "ringhub_action_records_pruned_total",
    "Action records removed by the retention sweep",
)

# HTTP request metrics (from middleware)
http_requests = Counter(
    "ringhub_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

http_request_duration = Histogram(
    "ringhub_http_request_duration_seconds",
    "HTTP request duration",
    ["method", "path"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)


async def metrics_endpoint():
    """FastAPI endpoint handler that returns Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
