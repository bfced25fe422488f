# Centralized Prometheus metrics. Middleware below records timing
# and counts for every request; the record_* helpers are called by the
# attribution, commission and payout code at each state change.

from time import monotonic

from fastapi import Request
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware


# Generic API latency + request counters, labelled by method and route.
REQUEST_DURATION_MS = Histogram(
    "request_duration_ms",
    "API request duration in milliseconds",
    ["method", "route"],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2000, 5000, 10000],
)
REQUESTS_TOTAL = Counter(
    "requests_total",
    "Total API requests",
    ["method", "route", "status_code"],
)

# Attribution outcomes: link, coupon, fingerprint, none, duplicate.
ATTRIBUTION_OUTCOMES_TOTAL = Counter(
    "attribution_outcomes_total",
    "Order attribution outcomes",
    ["method"],
)

COMMISSIONS_CREATED_TOTAL = Counter(
    "commissions_created_total",
    "Commissions created",
    ["kind"],
)
COMMISSIONS_SKIPPED_TOTAL = Counter(
    "commissions_skipped_total",
    "Commission decisions that produced no row",
    ["reason"],
)
COMMISSION_TRANSITIONS_TOTAL = Counter(
    "commission_transitions_total",
    "Commission status transitions",
    ["from_status", "to_status"],
)

POSTBACK_DELIVERIES_TOTAL = Counter(
    "postback_deliveries_total",
    "Postback delivery attempts",
    ["event", "status"],
)

PAYOUT_RUNS_TOTAL = Counter(
    "payout_runs_total",
    "Payout runs by resulting status",
    ["status"],
)

FRAUD_FLAGS_TOTAL = Counter(
    "fraud_flags_total",
    "Fraud flags raised",
    ["flag_type"],
)

JOB_RUN_TOTAL = Counter(
    "job_run_total",
    "Background job runs",
    ["job_name", "status"],
)


def _label(value: object | None, default: str = "unknown") -> str:
    if value is None:
        return default
    if isinstance(value, str) and not value.strip():
        return default
    return str(value)


def record_attribution(method: str | None) -> None:
    ATTRIBUTION_OUTCOMES_TOTAL.labels(method=_label(method, "none")).inc()


def record_commission_created(kind: str) -> None:
    COMMISSIONS_CREATED_TOTAL.labels(kind=_label(kind)).inc()


def record_commission_skipped(reason: str) -> None:
    COMMISSIONS_SKIPPED_TOTAL.labels(reason=_label(reason)).inc()


def record_transition(from_status: str | None, to_status: str, count: int = 1) -> None:
    if count <= 0:
        return
    COMMISSION_TRANSITIONS_TOTAL.labels(
        from_status=_label(from_status),
        to_status=_label(to_status),
    ).inc(count)


def record_postback(event: str, *, success: bool) -> None:
    POSTBACK_DELIVERIES_TOTAL.labels(
        event=_label(event),
        status="success" if success else "failure",
    ).inc()


def record_payout_run(status: str) -> None:
    PAYOUT_RUNS_TOTAL.labels(status=_label(status)).inc()


def record_fraud_flag(flag_type: str) -> None:
    FRAUD_FLAGS_TOTAL.labels(flag_type=_label(flag_type)).inc()


def record_job_run(*, job_name: str, success: bool) -> None:
    JOB_RUN_TOTAL.labels(
        job_name=_label(job_name),
        status="success" if success else "failure",
    ).inc()


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = monotonic()
        response = await call_next(request)
        duration_ms = (monotonic() - start) * 1000.0

        route = request.scope.get("route")
        route_path = getattr(route, "path", None) or request.url.path
        REQUEST_DURATION_MS.labels(request.method, route_path).observe(duration_ms)
        REQUESTS_TOTAL.labels(request.method, route_path, str(response.status_code)).inc()
        return response
