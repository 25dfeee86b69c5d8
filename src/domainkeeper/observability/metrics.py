from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

DOMAIN_TRANSITIONS = Counter(
    "domainkeeper_domain_transitions_total",
    "Custom domain status transitions",
    ["from_status", "to_status"],
)

SUBDOMAIN_TRANSITIONS = Counter(
    "domainkeeper_subdomain_transitions_total",
    "Platform subdomain status transitions",
    ["from_status", "to_status"],
)

EXTERNAL_CALLS = Counter(
    "domainkeeper_external_calls_total",
    "Calls to external systems",
    ["service", "outcome"],  # service: proxy/provider, outcome: ok/error/unreachable
)

TLS_GUARD_DECISIONS = Counter(
    "domainkeeper_tls_guard_decisions_total",
    "On-demand TLS guard answers",
    ["decision"],  # allowed/denied/error
)

RATE_LIMITED_CHECKS = Counter(
    "domainkeeper_rate_limited_checks_total",
    "Tenant checks rejected by the rate limit",
    ["operation"],
)

DOMAINS_BY_STATUS = Gauge(
    "domainkeeper_domains",
    "Custom domains per status after the last sweep",
    ["status"],
)

SWEEP_DURATION = Histogram(
    "domainkeeper_sweep_duration_seconds",
    "Reconciler sweep latency",
    ["sweep"],  # domains/subdomains
    buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0),
)


def record_transition(old: str, new: str) -> None:
    if old != new:
        DOMAIN_TRANSITIONS.labels(from_status=old, to_status=new).inc()


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
