from domainkeeper.observability.metrics import (
    DOMAIN_TRANSITIONS,
    DOMAINS_BY_STATUS,
    EXTERNAL_CALLS,
    RATE_LIMITED_CHECKS,
    SUBDOMAIN_TRANSITIONS,
    SWEEP_DURATION,
    TLS_GUARD_DECISIONS,
    generate_metrics,
    get_content_type,
    record_transition,
)

__all__ = [
    "DOMAIN_TRANSITIONS",
    "DOMAINS_BY_STATUS",
    "EXTERNAL_CALLS",
    "RATE_LIMITED_CHECKS",
    "SUBDOMAIN_TRANSITIONS",
    "SWEEP_DURATION",
    "TLS_GUARD_DECISIONS",
    "generate_metrics",
    "get_content_type",
    "record_transition",
]
