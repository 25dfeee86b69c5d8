"""Platform subdomains: {slug}.{namespace}.{base_domain}.

Provisioned at a cloud DNS provider through a compensating two-step
saga and promoted to ACTIVE once reachable over HTTPS.

Usage:
    from domainkeeper.subdomains import CloudDnsClient, SubdomainManager, SubdomainStore

    provider = CloudDnsClient(api_url, token, "platform.io", "203.0.113.10")
    manager = SubdomainManager(SubdomainStore("subdomains.json"), provider, resolver)

    sub = await manager.register("myshop", "shops", target_id="42")
"""

from domainkeeper.subdomains.manager import SubdomainManager
from domainkeeper.subdomains.models import (
    POLLED_STATUSES,
    Namespace,
    PlatformSubdomain,
    SubdomainStatus,
)
from domainkeeper.subdomains.provider import (
    AppLookupCache,
    CloudDnsClient,
    ProviderError,
    SagaResult,
    needs_refresh,
)
from domainkeeper.subdomains.storage import SubdomainStore

__all__ = [
    "SubdomainManager",
    "SubdomainStore",
    "PlatformSubdomain",
    "SubdomainStatus",
    "Namespace",
    "POLLED_STATUSES",
    "CloudDnsClient",
    "AppLookupCache",
    "ProviderError",
    "SagaResult",
    "needs_refresh",
]
