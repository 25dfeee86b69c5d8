"""Custom domain lifecycle management.

Tenants point their own hostnames (e.g. shop.example.com) at the platform.
A domain moves through DNS validation, ownership proof and route
activation, and is kept healthy by the reconciler afterwards.

Usage:
    from domainkeeper.domains import DomainManager, DomainStore, ShopTarget

    manager = DomainManager(store, validator, verifier, proxy, resolver)
    domain = await manager.create_domain("shop.example.com", "tenant-1", ShopTarget("42"))
    domain = await manager.request_dns_check("shop.example.com")
"""

from domainkeeper.domains.hostnames import normalize_hostname, route_id, validate_hostname, validate_slug
from domainkeeper.domains.manager import DomainInfo, DomainManager, DomainStats
from domainkeeper.domains.models import (
    BookingTarget,
    CustomDomain,
    DomainIssue,
    DomainStatus,
    DomainTarget,
    IssueCode,
    PageTarget,
    ShopTarget,
    TargetType,
    VerificationMethod,
    make_target,
)
from domainkeeper.domains.notifications import LogNotifier, Notifier
from domainkeeper.domains.proxy import ReverseProxyClient
from domainkeeper.domains.resolver import CertificateInfo, DnsLookupFailedError, DnsResolver, LookupResult
from domainkeeper.domains.storage import DomainStore
from domainkeeper.domains.verification import (
    DnsCheckResult,
    DnsValidator,
    OwnershipCheckResult,
    OwnershipVerifier,
)

__all__ = [
    "DomainManager",
    "DomainInfo",
    "DomainStats",
    "DomainStore",
    "CustomDomain",
    "DomainIssue",
    "DomainStatus",
    "DomainTarget",
    "ShopTarget",
    "BookingTarget",
    "PageTarget",
    "TargetType",
    "IssueCode",
    "VerificationMethod",
    "make_target",
    "DnsResolver",
    "LookupResult",
    "CertificateInfo",
    "DnsLookupFailedError",
    "DnsValidator",
    "DnsCheckResult",
    "OwnershipVerifier",
    "OwnershipCheckResult",
    "ReverseProxyClient",
    "Notifier",
    "LogNotifier",
    "normalize_hostname",
    "validate_hostname",
    "validate_slug",
    "route_id",
]
