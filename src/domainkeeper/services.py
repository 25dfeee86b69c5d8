"""Builds the manager graph from configuration."""

from __future__ import annotations

from dataclasses import dataclass

from domainkeeper.core.config import DomainKeeperConfig, get_config
from domainkeeper.domains.manager import DomainManager
from domainkeeper.domains.notifications import LogNotifier, Notifier
from domainkeeper.domains.proxy import ReverseProxyClient
from domainkeeper.domains.resolver import DnsResolver
from domainkeeper.domains.storage import DomainStore
from domainkeeper.domains.verification import DnsValidator, OwnershipVerifier
from domainkeeper.reconciler import HealthReconciler
from domainkeeper.subdomains.manager import SubdomainManager
from domainkeeper.subdomains.provider import AppLookupCache, CloudDnsClient
from domainkeeper.subdomains.storage import SubdomainStore


@dataclass
class Services:
    domains: DomainManager
    subdomains: SubdomainManager
    reconciler: HealthReconciler


def build_services(
    config: DomainKeeperConfig | None = None,
    notifier: Notifier | None = None,
) -> Services:
    config = config or get_config()
    platform = config.platform
    lifecycle = config.lifecycle
    proxy_cfg = config.proxy
    provider_cfg = config.provider
    storage = config.storage

    resolver = DnsResolver(
        tls_timeout=lifecycle.tls_probe_timeout,
        http_timeout=lifecycle.http_probe_timeout,
    )
    domains = DomainManager(
        store=DomainStore(storage.domains_path),
        validator=DnsValidator(resolver, platform.cname_target, platform.public_ip),
        verifier=OwnershipVerifier(
            resolver,
            platform_name=platform.platform_name,
            http_timeout=lifecycle.http_probe_timeout,
        ),
        proxy=ReverseProxyClient(
            admin_url=proxy_cfg.proxy_admin_url,
            upstream=proxy_cfg.proxy_upstream,
            server_name=proxy_cfg.proxy_server_name,
            timeout=proxy_cfg.proxy_timeout,
        ),
        resolver=resolver,
        platform=platform,
        lifecycle=lifecycle,
    )
    subdomains = SubdomainManager(
        store=SubdomainStore(storage.subdomains_path),
        provider=CloudDnsClient(
            api_url=provider_cfg.provider_api_url,
            api_token=provider_cfg.provider_api_token,
            base_domain=platform.base_domain,
            public_ip=platform.public_ip,
            timeout=provider_cfg.provider_timeout,
            provisioning_mode=provider_cfg.provisioning_mode,
            app_cache=AppLookupCache(ttl=provider_cfg.app_cache_ttl),
        ),
        resolver=resolver,
    )
    reconciler = HealthReconciler(
        domains,
        subdomains,
        config=config.reconciler,
        notifier=notifier or LogNotifier(),
    )
    return Services(domains=domains, subdomains=subdomains, reconciler=reconciler)
