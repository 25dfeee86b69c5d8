"""Shared fixtures: a controllable clock and fakes for DNS, TLS and the proxy."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from domainkeeper.core.config import LifecycleConfig, PlatformConfig, ReconcilerConfig
from domainkeeper.domains.manager import DomainManager
from domainkeeper.domains.proxy import ReverseProxyClient
from domainkeeper.domains.resolver import CertificateInfo, DnsResolver, LookupResult
from domainkeeper.domains.storage import DomainStore
from domainkeeper.domains.verification import DnsValidator, OwnershipVerifier
from domainkeeper.reconciler import HealthReconciler
from domainkeeper.services import Services
from domainkeeper.subdomains.manager import SubdomainManager
from domainkeeper.subdomains.provider import CloudDnsClient, SagaResult
from domainkeeper.subdomains.storage import SubdomainStore

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)

CNAME_TARGET = "proxy.platform.io"
PUBLIC_IP = "203.0.113.10"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_cert(now: datetime, days_left: int, issuer: str = "Let's Encrypt") -> CertificateInfo:
    return CertificateInfo(
        issuer=issuer,
        subject=None,
        not_before=now - timedelta(days=60),
        not_after=now + timedelta(days=days_left),
    )


def point_cname(resolver: MagicMock, target: str = CNAME_TARGET) -> None:
    resolver.resolve_cname.return_value = LookupResult("CNAME", [target])


def break_dns(resolver: MagicMock) -> None:
    resolver.resolve_cname.return_value = LookupResult("CNAME", [])
    resolver.resolve_a.return_value = LookupResult("A", [])


def publish_txt(resolver: MagicMock, token: str) -> None:
    resolver.resolve_txt.return_value = LookupResult("TXT", [token])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def resolver() -> MagicMock:
    """DnsResolver stand-in: no records, no certificate, nothing reachable."""
    fake = MagicMock(spec=DnsResolver)
    fake.resolve_cname = AsyncMock(return_value=LookupResult("CNAME", []))
    fake.resolve_a = AsyncMock(return_value=LookupResult("A", []))
    fake.resolve_txt = AsyncMock(return_value=LookupResult("TXT", []))
    fake.probe_tls_certificate = AsyncMock(return_value=None)
    fake.probe_https = AsyncMock(return_value=False)
    return fake


@pytest.fixture
def proxy() -> MagicMock:
    fake = MagicMock(spec=ReverseProxyClient)
    fake.add_route = AsyncMock(return_value=True)
    fake.remove_route = AsyncMock(return_value=True)
    fake.route_exists = AsyncMock(return_value=True)
    fake.health_check = AsyncMock(return_value=True)
    return fake


@pytest.fixture
def platform() -> PlatformConfig:
    return PlatformConfig(
        platform_name="platform",
        base_domain="platform.io",
        cname_target=CNAME_TARGET,
        public_ip=PUBLIC_IP,
    )


@pytest.fixture
def lifecycle() -> LifecycleConfig:
    return LifecycleConfig(
        min_check_interval=300,
        extended_check_interval=1800,
        failure_threshold=3,
        ssl_wait_timeout=60,
        ssl_poll_interval=5,
    )


@pytest.fixture
def reconciler_config() -> ReconcilerConfig:
    return ReconcilerConfig(sweep_concurrency=4, suspend_threshold=3, stall_timeout=600)


@pytest.fixture
def domain_store(tmp_path) -> DomainStore:
    return DomainStore(tmp_path / "domains.json")


@pytest.fixture
def well_known_404() -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(404))


@pytest.fixture
def manager(domain_store, resolver, proxy, platform, lifecycle, clock, well_known_404) -> DomainManager:
    return DomainManager(
        store=domain_store,
        validator=DnsValidator(resolver, platform.cname_target, platform.public_ip),
        verifier=OwnershipVerifier(
            resolver, platform_name=platform.platform_name, transport=well_known_404
        ),
        proxy=proxy,
        resolver=resolver,
        platform=platform,
        lifecycle=lifecycle,
        clock=clock,
        sleep=AsyncMock(),
    )


@pytest.fixture
def provider() -> MagicMock:
    """CloudDnsClient stand-in whose sagas succeed."""
    fake = MagicMock(spec=CloudDnsClient)
    fake.base_domain = "platform.io"

    async def register(slug: str, namespace: str) -> SagaResult:
        return SagaResult(True, f"{slug}.{namespace}.platform.io", record_id="1")

    async def unregister(slug: str, namespace: str) -> SagaResult:
        return SagaResult(True, f"{slug}.{namespace}.platform.io")

    fake.register_subdomain = AsyncMock(side_effect=register)
    fake.unregister_subdomain = AsyncMock(side_effect=unregister)
    fake.subdomain_exists = AsyncMock(return_value=True)
    return fake


@pytest.fixture
def subdomain_manager(tmp_path, provider, resolver, clock) -> SubdomainManager:
    return SubdomainManager(SubdomainStore(tmp_path / "subdomains.json"), provider, resolver, clock)


@pytest.fixture
def services(manager, subdomain_manager, reconciler_config) -> Services:
    return Services(
        domains=manager,
        subdomains=subdomain_manager,
        reconciler=HealthReconciler(manager, subdomain_manager, reconciler_config),
    )
