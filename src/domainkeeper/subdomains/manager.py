"""Lifecycle of platform-assigned subdomains.

    PENDING -> DNS_CREATING -> ACTIVATING -> ACTIVE
                    |              |
                  ERROR  <---------+         REMOVING -> (deleted)

register() runs the provider saga and returns ACTIVATING; the subdomain
becomes ACTIVE once check_status() sees it serving HTTPS with a trusted
certificate. Renames are a removal followed by a fresh registration.

Every write re-checks the status it expects. A record stays in
DNS_CREATING while the saga runs; removal is refused until it finishes.
Records carry the registering tenant and are invisible to other tenants.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from domainkeeper.core.exceptions import (
    InvalidHostnameError,
    SubdomainConflictError,
    SubdomainNotFoundError,
)
from domainkeeper.domains.hostnames import validate_slug
from domainkeeper.domains.resolver import DnsResolver
from domainkeeper.observability.metrics import SUBDOMAIN_TRANSITIONS
from domainkeeper.subdomains.models import (
    IN_FLIGHT_STATUSES,
    Namespace,
    PlatformSubdomain,
    SubdomainStatus,
    subdomain_key,
)
from domainkeeper.subdomains.provider import CloudDnsClient, ProviderError
from domainkeeper.subdomains.storage import SubdomainStore

logger = structlog.get_logger()


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _set_status(sub: PlatformSubdomain, status: SubdomainStatus, now: datetime) -> None:
    if sub.status != status:
        SUBDOMAIN_TRANSITIONS.labels(from_status=sub.status.value, to_status=status.value).inc()
    sub.status = status
    sub.updated_at = now


class SubdomainManager:
    """Registers, removes, renames and polls platform subdomains."""

    def __init__(
        self,
        store: SubdomainStore,
        provider: CloudDnsClient,
        resolver: DnsResolver,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.provider = provider
        self.resolver = resolver
        self.clock = clock

    @property
    def base_domain(self) -> str:
        return self.provider.base_domain

    @staticmethod
    def _check_owner(sub: PlatformSubdomain, tenant_id: str | None) -> None:
        # Another tenant's subdomain is reported as missing.
        if tenant_id is not None and sub.tenant_id != tenant_id:
            raise SubdomainNotFoundError(f"Subdomain not found: {sub.key}")

    async def get(
        self, slug: str, namespace: Namespace | str, tenant_id: str | None = None
    ) -> PlatformSubdomain:
        ns = Namespace(namespace)
        sub = await self.store.get(subdomain_key(slug, ns))
        if sub is None:
            raise SubdomainNotFoundError(f"Subdomain not found: {subdomain_key(slug, ns)}")
        self._check_owner(sub, tenant_id)
        return sub

    async def list_subdomains(
        self, namespace: Namespace | str | None = None, tenant_id: str | None = None
    ) -> list[PlatformSubdomain]:
        if namespace is None:
            subs = await self.store.list_all()
        else:
            subs = await self.store.list_by_namespace(Namespace(namespace))
        if tenant_id is not None:
            subs = [s for s in subs if s.tenant_id == tenant_id]
        return sorted(subs, key=lambda s: s.created_at)

    async def register(
        self,
        slug: str,
        namespace: Namespace | str,
        target_id: str,
        tenant_id: str | None = None,
    ) -> PlatformSubdomain:
        """Provision {slug}.{namespace}.{base_domain} for a target.

        The record is created PENDING and claimed as DNS_CREATING before
        the provider saga runs. A failed earlier registration of the same
        slug by the same tenant and target is retried in place.

        Raises:
            InvalidHostnameError: Malformed or reserved slug.
            SubdomainConflictError: Slug taken in this namespace.
            SubdomainNotFoundError: The record was removed while provisioning;
                the provider objects are removed again.
        """
        slug = slug.strip().lower()
        ns = Namespace(namespace)
        valid, error = validate_slug(slug)
        if not valid:
            raise InvalidHostnameError(f"Invalid slug {slug!r}: {error}")

        key = subdomain_key(slug, ns)
        now = self.clock()
        if await self.store.get(key) is None:
            await self.store.create(
                PlatformSubdomain(
                    slug=slug,
                    namespace=ns,
                    target_id=target_id,
                    tenant_id=tenant_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            claimable = SubdomainStatus.PENDING
        else:
            claimable = SubdomainStatus.ERROR

        def claim(sub: PlatformSubdomain) -> None:
            if (
                sub.target_id != target_id
                or sub.tenant_id != tenant_id
                or sub.status != claimable
            ):
                raise SubdomainConflictError(f"Subdomain {key} is already taken")
            sub.error = None
            _set_status(sub, SubdomainStatus.DNS_CREATING, now)

        await self.store.update(key, claim)

        result = await self.provider.register_subdomain(slug, ns.value)
        done = self.clock()

        def apply(sub: PlatformSubdomain) -> None:
            if sub.status != SubdomainStatus.DNS_CREATING:
                return
            if result.success:
                sub.url = f"https://{result.fqdn}"
                sub.error = None
                _set_status(sub, SubdomainStatus.ACTIVATING, done)
            else:
                sub.error = result.error
                _set_status(sub, SubdomainStatus.ERROR, done)

        try:
            updated = await self.store.update(key, apply)
        except SubdomainNotFoundError:
            logger.warning("Subdomain removed during registration", subdomain=key)
            if result.success:
                await self.provider.unregister_subdomain(slug, ns.value)
            raise

        logger.info(
            "Subdomain registration finished",
            subdomain=key,
            success=result.success,
            status=updated.status.value,
        )
        return updated

    async def remove(
        self,
        slug: str,
        namespace: Namespace | str,
        target_id: str | None = None,
        tenant_id: str | None = None,
    ) -> bool:
        """Deprovision and forget a subdomain.

        Returns:
            True if removed. False if the provider refused; the record is
            kept in ERROR so the removal can be retried.

        Raises:
            SubdomainNotFoundError: Unknown subdomain, or owned by another
                tenant or target.
            SubdomainConflictError: A registration or removal is in progress.
        """
        ns = Namespace(namespace)
        key = subdomain_key(slug, ns)
        now = self.clock()

        def claim(sub: PlatformSubdomain) -> None:
            self._check_owner(sub, tenant_id)
            if target_id is not None and sub.target_id != target_id:
                raise SubdomainNotFoundError(f"Subdomain not found: {key}")
            if sub.status in (SubdomainStatus.DNS_CREATING, SubdomainStatus.REMOVING):
                raise SubdomainConflictError(
                    f"Subdomain {key} is busy ({sub.status.value}); try again shortly"
                )
            _set_status(sub, SubdomainStatus.REMOVING, now)

        await self.store.update(key, claim)
        result = await self.provider.unregister_subdomain(slug, ns.value)

        if result.success:
            await self.store.delete(key)
            logger.info("Subdomain removed", subdomain=key)
            return True

        failed_at = self.clock()

        def failed(sub: PlatformSubdomain) -> None:
            sub.error = result.error
            _set_status(sub, SubdomainStatus.ERROR, failed_at)

        await self.store.update(key, failed)
        logger.error("Subdomain removal failed", subdomain=key, error=result.error)
        return False

    async def rename(
        self,
        old_slug: str,
        new_slug: str,
        namespace: Namespace | str,
        target_id: str,
        tenant_id: str | None = None,
    ) -> PlatformSubdomain:
        """Move a target to a new slug by removing the old subdomain first.

        If the old subdomain cannot be removed the new one is not created,
        and the old record is returned in ERROR.

        Raises:
            InvalidHostnameError: Malformed or reserved new slug.
            SubdomainConflictError: New slug taken in this namespace.
            SubdomainNotFoundError: Old subdomain unknown or owned by another
                tenant or target.
        """
        ns = Namespace(namespace)
        new_slug = new_slug.strip().lower()
        valid, error = validate_slug(new_slug)
        if not valid:
            raise InvalidHostnameError(f"Invalid slug {new_slug!r}: {error}")
        if await self.store.exists(subdomain_key(new_slug, ns)):
            raise SubdomainConflictError(f"Subdomain {subdomain_key(new_slug, ns)} is already taken")

        old = await self.get(old_slug, ns, tenant_id)
        if not await self.remove(old_slug, ns, target_id, tenant_id):
            return await self.get(old_slug, ns)
        logger.info("Subdomain renamed", namespace=ns.value, old_slug=old_slug, new_slug=new_slug)
        return await self.register(new_slug, ns, target_id, old.tenant_id)

    async def check_status(
        self,
        slug: str,
        namespace: Namespace | str,
        tenant_id: str | None = None,
        include_in_flight: bool = False,
    ) -> PlatformSubdomain:
        """Observe the subdomain at the provider and over HTTPS and record it.

        No provider object means ERROR; reachable over trusted HTTPS means
        ACTIVE; otherwise ACTIVATING. A record whose status changed while
        checking is left alone, as is one being removed. PENDING and
        DNS_CREATING records belong to a running registration and are only
        observed with include_in_flight.
        """
        sub = await self.get(slug, namespace, tenant_id)
        observed_status = sub.status
        if observed_status == SubdomainStatus.REMOVING or (
            observed_status in IN_FLIGHT_STATUSES and not include_in_flight
        ):
            return sub
        fqdn = sub.fqdn(self.base_domain)

        try:
            exists = await self.provider.subdomain_exists(sub.slug, sub.namespace.value)
        except ProviderError as e:
            logger.warning("Subdomain status unknown", subdomain=sub.key, error=str(e))
            return sub

        reachable = exists and await self.resolver.probe_https(fqdn)
        now = self.clock()

        def apply(current: PlatformSubdomain) -> None:
            if current.status != observed_status:
                return
            if not exists:
                current.error = "Subdomain object no longer exists at the DNS provider"
                _set_status(current, SubdomainStatus.ERROR, now)
            elif reachable:
                current.error = None
                current.url = f"https://{fqdn}"
                if current.activated_at is None:
                    current.activated_at = now
                _set_status(current, SubdomainStatus.ACTIVE, now)
            else:
                _set_status(current, SubdomainStatus.ACTIVATING, now)

        updated = await self.store.update(sub.key, apply)
        if updated.status != observed_status:
            logger.info(
                "Subdomain status changed",
                subdomain=sub.key,
                old_status=observed_status.value,
                new_status=updated.status.value,
            )
        return updated
