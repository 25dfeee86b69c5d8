"""Domain manager for the custom domain lifecycle.

This module drives a tenant's hostname from registration to a serving,
TLS-secured state:
- Registration with a fresh ownership token
- Rate-limited DNS pointing checks
- Ownership proof (TXT record or well-known file)
- Route activation on the edge proxy
- Suspension and explicit reactivation
- The allow-list answer for on-demand TLS

Usage:
    manager = DomainManager(store, validator, verifier, proxy, resolver)

    domain = await manager.create_domain("shop.example.com", "tenant-1", ShopTarget("42"))
    domain = await manager.request_dns_check("shop.example.com")
    domain = await manager.request_ownership_verification("shop.example.com")

Every transition first claims the record through DomainStore.update():
the current state is re-read, validated and moved to a transient state
together with the rate-limit timestamp before any external call is
made. A racing request for the same domain then fails validation
instead of repeating the external work.
"""

from __future__ import annotations

import asyncio
import hashlib
import math
import secrets
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from domainkeeper.core.config import LifecycleConfig, PlatformConfig
from domainkeeper.core.exceptions import (
    DomainNotFoundError,
    InvalidHostnameError,
    InvalidTransitionError,
    RateLimitExceededError,
)
from domainkeeper.domains.hostnames import normalize_hostname, validate_hostname
from domainkeeper.domains.models import (
    DNS_CHECKABLE_STATUSES,
    ISSUE_STATUSES,
    PENDING_STATUSES,
    SERVING_STATUSES,
    TLS_ALLOWED_STATUSES,
    CustomDomain,
    DnsCheck,
    DomainStatus,
    DomainTarget,
    IssueCode,
    SslCheck,
)
from domainkeeper.domains.proxy import ReverseProxyClient
from domainkeeper.domains.resolver import CertificateInfo, DnsResolver
from domainkeeper.domains.storage import DomainStore
from domainkeeper.domains.verification import DnsValidator, OwnershipVerifier
from domainkeeper.observability.metrics import RATE_LIMITED_CHECKS, record_transition

logger = structlog.get_logger()

ACTIVATABLE_STATUSES = frozenset({DomainStatus.ISSUING_SSL, DomainStatus.SSL_ERROR})

# Certificates this close to expiry are reported as expiring soon.
SSL_EXPIRING_SOON_DAYS = 14


def _utc_now() -> datetime:
    return datetime.now(UTC)


def generate_verification_token(hostname: str) -> str:
    """Generate an opaque ownership token for a hostname.

    Salted per call, so re-registering a hostname never reuses a token.
    """
    salt = secrets.token_hex(16)
    return hashlib.sha256(f"{hostname}:{salt}".encode()).hexdigest()[:32]


def set_status(domain: CustomDomain, status: DomainStatus, now: datetime) -> None:
    """Move a record to a new status and stamp it."""
    record_transition(domain.status.value, status.value)
    domain.status = status
    domain.updated_at = now


@dataclass
class DnsRecordInstruction:
    """A DNS record the tenant has to create at their registrar."""

    type: str
    name: str
    value: str
    ttl: int

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "name": self.name, "value": self.value, "ttl": self.ttl}


@dataclass
class VerificationInstructions:
    """The two ways a tenant can prove ownership."""

    txt_record: DnsRecordInstruction
    http_url: str
    http_content: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "dns_txt": self.txt_record.to_dict(),
            "http_file": {"url": self.http_url, "content": self.http_content},
        }


@dataclass
class DomainInfo:
    """Complete information about a domain for tenant-facing display."""

    domain: CustomDomain
    dns_records: list[DnsRecordInstruction]
    verification: VerificationInstructions
    can_check_now: bool
    seconds_until_next_check: int
    ssl_state: str

    def to_dict(self) -> dict[str, Any]:
        data = self.domain.to_dict()
        data.update(
            {
                "dns_instructions": [r.to_dict() for r in self.dns_records],
                "verification_instructions": self.verification.to_dict(),
                "can_check_now": self.can_check_now,
                "seconds_until_next_check": self.seconds_until_next_check,
                "ssl_state": self.ssl_state,
            }
        )
        return data


@dataclass
class DomainStats:
    total: int = 0
    active: int = 0
    pending: int = 0
    with_issues: int = 0
    ssl_expiring_soon: int = 0
    by_status: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "active": self.active,
            "pending": self.pending,
            "with_issues": self.with_issues,
            "ssl_expiring_soon": self.ssl_expiring_soon,
            "by_status": dict(self.by_status),
        }


class DomainManager:
    """Owns every state transition of tenant custom domains.

    Caller errors (unknown domain, duplicate hostname, wrong state, rate
    limit) raise DomainKeeperError subclasses and leave the record
    untouched. External failures are written onto the record as errors.
    """

    def __init__(
        self,
        store: DomainStore,
        validator: DnsValidator,
        verifier: OwnershipVerifier,
        proxy: ReverseProxyClient,
        resolver: DnsResolver,
        platform: PlatformConfig | None = None,
        lifecycle: LifecycleConfig | None = None,
        clock: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize domain manager.

        Args:
            store: Storage backend for domain records.
            validator: DNS pointing check.
            verifier: Ownership proof.
            proxy: Edge proxy route client.
            resolver: Used for TLS probes during activation.
            platform: Platform addressing settings.
            lifecycle: Intervals and thresholds.
            clock: Source of the current time.
            sleep: Awaitable used between TLS probes.
        """
        self.store = store
        self.validator = validator
        self.verifier = verifier
        self.proxy = proxy
        self.resolver = resolver
        self.platform = platform or PlatformConfig()
        self.lifecycle = lifecycle or LifecycleConfig()
        self.clock = clock
        self.sleep = sleep

    # Lookups

    @staticmethod
    def _check_owner(domain: CustomDomain, tenant_id: str | None) -> None:
        # Another tenant's domain is reported as missing.
        if tenant_id is not None and domain.tenant_id != tenant_id:
            raise DomainNotFoundError(domain.hostname)

    async def get_domain(self, hostname: str, tenant_id: str | None = None) -> CustomDomain:
        """Fetch a domain, optionally scoped to a tenant.

        Raises:
            DomainNotFoundError: If unknown or owned by another tenant.
        """
        host = normalize_hostname(hostname)
        domain = await self.store.get(host)
        if domain is None:
            raise DomainNotFoundError(host)
        self._check_owner(domain, tenant_id)
        return domain

    async def list_domains(self, tenant_id: str | None = None) -> list[CustomDomain]:
        if tenant_id is None:
            domains = await self.store.list_all()
        else:
            domains = await self.store.list_by_tenant(tenant_id)
        return sorted(domains, key=lambda d: d.created_at)

    # Rate limiting

    def check_interval(self, consecutive_failures: int) -> float:
        if consecutive_failures >= self.lifecycle.failure_threshold:
            return self.lifecycle.extended_check_interval
        return self.lifecycle.min_check_interval

    @staticmethod
    def retry_after(domain: CustomDomain, now: datetime) -> int:
        """Seconds until the next check is allowed, 0 if allowed now."""
        if domain.next_allowed_check is None or now >= domain.next_allowed_check:
            return 0
        return math.ceil((domain.next_allowed_check - now).total_seconds())

    def _claim_check(self, domain: CustomDomain, now: datetime, operation: str) -> None:
        wait = self.retry_after(domain, now)
        if wait:
            RATE_LIMITED_CHECKS.labels(operation=operation).inc()
            raise RateLimitExceededError(wait)
        domain.next_allowed_check = now + timedelta(
            seconds=self.check_interval(domain.consecutive_failures)
        )

    def _record_failure(self, domain: CustomDomain, now: datetime) -> None:
        domain.consecutive_failures += 1
        if domain.consecutive_failures >= self.lifecycle.failure_threshold:
            extended = now + timedelta(seconds=self.lifecycle.extended_check_interval)
            if domain.next_allowed_check is None or domain.next_allowed_check < extended:
                domain.next_allowed_check = extended
            minutes = int(self.lifecycle.extended_check_interval // 60)
            domain.set_warning(
                IssueCode.TOO_MANY_FAILURES,
                f"{domain.consecutive_failures} failed checks in a row. "
                f"Checks are limited to once every {minutes} minutes.",
                now,
            )

    # Transitions

    async def create_domain(
        self,
        hostname: str,
        tenant_id: str,
        target: DomainTarget,
    ) -> CustomDomain:
        """Register a new custom domain in AWAITING_DNS.

        Raises:
            InvalidHostnameError: If the hostname is malformed or belongs to the platform.
            DomainConflictError: If any tenant already registered the hostname.
        """
        host = normalize_hostname(hostname)
        valid, error = validate_hostname(host, self.platform.base_domain)
        if not valid:
            raise InvalidHostnameError(f"Invalid hostname {hostname!r}: {error}")

        now = self.clock()
        domain = CustomDomain(
            hostname=host,
            tenant_id=tenant_id,
            target=target,
            verification_token=generate_verification_token(host),
            status=DomainStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        await self.store.create(domain)

        def instructions_issued(d: CustomDomain) -> None:
            if d.status == DomainStatus.PENDING:
                set_status(d, DomainStatus.AWAITING_DNS, now)

        created = await self.store.update(host, instructions_issued)
        logger.info(
            "Domain registered",
            hostname=host,
            tenant_id=tenant_id,
            target_type=target.type.value,
            target_id=target.id,
        )
        return created

    async def request_dns_check(self, hostname: str, tenant_id: str | None = None) -> CustomDomain:
        """Check that the hostname points at the platform.

        Raises:
            DomainNotFoundError: Unknown domain.
            InvalidTransitionError: Domain is past the DNS stage or a check is running.
            RateLimitExceededError: Called before next_allowed_check.
        """
        host = normalize_hostname(hostname)
        now = self.clock()

        def claim(domain: CustomDomain) -> None:
            self._check_owner(domain, tenant_id)
            if domain.status not in DNS_CHECKABLE_STATUSES:
                raise InvalidTransitionError(
                    "check DNS",
                    domain.status.value,
                    tuple(sorted(s.value for s in DNS_CHECKABLE_STATUSES)),
                )
            self._claim_check(domain, now, "dns")
            domain.dns_check_attempts += 1
            set_status(domain, DomainStatus.VALIDATING_DNS, now)

        await self.store.update(host, claim)

        result = await self.validator.validate(host)
        checked = self.clock()

        def apply(domain: CustomDomain) -> None:
            domain.last_dns_check = DnsCheck(
                timestamp=checked,
                success=result.valid,
                record_type=result.record_type,
                records=list(result.records),
                error=result.error_message,
            )
            if domain.status != DomainStatus.VALIDATING_DNS:
                return
            if result.valid:
                domain.consecutive_failures = 0
                domain.errors = []
                domain.clear_warning(IssueCode.TOO_MANY_FAILURES)
                set_status(domain, DomainStatus.AWAITING_VERIFICATION, checked)
            else:
                self._record_failure(domain, checked)
                domain.set_errors(result.errors, checked)
                set_status(domain, DomainStatus.DNS_INVALID, checked)

        updated = await self.store.update(host, apply)
        logger.info(
            "DNS check finished",
            hostname=host,
            valid=result.valid,
            record_type=result.record_type,
            records=result.records,
            status=updated.status.value,
        )
        return updated

    async def request_ownership_verification(
        self, hostname: str, tenant_id: str | None = None
    ) -> CustomDomain:
        """Prove ownership and, on success, activate the domain.

        Raises:
            DomainNotFoundError: Unknown domain.
            InvalidTransitionError: Domain is not AWAITING_VERIFICATION.
            RateLimitExceededError: Called before next_allowed_check.
        """
        host = normalize_hostname(hostname)
        now = self.clock()

        def claim(domain: CustomDomain) -> None:
            self._check_owner(domain, tenant_id)
            if domain.status != DomainStatus.AWAITING_VERIFICATION:
                raise InvalidTransitionError(
                    "verify ownership",
                    domain.status.value,
                    (DomainStatus.AWAITING_VERIFICATION.value,),
                )
            self._claim_check(domain, now, "ownership")
            set_status(domain, DomainStatus.VALIDATING_OWNERSHIP, now)

        claimed = await self.store.update(host, claim)

        result = await self.verifier.check_ownership(host, claimed.verification_token)
        checked = self.clock()

        def apply(domain: CustomDomain) -> None:
            if domain.status != DomainStatus.VALIDATING_OWNERSHIP:
                return
            if result.valid:
                domain.verified = True
                domain.verification_method = result.method
                domain.verified_at = checked
                domain.consecutive_failures = 0
                domain.errors = []
                domain.clear_warning(IssueCode.TOO_MANY_FAILURES)
                set_status(domain, DomainStatus.ISSUING_SSL, checked)
            else:
                self._record_failure(domain, checked)
                domain.set_errors(result.errors, checked)
                set_status(domain, DomainStatus.AWAITING_VERIFICATION, checked)

        updated = await self.store.update(host, apply)
        logger.info(
            "Ownership check finished",
            hostname=host,
            valid=result.valid,
            method=result.method.value if result.method else None,
            status=updated.status.value,
        )

        if result.valid and updated.status == DomainStatus.ISSUING_SSL:
            return await self.activate_domain(host)
        return updated

    async def _wait_for_certificate(self, hostname: str) -> CertificateInfo | None:
        """Poll for a valid certificate until ssl_wait_timeout has elapsed."""
        interval = self.lifecycle.ssl_poll_interval
        wait = self.lifecycle.ssl_wait_timeout
        attempts = max(1, int(wait // interval) if interval > 0 else 1)
        deadline = self.clock() + timedelta(seconds=wait)

        for attempt in range(attempts):
            remaining = (deadline - self.clock()).total_seconds()
            if remaining <= 0:
                break
            cert = await self.resolver.probe_tls_certificate(hostname, timeout=remaining)
            if cert is not None and cert.is_valid(self.clock()):
                return cert
            remaining = (deadline - self.clock()).total_seconds()
            if attempt == attempts - 1 or remaining <= 0:
                break
            await self.sleep(min(interval, remaining))
        return None

    async def activate_domain(self, hostname: str) -> CustomDomain:
        """Add the proxy route and wait briefly for a certificate.

        The domain becomes ACTIVE once the route exists, whether or not a
        certificate was observed within the wait; the reconciler records
        the certificate later. A route that cannot be added leaves the
        domain in SSL_ERROR.

        Raises:
            DomainNotFoundError: Unknown domain.
            InvalidTransitionError: Domain is unverified or not awaiting activation.
        """
        host = normalize_hostname(hostname)
        domain = await self.get_domain(host)
        if not domain.verified or domain.status not in ACTIVATABLE_STATUSES:
            raise InvalidTransitionError(
                "activate",
                domain.status.value if domain.verified else "unverified",
                tuple(sorted(s.value for s in ACTIVATABLE_STATUSES)),
            )

        if not await self.proxy.add_route(host, domain.target):
            failed_at = self.clock()

            def route_failed(d: CustomDomain) -> None:
                if d.status not in ACTIVATABLE_STATUSES:
                    return
                d.add_error(
                    IssueCode.SSL_ISSUANCE_FAILED,
                    "Could not configure routing for this domain. It will be retried automatically.",
                    failed_at,
                )
                set_status(d, DomainStatus.SSL_ERROR, failed_at)

            logger.error("Activation failed: route not added", hostname=host)
            return await self.store.update(host, route_failed)

        cert = await self._wait_for_certificate(host)
        now = self.clock()

        def activate(d: CustomDomain) -> None:
            if d.status not in ACTIVATABLE_STATUSES:
                return
            if cert is not None:
                apply_certificate(d, cert, now)
            else:
                d.last_ssl_check = SslCheck(now, False, error="Certificate not issued yet")
            d.errors = []
            set_status(d, DomainStatus.ACTIVE, now)

        updated = await self.store.update(host, activate)
        logger.info(
            "Domain activated",
            hostname=host,
            certificate_seen=cert is not None,
            status=updated.status.value,
        )
        return updated

    async def delete_domain(self, hostname: str, tenant_id: str | None = None) -> bool:
        """Remove the proxy route, then the record. Allowed from any state.

        Returns:
            True if the route removal succeeded. The record is deleted either
            way; a False return means the route has to be cleaned up by hand.

        Raises:
            DomainNotFoundError: Unknown domain.
        """
        domain = await self.get_domain(hostname, tenant_id)
        route_removed = await self.proxy.remove_route(domain.hostname)
        if not route_removed:
            logger.error(
                "Route removal failed during domain deletion",
                hostname=domain.hostname,
            )
        await self.store.delete(domain.hostname)
        logger.info("Domain deleted", hostname=domain.hostname, tenant_id=domain.tenant_id)
        return route_removed

    async def suspend_domain(
        self,
        hostname: str,
        reason: str,
        expected: frozenset[DomainStatus] = SERVING_STATUSES | frozenset({DomainStatus.SSL_ERROR}),
    ) -> CustomDomain | None:
        """Suspend a domain that stopped pointing at the platform.

        Returns:
            The suspended record, or None if its state changed meanwhile.
        """
        host = normalize_hostname(hostname)
        now = self.clock()
        suspended = False

        def suspend(d: CustomDomain) -> None:
            nonlocal suspended
            if d.status not in expected:
                return
            d.suspended_at = now
            d.suspend_reason = reason
            d.add_error(IssueCode.OWNERSHIP_LOST, reason, now)
            set_status(d, DomainStatus.SUSPENDED, now)
            suspended = True

        updated = await self.store.update(host, suspend)
        if not suspended:
            return None

        logger.warning("Domain suspended", hostname=host, reason=reason)
        if not await self.proxy.remove_route(host):
            logger.error("Route removal failed after suspension", hostname=host)
        return updated

    async def reactivate_domain(self, hostname: str, tenant_id: str | None = None) -> CustomDomain:
        """Restart a suspended domain from AWAITING_DNS.

        Ownership has to be proven again.

        Raises:
            DomainNotFoundError: Unknown domain.
            InvalidTransitionError: Domain is not SUSPENDED.
        """
        host = normalize_hostname(hostname)
        now = self.clock()

        def reactivate(d: CustomDomain) -> None:
            self._check_owner(d, tenant_id)
            if d.status != DomainStatus.SUSPENDED:
                raise InvalidTransitionError(
                    "reactivate", d.status.value, (DomainStatus.SUSPENDED.value,)
                )
            d.suspended_at = None
            d.suspend_reason = None
            d.consecutive_failures = 0
            d.errors = []
            d.warnings = []
            d.notifications_sent = []
            d.next_allowed_check = None
            d.verified = False
            d.verification_method = None
            d.verified_at = None
            set_status(d, DomainStatus.AWAITING_DNS, now)

        updated = await self.store.update(host, reactivate)
        logger.info("Domain reactivated", hostname=host)
        return updated

    async def is_domain_allowed_for_tls(self, hostname: str) -> bool:
        """Whether the edge may obtain a certificate for hostname."""
        host = normalize_hostname(hostname)
        valid, _ = validate_hostname(host)
        if not valid:
            return False
        domain = await self.store.get(host)
        if domain is None:
            return False
        return domain.verified and domain.status in TLS_ALLOWED_STATUSES

    # Presentation

    def dns_instructions(self, domain: CustomDomain) -> list[DnsRecordInstruction]:
        """The record the tenant should create to point the domain at us.

        Apex domains cannot carry a CNAME, so they always get an A record.
        """
        ttl = self.platform.verification_ttl
        is_apex = domain.hostname.count(".") == 1
        if self.platform.cname_target and not is_apex:
            return [DnsRecordInstruction("CNAME", domain.hostname, self.platform.cname_target, ttl)]
        return [DnsRecordInstruction("A", domain.hostname, self.platform.public_ip, ttl)]

    def verification_instructions(self, domain: CustomDomain) -> VerificationInstructions:
        return VerificationInstructions(
            txt_record=DnsRecordInstruction(
                "TXT",
                self.verifier.txt_record_name(domain.hostname),
                domain.verification_token,
                self.platform.verification_ttl,
            ),
            http_url=self.verifier.well_known_url(domain.hostname),
            http_content=domain.verification_token,
        )

    def ssl_state(self, domain: CustomDomain, now: datetime) -> str:
        if domain.ssl_expires_at is None:
            return "pending"
        days = math.ceil((domain.ssl_expires_at - now).total_seconds() / 86400)
        if days <= 0:
            return "expired"
        if days <= SSL_EXPIRING_SOON_DAYS:
            return "expiring_soon"
        return "valid"

    def describe(self, domain: CustomDomain) -> DomainInfo:
        now = self.clock()
        wait = self.retry_after(domain, now)
        return DomainInfo(
            domain=domain,
            dns_records=self.dns_instructions(domain),
            verification=self.verification_instructions(domain),
            can_check_now=wait == 0,
            seconds_until_next_check=wait,
            ssl_state=self.ssl_state(domain, now),
        )

    async def stats(self, tenant_id: str | None = None) -> DomainStats:
        now = self.clock()
        stats = DomainStats()
        for domain in await self.list_domains(tenant_id):
            stats.total += 1
            stats.by_status[domain.status.value] = stats.by_status.get(domain.status.value, 0) + 1
            if domain.status == DomainStatus.ACTIVE:
                stats.active += 1
            elif domain.status in PENDING_STATUSES:
                stats.pending += 1
            if domain.status in ISSUE_STATUSES:
                stats.with_issues += 1
            if self.ssl_state(domain, now) == "expiring_soon":
                stats.ssl_expiring_soon += 1
        return stats


def apply_certificate(domain: CustomDomain, cert: CertificateInfo, now: datetime) -> None:
    """Copy probed certificate metadata onto a record."""
    domain.ssl_issued_at = cert.not_before
    domain.ssl_expires_at = cert.not_after
    domain.ssl_issuer = cert.issuer
    domain.last_ssl_check = SslCheck(now, True, days_until_expiry=cert.days_until_expiry(now))
