"""Health reconciler for custom domains and platform subdomains.

Each sweep compares what the records claim with what DNS, the edge
proxy and the served certificate actually show:

- Serving domains are re-validated. DNS that stops pointing at the
  platform raises a warning and, after repeated failures, suspends the
  domain. Certificate expiry is classified into bands and escalated.
- SSL_ERROR domains get their route re-ensured and return to ACTIVE
  once a valid certificate is served.
- Transient states left behind by an interrupted request are unwound.
- Pending subdomains are polled until they serve HTTPS.

Every write re-checks that the record is still in the status observed
at the start of the check, so a sweep never overrides a transition a
tenant made meanwhile.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

import structlog

from domainkeeper.core.config import ReconcilerConfig
from domainkeeper.domains.manager import (
    SSL_EXPIRING_SOON_DAYS,
    DomainManager,
    apply_certificate,
    set_status,
)
from domainkeeper.domains.models import CustomDomain, DnsCheck, DomainStatus, IssueCode, SslCheck
from domainkeeper.domains.notifications import LogNotifier, Notifier
from domainkeeper.observability.metrics import DOMAINS_BY_STATUS, SWEEP_DURATION
from domainkeeper.subdomains.manager import SubdomainManager
from domainkeeper.subdomains.models import (
    IN_FLIGHT_STATUSES,
    POLLED_STATUSES,
    PlatformSubdomain,
    SubdomainStatus,
)

logger = structlog.get_logger()

T = TypeVar("T")

HEALTH_CHECKED_STATUSES = frozenset(
    {DomainStatus.ACTIVE, DomainStatus.SSL_EXPIRING, DomainStatus.SSL_ERROR}
)

# Notification markers kept in CustomDomain.notifications_sent.
DNS_WARNING_MARKER = "dns_warning"
SSL_WARNING_MARKER = "ssl_warning"
SSL_CRITICAL_MARKER = "ssl_critical"
SSL_EXPIRED_MARKER = "ssl_expired"
SSL_MARKERS = (SSL_WARNING_MARKER, SSL_CRITICAL_MARKER, SSL_EXPIRED_MARKER)


class ExpiryBand(Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    EXPIRED = "expired"


def classify_expiry(days_until_expiry: int) -> ExpiryBand:
    """Band a certificate by days left.

    Examples:
        >>> classify_expiry(45)
        <ExpiryBand.OK: 'ok'>
        >>> classify_expiry(5)
        <ExpiryBand.CRITICAL: 'critical'>
    """
    if days_until_expiry <= 0:
        return ExpiryBand.EXPIRED
    if days_until_expiry <= SSL_EXPIRING_SOON_DAYS:
        return ExpiryBand.CRITICAL
    if days_until_expiry <= 30:
        return ExpiryBand.WARNING
    return ExpiryBand.OK


@dataclass
class SweepReport:
    """Counters for one reconciliation pass."""

    checked: int = 0
    healthy: int = 0
    dns_failures: int = 0
    suspended: int = 0
    ssl_warnings: int = 0
    recovered: int = 0
    subdomains_checked: int = 0
    subdomains_promoted: int = 0
    subdomains_failed: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


class HealthReconciler:
    """Re-drives the external checks for stored domains without user input."""

    def __init__(
        self,
        domains: DomainManager,
        subdomains: SubdomainManager | None = None,
        config: ReconcilerConfig | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.domains = domains
        self.subdomains = subdomains
        self.config = config or ReconcilerConfig()
        self.notifier: Notifier = notifier or LogNotifier()

    async def _bounded(
        self,
        items: Iterable[T],
        check: Callable[[T], Awaitable[Any]],
        describe: Callable[[T], str],
        report: SweepReport,
    ) -> None:
        semaphore = asyncio.Semaphore(max(1, self.config.sweep_concurrency))

        async def run(item: T) -> None:
            async with semaphore:
                try:
                    await check(item)
                except Exception as e:
                    report.errors += 1
                    logger.error("Reconcile check failed", item=describe(item), error=str(e))

        await asyncio.gather(*(run(item) for item in items))

    async def reconcile_once(self, now: datetime) -> SweepReport:
        """One full pass over domains and pending subdomains."""
        report = await self.reconcile_domains(now)
        if self.subdomains is not None:
            await self.reconcile_subdomains(now, report)
        return report

    # Domains

    async def reconcile_domains(self, now: datetime, report: SweepReport | None = None) -> SweepReport:
        report = report or SweepReport()
        started = time.monotonic()
        domains = await self.domains.store.list_all()

        async def check(domain: CustomDomain) -> None:
            if domain.status in HEALTH_CHECKED_STATUSES and domain.verified:
                await self.check_domain_health(domain, now, report)
            else:
                await self.recover_stalled(domain, now, report)

        await self._bounded(domains, check, lambda d: d.hostname, report)

        counts: dict[str, int] = {s.value: 0 for s in DomainStatus}
        for domain in await self.domains.store.list_all():
            counts[domain.status.value] += 1
        for status, count in counts.items():
            DOMAINS_BY_STATUS.labels(status=status).set(count)

        SWEEP_DURATION.labels(sweep="domains").observe(time.monotonic() - started)
        logger.info("Domain sweep finished", **report.to_dict())
        return report

    async def check_domain_health(
        self, domain: CustomDomain, now: datetime, report: SweepReport
    ) -> None:
        report.checked += 1
        host = domain.hostname
        observed = domain.status

        dns = await self.domains.validator.validate(host)
        notifications: list[tuple[str, str]] = []

        def record_dns(d: CustomDomain) -> None:
            if d.status != observed:
                return
            d.last_dns_check = DnsCheck(
                timestamp=now,
                success=dns.valid,
                record_type=dns.record_type,
                records=list(dns.records),
                error=dns.error_message,
            )
            d.updated_at = now
            if dns.valid:
                d.consecutive_failures = 0
                d.clear_warning(IssueCode.DNS_ISSUE)
                if DNS_WARNING_MARKER in d.notifications_sent:
                    d.notifications_sent.remove(DNS_WARNING_MARKER)
                return
            d.consecutive_failures += 1
            if d.consecutive_failures < self.config.suspend_threshold and (
                DNS_WARNING_MARKER not in d.notifications_sent
            ):
                message = (
                    f"DNS for {host} no longer points to the platform: {dns.error_message}. "
                    f"The domain will be suspended after {self.config.suspend_threshold} failed checks."
                )
                d.set_warning(IssueCode.DNS_ISSUE, message, now)
                d.notifications_sent.append(DNS_WARNING_MARKER)
                notifications.append(("dns_warning", message))

        updated = await self.domains.store.update(host, record_dns)
        if updated.status != observed:
            return
        await self._send(updated, notifications)

        if not dns.valid:
            report.dns_failures += 1
            if updated.consecutive_failures >= self.config.suspend_threshold:
                reason = (
                    f"DNS check failed {updated.consecutive_failures} times in a row: "
                    f"{dns.error_message}"
                )
                suspended = await self.domains.suspend_domain(host, reason, frozenset({observed}))
                if suspended is not None:
                    report.suspended += 1
                    await self._send(suspended, [("suspended", reason)])
            return

        await self.check_certificate(updated, now, report)

    async def check_certificate(
        self, domain: CustomDomain, now: datetime, report: SweepReport
    ) -> None:
        host = domain.hostname
        observed = domain.status

        if observed == DomainStatus.SSL_ERROR:
            # Route may never have been added.
            if not await self.domains.proxy.add_route(host, domain.target):
                logger.warning("Route still cannot be added", hostname=host)
                return

        cert = await self.domains.resolver.probe_tls_certificate(host)
        if cert is None:

            def no_cert(d: CustomDomain) -> None:
                if d.status != observed:
                    return
                d.last_ssl_check = SslCheck(now, False, error="No certificate served")
                d.updated_at = now

            await self.domains.store.update(host, no_cert)
            logger.info("No certificate served", hostname=host, status=observed.value)
            return

        days = cert.days_until_expiry(now)
        band = classify_expiry(days)
        notifications: list[tuple[str, str]] = []

        def apply(d: CustomDomain) -> None:
            if d.status != observed:
                return
            apply_certificate(d, cert, now)
            d.updated_at = now

            if band == ExpiryBand.EXPIRED:
                message = f"The certificate for {host} has expired"
                d.clear_warning(IssueCode.SSL_EXPIRING_SOON)
                d.add_error(IssueCode.SSL_EXPIRED, message, now)
                if SSL_EXPIRED_MARKER not in d.notifications_sent:
                    d.notifications_sent.append(SSL_EXPIRED_MARKER)
                    notifications.append(("ssl_expired", message))
                set_status(d, DomainStatus.SSL_ERROR, now)
                return

            d.errors = [
                e
                for e in d.errors
                if e.code not in (IssueCode.SSL_EXPIRED, IssueCode.SSL_ISSUANCE_FAILED)
            ]
            d.notifications_sent = [m for m in d.notifications_sent if m != SSL_EXPIRED_MARKER]

            if band == ExpiryBand.OK:
                d.clear_warning(IssueCode.SSL_EXPIRING_SOON)
                d.notifications_sent = [m for m in d.notifications_sent if m not in SSL_MARKERS]
                set_status(d, DomainStatus.ACTIVE, now)
                return

            marker = SSL_CRITICAL_MARKER if band == ExpiryBand.CRITICAL else SSL_WARNING_MARKER
            if marker not in d.notifications_sent:
                message = f"The certificate for {host} expires in {days} days"
                d.set_warning(IssueCode.SSL_EXPIRING_SOON, message, now)
                d.notifications_sent.append(marker)
                notifications.append((f"ssl_{band.value}", message))
            status = DomainStatus.SSL_EXPIRING if band == ExpiryBand.CRITICAL else DomainStatus.ACTIVE
            set_status(d, status, now)

        updated = await self.domains.store.update(host, apply)
        if updated.status != observed and observed == DomainStatus.SSL_ERROR:
            report.recovered += 1
        if band in (ExpiryBand.OK, ExpiryBand.WARNING) and updated.status == DomainStatus.ACTIVE:
            report.healthy += 1
        if notifications:
            report.ssl_warnings += 1
        await self._send(updated, notifications)

    async def recover_stalled(self, domain: CustomDomain, now: datetime, report: SweepReport) -> None:
        """Unwind transient states left by a request that never finished."""
        if (now - domain.updated_at).total_seconds() < self.config.stall_timeout:
            return

        host = domain.hostname
        observed = domain.status
        stamp = domain.updated_at

        if observed == DomainStatus.ISSUING_SSL and domain.verified:
            logger.info("Resuming stalled activation", hostname=host)
            await self.domains.activate_domain(host)
            report.recovered += 1
            return

        fallback = {
            DomainStatus.VALIDATING_DNS: DomainStatus.AWAITING_DNS,
            DomainStatus.VALIDATING_OWNERSHIP: DomainStatus.AWAITING_VERIFICATION,
        }.get(observed)
        if fallback is None:
            return

        def unwind(d: CustomDomain) -> None:
            if d.status == observed and d.updated_at == stamp:
                set_status(d, fallback, now)

        updated = await self.domains.store.update(host, unwind)
        if updated.status == fallback:
            report.recovered += 1
            logger.warning(
                "Stalled domain reset",
                hostname=host,
                old_status=observed.value,
                new_status=fallback.value,
            )

    async def _send(self, domain: CustomDomain, notifications: list[tuple[str, str]]) -> None:
        for kind, message in notifications:
            await self.notifier.notify(domain, kind, message)

    # Subdomains

    async def reconcile_subdomains(
        self, now: datetime, report: SweepReport | None = None
    ) -> SweepReport:
        report = report or SweepReport()
        if self.subdomains is None:
            return report
        started = time.monotonic()
        pending = await self.subdomains.store.list_by_status(*POLLED_STATUSES)

        async def check(sub: PlatformSubdomain) -> None:
            # Registration still in flight.
            if (
                sub.status in IN_FLIGHT_STATUSES
                and (now - sub.updated_at).total_seconds() < self.config.stall_timeout
            ):
                return
            report.subdomains_checked += 1
            updated = await self.subdomains.check_status(
                sub.slug, sub.namespace, include_in_flight=True
            )
            if updated.status == SubdomainStatus.ACTIVE:
                report.subdomains_promoted += 1
            elif updated.status == SubdomainStatus.ERROR:
                report.subdomains_failed += 1

        await self._bounded(pending, check, lambda s: s.key, report)
        SWEEP_DURATION.labels(sweep="subdomains").observe(time.monotonic() - started)
        if pending:
            logger.info(
                "Subdomain poll finished",
                checked=report.subdomains_checked,
                promoted=report.subdomains_promoted,
                failed=report.subdomains_failed,
            )
        return report
