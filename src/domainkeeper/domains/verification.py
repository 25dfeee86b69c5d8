"""DNS pointing checks and ownership proofs for custom domains.

Pointing (tenant routes traffic to the platform), either:
    shop.example.com  CNAME  proxy.platform.io
    shop.example.com  A      203.0.113.10

Ownership (tenant controls the name), either:
    _platform-verify.shop.example.com  TXT  "<token>"
    https://shop.example.com/.well-known/platform-verify.txt  ->  <token>
"""

from __future__ import annotations

from dataclasses import dataclass, field

import httpx
import structlog

from domainkeeper.domains.models import CheckError, IssueCode, VerificationMethod
from domainkeeper.domains.resolver import DnsLookupFailedError, DnsResolver

logger = structlog.get_logger()


@dataclass
class DnsCheckResult:
    """Outcome of one DNS pointing check."""

    valid: bool
    record_type: str | None = None
    records: list[str] = field(default_factory=list)
    errors: list[CheckError] = field(default_factory=list)

    @property
    def error_message(self) -> str | None:
        return "; ".join(e.message for e in self.errors) or None


@dataclass
class OwnershipCheckResult:
    """Outcome of one ownership proof attempt."""

    valid: bool
    method: VerificationMethod | None = None
    errors: list[CheckError] = field(default_factory=list)


class DnsValidator:
    """Checks that a hostname points at the platform.

    When a CNAME target is configured and the name has a CNAME, the CNAME
    decides; the A record is only consulted when there is no CNAME.
    """

    def __init__(self, resolver: DnsResolver, cname_target: str, expected_ip: str) -> None:
        self.resolver = resolver
        self.cname_target = cname_target.rstrip(".").lower()
        self.expected_ip = expected_ip

    def _cname_matches(self, targets: list[str]) -> bool:
        return any(t == self.cname_target for t in targets)

    async def validate(self, hostname: str) -> DnsCheckResult:
        try:
            if self.cname_target:
                cname = await self.resolver.resolve_cname(hostname)
                if cname.found:
                    if self._cname_matches(cname.records):
                        return DnsCheckResult(True, "CNAME", cname.records)
                    return DnsCheckResult(
                        False,
                        "CNAME",
                        cname.records,
                        [
                            CheckError(
                                IssueCode.CNAME_WRONG_TARGET,
                                f"CNAME points to {', '.join(cname.records)}, "
                                f"expected {self.cname_target}",
                            )
                        ],
                    )

            a = await self.resolver.resolve_a(hostname)
            if a.found:
                if self.expected_ip in a.records:
                    return DnsCheckResult(True, "A", a.records)
                return DnsCheckResult(
                    False,
                    "A",
                    a.records,
                    [
                        CheckError(
                            IssueCode.A_RECORD_WRONG_IP,
                            f"A record points to {', '.join(a.records)}, expected {self.expected_ip}",
                        )
                    ],
                )
        except DnsLookupFailedError as e:
            return DnsCheckResult(
                False,
                e.record_type,
                errors=[CheckError(IssueCode.DNS_LOOKUP_FAILED, e.message)],
            )

        return DnsCheckResult(
            False,
            errors=[CheckError(IssueCode.NO_DNS_RECORDS, f"No CNAME or A record found for {hostname}")],
        )


class OwnershipVerifier:
    """Proves control of a hostname by TXT record, falling back to a well-known file."""

    def __init__(
        self,
        resolver: DnsResolver,
        platform_name: str = "platform",
        http_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.resolver = resolver
        self.platform_name = platform_name
        self.http_timeout = http_timeout
        self._transport = transport

    def txt_record_name(self, hostname: str) -> str:
        return f"_{self.platform_name}-verify.{hostname}"

    def well_known_path(self) -> str:
        return f"/.well-known/{self.platform_name}-verify.txt"

    def well_known_url(self, hostname: str) -> str:
        return f"https://{hostname}{self.well_known_path()}"

    async def check_txt(self, hostname: str, expected_token: str) -> CheckError | None:
        """Returns None on success, otherwise the reason."""
        name = self.txt_record_name(hostname)
        try:
            result = await self.resolver.resolve_txt(name)
        except DnsLookupFailedError as e:
            return CheckError(IssueCode.TXT_NOT_FOUND, f"TXT lookup for {name} failed: {e.message}")

        if expected_token in result.records:
            return None
        if result.found:
            return CheckError(
                IssueCode.TXT_TOKEN_MISMATCH,
                f"TXT record at {name} does not contain the verification token",
            )
        return CheckError(IssueCode.TXT_NOT_FOUND, f"No TXT record found at {name}")

    async def check_http_file(self, hostname: str, expected_token: str) -> CheckError | None:
        """Returns None on success, otherwise the reason.

        Certificate validation is off because no certificate exists yet for
        a domain that has not been verified.
        """
        url = self.well_known_url(hostname)
        try:
            async with httpx.AsyncClient(
                verify=False,
                timeout=self.http_timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            return CheckError(
                IssueCode.HTTP_FILE_NOT_ACCESSIBLE,
                f"Could not fetch {url}: {str(e) or type(e).__name__}",
            )

        if response.status_code == 200 and response.text.strip() == expected_token:
            return None
        if response.status_code == 404:
            return CheckError(IssueCode.HTTP_FILE_NOT_ACCESSIBLE, f"{url} returned 404")
        if response.status_code != 200:
            return CheckError(
                IssueCode.HTTP_TOKEN_MISMATCH, f"{url} returned HTTP {response.status_code}"
            )
        return CheckError(IssueCode.HTTP_TOKEN_MISMATCH, f"{url} does not contain the verification token")

    async def check_ownership(self, hostname: str, expected_token: str) -> OwnershipCheckResult:
        errors: list[CheckError] = []

        txt_error = await self.check_txt(hostname, expected_token)
        if txt_error is None:
            return OwnershipCheckResult(True, VerificationMethod.DNS_TXT)
        errors.append(txt_error)

        http_error = await self.check_http_file(hostname, expected_token)
        if http_error is None:
            return OwnershipCheckResult(True, VerificationMethod.HTTP_FILE)
        errors.append(http_error)

        logger.info(
            "Ownership not proven",
            hostname=hostname,
            errors=[e.code.value for e in errors],
        )
        return OwnershipCheckResult(False, errors=errors)
