"""DNS lookups and live TLS certificate probes.

The resolver is stateless apart from the shared aiodns channel and is
safe to use concurrently for many hostnames. NXDOMAIN and NODATA are
valid negative answers and come back as an empty LookupResult; any
other resolver failure raises DnsLookupFailedError.
"""

from __future__ import annotations

import asyncio
import contextlib
import math
import ssl
import sys
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import aiodns
import httpx
import pycares
import structlog
from cryptography import x509
from cryptography.x509.oid import NameOID

logger = structlog.get_logger()

_NEGATIVE_CODES = frozenset({pycares.errno.ARES_ENOTFOUND, pycares.errno.ARES_ENODATA})


class DnsLookupFailedError(Exception):
    """Resolver failure other than a negative answer."""

    def __init__(self, hostname: str, record_type: str, code: int | None, message: str) -> None:
        super().__init__(f"{record_type} lookup for {hostname} failed: {message}")
        self.hostname = hostname
        self.record_type = record_type
        self.code = code
        self.message = message


@dataclass
class LookupResult:
    """Records of one type returned for a name."""

    record_type: str
    records: list[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return bool(self.records)


@dataclass
class CertificateInfo:
    """Metadata of the certificate currently served for a hostname."""

    issuer: str | None
    subject: str | None
    not_before: datetime
    not_after: datetime

    def days_until_expiry(self, now: datetime) -> int:
        return math.ceil((self.not_after - now).total_seconds() / 86400)

    def is_expired(self, now: datetime) -> bool:
        return now > self.not_after

    def is_valid(self, now: datetime) -> bool:
        return self.not_before <= now <= self.not_after


def _decode_text(chunk: Any) -> str:
    if isinstance(chunk, bytes):
        chunk = chunk.decode("utf-8", errors="replace")
    return str(chunk).strip().strip('"').strip("'")


def flatten_txt_records(records: list[Any]) -> list[str]:
    """Join the character-strings of each TXT record into one value.

    Long TXT values are split into 255-byte strings on the wire and may be
    quoted by some providers.

    Examples:
        >>> flatten_txt_records([[b"abc", b"def"], '"token"'])
        ['abcdef', 'token']
    """
    flattened = []
    for record in records:
        if isinstance(record, list | tuple):
            value = "".join(_decode_text(chunk) for chunk in record)
        else:
            value = _decode_text(record)
        if value:
            flattened.append(value)
    return flattened


def _name_attribute(name: x509.Name, *oids: x509.ObjectIdentifier) -> str | None:
    for oid in oids:
        attributes = name.get_attributes_for_oid(oid)
        if attributes:
            value = attributes[0].value
            return value.decode() if isinstance(value, bytes) else value
    return None


def parse_certificate(der: bytes) -> CertificateInfo:
    """Parse a DER certificate into CertificateInfo.

    Raises:
        ValueError: If the bytes are not a certificate.
    """
    cert = x509.load_der_x509_certificate(der)
    return CertificateInfo(
        issuer=_name_attribute(cert.issuer, NameOID.ORGANIZATION_NAME, NameOID.COMMON_NAME),
        subject=_name_attribute(cert.subject, NameOID.COMMON_NAME),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
    )


class DnsResolver:
    """A/CNAME/TXT lookups plus TLS and HTTPS reachability probes."""

    def __init__(
        self,
        tls_timeout: float = 10.0,
        http_timeout: float = 5.0,
        dns_timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize resolver.

        Args:
            tls_timeout: Bound on a TLS handshake probe.
            http_timeout: Bound on an HTTPS reachability probe.
            dns_timeout: Per-try timeout handed to c-ares.
            transport: Optional httpx transport, used by tests.
        """
        self.tls_timeout = tls_timeout
        self.http_timeout = http_timeout
        self.dns_timeout = dns_timeout
        self._transport = transport
        self._resolver: aiodns.DNSResolver | None = None

    def _get_resolver(self) -> aiodns.DNSResolver:
        """Get or create DNS resolver with proper event loop handling."""
        if self._resolver is None:
            if sys.platform == "win32":
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError:
                    loop = asyncio.new_event_loop()
                self._resolver = aiodns.DNSResolver(loop=loop, timeout=self.dns_timeout, tries=2)
            else:
                self._resolver = aiodns.DNSResolver(timeout=self.dns_timeout, tries=2)
        return self._resolver

    async def _query(self, hostname: str, record_type: str) -> list[Any]:
        resolver = self._get_resolver()
        try:
            result = await resolver.query_dns(hostname, record_type)
        except aiodns.error.DNSError as e:
            code = e.args[0] if e.args and isinstance(e.args[0], int) else None
            if code in _NEGATIVE_CODES:
                return []
            message = e.args[1] if len(e.args) > 1 else str(e)
            logger.warning(
                "DNS lookup failed",
                hostname=hostname,
                record_type=record_type,
                code=code,
                error=message,
            )
            raise DnsLookupFailedError(hostname, record_type, code, str(message)) from e
        return [record.data for record in (getattr(result, "answer", None) or [])]

    async def resolve_cname(self, hostname: str) -> LookupResult:
        answers = await self._query(hostname, "CNAME")
        targets = [
            str(data.cname).rstrip(".").lower() for data in answers if getattr(data, "cname", None)
        ]
        return LookupResult("CNAME", targets)

    async def resolve_a(self, hostname: str) -> LookupResult:
        answers = await self._query(hostname, "A")
        addresses = [str(data.addr) for data in answers if getattr(data, "addr", None)]
        return LookupResult("A", addresses)

    async def resolve_txt(self, hostname: str) -> LookupResult:
        answers = await self._query(hostname, "TXT")
        raw = [data.data for data in answers if getattr(data, "data", None) is not None]
        return LookupResult("TXT", flatten_txt_records(raw))

    async def probe_tls_certificate(
        self, hostname: str, port: int = 443, timeout: float | None = None
    ) -> CertificateInfo | None:
        """Read whatever certificate is served for hostname.

        Verification is disabled: an untrusted, mismatched or expired
        certificate is still reported.

        Returns:
            CertificateInfo, or None if no handshake completed in time.
        """
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

        writer: asyncio.StreamWriter | None = None
        der: bytes | None = None
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(hostname, port, ssl=context, server_hostname=hostname),
                timeout=self.tls_timeout if timeout is None else min(timeout, self.tls_timeout),
            )
            ssl_object = writer.get_extra_info("ssl_object")
            if ssl_object is not None:
                der = ssl_object.getpeercert(binary_form=True)
        except (OSError, TimeoutError) as e:
            logger.debug("TLS probe failed", hostname=hostname, error=str(e) or type(e).__name__)
            return None
        finally:
            if writer is not None:
                writer.close()
                with contextlib.suppress(OSError, TimeoutError):
                    await asyncio.wait_for(writer.wait_closed(), timeout=1.0)

        if not der:
            return None

        try:
            return parse_certificate(der)
        except ValueError as e:
            logger.warning("Unparseable certificate", hostname=hostname, error=str(e))
            return None

    async def probe_https(self, hostname: str, path: str = "/health") -> bool:
        """Check that hostname serves HTTPS with a trusted certificate.

        Any HTTP status counts: the point is that DNS resolves and the
        certificate validates.
        """
        try:
            async with httpx.AsyncClient(
                verify=True,
                timeout=self.http_timeout,
                transport=self._transport,
            ) as client:
                await client.get(f"https://{hostname}{path}")
            return True
        except httpx.HTTPError as e:
            logger.debug("HTTPS probe failed", hostname=hostname, error=str(e) or type(e).__name__)
            return False
