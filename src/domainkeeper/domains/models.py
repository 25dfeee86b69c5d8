"""Custom domain records and the enums that describe them.

A record is serialized to plain JSON through to_dict()/from_dict(), the
same way for the file store and for API responses.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class DomainStatus(Enum):
    """Lifecycle state of a custom domain."""

    PENDING = "pending"
    AWAITING_DNS = "awaiting_dns"
    VALIDATING_DNS = "validating_dns"
    DNS_INVALID = "dns_invalid"
    AWAITING_VERIFICATION = "awaiting_verification"
    VALIDATING_OWNERSHIP = "validating_ownership"
    ISSUING_SSL = "issuing_ssl"
    ACTIVE = "active"
    SSL_EXPIRING = "ssl_expiring"
    SSL_ERROR = "ssl_error"
    SUSPENDED = "suspended"


# States in which the edge may request a certificate for the hostname.
TLS_ALLOWED_STATUSES = frozenset(
    {
        DomainStatus.ISSUING_SSL,
        DomainStatus.ACTIVE,
        DomainStatus.SSL_EXPIRING,
        DomainStatus.SSL_ERROR,
    }
)

DNS_CHECKABLE_STATUSES = frozenset(
    {
        DomainStatus.PENDING,
        DomainStatus.AWAITING_DNS,
        DomainStatus.DNS_INVALID,
        DomainStatus.AWAITING_VERIFICATION,
    }
)

SERVING_STATUSES = frozenset({DomainStatus.ACTIVE, DomainStatus.SSL_EXPIRING})

PENDING_STATUSES = frozenset(
    {
        DomainStatus.PENDING,
        DomainStatus.AWAITING_DNS,
        DomainStatus.VALIDATING_DNS,
        DomainStatus.AWAITING_VERIFICATION,
        DomainStatus.VALIDATING_OWNERSHIP,
        DomainStatus.ISSUING_SSL,
    }
)

ISSUE_STATUSES = frozenset(
    {
        DomainStatus.DNS_INVALID,
        DomainStatus.SSL_ERROR,
        DomainStatus.SSL_EXPIRING,
        DomainStatus.SUSPENDED,
    }
)


class TargetType(Enum):
    SHOP = "shop"
    BOOKING = "booking"
    PAGE = "page"


class VerificationMethod(Enum):
    DNS_TXT = "dns_txt"
    HTTP_FILE = "http_file"


class IssueCode(Enum):
    """Error and warning codes attached to a domain."""

    # DNS
    DNS_NOT_FOUND = "DNS_NOT_FOUND"
    CNAME_WRONG_TARGET = "CNAME_WRONG_TARGET"
    A_RECORD_WRONG_IP = "A_RECORD_WRONG_IP"
    DNS_LOOKUP_FAILED = "DNS_LOOKUP_FAILED"
    NO_DNS_RECORDS = "NO_DNS_RECORDS"
    # Ownership
    TXT_NOT_FOUND = "TXT_NOT_FOUND"
    TXT_TOKEN_MISMATCH = "TXT_TOKEN_MISMATCH"
    HTTP_FILE_NOT_ACCESSIBLE = "HTTP_FILE_NOT_ACCESSIBLE"
    HTTP_TOKEN_MISMATCH = "HTTP_TOKEN_MISMATCH"
    # TLS
    SSL_ISSUANCE_FAILED = "SSL_ISSUANCE_FAILED"
    SSL_RENEWAL_FAILED = "SSL_RENEWAL_FAILED"
    SSL_EXPIRED = "SSL_EXPIRED"
    # Other
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    OWNERSHIP_LOST = "OWNERSHIP_LOST"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    # Warnings
    TOO_MANY_FAILURES = "TOO_MANY_FAILURES"
    SSL_EXPIRING_SOON = "SSL_EXPIRING_SOON"
    DNS_PROPAGATION_SLOW = "DNS_PROPAGATION_SLOW"
    DNS_ISSUE = "DNS_ISSUE"


@dataclass(frozen=True)
class ShopTarget:
    id: str
    type: ClassVar[TargetType] = TargetType.SHOP


@dataclass(frozen=True)
class BookingTarget:
    id: str
    type: ClassVar[TargetType] = TargetType.BOOKING


@dataclass(frozen=True)
class PageTarget:
    id: str
    type: ClassVar[TargetType] = TargetType.PAGE


DomainTarget = ShopTarget | BookingTarget | PageTarget

_TARGET_CLASSES: dict[TargetType, type[ShopTarget] | type[BookingTarget] | type[PageTarget]] = {
    TargetType.SHOP: ShopTarget,
    TargetType.BOOKING: BookingTarget,
    TargetType.PAGE: PageTarget,
}


def make_target(target_type: str | TargetType, target_id: str) -> DomainTarget:
    """Build the target variant for a type name.

    Raises:
        ValueError: If the type is unknown or the id is empty.
    """
    kind = TargetType(target_type)
    if not target_id:
        raise ValueError("Target id is required")
    return _TARGET_CLASSES[kind](id=target_id)


def target_to_dict(target: DomainTarget) -> dict[str, str]:
    return {"type": target.type.value, "id": target.id}


def target_from_dict(data: dict[str, Any]) -> DomainTarget:
    return make_target(data["type"], data["id"])


@dataclass
class CheckError:
    """One failed aspect of a verification attempt."""

    code: IssueCode
    message: str


@dataclass
class DomainIssue:
    """An error or warning attached to a domain."""

    code: IssueCode
    message: str
    timestamp: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DomainIssue:
        return cls(
            code=IssueCode(data["code"]),
            message=data.get("message", ""),
            timestamp=_parse_dt(data.get("timestamp")) or _utc_now(),
        )


@dataclass
class DnsCheck:
    """Outcome of the latest DNS check."""

    timestamp: datetime
    success: bool
    record_type: str | None = None
    records: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "record_type": self.record_type,
            "records": list(self.records),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DnsCheck:
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            success=data.get("success", False),
            record_type=data.get("record_type"),
            records=list(data.get("records", [])),
            error=data.get("error"),
        )


@dataclass
class SslCheck:
    """Outcome of the latest TLS probe."""

    timestamp: datetime
    success: bool
    days_until_expiry: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "days_until_expiry": self.days_until_expiry,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SslCheck:
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            success=data.get("success", False),
            days_until_expiry=data.get("days_until_expiry"),
            error=data.get("error"),
        )


@dataclass
class CustomDomain:
    """A tenant-supplied hostname and everything known about it."""

    hostname: str
    tenant_id: str
    target: DomainTarget
    verification_token: str
    status: DomainStatus = DomainStatus.AWAITING_DNS
    verified: bool = False
    verification_method: VerificationMethod | None = None
    verified_at: datetime | None = None
    last_dns_check: DnsCheck | None = None
    consecutive_failures: int = 0
    dns_check_attempts: int = 0
    next_allowed_check: datetime | None = None
    ssl_issued_at: datetime | None = None
    ssl_expires_at: datetime | None = None
    ssl_issuer: str | None = None
    last_ssl_check: SslCheck | None = None
    errors: list[DomainIssue] = field(default_factory=list)
    warnings: list[DomainIssue] = field(default_factory=list)
    notifications_sent: list[str] = field(default_factory=list)
    suspended_at: datetime | None = None
    suspend_reason: str | None = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    def copy(self) -> CustomDomain:
        return copy.deepcopy(self)

    def set_errors(self, errors: list[CheckError], now: datetime) -> None:
        """Replace the error list with the errors of the latest attempt."""
        self.errors = [DomainIssue(e.code, e.message, now) for e in errors]

    def add_error(self, code: IssueCode, message: str, now: datetime) -> None:
        """Attach an error unless one with the same code is already present."""
        if not any(e.code == code for e in self.errors):
            self.errors.append(DomainIssue(code, message, now))

    def set_warning(self, code: IssueCode, message: str, now: datetime) -> None:
        """Attach a warning, replacing any existing warning with the same code."""
        self.warnings = [w for w in self.warnings if w.code != code]
        self.warnings.append(DomainIssue(code, message, now))

    def clear_warning(self, code: IssueCode) -> None:
        self.warnings = [w for w in self.warnings if w.code != code]

    def has_warning(self, code: IssueCode) -> bool:
        return any(w.code == code for w in self.warnings)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "hostname": self.hostname,
            "tenant_id": self.tenant_id,
            "target": target_to_dict(self.target),
            "verification_token": self.verification_token,
            "status": self.status.value,
            "verified": self.verified,
            "verification_method": self.verification_method.value
            if self.verification_method
            else None,
            "verified_at": _format_dt(self.verified_at),
            "last_dns_check": self.last_dns_check.to_dict() if self.last_dns_check else None,
            "consecutive_failures": self.consecutive_failures,
            "dns_check_attempts": self.dns_check_attempts,
            "next_allowed_check": _format_dt(self.next_allowed_check),
            "ssl_issued_at": _format_dt(self.ssl_issued_at),
            "ssl_expires_at": _format_dt(self.ssl_expires_at),
            "ssl_issuer": self.ssl_issuer,
            "last_ssl_check": self.last_ssl_check.to_dict() if self.last_ssl_check else None,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "notifications_sent": list(self.notifications_sent),
            "suspended_at": _format_dt(self.suspended_at),
            "suspend_reason": self.suspend_reason,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CustomDomain:
        """Create from dictionary (JSON deserialization)."""
        method = data.get("verification_method")
        return cls(
            hostname=data["hostname"],
            tenant_id=data["tenant_id"],
            target=target_from_dict(data["target"]),
            verification_token=data["verification_token"],
            status=DomainStatus(data.get("status", DomainStatus.AWAITING_DNS.value)),
            verified=data.get("verified", False),
            verification_method=VerificationMethod(method) if method else None,
            verified_at=_parse_dt(data.get("verified_at")),
            last_dns_check=DnsCheck.from_dict(data["last_dns_check"])
            if data.get("last_dns_check")
            else None,
            consecutive_failures=data.get("consecutive_failures", 0),
            dns_check_attempts=data.get("dns_check_attempts", 0),
            next_allowed_check=_parse_dt(data.get("next_allowed_check")),
            ssl_issued_at=_parse_dt(data.get("ssl_issued_at")),
            ssl_expires_at=_parse_dt(data.get("ssl_expires_at")),
            ssl_issuer=data.get("ssl_issuer"),
            last_ssl_check=SslCheck.from_dict(data["last_ssl_check"])
            if data.get("last_ssl_check")
            else None,
            errors=[DomainIssue.from_dict(e) for e in data.get("errors", [])],
            warnings=[DomainIssue.from_dict(w) for w in data.get("warnings", [])],
            notifications_sent=list(data.get("notifications_sent", [])),
            suspended_at=_parse_dt(data.get("suspended_at")),
            suspend_reason=data.get("suspend_reason"),
            created_at=_parse_dt(data.get("created_at")) or _utc_now(),
            updated_at=_parse_dt(data.get("updated_at")) or _utc_now(),
        )
