"""Platform subdomain records: {slug}.{namespace}.{base_domain}."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def _utc_now() -> datetime:
    return datetime.now(UTC)


class SubdomainStatus(Enum):
    PENDING = "pending"
    DNS_CREATING = "dns_creating"
    ACTIVATING = "activating"
    ACTIVE = "active"
    ERROR = "error"
    REMOVING = "removing"


# Statuses owned by a registration that is still running.
IN_FLIGHT_STATUSES = frozenset({SubdomainStatus.PENDING, SubdomainStatus.DNS_CREATING})

# Statuses the reconciler polls until the subdomain is reachable.
POLLED_STATUSES = frozenset(
    {SubdomainStatus.PENDING, SubdomainStatus.DNS_CREATING, SubdomainStatus.ACTIVATING}
)


class Namespace(Enum):
    """Which kind of tenant object a subdomain belongs to."""

    SHOPS = "shops"
    BOOKING = "booking"
    PAGES = "pages"


def subdomain_key(slug: str, namespace: Namespace) -> str:
    return f"{slug}.{namespace.value}"


@dataclass
class PlatformSubdomain:
    slug: str
    namespace: Namespace
    target_id: str
    status: SubdomainStatus = SubdomainStatus.PENDING
    tenant_id: str | None = None
    url: str | None = None
    error: str | None = None
    activated_at: datetime | None = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    @property
    def key(self) -> str:
        return subdomain_key(self.slug, self.namespace)

    def fqdn(self, base_domain: str) -> str:
        return f"{self.key}.{base_domain}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "namespace": self.namespace.value,
            "target_id": self.target_id,
            "tenant_id": self.tenant_id,
            "status": self.status.value,
            "url": self.url,
            "error": self.error,
            "activated_at": self.activated_at.isoformat() if self.activated_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlatformSubdomain:
        return cls(
            slug=data["slug"],
            namespace=Namespace(data["namespace"]),
            target_id=data["target_id"],
            status=SubdomainStatus(data.get("status", SubdomainStatus.PENDING.value)),
            tenant_id=data.get("tenant_id"),
            url=data.get("url"),
            error=data.get("error"),
            activated_at=datetime.fromisoformat(data["activated_at"])
            if data.get("activated_at")
            else None,
            created_at=datetime.fromisoformat(data["created_at"])
            if data.get("created_at")
            else _utc_now(),
            updated_at=datetime.fromisoformat(data["updated_at"])
            if data.get("updated_at")
            else _utc_now(),
        )
