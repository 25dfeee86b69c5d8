"""JSON file storage for platform subdomains, keyed by "{slug}.{namespace}"."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from domainkeeper.core.exceptions import (
    DomainKeeperError,
    SubdomainConflictError,
    SubdomainNotFoundError,
)
from domainkeeper.domains.storage import JsonRecordStore
from domainkeeper.subdomains.models import Namespace, PlatformSubdomain, SubdomainStatus


class SubdomainStore(JsonRecordStore[PlatformSubdomain]):
    collection = "subdomains"

    def __init__(self, storage_path: str | Path = "subdomains.json") -> None:
        super().__init__(storage_path)

    def key_for(self, record: PlatformSubdomain) -> str:
        return record.key

    def _encode(self, record: PlatformSubdomain) -> dict[str, Any]:
        return record.to_dict()

    def _decode(self, data: dict[str, Any]) -> PlatformSubdomain:
        return PlatformSubdomain.from_dict(data)

    def _conflict(self, key: str) -> DomainKeeperError:
        return SubdomainConflictError(f"Subdomain {key} is already taken")

    def _missing(self, key: str) -> DomainKeeperError:
        return SubdomainNotFoundError(f"Subdomain not found: {key}")

    async def list_by_namespace(self, namespace: Namespace) -> list[PlatformSubdomain]:
        return [s for s in await self.list_all() if s.namespace == namespace]

    async def list_by_status(self, *statuses: SubdomainStatus) -> list[PlatformSubdomain]:
        wanted = set(statuses)
        return [s for s in await self.list_all() if s.status in wanted]
